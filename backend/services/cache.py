"""
TTL cache for analytics results.

Entries expire after their TTL (default ANALYTICS_CACHE_TTL_SECONDS) and are
dropped early by `invalidate*` calls. The instance also acts as a notification
sink: any committed stock change clears the analytics entries. The stock
ledger itself never reads or writes this cache.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, Optional

from core.clock import Clock

logger = logging.getLogger(__name__)

ANALYTICS_PREFIX = "analytics:"


@dataclass
class _Entry:
    value: Any
    expires_at: datetime


class TTLCache:
    def __init__(self, clock: Clock, default_ttl: int = 300):
        self._clock = clock
        self.default_ttl = default_ttl
        self._entries: Dict[str, _Entry] = {}
        # Bumped by every invalidation; a result computed across a bump is not stored
        self._generation = 0

    def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expires_at <= self._clock.now():
            del self._entries[key]
            return None
        return entry.value

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        seconds = self.default_ttl if ttl is None else ttl
        self._entries[key] = _Entry(value, self._clock.now() + timedelta(seconds=seconds))
        logger.debug("cache set %s ttl=%s", key, seconds)

    async def get_or_compute(self, key: str, compute: Callable[[], Awaitable[Any]], ttl: Optional[int] = None) -> Any:
        cached = self.get(key)
        if cached is not None:
            return cached
        generation = self._generation
        value = await compute()
        if generation == self._generation:
            self.set(key, value, ttl)
        else:
            logger.debug("cache invalidated while computing %s; result not stored", key)
        return value

    def invalidate(self, key: str) -> None:
        self._generation += 1
        self._entries.pop(key, None)

    def invalidate_prefix(self, prefix: str) -> int:
        self._generation += 1
        keys = [k for k in self._entries if k.startswith(prefix)]
        for k in keys:
            del self._entries[k]
        return len(keys)

    def clear(self) -> None:
        self._generation += 1
        self._entries.clear()

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None

    async def publish(self, event) -> None:
        dropped = self.invalidate_prefix(ANALYTICS_PREFIX)
        if dropped:
            logger.debug("analytics cache invalidated (%d entries) after stock change", dropped)
