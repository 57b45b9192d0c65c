"""
Interval tasks driven by an injectable clock.

`run_pending()` is the deterministic unit (tests call it after moving a
ManualClock); `run_forever()` is the production loop started by the app
lifespan.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Optional

from core.clock import Clock

logger = logging.getLogger(__name__)


class ScheduledTask:
    def __init__(self, name: str, interval: float, func: Callable[[], Awaitable[None]], clock: Clock):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.name = name
        self.interval = timedelta(seconds=interval)
        self.func = func
        self.clock = clock
        self.last_run: Optional[datetime] = None
        self.runs = 0

    def due(self) -> bool:
        return self.last_run is None or self.clock.now() - self.last_run >= self.interval

    async def run_pending(self) -> bool:
        """Run the task if due. Returns True when it ran."""
        if not self.due():
            return False
        started = self.clock.now()
        try:
            await self.func()
        except Exception:
            # Still counts as a run; the next attempt waits a full interval
            logger.exception("scheduled task %s failed", self.name)
        else:
            self.runs += 1
            logger.debug("scheduled task %s ran", self.name)
        self.last_run = started
        return True

    async def run_forever(self, stop_event: asyncio.Event, poll_seconds: Optional[float] = None) -> None:
        poll = poll_seconds if poll_seconds is not None else min(self.interval.total_seconds(), 1.0)
        logger.info("scheduled task %s started (every %ss)", self.name, self.interval.total_seconds())
        while not stop_event.is_set():
            await self.run_pending()
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=poll)
            except asyncio.TimeoutError:
                pass
        logger.info("scheduled task %s stopped", self.name)
