"""
Post-commit stock notifications.

The ledger hands events to a Notifier only after its transaction committed.
Delivery runs as background tasks; a failing sink is logged and otherwise
ignored, so nothing here can roll back or delay a stock mutation.
"""

import asyncio
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import List, Optional, Protocol, Set, Union
from uuid import UUID

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StockChangeEvent:
    product_id: UUID
    location_id: Optional[UUID]
    old_quantity: int
    new_quantity: int
    actor_id: UUID
    timestamp: datetime
    movement_id: Optional[UUID] = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class LowStockAlert:
    product_id: UUID
    sku: str
    current_stock: int
    reorder_threshold: int
    timestamp: datetime

    def to_dict(self) -> dict:
        return asdict(self)


StockEvent = Union[StockChangeEvent, LowStockAlert]


class NotificationSink(Protocol):
    async def publish(self, event: StockEvent) -> None:
        ...


class LoggingSink:
    async def publish(self, event: StockEvent) -> None:
        logger.info("stock event %s %s", type(event).__name__, event.to_dict())


@dataclass
class Notifier:
    sinks: List[NotificationSink] = field(default_factory=list)
    _pending: Set[asyncio.Task] = field(default_factory=set, init=False, repr=False)

    def subscribe(self, sink: NotificationSink) -> None:
        self.sinks.append(sink)

    def dispatch(self, events: List[StockEvent]) -> None:
        """Fire-and-forget delivery of already-committed events."""
        if not events or not self.sinks:
            return
        for sink in list(self.sinks):
            task = asyncio.get_running_loop().create_task(self._deliver(sink, list(events)))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

    async def _deliver(self, sink: NotificationSink, events: List[StockEvent]) -> None:
        for ev in events:
            try:
                await sink.publish(ev)
            except Exception:
                logger.warning("notification sink %r failed for %s", sink, type(ev).__name__, exc_info=True)

    async def drain(self) -> None:
        """Wait for in-flight deliveries (shutdown and tests)."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
