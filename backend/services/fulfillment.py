"""
Order-driven stock changes.

    UNFULFILLED -> STOCK_RESERVED -> CANCELLED  (compensating IN movements)
                                  -> COMPLETED  (returns go through return_order)

Order creation and its per-line OUT movements share one ledger transaction,
so an order with any unavailable line leaves no trace at all. Cancellation
never touches the original OUT rows; it appends IN rows that point at them.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, time, timedelta
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import selectinload

from core.errors import DuplicateError, NotFoundError, OrderStateError, ValidationError
from db.catalog import Product
from db.inventory.movement import MovementType, StockMovement
from db.order import Order, OrderLine, OrderStatus
from services.ledger import LedgerWriter, MovementRequest, StockLedger, require_quantity, validate_page

logger = logging.getLogger(__name__)


@dataclass
class OrderLineRequest:
    product_id: UUID
    quantity: int
    unit_price: Optional[Decimal] = None


class FulfillmentEngine:
    def __init__(self, ledger: StockLedger):
        self.ledger = ledger

    async def create_order(
        self,
        lines: List[OrderLineRequest],
        actor_id: UUID,
        location_id: Optional[UUID] = None,
        order_number: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Order:
        if not lines:
            raise ValidationError("An order needs at least one line")
        for line in lines:
            require_quantity(line.quantity)
        location_id = location_id or self.ledger.default_location_id()
        if location_id is None:
            raise ValidationError("location_id is required")

        async def work(db, writer: LedgerWriter) -> Order:
            await self.ledger.load_active_location(db, location_id)
            # Lines are inserted before any movement runs; unknown products must fail first
            for ln in lines:
                if await db.get(Product, ln.product_id) is None:
                    raise NotFoundError("Product", ln.product_id)
            number = order_number
            if number:
                exists = await db.execute(select(Order.id).where(Order.order_number == number))
                if exists.first() is not None:
                    raise DuplicateError("Order number already exists", order_number=number)
            else:
                number = await self._next_order_number(db)

            now = self.ledger.clock.now()
            order = Order(
                order_number=number,
                status=OrderStatus.UNFULFILLED,
                location_id=location_id,
                actor_id=actor_id,
                notes=notes,
                created_at=now,
                lines=[
                    OrderLine(position=i, product_id=ln.product_id, quantity=ln.quantity, unit_price=ln.unit_price)
                    for i, ln in enumerate(lines)
                ],
            )
            db.add(order)
            await writer.flush()

            for ln in lines:
                await writer.apply(
                    MovementRequest(
                        product_id=ln.product_id,
                        type=MovementType.OUT,
                        quantity=ln.quantity,
                        actor_id=actor_id,
                        from_location_id=location_id,
                        reason=f"Order {number}",
                        order_id=order.id,
                    )
                )

            order.status = OrderStatus.STOCK_RESERVED
            order.updated_at = now
            await writer.flush()
            return order

        order = await self.ledger.run_in_transaction(work)
        logger.info("order %s created with %d line(s), stock reserved", order.order_number, len(order.lines))
        return order

    async def cancel_order(self, order_id: UUID, actor_id: UUID, reason: Optional[str] = None) -> Order:
        async def work(db, writer: LedgerWriter) -> Order:
            order = await self._load_order(db, order_id)
            if order.status != OrderStatus.STOCK_RESERVED:
                raise OrderStateError(
                    f"Only orders in {OrderStatus.STOCK_RESERVED.value} can be cancelled",
                    order_id=str(order_id),
                    status=order.status.value,
                )
            await self._compensate(db, writer, order, actor_id, reason or f"Order {order.order_number} cancelled")
            order.status = OrderStatus.CANCELLED
            order.updated_at = self.ledger.clock.now()
            await writer.flush()
            return order

        order = await self.ledger.run_in_transaction(work)
        logger.info("order %s cancelled, stock restored", order.order_number)
        return order

    async def complete_order(self, order_id: UUID) -> Order:
        async def work(db, writer: LedgerWriter) -> Order:
            order = await self._load_order(db, order_id)
            if order.status != OrderStatus.STOCK_RESERVED:
                raise OrderStateError(
                    f"Only orders in {OrderStatus.STOCK_RESERVED.value} can be completed",
                    order_id=str(order_id),
                    status=order.status.value,
                )
            order.status = OrderStatus.COMPLETED
            order.updated_at = self.ledger.clock.now()
            await writer.flush()
            return order

        order = await self.ledger.run_in_transaction(work)
        logger.info("order %s completed", order.order_number)
        return order

    async def return_order(self, order_id: UUID, actor_id: UUID, reason: Optional[str] = None) -> List[StockMovement]:
        """Restock a completed order's lines. The order itself stays COMPLETED."""

        async def work(db, writer: LedgerWriter) -> List[StockMovement]:
            order = await self._load_order(db, order_id)
            if order.status != OrderStatus.COMPLETED:
                raise OrderStateError(
                    "Only completed orders can be returned; cancel reserved orders instead",
                    order_id=str(order_id),
                    status=order.status.value,
                )
            restocked = await self._compensate(
                db, writer, order, actor_id, reason or f"Return for order {order.order_number}"
            )
            if not restocked:
                raise OrderStateError("Order has already been returned", order_id=str(order_id))
            return restocked

        movements = await self.ledger.run_in_transaction(work)
        logger.info("order %s returned, %d movement(s) restocked", order_id, len(movements))
        return movements

    async def get_order(self, order_id: UUID) -> Order:
        async with self.ledger.session_maker() as db:
            return await self._load_order(db, order_id)

    async def list_orders(self, status: Optional[OrderStatus] = None, limit: int = 50, offset: int = 0) -> List[Order]:
        validate_page(limit, offset)
        stmt = select(Order).options(selectinload(Order.lines))
        if status:
            stmt = stmt.where(Order.status == status)
        stmt = stmt.order_by(Order.created_at.desc(), Order.order_number.desc()).limit(limit).offset(offset)
        async with self.ledger.session_maker() as db:
            res = await db.execute(stmt)
            return list(res.scalars().all())

    async def get_order_movements(self, order_id: UUID) -> List[StockMovement]:
        async with self.ledger.session_maker() as db:
            await self._load_order(db, order_id)
            res = await db.execute(
                select(StockMovement)
                .where(StockMovement.order_id == order_id)
                .order_by(StockMovement.created_at.asc(), StockMovement.sequence.asc(), StockMovement.id.asc())
            )
            return list(res.scalars().all())

    async def _load_order(self, db, order_id: UUID) -> Order:
        res = await db.execute(select(Order).options(selectinload(Order.lines)).where(Order.id == order_id))
        order = res.scalar_one_or_none()
        if order is None:
            raise NotFoundError("Order", order_id)
        return order

    async def _compensate(self, db, writer: LedgerWriter, order: Order, actor_id: UUID, reason: str) -> List[StockMovement]:
        """Append one IN per not-yet-compensated OUT of this order."""
        res = await db.execute(
            select(StockMovement)
            .where(StockMovement.order_id == order.id, StockMovement.type == MovementType.OUT)
            .order_by(StockMovement.created_at.asc(), StockMovement.sequence.asc(), StockMovement.id.asc())
        )
        outs = res.scalars().all()
        done = await db.execute(
            select(StockMovement.compensates_id).where(
                StockMovement.order_id == order.id, StockMovement.compensates_id.is_not(None)
            )
        )
        compensated = {row[0] for row in done.all()}

        created: List[StockMovement] = []
        for out in outs:
            if out.id in compensated:
                continue
            applied = await writer.apply(
                MovementRequest(
                    product_id=out.product_id,
                    type=MovementType.IN,
                    quantity=out.quantity,
                    actor_id=actor_id,
                    to_location_id=out.from_location_id,
                    reason=reason,
                    order_id=order.id,
                    compensates_id=out.id,
                )
            )
            created.append(applied.movement)
        return created

    async def _next_order_number(self, db) -> str:
        now = self.ledger.clock.now()
        start = datetime.combine(now.date(), time.min, tzinfo=now.tzinfo)
        count = (
            await db.execute(
                select(func.count())
                .select_from(Order)
                .where(Order.created_at >= start, Order.created_at < start + timedelta(days=1))
            )
        ).scalar_one()
        return f"ORD{now:%y%m%d}{int(count) + 1:03d}"
