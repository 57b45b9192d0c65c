import logging
from dataclasses import dataclass
from typing import List, Optional
from uuid import UUID

from sqlalchemy import func, or_, select

from core.errors import InactiveLocationError, NotFoundError, SameLocationError, ValidationError
from db.inventory.movement import MovementType, StockMovement
from db.location import Location
from services.ledger import MovementPage, MovementRequest, StockLedger, require_quantity, validate_page

logger = logging.getLogger(__name__)


@dataclass
class TransferResult:
    movement: StockMovement
    from_stock_after: int
    to_stock_after: int


class TransferEngine:
    """Moves stock between two locations as a single TRANSFER movement."""

    def __init__(self, ledger: StockLedger):
        self.ledger = ledger

    async def transfer_stock(
        self,
        product_id: UUID,
        from_location_id: UUID,
        to_location_id: UUID,
        quantity: int,
        actor_id: UUID,
        reason: Optional[str] = None,
    ) -> TransferResult:
        require_quantity(quantity)
        if from_location_id is None or to_location_id is None:
            raise ValidationError("from_location_id and to_location_id are required")
        if from_location_id == to_location_id:
            raise SameLocationError(from_location_id)

        async def work(db, writer):
            src = await db.get(Location, from_location_id)
            dst = await db.get(Location, to_location_id)
            if src is None:
                raise NotFoundError("Location", from_location_id)
            if dst is None:
                raise NotFoundError("Location", to_location_id)
            for loc in (src, dst):
                if not loc.is_active:
                    raise InactiveLocationError(loc.id)

            # Availability is checked by the ledger inside this same transaction
            applied = await writer.apply(
                MovementRequest(
                    product_id=product_id,
                    type=MovementType.TRANSFER,
                    quantity=quantity,
                    actor_id=actor_id,
                    from_location_id=from_location_id,
                    to_location_id=to_location_id,
                    reason=reason or f"Transfer from {src.name} to {dst.name}",
                )
            )
            return TransferResult(
                movement=applied.movement,
                from_stock_after=applied.stocks_after[from_location_id],
                to_stock_after=applied.stocks_after[to_location_id],
            )

        try:
            result = await self.ledger.run_in_transaction(work)
        except Exception:
            logger.info(
                "transfer failed product=%s from=%s to=%s qty=%s",
                product_id, from_location_id, to_location_id, quantity,
            )
            raise

        logger.info(
            "transfer %s completed product=%s qty=%s from_after=%s to_after=%s",
            result.movement.id, product_id, quantity, result.from_stock_after, result.to_stock_after,
        )
        return result

    async def get_transfer_history(
        self,
        product_id: Optional[UUID] = None,
        location_id: Optional[UUID] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> MovementPage:
        validate_page(limit, offset)

        conditions: List = [StockMovement.type == MovementType.TRANSFER]
        if product_id:
            conditions.append(StockMovement.product_id == product_id)
        if location_id:
            conditions.append(
                or_(StockMovement.from_location_id == location_id, StockMovement.to_location_id == location_id)
            )

        async with self.ledger.session_maker() as db:
            total = (
                await db.execute(select(func.count()).select_from(StockMovement).where(*conditions))
            ).scalar_one()
            res = await db.execute(
                select(StockMovement)
                .where(*conditions)
                .order_by(StockMovement.created_at.desc(), StockMovement.sequence.desc(), StockMovement.id.desc())
                .limit(limit)
                .offset(offset)
            )
            return MovementPage(items=list(res.scalars().all()), total=int(total), limit=limit, offset=offset)
