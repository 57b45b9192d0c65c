import enum
import uuid

from sqlalchemy import Column, DateTime, Enum, ForeignKey, Integer, Text, UniqueConstraint, Uuid, event
from sqlalchemy.orm import relationship

from core.errors import AppendOnlyViolation

from ..database import Base


class MovementType(str, enum.Enum):
    IN = "IN"
    OUT = "OUT"
    ADJUSTMENT = "ADJUSTMENT"
    TRANSFER = "TRANSFER"


class StockMovement(Base):
    """
    Append-only ledger row. `quantity` is the positive magnitude, except for
    ADJUSTMENT where it is the signed delta that was applied.
    `resulting_quantity` is the location quantity after the movement (for
    TRANSFER: the destination).
    """

    __tablename__ = "stock_movements"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    type = Column(Enum(MovementType, native_enum=False, length=16), nullable=False, index=True)
    quantity = Column(Integer, nullable=False)
    resulting_quantity = Column(Integer, nullable=False)

    product_id = Column(Uuid, ForeignKey("products.id", ondelete="RESTRICT"), nullable=False, index=True)
    from_location_id = Column(Uuid, ForeignKey("locations.id", ondelete="RESTRICT"), nullable=True, index=True)
    to_location_id = Column(Uuid, ForeignKey("locations.id", ondelete="RESTRICT"), nullable=True, index=True)

    reason = Column(Text, nullable=True)
    actor_id = Column(Uuid, nullable=False)

    order_id = Column(Uuid, ForeignKey("orders.id", ondelete="RESTRICT"), nullable=True, index=True)
    # A movement can be compensated at most once
    compensates_id = Column(Uuid, ForeignKey("stock_movements.id", ondelete="RESTRICT"), nullable=True, unique=True)

    created_at = Column(DateTime(timezone=True), nullable=False, index=True)
    # 1, 2, 3... per product in commit order; orders movements sharing a timestamp
    sequence = Column(Integer, nullable=False)

    product = relationship("Product")
    from_location = relationship("Location", foreign_keys=[from_location_id])
    to_location = relationship("Location", foreign_keys=[to_location_id])

    @property
    def location_id(self):
        """The location whose quantity this movement primarily changed."""
        if self.type == MovementType.OUT:
            return self.from_location_id
        return self.to_location_id

    def location_deltas(self) -> dict:
        """Signed quantity change per location id."""
        if self.type == MovementType.IN:
            return {self.to_location_id: self.quantity}
        if self.type == MovementType.OUT:
            return {self.from_location_id: -self.quantity}
        if self.type == MovementType.ADJUSTMENT:
            return {self.to_location_id: self.quantity}
        return {self.from_location_id: -self.quantity, self.to_location_id: self.quantity}

    def aggregate_delta(self) -> int:
        return sum(self.location_deltas().values())

    __table_args__ = (
        UniqueConstraint("product_id", "sequence", name="uq_stock_movements_product_sequence"),
    )


@event.listens_for(StockMovement, "before_update")
def _reject_movement_update(mapper, connection, target):
    raise AppendOnlyViolation(f"Stock movement {target.id} is append-only and cannot be updated")


@event.listens_for(StockMovement, "before_delete")
def _reject_movement_delete(mapper, connection, target):
    raise AppendOnlyViolation(f"Stock movement {target.id} is append-only and cannot be deleted")
