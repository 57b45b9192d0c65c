from datetime import datetime
from typing import Dict, List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, field_validator

from db.inventory.movement import MovementType


MovementKind = Literal["IN", "OUT", "ADJUSTMENT", "TRANSFER"]


class MovementCreate(BaseModel):
    """
    One stock movement.

    - IN: `to_location_id` receives `quantity`
    - OUT: `from_location_id` loses `quantity`
    - ADJUSTMENT: `to_location_id` is set to `quantity` (absolute target)
    - TRANSFER: prefer POST /inventory/transfers
    """

    product_id: UUID
    type: MovementKind
    quantity: int
    from_location_id: Optional[UUID] = None
    to_location_id: Optional[UUID] = None
    reason: Optional[str] = None

    @field_validator("reason")
    @classmethod
    def _strip_nullable(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        return v or None


class TransferCreate(BaseModel):
    product_id: UUID
    from_location_id: UUID
    to_location_id: UUID
    quantity: int
    reason: Optional[str] = None

    @field_validator("reason")
    @classmethod
    def _strip_nullable(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        return v or None


class MovementRead(BaseModel):
    id: UUID
    type: MovementType
    quantity: int
    resulting_quantity: int
    product_id: UUID
    from_location_id: Optional[UUID] = None
    to_location_id: Optional[UUID] = None
    reason: Optional[str] = None
    actor_id: UUID
    order_id: Optional[UUID] = None
    compensates_id: Optional[UUID] = None
    sequence: int
    created_at: datetime

    class Config:
        from_attributes = True


class AppliedMovementRead(BaseModel):
    movement: MovementRead
    stocks_after: Dict[UUID, int]
    aggregate_after: int

    class Config:
        from_attributes = True


class TransferRead(BaseModel):
    movement: MovementRead
    from_stock_after: int
    to_stock_after: int

    class Config:
        from_attributes = True


class MovementPageRead(BaseModel):
    items: List[MovementRead]
    total: int
    limit: int
    offset: int

    class Config:
        from_attributes = True


class LocationQuantity(BaseModel):
    location_id: UUID
    location_name: str
    quantity: int


class ProductStockRead(BaseModel):
    product_id: UUID
    sku: str
    quantity: int
    reorder_threshold: int
    locations: List[LocationQuantity]


class ReplayRead(BaseModel):
    product_id: UUID
    movement_count: int
    aggregate: int
    by_location: Dict[UUID, int]
    stored_aggregate: int
    stored_by_location: Dict[UUID, int]
    consistent: bool

    class Config:
        from_attributes = True
