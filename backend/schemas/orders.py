from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, field_validator

from db.order import OrderStatus
from schemas.inventory import MovementRead


class OrderLineCreate(BaseModel):
    product_id: UUID
    quantity: int
    unit_price: Optional[Decimal] = None


class OrderCreate(BaseModel):
    lines: List[OrderLineCreate]
    location_id: Optional[UUID] = None
    order_number: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("order_number", "notes")
    @classmethod
    def _strip_nullable(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        return v or None


class OrderCancel(BaseModel):
    reason: Optional[str] = None


class OrderLineRead(BaseModel):
    id: UUID
    product_id: UUID
    position: int
    quantity: int
    unit_price: Optional[Decimal] = None

    class Config:
        from_attributes = True


class OrderRead(BaseModel):
    id: UUID
    order_number: str
    status: OrderStatus
    location_id: UUID
    actor_id: UUID
    notes: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None
    lines: List[OrderLineRead]

    class Config:
        from_attributes = True


class OrderReturnRead(BaseModel):
    order_id: UUID
    movements: List[MovementRead]
