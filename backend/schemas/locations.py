from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, field_validator


class LocationCreate(BaseModel):
    name: str
    description: Optional[str] = None
    address: Optional[str] = None

    @field_validator("name")
    @classmethod
    def _strip_required(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("field is required")
        return v


class LocationRead(BaseModel):
    id: UUID
    name: str
    description: Optional[str] = None
    address: Optional[str] = None
    is_active: bool
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class LocationStockRead(BaseModel):
    product_id: UUID
    sku: str
    name: str
    quantity: int

    class Config:
        from_attributes = True
