from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, field_validator


class CategoryCreate(BaseModel):
    name: str
    description: Optional[str] = None

    @field_validator("name")
    @classmethod
    def _strip_required(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("field is required")
        return v


class CategoryRead(BaseModel):
    id: UUID
    name: str
    description: Optional[str] = None

    class Config:
        from_attributes = True


class ProductCreate(BaseModel):
    name: str
    sku: str
    barcode: Optional[str] = None
    price: Decimal = Decimal("0")
    cost: Decimal = Decimal("0")
    reorder_threshold: int = 0
    category_id: Optional[UUID] = None

    @field_validator("name", "sku")
    @classmethod
    def _strip_required(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("field is required")
        return v

    @field_validator("barcode")
    @classmethod
    def _strip_nullable(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        return v or None


class ProductUpdate(BaseModel):
    # quantity is deliberately absent: only stock movements change it
    name: Optional[str] = None
    sku: Optional[str] = None
    barcode: Optional[str] = None
    price: Optional[Decimal] = None
    cost: Optional[Decimal] = None
    reorder_threshold: Optional[int] = None
    category_id: Optional[UUID] = None

    @field_validator("name", "sku")
    @classmethod
    def _strip_optional(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = (v or "").strip()
        if not v:
            raise ValueError("cannot be empty")
        return v


class ProductRead(BaseModel):
    id: UUID
    name: str
    sku: str
    barcode: Optional[str] = None
    price: Decimal
    cost: Decimal
    reorder_threshold: int
    quantity: int
    category_id: Optional[UUID] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
