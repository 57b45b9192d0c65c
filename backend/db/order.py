import enum
import uuid

from sqlalchemy import Column, DateTime, Enum, ForeignKey, Integer, Numeric, String, Text, Uuid
from sqlalchemy.orm import relationship

from .database import Base


class OrderStatus(str, enum.Enum):
    UNFULFILLED = "UNFULFILLED"
    STOCK_RESERVED = "STOCK_RESERVED"
    CANCELLED = "CANCELLED"
    COMPLETED = "COMPLETED"


class Order(Base):
    __tablename__ = "orders"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    order_number = Column(String, nullable=False, unique=True)
    status = Column(Enum(OrderStatus, native_enum=False, length=16), nullable=False, default=OrderStatus.UNFULFILLED, index=True)
    location_id = Column(Uuid, ForeignKey("locations.id", ondelete="RESTRICT"), nullable=False, index=True)
    actor_id = Column(Uuid, nullable=False)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), nullable=True)
    version = Column(Integer, nullable=False)

    location = relationship("Location")
    lines = relationship("OrderLine", back_populates="order", cascade="all, delete-orphan", order_by="OrderLine.position")

    __mapper_args__ = {"version_id_col": version}


class OrderLine(Base):
    __tablename__ = "order_lines"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    order_id = Column(Uuid, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(Uuid, ForeignKey("products.id", ondelete="RESTRICT"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(12, 2), nullable=True)

    order = relationship("Order", back_populates="lines")
    product = relationship("Product")
