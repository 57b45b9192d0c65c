import uuid

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from ..database import Base


class ProductStock(Base):
    """Current quantity of one product at one location (the ledger projection)."""

    __tablename__ = "product_stocks"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)

    product_id = Column(Uuid, ForeignKey("products.id", ondelete="RESTRICT"), nullable=False, index=True)
    location_id = Column(Uuid, ForeignKey("locations.id", ondelete="RESTRICT"), nullable=False, index=True)

    quantity = Column(Integer, nullable=False, default=0)
    version = Column(Integer, nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    product = relationship("Product", back_populates="stocks")
    location = relationship("Location", back_populates="stocks")

    __table_args__ = (
        UniqueConstraint("product_id", "location_id", name="ux_product_stocks_product_location"),
        CheckConstraint("quantity >= 0", name="ck_product_stocks_quantity_nonnegative"),
    )
    __mapper_args__ = {"version_id_col": version}
