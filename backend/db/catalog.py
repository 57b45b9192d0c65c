import uuid

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, Numeric, String, Text, Uuid
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base


class Category(Base):
    __tablename__ = "categories"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String, nullable=False, unique=True)
    description = Column(Text, nullable=True)

    products = relationship("Product", back_populates="category")


class Product(Base):
    __tablename__ = "products"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String, nullable=False)
    sku = Column(String, nullable=False, unique=True)
    barcode = Column(String, nullable=True, unique=True)

    price = Column(Numeric(12, 2), nullable=False, default=0)
    cost = Column(Numeric(12, 2), nullable=False, default=0)
    reorder_threshold = Column(Integer, nullable=False, default=0)

    # Sum of product_stocks.quantity; written only by the stock ledger
    quantity = Column(Integer, nullable=False, default=0)
    # Sequence number of the product's latest stock movement
    movement_seq = Column(Integer, nullable=False, default=0)

    category_id = Column(Uuid, ForeignKey("categories.id", ondelete="RESTRICT"), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    version = Column(Integer, nullable=False)

    category = relationship("Category", back_populates="products")
    stocks = relationship("ProductStock", back_populates="product")

    __table_args__ = (
        CheckConstraint("quantity >= 0", name="ck_products_quantity_nonnegative"),
    )
    __mapper_args__ = {"version_id_col": version, "eager_defaults": True}
