import uuid

from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text, Uuid
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base


class Location(Base):
    __tablename__ = "locations"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String, nullable=False, unique=True)
    description = Column(Text, nullable=True)
    address = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    # Set by the stock ledger when a product first gets stock here
    stock_changed_at = Column(DateTime(timezone=True), nullable=True)
    version = Column(Integer, nullable=False)

    stocks = relationship("ProductStock", back_populates="location")

    # created_at comes back with the INSERT so detached instances stay readable
    __mapper_args__ = {"version_id_col": version, "eager_defaults": True}
