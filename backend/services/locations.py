import logging
from dataclasses import dataclass
from typing import List, Optional
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.errors import DuplicateError, LocationNotEmptyError, NotFoundError, ValidationError
from db.catalog import Product
from db.inventory.stock import ProductStock
from db.location import Location
from services.ledger import StockLedger

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LocationStockRow:
    product_id: UUID
    sku: str
    name: str
    quantity: int


class LocationRegistry:
    def __init__(self, session_maker: async_sessionmaker[AsyncSession], ledger: StockLedger):
        self.session_maker = session_maker
        # Status changes go through the ledger's retrying transactions
        self.ledger = ledger

    async def create_location(self, name: str, description: Optional[str] = None, address: Optional[str] = None) -> Location:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Location name is required")
        async with self.session_maker() as db:
            if (await db.execute(select(Location.id).where(Location.name == name))).first() is not None:
                raise DuplicateError("Location name already exists", name=name)
            location = Location(name=name, description=description, address=address, is_active=True)
            db.add(location)
            try:
                await db.commit()
            except IntegrityError as exc:
                await db.rollback()
                raise DuplicateError("Location name already exists", name=name) from exc
            logger.info("location %s created name=%s", location.id, name)
            return location

    async def get_location(self, location_id: UUID) -> Location:
        async with self.session_maker() as db:
            location = await db.get(Location, location_id)
            if location is None:
                raise NotFoundError("Location", location_id)
            return location

    async def list_locations(self, include_inactive: bool = False) -> List[Location]:
        stmt = select(Location)
        if not include_inactive:
            stmt = stmt.where(Location.is_active.is_(True))
        async with self.session_maker() as db:
            res = await db.execute(stmt.order_by(Location.name.asc()))
            return list(res.scalars().all())

    async def deactivate_location(self, location_id: UUID) -> Location:
        """
        Soft delete; refused while the location still holds stock.

        The update is version checked against the location row. A stock
        movement that gives this location its first units of a product bumps
        that version, so a deactivation racing it conflicts, is retried and
        then sees the stock.
        """

        async def work(db, _writer) -> Location:
            location = await self._load(db, location_id)
            holding = (
                await db.execute(
                    select(func.count())
                    .select_from(ProductStock)
                    .where(ProductStock.location_id == location_id, ProductStock.quantity > 0)
                )
            ).scalar_one()
            if holding:
                raise LocationNotEmptyError(
                    "Cannot deactivate a location that holds stock; transfer it first",
                    location_id=str(location_id),
                    products_with_stock=int(holding),
                )
            location.is_active = False
            return location

        location = await self.ledger.run_in_transaction(work)
        logger.info("location %s deactivated", location_id)
        return location

    async def activate_location(self, location_id: UUID) -> Location:
        async def work(db, _writer) -> Location:
            location = await self._load(db, location_id)
            location.is_active = True
            return location

        return await self.ledger.run_in_transaction(work)

    async def _load(self, db, location_id: UUID) -> Location:
        location = await db.get(Location, location_id)
        if location is None:
            raise NotFoundError("Location", location_id)
        return location

    async def get_location_stock(self, location_id: UUID) -> List[LocationStockRow]:
        """(product, quantity) rows for a location, ordered by sku."""
        async with self.session_maker() as db:
            if await db.get(Location, location_id) is None:
                raise NotFoundError("Location", location_id)
            res = await db.execute(
                select(ProductStock.product_id, Product.sku, Product.name, ProductStock.quantity)
                .join(Product, ProductStock.product_id == Product.id)
                .where(ProductStock.location_id == location_id)
                .order_by(Product.sku.asc())
            )
            return [
                LocationStockRow(product_id=pid, sku=sku, name=name, quantity=int(qty))
                for (pid, sku, name, qty) in res.all()
            ]
