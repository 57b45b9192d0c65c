import logging
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from core.errors import ConflictError, DuplicateError, NotFoundError, ValidationError
from db.catalog import Category, Product

logger = logging.getLogger(__name__)


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


class CatalogService:
    """Product and category identity. Quantities are never written here."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self.session_maker = session_maker

    async def create_category(self, name: str, description: Optional[str] = None) -> Category:
        name = _clean(name)
        if not name:
            raise ValidationError("Category name is required")
        async with self.session_maker() as db:
            existing = await db.execute(select(Category.id).where(Category.name == name))
            if existing.first() is not None:
                raise DuplicateError("Category name already exists", name=name)
            category = Category(name=name, description=description)
            db.add(category)
            await self._commit(db, "Category name already exists")
            return category

    async def list_categories(self) -> List[Category]:
        async with self.session_maker() as db:
            res = await db.execute(select(Category).order_by(func.lower(Category.name).asc()))
            return list(res.scalars().all())

    async def create_product(
        self,
        name: str,
        sku: str,
        price: Decimal = Decimal("0"),
        cost: Decimal = Decimal("0"),
        reorder_threshold: int = 0,
        barcode: Optional[str] = None,
        category_id: Optional[UUID] = None,
    ) -> Product:
        name, sku, barcode = _clean(name), _clean(sku), _clean(barcode)
        if not name or not sku:
            raise ValidationError("name and sku are required")
        if reorder_threshold < 0:
            raise ValidationError("reorder_threshold must be >= 0")
        if price < 0 or cost < 0:
            raise ValidationError("price and cost must be >= 0")

        async with self.session_maker() as db:
            await self._check_unique(db, sku=sku, barcode=barcode)
            if category_id is not None and await db.get(Category, category_id) is None:
                raise NotFoundError("Category", category_id)
            product = Product(
                name=name,
                sku=sku,
                barcode=barcode,
                price=price,
                cost=cost,
                reorder_threshold=reorder_threshold,
                quantity=0,
                category_id=category_id,
            )
            db.add(product)
            await self._commit(db, "SKU or barcode already exists")
            logger.info("product %s created sku=%s", product.id, product.sku)
            return product

    async def get_product(self, product_id: UUID) -> Product:
        async with self.session_maker() as db:
            product = await db.get(Product, product_id)
            if product is None:
                raise NotFoundError("Product", product_id)
            return product

    async def list_products(self, search: Optional[str] = None, category_id: Optional[UUID] = None) -> List[Product]:
        stmt = select(Product)
        if search:
            qq = f"%{search.strip().lower()}%"
            stmt = stmt.where(
                or_(
                    func.lower(Product.name).like(qq),
                    func.lower(Product.sku).like(qq),
                    func.lower(Product.barcode).like(qq),
                )
            )
        if category_id:
            stmt = stmt.where(Product.category_id == category_id)
        async with self.session_maker() as db:
            res = await db.execute(stmt.order_by(Product.sku.asc()))
            return list(res.scalars().all())

    async def update_product(
        self,
        product_id: UUID,
        name: Optional[str] = None,
        sku: Optional[str] = None,
        barcode: Optional[str] = None,
        price: Optional[Decimal] = None,
        cost: Optional[Decimal] = None,
        reorder_threshold: Optional[int] = None,
        category_id: Optional[UUID] = None,
    ) -> Product:
        async with self.session_maker() as db:
            product = await db.get(Product, product_id)
            if product is None:
                raise NotFoundError("Product", product_id)
            await self._check_unique(db, sku=_clean(sku), barcode=_clean(barcode), exclude_id=product_id)

            if name is not None:
                product.name = _clean(name) or product.name
            if sku is not None and _clean(sku):
                product.sku = _clean(sku)
            if barcode is not None:
                product.barcode = _clean(barcode)
            if price is not None:
                if price < 0:
                    raise ValidationError("price must be >= 0")
                product.price = price
            if cost is not None:
                if cost < 0:
                    raise ValidationError("cost must be >= 0")
                product.cost = cost
            if reorder_threshold is not None:
                if reorder_threshold < 0:
                    raise ValidationError("reorder_threshold must be >= 0")
                product.reorder_threshold = reorder_threshold
            if category_id is not None:
                if await db.get(Category, category_id) is None:
                    raise NotFoundError("Category", category_id)
                product.category_id = category_id

            await self._commit(db, "SKU or barcode already exists")
            return product

    async def _check_unique(self, db, sku: Optional[str], barcode: Optional[str], exclude_id: Optional[UUID] = None):
        if sku:
            stmt = select(Product.id).where(Product.sku == sku)
            if exclude_id:
                stmt = stmt.where(Product.id != exclude_id)
            if (await db.execute(stmt)).first() is not None:
                raise DuplicateError("SKU already exists", sku=sku)
        if barcode:
            stmt = select(Product.id).where(Product.barcode == barcode)
            if exclude_id:
                stmt = stmt.where(Product.id != exclude_id)
            if (await db.execute(stmt)).first() is not None:
                raise DuplicateError("Barcode already exists", barcode=barcode)

    async def _commit(self, db, duplicate_message: str) -> None:
        try:
            await db.commit()
        except IntegrityError as exc:
            await db.rollback()
            raise DuplicateError(duplicate_message) from exc
        except StaleDataError as exc:
            # A concurrent stock movement bumped the product version
            await db.rollback()
            raise ConflictError("Product was modified concurrently; retry the update") from exc
