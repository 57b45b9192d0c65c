"""
Stock ledger: the only code allowed to change stock quantities.

Every mutation appends exactly one StockMovement row, upserts the affected
ProductStock row(s) and keeps Product.quantity equal to the sum of its
per-location quantities, all inside one transaction.

Concurrency is optimistic: ProductStock, Product, Order and Location carry a
version column, so a write based on a stale read fails at flush time. That
failure (and lost unique-insert races / lock contention) surfaces as
ConflictError and the whole unit of work is retried on a fresh session.
Crediting a location that held none of a product also bumps the location's
version, so it cannot interleave with a deactivation of that location.
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional, TypeVar
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from core.clock import Clock, SystemClock
from core.config import Settings, settings as default_settings
from core.errors import (
    ConfigurationError,
    ConflictError,
    InactiveLocationError,
    InsufficientStockError,
    NotFoundError,
    SameLocationError,
    TransactionTimeoutError,
    ValidationError,
)
from db.catalog import Product
from db.inventory.movement import MovementType, StockMovement
from db.inventory.stock import ProductStock
from db.location import Location
from services.notifications import LowStockAlert, Notifier, StockChangeEvent, StockEvent

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_PAGE_SIZE = 1000


@dataclass
class MovementRequest:
    product_id: UUID
    type: MovementType
    quantity: int
    actor_id: UUID
    from_location_id: Optional[UUID] = None
    to_location_id: Optional[UUID] = None
    reason: Optional[str] = None
    order_id: Optional[UUID] = None
    compensates_id: Optional[UUID] = None


@dataclass
class AppliedMovement:
    movement: StockMovement
    stocks_after: Dict[UUID, int]
    aggregate_after: int


@dataclass
class MovementPage:
    items: List[StockMovement]
    total: int
    limit: int
    offset: int


@dataclass
class ReplayResult:
    product_id: UUID
    movement_count: int
    aggregate: int
    by_location: Dict[UUID, int]
    stored_aggregate: int
    stored_by_location: Dict[UUID, int]

    @property
    def consistent(self) -> bool:
        stored = {k: v for k, v in self.stored_by_location.items() if v}
        replayed = {k: v for k, v in self.by_location.items() if v}
        return self.aggregate == self.stored_aggregate and stored == replayed


def _is_lock_contention(exc: DBAPIError) -> bool:
    orig = getattr(exc, "orig", None)
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    # serialization_failure / deadlock_detected / lock_not_available
    if sqlstate in ("40001", "40P01", "55P03"):
        return True
    return "database is locked" in str(orig).lower()


def _is_unique_violation(exc: IntegrityError) -> bool:
    orig = getattr(exc, "orig", None)
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate:
        return sqlstate == "23505"
    # sqlite: "UNIQUE constraint failed: ..." (primary keys report the same way)
    return "unique constraint" in str(orig).lower()


def translate_db_error(exc: Exception) -> Optional[ConflictError]:
    """
    Map write races to ConflictError; anything else stays an infrastructure error.

    Only unique violations count as races. Foreign key, check and not-null
    violations can never succeed on retry.
    """
    if isinstance(exc, StaleDataError):
        return ConflictError("Stock was modified concurrently; retry the operation")
    if isinstance(exc, IntegrityError):
        if not _is_unique_violation(exc):
            return None
        return ConflictError("Concurrent write violated a uniqueness rule; retry the operation")
    if isinstance(exc, OperationalError) and _is_lock_contention(exc):
        return ConflictError("Database lock contention; retry the operation")
    return None


def validate_page(limit: int, offset: int) -> None:
    if limit < 1 or limit > MAX_PAGE_SIZE:
        raise ValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}", limit=limit)
    if offset < 0:
        raise ValidationError("offset must be >= 0", offset=offset)


def require_quantity(value, allow_zero: bool = False) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError("quantity must be an integer", quantity=value)
    if value < 0 or (value == 0 and not allow_zero):
        raise ValidationError(
            "quantity must be >= 0" if allow_zero else "quantity must be > 0",
            quantity=value,
        )
    return value


class LedgerWriter:
    """Mutation handle bound to one open transaction; handed out by StockLedger only."""

    def __init__(self, ledger: "StockLedger", db: AsyncSession):
        self._ledger = ledger
        self.db = db
        self.events: List[StockEvent] = []

    async def apply(self, req: MovementRequest) -> AppliedMovement:
        mtype = MovementType(req.type)
        qty = require_quantity(req.quantity, allow_zero=mtype == MovementType.ADJUSTMENT)
        if req.actor_id is None:
            raise ValidationError("actor_id is required")

        product = await self.db.get(Product, req.product_id)
        if product is None:
            raise NotFoundError("Product", req.product_id)

        from_id, to_id = self._ledger.resolve_locations(mtype, req.from_location_id, req.to_location_id)
        locations = {}
        for loc_id in {i for i in (from_id, to_id) if i is not None}:
            locations[loc_id] = await self._ledger.load_active_location(self.db, loc_id)

        now = self._ledger.clock.now()
        changes: Dict[UUID, tuple] = {}

        if mtype == MovementType.TRANSFER:
            source = await self._stock_row(product.id, from_id, create=False)
            available = source.quantity if source is not None else 0
            if available < qty:
                raise InsufficientStockError(product.id, from_id, available, qty)
            # destination row exists (at 0) before it is credited
            dest = await self._stock_row(product.id, to_id, create=True)
            changes[from_id] = (source, source.quantity, source.quantity - qty)
            changes[to_id] = (dest, dest.quantity, dest.quantity + qty)
            recorded_qty = qty
            resulting = dest.quantity + qty
        elif mtype == MovementType.OUT:
            source = await self._stock_row(product.id, from_id, create=False)
            available = source.quantity if source is not None else 0
            if available < qty:
                raise InsufficientStockError(product.id, from_id, available, qty)
            changes[from_id] = (source, source.quantity, source.quantity - qty)
            recorded_qty = qty
            resulting = source.quantity - qty
        elif mtype == MovementType.IN:
            dest = await self._stock_row(product.id, to_id, create=True)
            changes[to_id] = (dest, dest.quantity, dest.quantity + qty)
            recorded_qty = qty
            resulting = dest.quantity + qty
        else:
            dest = await self._stock_row(product.id, to_id, create=True)
            changes[to_id] = (dest, dest.quantity, qty)
            recorded_qty = qty - dest.quantity  # signed delta
            resulting = qty

        aggregate_delta = sum(new - old for (_row, old, new) in changes.values())
        old_aggregate = product.quantity
        if old_aggregate + aggregate_delta < 0:
            # Projection drifted from per-location rows; never write a negative aggregate
            raise ConflictError("Product aggregate quantity is inconsistent", product_id=str(product.id))

        for loc_id, (row, old, new) in changes.items():
            row.quantity = new
            row.updated_at = now
            if old == 0 and new > 0:
                # Version bump on the location row: a concurrent deactivation
                # that counted this location as empty now fails its flush
                locations[loc_id].stock_changed_at = now
        product.quantity = old_aggregate + aggregate_delta
        product.movement_seq = (product.movement_seq or 0) + 1

        movement = StockMovement(
            sequence=product.movement_seq,
            type=mtype,
            quantity=recorded_qty,
            resulting_quantity=resulting,
            product_id=product.id,
            from_location_id=from_id,
            to_location_id=to_id,
            reason=req.reason,
            actor_id=req.actor_id,
            order_id=req.order_id,
            compensates_id=req.compensates_id,
            created_at=now,
        )
        self.db.add(movement)
        await self.flush()

        for loc_id, (_row, old, new) in changes.items():
            self.events.append(
                StockChangeEvent(
                    product_id=product.id,
                    location_id=loc_id,
                    old_quantity=old,
                    new_quantity=new,
                    actor_id=req.actor_id,
                    timestamp=now,
                    movement_id=movement.id,
                )
            )
        if aggregate_delta < 0 and product.quantity <= product.reorder_threshold:
            self.events.append(
                LowStockAlert(
                    product_id=product.id,
                    sku=product.sku,
                    current_stock=product.quantity,
                    reorder_threshold=product.reorder_threshold,
                    timestamp=now,
                )
            )

        return AppliedMovement(
            movement=movement,
            stocks_after={loc_id: new for loc_id, (_row, _old, new) in changes.items()},
            aggregate_after=product.quantity,
        )

    async def flush(self) -> None:
        try:
            await self.db.flush()
        except (StaleDataError, IntegrityError, OperationalError) as exc:
            conflict = translate_db_error(exc)
            if conflict is None:
                raise
            raise conflict from exc

    async def _stock_row(self, product_id: UUID, location_id: UUID, create: bool) -> Optional[ProductStock]:
        res = await self.db.execute(
            select(ProductStock).where(
                ProductStock.product_id == product_id,
                ProductStock.location_id == location_id,
            )
        )
        row = res.scalar_one_or_none()
        if row is None and create:
            row = ProductStock(
                product_id=product_id,
                location_id=location_id,
                quantity=0,
                updated_at=self._ledger.clock.now(),
            )
            self.db.add(row)
            await self.flush()
        return row


class StockLedger:
    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        settings: Optional[Settings] = None,
        clock: Optional[Clock] = None,
        notifier: Optional[Notifier] = None,
    ):
        self.session_maker = session_maker
        self.settings = settings or default_settings
        self.clock = clock or SystemClock()
        self.notifier = notifier or Notifier()

    # ------------------------------------------------------------------
    # Write path
    # ------------------------------------------------------------------

    async def apply_movement(self, req: MovementRequest) -> AppliedMovement:
        applied = await self.run_in_transaction(lambda db, writer: writer.apply(req))
        m = applied.movement
        logger.info(
            "movement %s %s product=%s qty=%s from=%s to=%s actor=%s",
            m.id, m.type.value, m.product_id, m.quantity, m.from_location_id, m.to_location_id, m.actor_id,
        )
        return applied

    async def run_in_transaction(self, work: Callable[[AsyncSession, LedgerWriter], Awaitable[T]]) -> T:
        """
        Run `work` as one atomic unit, retrying on ConflictError.

        `work` may be re-invoked, so it must not keep state between attempts.
        Events collected by the writer are dispatched only after commit.
        """
        max_retries = max(0, int(self.settings.tx_max_retries))
        attempt = 0
        while True:
            attempt += 1
            try:
                result, events = await self._attempt(work)
            except ConflictError:
                if attempt > max_retries:
                    logger.warning("ledger transaction gave up after %d attempts", attempt)
                    raise
                logger.warning("ledger transaction conflict, retrying (attempt %d)", attempt)
                await asyncio.sleep(random.uniform(0, min(0.05, 0.002 * (2 ** attempt))))
                continue
            self.notifier.dispatch(events)
            return result

    async def _attempt(self, work):
        async with self.session_maker() as db:
            writer = LedgerWriter(self, db)
            try:
                try:
                    result = await asyncio.wait_for(work(db, writer), timeout=self.settings.tx_timeout_seconds)
                except asyncio.TimeoutError:
                    raise TransactionTimeoutError(
                        "Ledger transaction timed out",
                        timeout_seconds=self.settings.tx_timeout_seconds,
                    ) from None
                # Not bounded by the timeout: a started commit is never cancelled
                await db.commit()
            except (StaleDataError, IntegrityError, OperationalError) as exc:
                await db.rollback()
                conflict = translate_db_error(exc)
                if conflict is None:
                    logger.exception("ledger transaction failed")
                    raise
                raise conflict from exc
            except BaseException:
                await db.rollback()
                raise
            return result, writer.events

    # ------------------------------------------------------------------
    # Location resolution
    # ------------------------------------------------------------------

    def default_location_id(self) -> Optional[UUID]:
        if not self.settings.single_location:
            return None
        if self.settings.default_location_id is None:
            raise ConfigurationError("LOCATION_MODE=single requires DEFAULT_LOCATION_ID")
        return self.settings.default_location_id

    def resolve_locations(self, mtype: MovementType, from_id: Optional[UUID], to_id: Optional[UUID]):
        """Return the (from, to) pair a movement of `mtype` is recorded with."""
        if mtype == MovementType.TRANSFER:
            if from_id is None or to_id is None:
                raise ValidationError("TRANSFER requires from_location_id and to_location_id")
            if from_id == to_id:
                raise SameLocationError(from_id)
            return from_id, to_id

        if mtype == MovementType.IN:
            if from_id is not None:
                raise ValidationError("IN movements only take to_location_id")
            loc = to_id or self.default_location_id()
            if loc is None:
                raise ValidationError("IN requires to_location_id")
            return None, loc

        if mtype == MovementType.OUT:
            if to_id is not None:
                raise ValidationError("OUT movements only take from_location_id")
            loc = from_id or self.default_location_id()
            if loc is None:
                raise ValidationError("OUT requires from_location_id")
            return loc, None

        # ADJUSTMENT is always recorded against to_location_id
        if from_id is not None and to_id is not None and from_id != to_id:
            raise ValidationError("ADJUSTMENT targets a single location")
        loc = to_id or from_id or self.default_location_id()
        if loc is None:
            raise ValidationError("ADJUSTMENT requires a location")
        return None, loc

    async def load_active_location(self, db: AsyncSession, location_id: UUID) -> Location:
        location = await db.get(Location, location_id)
        if location is None:
            if self.settings.single_location and location_id == self.settings.default_location_id:
                raise ConfigurationError("DEFAULT_LOCATION_ID does not reference an existing location")
            raise NotFoundError("Location", location_id)
        if not location.is_active:
            raise InactiveLocationError(location_id)
        return location

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def _require_product(self, db: AsyncSession, product_id: UUID) -> Product:
        product = await db.get(Product, product_id)
        if product is None:
            raise NotFoundError("Product", product_id)
        return product

    async def get_stock_movements(self, product_id: UUID, limit: int = 50, offset: int = 0) -> MovementPage:
        """Movements for a product, newest first; restartable through limit/offset."""
        validate_page(limit, offset)
        async with self.session_maker() as db:
            await self._require_product(db, product_id)
            total = (
                await db.execute(
                    select(func.count()).select_from(StockMovement).where(StockMovement.product_id == product_id)
                )
            ).scalar_one()
            res = await db.execute(
                select(StockMovement)
                .where(StockMovement.product_id == product_id)
                .order_by(StockMovement.created_at.desc(), StockMovement.sequence.desc(), StockMovement.id.desc())
                .limit(limit)
                .offset(offset)
            )
            return MovementPage(items=list(res.scalars().all()), total=int(total), limit=limit, offset=offset)

    async def get_product_stock(self, product_id: UUID) -> dict:
        async with self.session_maker() as db:
            product = await self._require_product(db, product_id)
            res = await db.execute(
                select(ProductStock, Location)
                .join(Location, ProductStock.location_id == Location.id)
                .where(ProductStock.product_id == product_id)
                .order_by(Location.name.asc())
            )
            return {
                "product_id": product.id,
                "sku": product.sku,
                "quantity": int(product.quantity),
                "reorder_threshold": int(product.reorder_threshold),
                "locations": [
                    {"location_id": loc.id, "location_name": loc.name, "quantity": int(st.quantity)}
                    for (st, loc) in res.all()
                ],
            }

    async def replay_product(self, product_id: UUID) -> ReplayResult:
        """Rebuild a product's quantities from its movements alone."""
        async with self.session_maker() as db:
            product = await self._require_product(db, product_id)
            res = await db.execute(
                select(StockMovement)
                .where(StockMovement.product_id == product_id)
                .order_by(StockMovement.created_at.asc(), StockMovement.sequence.asc(), StockMovement.id.asc())
            )
            movements = res.scalars().all()
            by_location: Dict[UUID, int] = {}
            for mv in movements:
                for loc_id, delta in mv.location_deltas().items():
                    by_location[loc_id] = by_location.get(loc_id, 0) + delta

            sres = await db.execute(select(ProductStock).where(ProductStock.product_id == product_id))
            stored = {s.location_id: int(s.quantity) for s in sres.scalars().all()}
            return ReplayResult(
                product_id=product.id,
                movement_count=len(movements),
                aggregate=sum(by_location.values()),
                by_location=by_location,
                stored_aggregate=int(product.quantity),
                stored_by_location=stored,
            )
