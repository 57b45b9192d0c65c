"""
Read-only analytics over the stock ledger and its projection.

The module-level functions are pure: they only look at the values passed in,
so the same ledger state always produces the same output. AnalyticsEngine
loads a snapshot in one read session, feeds it through them and caches the
result under `analytics:*` keys.

Definitions
-----------
- outbound units: sum of OUT movement quantities inside the window
- average level: mean of end-of-day stock levels inside the window, rebuilt
  backwards from the current quantity using the movement deltas
- turnover: outbound units / average level (0 when the average is 0)
- days until stockout: current / (outbound units / window days), or UNKNOWN
  when nothing went out
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from core.clock import Clock, SystemClock, as_utc
from core.config import Settings, settings as default_settings
from core.errors import ConfigurationError, NotFoundError, ValidationError
from db.catalog import Product
from db.inventory.movement import MovementType, StockMovement
from db.inventory.stock import ProductStock
from db.location import Location
from services.cache import ANALYTICS_PREFIX, TTLCache

logger = logging.getLogger(__name__)

UNKNOWN = "unknown"
TOP_MOVING_LIMIT = 10

Estimate = Union[float, str]


# ----------------------------------------------------------------------
# Pure functions
# ----------------------------------------------------------------------

def daily_levels(current: int, deltas: Iterable[Tuple[datetime, int]], start: datetime, days: int) -> List[int]:
    """
    End-of-day levels for `days` days beginning at `start`.

    `deltas` are (timestamp, signed change) pairs; those before `start` are
    ignored and those at or after the last day fall into the last day.
    """
    if days < 1:
        return []
    start = as_utc(start)
    per_day = [0] * days
    for ts, delta in deltas:
        ts = as_utc(ts)
        if ts < start:
            continue
        idx = min((ts - start) // timedelta(days=1), days - 1)
        per_day[idx] += delta

    level = current - sum(per_day)
    levels = []
    for change in per_day:
        level += change
        levels.append(level)
    return levels


def average(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def turnover_rate(units_out: int, average_level: float) -> float:
    if average_level <= 0:
        return 0.0
    return units_out / average_level


def days_until_stockout(current: int, units_out: int, window_days: int) -> Estimate:
    if window_days <= 0 or units_out <= 0:
        return UNKNOWN
    rate = units_out / window_days
    return round(current / rate, 2)


def is_low_stock(current: int, reorder_threshold: int) -> bool:
    return current <= reorder_threshold


def month_start(value: datetime) -> datetime:
    value = as_utc(value)
    return value.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def add_months(value: datetime, months: int) -> datetime:
    index = value.year * 12 + (value.month - 1) + months
    return value.replace(year=index // 12, month=index % 12 + 1)


def month_label(value: datetime) -> str:
    return f"{value.year:04d}-{value.month:02d}"


def monthly_totals(events: Iterable[Tuple[datetime, int]], start: datetime, months: int) -> List[int]:
    """Sum quantities into `months` calendar-month buckets beginning at `start`."""
    start = month_start(start)
    totals = [0] * max(months, 0)
    for ts, qty in events:
        ts = as_utc(ts)
        idx = (ts.year - start.year) * 12 + (ts.month - start.month)
        if 0 <= idx < months:
            totals[idx] += qty
    return totals


def linear_trend(values: Sequence[float]) -> Tuple[float, float]:
    """Least-squares (slope, intercept) over x = 0..n-1."""
    n = len(values)
    if n == 0:
        return 0.0, 0.0
    if n == 1:
        return 0.0, float(values[0])
    sum_x = n * (n - 1) / 2
    sum_xx = (n - 1) * n * (2 * n - 1) / 6
    sum_y = float(sum(values))
    sum_xy = float(sum(i * v for i, v in enumerate(values)))
    denom = n * sum_xx - sum_x * sum_x
    slope = (n * sum_xy - sum_x * sum_y) / denom
    intercept = (sum_y - slope * sum_x) / n
    return slope, intercept


@dataclass(frozen=True)
class ForecastPoint:
    index: int
    value: float
    lower: float
    upper: float


def linear_forecast(values: Sequence[float], periods: int, band_ratio: float) -> List[ForecastPoint]:
    """
    Extend the least-squares trend of `values` by `periods` steps.

    The band is fixed: half-width = band_ratio * mean(values) for every step.
    Point and lower bound never go below zero.
    """
    slope, intercept = linear_trend(values)
    half_width = round(band_ratio * average(values), 4)
    n = len(values)
    points = []
    for step in range(periods):
        value = round(max(0.0, slope * (n + step) + intercept), 4)
        points.append(
            ForecastPoint(
                index=step,
                value=value,
                lower=round(max(0.0, value - half_width), 4),
                upper=round(value + half_width, 4),
            )
        )
    return points


# ----------------------------------------------------------------------
# Engine
# ----------------------------------------------------------------------

@dataclass
class _ProductSnapshot:
    product: Product
    current: int
    units_out: int
    levels: List[int]

    @property
    def average_level(self) -> float:
        return average(self.levels)


class AnalyticsEngine:
    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        settings: Optional[Settings] = None,
        clock: Optional[Clock] = None,
        cache: Optional[TTLCache] = None,
    ):
        self.session_maker = session_maker
        self.settings = settings or default_settings
        self.clock = clock or SystemClock()
        self.cache = cache or TTLCache(self.clock, self.settings.analytics_cache_ttl_seconds)

    async def get_inventory_analytics(self, location_id: Optional[UUID] = None) -> dict:
        if location_id is not None and self.settings.single_location:
            raise ConfigurationError("Per-location analytics are not available in single-location mode")
        key = f"{ANALYTICS_PREFIX}inventory:{location_id or 'all'}"
        return await self.cache.get_or_compute(key, lambda: self._compute_inventory(location_id))

    async def get_stock_alerts(self) -> List[dict]:
        return await self.cache.get_or_compute(f"{ANALYTICS_PREFIX}alerts", self._compute_alerts)

    async def get_forecast(self, periods: int = 12, product_id: Optional[UUID] = None) -> dict:
        if isinstance(periods, bool) or not isinstance(periods, int):
            raise ValidationError("periods must be an integer", periods=periods)
        if periods < 1 or periods > self.settings.forecast_max_periods:
            raise ValidationError(
                f"periods must be between 1 and {self.settings.forecast_max_periods}",
                periods=periods,
            )
        key = f"{ANALYTICS_PREFIX}forecast:{product_id or 'all'}:{periods}"
        return await self.cache.get_or_compute(key, lambda: self._compute_forecast(periods, product_id))

    async def refresh(self) -> None:
        """Drop cached analytics and rebuild the default views. Safe to run repeatedly."""
        dropped = self.cache.invalidate_prefix(ANALYTICS_PREFIX)
        await self.get_inventory_analytics()
        await self.get_stock_alerts()
        logger.info("analytics refreshed (%d cached entries replaced)", dropped)

    # ------------------------------------------------------------------

    async def _snapshot(self, db: AsyncSession, location_id: Optional[UUID]) -> Tuple[datetime, List[_ProductSnapshot]]:
        now = self.clock.now()
        window = self.settings.analytics_window_days
        start = now - timedelta(days=window)

        products = (
            await db.execute(select(Product).options(selectinload(Product.category)).order_by(Product.sku.asc()))
        ).scalars().all()

        if location_id is not None:
            res = await db.execute(select(ProductStock).where(ProductStock.location_id == location_id))
            current = {s.product_id: int(s.quantity) for s in res.scalars().all()}
        else:
            current = {p.id: int(p.quantity) for p in products}

        res = await db.execute(
            select(StockMovement)
            .where(StockMovement.created_at >= start)
            .order_by(StockMovement.created_at.asc(), StockMovement.sequence.asc(), StockMovement.id.asc())
        )
        deltas: Dict[UUID, List[Tuple[datetime, int]]] = {}
        units_out: Dict[UUID, int] = {}
        for mv in res.scalars().all():
            if location_id is not None:
                delta = mv.location_deltas().get(location_id, 0)
            else:
                delta = mv.aggregate_delta()
            if delta:
                deltas.setdefault(mv.product_id, []).append((mv.created_at, delta))
            if mv.type == MovementType.OUT and (location_id is None or mv.from_location_id == location_id):
                units_out[mv.product_id] = units_out.get(mv.product_id, 0) + mv.quantity

        snapshots = []
        for p in products:
            qty = current.get(p.id, 0)
            snapshots.append(
                _ProductSnapshot(
                    product=p,
                    current=qty,
                    units_out=units_out.get(p.id, 0),
                    levels=daily_levels(qty, deltas.get(p.id, []), start, window),
                )
            )
        return now, snapshots

    def _alerts(self, snapshots: List[_ProductSnapshot]) -> List[dict]:
        window = self.settings.analytics_window_days
        alerts = []
        for snap in snapshots:
            p = snap.product
            if not is_low_stock(snap.current, p.reorder_threshold):
                continue
            alerts.append(
                {
                    "product_id": p.id,
                    "sku": p.sku,
                    "name": p.name,
                    "current_stock": snap.current,
                    "reorder_threshold": int(p.reorder_threshold),
                    "days_until_stockout": days_until_stockout(snap.current, snap.units_out, window),
                }
            )
        # Known estimates first (soonest first), then the unknowns
        alerts.sort(
            key=lambda a: (
                a["days_until_stockout"] == UNKNOWN,
                0 if a["days_until_stockout"] == UNKNOWN else a["days_until_stockout"],
                a["sku"],
            )
        )
        return alerts

    async def _compute_alerts(self) -> List[dict]:
        async with self.session_maker() as db:
            _now, snapshots = await self._snapshot(db, None)
        return self._alerts(snapshots)

    async def _compute_inventory(self, location_id: Optional[UUID]) -> dict:
        window = self.settings.analytics_window_days
        async with self.session_maker() as db:
            if location_id is not None and await db.get(Location, location_id) is None:
                raise NotFoundError("Location", location_id)
            now, snapshots = await self._snapshot(db, location_id)

        total_value = Decimal("0")
        total_out = 0
        total_avg = 0.0
        moving = []
        categories: Dict[UUID, dict] = {}

        for snap in snapshots:
            p = snap.product
            value = Decimal(snap.current) * Decimal(p.cost or 0)
            total_value += value
            total_out += snap.units_out
            total_avg += snap.average_level
            rate = turnover_rate(snap.units_out, snap.average_level)

            if snap.units_out > 0:
                moving.append(
                    {
                        "product_id": p.id,
                        "sku": p.sku,
                        "name": p.name,
                        "units_out": snap.units_out,
                        "average_stock_level": round(snap.average_level, 4),
                        "turnover_rate": round(rate, 4),
                        "days_of_inventory": round(window / rate, 2) if rate > 0 else UNKNOWN,
                    }
                )

            if p.category is not None:
                cat = categories.setdefault(
                    p.category.id,
                    {
                        "category_id": p.category.id,
                        "category_name": p.category.name,
                        "product_count": 0,
                        "total_value": Decimal("0"),
                        "units_out": 0,
                        "_avg": 0.0,
                    },
                )
                cat["product_count"] += 1
                cat["total_value"] += value
                cat["units_out"] += snap.units_out
                cat["_avg"] += snap.average_level

        moving.sort(key=lambda m: (-m["turnover_rate"], m["sku"]))

        category_rows = []
        for cat in sorted(categories.values(), key=lambda c: c["category_name"]):
            avg = cat.pop("_avg")
            cat["total_value"] = float(cat["total_value"])
            cat["turnover_rate"] = round(turnover_rate(cat["units_out"], avg), 4)
            category_rows.append(cat)

        alerts = self._alerts(snapshots)
        result = {
            "as_of": now,
            "location_id": location_id,
            "window_days": window,
            "total_products": len(snapshots),
            "total_stock_value": float(total_value),
            "low_stock_items": len(alerts),
            "stock_turnover": round(turnover_rate(total_out, total_avg), 4),
            "top_moving_products": moving[:TOP_MOVING_LIMIT],
            "category_performance": category_rows,
            "stock_alerts": alerts,
        }
        logger.debug("inventory analytics computed location=%s products=%d", location_id, len(snapshots))
        return result

    async def _compute_forecast(self, periods: int, product_id: Optional[UUID]) -> dict:
        history_months = self.settings.forecast_history_months
        current_month = month_start(self.clock.now())
        start = add_months(current_month, -history_months)

        stmt = select(StockMovement.created_at, StockMovement.quantity).where(
            StockMovement.type == MovementType.OUT,
            StockMovement.created_at >= start,
            StockMovement.created_at < current_month,
        )
        async with self.session_maker() as db:
            if product_id is not None:
                if await db.get(Product, product_id) is None:
                    raise NotFoundError("Product", product_id)
                stmt = stmt.where(StockMovement.product_id == product_id)
            rows = (await db.execute(stmt)).all()

        history = monthly_totals(((ts, qty) for ts, qty in rows), start, history_months)
        slope, intercept = linear_trend(history)
        points = linear_forecast(history, periods, self.settings.forecast_band_ratio)

        return {
            "period": "monthly",
            "metric": "units_out",
            "method": "linear_regression",
            "product_id": product_id,
            "history": [
                {"period": month_label(add_months(start, i)), "value": v} for i, v in enumerate(history)
            ],
            "slope": round(slope, 4),
            "intercept": round(intercept, 4),
            "band_half_width": round(self.settings.forecast_band_ratio * average(history), 4),
            "predictions": [
                {
                    "period": month_label(add_months(current_month, pt.index)),
                    "value": pt.value,
                    "lower": pt.lower,
                    "upper": pt.upper,
                }
                for pt in points
            ],
        }
