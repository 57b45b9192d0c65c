from dataclasses import dataclass
from typing import Optional

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from core.clock import Clock, SystemClock
from core.config import Settings, settings as default_settings
from db.database import build_session_maker
from services.analytics import AnalyticsEngine
from services.cache import TTLCache
from services.catalog import CatalogService
from services.fulfillment import FulfillmentEngine
from services.ledger import StockLedger
from services.locations import LocationRegistry
from services.notifications import LoggingSink, Notifier
from services.scheduler import ScheduledTask
from services.transfers import TransferEngine


@dataclass
class InventoryServices:
    settings: Settings
    clock: Clock
    session_maker: async_sessionmaker[AsyncSession]
    notifier: Notifier
    cache: TTLCache
    ledger: StockLedger
    transfers: TransferEngine
    fulfillment: FulfillmentEngine
    catalog: CatalogService
    locations: LocationRegistry
    analytics: AnalyticsEngine
    analytics_refresh: ScheduledTask


def build_services(
    engine: AsyncEngine,
    settings: Optional[Settings] = None,
    clock: Optional[Clock] = None,
    notifier: Optional[Notifier] = None,
) -> InventoryServices:
    settings = settings or default_settings
    clock = clock or SystemClock()
    session_maker = build_session_maker(engine)

    if notifier is None:
        notifier = Notifier()
        notifier.subscribe(LoggingSink())
    cache = TTLCache(clock, default_ttl=settings.analytics_cache_ttl_seconds)
    # Any committed stock change drops cached analytics
    notifier.subscribe(cache)

    ledger = StockLedger(session_maker, settings=settings, clock=clock, notifier=notifier)
    analytics = AnalyticsEngine(session_maker, settings=settings, clock=clock, cache=cache)

    return InventoryServices(
        settings=settings,
        clock=clock,
        session_maker=session_maker,
        notifier=notifier,
        cache=cache,
        ledger=ledger,
        transfers=TransferEngine(ledger),
        fulfillment=FulfillmentEngine(ledger),
        catalog=CatalogService(session_maker),
        locations=LocationRegistry(session_maker, ledger),
        analytics=analytics,
        analytics_refresh=ScheduledTask(
            "analytics-refresh",
            settings.analytics_refresh_seconds,
            analytics.refresh,
            clock,
        ),
    )


def get_services(request: Request) -> InventoryServices:
    return request.app.state.services
