"""
Shared fixtures.

Every test gets its own file-backed SQLite database (aiosqlite, NullPool so
concurrent tasks really use separate connections), a ManualClock starting at
2025-01-01 UTC and a fully wired service container whose notifier records
every delivered event.
"""

from decimal import Decimal
from uuid import uuid4

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.pool import NullPool

from core.clock import ManualClock
from core.config import Settings
from db.database import build_engine, create_db_and_tables
from db.inventory.movement import MovementType
from services.container import build_services
from services.ledger import MovementRequest
from services.notifications import Notifier


class RecordingSink:
    def __init__(self):
        self.events = []

    async def publish(self, event) -> None:
        self.events.append(event)

    def of_type(self, cls):
        return [e for e in self.events if isinstance(e, cls)]


def make_settings(database_url: str, **overrides) -> Settings:
    values = dict(
        database_url=database_url,
        database_echo=False,
        location_mode="multi",
        default_location_id=None,
        tx_timeout_seconds=30.0,
        tx_max_retries=200,
        analytics_cache_ttl_seconds=300,
        analytics_window_days=30,
        analytics_refresh_seconds=60,
        forecast_history_months=6,
        forecast_band_ratio=0.2,
        forecast_max_periods=24,
    )
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def database_url(tmp_path):
    return f"sqlite+aiosqlite:///{tmp_path / 'inventory.db'}"


@pytest.fixture
def settings(database_url):
    return make_settings(database_url)


@pytest.fixture
def settings_factory(database_url):
    def _factory(**overrides):
        return make_settings(database_url, **overrides)

    return _factory


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
async def engine(database_url):
    engine = build_engine(database_url, echo=False, poolclass=NullPool, connect_args={"timeout": 30})

    # SQLite leaves foreign keys off unless asked; PostgreSQL always enforces them
    @event.listens_for(engine.sync_engine, "connect")
    def _enable_foreign_keys(dbapi_connection, _record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    await create_db_and_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
async def services(engine, settings, clock, sink):
    svc = build_services(engine, settings=settings, clock=clock, notifier=Notifier([sink]))
    yield svc
    await svc.notifier.drain()


@pytest.fixture
def actor_id():
    return uuid4()


@pytest.fixture
async def warehouse(services):
    return await services.locations.create_location("Warehouse")


@pytest.fixture
async def store(services):
    return await services.locations.create_location("Store")


@pytest.fixture
async def product(services):
    return await services.catalog.create_product(
        name="Widget",
        sku="WID-001",
        price=Decimal("9.99"),
        cost=Decimal("4.00"),
        reorder_threshold=5,
    )


@pytest.fixture
def stock_in(services, actor_id):
    async def _stock_in(product, location, quantity):
        return await services.ledger.apply_movement(
            MovementRequest(
                product_id=product.id,
                type=MovementType.IN,
                quantity=quantity,
                actor_id=actor_id,
                to_location_id=location.id,
            )
        )

    return _stock_in


@pytest.fixture
def stock_out(services, actor_id):
    async def _stock_out(product, location, quantity):
        return await services.ledger.apply_movement(
            MovementRequest(
                product_id=product.id,
                type=MovementType.OUT,
                quantity=quantity,
                actor_id=actor_id,
                from_location_id=location.id,
            )
        )

    return _stock_out


@pytest.fixture
async def client(services, actor_id):
    from main import create_app

    app = create_app(services)
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        headers={"X-Actor-Id": str(actor_id)},
    ) as ac:
        yield ac
