import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from core.config import settings
from core.errors import (
    ConfigurationError,
    ConflictError,
    InsufficientStockError,
    InventoryError,
    NotFoundError,
    SameLocationError,
    ValidationError,
)
from core.logging_setup import setup_logging
from db.database import build_engine, create_db_and_tables
from routers.analytics import router as analytics_router
from routers.catalog import router as catalog_router
from routers.inventory import router as inventory_router
from routers.locations import router as locations_router
from routers.orders import router as orders_router
from services.container import InventoryServices, build_services

logger = logging.getLogger(__name__)

# Most specific first
ERROR_STATUS = [
    (SameLocationError, 400),
    (ValidationError, 422),
    (NotFoundError, 404),
    (InsufficientStockError, 409),
    (ConflictError, 409),
    (ConfigurationError, 500),
]


def status_for(exc: InventoryError) -> int:
    for cls, code in ERROR_STATUS:
        if isinstance(exc, cls):
            return code
    return 500


async def inventory_error_handler(request: Request, exc: InventoryError):
    code = status_for(exc)
    if code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=code, content=exc.to_dict())


async def database_error_handler(request: Request, exc: SQLAlchemyError):
    logger.exception("%s %s database failure", request.method, request.url.path, exc_info=exc)
    return JSONResponse(
        status_code=500,
        content={"code": "infrastructure_error", "detail": "Database error", "details": {}},
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    if getattr(app.state, "services", None) is not None:
        # Injected by the caller (tests); it owns the engine
        yield
        return

    setup_logging(settings)
    engine = build_engine()
    await create_db_and_tables(engine)
    services = build_services(engine, settings=settings)
    app.state.services = services

    stop = asyncio.Event()
    refresher = asyncio.create_task(services.analytics_refresh.run_forever(stop))
    logger.info("inventory service started (location mode: %s)", settings.location_mode)
    try:
        yield
    finally:
        stop.set()
        await refresher
        await services.notifier.drain()
        await engine.dispose()
        logger.info("inventory service stopped")


def create_app(services: Optional[InventoryServices] = None) -> FastAPI:
    app = FastAPI(
        title="Inventory Ledger API",
        description="Multi-location stock ledger, transfers, order fulfillment and analytics",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(InventoryError, inventory_error_handler)
    app.add_exception_handler(SQLAlchemyError, database_error_handler)

    app.include_router(catalog_router, prefix="/catalog", tags=["catalog"])
    app.include_router(locations_router, prefix="/locations", tags=["locations"])
    app.include_router(inventory_router, prefix="/inventory", tags=["inventory"])
    app.include_router(orders_router, prefix="/orders", tags=["orders"])
    app.include_router(analytics_router, prefix="/analytics", tags=["analytics"])
    return app


app = create_app()

if __name__ == "__main__":
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
