from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from schemas.analytics import ForecastRead, InventoryAnalyticsRead, StockAlertRead
from services.container import InventoryServices, get_services

router = APIRouter()


@router.get("/inventory", response_model=InventoryAnalyticsRead)
async def inventory_analytics(
    location_id: Optional[UUID] = None,
    services: InventoryServices = Depends(get_services),
):
    return await services.analytics.get_inventory_analytics(location_id)


@router.get("/alerts", response_model=List[StockAlertRead])
async def stock_alerts(services: InventoryServices = Depends(get_services)):
    return await services.analytics.get_stock_alerts()


@router.get("/forecast", response_model=ForecastRead)
async def forecast(
    periods: int = Query(12),
    product_id: Optional[UUID] = None,
    services: InventoryServices = Depends(get_services),
):
    # Range is checked by the engine so the error carries the configured maximum
    return await services.analytics.get_forecast(periods, product_id=product_id)


@router.post("/refresh", status_code=204)
async def refresh(services: InventoryServices = Depends(get_services)):
    await services.analytics.refresh()
