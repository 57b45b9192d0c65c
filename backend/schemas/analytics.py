from datetime import datetime
from typing import List, Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel

# A float estimate, or the literal "unknown" when nothing moved out
Estimate = Union[float, Literal["unknown"]]


class StockAlertRead(BaseModel):
    product_id: UUID
    sku: str
    name: str
    current_stock: int
    reorder_threshold: int
    days_until_stockout: Estimate


class MovingProductRead(BaseModel):
    product_id: UUID
    sku: str
    name: str
    units_out: int
    average_stock_level: float
    turnover_rate: float
    days_of_inventory: Estimate


class CategoryPerformanceRead(BaseModel):
    category_id: UUID
    category_name: str
    product_count: int
    total_value: float
    units_out: int
    turnover_rate: float


class InventoryAnalyticsRead(BaseModel):
    as_of: datetime
    location_id: Optional[UUID] = None
    window_days: int
    total_products: int
    total_stock_value: float
    low_stock_items: int
    stock_turnover: float
    top_moving_products: List[MovingProductRead]
    category_performance: List[CategoryPerformanceRead]
    stock_alerts: List[StockAlertRead]


class MonthValue(BaseModel):
    period: str
    value: float


class ForecastPointRead(BaseModel):
    period: str
    value: float
    lower: float
    upper: float


class ForecastRead(BaseModel):
    period: Literal["monthly"]
    metric: str
    method: str
    product_id: Optional[UUID] = None
    history: List[MonthValue]
    slope: float
    intercept: float
    band_half_width: float
    predictions: List[ForecastPointRead]
