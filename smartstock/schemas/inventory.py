import json
from datetime import datetime
from enum import Enum as PyEnum

from pydantic import BaseModel, Field, field_validator


# --- Ledger schemas ---

class InventoryOut(BaseModel):
    id: str
    product_id: str
    current_stock: int
    reserved_stock: int
    available_stock: int
    threshold: int
    reorder_point: int
    optimal_order_quantity: int
    lead_time: int
    auto_reorder_enabled: bool
    last_reorder_date: datetime | None = None
    sales_velocity: float
    forecasted_demand: int
    seasonality: list[float] = []
    stock_status: str
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}

    @field_validator("seasonality", mode="before")
    @classmethod
    def parse_seasonality(cls, v):
        if isinstance(v, str):
            return json.loads(v)
        return v


class InventoryPage(BaseModel):
    data: list[InventoryOut]
    total_count: int
    total_pages: int
    current_page: int
    limit: int


class InventoryUpdate(BaseModel):
    product_id: str
    current_stock: int | None = Field(default=None, ge=0)
    threshold: int | None = Field(default=None, ge=0)


class StockMovement(BaseModel):
    product_id: str
    quantity: int = Field(gt=0)


# --- Forecasting schemas ---

class TrendDirection(str, PyEnum):
    INCREASING = "increasing"
    DECREASING = "decreasing"
    STABLE = "stable"


class SalesTrend(BaseModel):
    trend: TrendDirection = TrendDirection.STABLE
    change_rate: float = 0.0  # percent
    confidence: float = 0.0  # 0-1


class ReorderParameters(BaseModel):
    reorder_point: int
    optimal_order_quantity: int


class ForecastOut(BaseModel):
    product_id: str
    sales_velocity: float
    seasonality: list[float]
    trend: SalesTrend
    forecasted_demand: int
    reorder: ReorderParameters


# --- Auto-reorder schemas ---

class ReorderPriority(str, PyEnum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


REORDER_PRIORITY_RANK = {ReorderPriority.HIGH: 3, ReorderPriority.MEDIUM: 2, ReorderPriority.LOW: 1}


class ReorderRequest(BaseModel):
    product_id: str
    product_name: str
    current_stock: int
    available_stock: int
    reorder_point: int
    order_quantity: int
    priority: ReorderPriority


class AutoReorderToggle(BaseModel):
    enabled: bool


class ReorderParametersUpdate(BaseModel):
    reorder_point: int = Field(ge=0)
    order_quantity: int = Field(ge=0)
    lead_time: int | None = Field(default=None, ge=1)


# --- Reconciliation / sellout schemas ---

class ReconcileResult(BaseModel):
    product_id: str
    previous_stock: int
    previous_reserved: int
    previous_available: int
    current_stock: int
    reserved_stock: int
    available_stock: int
    was_corrected: bool


class ValidationSummary(BaseModel):
    processed: int
    corrected: int


class RiskPriority(str, PyEnum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class ProductAtRisk(BaseModel):
    product_id: str
    product_name: str
    available_stock: int
    forecasted_demand: int
    days_until_stockout: int
    category: str
    priority: RiskPriority
