from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from smartstock.config import settings
from smartstock.database import get_db
from smartstock.errors import NotFoundError
from smartstock.schemas.inventory import (
    AutoReorderToggle,
    ForecastOut,
    InventoryOut,
    ProductAtRisk,
    ReconcileResult,
    ReorderParametersUpdate,
    ReorderRequest,
    ValidationSummary,
)
from smartstock.services import auto_reorder, demand_forecaster, inventory_sync, sellout_prevention
from smartstock.services.estimator import Estimator, get_estimator

router = APIRouter(prefix="/smart-inventory", tags=["Smart Inventory"])


@router.post("/forecast/{product_id}", response_model=ForecastOut)
async def forecast(
    product_id: str,
    db: AsyncSession = Depends(get_db),
    estimator: Estimator | None = Depends(get_estimator),
):
    try:
        return await demand_forecaster.forecast_product(db, product_id, estimator=estimator)
    except NotFoundError as e:
        raise HTTPException(404, str(e))


@router.get("/reorders/pending", response_model=list[ReorderRequest])
async def pending_reorders(db: AsyncSession = Depends(get_db)):
    return await auto_reorder.check_reorder_needs(db)


@router.post("/reorders/process")
async def process_reorders(db: AsyncSession = Depends(get_db)):
    return {"processed": await auto_reorder.process_auto_reorders(db)}


@router.post("/auto-reorder/{product_id}", response_model=InventoryOut)
async def toggle_auto_reorder(product_id: str, data: AutoReorderToggle, db: AsyncSession = Depends(get_db)):
    try:
        return await auto_reorder.toggle_auto_reorder(db, product_id, data.enabled)
    except NotFoundError as e:
        raise HTTPException(404, str(e))


@router.put("/reorder-parameters/{product_id}", response_model=InventoryOut)
async def update_reorder_parameters(
    product_id: str, data: ReorderParametersUpdate, db: AsyncSession = Depends(get_db)
):
    try:
        return await auto_reorder.update_reorder_parameters(
            db, product_id, data.reorder_point, data.order_quantity, lead_time=data.lead_time
        )
    except NotFoundError as e:
        raise HTTPException(404, str(e))
    except ValueError as e:
        raise HTTPException(400, str(e))


@router.post("/reconcile/{product_id}", response_model=ReconcileResult)
async def reconcile_product(product_id: str, db: AsyncSession = Depends(get_db)):
    try:
        return await inventory_sync.reconcile_inventory(db, product_id)
    except NotFoundError as e:
        raise HTTPException(404, str(e))


@router.post("/reconcile", response_model=ValidationSummary)
async def reconcile_all(db: AsyncSession = Depends(get_db)):
    return await inventory_sync.validate_all_inventory(db)


@router.get("/stockout-risks", response_model=list[ProductAtRisk])
async def stockout_risks(look_ahead_days: int = settings.STOCKOUT_LOOK_AHEAD_DAYS, db: AsyncSession = Depends(get_db)):
    return await sellout_prevention.check_stockout_risks(db, look_ahead_days)
