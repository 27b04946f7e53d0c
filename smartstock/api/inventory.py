import logging

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from smartstock.database import SessionLocal, get_db
from smartstock.errors import NotFoundError
from smartstock.schemas.inventory import InventoryOut, InventoryPage, InventoryUpdate, StockMovement
from smartstock.services import inventory_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/inventory", tags=["Inventory"])


async def _send_low_stock_alert():
    async with SessionLocal() as db:
        try:
            await inventory_service.send_low_stock_alert(db)
        except Exception:
            logger.exception("Low stock alert failed")


@router.get("", response_model=InventoryPage)
async def list_inventory(page: int = 1, limit: int = 10, db: AsyncSession = Depends(get_db)):
    return await inventory_service.list_inventory(db, page=page, limit=limit)


@router.get("/low-stock", response_model=list[InventoryOut])
async def low_stock(db: AsyncSession = Depends(get_db)):
    return await inventory_service.get_low_stock(db)


@router.get("/overview")
async def overview(db: AsyncSession = Depends(get_db)):
    return await inventory_service.inventory_overview(db)


@router.get("/product/{product_id}", response_model=InventoryOut)
async def get_product_inventory(product_id: str, db: AsyncSession = Depends(get_db)):
    inventory = await inventory_service.get_inventory(db, product_id)
    if not inventory:
        raise HTTPException(404, "Inventory not found")
    return inventory


@router.put("/update", response_model=InventoryOut)
async def update_inventory(data: InventoryUpdate, background_tasks: BackgroundTasks, db: AsyncSession = Depends(get_db)):
    try:
        inventory = await inventory_service.update_stock(
            db, data.product_id, current_stock=data.current_stock, threshold=data.threshold
        )
    except NotFoundError as e:
        raise HTTPException(404, str(e))
    except ValueError as e:
        raise HTTPException(400, str(e))
    background_tasks.add_task(_send_low_stock_alert)
    return inventory


async def _require(db: AsyncSession, product_id: str):
    try:
        return await inventory_service.require_inventory(db, product_id)
    except NotFoundError as e:
        raise HTTPException(404, str(e))


@router.post("/reserve", response_model=InventoryOut)
async def reserve(data: StockMovement, db: AsyncSession = Depends(get_db)):
    await _require(db, data.product_id)
    if not await inventory_service.reserve_stock(db, data.product_id, data.quantity):
        inventory = await _require(db, data.product_id)
        raise HTTPException(
            409,
            f"Insufficient stock for product {data.product_id}. "
            f"Requested: {data.quantity}, available: {inventory.available_stock}",
        )
    return await _require(db, data.product_id)


@router.post("/release", response_model=InventoryOut)
async def release(data: StockMovement, db: AsyncSession = Depends(get_db)):
    await _require(db, data.product_id)
    await inventory_service.release_stock(db, data.product_id, data.quantity)
    return await _require(db, data.product_id)


@router.post("/confirm", response_model=InventoryOut)
async def confirm(data: StockMovement, db: AsyncSession = Depends(get_db)):
    await _require(db, data.product_id)
    await inventory_service.confirm_deduction(db, data.product_id, data.quantity)
    return await _require(db, data.product_id)
