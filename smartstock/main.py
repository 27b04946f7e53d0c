import logging
import traceback
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from smartstock.api import cart, inventory, smart_inventory
from smartstock.config import settings
from smartstock.database import SessionLocal, init_db
from smartstock.errors import InsufficientStockError, LockAcquisitionError
from smartstock.services.estimator import get_estimator
from smartstock.services.inventory_service import seed_inventory
from smartstock.services.scheduler import InventoryScheduler

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    async with SessionLocal() as db:
        seeded = await seed_inventory(db)
    logger.info("Inventory seed: %d created, %d existing", seeded["created"], seeded["existing"])

    scheduler = None
    if settings.SCHEDULER_ENABLED:
        scheduler = InventoryScheduler(SessionLocal, estimator=get_estimator())
        scheduler.initialize()
    app.state.scheduler = scheduler
    yield
    if scheduler:
        await scheduler.stop_all()
        await scheduler.drain()


app = FastAPI(
    title=settings.APP_NAME,
    description="Inventory ledger, stock reservations, demand forecasting and auto-reorder",
    version="1.0.0",
    lifespan=lifespan,
)


@app.exception_handler(LockAcquisitionError)
async def lock_exception_handler(request: Request, exc: LockAcquisitionError):
    logger.warning("Lock contention on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=503, content={"detail": "Inventory is busy, please try again"})


@app.exception_handler(InsufficientStockError)
async def insufficient_stock_handler(request: Request, exc: InsufficientStockError):
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Return JSON for unhandled exceptions so clients can parse the error."""
    logger.error("Unhandled error: %s\n%s", exc, traceback.format_exc())
    return JSONResponse(status_code=500, content={"detail": str(exc)})


app.include_router(inventory.router, prefix="/api/v1")
app.include_router(smart_inventory.router, prefix="/api/v1")
app.include_router(cart.router, prefix="/api/v1")


@app.get("/health")
async def health():
    return {"status": "ok"}
