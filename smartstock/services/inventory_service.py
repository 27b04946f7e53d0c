import logging
import math

from sqlalchemy import and_, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from smartstock.config import settings
from smartstock.errors import NotFoundError
from smartstock.models.inventory import InventoryRecord
from smartstock.models.product import Product
from smartstock.services import notification_service
from smartstock.services.inventory_lock import inventory_locks

logger = logging.getLogger(__name__)


def _check_quantity(quantity: int) -> None:
    if quantity <= 0:
        raise ValueError("quantity must be > 0")


# --- Ledger ---

async def get_inventory(db: AsyncSession, product_id: str) -> InventoryRecord | None:
    result = await db.execute(
        select(InventoryRecord)
        .where(InventoryRecord.product_id == product_id)
        .execution_options(populate_existing=True)
    )
    return result.scalars().first()


async def require_inventory(db: AsyncSession, product_id: str) -> InventoryRecord:
    inventory = await get_inventory(db, product_id)
    if not inventory:
        raise NotFoundError(product_id)
    return inventory


async def get_product(db: AsyncSession, product_id: str) -> Product | None:
    result = await db.execute(select(Product).where(Product.id == product_id))
    return result.scalars().first()


async def create_inventory(
    db: AsyncSession, product_id: str, initial_stock: int, threshold: int = settings.DEFAULT_THRESHOLD
) -> InventoryRecord:
    if initial_stock < 0 or threshold < 0:
        raise ValueError("initial_stock and threshold must be >= 0")
    inventory = InventoryRecord(
        product_id=product_id,
        current_stock=initial_stock,
        reserved_stock=0,
        threshold=threshold,
        lead_time=settings.DEFAULT_LEAD_TIME_DAYS,
    )
    inventory.recalculate_available()
    db.add(inventory)
    await db.commit()
    logger.info("Inventory record created for product: %s", product_id)
    return await require_inventory(db, product_id)


async def sync_product_to_inventory(db: AsyncSession, product: Product) -> InventoryRecord:
    """Make sure a product has a ledger record, seeding it from the product's stock."""
    existing = await get_inventory(db, product.id)
    if existing:
        return existing
    return await create_inventory(db, product.id, max(product.current_stock or 0, 0))


async def seed_inventory(db: AsyncSession) -> dict:
    """Create ledger records for every product that lacks one."""
    result = await db.execute(
        select(Product)
        .outerjoin(InventoryRecord, InventoryRecord.product_id == Product.id)
        .where(InventoryRecord.id.is_(None))
    )
    missing = result.scalars().all()
    existing = await db.scalar(select(func.count(InventoryRecord.id)))

    for product in missing:
        await create_inventory(db, product.id, max(product.current_stock or 0, 0))

    if missing:
        logger.info("Seeded %d inventory records (%d already present)", len(missing), existing)
    return {"created": len(missing), "existing": int(existing or 0)}


async def list_inventory(db: AsyncSession, page: int = 1, limit: int = 10) -> dict:
    page = max(page, 1)
    limit = max(limit, 1)
    total_count = int(await db.scalar(select(func.count(InventoryRecord.id))) or 0)
    result = await db.execute(
        select(InventoryRecord)
        .order_by(InventoryRecord.available_stock.asc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return {
        "data": result.scalars().all(),
        "total_count": total_count,
        "total_pages": math.ceil(total_count / limit),
        "current_page": page,
        "limit": limit,
    }


async def get_low_stock(db: AsyncSession) -> list[InventoryRecord]:
    result = await db.execute(
        select(InventoryRecord)
        .where(InventoryRecord.available_stock <= InventoryRecord.threshold)
        .order_by(InventoryRecord.available_stock.asc())
    )
    return list(result.scalars().all())


async def update_stock(
    db: AsyncSession, product_id: str, current_stock: int | None = None, threshold: int | None = None
) -> InventoryRecord:
    if current_stock is not None and current_stock < 0:
        raise ValueError("current_stock must be >= 0")
    if threshold is not None and threshold < 0:
        raise ValueError("threshold must be >= 0")

    async with inventory_locks.hold(product_id):
        inventory = await require_inventory(db, product_id)
        if current_stock is not None:
            if current_stock < inventory.reserved_stock:
                raise ValueError(
                    f"current_stock {current_stock} is below reserved stock {inventory.reserved_stock}"
                )
            inventory.current_stock = current_stock
            inventory.recalculate_available()
        if threshold is not None:
            inventory.threshold = threshold
        await db.commit()
    return await require_inventory(db, product_id)


async def inventory_overview(db: AsyncSession) -> dict:
    total = int(await db.scalar(select(func.count(InventoryRecord.id))) or 0)
    out_of_stock = int(
        await db.scalar(select(func.count(InventoryRecord.id)).where(InventoryRecord.available_stock <= 0)) or 0
    )
    low_stock = int(
        await db.scalar(
            select(func.count(InventoryRecord.id)).where(
                and_(
                    InventoryRecord.available_stock > 0,
                    InventoryRecord.available_stock <= InventoryRecord.threshold,
                )
            )
        )
        or 0
    )
    in_stock = total - out_of_stock - low_stock

    result = await db.execute(select(InventoryRecord).order_by(InventoryRecord.available_stock.asc()).limit(5))
    critical = result.scalars().all()

    return {
        "summary": {
            "total_products": total,
            "out_of_stock": out_of_stock,
            "low_stock": low_stock,
            "in_stock": in_stock,
            "stock_percentage": round(in_stock / total * 100, 2) if total else 0.0,
        },
        "critical_items": [
            {
                "product_id": inv.product_id,
                "product_name": inv.product.title if inv.product else "",
                "current_stock": inv.current_stock,
                "reserved_stock": inv.reserved_stock,
                "available_stock": inv.available_stock,
                "threshold": inv.threshold,
                "status": inv.stock_status,
            }
            for inv in critical
        ],
    }


async def send_low_stock_alert(db: AsyncSession) -> int:
    """E-mail every record at or below its threshold. Returns how many were listed."""
    items = await get_low_stock(db)
    if not items:
        return 0

    rows = "".join(
        f"<tr><td>{inv.product.title if inv.product else inv.product_id}</td>"
        f"<td>{inv.current_stock}</td><td>{inv.reserved_stock}</td>"
        f"<td>{inv.available_stock}</td><td>{inv.threshold}</td><td>{inv.stock_status}</td></tr>"
        for inv in items
    )
    html = (
        "<h1>Inventory Alert</h1>"
        "<p>The following products have reached or fallen below their inventory threshold levels:</p>"
        '<table border="1" cellpadding="5" cellspacing="0">'
        "<thead><tr><th>Product</th><th>Current Stock</th><th>Reserved Stock</th>"
        "<th>Available Stock</th><th>Threshold</th><th>Status</th></tr></thead>"
        f"<tbody>{rows}</tbody></table>"
        "<p>Please take action to increase the production or inventory of these products.</p>"
    )
    await notification_service.send_email("Inventory Alert: Products Below Threshold", html)
    logger.info("Inventory alert prepared for %d products", len(items))
    return len(items)


# --- Reservations ---

async def reserve_stock(db: AsyncSession, product_id: str, quantity: int) -> bool:
    """Hold ``quantity`` units against a cart. False when missing or not enough available."""
    _check_quantity(quantity)
    async with inventory_locks.hold(product_id):
        inventory = await get_inventory(db, product_id)
        if not inventory:
            logger.error("Inventory not found for product ID: %s", product_id)
            return False
        if inventory.available_stock < quantity:
            return False

        inventory.reserved_stock += quantity
        inventory.recalculate_available()
        await db.commit()
        return True


async def release_stock(db: AsyncSession, product_id: str, quantity: int) -> bool:
    _check_quantity(quantity)
    async with inventory_locks.hold(product_id):
        inventory = await get_inventory(db, product_id)
        if not inventory:
            logger.error("Inventory not found for product ID: %s", product_id)
            return False

        # Floor at zero so a double release cannot drive the counter negative
        inventory.reserved_stock = max(0, inventory.reserved_stock - quantity)
        inventory.recalculate_available()
        await db.commit()
        return True


def apply_deduction(inventory: InventoryRecord, quantity: int) -> None:
    """Take sold units out of both stock and reservations. Caller holds the lock and commits."""
    _check_quantity(quantity)
    inventory.current_stock = max(0, inventory.current_stock - quantity)
    inventory.reserved_stock = max(0, inventory.reserved_stock - quantity)
    inventory.recalculate_available()


async def confirm_deduction(db: AsyncSession, product_id: str, quantity: int) -> bool:
    """Turn a reservation into a sale at order placement."""
    _check_quantity(quantity)
    async with inventory_locks.hold(product_id):
        inventory = await get_inventory(db, product_id)
        if not inventory:
            logger.error("Inventory not found for product ID: %s", product_id)
            return False

        apply_deduction(inventory, quantity)
        await db.commit()
        return True
