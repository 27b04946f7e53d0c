import logging
from datetime import timedelta
from html import escape

from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from smartstock.config import settings
from smartstock.database import utcnow
from smartstock.models.inventory import InventoryRecord
from smartstock.schemas.inventory import REORDER_PRIORITY_RANK, ReorderPriority, ReorderRequest
from smartstock.services import notification_service
from smartstock.services.demand_forecaster import calculate_reorder_parameters
from smartstock.services.inventory_lock import inventory_locks
from smartstock.services.inventory_service import require_inventory

logger = logging.getLogger(__name__)


def reorder_priority(available_stock: int, reorder_point: int) -> ReorderPriority:
    if available_stock <= 0 or available_stock <= reorder_point * settings.HIGH_PRIORITY_RATIO:
        return ReorderPriority.HIGH
    if available_stock <= reorder_point * settings.MEDIUM_PRIORITY_RATIO:
        return ReorderPriority.MEDIUM
    return ReorderPriority.LOW


async def check_reorder_needs(db: AsyncSession) -> list[ReorderRequest]:
    """Auto-reorder products at or below their reorder point and out of cooldown."""
    result = await db.execute(
        select(InventoryRecord)
        .where(
            and_(
                InventoryRecord.auto_reorder_enabled.is_(True),
                InventoryRecord.available_stock <= InventoryRecord.reorder_point,
            )
        )
        .execution_options(populate_existing=True)
    )
    cooldown_start = utcnow() - timedelta(days=settings.REORDER_COOLDOWN_DAYS)

    requests = []
    for inv in result.scalars().all():
        if inv.last_reorder_date and inv.last_reorder_date > cooldown_start:
            continue
        if not inv.product:
            continue
        requests.append(
            ReorderRequest(
                product_id=inv.product_id,
                product_name=inv.product.title,
                current_stock=inv.current_stock,
                available_stock=inv.available_stock,
                reorder_point=inv.reorder_point,
                order_quantity=inv.optimal_order_quantity,
                priority=reorder_priority(inv.available_stock, inv.reorder_point),
            )
        )

    requests.sort(key=lambda r: REORDER_PRIORITY_RANK[r.priority], reverse=True)
    return requests


def build_reorder_email(requests: list[ReorderRequest]) -> str:
    sections = []
    for priority in (ReorderPriority.HIGH, ReorderPriority.MEDIUM, ReorderPriority.LOW):
        group = [r for r in requests if r.priority == priority]
        if not group:
            continue
        rows = "".join(
            f"<tr><td>{escape(r.product_name)}</td><td>{r.current_stock}</td><td>{r.available_stock}</td>"
            f"<td>{r.reorder_point}</td><td>{r.order_quantity}</td></tr>"
            for r in group
        )
        sections.append(
            f"<h3>{priority.value.capitalize()} Priority Reorders</h3>"
            '<table border="1" cellpadding="5" cellspacing="0">'
            "<thead><tr><th>Product</th><th>Current Stock</th><th>Available Stock</th>"
            "<th>Reorder Point</th><th>Order Quantity</th></tr></thead>"
            f"<tbody>{rows}</tbody></table>"
        )

    return (
        "<h2>Automatic Reorder Notification</h2>"
        "<p>The system has automatically identified the following products that need to be reordered:</p>"
        + "".join(sections)
        + f"<p><strong>Total products to reorder: {len(requests)}</strong></p>"
    )


async def _stamp_reorder(db: AsyncSession, product_id: str) -> None:
    async with inventory_locks.hold(product_id):
        inventory = await require_inventory(db, product_id)
        inventory.last_reorder_date = utcnow()
        await db.commit()


async def process_auto_reorders(db: AsyncSession) -> int:
    """Mark every pending reorder as placed and send one summary e-mail."""
    requests = await check_reorder_needs(db)
    if not requests:
        return 0

    placed = []
    for request in requests:
        try:
            await _stamp_reorder(db, request.product_id)
            placed.append(request)
        except Exception:
            logger.exception("Error processing reorder for product %s", request.product_id)
            await db.rollback()

    if placed:
        await notification_service.send_email(
            f"Smart Inventory: {len(placed)} Products Auto-Reordered",
            build_reorder_email(placed),
        )
    logger.info("Auto-reorder sweep placed %d of %d requests", len(placed), len(requests))
    return len(placed)


async def toggle_auto_reorder(db: AsyncSession, product_id: str, enabled: bool) -> InventoryRecord:
    inventory = await require_inventory(db, product_id)
    params = None
    if enabled and (not inventory.reorder_point or not inventory.optimal_order_quantity):
        params = await calculate_reorder_parameters(db, product_id)

    async with inventory_locks.hold(product_id):
        inventory = await require_inventory(db, product_id)
        if params:
            # the planner does not store its fallback values
            inventory.reorder_point = inventory.reorder_point or params.reorder_point
            inventory.optimal_order_quantity = inventory.optimal_order_quantity or params.optimal_order_quantity
        inventory.auto_reorder_enabled = enabled
        await db.commit()
    logger.info("Auto-reorder %s for product %s", "enabled" if enabled else "disabled", product_id)
    return await require_inventory(db, product_id)


async def update_reorder_parameters(
    db: AsyncSession,
    product_id: str,
    reorder_point: int,
    order_quantity: int,
    lead_time: int | None = None,
) -> InventoryRecord:
    if reorder_point < 0 or order_quantity < 0:
        raise ValueError("reorder_point and order_quantity must be >= 0")
    if lead_time is not None and lead_time < 1:
        raise ValueError("lead_time must be >= 1")

    async with inventory_locks.hold(product_id):
        inventory = await require_inventory(db, product_id)
        inventory.reorder_point = reorder_point
        inventory.optimal_order_quantity = order_quantity
        if lead_time is not None:
            inventory.lead_time = lead_time
        await db.commit()
    return await require_inventory(db, product_id)
