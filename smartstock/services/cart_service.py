"""Cart and checkout flow as seen by the ledger.

Every cart mutation moves reserved stock first and touches the cart line
second; checkout turns the reservations into deductions.
"""

import logging
import uuid

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from smartstock.database import utcnow
from smartstock.errors import InsufficientStockError, NotFoundError
from smartstock.models.cart import CartItem
from smartstock.models.sales import ProductDailyMetric, SalesAction, SalesLog
from smartstock.services.inventory_lock import inventory_locks
from smartstock.services.inventory_service import (
    apply_deduction,
    get_inventory,
    get_product,
    release_stock,
    require_inventory,
    reserve_stock,
)
from smartstock.services.inventory_sync import record_sales_history

logger = logging.getLogger(__name__)


async def get_cart(db: AsyncSession, user_id: str) -> list[CartItem]:
    result = await db.execute(
        select(CartItem).where(CartItem.user_id == user_id).order_by(CartItem.created_at, CartItem.id)
    )
    return list(result.scalars().all())


async def get_cart_item(db: AsyncSession, user_id: str, product_id: str) -> CartItem | None:
    result = await db.execute(
        select(CartItem).where(CartItem.user_id == user_id, CartItem.product_id == product_id)
    )
    return result.scalars().first()


async def _reserve_or_raise(db: AsyncSession, product_id: str, quantity: int) -> None:
    if await reserve_stock(db, product_id, quantity):
        return
    inventory = await get_inventory(db, product_id)
    raise InsufficientStockError(product_id, quantity, inventory.available_stock if inventory else None)


async def add_to_cart(db: AsyncSession, user_id: str, product_id: str, quantity: int = 1) -> CartItem:
    if quantity <= 0:
        raise ValueError("quantity must be > 0")
    await require_inventory(db, product_id)
    await _reserve_or_raise(db, product_id, quantity)

    try:
        item = await get_cart_item(db, user_id, product_id)
        if item:
            item.quantity += quantity
        else:
            item = CartItem(user_id=user_id, product_id=product_id, quantity=quantity)
            db.add(item)
        db.add(SalesLog(user_id=user_id, product_id=product_id, action=SalesAction.ADDED_TO_CART, quantity=quantity))
        await db.commit()
    except Exception:
        await db.rollback()
        await release_stock(db, product_id, quantity)
        raise
    return item


async def update_cart_quantity(db: AsyncSession, user_id: str, product_id: str, quantity: int) -> CartItem | None:
    """Set a line's quantity. Zero removes the line and returns None."""
    if quantity < 0:
        raise ValueError("quantity must be >= 0")
    item = await get_cart_item(db, user_id, product_id)
    if not item:
        raise NotFoundError(product_id, "Cart item")
    if quantity == 0:
        await remove_from_cart(db, user_id, product_id)
        return None

    delta = quantity - item.quantity
    if delta > 0:
        await _reserve_or_raise(db, product_id, delta)
    elif delta < 0:
        await release_stock(db, product_id, -delta)

    item.quantity = quantity
    await db.commit()
    return item


async def remove_from_cart(db: AsyncSession, user_id: str, product_id: str) -> None:
    item = await get_cart_item(db, user_id, product_id)
    if not item:
        raise NotFoundError(product_id, "Cart item")
    await release_stock(db, product_id, item.quantity)
    await db.delete(item)
    await db.commit()


async def _bump_daily_metric(db: AsyncSession, product_id: str, quantity: int, revenue: float) -> None:
    today = utcnow().date()
    result = await db.execute(
        select(ProductDailyMetric).where(ProductDailyMetric.product_id == product_id, ProductDailyMetric.day == today)
    )
    metric = result.scalars().first()
    if not metric:
        metric = ProductDailyMetric(
            product_id=product_id, day=today, views=0, added_to_cart=0, purchases=0, total_sold=0, revenue=0.0
        )
        db.add(metric)
    metric.purchases += 1
    metric.total_sold += quantity
    metric.revenue = round(metric.revenue + revenue, 2)


async def place_order(db: AsyncSession, user_id: str) -> dict:
    """Check out a cart line by line.

    Each line's deduction, sales rows and removal from the cart land in one
    commit, so a failed checkout leaves only the unsold lines behind and can
    simply be retried.
    """
    lines = await get_cart(db, user_id)
    if not lines:
        raise ValueError("Cart is empty")
    pending = [(line.id, line.product_id, line.quantity) for line in lines]
    for _, product_id, _ in pending:
        await require_inventory(db, product_id)

    order_id = str(uuid.uuid4())
    items = []
    total_price = 0.0
    for line_id, product_id, quantity in pending:
        product = await get_product(db, product_id)
        unit_price = product.price * (1 - (product.discount or 0) / 100) if product else 0.0
        line_total = round(unit_price * quantity, 2)

        try:
            async with inventory_locks.hold(product_id):
                inventory = await require_inventory(db, product_id)
                apply_deduction(inventory, quantity)
                db.add(
                    SalesLog(
                        user_id=user_id,
                        product_id=product_id,
                        order_id=order_id,
                        action=SalesAction.PURCHASED,
                        quantity=quantity,
                        total_price=line_total,
                    )
                )
                await _bump_daily_metric(db, product_id, quantity, line_total)
                await db.execute(delete(CartItem).where(CartItem.id == line_id))
                await db.commit()
        except Exception:
            await db.rollback()
            logger.warning(
                "Order %s for %s stopped at product %s after %d lines", order_id, user_id, product_id, len(items)
            )
            raise

        try:
            await record_sales_history(db, product_id, quantity)
        except Exception:
            logger.exception("Could not record sales history for product %s", product_id)
            await db.rollback()

        items.append({"product_id": product_id, "quantity": quantity, "total_price": line_total})
        total_price += line_total

    logger.info("Order %s placed by %s with %d lines", order_id, user_id, len(items))
    return {"order_id": order_id, "items": items, "total_price": round(total_price, 2)}
