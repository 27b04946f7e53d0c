"""Reconciliation of the ledger against open cart lines, plus sales history upkeep."""

import asyncio
import json
import logging
from datetime import datetime, timedelta

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from smartstock.config import settings
from smartstock.database import utcnow
from smartstock.models.cart import CartItem
from smartstock.models.inventory import InventoryRecord
from smartstock.schemas.inventory import ReconcileResult, ValidationSummary
from smartstock.services.inventory_lock import inventory_locks
from smartstock.services.inventory_service import require_inventory

logger = logging.getLogger(__name__)


async def calculate_reserved_quantity(db: AsyncSession, product_id: str) -> int:
    total = await db.scalar(
        select(func.coalesce(func.sum(CartItem.quantity), 0)).where(CartItem.product_id == product_id)
    )
    return int(total or 0)


async def reconcile_inventory(db: AsyncSession, product_id: str) -> ReconcileResult:
    async with inventory_locks.hold(product_id):
        inventory = await require_inventory(db, product_id)
        previous_stock = inventory.current_stock
        previous_reserved = inventory.reserved_stock
        previous_available = inventory.available_stock

        reserved = await calculate_reserved_quantity(db, product_id)
        was_corrected = False
        if inventory.reserved_stock != reserved:
            inventory.reserved_stock = reserved
            was_corrected = True

        available = inventory.current_stock - inventory.reserved_stock
        if inventory.available_stock != available:
            inventory.available_stock = available
            was_corrected = True

        if was_corrected:
            await db.commit()
            logger.info(
                "Inventory reconciled for product %s. Current: %d, Reserved: %d -> %d, Available: %d -> %d",
                product_id, inventory.current_stock, previous_reserved, inventory.reserved_stock,
                previous_available, inventory.available_stock,
            )

        return ReconcileResult(
            product_id=product_id,
            previous_stock=previous_stock,
            previous_reserved=previous_reserved,
            previous_available=previous_available,
            current_stock=inventory.current_stock,
            reserved_stock=inventory.reserved_stock,
            available_stock=inventory.available_stock,
            was_corrected=was_corrected,
        )


async def validate_all_inventory(
    db: AsyncSession,
    batch_size: int = settings.BATCH_SIZE,
    pause: float = settings.RECONCILE_BATCH_PAUSE_SECONDS,
) -> ValidationSummary:
    result = await db.execute(select(InventoryRecord.product_id).order_by(InventoryRecord.product_id))
    product_ids = list(result.scalars().all())

    corrected = 0
    for start in range(0, len(product_ids), batch_size):
        for product_id in product_ids[start:start + batch_size]:
            try:
                if (await reconcile_inventory(db, product_id)).was_corrected:
                    corrected += 1
            except Exception:
                logger.exception("Error reconciling inventory for product %s", product_id)
                await db.rollback()
        if start + batch_size < len(product_ids):
            await asyncio.sleep(pause)

    logger.info("Inventory validation: %d processed, %d corrected", len(product_ids), corrected)
    return ValidationSummary(processed=len(product_ids), corrected=corrected)


def _prune_history(entries: list[dict], now: datetime) -> list[dict]:
    cutoff = now - timedelta(days=settings.SALES_HISTORY_RETENTION_DAYS)
    kept = [e for e in entries if datetime.fromisoformat(e["date"]) >= cutoff]
    kept.sort(key=lambda e: datetime.fromisoformat(e["date"]))
    return kept


async def record_sales_history(
    db: AsyncSession, product_id: str, quantity: int, sold_at: datetime | None = None
) -> list[dict]:
    """Append a sale to the product's rolling history and drop expired entries."""
    if quantity <= 0:
        raise ValueError("quantity must be > 0")
    sold_at = sold_at or utcnow()

    async with inventory_locks.hold(product_id):
        inventory = await require_inventory(db, product_id)
        entries = inventory.sales_history_entries
        entries.append({"date": sold_at.isoformat(), "quantity": quantity})
        entries = _prune_history(entries, utcnow())
        inventory.sales_history = json.dumps(entries)
        await db.commit()
        return entries


async def run_data_maintenance(db: AsyncSession) -> int:
    """Trim every ledger's sales history to the retention window. Returns records touched."""
    result = await db.execute(select(InventoryRecord.product_id).order_by(InventoryRecord.product_id))
    product_ids = list(result.scalars().all())
    now = utcnow()

    trimmed = 0
    for product_id in product_ids:
        try:
            async with inventory_locks.hold(product_id):
                inventory = await require_inventory(db, product_id)
                entries = inventory.sales_history_entries
                kept = _prune_history(entries, now)
                if len(kept) == len(entries):
                    continue
                inventory.sales_history = json.dumps(kept)
                await db.commit()
                trimmed += 1
        except Exception:
            logger.exception("Sales history maintenance failed for product %s", product_id)
            await db.rollback()

    logger.info("Data maintenance trimmed sales history on %d records", trimmed)
    return trimmed
