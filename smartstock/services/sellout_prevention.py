import logging
import math
from html import escape

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from smartstock.config import settings
from smartstock.database import utcnow
from smartstock.models.inventory import InventoryRecord
from smartstock.schemas.inventory import ProductAtRisk, RiskPriority
from smartstock.services import notification_service

logger = logging.getLogger(__name__)

_BADGE_COLOURS = {
    RiskPriority.CRITICAL: "#dc2626",
    RiskPriority.HIGH: "#ea580c",
    RiskPriority.MEDIUM: "#ca8a04",
    RiskPriority.LOW: "#65a30d",
}


def risk_priority(days_until_stockout: int) -> RiskPriority:
    if days_until_stockout <= 2:
        return RiskPriority.CRITICAL
    if days_until_stockout <= 5:
        return RiskPriority.HIGH
    if days_until_stockout <= 10:
        return RiskPriority.MEDIUM
    return RiskPriority.LOW


async def check_stockout_risks(
    db: AsyncSession, look_ahead_days: int = settings.STOCKOUT_LOOK_AHEAD_DAYS
) -> list[ProductAtRisk]:
    """Products expected to run out within ``look_ahead_days`` at their current velocity."""
    result = await db.execute(
        select(InventoryRecord)
        .where(InventoryRecord.current_stock > 0)
        .execution_options(populate_existing=True)
    )

    at_risk = []
    for inv in result.scalars().all():
        velocity = inv.sales_velocity or settings.MIN_DAILY_DEMAND
        days = math.floor(inv.available_stock / velocity)
        if days > look_ahead_days:
            continue
        at_risk.append(
            ProductAtRisk(
                product_id=inv.product_id,
                product_name=inv.product.title if inv.product else inv.product_id,
                available_stock=inv.available_stock,
                forecasted_demand=inv.forecasted_demand or 0,
                days_until_stockout=days,
                category=inv.product.category_label if inv.product else "Uncategorized",
                priority=risk_priority(days),
            )
        )

    at_risk.sort(key=lambda p: p.days_until_stockout)
    return at_risk


def _risk_table(products: list[ProductAtRisk], priority: RiskPriority) -> str:
    if not products:
        return ""
    rows = "".join(
        f"<tr><td>{escape(p.product_name)}</td><td>{escape(p.category)}</td><td>{p.available_stock}</td>"
        f"<td>{p.forecasted_demand}</td><td>{p.days_until_stockout}</td></tr>"
        for p in products
    )
    return (
        f"<h3>{priority.value.capitalize()} Risk Products "
        f'<span style="background-color: {_BADGE_COLOURS[priority]}; color: white;">{len(products)}</span></h3>'
        '<table border="1" cellpadding="5" cellspacing="0">'
        "<thead><tr><th>Product</th><th>Category</th><th>Available Stock</th>"
        "<th>Forecasted Demand</th><th>Days Until Stockout</th></tr></thead>"
        f"<tbody>{rows}</tbody></table>"
    )


def build_risk_report(products: list[ProductAtRisk], look_ahead_days: int) -> str:
    grouped = {p: [r for r in products if r.priority == p] for p in RiskPriority}
    return (
        f"<h2>Sellout Risk Report - {utcnow().date().isoformat()}</h2>"
        f"<p>The smart inventory system has identified {len(products)} products at risk of selling out "
        f"within {look_ahead_days} days.</p>"
        "<h3>Summary</h3><ul>"
        f"<li><strong>Critical Risk (0-2 days):</strong> {len(grouped[RiskPriority.CRITICAL])} products</li>"
        f"<li><strong>High Risk (3-5 days):</strong> {len(grouped[RiskPriority.HIGH])} products</li>"
        f"<li><strong>Medium Risk (6-10 days):</strong> {len(grouped[RiskPriority.MEDIUM])} products</li>"
        f"<li><strong>Low Risk (11-{look_ahead_days} days):</strong> {len(grouped[RiskPriority.LOW])} products</li>"
        "</ul>"
        + "".join(_risk_table(grouped[p], p) for p in RiskPriority)
    )


async def generate_sellout_risk_report(
    db: AsyncSession, look_ahead_days: int = settings.STOCKOUT_LOOK_AHEAD_DAYS
) -> list[ProductAtRisk]:
    products = await check_stockout_risks(db, look_ahead_days)
    if not products:
        logger.info("No products at risk of selling out within %d days", look_ahead_days)
        return products

    critical = sum(1 for p in products if p.priority == RiskPriority.CRITICAL)
    high = sum(1 for p in products if p.priority == RiskPriority.HIGH)
    await notification_service.send_email(
        f"Sellout Risk Alert: {critical} Critical + {high} High Risk Products",
        build_risk_report(products, look_ahead_days),
    )
    logger.info("Sellout risk report sent with %d at-risk products", len(products))
    return products
