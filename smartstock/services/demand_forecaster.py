"""Demand forecasting and reorder planning.

Velocity comes from purchased sales logs, seasonality and trend from the
daily metrics table. The forecast combines all three; when the data is thin
an optional :class:`~smartstock.services.estimator.Estimator` may replace it.
"""

import asyncio
import json
import logging
import math
from collections import defaultdict
from datetime import timedelta

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from smartstock.config import settings
from smartstock.database import utcnow
from smartstock.errors import EstimationError, NotFoundError
from smartstock.models.inventory import InventoryRecord
from smartstock.models.product import Product
from smartstock.models.sales import ProductDailyMetric, SalesAction, SalesLog
from smartstock.schemas.inventory import ForecastOut, ReorderParameters, SalesTrend, TrendDirection
from smartstock.services.estimator import ComparableProduct, EstimationContext, Estimator
from smartstock.services.inventory_lock import inventory_locks
from smartstock.services.inventory_service import get_inventory, get_product, require_inventory

logger = logging.getLogger(__name__)


async def _write_fields(db: AsyncSession, product_id: str, **values) -> InventoryRecord | None:
    async with inventory_locks.hold(product_id):
        inventory = await get_inventory(db, product_id)
        if not inventory:
            return None
        for field, value in values.items():
            setattr(inventory, field, value)
        await db.commit()
        return inventory


async def calculate_sales_velocity(
    db: AsyncSession, product_id: str, days: int = settings.VELOCITY_WINDOW_DAYS
) -> float:
    """Units sold per day over the trailing window, stored on the ledger."""
    since = utcnow() - timedelta(days=days)
    total_sold = await db.scalar(
        select(func.coalesce(func.sum(SalesLog.quantity), 0)).where(
            SalesLog.product_id == product_id,
            SalesLog.action == SalesAction.PURCHASED,
            SalesLog.created_at >= since,
        )
    )
    velocity = (total_sold or 0) / days

    if await _write_fields(db, product_id, sales_velocity=velocity) is None:
        logger.warning("No inventory record to store sales velocity for product %s", product_id)
    return velocity


async def analyze_seasonality(db: AsyncSession, product_id: str) -> list[float]:
    """Twelve monthly demand factors (index 0 = January) centred on 1.0.

    Returns an empty list, and leaves the ledger alone, when there is no
    sales history to learn from.
    """
    result = await db.execute(
        select(ProductDailyMetric.day, ProductDailyMetric.total_sold).where(
            ProductDailyMetric.product_id == product_id
        )
    )
    rows = result.all()
    if not rows:
        return []

    per_year_month: dict[tuple[int, int], int] = defaultdict(int)
    for day, total_sold in rows:
        per_year_month[(day.year, day.month)] += total_sold or 0

    month_totals: dict[int, int] = defaultdict(int)
    month_years: dict[int, int] = defaultdict(int)
    for (_, month), total in per_year_month.items():
        month_totals[month] += total
        month_years[month] += 1

    averages = [
        month_totals[m] / month_years[m] if month_years[m] else 0.0
        for m in range(1, 13)
    ]
    annual_average = sum(averages) / 12
    if annual_average <= 0:
        return []

    factors = [round(avg / annual_average, 2) for avg in averages]
    await _write_fields(db, product_id, seasonality=json.dumps(factors))
    return factors


async def analyze_sales_trend(
    db: AsyncSession, product_id: str, days: int = settings.TREND_WINDOW_DAYS
) -> SalesTrend:
    since = (utcnow() - timedelta(days=days)).date()
    result = await db.execute(
        select(ProductDailyMetric.total_sold)
        .where(ProductDailyMetric.product_id == product_id, ProductDailyMetric.day >= since)
        .order_by(ProductDailyMetric.day.asc())
    )
    values = [v or 0 for v in result.scalars().all()]
    if len(values) < 2:
        return SalesTrend()

    mid = len(values) // 2
    first, second = values[:mid], values[mid:]
    first_avg = sum(first) / len(first)
    second_avg = sum(second) / len(second)

    change_rate = (second_avg - first_avg) / first_avg * 100 if first_avg > 0 else 0.0
    band = settings.TREND_STABLE_BAND_PCT
    if change_rate > band:
        trend = TrendDirection.INCREASING
    elif change_rate < -band:
        trend = TrendDirection.DECREASING
    else:
        trend = TrendDirection.STABLE

    n = len(values)
    mean = sum(values) / n
    variance = sum((v - mean) ** 2 for v in values) / n
    size_confidence = min(1.0, n / 30)
    variance_confidence = max(0.0, 1 - min(1.0, variance / (mean * 3 or 1)))
    confidence = size_confidence * 0.4 + variance_confidence * 0.6

    return SalesTrend(trend=trend, change_rate=round(change_rate, 2), confidence=round(confidence, 2))


async def _comparable_products(db: AsyncSession, product: Product, limit: int) -> list[ComparableProduct]:
    wanted = set(product.category_list)
    if not wanted:
        return []

    result = await db.execute(select(Product).where(Product.id != product.id).order_by(Product.title))
    matches = [p for p in result.scalars().all() if wanted & set(p.category_list)][:limit]

    comparables = []
    for p in matches:
        inv = await get_inventory(db, p.id)
        total_sold = await db.scalar(
            select(func.coalesce(func.sum(ProductDailyMetric.total_sold), 0)).where(
                ProductDailyMetric.product_id == p.id
            )
        )
        comparables.append(
            ComparableProduct(
                title=p.title,
                price=p.price,
                discount=p.discount or 0.0,
                sales_velocity=inv.sales_velocity if inv else 0.0,
                total_sold=int(total_sold or 0),
            )
        )
    return comparables


async def ai_assisted_forecast(
    db: AsyncSession, product_id: str, days: int, estimator: Estimator
) -> int | None:
    """Ask ``estimator`` for a demand figure; store it if it is positive.

    Returns the stored value, or None when nothing was written. Estimator
    failures are logged here and never reach the caller.
    """
    product = await get_product(db, product_id)
    inventory = await get_inventory(db, product_id)
    if not product or not inventory:
        return None

    context = EstimationContext(
        product_title=product.title,
        categories=product.category_list,
        price=product.price,
        discount=product.discount or 0.0,
        current_stock=inventory.current_stock,
        horizon_days=days,
        comparables=await _comparable_products(db, product, settings.COMPARABLE_PRODUCTS_LIMIT),
    )

    try:
        estimate = await estimator.estimate(context)
    except EstimationError as e:
        logger.warning("AI-assisted forecast failed for product %s: %s", product_id, e)
        return None
    except Exception:
        logger.exception("Estimator raised unexpectedly for product %s", product_id)
        return None

    if estimate is None or estimate <= 0:
        return None

    forecast = round(estimate)
    if forecast <= 0:
        return None
    await _write_fields(db, product_id, forecasted_demand=forecast)
    logger.info("AI-assisted forecast for product %s: %d units over %d days", product_id, forecast, days)
    return forecast


async def generate_demand_forecast(
    db: AsyncSession,
    product_id: str,
    days: int = settings.FORECAST_HORIZON_DAYS,
    estimator: Estimator | None = None,
) -> int:
    """Forecast demand over ``days`` and store it. Returns the stored figure."""
    product = await get_product(db, product_id)
    inventory = await get_inventory(db, product_id)
    if not product or not inventory:
        logger.error("Cannot forecast product %s: product or inventory record missing", product_id)
        return 0

    velocity = await calculate_sales_velocity(db, product_id)
    seasonality = await analyze_seasonality(db, product_id)
    trend = await analyze_sales_trend(db, product_id)

    month = utcnow().month
    seasonal_factor = (seasonality[month - 1] or 1.0) if seasonality else 1.0
    trend_factor = 1 + trend.change_rate / 100 * trend.confidence
    forecast = round(max(0.0, velocity * trend_factor * seasonal_factor * days))

    await _write_fields(db, product_id, forecasted_demand=forecast)

    if estimator is not None and (velocity == 0 or trend.confidence < settings.AI_CONFIDENCE_THRESHOLD):
        estimated = await ai_assisted_forecast(db, product_id, days, estimator)
        if estimated is not None:
            forecast = estimated

    return forecast


def compute_reorder_parameters(sales_velocity: float, lead_time: int, price: float) -> ReorderParameters:
    daily_demand = max(sales_velocity or 0.0, settings.MIN_DAILY_DEMAND)
    lead = lead_time or settings.DEFAULT_LEAD_TIME_DAYS

    std_dev = daily_demand * settings.DEMAND_STD_RATIO
    safety_stock = math.ceil(settings.SERVICE_LEVEL_Z * std_dev * math.sqrt(lead))
    reorder_point = math.ceil(daily_demand * lead + safety_stock)

    annual_demand = daily_demand * 365
    ordering_cost = price * settings.ORDERING_COST_RATIO
    holding_cost = price * settings.HOLDING_COST_RATIO
    eoq = math.ceil(math.sqrt(2 * annual_demand * ordering_cost / holding_cost))
    min_order = math.ceil(daily_demand * settings.MIN_ORDER_COVER_DAYS)

    return ReorderParameters(reorder_point=reorder_point, optimal_order_quantity=max(eoq, min_order))


async def calculate_reorder_parameters(db: AsyncSession, product_id: str) -> ReorderParameters:
    """EOQ-style reorder point and order size, stored on the ledger.

    Never raises: any failure, lock contention included, yields the
    conservative defaults and leaves the stored values untouched.
    """
    try:
        async with inventory_locks.hold(product_id):
            inventory = await require_inventory(db, product_id)
            product = await get_product(db, product_id)
            if not product:
                raise NotFoundError(product_id, "Product")

            params = compute_reorder_parameters(inventory.sales_velocity, inventory.lead_time, product.price)
            inventory.reorder_point = params.reorder_point
            inventory.optimal_order_quantity = params.optimal_order_quantity
            await db.commit()
            return params
    except Exception as e:
        logger.error("Error calculating reorder parameters for product %s: %s", product_id, e)
        await db.rollback()
        return ReorderParameters(
            reorder_point=settings.FALLBACK_REORDER_POINT,
            optimal_order_quantity=settings.FALLBACK_ORDER_QUANTITY,
        )


async def forecast_product(
    db: AsyncSession, product_id: str, estimator: Estimator | None = None
) -> ForecastOut:
    """On-demand forecast for one product, with reorder parameters refreshed."""
    await require_inventory(db, product_id)
    forecast = await generate_demand_forecast(db, product_id, estimator=estimator)
    reorder = await calculate_reorder_parameters(db, product_id)
    trend = await analyze_sales_trend(db, product_id)
    inventory = await require_inventory(db, product_id)
    return ForecastOut(
        product_id=product_id,
        sales_velocity=inventory.sales_velocity,
        seasonality=inventory.seasonality_factors,
        trend=trend,
        forecasted_demand=forecast,
        reorder=reorder,
    )


async def run_demand_forecasting(
    db: AsyncSession,
    estimator: Estimator | None = None,
    batch_size: int = settings.BATCH_SIZE,
    pause: float = settings.FORECAST_BATCH_PAUSE_SECONDS,
) -> int:
    """Forecast and re-plan every product in the ledger. Returns how many succeeded."""
    result = await db.execute(select(InventoryRecord.product_id).order_by(InventoryRecord.product_id))
    product_ids = list(result.scalars().all())
    logger.info("Running demand forecasting for %d products", len(product_ids))

    processed = 0
    for start in range(0, len(product_ids), batch_size):
        for product_id in product_ids[start:start + batch_size]:
            try:
                await generate_demand_forecast(db, product_id, estimator=estimator)
                await calculate_reorder_parameters(db, product_id)
                processed += 1
            except Exception:
                logger.exception("Demand forecasting failed for product %s", product_id)
                await db.rollback()
        if start + batch_size < len(product_ids):
            await asyncio.sleep(pause)

    logger.info("Demand forecasting complete: %d/%d products", processed, len(product_ids))
    return processed
