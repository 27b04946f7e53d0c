from datetime import date, timedelta

import pytest

from smartstock.database import utcnow
from smartstock.errors import EstimationError
from smartstock.models.sales import SalesAction
from smartstock.schemas.inventory import TrendDirection
from smartstock.services import demand_forecaster
from smartstock.services.demand_forecaster import (
    analyze_sales_trend,
    analyze_seasonality,
    calculate_reorder_parameters,
    calculate_sales_velocity,
    compute_reorder_parameters,
    generate_demand_forecast,
)
from smartstock.services.inventory_lock import inventory_locks
from smartstock.services.inventory_service import get_inventory


class FakeEstimator:
    def __init__(self, value=None, error=None):
        self.value = value
        self.error = error
        self.contexts = []

    async def estimate(self, context):
        self.contexts.append(context)
        if self.error:
            raise self.error
        return self.value


def recent_days(n):
    today = utcnow().date()
    return [today - timedelta(days=n - 1 - i) for i in range(n)]


class TestSalesVelocity:
    async def test_trailing_window_average(self, db, make_product, add_sales):
        product = await make_product()
        now = utcnow()
        await add_sales(product.id, 200, now - timedelta(days=2))
        await add_sales(product.id, 100, now - timedelta(days=20))
        await add_sales(product.id, 500, now - timedelta(days=45))
        await add_sales(product.id, 70, now - timedelta(days=1), action=SalesAction.ADDED_TO_CART)

        assert await calculate_sales_velocity(db, product.id) == 10
        assert (await get_inventory(db, product.id)).sales_velocity == 10

    async def test_no_sales_is_zero(self, db, make_product):
        product = await make_product()
        assert await calculate_sales_velocity(db, product.id) == 0


class TestReorderParameters:
    async def test_velocity_ten_gives_reorder_point_84(self, db, make_product, add_sales):
        product = await make_product(price=10.0)
        await add_sales(product.id, 300, utcnow() - timedelta(days=3))
        await calculate_sales_velocity(db, product.id)

        params = await calculate_reorder_parameters(db, product.id)
        assert params.reorder_point == 84
        # EOQ is 43 but one week of demand (70) wins
        assert params.optimal_order_quantity == 70

        inv = await get_inventory(db, product.id)
        assert (inv.reorder_point, inv.optimal_order_quantity) == (84, 70)

    def test_zero_velocity_uses_minimum_demand(self):
        params = compute_reorder_parameters(0.0, 7, 25.0)
        assert params.reorder_point == 2
        assert params.optimal_order_quantity == 5

    def test_missing_lead_time_defaults_to_a_week(self):
        assert compute_reorder_parameters(10.0, 0, 10.0).reorder_point == 84

    async def test_zero_price_falls_back_to_defaults(self, db, make_product):
        product = await make_product(price=0.0)
        params = await calculate_reorder_parameters(db, product.id)
        assert (params.reorder_point, params.optimal_order_quantity) == (5, 10)
        assert (await get_inventory(db, product.id)).reorder_point == 0

    async def test_missing_record_falls_back_to_defaults(self, db):
        params = await calculate_reorder_parameters(db, "missing")
        assert (params.reorder_point, params.optimal_order_quantity) == (5, 10)

    async def test_lock_contention_falls_back_to_defaults(self, db, make_product, add_sales, monkeypatch):
        monkeypatch.setattr(inventory_locks, "retry_delay", 0)
        product = await make_product(price=10.0)
        await add_sales(product.id, 300, utcnow() - timedelta(days=3))
        await calculate_sales_velocity(db, product.id)

        assert inventory_locks.try_acquire(product.id)
        try:
            params = await calculate_reorder_parameters(db, product.id)
        finally:
            inventory_locks.release(product.id)

        assert (params.reorder_point, params.optimal_order_quantity) == (5, 10)
        assert (await get_inventory(db, product.id)).reorder_point == 0


class TestSeasonality:
    async def test_monthly_factors_centred_on_one(self, db, make_product, add_metrics):
        product = await make_product()
        await add_metrics(
            product.id,
            {
                date(2024, 1, 10): 30,
                date(2025, 1, 5): 40,
                date(2025, 1, 6): 50,
                date(2025, 6, 1): 60,
            },
        )

        factors = await analyze_seasonality(db, product.id)
        assert len(factors) == 12
        assert factors[0] == 6.0
        assert factors[5] == 6.0
        assert factors[1] == 0.0
        assert (await get_inventory(db, product.id)).seasonality_factors == factors

    async def test_no_metrics_returns_empty_without_write(self, db, make_product):
        product = await make_product()
        assert await analyze_seasonality(db, product.id) == []
        assert (await get_inventory(db, product.id)).seasonality == "[]"

    async def test_all_zero_history_is_treated_as_unknown(self, db, make_product, add_metrics):
        product = await make_product()
        await add_metrics(product.id, {date(2025, 3, 1): 0, date(2025, 4, 1): 0})
        assert await analyze_seasonality(db, product.id) == []


class TestSalesTrend:
    async def test_fewer_than_two_points_is_stable(self, db, make_product, add_metrics):
        product = await make_product()
        await add_metrics(product.id, {utcnow().date(): 5})

        trend = await analyze_sales_trend(db, product.id)
        assert (trend.trend, trend.change_rate, trend.confidence) == (TrendDirection.STABLE, 0, 0)

    async def test_increasing(self, db, make_product, add_metrics):
        product = await make_product()
        await add_metrics(product.id, dict(zip(recent_days(4), [2, 2, 6, 6])))

        trend = await analyze_sales_trend(db, product.id)
        assert trend.trend == TrendDirection.INCREASING
        assert trend.change_rate == 200.0
        assert trend.confidence == 0.45

    async def test_decreasing(self, db, make_product, add_metrics):
        product = await make_product()
        await add_metrics(product.id, dict(zip(recent_days(4), [8, 8, 4, 4])))

        trend = await analyze_sales_trend(db, product.id)
        assert trend.trend == TrendDirection.DECREASING
        assert trend.change_rate == -50.0

    async def test_flat_series_is_stable_and_confident(self, db, make_product, add_metrics):
        product = await make_product()
        await add_metrics(product.id, dict(zip(recent_days(4), [5, 5, 5, 5])))

        trend = await analyze_sales_trend(db, product.id)
        assert trend.trend == TrendDirection.STABLE
        assert trend.change_rate == 0
        assert trend.confidence == 0.65

    async def test_zero_first_half_gives_zero_change(self, db, make_product, add_metrics):
        product = await make_product()
        await add_metrics(product.id, dict(zip(recent_days(4), [0, 0, 3, 3])))

        trend = await analyze_sales_trend(db, product.id)
        assert trend.change_rate == 0
        assert trend.trend == TrendDirection.STABLE

    async def test_points_outside_window_ignored(self, db, make_product, add_metrics):
        product = await make_product()
        today = utcnow().date()
        await add_metrics(product.id, {today - timedelta(days=90): 100, today: 1})

        trend = await analyze_sales_trend(db, product.id)
        assert trend.confidence == 0


class TestDemandForecast:
    async def test_data_driven_forecast(self, db, make_product, add_sales):
        product = await make_product()
        await add_sales(product.id, 300, utcnow() - timedelta(days=1))

        assert await generate_demand_forecast(db, product.id) == 300
        assert (await get_inventory(db, product.id)).forecasted_demand == 300

    async def test_missing_product_returns_zero(self, db):
        assert await generate_demand_forecast(db, "missing") == 0

    async def test_estimator_overrides_when_no_history(self, db, make_product):
        product = await make_product(title="New Gadget", categories=["Gadgets"])
        await make_product(title="Old Gadget", categories=["Gadgets"])
        await make_product(title="Sofa", categories=["Furniture"])
        estimator = FakeEstimator(value=44.6)

        assert await generate_demand_forecast(db, product.id, estimator=estimator) == 45
        assert (await get_inventory(db, product.id)).forecasted_demand == 45

        context = estimator.contexts[0]
        assert context.product_title == "New Gadget"
        assert context.horizon_days == 30
        assert [c.title for c in context.comparables] == ["Old Gadget"]

    @pytest.mark.parametrize("value", [None, 0, -12.0])
    async def test_non_positive_estimate_keeps_data_value(self, db, make_product, value):
        product = await make_product()
        assert await generate_demand_forecast(db, product.id, estimator=FakeEstimator(value=value)) == 0
        assert (await get_inventory(db, product.id)).forecasted_demand == 0

    async def test_estimator_failure_is_absorbed(self, db, make_product, add_sales):
        product = await make_product()
        await add_sales(product.id, 60, utcnow() - timedelta(days=1))
        estimator = FakeEstimator(error=EstimationError("timeout"))

        assert await generate_demand_forecast(db, product.id, estimator=estimator) == 60
        assert len(estimator.contexts) == 1

    async def test_unexpected_estimator_crash_is_absorbed(self, db, make_product):
        product = await make_product()
        estimator = FakeEstimator(error=RuntimeError("bad"))
        assert await generate_demand_forecast(db, product.id, estimator=estimator) == 0

    async def test_confident_history_skips_estimator(self, db, make_product, add_sales, add_metrics):
        product = await make_product()
        await add_sales(product.id, 150, utcnow() - timedelta(days=1))
        await add_metrics(product.id, dict(zip(recent_days(30), [5] * 30)))
        estimator = FakeEstimator(value=999)

        forecast = await generate_demand_forecast(db, product.id, estimator=estimator)
        assert estimator.contexts == []
        assert forecast == (await get_inventory(db, product.id)).forecasted_demand


async def test_run_demand_forecasting_sweeps_every_product(db, make_product, add_sales):
    first = await make_product(title="A", price=10.0)
    second = await make_product(title="B", price=10.0)
    await add_sales(first.id, 300, utcnow() - timedelta(days=1))

    assert await demand_forecaster.run_demand_forecasting(db, batch_size=1, pause=0) == 2

    inv = await get_inventory(db, first.id)
    assert inv.sales_velocity == 10
    assert inv.forecasted_demand == 300
    assert inv.reorder_point == 84
    assert (await get_inventory(db, second.id)).reorder_point == 2


async def test_forecast_product_reports_all_parts(db, make_product, add_sales):
    product = await make_product(price=10.0)
    await add_sales(product.id, 300, utcnow() - timedelta(days=1))

    result = await demand_forecaster.forecast_product(db, product.id)
    assert result.sales_velocity == 10
    assert result.forecasted_demand == 300
    assert result.reorder.reorder_point == 84
    assert result.trend.trend == TrendDirection.STABLE
