import httpx
import pytest

from smartstock import main
from smartstock.database import get_db
from smartstock.main import app
from smartstock.services.estimator import get_estimator
from smartstock.services.inventory_lock import inventory_locks


@pytest.fixture
async def client(session_factory, sent_emails, monkeypatch):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    async def no_alert():
        return None

    monkeypatch.setattr("smartstock.api.inventory._send_low_stock_alert", no_alert)
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_estimator] = lambda: None
    transport = httpx.ASGITransport(app=app, raise_app_exceptions=False)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


async def test_health(client):
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


async def test_inventory_reads(client, make_product):
    product = await make_product(title="Mug", stock=1)
    await make_product(title="Desk", stock=30)

    resp = await client.get(f"/api/v1/inventory/product/{product.id}")
    assert resp.status_code == 200
    body = resp.json()
    assert body["available_stock"] == 1
    assert body["stock_status"] == "Low Stock"
    assert body["seasonality"] == []

    page = (await client.get("/api/v1/inventory", params={"page": 1, "limit": 1})).json()
    assert page["total_count"] == 2
    assert page["total_pages"] == 2
    assert page["data"][0]["product_id"] == product.id

    low = (await client.get("/api/v1/inventory/low-stock")).json()
    assert [row["product_id"] for row in low] == [product.id]

    overview = (await client.get("/api/v1/inventory/overview")).json()
    assert overview["summary"]["low_stock"] == 1

    assert (await client.get("/api/v1/inventory/product/missing")).status_code == 404


async def test_reserve_release_confirm(client, make_product):
    product = await make_product(stock=10)

    resp = await client.post("/api/v1/inventory/reserve", json={"product_id": product.id, "quantity": 3})
    assert resp.status_code == 200
    assert resp.json()["available_stock"] == 7

    resp = await client.post("/api/v1/inventory/reserve", json={"product_id": product.id, "quantity": 8})
    assert resp.status_code == 409
    assert "Insufficient stock" in resp.json()["detail"]

    resp = await client.post("/api/v1/inventory/confirm", json={"product_id": product.id, "quantity": 3})
    body = resp.json()
    assert (body["current_stock"], body["reserved_stock"], body["available_stock"]) == (7, 0, 7)

    resp = await client.post("/api/v1/inventory/release", json={"product_id": product.id, "quantity": 5})
    assert resp.json()["reserved_stock"] == 0

    resp = await client.post("/api/v1/inventory/reserve", json={"product_id": product.id, "quantity": 0})
    assert resp.status_code == 422

    resp = await client.post("/api/v1/inventory/reserve", json={"product_id": "missing", "quantity": 1})
    assert resp.status_code == 404


async def test_update_inventory(client, make_product):
    product = await make_product(stock=10)
    await client.post("/api/v1/inventory/reserve", json={"product_id": product.id, "quantity": 4})

    resp = await client.put("/api/v1/inventory/update", json={"product_id": product.id, "current_stock": 20})
    assert resp.status_code == 200
    assert resp.json()["available_stock"] == 16

    resp = await client.put("/api/v1/inventory/update", json={"product_id": product.id, "current_stock": 2})
    assert resp.status_code == 400

    resp = await client.put("/api/v1/inventory/update", json={"product_id": "missing", "threshold": 1})
    assert resp.status_code == 404


async def test_lock_contention_maps_to_503(client, make_product, monkeypatch):
    monkeypatch.setattr(inventory_locks, "retry_delay", 0)
    product = await make_product(stock=10)

    async with inventory_locks.hold(product.id):
        resp = await client.post("/api/v1/inventory/reserve", json={"product_id": product.id, "quantity": 1})
    assert resp.status_code == 503


async def test_forecast_endpoint(client, make_product):
    product = await make_product(price=10.0)

    resp = await client.post(f"/api/v1/smart-inventory/forecast/{product.id}")
    assert resp.status_code == 200
    body = resp.json()
    assert body["forecasted_demand"] == 0
    assert body["reorder"] == {"reorder_point": 2, "optimal_order_quantity": 5}
    assert body["trend"]["trend"] == "stable"

    assert (await client.post("/api/v1/smart-inventory/forecast/missing")).status_code == 404


async def test_auto_reorder_flow(client, make_product, sent_emails):
    product = await make_product(title="Kettle", stock=0)

    resp = await client.put(
        f"/api/v1/smart-inventory/reorder-parameters/{product.id}",
        json={"reorder_point": 84, "order_quantity": 70},
    )
    assert resp.status_code == 200
    resp = await client.post(f"/api/v1/smart-inventory/auto-reorder/{product.id}", json={"enabled": True})
    assert resp.json()["auto_reorder_enabled"] is True

    pending = (await client.get("/api/v1/smart-inventory/reorders/pending")).json()
    assert [(p["product_name"], p["priority"]) for p in pending] == [("Kettle", "high")]

    assert (await client.post("/api/v1/smart-inventory/reorders/process")).json() == {"processed": 1}
    assert (await client.get("/api/v1/smart-inventory/reorders/pending")).json() == []
    assert len(sent_emails) == 1

    resp = await client.post("/api/v1/smart-inventory/auto-reorder/missing", json={"enabled": True})
    assert resp.status_code == 404


async def test_reconcile_endpoints(client, make_product, add_cart_line):
    product = await make_product(stock=5)
    await add_cart_line("alice", product.id, 2)

    resp = await client.post(f"/api/v1/smart-inventory/reconcile/{product.id}")
    assert resp.json()["was_corrected"] is True
    assert resp.json()["reserved_stock"] == 2

    summary = (await client.post("/api/v1/smart-inventory/reconcile")).json()
    assert summary == {"processed": 1, "corrected": 0}

    assert (await client.post("/api/v1/smart-inventory/reconcile/missing")).status_code == 404


async def test_stockout_risks_endpoint(client, make_product):
    await make_product(title="Trickle", stock=1)
    risks = (await client.get("/api/v1/smart-inventory/stockout-risks")).json()
    assert [(r["product_name"], r["priority"]) for r in risks] == [("Trickle", "medium")]


async def test_cart_checkout_flow(client, make_product):
    mug = await make_product(title="Mug", price=8.0, stock=5)

    resp = await client.post("/api/v1/cart/alice/items", json={"product_id": mug.id, "quantity": 2})
    assert resp.status_code == 201
    assert resp.json()["quantity"] == 2
    assert (await client.get(f"/api/v1/inventory/product/{mug.id}")).json()["reserved_stock"] == 2

    resp = await client.post("/api/v1/cart/bob/items", json={"product_id": mug.id, "quantity": 4})
    assert resp.status_code == 409

    resp = await client.put(f"/api/v1/cart/alice/items/{mug.id}", json={"quantity": 3})
    assert resp.json()["quantity"] == 3

    resp = await client.post("/api/v1/cart/alice/checkout")
    assert resp.status_code == 200
    assert resp.json()["total_price"] == 24.0
    assert (await client.get("/api/v1/cart/alice")).json() == []

    body = (await client.get(f"/api/v1/inventory/product/{mug.id}")).json()
    assert (body["current_stock"], body["reserved_stock"], body["available_stock"]) == (2, 0, 2)

    assert (await client.post("/api/v1/cart/alice/checkout")).status_code == 400
    assert (await client.delete(f"/api/v1/cart/alice/items/{mug.id}")).status_code == 404


async def test_shutdown_waits_for_running_jobs(monkeypatch):
    calls = []

    class RecordingScheduler:
        def __init__(self, session_factory, estimator=None):
            pass

        def initialize(self):
            calls.append("initialize")

        async def stop_all(self):
            calls.append("stop_all")

        async def drain(self):
            calls.append("drain")

    async def noop():
        return None

    async def no_seed(db):
        return {"created": 0, "existing": 0}

    monkeypatch.setattr(main, "init_db", noop)
    monkeypatch.setattr(main, "seed_inventory", no_seed)
    monkeypatch.setattr(main, "InventoryScheduler", RecordingScheduler)
    monkeypatch.setattr(main.settings, "SCHEDULER_ENABLED", True)

    async with main.lifespan(main.app):
        assert calls == ["initialize"]
    assert calls == ["initialize", "stop_all", "drain"]
