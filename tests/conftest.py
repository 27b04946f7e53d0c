import json
from datetime import date, datetime

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import smartstock.models.cart  # noqa: F401
import smartstock.models.inventory  # noqa: F401
import smartstock.models.sales  # noqa: F401
from smartstock.database import Base
from smartstock.models.cart import CartItem
from smartstock.models.product import Product
from smartstock.models.sales import ProductDailyMetric, SalesAction, SalesLog
from smartstock.services import notification_service
from smartstock.services.inventory_service import create_inventory


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def sent_emails(monkeypatch):
    """Capture outgoing notifications instead of calling the e-mail API."""
    sent = []

    async def fake_send_email(subject, html, recipient=None):
        sent.append({"subject": subject, "html": html, "recipient": recipient})
        return True

    monkeypatch.setattr(notification_service, "send_email", fake_send_email)
    return sent


@pytest.fixture
def make_product(db):
    async def _make(
        title="Widget",
        price=10.0,
        stock=10,
        categories=("Gadgets",),
        discount=0.0,
        threshold=2,
        with_inventory=True,
    ):
        product = Product(
            title=title,
            price=price,
            discount=discount,
            current_stock=stock,
            categories=json.dumps(list(categories)),
        )
        db.add(product)
        await db.commit()
        if with_inventory:
            await create_inventory(db, product.id, stock, threshold)
        return product

    return _make


@pytest.fixture
def add_sales(db):
    async def _add(product_id, quantity, created_at: datetime, action=SalesAction.PURCHASED):
        db.add(
            SalesLog(
                user_id="user-1",
                product_id=product_id,
                action=action,
                quantity=quantity,
                created_at=created_at,
            )
        )
        await db.commit()

    return _add


@pytest.fixture
def add_metrics(db):
    async def _add(product_id, sold_by_day: dict[date, int]):
        for day, sold in sold_by_day.items():
            db.add(ProductDailyMetric(product_id=product_id, day=day, total_sold=sold, purchases=1 if sold else 0))
        await db.commit()

    return _add


@pytest.fixture
def add_cart_line(db):
    async def _add(user_id, product_id, quantity):
        db.add(CartItem(user_id=user_id, product_id=product_id, quantity=quantity))
        await db.commit()

    return _add
