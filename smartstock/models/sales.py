import uuid
from datetime import date, datetime
from enum import Enum as PyEnum

from sqlalchemy import Date, DateTime, Enum, Float, ForeignKey, Integer, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from smartstock.database import Base


class SalesAction(str, PyEnum):
    VIEWED = "viewed"
    ADDED_TO_CART = "added_to_cart"
    PURCHASED = "purchased"


class SalesLog(Base):
    """Append-only customer action log. Written by the order flow."""

    __tablename__ = "sales_logs"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    product_id: Mapped[str] = mapped_column(String, ForeignKey("products.id"), nullable=False, index=True)
    order_id: Mapped[str] = mapped_column(String, default="")
    action: Mapped[str] = mapped_column(
        Enum(SalesAction, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    quantity: Mapped[int] = mapped_column(Integer, default=1)
    total_price: Mapped[float] = mapped_column(Float, default=0.0)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), index=True)


class ProductDailyMetric(Base):
    """Per-day performance aggregate for one product."""

    __tablename__ = "product_daily_metrics"
    __table_args__ = (UniqueConstraint("product_id", "day", name="uq_daily_metric_product_day"),)

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    product_id: Mapped[str] = mapped_column(String, ForeignKey("products.id"), nullable=False, index=True)
    day: Mapped[date] = mapped_column(Date, nullable=False)
    views: Mapped[int] = mapped_column(Integer, default=0)
    added_to_cart: Mapped[int] = mapped_column(Integer, default=0)
    purchases: Mapped[int] = mapped_column(Integer, default=0)
    total_sold: Mapped[int] = mapped_column(Integer, default=0)
    revenue: Mapped[float] = mapped_column(Float, default=0.0)
