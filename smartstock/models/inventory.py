import json
import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from smartstock.database import Base
from smartstock.models.product import Product


class InventoryRecord(Base):
    """Stock ledger for one product.

    ``available_stock`` is stored (so threshold queries can use an index) and
    must equal ``current_stock - reserved_stock`` whenever no mutation is in
    flight. Anything that touches the two counters calls
    :meth:`recalculate_available` before committing.
    """

    __tablename__ = "inventory"
    __table_args__ = (
        CheckConstraint("current_stock >= 0", name="ck_inventory_current_non_negative"),
        CheckConstraint("reserved_stock >= 0", name="ck_inventory_reserved_non_negative"),
        Index("ix_inventory_available_threshold", "available_stock", "threshold"),
        Index("ix_inventory_available_reorder_point", "available_stock", "reorder_point"),
    )
    __mapper_args__ = {"eager_defaults": True}

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    product_id: Mapped[str] = mapped_column(String, ForeignKey("products.id"), unique=True, index=True)

    current_stock: Mapped[int] = mapped_column(Integer, default=0)
    reserved_stock: Mapped[int] = mapped_column(Integer, default=0)
    available_stock: Mapped[int] = mapped_column(Integer, default=0)
    threshold: Mapped[int] = mapped_column(Integer, default=2)

    # Reorder planning
    reorder_point: Mapped[int] = mapped_column(Integer, default=0)
    optimal_order_quantity: Mapped[int] = mapped_column(Integer, default=0)
    lead_time: Mapped[int] = mapped_column(Integer, default=7)  # days
    auto_reorder_enabled: Mapped[bool] = mapped_column(Boolean, default=False)
    last_reorder_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    # Forecasting
    sales_velocity: Mapped[float] = mapped_column(Float, default=0.0)  # units/day
    forecasted_demand: Mapped[int] = mapped_column(Integer, default=0)
    seasonality: Mapped[str] = mapped_column(Text, default="[]")  # 12 factors, index 0 = January
    sales_history: Mapped[str] = mapped_column(Text, default="[]")  # JSON list of {date, quantity}

    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())

    product: Mapped["Product"] = relationship("Product", lazy="joined")

    def recalculate_available(self) -> None:
        self.available_stock = self.current_stock - self.reserved_stock

    @property
    def seasonality_factors(self) -> list[float]:
        return json.loads(self.seasonality) if self.seasonality else []

    def seasonal_factor(self, month: int) -> float:
        """Multiplier for a calendar month (1-12); 1.0 when unknown."""
        factors = self.seasonality_factors
        if len(factors) != 12:
            return 1.0
        return factors[month - 1] or 1.0

    @property
    def sales_history_entries(self) -> list[dict]:
        return json.loads(self.sales_history) if self.sales_history else []

    @property
    def stock_status(self) -> str:
        if self.available_stock <= 0:
            return "Out of Stock"
        if self.available_stock <= self.threshold:
            return "Low Stock"
        return "In Stock"
