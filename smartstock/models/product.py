import json
import uuid
from datetime import datetime

from sqlalchemy import DateTime, Float, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from smartstock.database import Base


class Product(Base):
    """Catalogue entry. Owned by the product CRUD flow; read-only here."""

    __tablename__ = "products"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    title: Mapped[str] = mapped_column(String, nullable=False)
    price: Mapped[float] = mapped_column(Float, default=0.0)
    discount: Mapped[float] = mapped_column(Float, default=0.0)  # percent
    current_stock: Mapped[int] = mapped_column(Integer, default=0)

    # Category names as JSON, e.g. '["Electronics","Audio"]'
    categories: Mapped[str] = mapped_column(Text, default="[]")

    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())

    @property
    def category_list(self) -> list[str]:
        return json.loads(self.categories) if self.categories else []

    @property
    def category_label(self) -> str:
        return ", ".join(self.category_list) or "Uncategorized"
