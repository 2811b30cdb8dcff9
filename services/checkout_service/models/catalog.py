"""Catalog models: products with per-currency prices, and their variants."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from libs.common.currency import Currency, Money
from libs.common.datetime_utils import utc_now
from libs.db.base import Base
from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship


class Product(Base):
    """Products. Prices are stored per currency; they are never converted."""

    __tablename__ = "checkout_products"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    category_slug: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    image_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    price_ngn: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    price_usd: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    price_eur: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    price_gbp: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)

    allows_size_mod: Mapped[bool] = mapped_column(Boolean, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    variants = relationship(
        "ProductVariant", back_populates="product", cascade="all, delete-orphan"
    )

    def price_table(self) -> dict[Currency, Money]:
        """Prices the product actually carries, keyed by currency."""
        columns = {
            Currency.NGN: self.price_ngn,
            Currency.USD: self.price_usd,
            Currency.EUR: self.price_eur,
            Currency.GBP: self.price_gbp,
        }
        return {
            currency: Money(currency, Decimal(amount))
            for currency, amount in columns.items()
            if amount is not None
        }

    def __repr__(self):
        return f"<Product {self.name}>"


class ProductVariant(Base):
    """A purchasable color/size combination with its own stock and weight."""

    __tablename__ = "checkout_product_variants"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    product_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("checkout_products.id", ondelete="CASCADE"), nullable=False
    )
    color: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    size: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    stock: Mapped[int] = mapped_column(Integer, default=0)
    weight_kg: Mapped[Optional[Decimal]] = mapped_column(Numeric(8, 3), nullable=True)

    product = relationship("Product", back_populates="variants")

    def __repr__(self):
        return f"<ProductVariant {self.product_id} {self.color}/{self.size}>"
