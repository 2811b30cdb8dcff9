"""Order models: one order per successful payment reference."""

import random
import string
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from libs.common.currency import Currency
from libs.common.datetime_utils import utc_now
from libs.db.base import Base, JSONType
from services.checkout_service.models.enums import (
    OrderStatus,
    PaymentMethod,
    ShipmentStatus,
    enum_values,
)
from sqlalchemy import BigInteger, Boolean, DateTime
from sqlalchemy import Enum as SAEnum
from sqlalchemy import ForeignKey, Integer, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

# ============================================================================
# ORDER
# ============================================================================


class Order(Base):
    """Orders created from a verified online payment."""

    __tablename__ = "checkout_orders"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    order_number: Mapped[str] = mapped_column(
        String(20), unique=True, nullable=False, index=True
    )

    # Payment (payment_reference is the idempotency key)
    payment_reference: Mapped[str] = mapped_column(
        String(100), unique=True, nullable=False, index=True
    )
    payment_provider_id: Mapped[Optional[str]] = mapped_column(
        String(100), nullable=True
    )
    payment_verified: Mapped[bool] = mapped_column(Boolean, default=False)
    payment_method: Mapped[PaymentMethod] = mapped_column(
        SAEnum(
            PaymentMethod,
            values_callable=enum_values,
            name="checkout_payment_method_enum",
        ),
        default=PaymentMethod.PAYSTACK,
    )
    status: Mapped[OrderStatus] = mapped_column(
        SAEnum(
            OrderStatus,
            values_callable=enum_values,
            name="checkout_order_status_enum",
        ),
        default=OrderStatus.PAID,
    )

    # Customer: either a registered customer id or guest details
    customer_id: Mapped[Optional[str]] = mapped_column(
        String(255), index=True, nullable=True
    )
    customer_email: Mapped[str] = mapped_column(String(255), nullable=False)
    customer_name: Mapped[str] = mapped_column(String(255), nullable=False)
    customer_phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    guest_info: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)

    # Pricing, in the display currency the customer saw
    currency: Mapped[Currency] = mapped_column(
        SAEnum(
            Currency, values_callable=enum_values, name="checkout_currency_enum"
        ),
        nullable=False,
    )
    items_subtotal: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    size_mod_total: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=0)
    delivery_fee: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=0)
    total: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)

    # What the gateway actually charged, in kobo
    total_ngn_kobo: Mapped[int] = mapped_column(BigInteger, nullable=False)

    # Delivery
    shipping_address: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    delivery_details: Mapped[Optional[dict]] = mapped_column(
        JSONType, nullable=True
    )  # aggregated weight + courier snapshot (request token, original fee, ...)

    # Shipping label
    shipment_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    tracking_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    shipment_status: Mapped[Optional[ShipmentStatus]] = mapped_column(
        SAEnum(
            ShipmentStatus,
            values_callable=enum_values,
            name="checkout_shipment_status_enum",
        ),
        nullable=True,
    )

    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    paid_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    items = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    @staticmethod
    def generate_order_number() -> str:
        """Generate a unique order number like ORD-20260104-A1B2C."""
        date_part = utc_now().strftime("%Y%m%d")
        random_part = "".join(
            random.choices(string.ascii_uppercase + string.digits, k=5)
        )
        return f"ORD-{date_part}-{random_part}"

    def __repr__(self):
        return f"<Order {self.order_number}>"


class OrderItem(Base):
    """Order line items (snapshot at order time)."""

    __tablename__ = "checkout_order_items"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("checkout_orders.id", ondelete="CASCADE"), nullable=False
    )
    variant_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("checkout_product_variants.id", ondelete="SET NULL"),
        nullable=True,
    )
    product_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)

    # Snapshot at order time (products may change)
    product_name: Mapped[str] = mapped_column(String(255), nullable=False)
    color: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    size: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)

    currency: Mapped[Currency] = mapped_column(
        SAEnum(
            Currency, values_callable=enum_values, name="checkout_currency_enum"
        ),
        nullable=False,
    )
    unit_price: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    has_size_mod: Mapped[bool] = mapped_column(Boolean, default=False)
    size_mod_fee: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=0)
    line_total: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    custom_measurements: Mapped[Optional[dict]] = mapped_column(
        JSONType, nullable=True
    )
    unit_weight_kg: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(8, 3), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)

    order = relationship("Order", back_populates="items")

    def __repr__(self):
        return f"<OrderItem {self.product_name} qty={self.quantity}>"
