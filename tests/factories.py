"""
Model factories for creating valid test data.

Every factory produces a valid, insertable SQLAlchemy model instance.
Override any field via kwargs.

Usage:
    product = ProductFactory.create(price_usd=None)
    db_session.add(product)
    await db_session.commit()
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _uuid() -> uuid.UUID:
    return uuid.uuid4()


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _unique_email() -> str:
    return f"test-{uuid.uuid4().hex[:8]}@test.com"


def _unique_reference() -> str:
    return f"ref-{uuid.uuid4().hex[:12]}"


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


class ProductFactory:
    @staticmethod
    def create(**overrides):
        from services.checkout_service.models import Product

        defaults = {
            "id": _uuid(),
            "name": "Swim Cap",
            "category_slug": "accessories",
            "price_ngn": Decimal("5000.00"),
            "price_usd": Decimal("4.00"),
            "price_eur": None,
            "price_gbp": None,
            "allows_size_mod": True,
            "is_active": True,
            "created_at": _now(),
            "updated_at": _now(),
        }
        defaults.update(overrides)
        return Product(**defaults)


class ProductVariantFactory:
    @staticmethod
    def create(product_id=None, **overrides):
        from services.checkout_service.models import ProductVariant

        defaults = {
            "id": _uuid(),
            "product_id": product_id or _uuid(),
            "color": "Blue",
            "size": "M",
            "stock": 10,
            "weight_kg": Decimal("0.250"),
        }
        defaults.update(overrides)
        return ProductVariant(**defaults)


# ---------------------------------------------------------------------------
# Orders and payments
# ---------------------------------------------------------------------------


class OrderFactory:
    @staticmethod
    def create(**overrides):
        from libs.common.currency import Currency
        from services.checkout_service.models import Order, OrderStatus

        defaults = {
            "id": _uuid(),
            "order_number": Order.generate_order_number(),
            "payment_reference": _unique_reference(),
            "payment_verified": False,
            "status": OrderStatus.PAID,
            "customer_email": _unique_email(),
            "customer_name": "Ada Obi",
            "currency": Currency.NGN,
            "items_subtotal": Decimal("10000.00"),
            "size_mod_total": Decimal("0.00"),
            "delivery_fee": Decimal("2500.00"),
            "total": Decimal("12500.00"),
            "total_ngn_kobo": 1250000,
            "delivery_details": {
                "courier": {
                    "request_token": "rt-123",
                    "service_code": "fez",
                    "courier_id": "fez",
                }
            },
            "created_at": _now(),
            "updated_at": _now(),
        }
        defaults.update(overrides)
        return Order(**defaults)


class OrphanPaymentFactory:
    @staticmethod
    def create(**overrides):
        from services.checkout_service.models import OrphanPayment

        reference = overrides.pop("reference", None) or _unique_reference()
        defaults = {
            "id": _uuid(),
            "reference": reference,
            "amount_kobo": 1250000,
            "currency": "NGN",
            "payload": {"reference": reference},
            "reconciled": False,
            "auto_refunded": False,
            "first_seen_at": _now(),
        }
        defaults.update(overrides)
        return OrphanPayment(**defaults)
