"""Checkout Service models package."""

from services.checkout_service.models.catalog import Product, ProductVariant
from services.checkout_service.models.enums import (
    OrderStatus,
    PaymentMethod,
    PaymentProvider,
    ShipmentStatus,
)
from services.checkout_service.models.orders import Order, OrderItem
from services.checkout_service.models.payments import OrphanPayment, WebhookEvent

__all__ = [
    "Order",
    "OrderItem",
    "OrderStatus",
    "OrphanPayment",
    "PaymentMethod",
    "PaymentProvider",
    "Product",
    "ProductVariant",
    "ShipmentStatus",
    "WebhookEvent",
]
