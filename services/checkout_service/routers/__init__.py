"""Checkout service routers package."""

from services.checkout_service.routers.admin import router as admin_router
from services.checkout_service.routers.fx import router as fx_router
from services.checkout_service.routers.orders import router as orders_router
from services.checkout_service.routers.shipping import router as shipping_router
from services.checkout_service.routers.webhooks import router as webhooks_router

__all__ = [
    "admin_router",
    "fx_router",
    "orders_router",
    "shipping_router",
    "webhooks_router",
]
