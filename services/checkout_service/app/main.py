"""FastAPI application for the Checkout Service."""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from libs.common.config import get_settings
from libs.common.middleware import add_observability_middleware
from libs.common.rate_limit import limiter, rate_limit_exceeded_handler
from services.checkout_service.routers import (
    admin_router,
    fx_router,
    orders_router,
    shipping_router,
    webhooks_router,
)
from slowapi.errors import RateLimitExceeded


def create_app() -> FastAPI:
    """Create and configure the Checkout Service FastAPI app."""
    settings = get_settings()
    app = FastAPI(
        title="Storefront Checkout Service",
        version="0.1.0",
        description="Checkout pricing, delivery quotes, NGN settlement and order reconciliation.",
    )

    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Structured logging + request tracing
    add_observability_middleware(app)

    @app.get("/health", tags=["system"])
    async def health_check() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "ok", "service": "checkout"}

    # Storefront routes
    app.include_router(fx_router)
    app.include_router(shipping_router)
    app.include_router(orders_router)

    # Gateway callbacks and operator tooling
    app.include_router(webhooks_router)
    app.include_router(admin_router)

    return app


app = create_app()
