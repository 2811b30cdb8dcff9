"""Per-client rate limits for checkout endpoints that cost money upstream.

Courier quotes are billed by the aggregator and order creation calls the
payment gateway, so both get their own tier. Counters live in
``RATE_LIMIT_STORAGE_URI`` (``memory://`` by default, ``redis://...`` when
several instances share limits).

Decorated endpoints must accept a ``request: Request`` parameter.
"""

from typing import Callable

from fastapi import Request, Response
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.responses import JSONResponse

from libs.common.config import Settings, get_settings
from libs.common.logging import get_logger

logger = get_logger(__name__)

DEFAULT_LIMIT = "100/minute"
QUOTE_LIMIT = "5/minute"
PAYMENT_LIMIT = "10/minute"


def client_key(request: Request) -> str:
    """First hop of X-Forwarded-For when behind a proxy, else the peer address."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return get_remote_address(request)


def build_limiter(settings: Settings) -> Limiter:
    return Limiter(
        key_func=client_key,
        default_limits=[DEFAULT_LIMIT],
        storage_uri=settings.RATE_LIMIT_STORAGE_URI,
        strategy="fixed-window",
        enabled=settings.RATE_LIMIT_ENABLED,
    )


limiter = build_limiter(get_settings())


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> Response:
    limit = getattr(exc, "limit", None)
    retry_after = limit.limit.get_expiry() if limit is not None else 60
    logger.warning(
        "Rate limit exceeded",
        extra={"extra_fields": {"client": client_key(request), "limit": exc.detail}},
    )
    return JSONResponse(
        status_code=429,
        content={
            "detail": f"Too many requests ({exc.detail}). Try again shortly.",
            "code": "RATE_LIMIT_EXCEEDED",
        },
        headers={"Retry-After": str(retry_after)},
    )


def quote_limit(func: Callable) -> Callable:
    """Courier rate lookups."""
    return limiter.limit(QUOTE_LIMIT)(func)


def payment_limit(func: Callable) -> Callable:
    """Order creation after payment."""
    return limiter.limit(PAYMENT_LIMIT)(func)
