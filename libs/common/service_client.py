"""Reusable async HTTP helper for calls to the checkout API.

Propagates the current ``X-Request-ID`` so client and server log lines can be
correlated.
"""

from __future__ import annotations

from typing import Any, Optional

import httpx
from libs.common.logging import get_logger, get_request_id

logger = get_logger(__name__)

# Default timeout for API calls (seconds).
_DEFAULT_TIMEOUT = 10.0


async def api_request(
    *,
    base_url: str,
    method: str,
    path: str,
    json: Any = None,
    params: Optional[dict] = None,
    timeout: float = _DEFAULT_TIMEOUT,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.Response:
    """Make an HTTP call against ``base_url``.

    Args:
        base_url: Base URL of the target API (e.g. settings.CHECKOUT_API_URL).
        method: HTTP method (GET, POST, …).
        path: URL path on the target API (e.g. "/shipping/rates").
        json: Optional JSON body.
        params: Optional query parameters.
        timeout: Request timeout in seconds.
        transport: Optional transport (tests pass ``httpx.MockTransport``).

    Returns:
        The httpx.Response object.

    Raises:
        httpx.RequestError on connection failures.
    """
    url = f"{base_url.rstrip('/')}{path}"
    headers = {}
    request_id = get_request_id()
    if request_id:
        headers["X-Request-ID"] = request_id

    async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
        response = await client.request(
            method,
            url,
            headers=headers,
            json=json,
            params=params,
        )

    if response.status_code >= 400:
        logger.warning(
            "API call failed: %s %s -> %s",
            method,
            path,
            response.status_code,
        )
    return response


async def api_get(
    *,
    base_url: str,
    path: str,
    params: Optional[dict] = None,
    timeout: float = _DEFAULT_TIMEOUT,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.Response:
    """Convenience wrapper for GET requests."""
    return await api_request(
        base_url=base_url,
        method="GET",
        path=path,
        params=params,
        timeout=timeout,
        transport=transport,
    )


async def api_post(
    *,
    base_url: str,
    path: str,
    json: Any = None,
    timeout: float = _DEFAULT_TIMEOUT,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.Response:
    """Convenience wrapper for POST requests."""
    return await api_request(
        base_url=base_url,
        method="POST",
        path=path,
        json=json,
        timeout=timeout,
        transport=transport,
    )
