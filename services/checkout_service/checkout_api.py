"""HTTP client the storefront checkout uses to reach the checkout API."""

from decimal import Decimal
from typing import Any, Optional

import httpx
from libs.common.cancellation import CancellationToken, run_cancellable
from libs.common.config import get_settings
from libs.common.currency import Currency
from libs.common.service_client import api_get, api_post
from services.checkout_service.fx import FxTable, FxUnavailableError


class OrderApiError(Exception):
    """Order creation was rejected by the API."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


def _error_detail(response: httpx.Response) -> str:
    try:
        body: Any = response.json()
    except ValueError:
        body = None
    detail = body.get("detail") if isinstance(body, dict) else None
    if isinstance(detail, dict):
        detail = detail.get("error") or detail.get("message")
    return str(detail or f"HTTP {response.status_code}")


class CheckoutApiClient:
    def __init__(
        self,
        base_url: str = None,
        timeout: float = None,
        transport: httpx.AsyncBaseTransport = None,
    ):
        settings = get_settings()
        self.base_url = base_url or settings.CHECKOUT_API_URL
        self.timeout = timeout or settings.CHECKOUT_API_TIMEOUT_SECONDS
        self._transport = transport

    async def fetch_rates(self, payload: dict) -> dict:
        """POST /shipping/rates. Non-2xx raises ``httpx.HTTPStatusError``."""
        response = await api_post(
            base_url=self.base_url,
            path="/shipping/rates",
            json=payload,
            timeout=self.timeout,
            transport=self._transport,
        )
        response.raise_for_status()
        return response.json()

    async def _get_table(self, base: Currency) -> FxTable:
        try:
            response = await api_get(
                base_url=self.base_url,
                path="/fx/rates",
                params={"base": base.value},
                timeout=self.timeout,
                transport=self._transport,
            )
        except httpx.HTTPError as e:
            raise FxUnavailableError(f"FX rates request failed: {e}") from e
        if not response.is_success:
            raise FxUnavailableError(_error_detail(response), response.status_code)

        try:
            data = response.json()
            if not isinstance(data, dict) or not isinstance(data.get("rates"), dict):
                raise ValueError("expected {base, rates}")
            return FxTable(
                base=Currency(data.get("base")),
                rates={Currency(c): Decimal(str(r)) for c, r in data["rates"].items()},
                last_update_unix=data.get("last_update_unix"),
                next_update_unix=data.get("next_update_unix"),
            )
        except (ValueError, ArithmeticError) as e:
            raise FxUnavailableError(f"Malformed FX rates response: {e}") from e

    async def get_table(
        self, base: Currency, token: Optional[CancellationToken] = None
    ) -> FxTable:
        return await run_cancellable(self._get_table(base), token)

    async def create_order(self, payload: dict) -> dict:
        """POST /orders/online; returns ``{order_id, email, created, order}``.

        Raises:
            OrderApiError: the API answered with an error status
            httpx.HTTPError: the request never got an answer
        """
        response = await api_post(
            base_url=self.base_url,
            path="/orders/online",
            json=payload,
            timeout=self.timeout,
            transport=self._transport,
        )
        if not response.is_success:
            raise OrderApiError(_error_detail(response), response.status_code)
        return response.json()
