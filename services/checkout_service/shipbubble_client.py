"""
Shipbubble API client for courier rates and shipping labels.

Provides async methods for:
- Validating addresses (returns an address code)
- Listing package boxes and courier integrations
- Fetching rates (all couriers or a selected shortlist)
- Creating and cancelling shipping labels
- Listing shipments by id
"""

import asyncio
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Awaitable, Callable, List, Optional

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from libs.common.config import get_settings
from libs.common.currency import to_decimal
from libs.common.logging import get_logger

logger = get_logger(__name__)

BACKOFF_BASE_SECONDS = 0.5


@dataclass
class ValidatedAddress:
    """Result of address validation."""

    address_code: int
    formatted_address: str
    country: str
    country_code: str
    state: str
    city: str
    raw: dict


@dataclass
class Box:
    """Package box offered by Shipbubble."""

    box_size_id: Optional[int]
    name: str
    length: Decimal
    width: Decimal
    height: Decimal
    max_weight: Decimal

    def as_dict(self) -> dict:
        return {
            "name": self.name,
            "length": float(self.length),
            "width": float(self.width),
            "height": float(self.height),
            "max_weight": float(self.max_weight),
        }


@dataclass
class CourierIntegration:
    name: str
    service_code: str
    raw: dict


class ShipbubbleError(Exception):
    """Base exception for Shipbubble API errors."""

    def __init__(
        self, message: str, status_code: int = None, response_data: dict = None
    ):
        self.message = message
        self.status_code = status_code
        self.response_data = response_data or {}
        super().__init__(message)


def pick_box_for_weight(total_weight_kg: Decimal, boxes: List[Box]) -> Optional[Box]:
    """Smallest box (by max weight) that can carry ``total_weight_kg``."""
    for box in sorted(boxes, key=lambda b: b.max_weight):
        if box.max_weight >= total_weight_kg:
            return box
    return None


def _api_error(status_code: int, data: dict) -> ShipbubbleError:
    return ShipbubbleError(
        message=data.get("message") or f"Shipbubble HTTP {status_code}",
        status_code=status_code,
        response_data=data,
    )


class _RetryableStatus(Exception):
    """429 or 5xx answer; retried, then surfaced as ShipbubbleError."""

    def __init__(self, status_code: int, data: dict):
        self.status_code = status_code
        self.data = data
        super().__init__(f"HTTP {status_code}")


class ShipbubbleClient:
    """Async client for the Shipbubble shipping API."""

    def __init__(
        self,
        api_key: str = None,
        base_url: str = None,
        timeout: float = None,
        max_attempts: int = None,
        transport: httpx.AsyncBaseTransport = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        settings = get_settings()
        self.api_key = api_key or settings.SHIPBUBBLE_API_KEY
        if not self.api_key:
            raise ValueError("SHIPBUBBLE_API_KEY is required")
        self.base_url = (base_url or settings.SHIPBUBBLE_API_BASE).rstrip("/")
        self.timeout = timeout or settings.SHIPBUBBLE_TIMEOUT_SECONDS
        self.label_timeout = settings.SHIPBUBBLE_LABEL_TIMEOUT_SECONDS
        self.max_attempts = max(1, max_attempts or settings.SHIPBUBBLE_MAX_ATTEMPTS)
        self._transport = transport
        self._sleep = sleep
        self._headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def _log_retry(self, retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception()
        logger.warning(
            "Shipbubble request failed (attempt %s), retrying: %s",
            retry_state.attempt_number,
            error,
        )

    async def _send(
        self, method: str, endpoint: str, json_data: dict = None, timeout: float = None
    ) -> dict:
        async with httpx.AsyncClient(
            timeout=timeout or self.timeout, transport=self._transport
        ) as client:
            response = await client.request(
                method=method,
                url=f"{self.base_url}{endpoint}",
                headers=self._headers,
                json=json_data,
            )

        try:
            data = response.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}

        failed = not response.is_success or data.get("status") in ("failed", "error")
        if not failed:
            return data

        if response.status_code == 429 or response.status_code >= 500:
            raise _RetryableStatus(response.status_code, data)

        logger.error(f"Shipbubble API error: {response.status_code} - {data}")
        raise _api_error(response.status_code, data)

    async def _request(
        self,
        method: str,
        endpoint: str,
        json_data: dict = None,
        timeout: float = None,
    ) -> dict:
        """Make a request, retrying 429/5xx responses and network failures."""
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential_jitter(
                initial=BACKOFF_BASE_SECONDS, jitter=BACKOFF_BASE_SECONDS
            ),
            retry=retry_if_exception_type((httpx.TransportError, _RetryableStatus)),
            sleep=self._sleep,
            before_sleep=self._log_retry,
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    return await self._send(method, endpoint, json_data, timeout)
        except httpx.TransportError as e:
            raise ShipbubbleError(f"Shipbubble network error: {e}") from e
        except _RetryableStatus as e:
            logger.error(f"Shipbubble API error: {e.status_code} - {e.data}")
            raise _api_error(e.status_code, e.data) from e

    # =========================================================================
    # Addresses
    # =========================================================================

    async def validate_address(
        self, name: str, email: str, phone: str, address: str
    ) -> ValidatedAddress:
        """
        Validate a single-line address and get its Shipbubble address code.

        Raises:
            ShipbubbleError: If the address cannot be validated
        """
        body = {
            "name": name.strip(),
            "email": email.strip(),
            "phone": phone.strip(),
            "address": address.strip(),
        }
        data = await self._request("POST", "/shipping/address/validate", json_data=body)
        payload = data.get("data") or {}

        code = payload.get("address_code")
        if not code:
            raise ShipbubbleError(
                "Shipbubble could not validate this address. Please check the address string.",
                response_data=data,
            )

        return ValidatedAddress(
            address_code=int(code),
            formatted_address=payload.get("formatted_address", ""),
            country=str(payload.get("country") or ""),
            country_code=str(payload.get("country_code") or payload.get("country") or "").upper(),
            state=str(payload.get("state") or payload.get("state_code") or ""),
            city=str(payload.get("city") or payload.get("city_code") or ""),
            raw=payload,
        )

    # =========================================================================
    # Boxes and couriers
    # =========================================================================

    async def list_boxes(self) -> List[Box]:
        data = await self._request("GET", "/shipping/labels/boxes")
        boxes = []
        for item in data.get("data") or []:
            max_weight = to_decimal(item.get("max_weight"))
            if max_weight is None:
                continue
            boxes.append(
                Box(
                    box_size_id=item.get("box_size_id"),
                    name=str(item.get("name", "")),
                    length=to_decimal(item.get("length")) or Decimal("0"),
                    width=to_decimal(item.get("width")) or Decimal("0"),
                    height=to_decimal(item.get("height")) or Decimal("0"),
                    max_weight=max_weight,
                )
            )
        return boxes

    async def list_couriers(self) -> List[CourierIntegration]:
        data = await self._request("GET", "/shipping/couriers")
        return [
            CourierIntegration(
                name=str(item.get("name", "")),
                service_code=str(item.get("service_code", "")),
                raw=item,
            )
            for item in data.get("data") or []
            if item.get("service_code")
        ]

    # =========================================================================
    # Rates
    # =========================================================================

    async def fetch_rates(
        self, body: dict, service_codes: Optional[List[str]] = None
    ) -> dict:
        """
        Fetch courier rates for a package.

        Args:
            body: fetch_rates payload (address codes, pickup date, items, ...)
            service_codes: restrict the lookup to these couriers

        Returns:
            The ``data`` object: ``{"request_token": ..., "couriers": [...]}``
        """
        endpoint = "/shipping/fetch_rates"
        if service_codes:
            endpoint = f"{endpoint}/{','.join(service_codes)}"
        data = await self._request("POST", endpoint, json_data=body)
        return data.get("data") or {}

    # =========================================================================
    # Labels
    # =========================================================================

    async def create_label(
        self,
        request_token: str,
        service_code: str,
        courier_id: str,
        insurance_code: str = None,
    ) -> dict:
        body = {
            "request_token": request_token,
            "service_code": service_code,
            "courier_id": courier_id,
        }
        if insurance_code:
            body["insurance_code"] = insurance_code
        data = await self._request(
            "POST", "/shipping/labels", json_data=body, timeout=self.label_timeout
        )
        return data.get("data") or {}

    async def cancel_label(self, shipment_id: str) -> None:
        if not shipment_id:
            raise ShipbubbleError("Shipbubble order_id required to cancel")
        await self._request(
            "POST",
            f"/shipping/labels/cancel/{shipment_id}",
            timeout=self.label_timeout,
        )

    async def list_shipments(self, shipment_ids: List[str]) -> List[dict]:
        """Fetch shipments by id, 50 per call."""
        results: List[dict] = []
        for start in range(0, len(shipment_ids), 50):
            chunk = ",".join(shipment_ids[start:start + 50])
            data = await self._request("GET", f"/shipping/labels/list/{chunk}")
            results.extend((data.get("data") or {}).get("results") or [])
        return results


def get_shipbubble_client() -> ShipbubbleClient:
    """FastAPI dependency for the Shipbubble client."""
    return ShipbubbleClient()
