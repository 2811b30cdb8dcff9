"""
Paystack API client for verifying and refunding checkout payments.

Provides async methods for:
- Verifying a transaction by reference
- Refunding a transaction
- Checking webhook signatures
"""

import hashlib
import hmac
from dataclasses import dataclass
from typing import Optional

import httpx
from libs.common.config import get_settings
from libs.common.logging import get_logger

logger = get_logger(__name__)


@dataclass
class VerifiedTransaction:
    """Result of verifying a transaction with Paystack."""

    id: Optional[str]
    reference: str
    status: str  # success, failed, abandoned, ...
    amount: int  # in kobo
    currency: str
    raw: dict

    @property
    def succeeded(self) -> bool:
        return self.status == "success"


@dataclass
class RefundResult:
    id: Optional[str]
    status: str
    raw: dict


class PaystackError(Exception):
    """Base exception for Paystack API errors."""

    def __init__(
        self, message: str, status_code: int = None, response_data: dict = None
    ):
        self.message = message
        self.status_code = status_code
        self.response_data = response_data or {}
        super().__init__(message)


def verify_signature(raw_body: bytes, signature: str, secret_key: str) -> bool:
    """Check an ``x-paystack-signature`` header (HMAC-SHA512 of the raw body)."""
    if not secret_key or not signature:
        return False
    expected = hmac.new(
        secret_key.encode("utf-8"), raw_body, hashlib.sha512
    ).hexdigest()
    return hmac.compare_digest(expected, signature)


class PaystackClient:
    """Async client for the Paystack Transaction and Refund APIs."""

    def __init__(
        self,
        secret_key: str = None,
        base_url: str = None,
        transport: httpx.AsyncBaseTransport = None,
    ):
        settings = get_settings()
        self.secret_key = secret_key or settings.PAYSTACK_SECRET_KEY
        if not self.secret_key:
            raise ValueError("PAYSTACK_SECRET_KEY is required")
        self.base_url = (base_url or settings.PAYSTACK_BASE_URL).rstrip("/")
        self._transport = transport
        self._headers = {
            "Authorization": f"Bearer {self.secret_key}",
            "Content-Type": "application/json",
        }

    async def _request(
        self,
        method: str,
        endpoint: str,
        params: dict = None,
        json_data: dict = None,
    ) -> dict:
        """Make an async request to Paystack API."""
        url = f"{self.base_url}{endpoint}"

        try:
            async with httpx.AsyncClient(
                timeout=30.0, transport=self._transport
            ) as client:
                response = await client.request(
                    method=method,
                    url=url,
                    headers=self._headers,
                    params=params,
                    json=json_data,
                )
        except httpx.TransportError as e:
            raise PaystackError(f"Paystack unreachable: {e}") from e

        try:
            data = response.json()
        except ValueError:
            data = {}

        if not response.is_success:
            logger.error(f"Paystack API error: {response.status_code} - {data}")
            raise PaystackError(
                message=data.get("message", "Unknown Paystack error"),
                status_code=response.status_code,
                response_data=data,
            )

        if not data.get("status"):
            raise PaystackError(
                message=data.get("message", "Paystack request failed"),
                response_data=data,
            )

        return data

    def verify_signature(self, raw_body: bytes, signature: str) -> bool:
        return verify_signature(raw_body, signature, self.secret_key)

    async def verify_transaction(self, reference: str) -> VerifiedTransaction:
        """
        Look up a transaction by reference.

        Returns:
            VerifiedTransaction; callers must check ``succeeded`` themselves

        Raises:
            PaystackError: If Paystack rejects the lookup
        """
        data = await self._request("GET", f"/transaction/verify/{reference}")

        tx = data.get("data") or {}
        tx_id = tx.get("id")
        return VerifiedTransaction(
            id=str(tx_id) if tx_id is not None else None,
            reference=tx.get("reference", reference),
            status=str(tx.get("status", "")).lower(),
            amount=int(tx.get("amount") or 0),
            currency=str(tx.get("currency", "")).upper(),
            raw=tx,
        )

    async def refund_transaction(
        self, transaction: str, reason: str = None, amount_kobo: int = None
    ) -> RefundResult:
        """Refund a transaction (full refund unless ``amount_kobo`` is given)."""
        body = {"transaction": transaction}
        if amount_kobo is not None:
            body["amount"] = amount_kobo
        if reason:
            body["merchant_note"] = reason

        data = await self._request("POST", "/refund", json_data=body)
        refund = data.get("data") or {}
        refund_id = refund.get("id")
        return RefundResult(
            id=str(refund_id) if refund_id is not None else None,
            status=str(refund.get("status", "pending")),
            raw=refund,
        )


def get_paystack_client() -> PaystackClient:
    """Get a PaystackClient instance."""
    return PaystackClient()
