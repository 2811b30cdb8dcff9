"""Delivery rate quoting for the checkout workflow.

Quotes are requested only on explicit user action. Every request carries a
generation number; a response that arrives after a newer request was issued
is discarded so stale quotes are never shown.
"""

import re
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Optional, Protocol

import httpx

from libs.common.currency import Currency, round_money, round_weight, to_decimal
from libs.common.logging import get_logger
from services.checkout_service.fx import FxTable, fx_convert
from services.checkout_service.pricing import PricingSummary

logger = get_logger(__name__)

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PHONE_MIN_DIGITS = 8
FALLBACK_UNIT_WEIGHT_KG = Decimal("0.5")

QUOTE_FAILED_MESSAGE = (
    "We couldn't get delivery rates for this address. "
    "Please check that the address is complete and try again."
)
NO_OPTIONS_MESSAGE = "No delivery options are available for this address."


class QuoteValidationError(Exception):
    """Destination is incomplete; nothing was sent upstream."""

    def __init__(self, errors: dict[str, str]):
        self.errors = errors
        super().__init__("; ".join(f"{k}: {v}" for k, v in errors.items()))


class QuoteUnavailableError(Exception):
    """The rate lookup failed (network or provider error)."""


def normalize_country(country: Optional[str]) -> str:
    raw = (country or "").strip()
    if raw.upper() == "NG":
        return "Nigeria"
    return raw


def join_address_line(
    street: Optional[str],
    city: Optional[str],
    state: Optional[str],
    country: Optional[str],
) -> str:
    """Single-line address; city and state collapse when they are the same."""
    parts = []
    street = (street or "").strip()
    city = (city or "").strip()
    state = (state or "").strip()
    country = normalize_country(country)

    if street:
        parts.append(street)
    if city and state and city.lower() != state.lower():
        parts.extend([city, state])
    elif city or state:
        parts.append(city or state)
    if country:
        parts.append(country)
    return ", ".join(parts)


@dataclass
class Destination:
    name: str
    email: str
    phone: str
    address: str
    city: str
    state: str
    country: str

    def validation_errors(self) -> dict[str, str]:
        errors = {}
        if not self.name.strip():
            errors["name"] = "Name is required"
        if not EMAIL_RE.match(self.email.strip()):
            errors["email"] = "Enter a valid email address"
        if len(re.sub(r"\D", "", self.phone)) < PHONE_MIN_DIGITS:
            errors["phone"] = f"Phone number needs at least {PHONE_MIN_DIGITS} digits"
        for attr in ("address", "city", "state", "country"):
            if not getattr(self, attr).strip():
                errors[attr] = f"{attr.capitalize()} is required"
        return errors

    def single_line(self) -> str:
        return join_address_line(self.address, self.city, self.state, self.country)

    def as_payload(self) -> dict:
        return {
            "name": self.name.strip(),
            "email": self.email.strip(),
            "phone": self.phone.strip(),
            "address": self.address.strip(),
            "city": self.city.strip(),
            "state": self.state.strip(),
            "country": self.country.strip(),
        }


@dataclass(frozen=True)
class ManifestItem:
    name: str
    description: str
    unit_weight_kg: Decimal
    unit_amount: Decimal
    quantity: int

    def as_payload(self) -> dict:
        return {
            "name": self.name,
            "description": self.description,
            "unit_weight_kg": str(self.unit_weight_kg),
            "unit_amount": str(self.unit_amount),
            "quantity": self.quantity,
        }


def build_manifest(pricing: PricingSummary) -> list[ManifestItem]:
    """Reduce priced cart lines to the package items couriers quote on."""
    items = []
    for line_pricing in pricing.lines:
        line = line_pricing.line
        weight = line_pricing.unit_weight_kg
        items.append(
            ManifestItem(
                name=line.name,
                description="Custom sized apparel" if line.has_size_mod else "Cart item",
                unit_weight_kg=weight if weight > 0 else FALLBACK_UNIT_WEIGHT_KG,
                unit_amount=round_money(line_pricing.unit_amount),
                quantity=line.quantity,
            )
        )
    return items


@dataclass(frozen=True)
class DeliveryQuote:
    """A courier offer exactly as the aggregator priced it."""

    courier_id: str
    courier_name: str
    service_code: str
    fee: Decimal
    currency: str
    eta: Optional[str]
    request_token: Optional[str]
    raw: dict = field(default_factory=dict, compare=False)

    @property
    def native_currency(self) -> Optional[Currency]:
        try:
            return Currency(self.currency.upper())
        except ValueError:
            return None


@dataclass(frozen=True)
class QuoteOption:
    """A quote with its fee in the display currency, or native when no rate applies."""

    quote: DeliveryQuote
    display_fee: Decimal
    display_currency: Currency
    converted: bool
    fee_in_ngn: Optional[Decimal]

    @property
    def in_display_currency(self) -> bool:
        return self.converted or self.quote.native_currency == self.display_currency


@dataclass(frozen=True)
class QuoteBatch:
    generation: int
    display_currency: Currency
    options: list[QuoteOption]
    request_token: Optional[str]
    box_used: Optional[dict]
    fx_table: Optional[FxTable]

    @property
    def is_empty(self) -> bool:
        return not self.options


@dataclass(frozen=True)
class SelectedDeliveryOption:
    """The chosen quote. ``original_fee``/``original_currency`` are never dropped."""

    request_token: Optional[str]
    courier_id: str
    courier_name: str
    service_code: str
    fee: Decimal
    currency: Currency
    original_fee: Decimal
    original_currency: str
    eta: Optional[str]
    raw: dict = field(default_factory=dict, compare=False)
    box_used: Optional[dict] = None
    fx_table: Optional[FxTable] = field(default=None, compare=False)

    def as_payload(self) -> dict:
        return {
            "request_token": self.request_token,
            "courier_id": self.courier_id,
            "courier_name": self.courier_name,
            "service_code": self.service_code,
            "fee": str(self.fee),
            "currency": self.currency.value,
            "original_fee": str(self.original_fee),
            "original_currency": self.original_currency,
            "eta": self.eta,
            "raw": self.raw,
            "box_used": self.box_used,
        }


def parse_quote(rate: dict, request_token: Optional[str]) -> DeliveryQuote:
    """Normalize one rate returned by ``POST /shipping/rates``."""
    return DeliveryQuote(
        courier_id=str(rate.get("courier_id", "")),
        courier_name=str(rate.get("courier_name", "")),
        service_code=str(rate.get("service_code", "")),
        fee=to_decimal(rate.get("fee")) or Decimal("0"),
        currency=str(rate.get("currency") or Currency.NGN.value).upper(),
        eta=rate.get("eta") or None,
        request_token=rate.get("request_token") or request_token,
        raw=rate.get("raw") or {},
    )


def present_quote(
    quote: DeliveryQuote, display_currency: Currency, fx_table: Optional[FxTable]
) -> QuoteOption:
    """Convert a quote's fee for display; the quote itself is left untouched."""
    native = quote.native_currency
    converted = False
    display_fee = quote.fee
    if native is not None and native != display_currency and fx_table is not None:
        if fx_table.supports(native, display_currency):
            display_fee = round_money(
                fx_table.convert(quote.fee, native, display_currency)
            )
            converted = True

    fee_in_ngn = None
    if native == Currency.NGN:
        fee_in_ngn = quote.fee
    elif native is not None and fx_table is not None and fx_table.supports(native, Currency.NGN):
        fee_in_ngn = round_money(fx_convert(quote.fee, native, Currency.NGN, fx_table))

    return QuoteOption(
        quote=quote,
        display_fee=display_fee,
        display_currency=display_currency,
        converted=converted,
        fee_in_ngn=fee_in_ngn,
    )


def select_option(batch: QuoteBatch, option: QuoteOption) -> SelectedDeliveryOption:
    quote = option.quote
    return SelectedDeliveryOption(
        request_token=quote.request_token or batch.request_token,
        courier_id=quote.courier_id,
        courier_name=quote.courier_name,
        service_code=quote.service_code,
        fee=option.display_fee,
        currency=option.display_currency,
        original_fee=quote.fee,
        original_currency=quote.currency,
        eta=quote.eta,
        raw=quote.raw,
        box_used=batch.box_used,
        fx_table=batch.fx_table,
    )


def _rate_rows(response) -> list[dict]:
    """Rows of a rates response; a missing list means no options."""
    if not isinstance(response, dict):
        raise QuoteUnavailableError("Malformed rates response")
    rows = response.get("rates") or []
    if not isinstance(rows, list) or not all(isinstance(row, dict) for row in rows):
        raise QuoteUnavailableError("Malformed rates response")
    return rows


class RatesApi(Protocol):
    async def fetch_rates(self, payload: dict) -> dict:
        """POST the rate request; returns ``{rates, request_token, box_used}``."""


class RateQuoter:
    def __init__(self, api: RatesApi):
        self._api = api
        self._generation = 0

    @property
    def latest_generation(self) -> int:
        return self._generation

    def build_request(
        self,
        destination: Destination,
        pricing: PricingSummary,
        pickup_days_from_now: int = 1,
    ) -> dict:
        return {
            "destination": destination.as_payload(),
            "items": [item.as_payload() for item in build_manifest(pricing)],
            "total_weight_kg": str(round_weight(pricing.total_weight_kg)),
            "total_value": str(pricing.base_total),
            "pickup_days_from_now": pickup_days_from_now,
        }

    async def request_quotes(
        self,
        destination: Destination,
        pricing: PricingSummary,
        display_currency: Currency,
        fx_table: Optional[FxTable],
        pickup_days_from_now: int = 1,
    ) -> Optional[QuoteBatch]:
        """Fetch, normalize and convert quotes.

        Returns None when a newer request was issued while this one was in
        flight. An empty batch is a valid answer.

        Raises:
            QuoteValidationError: destination is incomplete (no call is made)
            QuoteUnavailableError: the rate lookup failed
        """
        errors = destination.validation_errors()
        if errors:
            raise QuoteValidationError(errors)

        self._generation += 1
        generation = self._generation
        payload = self.build_request(destination, pricing, pickup_days_from_now)

        try:
            response = await self._api.fetch_rates(payload)
        except (httpx.HTTPError, ValueError) as e:
            if generation != self._generation:
                return None
            logger.warning("Rate lookup failed: %s", e)
            raise QuoteUnavailableError(str(e)) from e

        if generation != self._generation:
            logger.info(
                "Discarding stale quote response (generation %s, latest %s)",
                generation,
                self._generation,
            )
            return None

        rows = _rate_rows(response)
        request_token = response.get("request_token")
        options = [
            present_quote(parse_quote(rate, request_token), display_currency, fx_table)
            for rate in rows
        ]
        return QuoteBatch(
            generation=generation,
            display_currency=display_currency,
            options=options,
            request_token=request_token,
            box_used=response.get("box_used"),
            fx_table=fx_table,
        )
