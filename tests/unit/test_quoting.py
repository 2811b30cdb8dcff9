"""Unit tests for delivery rate quoting."""

import asyncio
import uuid
from decimal import Decimal

import httpx
import pytest
from libs.common.currency import Currency, Money
from services.checkout_service.fx import FxTable
from services.checkout_service.pricing import CartLine, derive_totals
from services.checkout_service.quoting import (
    Destination,
    QuoteUnavailableError,
    QuoteValidationError,
    RateQuoter,
    build_manifest,
    join_address_line,
    parse_quote,
    present_quote,
    select_option,
)

USD_TABLE = FxTable(base=Currency.USD, rates={Currency.NGN: Decimal("1500")})


def _destination(**overrides) -> Destination:
    defaults = {
        "name": "Ada Obi",
        "email": "ada@example.com",
        "phone": "+234 801 234 5678",
        "address": "12 Marina Road",
        "city": "Lagos Island",
        "state": "Lagos",
        "country": "Nigeria",
    }
    defaults.update(overrides)
    return Destination(**defaults)


def _pricing(has_size_mod=False, weight=None):
    line = CartLine(
        product_id=uuid.uuid4(),
        name="Goggles",
        quantity=2,
        price_table={Currency.NGN: Money(Currency.NGN, Decimal("5000"))},
        has_size_mod=has_size_mod,
        unit_weight_kg=weight,
    )
    return derive_totals([line], Currency.NGN)


class FakeRatesApi:
    def __init__(self, responses=None):
        self.responses = list(responses or [])
        self.payloads = []

    async def fetch_rates(self, payload: dict) -> dict:
        self.payloads.append(payload)
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def _rates(*couriers, token="rt-1"):
    return {"rates": list(couriers), "request_token": token, "box_used": None}


def _rate(fee="2000", currency="USD", name="DHL"):
    return {
        "courier_id": name.lower(),
        "courier_name": name,
        "service_code": name.lower(),
        "fee": fee,
        "currency": currency,
        "eta": "2 days",
    }


# ---------------------------------------------------------------------------
# Destination and manifest
# ---------------------------------------------------------------------------


@pytest.mark.unit
def test_destination_validation_reports_every_problem():
    errors = _destination(email="not-an-email", phone="12-34", city=" ").validation_errors()
    assert set(errors) == {"email", "phone", "city"}


@pytest.mark.unit
def test_phone_needs_eight_digits_after_stripping_formatting():
    assert _destination(phone="(080) 1234-56").validation_errors() == {}


@pytest.mark.unit
def test_address_line_collapses_matching_city_and_state():
    assert join_address_line("1 Road", "Lagos", "lagos", "NG") == "1 Road, Lagos, Nigeria"


@pytest.mark.unit
def test_manifest_uses_price_plus_surcharge_and_fallback_weight():
    items = build_manifest(_pricing(has_size_mod=True, weight=0))

    assert len(items) == 1
    assert items[0].unit_amount == Decimal("5250.00")
    assert items[0].unit_weight_kg == Decimal("0.5")
    assert items[0].description == "Custom sized apparel"
    assert items[0].quantity == 2


# ---------------------------------------------------------------------------
# Conversion for display
# ---------------------------------------------------------------------------


@pytest.mark.unit
def test_foreign_fee_is_converted_and_original_is_kept():
    quote = parse_quote(_rate(fee="2000", currency="USD"), "rt-1")
    option = present_quote(quote, Currency.NGN, USD_TABLE)

    assert option.display_fee == Decimal("3000000.00")
    assert option.converted is True
    assert option.quote.fee == Decimal("2000")
    assert option.quote.currency == "USD"
    assert option.fee_in_ngn == Decimal("3000000.00")


@pytest.mark.unit
def test_same_currency_fee_is_not_touched():
    quote = parse_quote(_rate(fee="2500.55", currency="NGN"), "rt-1")
    option = present_quote(quote, Currency.NGN, USD_TABLE)

    assert option.display_fee == Decimal("2500.55")
    assert option.converted is False


@pytest.mark.unit
def test_fee_stays_native_without_fx_table():
    quote = parse_quote(_rate(fee="20", currency="USD"), "rt-1")
    option = present_quote(quote, Currency.NGN, None)

    assert option.display_fee == Decimal("20")
    assert option.converted is False
    assert option.fee_in_ngn is None


@pytest.mark.unit
def test_selection_snapshots_display_and_original_fee():
    quote = parse_quote(_rate(fee="2000", currency="USD"), None)
    option = present_quote(quote, Currency.NGN, USD_TABLE)
    from services.checkout_service.quoting import QuoteBatch

    batch = QuoteBatch(
        generation=1,
        display_currency=Currency.NGN,
        options=[option],
        request_token="rt-batch",
        box_used={"name": "small"},
        fx_table=USD_TABLE,
    )
    selected = select_option(batch, option)

    assert selected.request_token == "rt-batch"
    assert selected.fee == Decimal("3000000.00")
    assert selected.currency == Currency.NGN
    assert selected.original_fee == Decimal("2000")
    assert selected.original_currency == "USD"
    assert selected.as_payload()["box_used"] == {"name": "small"}


# ---------------------------------------------------------------------------
# RateQuoter
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_invalid_destination_never_calls_upstream():
    api = FakeRatesApi()
    quoter = RateQuoter(api)

    with pytest.raises(QuoteValidationError) as exc:
        await quoter.request_quotes(_destination(email=""), _pricing(), Currency.NGN, None)

    assert "email" in exc.value.errors
    assert api.payloads == []


@pytest.mark.asyncio
@pytest.mark.unit
async def test_empty_rate_list_is_a_valid_batch():
    quoter = RateQuoter(FakeRatesApi([_rates()]))

    batch = await quoter.request_quotes(_destination(), _pricing(), Currency.NGN, None)

    assert batch is not None
    assert batch.is_empty


@pytest.mark.asyncio
@pytest.mark.unit
async def test_network_failure_is_reported_as_unavailable():
    quoter = RateQuoter(FakeRatesApi([httpx.ConnectError("down")]))

    with pytest.raises(QuoteUnavailableError):
        await quoter.request_quotes(_destination(), _pricing(), Currency.NGN, None)


@pytest.mark.asyncio
@pytest.mark.unit
async def test_request_payload_carries_manifest_and_totals():
    api = FakeRatesApi([_rates()])
    quoter = RateQuoter(api)

    await quoter.request_quotes(
        _destination(), _pricing(weight="0.2"), Currency.NGN, None, pickup_days_from_now=2
    )

    payload = api.payloads[0]
    assert payload["total_weight_kg"] == "0.400"
    assert payload["total_value"] == "10000.00"
    assert payload["pickup_days_from_now"] == 2
    assert payload["destination"]["email"] == "ada@example.com"


@pytest.mark.asyncio
@pytest.mark.unit
async def test_slow_older_response_is_discarded():
    first_gate = asyncio.Event()

    class SlowFirstApi:
        def __init__(self):
            self.calls = 0

        async def fetch_rates(self, payload):
            self.calls += 1
            if self.calls == 1:
                await first_gate.wait()
                return _rates(_rate(name="Old"), token="old")
            return _rates(_rate(name="New"), token="new")

    quoter = RateQuoter(SlowFirstApi())
    first = asyncio.ensure_future(
        quoter.request_quotes(_destination(), _pricing(), Currency.NGN, None)
    )
    await asyncio.sleep(0)
    second = await quoter.request_quotes(_destination(), _pricing(), Currency.NGN, None)
    first_gate.set()

    assert await first is None
    assert second.request_token == "new"
    assert second.generation == quoter.latest_generation
