"""Unit tests for FX tables and the cached FX provider."""

import asyncio
from decimal import Decimal

import httpx
import pytest
from libs.common.cancellation import CancellationToken, OperationCancelled
from libs.common.currency import Currency
from services.checkout_service.fx import (
    FxRateProvider,
    FxTable,
    FxUnavailableError,
    fx_convert,
    parse_provider_payload,
)
from tests.stubs import fx_payload

USD_TABLE = FxTable(
    base=Currency.USD,
    rates={Currency.NGN: Decimal("1500"), Currency.EUR: Decimal("0.8")},
)


class _Clock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


# ---------------------------------------------------------------------------
# Conversion
# ---------------------------------------------------------------------------


@pytest.mark.unit
def test_convert_from_base_multiplies():
    assert USD_TABLE.convert(Decimal("2000"), Currency.USD, Currency.NGN) == Decimal("3000000")


@pytest.mark.unit
def test_convert_to_base_divides():
    assert USD_TABLE.convert(Decimal("3000"), Currency.NGN, Currency.USD) == Decimal("2")


@pytest.mark.unit
def test_convert_between_non_base_currencies_goes_through_base():
    # 1500 NGN -> 1 USD -> 0.8 EUR
    assert USD_TABLE.convert(Decimal("1500"), Currency.NGN, Currency.EUR) == Decimal("0.8")


@pytest.mark.unit
def test_same_currency_is_unchanged():
    assert USD_TABLE.convert(Decimal("12.34"), Currency.GBP, Currency.GBP) == Decimal("12.34")


@pytest.mark.unit
def test_fx_convert_without_table_or_rate_is_a_no_op():
    assert fx_convert(Decimal("10"), Currency.USD, Currency.NGN, None) == Decimal("10")
    assert fx_convert(Decimal("10"), Currency.USD, Currency.GBP, USD_TABLE) == Decimal("10")


@pytest.mark.unit
def test_missing_rate_raises_on_exact_convert():
    with pytest.raises(FxUnavailableError):
        USD_TABLE.convert(Decimal("1"), Currency.USD, Currency.GBP)


@pytest.mark.unit
def test_parse_keeps_only_supported_positive_rates():
    table = parse_provider_payload(
        fx_payload("NGN", {"NGN": 1, "USD": 0.000625, "JPY": 0.1, "GBP": 0}), Currency.NGN
    )
    assert set(table.rates) == {Currency.NGN, Currency.USD}
    assert table.next_update_unix == 1760918400


@pytest.mark.unit
def test_parse_rejects_error_payload():
    with pytest.raises(FxUnavailableError):
        parse_provider_payload({"result": "error", "error-type": "invalid-key"}, Currency.NGN)


# ---------------------------------------------------------------------------
# Provider cache
# ---------------------------------------------------------------------------


def _counting_transport(responses: list):
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request.url.path)
        response = responses[min(len(calls), len(responses)) - 1]
        if isinstance(response, Exception):
            raise response
        return response

    return httpx.MockTransport(handler), calls


@pytest.mark.asyncio
@pytest.mark.unit
async def test_provider_caches_within_ttl():
    ok = httpx.Response(200, json=fx_payload("NGN", {"USD": 0.000625}))
    transport, calls = _counting_transport([ok])
    clock = _Clock()
    provider = FxRateProvider(
        base_url="https://fx.test", ttl_seconds=60, transport=transport, clock=clock
    )

    first = await provider.get_table(Currency.NGN)
    clock.now += 30
    second = await provider.get_table(Currency.NGN)

    assert first is second
    assert calls == ["/NGN"]


@pytest.mark.asyncio
@pytest.mark.unit
async def test_provider_serves_stale_table_when_upstream_fails():
    ok = httpx.Response(200, json=fx_payload("NGN", {"USD": 0.000625}))
    failed = httpx.Response(502, json={})
    transport, calls = _counting_transport([ok, failed])
    clock = _Clock()
    provider = FxRateProvider(
        base_url="https://fx.test", ttl_seconds=60, transport=transport, clock=clock
    )

    first = await provider.get_table(Currency.NGN)
    clock.now += 120
    second = await provider.get_table(Currency.NGN)

    assert second == first
    assert len(calls) == 2


@pytest.mark.asyncio
@pytest.mark.unit
async def test_provider_without_cache_raises_on_network_error():
    transport, _ = _counting_transport([httpx.ConnectError("down")])
    provider = FxRateProvider(base_url="https://fx.test", transport=transport)

    with pytest.raises(FxUnavailableError):
        await provider.get_table(Currency.USD)


@pytest.mark.asyncio
@pytest.mark.unit
async def test_cancelled_token_discards_the_fetch():
    release = asyncio.Event()

    async def slow_handler(request: httpx.Request) -> httpx.Response:
        await release.wait()
        return httpx.Response(200, json=fx_payload("NGN", {"USD": 0.000625}))

    provider = FxRateProvider(
        base_url="https://fx.test", transport=httpx.MockTransport(slow_handler)
    )
    token = CancellationToken()
    pending = asyncio.ensure_future(provider.get_table(Currency.NGN, token=token))
    await asyncio.sleep(0)
    token.cancel()

    with pytest.raises(OperationCancelled):
        await pending
    assert provider.cached(Currency.NGN) is None
