"""
Foreign-exchange tables and the open.er-api.com rate provider.

A table reads ``1 base = rates[c] c``. Conversion goes straight through the
base when either side is the base, otherwise via the base.
"""

import time
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Callable, Mapping, Optional

import httpx

from libs.common.cancellation import CancellationToken, run_cancellable
from libs.common.config import get_settings
from libs.common.currency import Currency, to_decimal
from libs.common.logging import get_logger

logger = get_logger(__name__)

SUPPORTED_CURRENCIES: tuple[Currency, ...] = tuple(Currency)


class FxUnavailableError(Exception):
    """Raised when no usable FX table (or rate) is available."""

    def __init__(self, message: str, status_code: int = None):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


@dataclass(frozen=True)
class FxTable:
    base: Currency
    rates: Mapping[Currency, Decimal]
    last_update_unix: Optional[int] = None
    next_update_unix: Optional[int] = None

    def supports(self, from_currency: Currency, to_currency: Currency) -> bool:
        if from_currency == to_currency:
            return True
        needed = {from_currency, to_currency} - {self.base}
        return all(self.rates.get(c) for c in needed)

    def rate(self, currency: Currency) -> Decimal:
        if currency == self.base:
            return Decimal("1")
        value = self.rates.get(currency)
        if not value:
            raise FxUnavailableError(
                f"No {currency.value} rate in {self.base.value} table"
            )
        return value

    def convert(
        self, amount: Decimal, from_currency: Currency, to_currency: Currency
    ) -> Decimal:
        """Convert ``amount`` exactly (unrounded). Raises if a rate is missing."""
        if from_currency == to_currency:
            return amount
        if self.base == from_currency:
            return amount * self.rate(to_currency)
        if self.base == to_currency:
            return amount / self.rate(from_currency)
        return amount / self.rate(from_currency) * self.rate(to_currency)

    def as_dict(self) -> dict:
        return {
            "base": self.base.value,
            "rates": {c.value: str(r) for c, r in self.rates.items()},
            "last_update_unix": self.last_update_unix,
            "next_update_unix": self.next_update_unix,
        }


def fx_convert(
    amount: Decimal,
    from_currency: Currency,
    to_currency: Currency,
    table: Optional[FxTable],
) -> Decimal:
    """Convert with graceful degradation: no table (or rate) means no conversion."""
    if table is None or not table.supports(from_currency, to_currency):
        return amount
    return table.convert(amount, from_currency, to_currency)


def parse_provider_payload(payload: dict, base: Currency) -> FxTable:
    """Build a compact table (supported currencies only) from a provider reply."""
    if payload.get("result") != "success":
        raise FxUnavailableError(
            payload.get("error-type") or payload.get("error_type") or "FX provider returned error"
        )

    raw_rates = payload.get("rates") or {}
    rates: dict[Currency, Decimal] = {}
    for currency in SUPPORTED_CURRENCIES:
        value = to_decimal(raw_rates.get(currency.value))
        if value is not None and value > 0:
            rates[currency] = value

    return FxTable(
        base=base,
        rates=rates,
        last_update_unix=payload.get("time_last_update_unix"),
        next_update_unix=payload.get("time_next_update_unix"),
    )


@dataclass
class _CacheEntry:
    table: FxTable
    stored_at: float
    ttl: float = field(default=0.0)


class FxRateProvider:
    """Async client for the FX provider with an in-process TTL cache.

    Cached tables live for ``FX_CACHE_TTL_SECONDS`` or until the provider's
    announced next update, whichever comes first. When the provider fails, a
    stale cached table is served if there is one.
    """

    def __init__(
        self,
        base_url: str = None,
        ttl_seconds: int = None,
        timeout: float = None,
        transport: httpx.AsyncBaseTransport = None,
        clock: Callable[[], float] = time.time,
    ):
        settings = get_settings()
        self.base_url = (base_url or settings.FX_PROVIDER_URL).rstrip("/")
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else settings.FX_CACHE_TTL_SECONDS
        self.timeout = timeout or settings.FX_TIMEOUT_SECONDS
        self._transport = transport
        self._clock = clock
        self._cache: dict[Currency, _CacheEntry] = {}

    def cached(self, base: Currency) -> Optional[FxTable]:
        entry = self._cache.get(base)
        if entry and self._clock() - entry.stored_at < entry.ttl:
            return entry.table
        return None

    async def _fetch(self, base: Currency) -> FxTable:
        url = f"{self.base_url}/{base.value}"
        async with httpx.AsyncClient(
            timeout=self.timeout, transport=self._transport
        ) as client:
            response = await client.get(url)

        if not response.is_success:
            raise FxUnavailableError(
                f"FX provider returned HTTP {response.status_code}",
                status_code=response.status_code,
            )
        return parse_provider_payload(response.json(), base)

    async def get_table(
        self, base: Currency, token: Optional[CancellationToken] = None
    ) -> FxTable:
        """Return the FX table for ``base``.

        Raises:
            FxUnavailableError: provider failed and nothing is cached.
            OperationCancelled: ``token`` was cancelled before the result arrived.
        """
        hit = self.cached(base)
        if hit is not None:
            return hit

        try:
            table = await run_cancellable(self._fetch(base), token)
        except (httpx.HTTPError, ValueError, FxUnavailableError) as e:
            stale = self._cache.get(base)
            if stale is not None:
                logger.warning(
                    "FX provider failed for %s; serving stale table: %s", base.value, e
                )
                return stale.table
            logger.error("FX provider failed for %s: %s", base.value, e)
            if isinstance(e, FxUnavailableError):
                raise
            raise FxUnavailableError(f"FX upstream failed: {e}") from e

        now = self._clock()
        ttl = float(self.ttl_seconds)
        if table.next_update_unix:
            until_next = table.next_update_unix - now
            if until_next > 0:
                ttl = min(ttl, until_next)
        self._cache[base] = _CacheEntry(table=table, stored_at=now, ttl=ttl)
        return table


_provider: Optional[FxRateProvider] = None


def get_fx_provider() -> FxRateProvider:
    """FastAPI dependency returning the process-wide provider (shared cache)."""
    global _provider
    if _provider is None:
        _provider = FxRateProvider()
    return _provider
