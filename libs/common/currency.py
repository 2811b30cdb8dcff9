"""Currency and money helpers for checkout.

Internal money type: ``Money(currency, Decimal amount)``.
Settlement unit: kobo (smallest NGN unit, 100 kobo = ₦1).

Rounding
--------
Money    → 2 decimals, half-up
Weight   → 3 decimals, half-up
Kobo     → nearest integer, half-up
"""

from __future__ import annotations

import enum
import math
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Optional

# ─── constants ───────────────────────────────────────────────────────────────

KOBO_PER_NAIRA: int = 100

CENT = Decimal("0.01")
GRAM = Decimal("0.001")


class Currency(str, enum.Enum):
    NGN = "NGN"
    USD = "USD"
    EUR = "EUR"
    GBP = "GBP"


# Order used when a product has no price in the requested currency.
CURRENCY_PRIORITY: tuple[Currency, ...] = (
    Currency.NGN,
    Currency.USD,
    Currency.EUR,
    Currency.GBP,
)

SETTLEMENT_CURRENCY = Currency.NGN


# ─── decimal helpers ─────────────────────────────────────────────────────────


def to_decimal(value: Any) -> Optional[Decimal]:
    """Coerce ``value`` to a finite Decimal, or None if that is not possible."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value if value.is_finite() else None
    if isinstance(value, float):
        if not math.isfinite(value):
            return None
        return Decimal(str(value))
    try:
        result = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None
    return result if result.is_finite() else None


def round_money(value: Decimal) -> Decimal:
    """Round a money amount half-up to 2 decimals."""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def round_weight(value: Decimal) -> Decimal:
    """Round a weight in kilograms half-up to 3 decimals."""
    return value.quantize(GRAM, rounding=ROUND_HALF_UP)


# ─── kobo helpers ────────────────────────────────────────────────────────────


def naira_to_kobo(naira: Decimal) -> int:
    """Convert Naira to kobo (round half-up). ₦1 = 100 kobo."""
    return int(
        (Decimal(naira) * KOBO_PER_NAIRA).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    )


def kobo_to_naira(kobo: int) -> Decimal:
    """Convert kobo to Naira. 100 kobo = ₦1."""
    return round_money(Decimal(kobo) / KOBO_PER_NAIRA)


# ─── money ───────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Money:
    currency: Currency
    amount: Decimal

    def __add__(self, other: "Money") -> "Money":
        if other.currency != self.currency:
            raise ValueError(
                f"Cannot add {other.currency.value} to {self.currency.value}"
            )
        return Money(self.currency, self.amount + other.amount)

    def rounded(self) -> "Money":
        return Money(self.currency, round_money(self.amount))

    @classmethod
    def zero(cls, currency: Currency) -> "Money":
        return cls(currency, Decimal("0"))
