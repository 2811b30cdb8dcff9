"""Settlement of checkout totals in Naira for the payment gateway.

The gateway only charges NGN, in kobo. ``build_settlement`` fixes the kobo
amount once, at payment-intent time; that integer is what is charged, sent to
order creation and compared against the captured amount.
"""

import secrets
import string
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from libs.common.currency import (
    SETTLEMENT_CURRENCY,
    Currency,
    Money,
    naira_to_kobo,
    round_money,
)
from services.checkout_service.fx import FxTable

_REFERENCE_ALPHABET = string.ascii_lowercase + string.digits


class SettlementUnavailableError(Exception):
    """No trustworthy NGN amount could be computed for this checkout."""


@dataclass(frozen=True)
class SettlementAmount:
    amount: Decimal
    approximate: bool  # True when no conversion could be applied


def to_settlement_currency(
    total: Decimal, display_currency: Currency, fx_table: Optional[FxTable]
) -> SettlementAmount:
    """Express ``total`` in NGN.

    Without a usable table the unconverted total is returned flagged
    ``approximate``; callers must surface that rather than charge it silently.
    """
    if display_currency == SETTLEMENT_CURRENCY:
        return SettlementAmount(amount=round_money(total), approximate=False)
    if fx_table is None or not fx_table.supports(display_currency, SETTLEMENT_CURRENCY):
        return SettlementAmount(amount=round_money(total), approximate=True)
    return SettlementAmount(
        amount=round_money(fx_table.convert(total, display_currency, SETTLEMENT_CURRENCY)),
        approximate=False,
    )


@dataclass(frozen=True)
class SettlementQuote:
    """Frozen NGN charge for one payment attempt."""

    reference: str
    display_total: Money
    amount_ngn: Decimal
    amount_kobo: int
    approximate: bool


def build_settlement(
    display_total: Money,
    fx_table: Optional[FxTable],
    reference: str,
    allow_approximate: bool = False,
) -> SettlementQuote:
    settlement = to_settlement_currency(
        display_total.amount, display_total.currency, fx_table
    )
    if settlement.approximate and not allow_approximate:
        raise SettlementUnavailableError(
            "Exchange rates are unavailable, so the Naira amount to charge "
            "cannot be computed. Please try again shortly."
        )
    return SettlementQuote(
        reference=reference,
        display_total=display_total,
        amount_ngn=settlement.amount,
        amount_kobo=naira_to_kobo(settlement.amount),
        approximate=settlement.approximate,
    )


def generate_payment_reference() -> str:
    """Fresh gateway reference like ``1767571200000-k3f9``."""
    suffix = "".join(secrets.choice(_REFERENCE_ALPHABET) for _ in range(4))
    return f"{int(time.time() * 1000)}-{suffix}"
