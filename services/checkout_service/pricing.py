"""Line and order pricing in the shopper's display currency.

Product prices are looked up per currency and never converted. A product with
no price in the display currency falls back to the cart-cached price, then to
the first price it carries in ``CURRENCY_PRIORITY`` order, then to zero.
"""

import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Mapping, Optional, Sequence

from libs.common.currency import (
    CURRENCY_PRIORITY,
    Currency,
    Money,
    round_money,
    round_weight,
    to_decimal,
)

DEFAULT_SIZE_MOD_RATE = Decimal("0.05")
ZERO = Decimal("0")


@dataclass
class CartLine:
    product_id: uuid.UUID
    name: str
    quantity: int
    price_table: Mapping[Currency, Money] = field(default_factory=dict)
    cached_unit_price: Optional[Decimal] = None  # captured at add-to-cart time
    variant_id: Optional[uuid.UUID] = None
    color: Optional[str] = None
    size: Optional[str] = None
    has_size_mod: bool = False
    custom_measurements: Optional[dict[str, Any]] = None
    unit_weight_kg: Optional[Any] = None

    def __post_init__(self) -> None:
        if isinstance(self.quantity, bool) or not isinstance(self.quantity, int):
            raise ValueError(f"Quantity for {self.name!r} must be an integer")
        if self.quantity < 1:
            raise ValueError(f"Quantity for {self.name!r} must be at least 1")


@dataclass(frozen=True)
class LinePricing:
    line: CartLine
    currency: Currency
    unit_price: Decimal
    price_source: str  # "catalog", "cart_cache", "fallback:<CUR>" or "none"
    size_mod_fee: Decimal  # per unit
    unit_weight_kg: Decimal

    @property
    def subtotal(self) -> Decimal:
        return self.unit_price * self.line.quantity

    @property
    def size_mod_total(self) -> Decimal:
        return self.size_mod_fee * self.line.quantity

    @property
    def line_total(self) -> Decimal:
        return round_money(self.subtotal + self.size_mod_total)

    @property
    def unit_amount(self) -> Decimal:
        """Per-unit value declared to couriers: price plus surcharge."""
        return self.unit_price + self.size_mod_fee


@dataclass(frozen=True)
class PricingSummary:
    currency: Currency
    lines: list[LinePricing]
    items_subtotal: Decimal
    size_mod_total: Decimal
    base_total: Decimal
    total_weight_kg: Decimal


def resolve_unit_price(line: CartLine, currency: Currency) -> tuple[Decimal, str]:
    """Return ``(unit_price, source)`` for ``line`` in ``currency``."""
    own = line.price_table.get(currency)
    if own is not None:
        return own.amount, "catalog"

    cached = to_decimal(line.cached_unit_price)
    if cached is not None:
        return cached, "cart_cache"

    for candidate in CURRENCY_PRIORITY:
        price = line.price_table.get(candidate)
        if price is not None:
            return price.amount, f"fallback:{candidate.value}"

    return ZERO, "none"


def size_mod_fee(unit_price: Decimal, rate: Decimal = DEFAULT_SIZE_MOD_RATE) -> Decimal:
    """Per-unit custom sizing surcharge, rounded to 2 decimals."""
    return round_money(unit_price * rate)


def line_unit_weight(line: CartLine) -> Decimal:
    """Per-unit weight; missing, negative or non-finite weights count as zero."""
    weight = to_decimal(line.unit_weight_kg)
    if weight is None or weight < 0:
        return ZERO
    return weight


def derive_line(
    line: CartLine, currency: Currency, rate: Decimal = DEFAULT_SIZE_MOD_RATE
) -> LinePricing:
    unit_price, source = resolve_unit_price(line, currency)
    return LinePricing(
        line=line,
        currency=currency,
        unit_price=unit_price,
        price_source=source,
        size_mod_fee=size_mod_fee(unit_price, rate) if line.has_size_mod else ZERO,
        unit_weight_kg=line_unit_weight(line),
    )


def derive_totals(
    lines: Sequence[CartLine],
    currency: Currency,
    rate: Decimal = DEFAULT_SIZE_MOD_RATE,
) -> PricingSummary:
    """Price every line in ``currency`` and aggregate totals and weight."""
    priced = [derive_line(line, currency, rate) for line in lines]

    items_subtotal = round_money(sum((p.subtotal for p in priced), ZERO))
    size_mod_total = round_money(sum((p.size_mod_total for p in priced), ZERO))
    total_weight = round_weight(
        sum((p.unit_weight_kg * p.line.quantity for p in priced), ZERO)
    )

    return PricingSummary(
        currency=currency,
        lines=priced,
        items_subtotal=items_subtotal,
        size_mod_total=size_mod_total,
        base_total=round_money(items_subtotal + size_mod_total),
        total_weight_kg=total_weight,
    )
