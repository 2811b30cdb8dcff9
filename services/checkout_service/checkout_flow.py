"""Storefront checkout workflow: quotes, payment and order reconciliation.

State lives in an injected ``StateStore``; the controller is the only writer.
Payment moves through ``CheckoutPhase``:

    no_payment -> payment_in_flight -> payment_succeeded -> order_creation_pending
        -> order_created
        -> order_creation_failed_after_payment -> (retry) order_creation_pending
    payment_in_flight -> payment_cancelled

Network failures never escape the controller; they become user-facing text
on the state. Once the gateway has taken the money the payment reference is
kept until an order exists for it.
"""

import asyncio
import enum
from dataclasses import dataclass, field, replace
from decimal import Decimal
from typing import Callable, Optional, Protocol

import httpx

from libs.common.cancellation import CancellationToken, OperationCancelled
from libs.common.currency import Currency, Money, round_money
from libs.common.logging import get_logger
from services.checkout_service.checkout_api import OrderApiError
from services.checkout_service.fx import FxTable, FxUnavailableError
from services.checkout_service.pricing import (
    DEFAULT_SIZE_MOD_RATE,
    CartLine,
    PricingSummary,
    derive_totals,
)
from services.checkout_service.quoting import (
    NO_OPTIONS_MESSAGE,
    QUOTE_FAILED_MESSAGE,
    Destination,
    QuoteBatch,
    QuoteUnavailableError,
    QuoteValidationError,
    RateQuoter,
    RatesApi,
    SelectedDeliveryOption,
    select_option,
)
from services.checkout_service.settlement import (
    SettlementQuote,
    SettlementUnavailableError,
    build_settlement,
    generate_payment_reference,
)

logger = get_logger(__name__)

FX_UNAVAILABLE_MESSAGE = (
    "Exchange rates are unavailable right now; delivery fees are shown in "
    "their original currency."
)
STALE_SELECTION_MESSAGE = (
    "You changed currency after choosing delivery. Get rates again to continue."
)
GENERIC_FAILURE_MESSAGE = "Something went wrong. Please try again."


class CheckoutPhase(str, enum.Enum):
    NO_PAYMENT = "no_payment"
    PAYMENT_IN_FLIGHT = "payment_in_flight"
    PAYMENT_SUCCEEDED = "payment_succeeded"
    ORDER_CREATION_PENDING = "order_creation_pending"
    ORDER_CREATED = "order_created"
    ORDER_CREATION_FAILED_AFTER_PAYMENT = "order_creation_failed_after_payment"
    PAYMENT_CANCELLED = "payment_cancelled"


IDLE_PHASES = {CheckoutPhase.NO_PAYMENT, CheckoutPhase.PAYMENT_CANCELLED}


class CheckoutStateError(Exception):
    """An action was requested in a phase that does not allow it."""


@dataclass(frozen=True)
class CustomerDetails:
    first_name: str
    last_name: str
    email: str
    phone: str
    address: str
    city: str
    state: str
    country: str
    customer_id: Optional[str] = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def destination(self) -> Destination:
        return Destination(
            name=self.full_name,
            email=self.email,
            phone=self.phone,
            address=self.address,
            city=self.city,
            state=self.state,
            country=self.country,
        )

    def as_payload(self) -> dict:
        delivery_address = self.destination().single_line()
        return {
            "id": self.customer_id,
            "first_name": self.first_name.strip(),
            "last_name": self.last_name.strip(),
            "email": self.email.strip(),
            "phone": self.phone.strip(),
            "delivery_address": delivery_address,
            "billing_address": delivery_address,
            "country": self.country.strip(),
            "state": self.state.strip(),
        }


@dataclass(frozen=True)
class CheckoutState:
    display_currency: Currency = Currency.NGN
    cart: tuple[CartLine, ...] = ()
    customer: Optional[CustomerDetails] = None

    fx_table: Optional[FxTable] = None
    fx_message: Optional[str] = None

    quote_batch: Optional[QuoteBatch] = None
    quotes_loading: bool = False
    quote_message: Optional[str] = None
    field_errors: dict[str, str] = field(default_factory=dict)
    selection: Optional[SelectedDeliveryOption] = None

    phase: CheckoutPhase = CheckoutPhase.NO_PAYMENT
    payment_reference: Optional[str] = None
    reference_fingerprint: Optional[tuple] = None
    settlement: Optional[SettlementQuote] = None
    order_payload: Optional[dict] = None
    order_in_flight: bool = False
    order_id: Optional[str] = None
    confirmation_email: Optional[str] = None
    error: Optional[str] = None


Listener = Callable[[CheckoutState], None]


class StateStore:
    """Holds the current ``CheckoutState`` and notifies subscribers on change."""

    def __init__(self, initial: Optional[CheckoutState] = None):
        self._state = initial or CheckoutState()
        self._listeners: list[Listener] = []

    def get(self) -> CheckoutState:
        return self._state

    def set(self, **changes) -> CheckoutState:
        self._state = replace(self._state, **changes)
        for listener in list(self._listeners):
            listener(self._state)
        return self._state

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe


class FxSource(Protocol):
    async def get_table(
        self, base: Currency, token: Optional[CancellationToken] = None
    ) -> FxTable:
        ...


class OrderApi(Protocol):
    async def create_order(self, payload: dict) -> dict:
        """Create the order; idempotent on ``payment_reference``."""


# ---------------------------------------------------------------------------
# Controller
# ---------------------------------------------------------------------------


class CheckoutController:
    def __init__(
        self,
        store: StateStore,
        fx_source: FxSource,
        rates_api: RatesApi,
        order_api: OrderApi,
        size_mod_rate: Decimal = DEFAULT_SIZE_MOD_RATE,
        allow_approximate_settlement: bool = False,
        reference_factory: Callable[[], str] = generate_payment_reference,
    ):
        self.store = store
        self._fx = fx_source
        self._quoter = RateQuoter(rates_api)
        self._orders = order_api
        self._size_mod_rate = size_mod_rate
        self._allow_approximate = allow_approximate_settlement
        self._new_reference = reference_factory

    @property
    def state(self) -> CheckoutState:
        return self.store.get()

    # --- derived values ----------------------------------------------------

    def pricing(self) -> PricingSummary:
        state = self.state
        return derive_totals(list(state.cart), state.display_currency, self._size_mod_rate)

    @property
    def selection_is_stale(self) -> bool:
        selection = self.state.selection
        return selection is not None and selection.currency != self.state.display_currency

    def delivery_fee(self) -> Decimal:
        if self.state.selection is None or self.selection_is_stale:
            return Decimal("0")
        return self.state.selection.fee

    def order_total(self) -> Money:
        pricing = self.pricing()
        return Money(
            self.state.display_currency,
            round_money(pricing.base_total + self.delivery_fee()),
        )

    def can_pay(self) -> bool:
        state = self.state
        return (
            state.phase in IDLE_PHASES
            and bool(state.cart)
            and state.customer is not None
            and state.selection is not None
            and not self.selection_is_stale
        )

    # --- inputs ------------------------------------------------------------

    def set_cart(self, lines: list[CartLine]) -> None:
        self._require_idle("change the cart")
        self.store.set(cart=tuple(lines))
        self.refresh_reference()

    def set_customer(self, customer: CustomerDetails) -> None:
        self._require_idle("change customer details")
        self.store.set(customer=customer, field_errors={})
        self.refresh_reference()

    async def load_fx(self, token: Optional[CancellationToken] = None) -> Optional[FxTable]:
        """Fetch the FX table for the display currency.

        A cancelled load publishes nothing. Failure leaves no table, so fees
        are shown unconverted.
        """
        currency = self.state.display_currency
        try:
            table = await self._fx.get_table(currency, token=token)
        except OperationCancelled:
            logger.info("FX load for %s cancelled", currency.value)
            return None
        except FxUnavailableError as e:
            logger.warning("FX table unavailable for %s: %s", currency.value, e.message)
            if self.state.display_currency == currency:
                self.store.set(fx_table=None, fx_message=FX_UNAVAILABLE_MESSAGE)
            return None

        if self.state.display_currency != currency:
            return None
        self.store.set(fx_table=table, fx_message=None)
        return table

    async def set_currency(
        self, currency: Currency, token: Optional[CancellationToken] = None
    ) -> None:
        """Switch display currency and reload FX.

        A delivery selection made in another currency is kept but becomes
        stale; payment stays blocked until quotes are re-requested.
        """
        self._require_idle("change currency")
        currency = Currency(currency)
        if currency == self.state.display_currency:
            return
        self.store.set(display_currency=currency, fx_table=None, fx_message=None)
        if self.selection_is_stale:
            self.store.set(quote_message=STALE_SELECTION_MESSAGE)
        self.refresh_reference()
        await self.load_fx(token)

    # --- delivery ----------------------------------------------------------

    async def get_rates(self, pickup_days_from_now: int = 1) -> Optional[QuoteBatch]:
        """Request delivery quotes, replacing any previous quotes and selection."""
        self._require_idle("request delivery rates")
        state = self.state
        if state.customer is None:
            self.store.set(field_errors={"address": "Enter delivery details first"})
            return None

        self.store.set(
            quote_batch=None,
            selection=None,
            quote_message=None,
            field_errors={},
            quotes_loading=True,
        )
        self.refresh_reference()

        try:
            batch = await self._quoter.request_quotes(
                state.customer.destination(),
                self.pricing(),
                self.state.display_currency,
                self.state.fx_table,
                pickup_days_from_now,
            )
        except QuoteValidationError as e:
            self.store.set(quotes_loading=False, field_errors=e.errors)
            return None
        except QuoteUnavailableError:
            self.store.set(quotes_loading=False, quote_message=QUOTE_FAILED_MESSAGE)
            return None

        if batch is None:
            # a newer request owns the loading flag
            return None

        self.store.set(
            quotes_loading=False,
            quote_batch=batch,
            quote_message=NO_OPTIONS_MESSAGE if batch.is_empty else None,
        )
        return batch

    def select_delivery(self, index: int) -> Optional[SelectedDeliveryOption]:
        """Select a quote from the current batch.

        Returns None, with ``quote_message`` set, when the fee could not be
        expressed in the display currency.
        """
        self._require_idle("change delivery")
        batch = self.state.quote_batch
        if batch is None or not 0 <= index < len(batch.options):
            raise CheckoutStateError("No such delivery option")
        if batch.display_currency != self.state.display_currency:
            raise CheckoutStateError("Delivery rates are out of date; get rates again")

        option = batch.options[index]
        if not option.in_display_currency:
            self.store.set(
                quote_message=(
                    f"This delivery fee is in {option.quote.currency} and cannot be "
                    f"converted to {batch.display_currency.value} right now. "
                    "Please try again shortly."
                )
            )
            return None

        selection = select_option(batch, option)
        self.store.set(selection=selection, quote_message=None)
        self.refresh_reference()
        return selection

    # --- payment -----------------------------------------------------------

    def _fingerprint(self) -> tuple:
        total = self.order_total()
        customer = self.state.customer
        email = customer.email.strip().lower() if customer else ""
        return (total.currency.value, str(total.amount), email)

    def refresh_reference(self) -> Optional[str]:
        """Issue a new payment reference when the total or email changed.

        Only while idle; a payment in flight keeps its reference.
        """
        state = self.state
        if state.phase not in IDLE_PHASES:
            return state.payment_reference

        fingerprint = self._fingerprint()
        if state.payment_reference is None or state.reference_fingerprint != fingerprint:
            self.store.set(
                payment_reference=self._new_reference(),
                reference_fingerprint=fingerprint,
            )
        return self.state.payment_reference

    def _build_order_payload(self, settlement: SettlementQuote) -> dict:
        state = self.state
        pricing = self.pricing()
        items = []
        for line_pricing in pricing.lines:
            line = line_pricing.line
            items.append(
                {
                    "product_id": str(line.product_id),
                    "color": line.color,
                    "size": line.size,
                    "quantity": line.quantity,
                    "has_size_mod": line.has_size_mod,
                    "unit_weight_kg": str(line_pricing.unit_weight_kg),
                    "custom_measurements": line.custom_measurements,
                }
            )
        return {
            "items": items,
            "customer": state.customer.as_payload(),
            "payment_method": "paystack",
            "currency": state.display_currency.value,
            "delivery_fee": str(self.delivery_fee()),
            "payment_reference": settlement.reference,
            "total_ngn_kobo": settlement.amount_kobo,
            "shipping": state.selection.as_payload(),
        }

    def begin_payment(self) -> Optional[SettlementQuote]:
        """Freeze the NGN charge and move to ``payment_in_flight``.

        Returns the settlement to hand to the gateway widget, or None with
        ``state.error`` explaining why payment cannot start.
        """
        state = self.state
        if state.phase not in IDLE_PHASES:
            raise CheckoutStateError(f"Cannot start payment while {state.phase.value}")

        if not state.cart:
            self.store.set(error="Your cart is empty.")
            return None
        if state.customer is None:
            self.store.set(error="Enter your delivery details.")
            return None
        errors = state.customer.destination().validation_errors()
        if errors:
            self.store.set(field_errors=errors, error="Check your delivery details.")
            return None
        if state.selection is None:
            self.store.set(error="Choose a delivery option.")
            return None
        if self.selection_is_stale:
            self.store.set(error=STALE_SELECTION_MESSAGE)
            return None

        if state.phase == CheckoutPhase.PAYMENT_CANCELLED:
            # a cancelled reference is never reused
            self.store.set(payment_reference=None)
        reference = self.refresh_reference()

        fx_table = state.selection.fx_table or state.fx_table
        try:
            settlement = build_settlement(
                self.order_total(), fx_table, reference, self._allow_approximate
            )
        except SettlementUnavailableError as e:
            self.store.set(error=str(e))
            return None

        self.store.set(
            phase=CheckoutPhase.PAYMENT_IN_FLIGHT,
            settlement=settlement,
            order_payload=self._build_order_payload(settlement),
            error=None,
        )
        logger.info(
            "Payment started",
            extra={
                "extra_fields": {
                    "reference": reference,
                    "amount_kobo": settlement.amount_kobo,
                    "approximate": settlement.approximate,
                }
            },
        )
        return settlement

    def _require_reference(self, reference: str) -> None:
        state = self.state
        if state.phase != CheckoutPhase.PAYMENT_IN_FLIGHT:
            raise CheckoutStateError(f"No payment in flight (phase {state.phase.value})")
        if reference != state.payment_reference:
            raise CheckoutStateError(
                f"Gateway reference {reference} does not match {state.payment_reference}"
            )

    def payment_cancelled(self, reference: str) -> None:
        self._require_reference(reference)
        self.store.set(
            phase=CheckoutPhase.PAYMENT_CANCELLED,
            settlement=None,
            order_payload=None,
            error="Payment was cancelled. You have not been charged.",
        )

    async def payment_succeeded(self, reference: str) -> None:
        """Gateway reported success; create the order under the same reference."""
        self._require_reference(reference)
        self.store.set(phase=CheckoutPhase.PAYMENT_SUCCEEDED, error=None)
        await self._create_order()

    async def retry_order_creation(self) -> None:
        """Retry order creation with the reference that was already charged."""
        state = self.state
        if state.order_in_flight:
            return
        if state.phase != CheckoutPhase.ORDER_CREATION_FAILED_AFTER_PAYMENT:
            raise CheckoutStateError(f"Nothing to retry (phase {state.phase.value})")
        await self._create_order()

    async def _create_order(self) -> None:
        if self.state.order_in_flight:
            return
        reference = self.state.payment_reference
        self.store.set(
            phase=CheckoutPhase.ORDER_CREATION_PENDING, order_in_flight=True, error=None
        )

        try:
            result = await self._orders.create_order(self.state.order_payload)
        except OrderApiError as e:
            self._order_failed(reference, e.message)
            return
        except httpx.HTTPError as e:
            logger.warning("Order creation request failed for %s: %s", reference, e)
            self._order_failed(reference, "we could not reach the server")
            return
        except asyncio.CancelledError:
            self._order_failed(reference, "the request was interrupted")
            raise
        except Exception:
            logger.exception("Unexpected order creation failure for %s", reference)
            self._order_failed(reference, GENERIC_FAILURE_MESSAGE)
            return

        order_id = result.get("order_id") if isinstance(result, dict) else None
        if not order_id:
            self._order_failed(reference, GENERIC_FAILURE_MESSAGE)
            return

        self.store.set(
            phase=CheckoutPhase.ORDER_CREATED,
            order_in_flight=False,
            order_id=order_id,
            confirmation_email=result.get("email"),
            payment_reference=None,
            reference_fingerprint=None,
        )
        logger.info("Order %s created for payment %s", order_id, reference)

    def _order_failed(self, reference: str, reason: str) -> None:
        self.store.set(
            phase=CheckoutPhase.ORDER_CREATION_FAILED_AFTER_PAYMENT,
            order_in_flight=False,
            error=(
                f"Your payment was received (reference {reference}) but we could not "
                f"create your order: {reason}. Retry order creation; you will not be "
                "charged again."
            ),
        )

    def acknowledge_confirmation(self) -> None:
        """Clear the cart once the shopper has seen the confirmation."""
        if self.state.phase != CheckoutPhase.ORDER_CREATED:
            raise CheckoutStateError("No order confirmation to acknowledge")
        self.store.set(
            cart=(),
            quote_batch=None,
            selection=None,
            quote_message=None,
            settlement=None,
            order_payload=None,
            phase=CheckoutPhase.NO_PAYMENT,
            error=None,
        )

    def _require_idle(self, action: str) -> None:
        if self.state.phase not in IDLE_PHASES:
            raise CheckoutStateError(
                f"Cannot {action} while {self.state.phase.value.replace('_', ' ')}"
            )
