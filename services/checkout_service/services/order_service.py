"""Online order creation, idempotent on the gateway payment reference."""

from decimal import Decimal
from typing import Optional

from libs.common.currency import SETTLEMENT_CURRENCY, Currency, naira_to_kobo, round_money
from libs.common.logging import get_logger
from services.checkout_service.models import (
    Order,
    OrderItem,
    OrderStatus,
    ProductVariant,
)
from services.checkout_service.paystack_client import (
    PaystackClient,
    PaystackError,
    VerifiedTransaction,
)
from services.checkout_service.pricing import (
    DEFAULT_SIZE_MOD_RATE,
    CartLine,
    PricingSummary,
    derive_totals,
)
from services.checkout_service.schemas import OnlineOrderCreate, OrderItemIn
from services.checkout_service.services.payment_reconciliation import (
    get_order_by_reference,
    get_orphan,
    mark_order_paid,
    record_orphan_payment,
    resolve_orphan_for_order,
)
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

logger = get_logger(__name__)


class OrderCreationError(Exception):
    """Order could not be created; ``status_code`` is the HTTP status to report."""

    def __init__(self, message: str, status_code: int = 400):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def _find_variant(db: AsyncSession, item: OrderItemIn) -> Optional[ProductVariant]:
    query = (
        select(ProductVariant)
        .where(ProductVariant.product_id == item.product_id)
        .options(selectinload(ProductVariant.product))
        .with_for_update()
    )
    if item.color:
        query = query.where(ProductVariant.color == item.color)
    if item.size:
        query = query.where(ProductVariant.size == item.size)
    result = await db.execute(query.limit(1))
    return result.scalar_one_or_none()


async def _reject_after_payment(
    db: AsyncSession, tx: VerifiedTransaction, message: str, status_code: int = 400
) -> OrderCreationError:
    """Roll back, keep the captured payment visible as an orphan, build the error."""
    await db.rollback()
    await record_orphan_payment(db, tx, f"Order rejected after payment: {message}")
    await db.commit()
    return OrderCreationError(message, status_code)


def _delivery_details(payload: OnlineOrderCreate, pricing: PricingSummary) -> dict:
    details = {"aggregated_weight_kg": str(pricing.total_weight_kg)}
    if payload.shipping is not None:
        shipping = payload.shipping
        details["courier"] = {
            "provider": "shipbubble",
            "request_token": shipping.request_token,
            "service_code": shipping.service_code,
            "courier_id": shipping.courier_id,
            "courier_name": shipping.courier_name,
            "fee": str(shipping.fee),
            "currency": shipping.currency.value,
            "original_fee": str(shipping.original_fee),
            "original_currency": shipping.original_currency,
            "eta": shipping.eta,
            "box_used": shipping.box_used,
            "raw": shipping.raw,
        }
    return details


def _expected_kobo(payload: OnlineOrderCreate, total: Decimal) -> int:
    # NGN totals are recomputed server-side; other currencies settle at the
    # FX snapshot the client charged with.
    if payload.currency == SETTLEMENT_CURRENCY:
        return naira_to_kobo(total)
    return payload.total_ngn_kobo


# ---------------------------------------------------------------------------
# Order creation
# ---------------------------------------------------------------------------


async def create_online_order(
    db: AsyncSession,
    payload: OnlineOrderCreate,
    paystack: PaystackClient,
    size_mod_rate: Decimal = DEFAULT_SIZE_MOD_RATE,
) -> tuple[Order, bool]:
    """Create the order for a paid checkout.

    Idempotent on ``payment_reference``: a repeat call returns the existing
    order with ``created=False``.

    Returns:
        (order, created)

    Raises:
        OrderCreationError: payment not verified or already refunded, amount
            mismatch, unknown variant or insufficient stock
    """
    reference = payload.payment_reference

    existing = await get_order_by_reference(db, reference)
    if existing is not None:
        if not existing.payment_verified:
            existing.payment_verified = True
            await db.commit()
        logger.info("Order %s already exists for payment %s", existing.order_number, reference)
        return existing, False

    orphan = await get_orphan(db, reference)
    if orphan is not None and orphan.auto_refunded:
        logger.warning("Refused order for refunded payment %s", reference)
        raise OrderCreationError(
            "This payment was refunded. Please start a new checkout.", 409
        )

    try:
        tx = await paystack.verify_transaction(reference)
    except PaystackError as e:
        raise OrderCreationError(f"Could not verify payment: {e.message}", 400) from e

    if not tx.succeeded:
        raise OrderCreationError(f"Payment not successful (status: {tx.status})", 400)
    if tx.currency != SETTLEMENT_CURRENCY.value:
        raise await _reject_after_payment(
            db, tx, f"Currency mismatch: expected NGN, got {tx.currency}"
        )

    # Re-price from the catalog, never from client-sent prices
    lines: list[CartLine] = []
    variants: list[ProductVariant] = []
    # The same variant can appear on several lines (e.g. with and without size mod)
    requested: dict = {}
    for item in payload.items:
        variant = await _find_variant(db, item)
        if variant is None or not variant.product.is_active:
            raise await _reject_after_payment(
                db, tx, f"Variant not found: {item.product_id} {item.color or 'N/A'}/{item.size or 'N/A'}"
            )
        requested[variant.id] = requested.get(variant.id, 0) + item.quantity
        if variant.stock < requested[variant.id]:
            raise await _reject_after_payment(
                db, tx, f"Insufficient stock for {variant.product.name}"
            )
        variants.append(variant)
        lines.append(
            CartLine(
                product_id=variant.product_id,
                name=variant.product.name,
                quantity=item.quantity,
                price_table=variant.product.price_table(),
                variant_id=variant.id,
                color=variant.color,
                size=variant.size,
                has_size_mod=item.has_size_mod,
                custom_measurements=item.custom_measurements,
                unit_weight_kg=(
                    item.unit_weight_kg
                    if item.unit_weight_kg is not None
                    else variant.weight_kg
                ),
            )
        )

    currency = Currency(payload.currency)
    pricing = derive_totals(lines, currency, size_mod_rate)
    delivery_fee = round_money(
        payload.shipping.fee if payload.shipping is not None else payload.delivery_fee
    )
    total = round_money(pricing.base_total + delivery_fee)

    expected_kobo = _expected_kobo(payload, total)
    if tx.amount != expected_kobo:
        raise await _reject_after_payment(
            db, tx, f"Payment amount mismatch: expected {expected_kobo}, got {tx.amount}"
        )

    await resolve_orphan_for_order(db, reference, "Order created after payment", tx.raw)

    customer = payload.customer
    order = Order(
        order_number=Order.generate_order_number(),
        payment_reference=reference,
        payment_method=payload.payment_method,
        status=OrderStatus.PAID,
        customer_id=customer.id,
        customer_email=customer.email,
        customer_name=f"{customer.first_name} {customer.last_name}".strip(),
        customer_phone=customer.phone,
        guest_info=None if customer.id else customer.model_dump(exclude={"id"}),
        currency=currency,
        items_subtotal=pricing.items_subtotal,
        size_mod_total=pricing.size_mod_total,
        delivery_fee=delivery_fee,
        total=total,
        total_ngn_kobo=tx.amount,
        shipping_address={
            "delivery_address": customer.delivery_address,
            "billing_address": customer.billing_address or customer.delivery_address,
            "state": customer.state,
            "country": customer.country,
        },
        delivery_details=_delivery_details(payload, pricing),
    )
    mark_order_paid(order, tx)

    for line_pricing, variant in zip(pricing.lines, variants):
        line = line_pricing.line
        order.items.append(
            OrderItem(
                variant_id=variant.id,
                product_id=line.product_id,
                product_name=line.name,
                color=line.color,
                size=line.size,
                quantity=line.quantity,
                currency=currency,
                unit_price=line_pricing.unit_price,
                has_size_mod=line.has_size_mod,
                size_mod_fee=line_pricing.size_mod_fee,
                line_total=line_pricing.line_total,
                custom_measurements=line.custom_measurements,
                unit_weight_kg=line_pricing.unit_weight_kg,
            )
        )
        variant.stock -= line.quantity

    db.add(order)

    try:
        await db.commit()
    except IntegrityError:
        # Another request created the order for this reference first
        await db.rollback()
        winner = await get_order_by_reference(db, reference)
        if winner is None:
            logger.exception("Order insert failed for payment %s", reference)
            raise OrderCreationError(
                "Order could not be saved; retry with the same payment reference", 409
            )
        return winner, False

    await db.refresh(order, attribute_names=["items"])
    logger.info(
        "Created order %s for payment %s",
        order.order_number,
        reference,
        extra={
            "extra_fields": {
                "currency": currency.value,
                "total": str(total),
                "total_ngn_kobo": tx.amount,
            }
        },
    )
    return order, True
