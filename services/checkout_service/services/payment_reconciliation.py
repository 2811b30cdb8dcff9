"""Payment reconciliation: gateway webhooks, orphan payments, refunds and sweeps.

An orphan payment is a captured charge with no order behind it. Orphans stay
open until an order appears, the payment is refunded, or an admin resolves it.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Optional

from libs.common.datetime_utils import minutes_before, utc_now
from libs.common.logging import get_logger
from services.checkout_service.models import (
    Order,
    OrphanPayment,
    PaymentProvider,
    WebhookEvent,
)
from services.checkout_service.paystack_client import (
    PaystackClient,
    PaystackError,
    VerifiedTransaction,
)
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

CHARGE_SUCCESS = "charge.success"

# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------


async def get_order_by_reference(db: AsyncSession, reference: str) -> Optional[Order]:
    result = await db.execute(select(Order).where(Order.payment_reference == reference))
    return result.scalar_one_or_none()


async def get_orphan(db: AsyncSession, reference: str) -> Optional[OrphanPayment]:
    result = await db.execute(
        select(OrphanPayment).where(OrphanPayment.reference == reference)
    )
    return result.scalar_one_or_none()


# ---------------------------------------------------------------------------
# Orphan bookkeeping (callers commit)
# ---------------------------------------------------------------------------


async def record_orphan_payment(
    db: AsyncSession, tx: VerifiedTransaction, note: str
) -> OrphanPayment:
    """Create or refresh the orphan record for ``tx``.

    An orphan that is already reconciled keeps its resolution.
    """
    orphan = await get_orphan(db, tx.reference)
    if orphan is None:
        orphan = OrphanPayment(
            reference=tx.reference,
            amount_kobo=tx.amount,
            currency=tx.currency,
            payload=tx.raw,
            resolution_note=note,
        )
        db.add(orphan)
    elif not orphan.reconciled:
        orphan.amount_kobo = tx.amount
        orphan.currency = tx.currency
        orphan.payload = tx.raw
        orphan.resolution_note = note
    await db.flush()

    logger.warning(
        "Orphan payment %s recorded: %s",
        tx.reference,
        note,
        extra={"extra_fields": {"amount_kobo": tx.amount, "currency": tx.currency}},
    )
    return orphan


def _close_orphan(
    orphan: OrphanPayment,
    note: str,
    payload: Optional[dict] = None,
    refund_id: Optional[str] = None,
) -> None:
    orphan.reconciled = True
    orphan.reconciled_at = utc_now()
    orphan.resolution_note = note
    if payload is not None:
        orphan.payload = payload
    if refund_id is not None:
        orphan.auto_refunded = True
        orphan.refund_id = refund_id


async def resolve_orphan_for_order(
    db: AsyncSession, reference: str, note: str, payload: Optional[dict] = None
) -> Optional[OrphanPayment]:
    """Close an open orphan once an order exists for its reference."""
    orphan = await get_orphan(db, reference)
    if orphan is not None and not orphan.reconciled:
        _close_orphan(orphan, note, payload)
        logger.info("Orphan payment %s reconciled: %s", reference, note)
    return orphan


def mark_order_paid(order: Order, tx: VerifiedTransaction) -> bool:
    """Record gateway verification on an order. Returns True if it changed."""
    changed = False
    if not order.payment_verified:
        order.payment_verified = True
        changed = True
    if tx.id and order.payment_provider_id != tx.id:
        order.payment_provider_id = tx.id
        changed = True
    if order.paid_at is None:
        order.paid_at = utc_now()
        changed = True
    return changed


# ---------------------------------------------------------------------------
# Webhooks
# ---------------------------------------------------------------------------


def webhook_event_id(payload: dict) -> Optional[str]:
    data = payload.get("data") or {}
    event_id = payload.get("id") or data.get("id")
    if event_id:
        return f"{payload.get('event', 'event')}:{event_id}"
    reference = data.get("reference")
    if reference:
        return f"{payload.get('event', 'event')}:{reference}"
    return None


async def handle_paystack_event(
    db: AsyncSession, paystack: PaystackClient, payload: dict
) -> str:
    """Process one (already signature-checked) Paystack webhook.

    Returns one of ``duplicate``, ``ignored``, ``orphan_recorded`` or
    ``order_reconciled``.

    Raises:
        PaystackError: verification failed; nothing is persisted so the
            gateway's redelivery is processed normally.
    """
    event = payload.get("event")
    data = payload.get("data") or {}
    event_id = webhook_event_id(payload)
    if not event_id:
        logger.warning("Ignoring Paystack webhook without id or reference")
        return "ignored"

    result = await db.execute(select(WebhookEvent).where(WebhookEvent.event_id == event_id))
    if result.scalar_one_or_none() is not None:
        logger.info("Duplicate Paystack webhook %s ignored", event_id)
        return "duplicate"

    if event != CHARGE_SUCCESS or not data.get("reference"):
        db.add(WebhookEvent(provider=PaymentProvider.PAYSTACK, event_id=event_id, payload=payload))
        await _commit_event(db)
        return "ignored"

    reference = data["reference"]
    tx = await paystack.verify_transaction(reference)

    db.add(WebhookEvent(provider=PaymentProvider.PAYSTACK, event_id=event_id, payload=payload))
    if not tx.succeeded:
        logger.warning("Webhook for %s but verification status is %s", reference, tx.status)
        await _commit_event(db)
        return "ignored"

    order = await get_order_by_reference(db, reference)
    if order is None:
        await record_orphan_payment(
            db, tx, "Webhook: payment succeeded but no order exists yet"
        )
        outcome = "orphan_recorded"
    else:
        mark_order_paid(order, tx)
        await resolve_orphan_for_order(
            db, reference, "Webhook: order exists; reconciled", tx.raw
        )
        outcome = "order_reconciled"

    await _commit_event(db)
    logger.info("Paystack webhook %s processed: %s", event_id, outcome)
    return outcome


async def _commit_event(db: AsyncSession) -> None:
    # A concurrent delivery of the same event loses the unique race harmlessly.
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        logger.info("Concurrent duplicate Paystack webhook ignored")


# ---------------------------------------------------------------------------
# Manual reconcile
# ---------------------------------------------------------------------------


@dataclass
class ReconcileResult:
    message: str
    refund_id: Optional[str] = None


async def reconcile_payment(
    db: AsyncSession, paystack: PaystackClient, reference: str
) -> ReconcileResult:
    """Reconcile one payment reference against orders.

    The order exists: mark it verified and close any orphan. No order: refund
    the payment once and record the refund on the orphan.

    Raises:
        PaystackError: verification or refund failed
    """
    tx = await paystack.verify_transaction(reference)
    orphan = await get_orphan(db, reference)
    order = await get_order_by_reference(db, reference)

    if order is not None:
        if orphan is not None and not orphan.reconciled:
            _close_orphan(orphan, "Manual reconcile: order already existed", tx.raw)
        mark_order_paid(order, tx)
        await db.commit()
        return ReconcileResult(message="Order already exists; reconciled if needed")

    if orphan is not None and orphan.auto_refunded:
        return ReconcileResult(
            message="Orphan payment already refunded previously",
            refund_id=orphan.refund_id,
        )

    if not tx.succeeded:
        return ReconcileResult(message=f"Payment status is {tx.status}; nothing to refund")

    refund = await paystack.refund_transaction(
        tx.id or tx.reference,
        reason="Orphan payment: no matching order found during manual reconciliation",
    )
    note = f"Refunded orphan payment during manual reconciliation; refund id={refund.id or 'unknown'}"
    if orphan is None:
        orphan = OrphanPayment(
            reference=reference,
            amount_kobo=tx.amount,
            currency=tx.currency,
            payload=tx.raw,
        )
        db.add(orphan)
    _close_orphan(orphan, note, tx.raw, refund_id=refund.id or "unknown")
    await db.commit()

    logger.info("Refunded orphan payment %s (refund %s)", reference, refund.id)
    return ReconcileResult(message="Orphan payment refunded", refund_id=refund.id)


async def resolve_orphan_manually(
    db: AsyncSession, reference: str, note: str
) -> Optional[OrphanPayment]:
    orphan = await get_orphan(db, reference)
    if orphan is None:
        return None
    _close_orphan(orphan, note)
    await db.commit()
    return orphan


async def list_open_orphans(db: AsyncSession) -> list[OrphanPayment]:
    result = await db.execute(
        select(OrphanPayment)
        .where(OrphanPayment.reconciled.is_(False))
        .order_by(OrphanPayment.first_seen_at)
    )
    return list(result.scalars().all())


# ---------------------------------------------------------------------------
# Orphan sweep
# ---------------------------------------------------------------------------


@dataclass
class SweepSummary:
    checked: int = 0
    already_resolved: int = 0
    auto_refunded: int = 0
    flagged: int = 0
    skipped_already_auto_refunded: int = 0
    amount_mismatches: int = 0
    errors: list[str] = field(default_factory=list)

    def as_dict(self) -> dict:
        return asdict(self)


async def sweep_orphans(
    db: AsyncSession,
    paystack: PaystackClient,
    *,
    auto_refund: bool,
    min_age_minutes: int,
    now: Optional[datetime] = None,
) -> SweepSummary:
    """Work through open orphans older than ``min_age_minutes``.

    Younger orphans are skipped so the sweep never races an order that is
    still being created.
    """
    cutoff = minutes_before(min_age_minutes, now)
    result = await db.execute(
        select(OrphanPayment).where(
            OrphanPayment.reconciled.is_(False),
            OrphanPayment.first_seen_at < cutoff,
        )
    )
    orphans = list(result.scalars().all())
    summary = SweepSummary(checked=len(orphans))

    for orphan in orphans:
        reference = orphan.reference
        if orphan.auto_refunded:
            summary.skipped_already_auto_refunded += 1
            continue

        try:
            tx = await paystack.verify_transaction(reference)
        except PaystackError as e:
            summary.errors.append(f"Verification failed for {reference}: {e.message}")
            continue

        order = await get_order_by_reference(db, reference)
        if order is not None:
            _close_orphan(orphan, "Order appeared during sweep; reconciled", tx.raw)
            mark_order_paid(order, tx)
            summary.already_resolved += 1
        elif orphan.amount_kobo != tx.amount:
            orphan.payload = tx.raw
            orphan.resolution_note = (
                f"Amount mismatch: orphan recorded {orphan.amount_kobo}, "
                f"actual {tx.amount}; flagged for review"
            )
            summary.amount_mismatches += 1
        elif auto_refund:
            try:
                refund = await paystack.refund_transaction(
                    tx.id or reference,
                    reason="Auto-refund orphan payment during sweep (no matching order)",
                )
            except PaystackError as e:
                summary.errors.append(f"Refund failed for {reference}: {e.message}")
                continue
            _close_orphan(
                orphan,
                f"Auto-refunded orphan payment during sweep; refund id={refund.id or 'unknown'}",
                tx.raw,
                refund_id=refund.id or "unknown",
            )
            summary.auto_refunded += 1
        else:
            orphan.payload = tx.raw
            orphan.resolution_note = (
                "Verified payment, no order exists; flagged for manual reconciliation"
            )
            summary.flagged += 1

        # Persist per orphan so a later failure cannot undo a recorded refund.
        await db.commit()

    logger.info("Orphan sweep finished", extra={"extra_fields": summary.as_dict()})
    return summary
