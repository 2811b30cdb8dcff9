"""Admin router: payment reconciliation, orphan payments and shipping labels.

Every endpoint requires the ``X-Reconcile-Secret`` header.
"""

import hmac
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException
from libs.common.config import Settings, get_settings
from libs.common.logging import get_logger
from libs.db.session import get_async_db
from services.checkout_service.models import Order
from services.checkout_service.paystack_client import (
    PaystackClient,
    PaystackError,
    get_paystack_client,
)
from services.checkout_service.schemas import (
    OrphanPaymentResponse,
    ReconcileResponse,
    ResolveOrphanRequest,
    ShippingLabelResponse,
    SweepSummaryResponse,
)
from services.checkout_service.services.payment_reconciliation import (
    list_open_orphans,
    reconcile_payment,
    resolve_orphan_manually,
    sweep_orphans,
)
from services.checkout_service.services.shipping_service import (
    ShippingError,
    cancel_label_for_order,
    create_label_for_order,
    refresh_shipment_status,
)
from services.checkout_service.shipbubble_client import (
    ShipbubbleClient,
    ShipbubbleError,
    get_shipbubble_client,
)
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)


async def require_reconcile_secret(
    x_reconcile_secret: Optional[str] = Header(None),
    settings: Settings = Depends(get_settings),
) -> None:
    if not settings.RECONCILE_SECRET:
        logger.error("Reconcile secret not configured")
        raise HTTPException(status_code=500, detail="Reconcile secret not configured")
    if not x_reconcile_secret or not hmac.compare_digest(
        x_reconcile_secret, settings.RECONCILE_SECRET
    ):
        raise HTTPException(status_code=401, detail="Unauthorized")


router = APIRouter(
    prefix="/admin",
    tags=["admin"],
    dependencies=[Depends(require_reconcile_secret)],
)


async def _get_order(db: AsyncSession, order_number: str) -> Order:
    result = await db.execute(select(Order).where(Order.order_number == order_number))
    order = result.scalar_one_or_none()
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    return order


def _label_response(order: Order) -> ShippingLabelResponse:
    return ShippingLabelResponse(
        order_number=order.order_number,
        shipment_id=order.shipment_id,
        tracking_url=order.tracking_url,
        shipment_status=order.shipment_status,
    )


# ============================================================================
# PAYMENTS
# ============================================================================


@router.post("/payments/{reference}/reconcile", response_model=ReconcileResponse)
async def reconcile(
    reference: str,
    db: AsyncSession = Depends(get_async_db),
    paystack: PaystackClient = Depends(get_paystack_client),
):
    """Reconcile a payment: mark its order verified, or refund it if no order exists."""
    try:
        result = await reconcile_payment(db, paystack, reference)
    except PaystackError as e:
        logger.error("Reconcile failed for %s: %s", reference, e.message)
        raise HTTPException(status_code=502, detail=f"Paystack error: {e.message}")
    return ReconcileResponse(message=result.message, refund_id=result.refund_id)


@router.post("/payments/orphans/sweep", response_model=SweepSummaryResponse)
async def sweep(
    db: AsyncSession = Depends(get_async_db),
    paystack: PaystackClient = Depends(get_paystack_client),
    settings: Settings = Depends(get_settings),
):
    summary = await sweep_orphans(
        db,
        paystack,
        auto_refund=settings.AUTO_REFUND_ORPHANS,
        min_age_minutes=settings.ORPHAN_SWEEP_MIN_AGE_MINUTES,
    )
    return SweepSummaryResponse(**summary.as_dict())


@router.get("/payments/orphans", response_model=list[OrphanPaymentResponse])
async def list_orphans(db: AsyncSession = Depends(get_async_db)):
    return await list_open_orphans(db)


@router.post(
    "/payments/orphans/{reference}/resolve", response_model=OrphanPaymentResponse
)
async def resolve_orphan(
    reference: str,
    body: ResolveOrphanRequest,
    db: AsyncSession = Depends(get_async_db),
):
    orphan = await resolve_orphan_manually(db, reference, body.note)
    if orphan is None:
        raise HTTPException(status_code=404, detail="Orphan payment not found")
    return orphan


# ============================================================================
# SHIPPING LABELS
# ============================================================================


@router.post("/orders/{order_number}/shipping-label", response_model=ShippingLabelResponse)
async def create_shipping_label(
    order_number: str,
    db: AsyncSession = Depends(get_async_db),
    client: ShipbubbleClient = Depends(get_shipbubble_client),
):
    order = await _get_order(db, order_number)
    try:
        order = await create_label_for_order(db, client, order)
    except ShippingError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except ShipbubbleError as e:
        raise HTTPException(status_code=502, detail=e.message)
    return _label_response(order)


@router.post(
    "/orders/{order_number}/shipping-label/cancel", response_model=ShippingLabelResponse
)
async def cancel_shipping_label(
    order_number: str,
    db: AsyncSession = Depends(get_async_db),
    client: ShipbubbleClient = Depends(get_shipbubble_client),
):
    order = await _get_order(db, order_number)
    try:
        order = await cancel_label_for_order(db, client, order)
    except ShippingError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except ShipbubbleError as e:
        raise HTTPException(status_code=502, detail=e.message)
    return _label_response(order)


@router.get(
    "/orders/{order_number}/shipping-label/status", response_model=ShippingLabelResponse
)
async def shipping_label_status(
    order_number: str,
    db: AsyncSession = Depends(get_async_db),
    client: ShipbubbleClient = Depends(get_shipbubble_client),
):
    order = await _get_order(db, order_number)
    try:
        order = await refresh_shipment_status(db, client, order)
    except ShippingError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except ShipbubbleError as e:
        raise HTTPException(status_code=502, detail=e.message)
    return _label_response(order)
