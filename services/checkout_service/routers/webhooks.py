"""Payment gateway webhooks."""

import json

from fastapi import APIRouter, Depends, HTTPException, Request, status
from libs.common.logging import get_logger
from libs.db.session import get_async_db
from services.checkout_service.paystack_client import (
    PaystackClient,
    PaystackError,
    get_paystack_client,
)
from services.checkout_service.schemas import WebhookAck
from services.checkout_service.services.payment_reconciliation import handle_paystack_event
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(prefix="/webhooks", tags=["webhooks"])
logger = get_logger(__name__)


@router.post("/paystack", response_model=WebhookAck)
async def paystack_webhook(
    request: Request,
    db: AsyncSession = Depends(get_async_db),
    paystack: PaystackClient = Depends(get_paystack_client),
):
    """
    Paystack webhook endpoint (no auth; verified by x-paystack-signature).
    """
    raw = await request.body()
    signature = request.headers.get("x-paystack-signature")
    if not signature or not paystack.verify_signature(raw, signature):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid signature"
        )

    try:
        payload = json.loads(raw.decode("utf-8") or "{}")
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON body")

    try:
        outcome = await handle_paystack_event(db, paystack, payload)
    except PaystackError as e:
        # Non-2xx makes Paystack redeliver later
        logger.error("Webhook verification failed: %s", e.message)
        raise HTTPException(status_code=502, detail="Payment verification failed")

    return WebhookAck(status=outcome)
