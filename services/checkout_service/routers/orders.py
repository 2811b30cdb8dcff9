"""Orders router: idempotent online order creation and lookup."""

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from libs.common.config import Settings, get_settings
from libs.common.rate_limit import payment_limit
from libs.db.session import get_async_db
from services.checkout_service.models import Order
from services.checkout_service.paystack_client import PaystackClient, get_paystack_client
from services.checkout_service.schemas import (
    OnlineOrderCreate,
    OrderCreatedResponse,
    OrderResponse,
)
from services.checkout_service.services.order_service import (
    OrderCreationError,
    create_online_order,
)
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(prefix="/orders", tags=["orders"])


@router.post(
    "/online",
    response_model=OrderCreatedResponse,
    status_code=status.HTTP_201_CREATED,
)
@payment_limit
async def create_order(
    request: Request,
    response: Response,
    payload: OnlineOrderCreate,
    db: AsyncSession = Depends(get_async_db),
    paystack: PaystackClient = Depends(get_paystack_client),
    settings: Settings = Depends(get_settings),
):
    """Create the order for a paid checkout.

    Safe to retry with the same payment reference: the existing order is
    returned with status 200.
    """
    try:
        order, created = await create_online_order(
            db, payload, paystack, size_mod_rate=settings.SIZE_MOD_RATE
        )
    except OrderCreationError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

    if not created:
        response.status_code = status.HTTP_200_OK

    return OrderCreatedResponse(
        order_id=order.order_number,
        email=order.customer_email,
        created=created,
        order=OrderResponse.model_validate(order),
    )


@router.get("/{order_number}", response_model=OrderResponse)
async def get_order(
    order_number: str,
    db: AsyncSession = Depends(get_async_db),
):
    result = await db.execute(select(Order).where(Order.order_number == order_number))
    order = result.scalar_one_or_none()
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    return order
