"""Pydantic schemas for checkout service."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from libs.common.currency import Currency
from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from services.checkout_service.models import OrderStatus, PaymentMethod, ShipmentStatus

NOT_APPLICABLE = "N/A"

# ============================================================================
# FX SCHEMAS
# ============================================================================


class FxTableResponse(BaseModel):
    base: Currency
    rates: dict[Currency, Decimal]
    last_update_unix: Optional[int] = None
    next_update_unix: Optional[int] = None


class FxConvertResponse(BaseModel):
    from_currency: Currency
    to_currency: Currency
    amount: Decimal
    converted: Decimal
    rate: Decimal


# ============================================================================
# SHIPPING SCHEMAS
# ============================================================================


class DestinationIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    email: EmailStr
    phone: str = Field(..., min_length=1, max_length=50)
    address: str = Field(..., min_length=1, max_length=500)
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None


class PackageItemIn(BaseModel):
    name: str = "Item"
    description: str = "Cart item"
    unit_weight_kg: Optional[Decimal] = None
    unit_amount: Decimal = Decimal("0")
    quantity: int = Field(1, ge=1)


class RatesRequest(BaseModel):
    destination: DestinationIn
    total_weight_kg: Decimal = Field(..., gt=0)
    total_value: Decimal = Field(Decimal("0"), ge=0)
    items: list[PackageItemIn] = []
    pickup_days_from_now: int = 1

    @field_validator("pickup_days_from_now")
    @classmethod
    def clamp_pickup_days(cls, v: int) -> int:
        return min(max(v, 0), 7)


class RateOut(BaseModel):
    courier_id: str
    courier_name: str
    service_code: str
    fee: Decimal
    currency: str
    eta: str = ""
    request_token: Optional[str] = None
    raw: dict[str, Any] = {}


class BoxOut(BaseModel):
    name: str
    length: float
    width: float
    height: float
    max_weight: float


class RatesResponse(BaseModel):
    rates: list[RateOut]
    request_token: Optional[str] = None
    box_used: Optional[BoxOut] = None
    courier_filter: str = "all"


class AddressValidateRequest(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    phone: str = Field(..., min_length=1)
    address: str = Field(..., min_length=1)


class AddressValidateResponse(BaseModel):
    address_code: int
    formatted_address: str
    country_code: str
    state: str
    city: str


class ShippingLabelResponse(BaseModel):
    order_number: str
    shipment_id: Optional[str] = None
    tracking_url: Optional[str] = None
    shipment_status: Optional[ShipmentStatus] = None


# ============================================================================
# ORDER SCHEMAS
# ============================================================================


class OrderItemIn(BaseModel):
    product_id: uuid.UUID
    color: Optional[str] = None
    size: Optional[str] = None
    quantity: int = Field(..., ge=1)
    has_size_mod: bool = False
    unit_weight_kg: Optional[Decimal] = Field(None, ge=0)
    custom_measurements: Optional[dict[str, Any]] = None

    @field_validator("color", "size")
    @classmethod
    def blank_not_applicable(cls, v: Optional[str]) -> Optional[str]:
        if v is None or v.strip() in ("", NOT_APPLICABLE):
            return None
        return v.strip()


class CustomerIn(BaseModel):
    id: Optional[str] = None
    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    email: EmailStr
    phone: Optional[str] = None
    delivery_address: Optional[str] = None
    billing_address: Optional[str] = None
    country: Optional[str] = None
    state: Optional[str] = None


class ShippingIn(BaseModel):
    """Snapshot of the selected delivery option."""

    request_token: str = Field(..., min_length=1)
    service_code: str = Field(..., min_length=1)
    courier_id: Optional[str] = None
    courier_name: Optional[str] = None
    fee: Decimal = Field(..., ge=0)
    currency: Currency
    original_fee: Decimal = Field(..., ge=0)
    original_currency: str
    eta: Optional[str] = None
    raw: dict[str, Any] = {}
    box_used: Optional[dict[str, Any]] = None


class OnlineOrderCreate(BaseModel):
    items: list[OrderItemIn] = Field(..., min_length=1)
    customer: CustomerIn
    payment_method: PaymentMethod = PaymentMethod.PAYSTACK
    currency: Currency
    delivery_fee: Decimal = Field(Decimal("0"), ge=0)
    payment_reference: str = Field(..., min_length=1, max_length=100)
    total_ngn_kobo: int = Field(..., ge=0)
    shipping: Optional[ShippingIn] = None


class OrderItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    product_id: uuid.UUID
    variant_id: Optional[uuid.UUID] = None
    product_name: str
    color: Optional[str] = None
    size: Optional[str] = None
    quantity: int
    currency: Currency
    unit_price: Decimal
    has_size_mod: bool
    size_mod_fee: Decimal
    line_total: Decimal


class OrderResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    order_number: str
    payment_reference: str
    payment_verified: bool
    status: OrderStatus
    customer_email: str
    customer_name: str
    currency: Currency
    items_subtotal: Decimal
    size_mod_total: Decimal
    delivery_fee: Decimal
    total: Decimal
    total_ngn_kobo: int
    delivery_details: Optional[dict[str, Any]] = None
    shipment_id: Optional[str] = None
    tracking_url: Optional[str] = None
    shipment_status: Optional[ShipmentStatus] = None
    created_at: datetime
    items: list[OrderItemResponse] = []


class OrderCreatedResponse(BaseModel):
    order_id: str
    email: str
    created: bool
    order: OrderResponse


# ============================================================================
# RECONCILIATION SCHEMAS
# ============================================================================


class ReconcileResponse(BaseModel):
    ok: bool = True
    message: str
    refund_id: Optional[str] = None


class SweepSummaryResponse(BaseModel):
    checked: int
    already_resolved: int
    auto_refunded: int
    flagged: int
    skipped_already_auto_refunded: int
    amount_mismatches: int
    errors: list[str]


class OrphanPaymentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    reference: str
    amount_kobo: int
    currency: str
    reconciled: bool
    auto_refunded: bool
    refund_id: Optional[str] = None
    resolution_note: Optional[str] = None
    first_seen_at: datetime
    reconciled_at: Optional[datetime] = None


class ResolveOrphanRequest(BaseModel):
    note: str = "Marked resolved by admin"


class WebhookAck(BaseModel):
    status: str
