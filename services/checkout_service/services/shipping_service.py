"""Courier rate lookups and shipping-label lifecycle on top of Shipbubble."""

from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from typing import Optional

from libs.common.config import Settings
from libs.common.currency import round_weight, to_decimal
from libs.common.logging import get_logger
from services.checkout_service.models import Order, ShipmentStatus
from services.checkout_service.quoting import FALLBACK_UNIT_WEIGHT_KG, join_address_line
from services.checkout_service.schemas import RatesRequest
from services.checkout_service.shipbubble_client import (
    ShipbubbleClient,
    ShipbubbleError,
    ValidatedAddress,
    pick_box_for_weight,
)
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

DEFAULT_INSTRUCTIONS = "Handle with care"

# Courier shortlists by destination, matched case-insensitively by name
LAGOS_COURIERS = ("Stallion King", "Dellyman", "Fez Delivery")
NIGERIA_OUTSIDE_LAGOS_COURIERS = ("Fez Delivery", "Red star", "GIG Logistics")

LABELLED_STATUSES = {
    ShipmentStatus.LABEL_CREATED,
    ShipmentStatus.IN_TRANSIT,
    ShipmentStatus.DELIVERED,
}


class ShippingError(Exception):
    """Shipping request cannot be served; ``status_code`` is the HTTP status."""

    def __init__(self, message: str, status_code: int = 400):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


@dataclass
class RateLookup:
    rates: list[dict]
    request_token: Optional[str]
    box_used: Optional[dict]
    courier_filter: str


# ---------------------------------------------------------------------------
# Addresses and courier policy
# ---------------------------------------------------------------------------


async def resolve_origin_code(client: ShipbubbleClient, settings: Settings) -> int:
    """Validate the configured pickup address. Done on every lookup, not cached."""
    fields = {
        "name": settings.SHIPBUBBLE_ORIGIN_NAME,
        "email": settings.SHIPBUBBLE_ORIGIN_EMAIL,
        "phone": settings.SHIPBUBBLE_ORIGIN_PHONE,
        "street": settings.SHIPBUBBLE_ORIGIN_STREET,
        "city": settings.SHIPBUBBLE_ORIGIN_CITY,
        "state": settings.SHIPBUBBLE_ORIGIN_STATE,
        "country": settings.SHIPBUBBLE_ORIGIN_COUNTRY,
    }
    missing = [name for name, value in fields.items() if not value.strip()]
    if missing:
        raise ShippingError(
            "Shipping origin is not configured (missing "
            + ", ".join(f"SHIPBUBBLE_ORIGIN_{m.upper()}" for m in missing)
            + ")",
            status_code=500,
        )

    validated = await client.validate_address(
        name=fields["name"],
        email=fields["email"],
        phone=fields["phone"],
        address=join_address_line(
            fields["street"], fields["city"], fields["state"], fields["country"]
        ),
    )
    return validated.address_code


def courier_filter_for(address: ValidatedAddress) -> str:
    """``lagos``, ``nigeria-other`` or ``all``."""
    if address.country_code != "NG":
        return "all"
    if "lagos" in address.state.lower() or "lagos" in address.city.lower():
        return "lagos"
    return "nigeria-other"


async def shortlisted_service_codes(
    client: ShipbubbleClient, courier_filter: str
) -> list[str]:
    names = {
        "lagos": LAGOS_COURIERS,
        "nigeria-other": NIGERIA_OUTSIDE_LAGOS_COURIERS,
    }.get(courier_filter)
    if not names:
        return []
    couriers = await client.list_couriers()
    return [
        courier.service_code
        for courier in couriers
        if any(name.lower() in courier.name.lower() for name in names)
    ]


def build_package_items(request: RatesRequest) -> list[dict]:
    if not request.items:
        return [
            {
                "name": "Cart items",
                "description": "Consolidated package",
                "unit_weight": float(max(request.total_weight_kg, Decimal("0.1"))),
                "unit_amount": float(request.total_value),
                "quantity": 1,
            }
        ]
    return [
        {
            "name": item.name,
            "description": item.description,
            "unit_weight": float(item.unit_weight_kg or FALLBACK_UNIT_WEIGHT_KG),
            "unit_amount": float(item.unit_amount),
            "quantity": item.quantity,
        }
        for item in request.items
    ]


def normalize_rates(raw: dict) -> list[dict]:
    request_token = raw.get("request_token")
    rates = []
    for courier in raw.get("couriers") or []:
        rates.append(
            {
                "courier_id": str(courier.get("courier_id", "")),
                "courier_name": str(courier.get("courier_name", "")),
                "service_code": str(courier.get("service_code", "")),
                "fee": to_decimal(courier.get("total")) or Decimal("0"),
                "currency": str(courier.get("currency") or "NGN").upper(),
                "eta": courier.get("delivery_eta") or courier.get("pickup_eta") or "",
                "request_token": request_token,
                "raw": courier,
            }
        )
    return rates


# ---------------------------------------------------------------------------
# Rate lookup
# ---------------------------------------------------------------------------


async def lookup_rates(
    client: ShipbubbleClient,
    settings: Settings,
    request: RatesRequest,
    today: date,
) -> RateLookup:
    """Validate both ends, pick a box, apply courier policy and fetch rates.

    Raises:
        ShippingError: origin not configured
        ShipbubbleError: any provider failure
    """
    origin_code = await resolve_origin_code(client, settings)

    destination = request.destination
    receiver = await client.validate_address(
        name=destination.name,
        email=destination.email,
        phone=destination.phone,
        address=join_address_line(
            destination.address, destination.city, destination.state, destination.country
        ),
    )

    total_weight = round_weight(request.total_weight_kg)
    try:
        boxes = await client.list_boxes()
    except ShipbubbleError as e:
        logger.warning("Could not load Shipbubble boxes, quoting without dimensions: %s", e)
        boxes = []
    box = pick_box_for_weight(total_weight, boxes)

    body = {
        "sender_address_code": origin_code,
        "reciever_address_code": receiver.address_code,
        "pickup_date": (today + timedelta(days=request.pickup_days_from_now)).isoformat(),
        "category_id": settings.SHIPBUBBLE_CATEGORY_ID,
        "package_items": build_package_items(request),
        "delivery_instructions": DEFAULT_INSTRUCTIONS,
    }
    if box is not None:
        body["package_dimension"] = {
            "length": float(box.length),
            "width": float(box.width),
            "height": float(box.height),
        }

    courier_filter = courier_filter_for(receiver)
    codes = await shortlisted_service_codes(client, courier_filter)
    raw = await client.fetch_rates(body, service_codes=codes or None)

    rates = normalize_rates(raw)
    logger.info(
        "Fetched %s courier rates",
        len(rates),
        extra={
            "extra_fields": {
                "courier_filter": courier_filter,
                "total_weight_kg": str(total_weight),
                "box": box.name if box else None,
            }
        },
    )
    return RateLookup(
        rates=rates,
        request_token=raw.get("request_token"),
        box_used=box.as_dict() if box else None,
        courier_filter=courier_filter,
    )


# ---------------------------------------------------------------------------
# Labels
# ---------------------------------------------------------------------------


def map_shipment_status(value: Optional[str]) -> ShipmentStatus:
    status = (value or "").lower()
    if status == "cancelled":
        return ShipmentStatus.CANCELLED
    if status == "completed":
        return ShipmentStatus.DELIVERED
    if status in ("picked_up", "in_transit"):
        return ShipmentStatus.IN_TRANSIT
    return ShipmentStatus.LABEL_CREATED


async def create_label_for_order(
    db: AsyncSession, client: ShipbubbleClient, order: Order
) -> Order:
    """Materialize the courier label for an order from its stored quote.

    Raises:
        ShippingError: label exists, token already used, or quote details missing
        ShipbubbleError: provider failure
    """
    if order.shipment_status in LABELLED_STATUSES:
        raise ShippingError("Shipment label already exists for this order", 409)

    courier = (order.delivery_details or {}).get("courier") or {}
    request_token = courier.get("request_token")
    service_code = courier.get("service_code")
    courier_id = courier.get("courier_id")
    if not (request_token and service_code and courier_id):
        raise ShippingError(
            "Missing request token, service code or courier id on the order. Re-quote rates."
        )
    previous_label = (order.delivery_details or {}).get("label") or {}
    if previous_label.get("request_token") == request_token:
        raise ShippingError(
            "This courier quote was already used for a label. Re-quote rates.", 409
        )

    data = await client.create_label(
        request_token=request_token,
        service_code=service_code,
        courier_id=str(courier_id),
    )

    order.shipment_id = str(data.get("order_id") or "") or None
    order.tracking_url = data.get("tracking_url")
    order.shipment_status = ShipmentStatus.LABEL_CREATED
    order.delivery_details = {
        **(order.delivery_details or {}),
        "label": {
            "request_token": request_token,
            "shipment_id": order.shipment_id,
            "tracking_url": order.tracking_url,
            "raw": data,
        },
    }
    await db.commit()

    logger.info("Created shipping label %s for order %s", order.shipment_id, order.order_number)
    return order


async def cancel_label_for_order(
    db: AsyncSession, client: ShipbubbleClient, order: Order
) -> Order:
    if not order.shipment_id:
        raise ShippingError("Order has no shipping label", 404)
    await client.cancel_label(order.shipment_id)
    order.shipment_status = ShipmentStatus.CANCELLED
    await db.commit()
    logger.info("Cancelled shipping label %s for order %s", order.shipment_id, order.order_number)
    return order


async def refresh_shipment_status(
    db: AsyncSession, client: ShipbubbleClient, order: Order
) -> Order:
    if not order.shipment_id:
        raise ShippingError("Order has no shipping label", 404)
    shipments = await client.list_shipments([order.shipment_id])
    match = next(
        (s for s in shipments if str(s.get("order_id")) == order.shipment_id), None
    )
    if match is not None:
        order.shipment_status = map_shipment_status(match.get("status"))
        order.tracking_url = match.get("tracking_url") or order.tracking_url
        await db.commit()
    return order
