"""Shipping router: courier rate quotes and address validation."""

from fastapi import APIRouter, Depends, HTTPException, Request
from libs.common.config import Settings, get_settings
from libs.common.datetime_utils import local_today
from libs.common.logging import get_logger
from libs.common.rate_limit import quote_limit
from services.checkout_service.schemas import (
    AddressValidateRequest,
    AddressValidateResponse,
    RatesRequest,
    RatesResponse,
)
from services.checkout_service.services.shipping_service import ShippingError, lookup_rates
from services.checkout_service.shipbubble_client import (
    ShipbubbleClient,
    ShipbubbleError,
    get_shipbubble_client,
)

router = APIRouter(prefix="/shipping", tags=["shipping"])
logger = get_logger(__name__)


def _provider_error(e: ShipbubbleError) -> HTTPException:
    return HTTPException(
        status_code=502,
        detail={
            "error": e.message or "Shipbubble request failed",
            "details": e.response_data.get("errors"),
        },
    )


@router.post("/rates", response_model=RatesResponse)
@quote_limit
async def get_rates(
    request: Request,
    body: RatesRequest,
    client: ShipbubbleClient = Depends(get_shipbubble_client),
    settings: Settings = Depends(get_settings),
):
    """Quote delivery for a destination and package. An empty list is not an error."""
    try:
        lookup = await lookup_rates(client, settings, body, local_today(settings.TIMEZONE))
    except ShippingError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except ShipbubbleError as e:
        logger.error(
            "Shipbubble rates error: %s",
            e.message,
            extra={"extra_fields": {"status_code": e.status_code}},
        )
        raise _provider_error(e)

    return RatesResponse(
        rates=lookup.rates,
        request_token=lookup.request_token,
        box_used=lookup.box_used,
        courier_filter=lookup.courier_filter,
    )


@router.post("/address/validate", response_model=AddressValidateResponse)
async def validate_address(
    body: AddressValidateRequest,
    client: ShipbubbleClient = Depends(get_shipbubble_client),
):
    try:
        validated = await client.validate_address(
            name=body.name, email=body.email, phone=body.phone, address=body.address
        )
    except ShipbubbleError as e:
        raise _provider_error(e)

    return AddressValidateResponse(
        address_code=validated.address_code,
        formatted_address=validated.formatted_address,
        country_code=validated.country_code,
        state=validated.state,
        city=validated.city,
    )
