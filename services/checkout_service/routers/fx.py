"""FX router: compact rate tables and single conversions."""

from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException, Query
from libs.common.currency import Currency, round_money
from services.checkout_service.fx import FxRateProvider, FxUnavailableError, get_fx_provider
from services.checkout_service.schemas import FxConvertResponse, FxTableResponse

router = APIRouter(prefix="/fx", tags=["fx"])


@router.get("/rates", response_model=FxTableResponse)
async def get_rates(
    base: Currency = Query(Currency.NGN),
    provider: FxRateProvider = Depends(get_fx_provider),
):
    """Rates for the supported currencies, ``1 base = rates[c] c``."""
    try:
        table = await provider.get_table(base)
    except FxUnavailableError as e:
        raise HTTPException(status_code=503, detail=e.message)

    return FxTableResponse(
        base=table.base,
        rates=dict(table.rates),
        last_update_unix=table.last_update_unix,
        next_update_unix=table.next_update_unix,
    )


@router.get("/convert", response_model=FxConvertResponse)
async def convert(
    from_currency: Currency = Query(..., alias="from"),
    to_currency: Currency = Query(..., alias="to"),
    amount: Decimal = Query(...),
    provider: FxRateProvider = Depends(get_fx_provider),
):
    """Convert an amount, rounded to 2 decimals."""
    if not amount.is_finite():
        raise HTTPException(status_code=400, detail="Missing or invalid 'amount'.")
    try:
        table = await provider.get_table(from_currency)
        rate = table.rate(to_currency)
    except FxUnavailableError as e:
        raise HTTPException(status_code=503, detail=e.message)

    return FxConvertResponse(
        from_currency=from_currency,
        to_currency=to_currency,
        amount=amount,
        converted=round_money(table.convert(amount, from_currency, to_currency)),
        rate=rate,
    )
