"""Integration tests for the FX endpoints."""

from decimal import Decimal

import pytest


@pytest.mark.asyncio
@pytest.mark.integration
async def test_rates_table_for_naira(client):
    response = await client.get("/fx/rates", params={"base": "NGN"})

    assert response.status_code == 200
    data = response.json()
    assert data["base"] == "NGN"
    assert Decimal(str(data["rates"]["USD"])) == Decimal("0.000625")
    assert set(data["rates"]) == {"NGN", "USD", "EUR", "GBP"}


@pytest.mark.asyncio
@pytest.mark.integration
async def test_convert_naira_to_dollars(client):
    response = await client.get(
        "/fx/convert", params={"from": "NGN", "to": "USD", "amount": "16000"}
    )

    assert response.status_code == 200
    assert Decimal(str(response.json()["converted"])) == Decimal("10.00")


@pytest.mark.asyncio
@pytest.mark.integration
async def test_convert_dollars_to_naira(client):
    response = await client.get(
        "/fx/convert", params={"from": "USD", "to": "NGN", "amount": "9.25"}
    )

    assert response.status_code == 200
    assert Decimal(str(response.json()["converted"])) == Decimal("14800.00")


@pytest.mark.asyncio
@pytest.mark.integration
async def test_unsupported_currency_is_422(client):
    response = await client.get("/fx/rates", params={"base": "JPY"})

    assert response.status_code == 422


@pytest.mark.asyncio
@pytest.mark.integration
async def test_upstream_failure_is_503(client):
    # The mock provider has no EUR table
    response = await client.get(
        "/fx/convert", params={"from": "EUR", "to": "NGN", "amount": "10"}
    )

    assert response.status_code == 503
