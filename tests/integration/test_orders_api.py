"""Integration tests for the online order endpoints."""

import pytest
from tests.factories import OrderFactory, ProductFactory, ProductVariantFactory

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def _seed_product(db_session, stock=10):
    product = ProductFactory.create()
    db_session.add(product)
    db_session.add(ProductVariantFactory.create(product_id=product.id, stock=stock))
    await db_session.commit()
    return product


def _order_body(product, reference="PAY-1", total_ngn_kobo=1250000):
    return {
        "items": [
            {"product_id": str(product.id), "color": "Blue", "size": "M", "quantity": 2}
        ],
        "customer": {
            "first_name": "Ada",
            "last_name": "Obi",
            "email": "ada@example.com",
            "phone": "08012345678",
            "delivery_address": "12 Marina Road, Lagos",
        },
        "currency": "NGN",
        "payment_reference": reference,
        "total_ngn_kobo": total_ngn_kobo,
        "shipping": {
            "request_token": "rt-123",
            "service_code": "fez",
            "courier_id": "fez",
            "courier_name": "Fez Delivery",
            "fee": "2500",
            "currency": "NGN",
            "original_fee": "2500",
            "original_currency": "NGN",
        },
    }


# ---------------------------------------------------------------------------
# POST /orders/online
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.integration
async def test_create_order_returns_201(client, db_session, paystack):
    product = await _seed_product(db_session)
    paystack.add_transaction("PAY-1", amount=1250000)

    response = await client.post("/orders/online", json=_order_body(product))

    assert response.status_code == 201
    data = response.json()
    assert data["created"] is True
    assert data["email"] == "ada@example.com"
    assert data["order_id"].startswith("ORD-")
    assert data["order"]["total_ngn_kobo"] == 1250000
    assert data["order"]["payment_verified"] is True
    assert len(data["order"]["items"]) == 1


@pytest.mark.asyncio
@pytest.mark.integration
async def test_retry_with_same_reference_returns_200_and_same_order(
    client, db_session, paystack
):
    product = await _seed_product(db_session)
    paystack.add_transaction("PAY-1", amount=1250000)

    first = await client.post("/orders/online", json=_order_body(product))
    second = await client.post("/orders/online", json=_order_body(product))

    assert first.status_code == 201
    assert second.status_code == 200
    assert second.json()["created"] is False
    assert second.json()["order_id"] == first.json()["order_id"]


@pytest.mark.asyncio
@pytest.mark.integration
async def test_amount_mismatch_is_rejected(client, db_session, paystack, admin_headers):
    product = await _seed_product(db_session)
    paystack.add_transaction("PAY-1", amount=1000)

    response = await client.post("/orders/online", json=_order_body(product))

    assert response.status_code == 400
    assert "amount mismatch" in response.json()["detail"]

    orphans = await client.get("/admin/payments/orphans", headers=admin_headers)
    assert [o["reference"] for o in orphans.json()] == ["PAY-1"]


@pytest.mark.asyncio
@pytest.mark.integration
async def test_invalid_payload_is_422(client):
    response = await client.post("/orders/online", json={"items": []})

    assert response.status_code == 422


# ---------------------------------------------------------------------------
# GET /orders/{order_number}
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.integration
async def test_get_order(client, db_session):
    order = OrderFactory.create()
    db_session.add(order)
    await db_session.commit()

    response = await client.get(f"/orders/{order.order_number}")

    assert response.status_code == 200
    assert response.json()["payment_reference"] == order.payment_reference


@pytest.mark.asyncio
@pytest.mark.integration
async def test_get_missing_order_is_404(client):
    response = await client.get("/orders/ORD-NOPE")

    assert response.status_code == 404
