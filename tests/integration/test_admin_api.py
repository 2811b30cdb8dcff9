"""Integration tests for the admin reconciliation and shipping-label endpoints."""

from datetime import timedelta

import pytest
from libs.common.datetime_utils import utc_now
from tests.factories import OrderFactory, OrphanPaymentFactory


def _courier(request_token):
    return {"courier": {"request_token": request_token, "service_code": "fez", "courier_id": "fez"}}


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.integration
async def test_missing_secret_is_401(client):
    response = await client.get("/admin/payments/orphans")

    assert response.status_code == 401


@pytest.mark.asyncio
@pytest.mark.integration
async def test_wrong_secret_is_401(client):
    response = await client.post(
        "/admin/payments/PAY-1/reconcile", headers={"X-Reconcile-Secret": "nope"}
    )

    assert response.status_code == 401


# ---------------------------------------------------------------------------
# Payments
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.integration
async def test_reconcile_refunds_orphan_payment(client, paystack, admin_headers):
    paystack.add_transaction("PAY-1", amount=500000)

    response = await client.post("/admin/payments/PAY-1/reconcile", headers=admin_headers)

    assert response.status_code == 200
    assert response.json() == {"ok": True, "message": "Orphan payment refunded", "refund_id": "rf-1"}


@pytest.mark.asyncio
@pytest.mark.integration
async def test_reconcile_unknown_reference_is_502(client, admin_headers):
    response = await client.post("/admin/payments/NOPE/reconcile", headers=admin_headers)

    assert response.status_code == 502


@pytest.mark.asyncio
@pytest.mark.integration
async def test_sweep_refunds_old_orphans(client, db_session, paystack, admin_headers):
    db_session.add(
        OrphanPaymentFactory.create(
            reference="PAY-OLD", first_seen_at=utc_now() - timedelta(hours=2)
        )
    )
    db_session.add(OrphanPaymentFactory.create(reference="PAY-NEW"))
    await db_session.commit()
    paystack.add_transaction("PAY-OLD", amount=1250000)

    response = await client.post("/admin/payments/orphans/sweep", headers=admin_headers)

    assert response.status_code == 200
    data = response.json()
    assert data["checked"] == 1
    assert data["auto_refunded"] == 1
    assert paystack.verify_calls == ["PAY-OLD"]


@pytest.mark.asyncio
@pytest.mark.integration
async def test_list_and_resolve_orphans(client, db_session, admin_headers):
    db_session.add(OrphanPaymentFactory.create(reference="PAY-1"))
    await db_session.commit()

    listed = await client.get("/admin/payments/orphans", headers=admin_headers)
    resolved = await client.post(
        "/admin/payments/orphans/PAY-1/resolve",
        json={"note": "Refunded by bank transfer"},
        headers=admin_headers,
    )
    after = await client.get("/admin/payments/orphans", headers=admin_headers)

    assert [o["reference"] for o in listed.json()] == ["PAY-1"]
    assert resolved.status_code == 200
    assert resolved.json()["reconciled"] is True
    assert resolved.json()["resolution_note"] == "Refunded by bank transfer"
    assert after.json() == []


@pytest.mark.asyncio
@pytest.mark.integration
async def test_resolve_unknown_orphan_is_404(client, admin_headers):
    response = await client.post(
        "/admin/payments/orphans/NOPE/resolve", json={}, headers=admin_headers
    )

    assert response.status_code == 404


# ---------------------------------------------------------------------------
# Shipping labels
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.integration
async def test_label_lifecycle(client, db_session, shipbubble_routes, admin_headers):
    order = OrderFactory.create(delivery_details=_courier("rt-label-lifecycle"))
    db_session.add(order)
    await db_session.commit()
    base = f"/admin/orders/{order.order_number}/shipping-label"

    created = await client.post(base, headers=admin_headers)
    again = await client.post(base, headers=admin_headers)
    status = await client.get(f"{base}/status", headers=admin_headers)
    cancelled = await client.post(f"{base}/cancel", headers=admin_headers)

    assert created.status_code == 200
    assert created.json()["shipment_id"] == "SB-001"
    assert created.json()["shipment_status"] == "label_created"
    assert again.status_code == 409
    assert status.json()["shipment_status"] == "in_transit"
    assert cancelled.json()["shipment_status"] == "cancelled"

    label_calls = [c for c in shipbubble_routes["calls"] if c[1] == "/shipping/labels"]
    assert label_calls[0][2] == {
        "request_token": "rt-label-lifecycle",
        "service_code": "fez",
        "courier_id": "fez",
    }


@pytest.mark.asyncio
@pytest.mark.integration
async def test_cancelled_label_cannot_reuse_its_quote(
    client, db_session, shipbubble_routes, admin_headers
):
    order = OrderFactory.create(delivery_details=_courier("rt-single-use"))
    db_session.add(order)
    await db_session.commit()
    base = f"/admin/orders/{order.order_number}/shipping-label"

    await client.post(base, headers=admin_headers)
    await client.post(f"{base}/cancel", headers=admin_headers)
    again = await client.post(base, headers=admin_headers)

    assert again.status_code == 409
    assert "Re-quote" in again.json()["detail"]
    label_calls = [c for c in shipbubble_routes["calls"] if c[1] == "/shipping/labels"]
    assert len(label_calls) == 1


@pytest.mark.asyncio
@pytest.mark.integration
async def test_label_without_quote_details_is_400(client, db_session, admin_headers):
    order = OrderFactory.create(delivery_details={})
    db_session.add(order)
    await db_session.commit()

    response = await client.post(
        f"/admin/orders/{order.order_number}/shipping-label", headers=admin_headers
    )

    assert response.status_code == 400


@pytest.mark.asyncio
@pytest.mark.integration
async def test_label_status_without_label_is_404(client, db_session, admin_headers):
    order = OrderFactory.create()
    db_session.add(order)
    await db_session.commit()

    response = await client.get(
        f"/admin/orders/{order.order_number}/shipping-label/status", headers=admin_headers
    )

    assert response.status_code == 404


@pytest.mark.asyncio
@pytest.mark.integration
async def test_label_for_unknown_order_is_404(client, admin_headers):
    response = await client.post("/admin/orders/ORD-NOPE/shipping-label", headers=admin_headers)

    assert response.status_code == 404
