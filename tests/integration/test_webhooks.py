"""Integration tests for the Paystack webhook endpoint."""

import json

import pytest
from tests.factories import OrderFactory
from tests.stubs import sign


def _signed(payload: dict, secret: str = "sk_test_secret"):
    body = json.dumps(payload).encode("utf-8")
    return body, {"x-paystack-signature": sign(body, secret), "content-type": "application/json"}


def _charge(reference="PAY-1", event_id=77):
    return {"event": "charge.success", "data": {"id": event_id, "reference": reference}}


@pytest.mark.asyncio
@pytest.mark.integration
async def test_missing_signature_is_401(client):
    response = await client.post("/webhooks/paystack", json=_charge())

    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid signature"


@pytest.mark.asyncio
@pytest.mark.integration
async def test_wrong_signature_is_401(client):
    body, headers = _signed(_charge(), secret="not-the-secret")

    response = await client.post("/webhooks/paystack", content=body, headers=headers)

    assert response.status_code == 401


@pytest.mark.asyncio
@pytest.mark.integration
async def test_signed_charge_without_order_records_orphan(client, paystack, admin_headers):
    paystack.add_transaction("PAY-1", amount=700000)
    body, headers = _signed(_charge())

    response = await client.post("/webhooks/paystack", content=body, headers=headers)

    assert response.status_code == 200
    assert response.json() == {"status": "orphan_recorded"}
    orphans = (await client.get("/admin/payments/orphans", headers=admin_headers)).json()
    assert orphans[0]["reference"] == "PAY-1"
    assert orphans[0]["amount_kobo"] == 700000


@pytest.mark.asyncio
@pytest.mark.integration
async def test_redelivered_event_is_acknowledged_once(client, db_session, paystack):
    db_session.add(OrderFactory.create(payment_reference="PAY-1"))
    await db_session.commit()
    paystack.add_transaction("PAY-1", amount=1250000)
    body, headers = _signed(_charge())

    first = await client.post("/webhooks/paystack", content=body, headers=headers)
    second = await client.post("/webhooks/paystack", content=body, headers=headers)

    assert first.json() == {"status": "order_reconciled"}
    assert second.json() == {"status": "duplicate"}
    assert paystack.verify_calls == ["PAY-1"]


@pytest.mark.asyncio
@pytest.mark.integration
async def test_gateway_failure_is_502_so_paystack_retries(client, paystack):
    paystack.fail_verify = "gateway down"
    body, headers = _signed(_charge())

    response = await client.post("/webhooks/paystack", content=body, headers=headers)

    assert response.status_code == 502

    paystack.fail_verify = None
    paystack.add_transaction("PAY-1", amount=1250000)
    retry = await client.post("/webhooks/paystack", content=body, headers=headers)
    assert retry.json() == {"status": "orphan_recorded"}
