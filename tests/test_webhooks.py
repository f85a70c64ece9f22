"""
Tests for provider webhooks (POST /webhooks/{provider}).

These tests verify:
  - A signed completion credits the merchant exactly once, however many
    times the provider redelivers it
  - Unsigned or badly signed requests are rejected with 401 and change
    nothing
  - Notifications for unknown references never create records
  - Providers that do not send a status (Pesapal) are polled before the
    transition is applied
  - Terminal transactions ignore later contradicting notifications
  - The merchant's own webhook is called once on completion
"""

import hashlib
import hmac
import json
from decimal import Decimal

import httpx

PESAPAL = "https://cybqa.pesapal.com/pesapalv3"
MERCHANT_WEBHOOK_URL = "https://merchant.example.com/hooks/payrail"

PAYSTACK_SECRET = "paystack-test-secret"
PESAPAL_SECRET = "pesapal-test-secret"

PAYMENT = {
    "amount": "150.00",
    "payment_method": "card",
    "customer_name": "Amina Otieno",
    "customer_email": "amina@example.com",
}


def paystack_body(reference, status="success", event="charge.success"):
    return json.dumps(
        {"event": event, "data": {"reference": reference, "status": status, "channel": "card"}}
    ).encode()


def paystack_headers(body, secret=PAYSTACK_SECRET):
    signature = hmac.new(secret.encode(), body, hashlib.sha512).hexdigest()
    return {"x-paystack-signature": signature, "content-type": "application/json"}


async def create_paystack_payment(client, merchant, stub_paystack_checkout, amount="150.00", **extra):
    stub_paystack_checkout()
    response = await client.post(
        "/payments", json={**PAYMENT, "amount": amount, **extra}, headers=merchant["headers"]
    )
    assert response.status_code == 201, response.text
    return response.json()["transaction"]


class TestPaystackWebhook:

    async def test_success_credits_balance(
        self, client, ng_merchant, provider_configs, provider_stub, get_balance,
        stub_paystack_checkout,
    ):
        txn = await create_paystack_payment(client, ng_merchant, stub_paystack_checkout)
        body = paystack_body(txn["reference"])

        response = await client.post("/webhooks/paystack", content=body, headers=paystack_headers(body))

        assert response.status_code == 200, response.text
        assert response.json() == {
            "received": True,
            "transaction_id": txn["id"],
            "status": "completed",
            "outcome": "applied",
        }
        assert await get_balance(ng_merchant) == Decimal("150.00")

        detail = await client.get(f"/transactions/{txn['id']}", headers=ng_merchant["headers"])
        data = detail.json()
        assert data["status"] == "completed"
        assert data["completed_at"] is not None
        assert data["metadata"]["paystack_channel"] == "card"
        # Initiation metadata survives the merge
        assert data["metadata"]["payer_email"] == "amina@example.com"

    async def test_duplicate_delivery_credits_once(
        self, client, ng_merchant, provider_configs, provider_stub, get_balance,
        stub_paystack_checkout,
    ):
        txn = await create_paystack_payment(client, ng_merchant, stub_paystack_checkout)
        body = paystack_body(txn["reference"])

        first = await client.post("/webhooks/paystack", content=body, headers=paystack_headers(body))
        second = await client.post("/webhooks/paystack", content=body, headers=paystack_headers(body))
        third = await client.post("/webhooks/paystack", content=body, headers=paystack_headers(body))

        assert first.json()["outcome"] == "applied"
        assert second.status_code == 200
        assert second.json()["outcome"] == "duplicate"
        assert third.json()["outcome"] == "duplicate"
        assert await get_balance(ng_merchant) == Decimal("150.00")

    async def test_terminal_status_is_not_overwritten(
        self, client, ng_merchant, provider_configs, provider_stub, get_balance,
        stub_paystack_checkout,
    ):
        txn = await create_paystack_payment(client, ng_merchant, stub_paystack_checkout)
        success = paystack_body(txn["reference"])
        await client.post("/webhooks/paystack", content=success, headers=paystack_headers(success))

        failure = paystack_body(txn["reference"], status="failed", event="charge.failed")
        response = await client.post(
            "/webhooks/paystack", content=failure, headers=paystack_headers(failure)
        )
        assert response.json()["outcome"] == "duplicate"
        assert response.json()["status"] == "completed"
        assert await get_balance(ng_merchant) == Decimal("150.00")

    async def test_failed_payment_does_not_credit(
        self, client, ng_merchant, provider_configs, provider_stub, get_balance,
        stub_paystack_checkout,
    ):
        txn = await create_paystack_payment(client, ng_merchant, stub_paystack_checkout)
        body = paystack_body(txn["reference"], status="failed", event="charge.failed")
        response = await client.post("/webhooks/paystack", content=body, headers=paystack_headers(body))
        assert response.json()["status"] == "failed"
        assert await get_balance(ng_merchant) == 0

    async def test_still_pending_is_unchanged(
        self, client, ng_merchant, provider_configs, provider_stub,
        stub_paystack_checkout,
    ):
        txn = await create_paystack_payment(client, ng_merchant, stub_paystack_checkout)
        body = paystack_body(txn["reference"], status="ongoing")
        response = await client.post("/webhooks/paystack", content=body, headers=paystack_headers(body))
        assert response.json()["outcome"] == "unchanged"
        assert response.json()["status"] == "pending"


class TestSignatureRejection:

    async def test_bad_signature_changes_nothing(
        self, client, ng_merchant, provider_configs, provider_stub, get_balance,
        stub_paystack_checkout,
    ):
        txn = await create_paystack_payment(client, ng_merchant, stub_paystack_checkout)
        body = paystack_body(txn["reference"])

        response = await client.post(
            "/webhooks/paystack", content=body, headers=paystack_headers(body, secret="forged")
        )

        assert response.status_code == 401
        assert response.json() == {
            "detail": "Invalid signature",
            "error_type": "signature_invalid",
            "code": "SIGNATURE_INVALID",
        }
        assert await get_balance(ng_merchant) == 0
        detail = await client.get(f"/transactions/{txn['id']}", headers=ng_merchant["headers"])
        assert detail.json()["status"] == "pending"

    async def test_missing_signature(
        self, client, ng_merchant, provider_configs, provider_stub, stub_paystack_checkout
    ):
        txn = await create_paystack_payment(client, ng_merchant, stub_paystack_checkout)
        body = paystack_body(txn["reference"])
        response = await client.post(
            "/webhooks/paystack", content=body, headers={"content-type": "application/json"}
        )
        assert response.status_code == 401

    async def test_signature_over_different_body(
        self, client, ng_merchant, provider_configs, provider_stub,
        stub_paystack_checkout,
    ):
        txn = await create_paystack_payment(client, ng_merchant, stub_paystack_checkout)
        signed = paystack_body(txn["reference"], status="failed")
        sent = paystack_body(txn["reference"], status="success")
        response = await client.post("/webhooks/paystack", content=sent, headers=paystack_headers(signed))
        assert response.status_code == 401

    async def test_wrong_shared_secret(self, client):
        response = await client.post(
            "/webhooks/pesapal",
            json={"OrderTrackingId": "otid-1"},
            headers={"x-webhook-secret": "guess"},
        )
        assert response.status_code == 401

    async def test_get_is_not_allowed(self, client):
        response = await client.get("/webhooks/paystack")
        assert response.status_code == 405


class TestMalformedNotifications:

    async def test_unknown_reference(self, client, provider_configs, admin_headers):
        body = paystack_body("does-not-exist")
        response = await client.post("/webhooks/paystack", content=body, headers=paystack_headers(body))
        assert response.status_code == 404
        assert response.json()["code"] == "TRANSACTION_NOT_FOUND"

        # Nothing is created for a reference we never issued
        listing = await client.get("/admin/transactions", headers=admin_headers)
        assert listing.json() == []

    async def test_invalid_json(self, client):
        body = b"not json at all"
        response = await client.post("/webhooks/paystack", content=body, headers=paystack_headers(body))
        assert response.status_code == 400
        assert response.json()["error_type"] == "invalid_payload"

    async def test_json_array(self, client):
        body = b"[1, 2, 3]"
        response = await client.post("/webhooks/paystack", content=body, headers=paystack_headers(body))
        assert response.status_code == 400

    async def test_missing_reference(self, client):
        body = json.dumps({"event": "charge.success", "data": {"status": "success"}}).encode()
        response = await client.post("/webhooks/paystack", content=body, headers=paystack_headers(body))
        assert response.status_code == 400


class TestPesapalIpn:

    async def test_ipn_polls_status_before_applying(
        self, client, ke_merchant, provider_configs, provider_stub, get_balance,
        stub_pesapal_checkout,
    ):
        stub_pesapal_checkout(tracking_id="otid-555")
        created = await client.post("/payments", json=PAYMENT, headers=ke_merchant["headers"])
        assert created.status_code == 201

        provider_stub.add(
            "GET",
            f"{PESAPAL}/api/Transactions/GetTransactionStatus",
            json={
                "payment_status_description": "Completed",
                "payment_method": "Visa",
                "confirmation_code": "CONF-1",
            },
        )
        response = await client.post(
            "/webhooks/pesapal",
            json={"OrderTrackingId": "otid-555", "OrderNotificationType": "IPNCHANGE"},
            headers={"x-webhook-secret": PESAPAL_SECRET},
        )

        assert response.status_code == 200, response.text
        assert response.json()["outcome"] == "applied"
        assert len(provider_stub.calls("GetTransactionStatus")) == 1
        assert await get_balance(ke_merchant) == Decimal("150.00")

    async def test_ipn_for_terminal_transaction_skips_poll(
        self, client, ke_merchant, provider_configs, provider_stub,
        stub_pesapal_checkout,
    ):
        stub_pesapal_checkout(tracking_id="otid-777")
        await client.post("/payments", json=PAYMENT, headers=ke_merchant["headers"])
        provider_stub.add(
            "GET",
            f"{PESAPAL}/api/Transactions/GetTransactionStatus",
            json={"payment_status_description": "Failed"},
        )
        ipn = {"OrderTrackingId": "otid-777"}
        headers = {"x-webhook-secret": PESAPAL_SECRET}

        first = await client.post("/webhooks/pesapal", json=ipn, headers=headers)
        second = await client.post("/webhooks/pesapal", json=ipn, headers=headers)

        assert first.json()["status"] == "failed"
        assert second.json()["outcome"] == "duplicate"
        assert len(provider_stub.calls("GetTransactionStatus")) == 1

    async def test_provider_poll_failure_is_502(
        self, client, ke_merchant, provider_configs, provider_stub,
        stub_pesapal_checkout,
    ):
        stub_pesapal_checkout(tracking_id="otid-888")
        created = await client.post("/payments", json=PAYMENT, headers=ke_merchant["headers"])
        provider_stub.add(
            "GET",
            f"{PESAPAL}/api/Transactions/GetTransactionStatus",
            status_code=503,
            text="maintenance",
        )
        response = await client.post(
            "/webhooks/pesapal",
            json={"OrderTrackingId": "otid-888"},
            headers={"x-webhook-secret": PESAPAL_SECRET},
        )
        assert response.status_code == 502
        detail = await client.get(
            f"/transactions/{created.json()['transaction']['id']}", headers=ke_merchant["headers"]
        )
        assert detail.json()["status"] == "pending"


class TestMerchantNotification:

    async def test_merchant_webhook_called_on_completion(
        self, client, ng_merchant, provider_configs, provider_stub,
        stub_paystack_checkout,
    ):
        provider_stub.add("POST", MERCHANT_WEBHOOK_URL, json={"ok": True})
        txn = await create_paystack_payment(
            client, ng_merchant, stub_paystack_checkout, webhook_url=MERCHANT_WEBHOOK_URL
        )
        body = paystack_body(txn["reference"])
        await client.post("/webhooks/paystack", content=body, headers=paystack_headers(body))
        await client.post("/webhooks/paystack", content=body, headers=paystack_headers(body))

        deliveries = provider_stub.calls("merchant.example.com")
        assert len(deliveries) == 1
        event = json.loads(deliveries[0].content)
        assert event["event"] == "payment.completed"
        assert event["transaction_id"] == txn["id"]
        assert event["amount"] == "150.00"

    async def test_merchant_webhook_failure_does_not_undo_transition(
        self, client, ng_merchant, provider_configs, provider_stub, get_balance,
        stub_paystack_checkout,
    ):
        def unreachable(request):
            raise httpx.ConnectError("connection refused", request=request)

        provider_stub.add("POST", MERCHANT_WEBHOOK_URL, handler=unreachable)
        txn = await create_paystack_payment(
            client, ng_merchant, stub_paystack_checkout, webhook_url=MERCHANT_WEBHOOK_URL
        )
        body = paystack_body(txn["reference"])
        response = await client.post("/webhooks/paystack", content=body, headers=paystack_headers(body))

        assert response.status_code == 200
        assert response.json()["outcome"] == "applied"
        assert await get_balance(ng_merchant) == Decimal("150.00")
