"""
Tests for admin endpoints: provider configuration CRUD, the audit log, and
cross-merchant transaction visibility.

Key invariants:
  - consumer_secret is write-only. No response ever contains it, and the
    consumer key is masked.
  - At most one active config per (provider, country).
  - Every create/update/delete leaves an audit row naming the changed
    fields, never credential values.
  - Registering the provider IPN stores the returned id and is audited;
    Pesapal payments are refused until it has been done.
  - Merchants get 403 and anonymous callers 401 on every admin route.
"""

import json
import uuid

from sqlalchemy import select

from payrail.models.provider_config import ProviderConfig
from payrail.security import decrypt_value


PESAPAL = "https://cybqa.pesapal.com/pesapalv3"

NEW_CONFIG = {
    "provider": "pesapal",
    "country_code": "ug",
    "consumer_key": "uganda-consumer-key-9876",
    "consumer_secret": "uganda-consumer-secret",
    "ipn_id": "ipn-ug-1",
}


async def create_config(client, admin_headers, **overrides):
    response = await client.post(
        "/admin/provider-configs", json={**NEW_CONFIG, **overrides}, headers=admin_headers
    )
    assert response.status_code == 201, response.text
    return response.json()


class TestProviderConfigCrud:

    async def test_create_masks_credentials(self, client, admin_headers):
        response = await client.post(
            "/admin/provider-configs", json=NEW_CONFIG, headers=admin_headers
        )

        assert response.status_code == 201, response.text
        data = response.json()
        assert data["provider"] == "pesapal"
        assert data["country_code"] == "UG"
        assert data["environment"] == "sandbox"
        assert data["consumer_key"] == "****9876"
        assert data["is_active"] is True
        assert "consumer_secret" not in data
        assert "uganda-consumer-secret" not in response.text

    async def test_secret_is_encrypted_at_rest(self, client, admin_headers, session_factory):
        created = await create_config(client, admin_headers)

        async with session_factory() as session:
            result = await session.execute(
                select(ProviderConfig).where(ProviderConfig.id == uuid.UUID(created["id"]))
            )
            config = result.scalar_one()

        assert config.consumer_secret_encrypted != "uganda-consumer-secret"
        assert decrypt_value(config.consumer_secret_encrypted) == "uganda-consumer-secret"

    async def test_second_active_config_conflicts(self, client, admin_headers):
        await create_config(client, admin_headers)
        response = await client.post(
            "/admin/provider-configs", json=NEW_CONFIG, headers=admin_headers
        )
        assert response.status_code == 409
        assert response.json()["code"] == "DUPLICATE_CONFIG"

    async def test_inactive_duplicate_is_allowed(self, client, admin_headers):
        await create_config(client, admin_headers)
        await create_config(client, admin_headers, is_active=False, consumer_key="rotated-key")

        listing = await client.get(
            "/admin/provider-configs", params={"country_code": "UG"}, headers=admin_headers
        )
        assert len(listing.json()) == 2

    async def test_manual_cannot_be_configured(self, client, admin_headers):
        response = await client.post(
            "/admin/provider-configs",
            json={**NEW_CONFIG, "provider": "manual"},
            headers=admin_headers,
        )
        assert response.status_code == 422

    async def test_list_filters(self, client, admin_headers, provider_configs):
        response = await client.get(
            "/admin/provider-configs", params={"provider": "paystack"}, headers=admin_headers
        )
        data = response.json()
        assert [(c["provider"], c["country_code"]) for c in data] == [("paystack", "NG")]
        assert all("consumer_secret" not in c for c in data)

    async def test_get_unknown(self, client, admin_headers):
        response = await client.get(
            f"/admin/provider-configs/{uuid.uuid4()}", headers=admin_headers
        )
        assert response.status_code == 404

    async def test_update_rotates_secret(self, client, admin_headers, session_factory):
        created = await create_config(client, admin_headers)

        response = await client.patch(
            f"/admin/provider-configs/{created['id']}",
            json={"consumer_secret": "rotated-secret", "environment": "production"},
            headers=admin_headers,
        )

        assert response.status_code == 200, response.text
        assert response.json()["environment"] == "production"
        assert "rotated-secret" not in response.text

        async with session_factory() as session:
            config = await session.get(ProviderConfig, uuid.UUID(created["id"]))
        assert decrypt_value(config.consumer_secret_encrypted) == "rotated-secret"
        assert config.consumer_key == "uganda-consumer-key-9876"

    async def test_update_ignores_nulls_but_clears_ipn_id(self, client, admin_headers):
        created = await create_config(client, admin_headers)

        response = await client.patch(
            f"/admin/provider-configs/{created['id']}",
            json={"consumer_key": None, "ipn_id": None},
            headers=admin_headers,
        )

        assert response.status_code == 200, response.text
        assert response.json()["consumer_key"] == "****9876"
        assert response.json()["ipn_id"] is None

    async def test_reactivating_into_conflict(self, client, admin_headers):
        await create_config(client, admin_headers)
        spare = await create_config(client, admin_headers, is_active=False)

        response = await client.patch(
            f"/admin/provider-configs/{spare['id']}",
            json={"is_active": True},
            headers=admin_headers,
        )
        assert response.status_code == 409

    async def test_delete(self, client, admin_headers):
        created = await create_config(client, admin_headers)

        response = await client.delete(
            f"/admin/provider-configs/{created['id']}", headers=admin_headers
        )
        assert response.status_code == 204

        again = await client.get(
            f"/admin/provider-configs/{created['id']}", headers=admin_headers
        )
        assert again.status_code == 404

    async def test_created_config_is_used_for_payments(
        self, client, admin_headers, register_merchant, provider_stub, stub_pesapal_checkout
    ):
        await create_config(client, admin_headers)
        merchant = await register_merchant("kampala@example.com", country="UG", currency="UGX")
        stub_pesapal_checkout(tracking_id="otid-ug")

        response = await client.post(
            "/payments",
            json={
                "amount": "5000.00",
                "payment_method": "card",
                "customer_name": "Okello James",
                "customer_email": "okello@example.com",
            },
            headers=merchant["headers"],
        )

        assert response.status_code == 201, response.text
        token_request = provider_stub.calls("RequestToken")[0]
        assert b"uganda-consumer-secret" in token_request.content


class TestAuditLog:

    async def test_every_change_is_audited(self, client, admin_headers):
        created = await create_config(client, admin_headers)
        await client.patch(
            f"/admin/provider-configs/{created['id']}",
            json={"consumer_secret": "rotated-secret", "ipn_id": "ipn-ug-2"},
            headers=admin_headers,
        )
        await client.delete(f"/admin/provider-configs/{created['id']}", headers=admin_headers)

        response = await client.get("/admin/audit-logs", headers=admin_headers)

        assert response.status_code == 200
        entries = {entry["action"]: entry for entry in response.json()}
        assert set(entries) == {
            "create_provider_config",
            "update_provider_config",
            "delete_provider_config",
        }
        assert all(entry["entity_id"] == created["id"] for entry in entries.values())
        assert all(entry["entity_type"] == "provider_config" for entry in entries.values())
        assert entries["update_provider_config"]["details"]["changed_fields"] == [
            "consumer_secret",
            "ipn_id",
        ]
        assert "rotated-secret" not in response.text
        assert "uganda-consumer-secret" not in response.text

    async def test_limit(self, client, admin_headers):
        await create_config(client, admin_headers)
        await create_config(client, admin_headers, country_code="TZ")
        response = await client.get(
            "/admin/audit-logs", params={"limit": 1}, headers=admin_headers
        )
        assert len(response.json()) == 1


class TestIpnRegistration:

    def stub_register(self, provider_stub, ipn_id="ipn-ug-registered"):
        provider_stub.add("POST", f"{PESAPAL}/api/Auth/RequestToken", json={"token": "tok"})
        provider_stub.add(
            "POST",
            f"{PESAPAL}/api/URLSetup/RegisterIPN",
            json={"ipn_id": ipn_id, "url": "ignored", "error": None, "status": "200"},
        )

    async def test_register_stores_ipn_id_and_audits(self, client, admin_headers, provider_stub):
        created = await create_config(client, admin_headers, ipn_id=None)
        self.stub_register(provider_stub)

        response = await client.post(
            f"/admin/provider-configs/{created['id']}/register-ipn",
            json={},
            headers=admin_headers,
        )

        assert response.status_code == 200, response.text
        assert response.json()["ipn_id"] == "ipn-ug-registered"
        sent = json.loads(provider_stub.calls("RegisterIPN")[0].content)
        assert sent["url"].endswith("/webhooks/pesapal")

        audit = await client.get("/admin/audit-logs", headers=admin_headers)
        entry = next(e for e in audit.json() if e["action"] == "register_ipn")
        assert entry["entity_id"] == created["id"]
        assert entry["details"]["changed_fields"] == ["ipn_id"]
        assert entry["details"]["ipn_id"] == "ipn-ug-registered"
        assert entry["details"]["previous_ipn_id"] is None
        assert "uganda-consumer-secret" not in audit.text

    async def test_custom_url(self, client, admin_headers, provider_stub):
        created = await create_config(client, admin_headers, ipn_id=None)
        self.stub_register(provider_stub)

        await client.post(
            f"/admin/provider-configs/{created['id']}/register-ipn",
            json={"url": "https://pay.example.com/webhooks/pesapal"},
            headers=admin_headers,
        )

        sent = json.loads(provider_stub.calls("RegisterIPN")[0].content)
        assert sent["url"] == "https://pay.example.com/webhooks/pesapal"

    async def test_provider_refusal_changes_nothing(self, client, admin_headers, provider_stub):
        created = await create_config(client, admin_headers, ipn_id=None)
        provider_stub.add("POST", f"{PESAPAL}/api/Auth/RequestToken", json={"token": "tok"})
        provider_stub.add(
            "POST", f"{PESAPAL}/api/URLSetup/RegisterIPN", status_code=500, text="unavailable"
        )

        response = await client.post(
            f"/admin/provider-configs/{created['id']}/register-ipn", headers=admin_headers
        )

        assert response.status_code == 502
        config = await client.get(f"/admin/provider-configs/{created['id']}", headers=admin_headers)
        assert config.json()["ipn_id"] is None
        audit = await client.get("/admin/audit-logs", headers=admin_headers)
        assert "register_ipn" not in {e["action"] for e in audit.json()}

    async def test_provider_without_ipn_registration(
        self, client, admin_headers, provider_stub
    ):
        created = await create_config(
            client, admin_headers, provider="paystack", country_code="NG", ipn_id=None
        )
        response = await client.post(
            f"/admin/provider-configs/{created['id']}/register-ipn", headers=admin_headers
        )
        assert response.status_code == 422
        assert provider_stub.requests == []

    async def test_unknown_config(self, client, admin_headers):
        response = await client.post(
            f"/admin/provider-configs/{uuid.uuid4()}/register-ipn", headers=admin_headers
        )
        assert response.status_code == 404

    async def test_merchant_is_forbidden(self, client, admin_headers, ke_merchant):
        created = await create_config(client, admin_headers, ipn_id=None)
        response = await client.post(
            f"/admin/provider-configs/{created['id']}/register-ipn", headers=ke_merchant["headers"]
        )
        assert response.status_code == 403

    async def test_payments_wait_for_registration(
        self, client, admin_headers, register_merchant, provider_stub, stub_pesapal_checkout
    ):
        created = await create_config(client, admin_headers, ipn_id=None)
        merchant = await register_merchant("entebbe@example.com", country="UG", currency="UGX")
        payment = {
            "amount": "2500.00",
            "payment_method": "card",
            "customer_name": "Nakato Sarah",
            "customer_email": "nakato@example.com",
        }

        refused = await client.post("/payments", json=payment, headers=merchant["headers"])

        assert refused.status_code == 404
        assert refused.json()["code"] == "IPN_NOT_REGISTERED"
        assert provider_stub.requests == []
        history = await client.get("/transactions", headers=merchant["headers"])
        assert history.json() == []

        self.stub_register(provider_stub)
        await client.post(
            f"/admin/provider-configs/{created['id']}/register-ipn", headers=admin_headers
        )
        stub_pesapal_checkout(tracking_id="otid-ug-2")

        accepted = await client.post("/payments", json=payment, headers=merchant["headers"])

        assert accepted.status_code == 201, accepted.text
        order = json.loads(provider_stub.calls("SubmitOrderRequest")[0].content)
        assert order["notification_id"] == "ipn-ug-registered"


class TestAdminAccess:

    async def test_merchant_is_forbidden(self, client, ke_merchant):
        for method, path in [
            ("GET", "/admin/provider-configs"),
            ("POST", "/admin/provider-configs"),
            ("GET", "/admin/audit-logs"),
            ("GET", "/admin/transactions"),
        ]:
            response = await client.request(
                method, path, json=NEW_CONFIG, headers=ke_merchant["headers"]
            )
            assert response.status_code == 403, f"{method} {path}"

    async def test_anonymous_is_unauthorized(self, client):
        response = await client.get("/admin/provider-configs")
        assert response.status_code == 401
        assert response.headers["www-authenticate"] == "Bearer"


class TestAdminTransactions:

    async def test_sees_every_merchant(
        self, client, admin_headers, ke_merchant, ng_merchant, provider_configs, provider_stub,
        stub_pesapal_checkout, stub_paystack_checkout,
    ):
        payment = {
            "amount": "10.00",
            "payment_method": "card",
            "customer_name": "Payer",
            "customer_email": "payer@example.com",
        }
        stub_pesapal_checkout()
        stub_paystack_checkout()
        await client.post("/payments", json=payment, headers=ke_merchant["headers"])
        created = await client.post("/payments", json=payment, headers=ng_merchant["headers"])

        listing = await client.get("/admin/transactions", headers=admin_headers)
        assert {t["provider"] for t in listing.json()} == {"pesapal", "paystack"}

        filtered = await client.get(
            "/admin/transactions", params={"provider": "paystack"}, headers=admin_headers
        )
        assert len(filtered.json()) == 1

        txn_id = created.json()["transaction"]["id"]
        detail = await client.get(f"/admin/transactions/{txn_id}", headers=admin_headers)
        assert detail.status_code == 200
        assert detail.json()["id"] == txn_id
