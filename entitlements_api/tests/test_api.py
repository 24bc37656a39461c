"""HTTP surface tests (FastAPI TestClient with dependency overrides)."""

import json
from dataclasses import replace

from entitlements_api import dependencies
from entitlements_api.domain import SubscriptionStatus
from entitlements_api.errors import ProviderRejected, ProviderUnavailable
from entitlements_api.main import app
from entitlements_api.store import USERS_COLLECTION

from .conftest import ADMIN_SECRET, make_snapshot

WEBHOOK_BODY = json.dumps({
    "id": "WH-EVT-1",
    "event_type": "BILLING.SUBSCRIPTION.CANCELLED",
    "resource": {"id": "I-SUB-1"},
})


class TestValidateSubscription:

    def test_active_subscription_entitles_caller(self, client, store):
        response = client.post(
            "/api/paypal/validate-subscription",
            json={"subscriptionId": "I-SUB-1", "email": "Nurse@Example.com"},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["ok"] is True
        assert data["activeForApp"] is True
        assert data["subscriptionStatus"] == "ACTIVE"
        assert data["email"] == "nurse@example.com"
        assert data["entitlementWritten"] is True
        assert store.get(USERS_COLLECTION, "nurse@example.com")["proActive"] is True

    def test_user_id_alias(self, client, store):
        response = client.post(
            "/api/paypal/validate-subscription",
            json={"subscriptionId": "I-SUB-1", "userId": "legacy@example.com"},
        )
        assert response.status_code == 200
        assert response.json()["email"] == "legacy@example.com"

    def test_without_email_reports_but_does_not_entitle(self, client, store):
        response = client.post("/api/paypal/validate-subscription", json={"subscriptionId": "I-SUB-1"})

        assert response.status_code == 200
        assert response.json()["entitlementWritten"] is False
        assert store.list(USERS_COLLECTION) == []

    def test_provider_rejection_keeps_provider_status(self, client, provider):
        provider.fetch_subscription.side_effect = ProviderRejected(
            "PayPal rejected the subscription lookup", status_code=404, details={"subscriptionId": "I-404"},
        )

        response = client.post("/api/paypal/validate-subscription", json={"subscriptionId": "I-404"})

        assert response.status_code == 404
        assert response.json()["code"] == "PROVIDER_REJECTED"
        assert response.json()["details"]["subscriptionId"] == "I-404"

    def test_provider_unavailable_is_502(self, client, provider, store):
        provider.fetch_subscription.side_effect = ProviderUnavailable("Unable to reach PayPal")

        response = client.post(
            "/api/paypal/validate-subscription",
            json={"subscriptionId": "I-SUB-1", "email": "a@example.com"},
        )

        assert response.status_code == 502
        assert response.json() == {"error": "Unable to reach PayPal", "code": "PROVIDER_UNAVAILABLE"}
        assert store.list(USERS_COLLECTION) == []

    def test_invalid_email_is_422(self, client):
        response = client.post(
            "/api/paypal/validate-subscription",
            json={"subscriptionId": "I-SUB-1", "email": "nope"},
        )
        assert response.status_code == 422
        assert response.json()["code"] == "INVALID_ARGUMENT"


class TestWebhook:

    def test_verified_delivery_is_acknowledged(self, client, provider, engine, store):
        client.post(
            "/api/paypal/validate-subscription",
            json={"subscriptionId": "I-SUB-1", "email": "a@example.com"},
        )
        provider.fetch_subscription.return_value = make_snapshot(status=SubscriptionStatus.CANCELLED)

        response = client.post(
            "/api/paypal/webhook",
            content=WEBHOOK_BODY,
            headers={"Content-Type": "application/json", "PAYPAL-TRANSMISSION-ID": "tx-1"},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["state"] == "RECONCILED"
        assert data["eventType"] == "BILLING.SUBSCRIPTION.CANCELLED"
        assert data["subscriptionId"] == "I-SUB-1"
        assert store.get(USERS_COLLECTION, "a@example.com")["proActive"] is False

        headers, raw_body = provider.verify_webhook_authenticity.call_args[0]
        assert headers["paypal-transmission-id"] == "tx-1"
        assert raw_body == WEBHOOK_BODY.encode()

    def test_bad_signature_is_400(self, client, provider, store):
        provider.verify_webhook_authenticity.return_value = False

        response = client.post("/api/paypal/webhook", content=WEBHOOK_BODY)

        assert response.status_code == 400
        assert response.json()["code"] == "SIGNATURE_INVALID"
        provider.fetch_subscription.assert_not_called()
        assert store.list(USERS_COLLECTION) == []

    def test_provider_outage_asks_for_redelivery(self, client, provider):
        provider.fetch_subscription.side_effect = ProviderUnavailable(
            "PayPal subscription request timed out", status_code=504, code="PROVIDER_TIMEOUT",
        )

        response = client.post("/api/paypal/webhook", content=WEBHOOK_BODY)

        assert response.status_code == 504
        assert response.json()["code"] == "PROVIDER_TIMEOUT"


class TestManualActivation:

    def test_activation_with_header_secret(self, client, store):
        response = client.post(
            "/api/admin/activate",
            json={"email": "u@x.com", "plan": "yearly"},
            headers={"X-Admin-Secret": ADMIN_SECRET},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["email"] == "u@x.com"
        assert data["plan"] == "yearly"
        assert data["subscriptionId"].startswith("qr-")
        assert store.get(USERS_COLLECTION, "u@x.com")["source"] == "qr"

    def test_activation_with_body_secret(self, client):
        response = client.post(
            "/api/admin/activate",
            json={"email": "u@x.com", "plan": "monthly", "adminSecret": ADMIN_SECRET},
        )
        assert response.status_code == 200

    def test_wrong_secret_is_401(self, client, store):
        response = client.post(
            "/api/admin/activate",
            json={"email": "u@x.com", "plan": "monthly"},
            headers={"X-Admin-Secret": "guess"},
        )

        assert response.status_code == 401
        assert response.json()["code"] == "UNAUTHORIZED"
        assert store.list(USERS_COLLECTION) == []

    def test_invalid_plan_is_422(self, client):
        response = client.post(
            "/api/admin/activate",
            json={"email": "u@x.com", "plan": "weekly"},
            headers={"X-Admin-Secret": ADMIN_SECRET},
        )
        assert response.status_code == 422

    def test_unconfigured_secret_is_401(self, client, settings, store):
        app.dependency_overrides[dependencies.get_settings] = lambda: replace(settings, admin_secret="")

        response = client.post(
            "/api/admin/activate",
            json={"email": "u@x.com", "plan": "monthly"},
            headers={"X-Admin-Secret": ADMIN_SECRET},
        )

        assert response.status_code == 401
        assert response.json()["code"] == "UNAUTHORIZED"
        assert store.list(USERS_COLLECTION) == []

    def test_missing_body_hits_admin_gate_first(self, client, store):
        response = client.post("/api/admin/activate")

        assert response.status_code == 401
        assert response.json()["code"] == "UNAUTHORIZED"
        assert store.list(USERS_COLLECTION) == []

    def test_missing_body_with_secret_is_422(self, client):
        response = client.post("/api/admin/activate", headers={"X-Admin-Secret": ADMIN_SECRET})

        assert response.status_code == 422
        assert response.json()["code"] == "INVALID_ARGUMENT"

    def test_repeated_failures_lock_out(self, client):
        for _ in range(3):
            client.post(
                "/api/admin/activate",
                json={"email": "u@x.com", "plan": "monthly"},
                headers={"X-Admin-Secret": "guess"},
            )

        response = client.post(
            "/api/admin/activate",
            json={"email": "u@x.com", "plan": "monthly"},
            headers={"X-Admin-Secret": ADMIN_SECRET},
        )

        assert response.status_code == 429
        assert response.json()["code"] == "LOCKED_OUT"


class TestSubscriptionStatus:

    def test_unknown_email_returns_none_shape(self, client):
        response = client.get("/api/subscription/status/Nobody@Example.com")

        assert response.status_code == 200
        data = response.json()
        assert data["email"] == "nobody@example.com"
        assert data["proActive"] is False
        assert data["activeForApp"] is False
        assert data["subscriptionStatus"] == "NONE"
        assert data["plan"] is None
        assert data["source"] == "backend"

    def test_status_after_manual_activation(self, client):
        client.post(
            "/api/admin/activate",
            json={"email": "u@x.com", "plan": "monthly"},
            headers={"X-Admin-Secret": ADMIN_SECRET},
        )

        data = client.get("/api/subscription/status/U@X.com").json()

        assert data["proActive"] is True
        assert data["plan"] == "monthly"
        assert data["subscriptionStatus"] == "ACTIVE"
        assert data["expiresAt"] is not None
        assert data["updatedAt"] is not None

    def test_refresh_revalidates_with_paypal(self, client, provider):
        client.post(
            "/api/paypal/validate-subscription",
            json={"subscriptionId": "I-SUB-1", "email": "a@example.com"},
        )
        provider.fetch_subscription.return_value = make_snapshot(status=SubscriptionStatus.SUSPENDED)

        data = client.get("/api/subscription/status/a@example.com", params={"refresh": "true"}).json()

        assert data["proActive"] is False
        assert data["subscriptionStatus"] == "SUSPENDED"
        assert data["source"] == "paypal"


class TestDebugListing:

    def test_hidden_outside_debug(self, client):
        response = client.get("/api/subscription/debug/all", headers={"X-Admin-Secret": ADMIN_SECRET})
        assert response.status_code == 404

    def test_lists_records_in_debug(self, client, settings):
        app.dependency_overrides[dependencies.get_settings] = lambda: replace(settings, debug=True)
        client.post("/api/paypal/validate-subscription", json={"subscriptionId": "I-SUB-1"})

        response = client.get("/api/subscription/debug/all", headers={"X-Admin-Secret": ADMIN_SECRET})

        assert response.status_code == 200
        items = response.json()["items"]
        assert [item["subscriptionId"] for item in items] == ["I-SUB-1"]

    def test_requires_admin_secret(self, client, settings):
        app.dependency_overrides[dependencies.get_settings] = lambda: replace(settings, debug=True)

        response = client.get("/api/subscription/debug/all")

        assert response.status_code == 401


class TestHealth:

    def test_root_banner(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert response.json()["status"] == "running"

    def test_health_reports_missing_config(self, client, settings):
        assert client.get("/api/health").json()["status"] == "healthy"

        app.dependency_overrides[dependencies.get_settings] = lambda: replace(settings, paypal_webhook_id="")
        data = client.get("/api/health").json()

        assert data["status"] == "degraded"
        assert data["missingConfig"] == ["PAYPAL_WEBHOOK_ID"]

    def test_store_health(self, client):
        data = client.get("/api/health/store").json()
        assert data["status"] == "healthy"
        assert data["backend"] == "memory"
