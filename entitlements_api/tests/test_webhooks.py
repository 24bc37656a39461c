"""Tests for webhook intake: signature gate, event parsing, reconciliation."""

import json
from unittest.mock import MagicMock

import pytest

from entitlements_api.domain import SubscriptionStatus
from entitlements_api.engine import ManualGrant, SnapshotReconcile
from entitlements_api.errors import ProviderUnavailable, SignatureInvalid
from entitlements_api.store import SUBSCRIPTIONS_COLLECTION, USERS_COLLECTION
from entitlements_api.webhooks import DeliveryState, WebhookIntake, extract_subscription_id

from .conftest import make_snapshot

HEADERS = {"paypal-transmission-id": "tx-9"}


def _event(event_type="BILLING.SUBSCRIPTION.CANCELLED", resource=None):
    return json.dumps({
        "id": "WH-EVT-9",
        "event_type": event_type,
        "resource": resource if resource is not None else {"id": "I-SUB-1", "status": "CANCELLED"},
    }).encode()


class TestExtractSubscriptionId:

    def test_subscription_event_uses_resource_id(self):
        event = {"event_type": "BILLING.SUBSCRIPTION.ACTIVATED", "resource": {"id": "I-1"}}
        assert extract_subscription_id(event) == "I-1"

    def test_payment_sale_uses_billing_agreement(self):
        event = {
            "event_type": "PAYMENT.SALE.COMPLETED",
            "resource": {"id": "SALE-1", "billing_agreement_id": "I-2"},
        }
        assert extract_subscription_id(event) == "I-2"

    def test_missing_resource(self):
        assert extract_subscription_id({"event_type": "CHECKOUT.ORDER.APPROVED"}) is None


class TestWebhookIntake:

    def test_rejected_signature_never_touches_store(self, provider, settings):
        provider.verify_webhook_authenticity.return_value = False
        engine = MagicMock()

        with pytest.raises(SignatureInvalid) as exc_info:
            WebhookIntake(provider, engine).handle(HEADERS, _event())

        assert exc_info.value.status_code == 400
        assert exc_info.value.details["transmissionId"] == "tx-9"
        provider.fetch_subscription.assert_not_called()
        engine.reconcile_snapshot.assert_not_called()

    def test_cancellation_revokes_bound_user(self, provider, engine, store):
        engine.reconcile(SnapshotReconcile(snapshot=make_snapshot(), email="a@example.com"))
        provider.fetch_subscription.return_value = make_snapshot(status=SubscriptionStatus.CANCELLED)

        delivery = WebhookIntake(provider, engine).handle(HEADERS, _event())

        assert delivery.state is DeliveryState.RECONCILED
        assert delivery.summary()["entitlementWritten"] is True
        provider.fetch_subscription.assert_called_once_with("I-SUB-1")
        stored = store.get(USERS_COLLECTION, "a@example.com")
        assert stored["proActive"] is False
        assert stored["expiresAt"] is None

    def test_event_attached_to_subscription_record(self, provider, engine, store):
        WebhookIntake(provider, engine).handle(HEADERS, _event())

        record = store.get(SUBSCRIPTIONS_COLLECTION, "I-SUB-1")
        assert record["lastWebhookEvent"]["id"] == "WH-EVT-9"
        assert record["lastWebhookEvent"]["eventType"] == "BILLING.SUBSCRIPTION.CANCELLED"

    def test_unbound_subscription_acknowledged_without_entitlement(self, provider, engine, store):
        delivery = WebhookIntake(provider, engine).handle(HEADERS, _event())

        assert delivery.state is DeliveryState.RECONCILED
        assert delivery.summary()["entitlementWritten"] is False
        assert store.list(USERS_COLLECTION) == []

    def test_event_without_subscription_is_ignored(self, provider, engine, store):
        body = _event(event_type="CHECKOUT.ORDER.APPROVED", resource={"id": ""})

        delivery = WebhookIntake(provider, engine).handle(HEADERS, body)

        assert delivery.state is DeliveryState.IGNORED
        provider.fetch_subscription.assert_not_called()
        assert store.list(SUBSCRIPTIONS_COLLECTION) == []

    def test_provider_failure_propagates_without_writes(self, provider, engine, store):
        provider.fetch_subscription.side_effect = ProviderUnavailable("PayPal down")

        with pytest.raises(ProviderUnavailable):
            WebhookIntake(provider, engine).handle(HEADERS, _event())

        assert store.list(SUBSCRIPTIONS_COLLECTION) == []
        assert store.list(USERS_COLLECTION) == []

    def test_replayed_delivery_is_harmless(self, provider, engine, store):
        engine.reconcile(SnapshotReconcile(snapshot=make_snapshot(), email="a@example.com"))
        intake = WebhookIntake(provider, engine)

        intake.handle(HEADERS, _event(event_type="BILLING.SUBSCRIPTION.ACTIVATED"))
        first = store.get(USERS_COLLECTION, "a@example.com")
        intake.handle(HEADERS, _event(event_type="BILLING.SUBSCRIPTION.ACTIVATED"))
        second = store.get(USERS_COLLECTION, "a@example.com")

        assert first["proActive"] is second["proActive"] is True
        assert first["expiresAt"] == second["expiresAt"]

    def test_cancellation_revokes_manual_grant_on_bound_email(self, provider, engine, store):
        engine.reconcile(SnapshotReconcile(snapshot=make_snapshot(), email="u@x.com"))
        engine.reconcile(ManualGrant(email="u@x.com", plan="monthly", reference="qr-1"))
        provider.fetch_subscription.return_value = make_snapshot(status=SubscriptionStatus.CANCELLED)

        delivery = WebhookIntake(provider, engine).handle(HEADERS, _event())

        assert delivery.email == "u@x.com"
        stored = store.get(USERS_COLLECTION, "u@x.com")
        assert stored["proActive"] is False
        assert stored["expiresAt"] is None
        assert stored["source"] == "paypal"
        assert engine.lookup("u@x.com").proActive is False
