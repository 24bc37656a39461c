"""Shared fixtures for the entitlements API tests.

Everything runs against the in-memory record store with a fixed clock and a
MagicMock standing in for PayPal. No network, no Firestore.
"""

import os
import tempfile
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

# Keep the security log out of the working tree
os.environ.setdefault("LOG_DIR", tempfile.mkdtemp(prefix="entitlements-logs-"))

from entitlements_api.config import Settings
from entitlements_api.domain import Plan, SubscriptionSnapshot, SubscriptionStatus
from entitlements_api.engine import EntitlementEngine
from entitlements_api.store import InMemoryRecordStore
from entitlements_api.subscription_store import SubscriptionRecordStore

FIXED_NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)
LAST_PAYMENT = datetime(2026, 3, 1, 10, 0, 0, tzinfo=timezone.utc)

MONTHLY_PLAN_ID = "P-MONTHLY-001"
YEARLY_PLAN_ID = "P-YEARLY-001"
ADMIN_SECRET = "s3cret-admin"


def make_snapshot(
    subscription_id="I-SUB-1",
    status=SubscriptionStatus.ACTIVE,
    plan_id=MONTHLY_PLAN_ID,
    next_billing_time=None,
    last_payment_time="2026-03-01T10:00:00Z",
):
    return SubscriptionSnapshot(
        subscriptionId=subscription_id,
        status=status,
        planId=plan_id,
        startTime="2026-03-01T09:00:00Z",
        nextBillingTime=next_billing_time,
        lastPaymentTime=last_payment_time,
    )


@pytest.fixture
def clock():
    return MagicMock(return_value=FIXED_NOW)


@pytest.fixture
def settings():
    return Settings(
        paypal_client_id="client-id",
        paypal_client_secret="client-secret",
        paypal_webhook_id="WH-123",
        paypal_api_base="https://api-m.sandbox.paypal.com",
        paypal_timeout_sec=5.0,
        plan_ids={MONTHLY_PLAN_ID: Plan.MONTHLY, YEARLY_PLAN_ID: Plan.YEARLY},
        admin_secret=ADMIN_SECRET,
        grace_days=2.0,
        record_store="memory",
    )


@pytest.fixture
def store(clock):
    return InMemoryRecordStore(clock=clock)


@pytest.fixture
def subscriptions(store):
    return SubscriptionRecordStore(store)


@pytest.fixture
def engine(subscriptions, settings, clock):
    return EntitlementEngine(subscriptions, settings, clock=clock)


@pytest.fixture
def provider():
    """PayPal client double: authentic deliveries, one ACTIVE monthly subscription."""
    mock = MagicMock()
    mock.verify_webhook_authenticity.return_value = True
    mock.fetch_subscription.return_value = make_snapshot()
    return mock


@pytest.fixture
def client(settings, store, engine, provider):
    """TestClient with the app's collaborators swapped for the fixtures."""
    from fastapi.testclient import TestClient

    from entitlements_api import dependencies
    from entitlements_api.main import app
    from entitlements_api.middleware.brute_force import brute_force
    from entitlements_api.middleware.rate_limit import limiter

    app.dependency_overrides[dependencies.get_settings] = lambda: settings
    app.dependency_overrides[dependencies.get_record_store] = lambda: store
    app.dependency_overrides[dependencies.get_paypal_client] = lambda: provider
    app.dependency_overrides[dependencies.get_engine] = lambda: engine
    limiter.enabled = False
    brute_force.reset()

    # Not used as a context manager: the lifespan (Firebase init) stays off
    yield TestClient(app)

    app.dependency_overrides.clear()
    limiter.enabled = True
    brute_force.reset()
