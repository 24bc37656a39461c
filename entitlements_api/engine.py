"""Entitlement engine: derive and persist the per-user Pro entitlement.

Three inputs feed ``EntitlementEngine.reconcile``:

- ``SnapshotReconcile``: a provider snapshot from a validation call or a
  webhook, optionally with the caller's email. Source ``paypal``.
- ``ManualGrant``: an admin grant without a provider subscription (cash and
  QR-code sales). Source ``qr``.
- ``LookupRequest``: a status read with no new data. Re-derives from the
  stored summary. Source ``backend``.

``proActive`` is what clients trust. ``expiresAt`` only lets an offline
client downgrade itself; a lookup never extends it and an inactive result
always clears it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional, Union

from .config import Settings
from .domain import (
    PLAN_DURATION_DAYS,
    EntitlementSource,
    Plan,
    SubscriptionRecord,
    SubscriptionSnapshot,
    SubscriptionStatus,
    UserEntitlement,
    is_active_status,
    is_valid_email,
    normalize_email,
    parse_iso,
    to_iso,
    utc_now,
)
from .errors import InvalidArgument, InvalidPlan
from .store import USERS_COLLECTION
from .subscription_store import SubscriptionRecordStore

logger = logging.getLogger("api.engine")

MANUAL_REFERENCE_PREFIX = "qr-"

# users fields mirrored into the legacy userSubscriptions index
INDEX_FIELDS = (
    "subscriptionId",
    "subscriptionStatus",
    "planId",
    "plan",
    "nextBillingTime",
    "lastPaymentTime",
    "expiresAt",
    "source",
)


@dataclass
class SnapshotReconcile:
    snapshot: SubscriptionSnapshot
    email: Optional[str] = None
    webhook_event: Optional[Dict[str, Any]] = None


@dataclass
class ManualGrant:
    email: str
    plan: Any
    reference: Optional[str] = None


@dataclass
class LookupRequest:
    email: str


ReconcileInput = Union[SnapshotReconcile, ManualGrant, LookupRequest]


@dataclass
class SnapshotOutcome:
    snapshot: SubscriptionSnapshot
    record: SubscriptionRecord
    active_for_app: bool
    email: Optional[str]
    entitlement: Optional[UserEntitlement]


class EntitlementEngine:

    def __init__(
        self,
        subscriptions: SubscriptionRecordStore,
        settings: Settings,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.subscriptions = subscriptions
        self.settings = settings
        self.clock = clock

    # ---------------------------------------------------------
    # DISPATCH
    # ---------------------------------------------------------
    def reconcile(self, request: ReconcileInput) -> Optional[UserEntitlement]:
        if isinstance(request, SnapshotReconcile):
            return self.reconcile_snapshot(request).entitlement
        if isinstance(request, ManualGrant):
            return self.grant_manual(request)
        if isinstance(request, LookupRequest):
            return self.lookup(request.email)
        raise TypeError(f"Unsupported reconcile input: {type(request).__name__}")

    # ---------------------------------------------------------
    # DERIVATION
    # ---------------------------------------------------------
    def derive_plan(self, plan_id: Optional[str]) -> Optional[Plan]:
        return self.settings.plan_for(plan_id)

    def compute_expiry(
        self,
        plan: Optional[Plan],
        now: datetime,
        explicit: Optional[datetime] = None,
        anchor: Optional[datetime] = None,
    ) -> Optional[datetime]:
        """Offline expiry: provider instant or plan duration, plus grace.

        An explicit instant already in the past is ignored in favour of the
        plan duration. The duration counts from ``anchor`` (the last payment)
        while that still lands in the future, so replaying a snapshot gives
        the same expiry; otherwise it counts from ``now``. Unknown plan
        without an explicit instant gives None.
        """
        if explicit is not None and explicit > now:
            base = explicit
        elif plan is not None:
            duration = timedelta(days=PLAN_DURATION_DAYS[plan])
            if anchor is not None and anchor + duration > now:
                base = anchor + duration
            else:
                base = now + duration
        else:
            return None
        return base + timedelta(days=self.settings.grace_days)

    # ---------------------------------------------------------
    # (a) PROVIDER SNAPSHOT
    # ---------------------------------------------------------
    def reconcile_snapshot(self, request: SnapshotReconcile) -> SnapshotOutcome:
        snapshot = request.snapshot
        email = normalize_email(request.email)

        record = self.subscriptions.merge_upsert(snapshot.subscriptionId, {
            "email": email,
            "status": snapshot.status,
            "planId": snapshot.planId,
            "startTime": snapshot.startTime,
            "nextBillingTime": snapshot.nextBillingTime,
            "lastPaymentTime": snapshot.lastPaymentTime,
            "lastWebhookEvent": request.webhook_event,
        })

        active = is_active_status(snapshot.status)
        final_email = email or record.email
        if not final_email:
            logger.info(
                "Subscription %s has no bound identity; entitlement not written (status=%s)",
                snapshot.subscriptionId,
                snapshot.status.value,
            )
            return SnapshotOutcome(
                snapshot=snapshot, record=record, active_for_app=active, email=None, entitlement=None,
            )

        now = self.clock()
        plan = self.derive_plan(snapshot.planId)
        expires_at = None
        if active:
            expires_at = self.compute_expiry(
                plan,
                now,
                explicit=parse_iso(snapshot.nextBillingTime),
                anchor=parse_iso(snapshot.lastPaymentTime) or parse_iso(snapshot.startTime),
            )

        entitlement = UserEntitlement(
            email=final_email,
            proActive=active,
            plan=plan,
            source=EntitlementSource.PAYPAL,
            subscriptionStatus=snapshot.status,
            subscriptionId=snapshot.subscriptionId,
            planId=snapshot.planId,
            nextBillingTime=snapshot.nextBillingTime,
            lastPaymentTime=snapshot.lastPaymentTime,
            expiresAt=to_iso(expires_at),
            lastValidatedAt=to_iso(now),
        )
        self._write(entitlement, index=True)
        return SnapshotOutcome(
            snapshot=snapshot, record=record, active_for_app=active, email=final_email, entitlement=entitlement,
        )

    # ---------------------------------------------------------
    # (b) MANUAL GRANT
    # ---------------------------------------------------------
    def grant_manual(self, grant: ManualGrant) -> UserEntitlement:
        email = normalize_email(grant.email)
        if not is_valid_email(email):
            raise InvalidArgument("A valid email is required", details={"field": "email"})
        plan = Plan.parse(grant.plan)
        if plan is None:
            raise InvalidPlan(
                "Plan must be one of: monthly, yearly",
                details={"plan": grant.plan, "allowed": [p.value for p in Plan]},
            )

        now = self.clock()
        entitlement = UserEntitlement(
            email=email,
            proActive=True,
            plan=plan,
            source=EntitlementSource.QR,
            subscriptionStatus=SubscriptionStatus.ACTIVE,
            subscriptionId=grant.reference,
            planId=None,
            nextBillingTime=None,
            lastPaymentTime=None,
            expiresAt=to_iso(self.compute_expiry(plan, now)),
            lastValidatedAt=to_iso(now),
        )
        self._write(entitlement, index=True)
        return entitlement

    # ---------------------------------------------------------
    # (c) LOOKUP
    # ---------------------------------------------------------
    def lookup(self, email: str) -> UserEntitlement:
        key = normalize_email(email)
        if not key:
            raise InvalidArgument("Email is required", details={"field": "email"})

        now = self.clock()
        summary = self.subscriptions.get_summary(key)
        if not summary:
            entitlement = UserEntitlement(
                email=key,
                proActive=False,
                plan=None,
                source=EntitlementSource.BACKEND,
                subscriptionStatus=SubscriptionStatus.NONE,
                lastValidatedAt=to_iso(now),
            )
            self._write(entitlement, index=False)
            return entitlement

        status = SubscriptionStatus.parse(summary.get("subscriptionStatus"))
        plan = Plan.parse(summary.get("plan")) or self.derive_plan(summary.get("planId"))
        expires_at = summary.get("expiresAt")
        active = is_active_status(status)

        expiry = parse_iso(expires_at)
        if active and expiry is not None and expiry <= now:
            logger.info("Stored expiry passed for %s (expiresAt=%s); revoking", key, expires_at)
            active = False
        if active and self.rebound_elsewhere(key, summary.get("subscriptionId")):
            logger.info(
                "Subscription %s is now bound to another identity; revoking %s",
                summary.get("subscriptionId"),
                key,
            )
            active = False
        if not active:
            expires_at = None

        entitlement = UserEntitlement(
            email=key,
            proActive=active,
            plan=plan,
            source=EntitlementSource.BACKEND,
            subscriptionStatus=status,
            subscriptionId=summary.get("subscriptionId"),
            planId=summary.get("planId"),
            nextBillingTime=summary.get("nextBillingTime"),
            lastPaymentTime=summary.get("lastPaymentTime"),
            expiresAt=expires_at,
            lastValidatedAt=to_iso(now),
        )
        self._write(entitlement, index=False)
        return entitlement

    def rebound_elsewhere(self, email: str, subscription_id: Optional[str]) -> bool:
        """True when the provider subscription indexed for ``email`` has since
        been bound to a different identity. Manual references never rebind."""
        subscription_id = str(subscription_id or "")
        if not subscription_id or subscription_id.startswith(MANUAL_REFERENCE_PREFIX):
            return False
        record = self.subscriptions.get(subscription_id)
        return bool(record and record.email and record.email != email)

    # ---------------------------------------------------------
    # PERSISTENCE
    # ---------------------------------------------------------
    def _write(self, entitlement: UserEntitlement, *, index: bool) -> None:
        document = entitlement.document()
        self.subscriptions.store.merge_set(USERS_COLLECTION, entitlement.email, document)
        stored = self.subscriptions.store.get(USERS_COLLECTION, entitlement.email) or {}
        entitlement.updatedAt = stored.get("updatedAt")
        if index:
            self.subscriptions.record_summary(
                entitlement.email,
                {name: document.get(name) for name in INDEX_FIELDS},
            )
        logger.info(
            "EntitlementWrite source=%s email=%s active=%s plan=%s status=%s expiresAt=%s",
            entitlement.source.value,
            entitlement.email,
            entitlement.proActive,
            entitlement.plan.value if entitlement.plan else None,
            entitlement.subscriptionStatus.value,
            entitlement.expiresAt,
        )


def validate_subscription(
    provider,
    engine: EntitlementEngine,
    subscription_id: str,
    email: Optional[str] = None,
) -> SnapshotOutcome:
    """Fetch authoritative state and reconcile it. Provider errors propagate
    before anything is written."""
    subscription_id = str(subscription_id or "").strip()
    if not subscription_id:
        raise InvalidArgument("subscriptionId is required", details={"field": "subscriptionId"})
    normalized = normalize_email(email)
    if normalized and not is_valid_email(normalized):
        raise InvalidArgument("Email is not valid", details={"field": "email"})

    snapshot = provider.fetch_subscription(subscription_id)
    return engine.reconcile_snapshot(SnapshotReconcile(snapshot=snapshot, email=normalized))


def get_entitlement(
    provider,
    engine: EntitlementEngine,
    email: str,
    refresh: bool = False,
) -> UserEntitlement:
    """Status query. With ``refresh`` and a known provider subscription,
    re-validates against the provider instead of the stored summary."""
    key = normalize_email(email)
    if refresh and key:
        summary = engine.subscriptions.get_summary(key) or {}
        subscription_id = str(summary.get("subscriptionId") or "")
        if (
            subscription_id
            and not subscription_id.startswith(MANUAL_REFERENCE_PREFIX)
            and not engine.rebound_elsewhere(key, subscription_id)
        ):
            outcome = validate_subscription(provider, engine, subscription_id, key)
            if outcome.entitlement is not None:
                return outcome.entitlement
    return engine.lookup(email)
