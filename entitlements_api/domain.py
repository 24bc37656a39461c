"""Domain types for subscription reconciliation.

Statuses, plans and sources are closed enumerations. Records are pydantic
models whose field names match the Firestore document fields, so
``model_dump(mode="json")`` is what gets written.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel

logger = logging.getLogger("api.domain")

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


# =============================================================================
# ENUMERATIONS
# =============================================================================

class SubscriptionStatus(str, Enum):
    APPROVAL_PENDING = "APPROVAL_PENDING"
    APPROVED = "APPROVED"
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"
    # Local-only states
    NONE = "NONE"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def parse(cls, value: Any) -> "SubscriptionStatus":
        if isinstance(value, cls):
            return value
        raw = str(value or "").strip().upper()
        if not raw:
            return cls.UNKNOWN
        try:
            return cls(raw)
        except ValueError:
            logger.warning("Unrecognized subscription status %r treated as UNKNOWN", value)
            return cls.UNKNOWN


class Plan(str, Enum):
    MONTHLY = "monthly"
    YEARLY = "yearly"

    @classmethod
    def parse(cls, value: Any) -> Optional["Plan"]:
        if isinstance(value, cls):
            return value
        raw = str(value or "").strip().lower()
        for plan in cls:
            if plan.value == raw:
                return plan
        return None


class EntitlementSource(str, Enum):
    PAYPAL = "paypal"
    QR = "qr"
    BACKEND = "backend"
    UNKNOWN = "unknown"


# Pending/approval states entitle provisionally so checkout is not blocked.
ACTIVE_STATUSES = frozenset({
    SubscriptionStatus.ACTIVE,
    SubscriptionStatus.APPROVAL_PENDING,
    SubscriptionStatus.APPROVED,
})

PLAN_DURATION_DAYS: Dict[Plan, int] = {
    Plan.MONTHLY: 30,
    Plan.YEARLY: 365,
}


def is_active_status(status: Optional[SubscriptionStatus]) -> bool:
    return status in ACTIVE_STATUSES


# =============================================================================
# RECORDS
# =============================================================================

class SubscriptionSnapshot(BaseModel):
    """Point-in-time subscription state fetched from the billing provider."""
    subscriptionId: str
    status: SubscriptionStatus
    planId: Optional[str] = None
    startTime: Optional[str] = None
    nextBillingTime: Optional[str] = None
    lastPaymentTime: Optional[str] = None

    @classmethod
    def from_paypal(cls, payload: Dict[str, Any]) -> "SubscriptionSnapshot":
        billing_info = payload.get("billing_info") or {}
        last_payment = billing_info.get("last_payment") or {}
        return cls(
            subscriptionId=str(payload.get("id") or "").strip(),
            status=SubscriptionStatus.parse(payload.get("status")),
            planId=payload.get("plan_id") or None,
            startTime=payload.get("start_time") or None,
            nextBillingTime=billing_info.get("next_billing_time") or None,
            lastPaymentTime=last_payment.get("time") or None,
        )


class SubscriptionRecord(BaseModel):
    subscriptionId: str
    email: Optional[str] = None
    status: Optional[SubscriptionStatus] = None
    planId: Optional[str] = None
    startTime: Optional[str] = None
    nextBillingTime: Optional[str] = None
    lastPaymentTime: Optional[str] = None
    lastWebhookEvent: Optional[Dict[str, Any]] = None
    updatedAt: Optional[datetime] = None


class UserEntitlement(BaseModel):
    email: str
    proActive: bool
    plan: Optional[Plan] = None
    source: EntitlementSource = EntitlementSource.UNKNOWN
    subscriptionStatus: SubscriptionStatus = SubscriptionStatus.NONE
    subscriptionId: Optional[str] = None
    planId: Optional[str] = None
    nextBillingTime: Optional[str] = None
    lastPaymentTime: Optional[str] = None
    expiresAt: Optional[str] = None
    lastValidatedAt: Optional[str] = None
    updatedAt: Optional[datetime] = None

    def document(self) -> Dict[str, Any]:
        """Fields written to the store. ``updatedAt`` is assigned by the store
        and read back after each write."""
        return self.model_dump(mode="json", exclude={"updatedAt"})


# =============================================================================
# HELPERS
# =============================================================================

def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def parse_iso(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    raw = str(value or "").strip()
    if not raw:
        return None
    try:
        parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def normalize_email(value: Any) -> Optional[str]:
    email = str(value or "").strip().lower()
    return email or None


def is_valid_email(value: Optional[str]) -> bool:
    return bool(value) and bool(EMAIL_PATTERN.match(value or ""))
