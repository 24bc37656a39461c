"""Subscription record store: additive, per-key serialized history.

Each ``subscriptionsById/{id}`` document accumulates the latest known value
per field. A field that arrives as null/absent never overwrites a value that
is already known, so an identity bound once (``email``) survives later
updates that lack it.

When a merged record has an email, the legacy ``userSubscriptions/{email}``
index is refreshed with a summary using the same field names as ``users``.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from .domain import SubscriptionRecord, normalize_email
from .store import (
    RecordStore,
    SUBSCRIPTIONS_COLLECTION,
    USER_SUBSCRIPTIONS_COLLECTION,
)

logger = logging.getLogger("api.subscription_store")

RECORD_FIELDS = (
    "email",
    "status",
    "planId",
    "startTime",
    "nextBillingTime",
    "lastPaymentTime",
    "lastWebhookEvent",
)


def merge_fields(existing: Optional[Dict[str, Any]], incoming: Dict[str, Any]) -> Dict[str, Any]:
    """New non-null values win; null/absent keeps what was stored."""
    merged = dict(existing or {})
    for name, value in incoming.items():
        if value is None:
            continue
        if isinstance(value, str) and not value.strip():
            continue
        merged[name] = value
    return merged


class SubscriptionRecordStore:

    def __init__(self, store: RecordStore):
        self.store = store

    def merge_upsert(self, subscription_id: str, incoming_fields: Dict[str, Any]) -> SubscriptionRecord:
        """Merge ``incoming_fields`` into the record and return the result."""
        incoming = {k: v for k, v in incoming_fields.items() if k in RECORD_FIELDS}
        if incoming.get("email") is not None:
            incoming["email"] = normalize_email(incoming["email"])
        if incoming.get("status") is not None:
            incoming["status"] = getattr(incoming["status"], "value", incoming["status"])

        def apply(existing: Optional[Dict[str, Any]]) -> Dict[str, Any]:
            merged = merge_fields(existing, incoming)
            merged["subscriptionId"] = subscription_id
            return merged

        stored = self.store.transactional_merge(SUBSCRIPTIONS_COLLECTION, subscription_id, apply)
        record = SubscriptionRecord.model_validate(stored)
        logger.debug(
            "Merged subscription=%s status=%s email_bound=%s",
            subscription_id,
            record.status.value if record.status else None,
            bool(record.email),
        )

        if record.email:
            self.record_summary(record.email, {
                "subscriptionId": record.subscriptionId,
                "subscriptionStatus": record.status.value if record.status else None,
                "planId": record.planId,
                "nextBillingTime": record.nextBillingTime,
                "lastPaymentTime": record.lastPaymentTime,
            })
        return record

    def get(self, subscription_id: str) -> Optional[SubscriptionRecord]:
        raw = self.store.get(SUBSCRIPTIONS_COLLECTION, subscription_id)
        return SubscriptionRecord.model_validate({**raw, "subscriptionId": subscription_id}) if raw else None

    def get_summary(self, email: str) -> Optional[Dict[str, Any]]:
        key = normalize_email(email)
        if not key:
            return None
        return self.store.get(USER_SUBSCRIPTIONS_COLLECTION, key)

    def record_summary(self, email: str, fields: Dict[str, Any]) -> None:
        """Refresh the email-keyed index. Only called once an email is known."""
        key = normalize_email(email)
        if not key:
            return
        self.store.merge_set(USER_SUBSCRIPTIONS_COLLECTION, key, {"email": key, **fields})

    def list_records(self) -> List[SubscriptionRecord]:
        return [
            SubscriptionRecord.model_validate({**doc, "subscriptionId": doc_id})
            for doc_id, doc in self.store.list(SUBSCRIPTIONS_COLLECTION)
        ]
