"""PayPal webhook intake.

Per delivery:

    RECEIVED -> SIGNATURE_CHECKED -> REJECTED
                                  -> IGNORED        (authentic, no subscription id)
                                  -> STATE_FETCHED -> RECONCILED

The event payload is only a hint. The subscription is always re-fetched from
PayPal and reconciled with no email; the engine recovers the identity from
the subscription record's earlier binding. Nothing is written to the store
unless the signature was verified.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Union

from .domain import to_iso
from .engine import EntitlementEngine, SnapshotReconcile
from .errors import SignatureInvalid

logger = logging.getLogger("api.webhooks")

# Events whose resource is the subscription itself
SUBSCRIPTION_EVENT_PREFIX = "BILLING.SUBSCRIPTION."


class DeliveryState(str, Enum):
    RECEIVED = "RECEIVED"
    SIGNATURE_CHECKED = "SIGNATURE_CHECKED"
    REJECTED = "REJECTED"
    IGNORED = "IGNORED"
    STATE_FETCHED = "STATE_FETCHED"
    RECONCILED = "RECONCILED"


@dataclass
class WebhookDelivery:
    headers: Mapping[str, str]
    raw_body: Union[bytes, str]
    state: DeliveryState = DeliveryState.RECEIVED
    event: Dict[str, Any] = field(default_factory=dict)
    event_id: Optional[str] = None
    event_type: Optional[str] = None
    subscription_id: Optional[str] = None
    email: Optional[str] = None

    def summary(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "eventId": self.event_id,
            "eventType": self.event_type,
            "subscriptionId": self.subscription_id,
            "entitlementWritten": bool(self.email),
        }


def extract_subscription_id(event: Dict[str, Any]) -> Optional[str]:
    """Subscription id from the event's embedded resource, if any."""
    resource = event.get("resource")
    if not isinstance(resource, dict):
        return None
    event_type = str(event.get("event_type") or "")
    if event_type.startswith(SUBSCRIPTION_EVENT_PREFIX):
        candidate = resource.get("id")
    else:
        # PAYMENT.SALE.* and friends reference the subscription as an agreement
        candidate = resource.get("billing_agreement_id") or resource.get("subscription_id")
    candidate = str(candidate or "").strip()
    return candidate or None


class WebhookIntake:

    def __init__(self, provider, engine: EntitlementEngine):
        self.provider = provider
        self.engine = engine

    def handle(self, headers: Mapping[str, str], raw_body: Union[bytes, str]) -> WebhookDelivery:
        """Process one delivery.

        Raises ``SignatureInvalid`` when the delivery is not authentic.
        Provider errors while fetching state propagate so the caller answers
        with an error and PayPal redelivers.
        """
        delivery = WebhookDelivery(headers=headers, raw_body=raw_body)

        verified = self.provider.verify_webhook_authenticity(headers, raw_body)
        delivery.state = DeliveryState.SIGNATURE_CHECKED
        if not verified:
            delivery.state = DeliveryState.REJECTED
            raise SignatureInvalid(
                "Webhook signature could not be verified",
                details={"transmissionId": _header(headers, "paypal-transmission-id")},
            )

        try:
            body_text = raw_body.decode("utf-8") if isinstance(raw_body, bytes) else raw_body
            parsed = json.loads(body_text)
        except (UnicodeDecodeError, ValueError):
            parsed = None
        delivery.event = parsed if isinstance(parsed, dict) else {}
        delivery.event_id = delivery.event.get("id")
        delivery.event_type = delivery.event.get("event_type")
        delivery.subscription_id = extract_subscription_id(delivery.event)

        if not delivery.subscription_id:
            delivery.state = DeliveryState.IGNORED
            logger.info(
                "Webhook %s (%s) carries no subscription id; acknowledged without reconciling",
                delivery.event_id,
                delivery.event_type,
            )
            return delivery

        snapshot = self.provider.fetch_subscription(delivery.subscription_id)
        delivery.state = DeliveryState.STATE_FETCHED

        outcome = self.engine.reconcile_snapshot(SnapshotReconcile(
            snapshot=snapshot,
            email=None,
            webhook_event={
                "id": delivery.event_id,
                "eventType": delivery.event_type,
                "receivedAt": to_iso(self.engine.clock()),
            },
        ))
        delivery.email = outcome.email
        delivery.state = DeliveryState.RECONCILED
        logger.info(
            "Webhook %s %s reconciled subscription=%s status=%s identity_bound=%s",
            delivery.event_id,
            delivery.event_type,
            delivery.subscription_id,
            snapshot.status.value,
            bool(outcome.email),
        )
        return delivery


def _header(headers: Mapping[str, str], name: str) -> Optional[str]:
    for key, value in headers.items():
        if str(key).lower() == name:
            return value
    return None
