"""Admin-authenticated manual activation (cash / QR-code sales).

The grant bypasses PayPal entirely. The caller must present the shared
admin secret; the comparison is constant-time. The grant is recorded under a
synthetic ``qr-...`` subscription id so it can be traced in the legacy
``userSubscriptions`` index.
"""

from __future__ import annotations

import hmac
import logging
from typing import Any, Dict, Optional
from uuid import uuid4

from .config import Settings
from .domain import Plan, is_valid_email, normalize_email
from .engine import MANUAL_REFERENCE_PREFIX, EntitlementEngine, ManualGrant
from .errors import InvalidArgument, Unauthorized

logger = logging.getLogger("api.manual_override")


def check_admin_secret(settings: Settings, credential: Optional[str]) -> None:
    """Raise ``Unauthorized`` unless ``credential`` matches the admin secret.

    With no secret configured nothing can match, so every call is refused.
    """
    if not settings.admin_secret:
        logger.warning("Admin call refused: ADMIN_SECRET is not configured")
        raise Unauthorized("Invalid admin credential")
    supplied = str(credential or "")
    if not supplied or not hmac.compare_digest(
        supplied.encode("utf-8"), settings.admin_secret.encode("utf-8")
    ):
        raise Unauthorized("Invalid admin credential")


class ManualOverride:

    def __init__(self, settings: Settings, engine: EntitlementEngine):
        self.settings = settings
        self.engine = engine

    def activate(self, admin_credential: Optional[str], email: Any, plan: Any) -> Dict[str, Any]:
        check_admin_secret(self.settings, admin_credential)

        normalized = normalize_email(email)
        if not is_valid_email(normalized):
            raise InvalidArgument("A valid email is required", details={"field": "email"})
        if Plan.parse(plan) is None:
            raise InvalidArgument(
                "Plan must be one of: monthly, yearly",
                details={"field": "plan", "allowed": [p.value for p in Plan]},
            )

        reference = f"{MANUAL_REFERENCE_PREFIX}{uuid4().hex}"
        entitlement = self.engine.reconcile(ManualGrant(email=normalized, plan=plan, reference=reference))
        logger.info(
            "Manual activation email=%s plan=%s reference=%s expiresAt=%s",
            entitlement.email,
            entitlement.plan.value,
            reference,
            entitlement.expiresAt,
        )
        return {
            "email": entitlement.email,
            "plan": entitlement.plan.value,
            "expiresAt": entitlement.expiresAt,
            "subscriptionId": reference,
        }
