"""Runtime configuration for the entitlements API.

Everything the service reads from the environment is collected here, once,
into a ``Settings`` object. Request handlers never read ``os.environ``; they
receive the settings (or collaborators built from them) through FastAPI
dependencies.

Missing credentials are not fatal at startup. ``Settings.log_missing()``
warns about them and the operations that need them raise ``ConfigMissing``
when called.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from .domain import Plan

logger = logging.getLogger("api.config")

PAYPAL_LIVE_API_BASE = "https://api-m.paypal.com"

DEFAULT_ALLOWED_ORIGINS = (
    "http://localhost:5173",
    "http://localhost:3000",
)


def _bool_env(name: str, default: bool = False) -> bool:
    raw = str(os.environ.get(name, "")).strip().lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "on")


def _str_env(name: str) -> str:
    return str(os.environ.get(name, "")).strip()


def _list_env(name: str) -> List[str]:
    return [part.strip() for part in _str_env(name).split(",") if part.strip()]


def _float_env(name: str, default: float) -> float:
    raw = _str_env(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Ignoring non-numeric %s=%r, using %s", name, raw, default)
        return default


@dataclass(frozen=True)
class Settings:
    """Process-wide configuration, built once and passed by reference."""

    paypal_client_id: str = ""
    paypal_client_secret: str = ""
    paypal_webhook_id: str = ""
    paypal_api_base: str = PAYPAL_LIVE_API_BASE
    paypal_timeout_sec: float = 8.0

    # PayPal plan id -> app plan. Anything not listed resolves to no plan.
    plan_ids: Dict[str, Plan] = field(default_factory=dict)

    admin_secret: str = ""
    grace_days: float = 2.0

    record_store: str = "firestore"
    firebase_service_account_json: str = ""
    google_application_credentials: str = ""

    allowed_origins: Tuple[str, ...] = DEFAULT_ALLOWED_ORIGINS
    debug: bool = False

    @classmethod
    def from_env(cls) -> "Settings":
        plan_ids: Dict[str, Plan] = {}
        for plan_id in _list_env("PAYPAL_PLAN_IDS_MONTHLY"):
            plan_ids[plan_id] = Plan.MONTHLY
        for plan_id in _list_env("PAYPAL_PLAN_IDS_YEARLY"):
            plan_ids[plan_id] = Plan.YEARLY

        origins = tuple(o.rstrip("/") for o in _list_env("ALLOWED_ORIGINS"))

        return cls(
            paypal_client_id=_str_env("PAYPAL_CLIENT_ID"),
            paypal_client_secret=_str_env("PAYPAL_CLIENT_SECRET"),
            paypal_webhook_id=_str_env("PAYPAL_WEBHOOK_ID"),
            paypal_api_base=(_str_env("PAYPAL_API_BASE") or PAYPAL_LIVE_API_BASE).rstrip("/"),
            paypal_timeout_sec=_float_env("PAYPAL_API_TIMEOUT_SEC", 8.0),
            plan_ids=plan_ids,
            admin_secret=_str_env("ADMIN_SECRET"),
            grace_days=_float_env("ENTITLEMENT_GRACE_DAYS", 2.0),
            record_store=(_str_env("RECORD_STORE") or "firestore").lower(),
            firebase_service_account_json=_str_env("FIREBASE_SERVICE_ACCOUNT"),
            google_application_credentials=_str_env("GOOGLE_APPLICATION_CREDENTIALS"),
            allowed_origins=origins or DEFAULT_ALLOWED_ORIGINS,
            debug=_bool_env("DEBUG", False),
        )

    def missing_credentials(self) -> List[str]:
        missing = []
        if not self.paypal_client_id:
            missing.append("PAYPAL_CLIENT_ID")
        if not self.paypal_client_secret:
            missing.append("PAYPAL_CLIENT_SECRET")
        if not self.paypal_webhook_id:
            missing.append("PAYPAL_WEBHOOK_ID")
        if not self.admin_secret:
            missing.append("ADMIN_SECRET")
        return missing

    def log_missing(self) -> None:
        """Warn once about absent credentials. Never raises."""
        missing = self.missing_credentials()
        if missing:
            logger.warning(
                "Missing configuration: %s. Dependent operations will fail at call time.",
                ", ".join(missing),
            )
        if not self.plan_ids:
            logger.warning(
                "No PayPal plan ids configured; every subscription will resolve to an unknown plan"
            )

    def plan_for(self, plan_id: Optional[str]) -> Optional[Plan]:
        if not plan_id:
            return None
        return self.plan_ids.get(plan_id)
