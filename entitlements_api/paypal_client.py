"""PayPal REST client: token exchange, subscription lookup, webhook verification.

No state is kept between calls. Each logical operation fetches its own bearer
token through the client-credentials grant, and every request carries a
finite timeout.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Mapping, Optional, Union
from urllib import parse as url_parse

import requests

from .config import Settings
from .domain import SubscriptionSnapshot
from .errors import AuthFailure, ConfigMissing, ProviderRejected, ProviderUnavailable

logger = logging.getLogger("api.paypal")

USER_AGENT = "vacunas-pro-entitlements/1.0"

# PayPal transmission headers -> verify-webhook-signature body fields
TRANSMISSION_HEADERS = {
    "auth_algo": "paypal-auth-algo",
    "cert_url": "paypal-cert-url",
    "transmission_id": "paypal-transmission-id",
    "transmission_sig": "paypal-transmission-sig",
    "transmission_time": "paypal-transmission-time",
}


def _error_details(response: requests.Response) -> Dict[str, Any]:
    details: Dict[str, Any] = {"httpStatus": response.status_code}
    try:
        parsed = response.json()
    except ValueError:
        return details
    if isinstance(parsed, dict):
        details["paypalError"] = parsed.get("name") or parsed.get("error")
        details["paypalMessage"] = parsed.get("message") or parsed.get("error_description")
        if parsed.get("debug_id"):
            details["paypalDebugId"] = parsed.get("debug_id")
    return details


class PayPalClient:

    def __init__(self, settings: Settings):
        self.settings = settings

    @property
    def base_url(self) -> str:
        return self.settings.paypal_api_base

    def _require_api_credentials(self) -> None:
        missing = [
            name
            for name, value in (
                ("PAYPAL_CLIENT_ID", self.settings.paypal_client_id),
                ("PAYPAL_CLIENT_SECRET", self.settings.paypal_client_secret),
            )
            if not value
        ]
        if missing:
            raise ConfigMissing(
                "PayPal API credentials are not configured",
                details={"required": missing},
            )

    # ---------------------------------------------------------
    # TOKEN
    # ---------------------------------------------------------
    def get_access_token(self) -> str:
        self._require_api_credentials()
        try:
            response = requests.post(
                f"{self.base_url}/v1/oauth2/token",
                auth=(self.settings.paypal_client_id, self.settings.paypal_client_secret),
                data={"grant_type": "client_credentials"},
                headers={"Accept": "application/json", "User-Agent": USER_AGENT},
                timeout=self.settings.paypal_timeout_sec,
            )
        except requests.Timeout as exc:
            raise ProviderUnavailable(
                "PayPal token request timed out",
                status_code=504,
                code="PROVIDER_TIMEOUT",
            ) from exc
        except requests.RequestException as exc:
            raise ProviderUnavailable(
                "Unable to reach PayPal",
                details={"reason": str(exc)},
            ) from exc

        if not response.ok:
            raise AuthFailure(
                "PayPal credential exchange failed",
                details=_error_details(response),
            )
        try:
            token = (response.json() or {}).get("access_token")
        except ValueError:
            token = None
        if not token:
            raise AuthFailure("PayPal credential exchange returned no access token")
        return token

    # ---------------------------------------------------------
    # SUBSCRIPTIONS
    # ---------------------------------------------------------
    def fetch_subscription(self, subscription_id: str) -> SubscriptionSnapshot:
        token = self.get_access_token()
        path = f"/v1/billing/subscriptions/{url_parse.quote(subscription_id, safe='')}"
        try:
            response = requests.get(
                f"{self.base_url}{path}",
                headers={
                    "Authorization": f"Bearer {token}",
                    "Content-Type": "application/json",
                    "Accept": "application/json",
                    "User-Agent": USER_AGENT,
                },
                timeout=self.settings.paypal_timeout_sec,
            )
        except requests.Timeout as exc:
            raise ProviderUnavailable(
                "PayPal subscription request timed out",
                status_code=504,
                code="PROVIDER_TIMEOUT",
                details={"subscriptionId": subscription_id},
            ) from exc
        except requests.RequestException as exc:
            raise ProviderUnavailable(
                "Unable to reach PayPal",
                details={"subscriptionId": subscription_id, "reason": str(exc)},
            ) from exc

        if response.status_code >= 500:
            raise ProviderUnavailable(
                "PayPal subscription API failed",
                details={"subscriptionId": subscription_id, **_error_details(response)},
            )
        if response.status_code >= 400:
            raise ProviderRejected(
                "PayPal rejected the subscription lookup",
                status_code=response.status_code if response.status_code in (400, 404, 422) else 422,
                details={"subscriptionId": subscription_id, **_error_details(response)},
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise ProviderUnavailable(
                "Invalid response from PayPal subscription API",
                details={"subscriptionId": subscription_id},
            ) from exc
        if not isinstance(payload, dict):
            raise ProviderUnavailable(
                "Invalid response from PayPal subscription API",
                details={"subscriptionId": subscription_id},
            )

        snapshot = SubscriptionSnapshot.from_paypal(payload)
        if not snapshot.subscriptionId:
            snapshot.subscriptionId = subscription_id
        logger.info(
            "Fetched PayPal subscription id=%s status=%s plan=%s",
            snapshot.subscriptionId,
            snapshot.status.value,
            snapshot.planId,
        )
        return snapshot

    # ---------------------------------------------------------
    # WEBHOOK SIGNATURES
    # ---------------------------------------------------------
    def verify_webhook_authenticity(
        self,
        headers: Mapping[str, str],
        raw_body: Union[bytes, str],
    ) -> bool:
        """Ask PayPal whether a delivery is authentic.

        Fails closed: anything other than an explicit ``SUCCESS`` verdict is
        ``False``. A missing webhook id raises ``ConfigMissing``.
        """
        if not self.settings.paypal_webhook_id:
            raise ConfigMissing(
                "PayPal webhook verification is not configured",
                details={"required": ["PAYPAL_WEBHOOK_ID"]},
            )

        lowered = {str(k).lower(): v for k, v in headers.items()}
        transmission: Dict[str, Optional[str]] = {
            field: lowered.get(header) for field, header in TRANSMISSION_HEADERS.items()
        }
        absent = [field for field, value in transmission.items() if not value]
        if absent:
            logger.warning("Webhook missing transmission headers: %s", ", ".join(absent))
            return False

        try:
            body_text = raw_body.decode("utf-8") if isinstance(raw_body, bytes) else raw_body
            event = json.loads(body_text)
        except (UnicodeDecodeError, ValueError):
            logger.warning("Webhook body is not valid JSON")
            return False

        try:
            token = self.get_access_token()
            response = requests.post(
                f"{self.base_url}/v1/notifications/verify-webhook-signature",
                json={
                    **transmission,
                    "webhook_id": self.settings.paypal_webhook_id,
                    "webhook_event": event,
                },
                headers={
                    "Authorization": f"Bearer {token}",
                    "Content-Type": "application/json",
                    "User-Agent": USER_AGENT,
                },
                timeout=self.settings.paypal_timeout_sec,
            )
            if not response.ok:
                logger.warning(
                    "Webhook verification call failed: %s",
                    _error_details(response),
                )
                return False
            verdict = str((response.json() or {}).get("verification_status") or "")
        except ConfigMissing:
            raise
        except Exception as exc:
            logger.warning("Webhook verification error treated as not verified: %s", exc)
            return False

        if verdict.upper() != "SUCCESS":
            logger.warning(
                "Webhook signature not verified transmission_id=%s verdict=%s",
                transmission["transmission_id"],
                verdict or "<empty>",
            )
            return False
        return True
