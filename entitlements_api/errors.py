"""Error taxonomy for entitlement operations.

Every error carries the HTTP status, a human message and a stable machine
code. ``main.py`` renders them with the standard error body
``{"error": ..., "code": ..., "details": ...}``.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class EntitlementError(Exception):
    status_code = 500
    code = "ENTITLEMENT_ERROR"

    def __init__(
        self,
        error: str,
        *,
        status_code: Optional[int] = None,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(error)
        self.error = error
        if status_code is not None:
            self.status_code = status_code
        if code is not None:
            self.code = code
        self.details = details or {}

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"error": self.error, "code": self.code}
        if self.details:
            payload["details"] = self.details
        return payload


class ConfigMissing(EntitlementError):
    """A credential required by the operation is not configured."""
    status_code = 503
    code = "CONFIG_MISSING"


class ProviderUnavailable(EntitlementError):
    """Network error or timeout talking to the billing provider."""
    status_code = 502
    code = "PROVIDER_UNAVAILABLE"


class ProviderRejected(EntitlementError):
    """The billing provider answered 4xx (unknown id, invalid state)."""
    status_code = 422
    code = "PROVIDER_REJECTED"


class AuthFailure(EntitlementError):
    """Client-credentials exchange with the billing provider failed."""
    status_code = 502
    code = "PROVIDER_AUTH_FAILED"


class SignatureInvalid(EntitlementError):
    status_code = 400
    code = "SIGNATURE_INVALID"


class InvalidArgument(EntitlementError):
    status_code = 422
    code = "INVALID_ARGUMENT"


class InvalidPlan(InvalidArgument):
    code = "INVALID_PLAN"


class Unauthorized(EntitlementError):
    status_code = 401
    code = "UNAUTHORIZED"
