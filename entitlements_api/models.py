"""Pydantic request/response models for the entitlements API.

Field names are camelCase to match what the mobile client already sends and
reads.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, model_validator

from .domain import Plan, SubscriptionStatus, UserEntitlement


# =============================================================================
# REQUEST MODELS (Input Validation)
# =============================================================================

class ValidateSubscriptionRequest(BaseModel):
    """Validate a PayPal subscription right after checkout."""
    subscriptionId: str = Field(..., min_length=1, max_length=255)
    email: Optional[str] = Field(default=None, max_length=320)
    # Older clients send the email as userId
    userId: Optional[str] = Field(default=None, max_length=320)

    @model_validator(mode="after")
    def fill_email_from_user_id(self):
        if not self.email and self.userId:
            self.email = self.userId
        return self


class ManualActivationRequest(BaseModel):
    # Presence and enum checks happen in ManualOverride so the admin gate runs
    # before any argument validation.
    email: Optional[str] = Field(default=None, max_length=320)
    plan: Optional[str] = Field(default=None, max_length=32)
    adminSecret: Optional[str] = Field(default=None, max_length=512)


# =============================================================================
# RESPONSE MODELS
# =============================================================================

class ErrorResponse(BaseModel):
    """Standard error response format."""
    error: str
    code: str
    details: Optional[Dict[str, Any]] = None


class ValidateSubscriptionResponse(BaseModel):
    ok: bool
    activeForApp: bool
    subscriptionStatus: SubscriptionStatus
    subscriptionId: str
    planId: Optional[str] = None
    nextBillingTime: Optional[str] = None
    lastPaymentTime: Optional[str] = None
    email: Optional[str] = None
    entitlementWritten: bool = False


class WebhookAckResponse(BaseModel):
    ok: bool
    state: str
    eventId: Optional[str] = None
    eventType: Optional[str] = None
    subscriptionId: Optional[str] = None
    entitlementWritten: bool = False


class ManualActivationResponse(BaseModel):
    ok: bool
    email: str
    plan: Plan
    expiresAt: Optional[str] = None
    subscriptionId: str


class EntitlementResponse(UserEntitlement):
    ok: bool = True
    activeForApp: bool

    @classmethod
    def from_entitlement(cls, entitlement: UserEntitlement) -> "EntitlementResponse":
        return cls(
            **entitlement.model_dump(),
            activeForApp=entitlement.proActive,
        )


class SubscriptionRecordItem(BaseModel):
    subscriptionId: str
    email: Optional[str] = None
    status: Optional[SubscriptionStatus] = None
    planId: Optional[str] = None
    nextBillingTime: Optional[str] = None
    lastPaymentTime: Optional[str] = None
    lastWebhookEvent: Optional[Dict[str, Any]] = None


class SubscriptionRecordListResponse(BaseModel):
    ok: bool
    items: List[SubscriptionRecordItem]
