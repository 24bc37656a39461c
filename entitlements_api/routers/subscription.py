"""Subscription status router - entitlement reads for the client app.

Endpoints:
    GET /api/subscription/status/{email} - Current entitlement (deterministic NONE shape when unknown)
    GET /api/subscription/debug/all - Subscription records (DEBUG only, admin secret required)
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request

from ..config import Settings
from ..dependencies import get_engine, get_paypal_client, get_settings, log_admin_auth_failure
from ..engine import EntitlementEngine, get_entitlement
from ..errors import Unauthorized
from ..manual_override import check_admin_secret
from ..middleware.rate_limit import rate_limit_read
from ..models import (
    EntitlementResponse,
    ErrorResponse,
    SubscriptionRecordItem,
    SubscriptionRecordListResponse,
)
from ..paypal_client import PayPalClient

router = APIRouter()
logger = logging.getLogger("api.routers.subscription")


@router.get(
    "/subscription/status/{email}",
    response_model=EntitlementResponse,
    responses={422: {"model": ErrorResponse}, 502: {"model": ErrorResponse}},
)
@rate_limit_read
def get_subscription_status(
    request: Request,
    email: str,
    refresh: bool = Query(default=False, description="Re-validate with PayPal when a subscription is known"),
    provider: PayPalClient = Depends(get_paypal_client),
    engine: EntitlementEngine = Depends(get_engine),
) -> EntitlementResponse:
    """Resolve the entitlement for an identity (email, case-insensitive)."""
    entitlement = get_entitlement(provider, engine, email, refresh=refresh)
    return EntitlementResponse.from_entitlement(entitlement)


@router.get(
    "/subscription/debug/all",
    response_model=SubscriptionRecordListResponse,
    responses={401: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
@rate_limit_read
def list_subscription_records(
    request: Request,
    x_admin_secret: Optional[str] = Header(default=None),
    settings: Settings = Depends(get_settings),
    engine: EntitlementEngine = Depends(get_engine),
) -> SubscriptionRecordListResponse:
    """Dump every subscription record. Development only."""
    if not settings.debug:
        raise HTTPException(404, "Not Found")
    try:
        check_admin_secret(settings, x_admin_secret)
    except Unauthorized:
        log_admin_auth_failure(request, "debug_listing_bad_secret")
        raise

    records = engine.subscriptions.list_records()
    return SubscriptionRecordListResponse(
        ok=True,
        items=[SubscriptionRecordItem(**record.model_dump(exclude={"updatedAt", "startTime"})) for record in records],
    )
