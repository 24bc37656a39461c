"""PayPal router - checkout validation and webhook intake.

Endpoints:
    POST /api/paypal/validate-subscription - Validate a subscription after checkout
    POST /api/paypal/webhook - PayPal webhook deliveries
"""

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool

from ..dependencies import get_engine, get_paypal_client, get_webhook_intake
from ..engine import EntitlementEngine, validate_subscription
from ..errors import SignatureInvalid
from ..middleware.rate_limit import rate_limit_webhook, rate_limit_write
from ..models import (
    ErrorResponse,
    ValidateSubscriptionRequest,
    ValidateSubscriptionResponse,
    WebhookAckResponse,
)
from ..paypal_client import PayPalClient
from ..utils.client_ip import get_client_ip
from ..utils.security_logger import security_logger
from ..webhooks import WebhookIntake

router = APIRouter()
logger = logging.getLogger("api.routers.paypal")

PROVIDER_ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    422: {"model": ErrorResponse},
    502: {"model": ErrorResponse},
    503: {"model": ErrorResponse},
    504: {"model": ErrorResponse},
}


@router.post(
    "/paypal/validate-subscription",
    response_model=ValidateSubscriptionResponse,
    responses=PROVIDER_ERROR_RESPONSES,
)
@rate_limit_write
def validate_paypal_subscription(
    request: Request,
    payload: ValidateSubscriptionRequest,
    provider: PayPalClient = Depends(get_paypal_client),
    engine: EntitlementEngine = Depends(get_engine),
) -> ValidateSubscriptionResponse:
    """Fetch the subscription from PayPal and reconcile the caller's entitlement."""
    logger.info("Validating subscription %s for %s", payload.subscriptionId, payload.email or "<unbound>")

    outcome = validate_subscription(provider, engine, payload.subscriptionId, payload.email)
    snapshot = outcome.snapshot

    return ValidateSubscriptionResponse(
        ok=True,
        activeForApp=outcome.active_for_app,
        subscriptionStatus=snapshot.status,
        subscriptionId=snapshot.subscriptionId,
        planId=snapshot.planId,
        nextBillingTime=snapshot.nextBillingTime,
        lastPaymentTime=snapshot.lastPaymentTime,
        email=outcome.email,
        entitlementWritten=outcome.entitlement is not None,
    )


@router.post(
    "/paypal/webhook",
    response_model=WebhookAckResponse,
    responses=PROVIDER_ERROR_RESPONSES,
)
@rate_limit_webhook
async def paypal_webhook(
    request: Request,
    intake: WebhookIntake = Depends(get_webhook_intake),
) -> WebhookAckResponse:
    """Verify, fetch and reconcile one PayPal delivery.

    A 2xx stops PayPal's redelivery; transient provider failures answer with
    a 5xx so PayPal retries later.
    """
    raw_body = await request.body()
    headers = dict(request.headers)

    try:
        delivery = await run_in_threadpool(intake.handle, headers, raw_body)
    except SignatureInvalid as exc:
        security_logger.webhook_rejected(
            ip=get_client_ip(request),
            path=request.url.path,
            transmission_id=exc.details.get("transmissionId"),
        )
        raise

    return WebhookAckResponse(ok=True, **delivery.summary())
