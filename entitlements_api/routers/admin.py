"""Admin router - manual Pro activation for cash / QR-code sales.

Endpoints:
    POST /api/admin/activate - Grant Pro to an email without PayPal
"""

import logging
from typing import Optional

from fastapi import APIRouter, Body, Depends, Header, Request

from ..dependencies import get_manual_override, log_admin_auth_failure
from ..errors import Unauthorized
from ..manual_override import ManualOverride
from ..middleware.rate_limit import rate_limit_write
from ..models import ErrorResponse, ManualActivationRequest, ManualActivationResponse

router = APIRouter()
logger = logging.getLogger("api.routers.admin")


@router.post(
    "/admin/activate",
    response_model=ManualActivationResponse,
    responses={
        401: {"model": ErrorResponse},
        422: {"model": ErrorResponse},
    },
)
@rate_limit_write
def activate_manual(
    request: Request,
    payload: Optional[ManualActivationRequest] = Body(default=None),
    x_admin_secret: Optional[str] = Header(default=None),
    override: ManualOverride = Depends(get_manual_override),
) -> ManualActivationResponse:
    """Activate Pro for an email. Requires the admin shared secret.

    A missing body is refused by the admin gate (401) like a wrong secret.
    """
    payload = payload or ManualActivationRequest()
    try:
        granted = override.activate(
            admin_credential=x_admin_secret or payload.adminSecret,
            email=payload.email,
            plan=payload.plan,
        )
    except Unauthorized:
        log_admin_auth_failure(request, "manual_activation_bad_secret")
        raise

    return ManualActivationResponse(ok=True, **granted)
