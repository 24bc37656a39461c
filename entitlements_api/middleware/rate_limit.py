"""Per-IP rate limits (slowapi).

Limits by endpoint kind:
- status reads: 60/min
- checkout validation and admin activation: 10/min
- PayPal webhooks: 240/min, since PayPal redelivers in bursts
- store health: 120/min
Everything else falls back to 100/min.
"""

from __future__ import annotations

import logging

from fastapi import Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from ..utils.client_ip import get_client_ip
from ..utils.security_logger import security_logger

logger = logging.getLogger("api.rate_limit")

# Single process; counters reset on restart
limiter = Limiter(key_func=get_client_ip, default_limits=["100/minute"], storage_uri="memory://")

rate_limit_read = limiter.limit("60/minute")
rate_limit_write = limiter.limit("10/minute")
rate_limit_webhook = limiter.limit("240/minute")
rate_limit_health = limiter.limit("120/minute")


async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    limit = str(exc.detail)
    security_logger.rate_limit_exceeded(ip=get_client_ip(request), path=request.url.path, limit=limit)
    return JSONResponse(
        status_code=429,
        content={"error": "Too many requests", "code": "RATE_LIMITED", "details": {"limit": limit}},
        headers={"Retry-After": "60"},
    )


def setup_rate_limiting(app) -> None:
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, rate_limit_handler)
    app.add_middleware(SlowAPIMiddleware)
    logger.info("Rate limiting enabled")
