"""VacunasECPro entitlements API - application entry point.

Wires the PayPal, subscription status, admin and health routers behind rate
limiting, admin lockout and CORS, and renders every ``EntitlementError`` as
``{"error", "code", "details"}`` with its HTTP status.

Usage:
    RECORD_STORE=memory uvicorn entitlements_api.main:app --port 4000
"""

from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .dependencies import get_record_store, get_settings
from .errors import EntitlementError
from .middleware.brute_force import setup_brute_force_protection
from .middleware.rate_limit import setup_rate_limiting
from .routers import admin, health, paypal, subscription

# =============================================================================
# CONFIGURATION
# =============================================================================

settings = get_settings()
SERVICE_NAME = "VacunasECPro Entitlements API"

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format='%(asctime)s [%(name)s] %(levelname)s: %(message)s'
)
logger = logging.getLogger("api.main")


# =============================================================================
# LIFESPAN
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(
        f"{SERVICE_NAME} v{health.API_VERSION} starting "
        f"(store={settings.record_store}, paypal={settings.paypal_api_base}, debug={settings.debug})"
    )
    # Absent credentials are reported, not fatal
    settings.log_missing()

    try:
        get_record_store(settings)
    except Exception as e:
        logger.error(f"Record store unavailable at startup: {e}")
        raise

    yield

    logger.info(f"{SERVICE_NAME} stopped")


# =============================================================================
# APPLICATION
# =============================================================================

# API docs only in debug mode
docs_kwargs = {} if settings.debug else {"docs_url": None, "redoc_url": None, "openapi_url": None}

app = FastAPI(
    title=SERVICE_NAME,
    version=health.API_VERSION,
    lifespan=lifespan,
    **docs_kwargs,
)


# =============================================================================
# MIDDLEWARE
# =============================================================================
# Last added runs first: lockout check, then rate limits.

setup_rate_limiting(app)
setup_brute_force_protection(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(settings.allowed_origins),
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "X-Admin-Secret"],
    max_age=3600,
)


@app.middleware("http")
async def harden_and_time(request: Request, call_next):
    """Security headers on every response, plus a debug access line."""
    started = time.perf_counter()
    response = await call_next(request)

    if "server" in response.headers:
        del response.headers["server"]
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Cache-Control"] = "no-store"

    logger.debug(
        f"{request.method} {request.url.path} -> {response.status_code} "
        f"({(time.perf_counter() - started) * 1000:.0f}ms)"
    )
    return response


# =============================================================================
# EXCEPTION HANDLERS
# =============================================================================

@app.exception_handler(EntitlementError)
async def entitlement_error_handler(request: Request, exc: EntitlementError):
    level = logging.WARNING if exc.status_code < 500 else logging.ERROR
    logger.log(level, f"{request.method} {request.url.path} -> {exc.status_code} {exc.code}: {exc.error}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    content = {"error": "Internal server error", "code": "INTERNAL_ERROR"}
    if settings.debug:
        content["details"] = {"type": type(exc).__name__, "message": str(exc)}
    return JSONResponse(status_code=500, content=content)


# =============================================================================
# ROUTES
# =============================================================================

app.include_router(paypal.router, prefix="/api", tags=["PayPal"])
app.include_router(subscription.router, prefix="/api", tags=["Subscription"])
app.include_router(admin.router, prefix="/api", tags=["Admin"])
app.include_router(health.router, prefix="/api", tags=["Health"])


@app.get("/")
async def root():
    """Service banner."""
    return {
        "ok": True,
        "service": SERVICE_NAME,
        "version": health.API_VERSION,
        "status": "running",
    }
