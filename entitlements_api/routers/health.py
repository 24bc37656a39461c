"""Health check router.

Endpoints:
    GET /api/health - Overall health status
    GET /api/health/store - Record store connectivity
"""

import logging
from datetime import datetime

from fastapi import APIRouter, Depends, Request

from ..config import Settings
from ..dependencies import get_record_store, get_settings
from ..middleware.rate_limit import rate_limit_health
from ..store import RecordStore

router = APIRouter()
logger = logging.getLogger("api.routers.health")

API_VERSION = "1.0.0"


@router.get("/health")
async def health_check(settings: Settings = Depends(get_settings)) -> dict:
    """Basic health check - no auth required.

    Reports which credentials are missing (names only, never values).
    """
    missing = settings.missing_credentials()
    return {
        "status": "degraded" if missing else "healthy",
        "timestamp": datetime.utcnow().isoformat(),
        "version": API_VERSION,
        "missingConfig": missing,
    }


@router.get("/health/store")
@rate_limit_health
def store_health(
    request: Request,
    settings: Settings = Depends(get_settings),
    store: RecordStore = Depends(get_record_store),
) -> dict:
    """Record store connectivity check."""
    try:
        store.ping()
        return {
            "status": "healthy",
            "backend": settings.record_store,
            "timestamp": datetime.utcnow().isoformat(),
        }
    except Exception as e:
        logger.error(f"Record store health check failed: {e}")
        return {
            "status": "unhealthy",
            "backend": settings.record_store,
            "error": str(e) if settings.debug else "Connection failed",
            "timestamp": datetime.utcnow().isoformat(),
        }
