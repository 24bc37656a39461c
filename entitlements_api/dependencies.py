"""FastAPI dependencies for configuration, storage and shared services.

Endpoints get everything through these providers:
- Settings (built once from the environment)
- Firebase Admin / Firestore client
- Record store (Firestore or in-memory)
- PayPal client, entitlement engine, webhook intake, manual override
"""

from __future__ import annotations

import json
import logging
from functools import lru_cache
from pathlib import Path
from typing import Optional

from fastapi import Depends, Request

import firebase_admin
from firebase_admin import credentials, firestore

from .config import Settings
from .engine import EntitlementEngine
from .manual_override import ManualOverride
from .paypal_client import PayPalClient
from .store import FirestoreRecordStore, InMemoryRecordStore, RecordStore
from .subscription_store import SubscriptionRecordStore
from .utils.client_ip import get_client_ip
from .utils.security_logger import security_logger
from .webhooks import WebhookIntake

logger = logging.getLogger("api.dependencies")


# =============================================================================
# CONFIGURATION
# =============================================================================

@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Process-wide settings (read from the environment once)."""
    return Settings.from_env()


# =============================================================================
# FIREBASE INITIALIZATION
# =============================================================================

_firebase_app: Optional[firebase_admin.App] = None
_firestore_client = None
_record_store: Optional[RecordStore] = None


def get_firebase_app(settings: Optional[Settings] = None) -> firebase_admin.App:
    """Get or initialize Firebase Admin app.

    Credentials come from FIREBASE_SERVICE_ACCOUNT (inline JSON, e.g. on a
    hosted runtime), then GOOGLE_APPLICATION_CREDENTIALS (file path), then
    application default credentials.
    """
    global _firebase_app

    if _firebase_app is not None:
        return _firebase_app

    # Check if already initialized
    try:
        _firebase_app = firebase_admin.get_app()
        return _firebase_app
    except ValueError:
        pass

    settings = settings or get_settings()
    if settings.firebase_service_account_json:
        try:
            service_account = json.loads(settings.firebase_service_account_json)
        except ValueError as exc:
            logger.error("FIREBASE_SERVICE_ACCOUNT is not valid JSON")
            raise RuntimeError("FIREBASE_SERVICE_ACCOUNT is not valid JSON") from exc
        cred = credentials.Certificate(service_account)
        logger.info("Using Firebase credentials from FIREBASE_SERVICE_ACCOUNT")
    elif settings.google_application_credentials:
        if not Path(settings.google_application_credentials).exists():
            raise RuntimeError(f"Service account not found: {settings.google_application_credentials}")
        cred = credentials.Certificate(settings.google_application_credentials)
        logger.info("Using Firebase credentials from GOOGLE_APPLICATION_CREDENTIALS")
    else:
        cred = credentials.ApplicationDefault()
        logger.info("Using application default credentials for Firebase")

    _firebase_app = firebase_admin.initialize_app(cred)
    logger.info("Firebase Admin initialized")
    return _firebase_app


def get_firestore():
    """Get Firestore client (singleton)."""
    global _firestore_client

    if _firestore_client is None:
        get_firebase_app()  # Ensure initialized
        _firestore_client = firestore.client()
        logger.info("Firestore client initialized")

    return _firestore_client


# =============================================================================
# SERVICES
# =============================================================================

def get_record_store(settings: Settings = Depends(get_settings)) -> RecordStore:
    """Record store selected by RECORD_STORE (singleton)."""
    global _record_store

    if _record_store is None:
        if settings.record_store == "memory":
            logger.warning("Using in-memory record store; data is lost on restart")
            _record_store = InMemoryRecordStore()
        elif settings.record_store == "firestore":
            _record_store = FirestoreRecordStore(get_firestore())
        else:
            raise RuntimeError(f"Unknown RECORD_STORE: {settings.record_store}")

    return _record_store


def get_paypal_client(settings: Settings = Depends(get_settings)) -> PayPalClient:
    return PayPalClient(settings)


def get_engine(
    store: RecordStore = Depends(get_record_store),
    settings: Settings = Depends(get_settings),
) -> EntitlementEngine:
    return EntitlementEngine(SubscriptionRecordStore(store), settings)


def get_webhook_intake(
    provider: PayPalClient = Depends(get_paypal_client),
    engine: EntitlementEngine = Depends(get_engine),
) -> WebhookIntake:
    return WebhookIntake(provider, engine)


def get_manual_override(
    settings: Settings = Depends(get_settings),
    engine: EntitlementEngine = Depends(get_engine),
) -> ManualOverride:
    return ManualOverride(settings, engine)


# =============================================================================
# SECURITY LOGGING
# =============================================================================

def log_admin_auth_failure(request: Request, reason: str) -> None:
    """Log a rejected admin credential for security monitoring."""
    security_logger.auth_failure(
        ip=get_client_ip(request),
        reason=reason,
        path=request.url.path,
        user_agent=request.headers.get("user-agent", "unknown"),
    )
