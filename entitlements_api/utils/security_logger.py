"""Security audit log.

One JSON object per line in ``$LOG_DIR/security.log`` (rotated), for the
events worth alerting on:
- rejected admin secrets (manual activation, debug listing)
- webhook deliveries whose signature PayPal did not confirm
- rate limit hits and brute force lockouts
"""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Optional

LOG_DIR = Path(os.environ.get("LOG_DIR") or Path(__file__).resolve().parents[2] / "logs")
SECURITY_LOG_FILE = LOG_DIR / "security.log"

MAX_LOG_BYTES = 5 * 1024 * 1024
LOG_BACKUPS = 3

_fallback = logging.getLogger("api.security")


def _build_handler() -> logging.Handler:
    try:
        LOG_DIR.mkdir(parents=True, exist_ok=True)
        return RotatingFileHandler(SECURITY_LOG_FILE, maxBytes=MAX_LOG_BYTES, backupCount=LOG_BACKUPS)
    except OSError as exc:
        # Read-only filesystem on some hosted runtimes
        _fallback.warning("Security log file unavailable (%s); writing to stderr", exc)
        return logging.StreamHandler()


class SecurityLogger:

    def __init__(self, name: str = "security"):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(logging.WARNING)
        self.logger.propagate = False
        if not self.logger.handlers:
            handler = _build_handler()
            handler.setFormatter(logging.Formatter("%(message)s"))
            self.logger.addHandler(handler)

    def log_event(
        self,
        event: str,
        severity: str,
        ip: Optional[str] = None,
        path: Optional[str] = None,
        **fields: Any,
    ) -> None:
        """Write one event. ``None`` fields are omitted."""
        record = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "event": event,
            "severity": severity,
            "ip": ip,
            "path": path,
            **fields,
        }
        self.logger.warning(json.dumps({k: v for k, v in record.items() if v is not None}, default=str))

    def auth_failure(self, ip: str, reason: str, path: str, user_agent: Optional[str] = None) -> None:
        self.log_event("admin_auth_failure", "medium", ip=ip, path=path, reason=reason, user_agent=user_agent)

    def webhook_rejected(self, ip: str, path: str, transmission_id: Optional[str] = None) -> None:
        self.log_event("webhook_signature_rejected", "high", ip=ip, path=path, transmission_id=transmission_id)

    def rate_limit_exceeded(self, ip: str, path: str, limit: str) -> None:
        self.log_event("rate_limit_exceeded", "low", ip=ip, path=path, limit=limit)

    def brute_force_lockout(self, ip: str, failures: int, lockout_minutes: int, reason: str) -> None:
        self.log_event(
            "admin_lockout", "high", ip=ip,
            failures=failures, lockout_minutes=lockout_minutes, reason=reason,
        )

    def locked_ip_attempt(self, ip: str, path: str) -> None:
        self.log_event("locked_ip_attempt", "low", ip=ip, path=path)


security_logger = SecurityLogger()
