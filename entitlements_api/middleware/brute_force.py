"""Lockout for repeated admin secret failures.

Only the admin-gated paths are watched. Every 401 from them counts as a
failure for the caller's IP; the longest lockout whose threshold is reached
applies:

    3 failures / 1 min   -> locked 1 min
    5 failures / 5 min   -> locked 5 min
    10 failures / 30 min -> locked 30 min
    20 failures / 24 h   -> locked 24 h

A successful admin call clears the IP's history.
"""

from __future__ import annotations

import threading
from collections import defaultdict, deque
from datetime import datetime, timedelta
from typing import Deque, Dict, Tuple

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from ..utils.client_ip import get_client_ip
from ..utils.security_logger import security_logger

PROTECTED_PREFIXES = ("/api/admin", "/api/subscription/debug")

HISTORY_WINDOW = timedelta(hours=24)

# (failures, within, lockout), checked longest lockout first
LOCKOUT_SCHEDULE: Tuple[Tuple[int, timedelta, timedelta], ...] = (
    (20, timedelta(hours=24), timedelta(hours=24)),
    (10, timedelta(minutes=30), timedelta(minutes=30)),
    (5, timedelta(minutes=5), timedelta(minutes=5)),
    (3, timedelta(minutes=1), timedelta(minutes=1)),
)


class BruteForceProtection:

    def __init__(self):
        self._failures: Dict[str, Deque[datetime]] = defaultdict(deque)
        self._locked_until: Dict[str, datetime] = {}
        self._lock = threading.Lock()

    def record_failure(self, ip: str, reason: str = "admin_auth_failure") -> None:
        now = datetime.utcnow()
        with self._lock:
            history = self._failures[ip]
            history.append(now)
            while history and history[0] <= now - HISTORY_WINDOW:
                history.popleft()

            for threshold, within, lockout in LOCKOUT_SCHEDULE:
                recent = sum(1 for t in history if t > now - within)
                if recent >= threshold:
                    self._locked_until[ip] = now + lockout
                    break
            else:
                return

        security_logger.brute_force_lockout(
            ip=ip,
            failures=recent,
            lockout_minutes=int(lockout.total_seconds() // 60),
            reason=reason,
        )

    def retry_after_seconds(self, ip: str) -> int:
        """Seconds left on the IP's lockout, 0 when not locked."""
        with self._lock:
            until = self._locked_until.get(ip)
            if until is None:
                return 0
            remaining = (until - datetime.utcnow()).total_seconds()
            if remaining <= 0:
                del self._locked_until[ip]
                return 0
            return max(1, int(remaining))

    def is_locked_out(self, ip: str) -> bool:
        return self.retry_after_seconds(ip) > 0

    def clear_failures(self, ip: str) -> None:
        with self._lock:
            self._failures.pop(ip, None)
            self._locked_until.pop(ip, None)

    def reset(self) -> None:
        with self._lock:
            self._failures.clear()
            self._locked_until.clear()


brute_force = BruteForceProtection()


class BruteForceMiddleware(BaseHTTPMiddleware):

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        if not path.startswith(PROTECTED_PREFIXES):
            return await call_next(request)

        ip = get_client_ip(request)
        retry_after = brute_force.retry_after_seconds(ip)
        if retry_after:
            security_logger.locked_ip_attempt(ip=ip, path=path)
            return JSONResponse(
                status_code=429,
                content={"error": "Too many failed admin attempts. Try again later.", "code": "LOCKED_OUT"},
                headers={"Retry-After": str(retry_after)},
            )

        response = await call_next(request)
        if response.status_code == 401:
            brute_force.record_failure(ip)
        elif response.status_code < 400:
            brute_force.clear_failures(ip)
        return response


def setup_brute_force_protection(app) -> None:
    app.add_middleware(BruteForceMiddleware)
