"""Client IP resolution for rate limiting and security logs.

Forwarded headers are honoured only when TRUST_PROXY=1; hosted deployments
sit behind a single reverse proxy that appends the caller to
X-Forwarded-For. Exposed directly, those headers are caller-controlled.
"""

from __future__ import annotations

import os

from fastapi import Request

TRUST_PROXY = os.environ.get("TRUST_PROXY", "").strip().lower() in ("1", "true", "yes", "on")
PROXY_HEADERS = ("CF-Connecting-IP", "X-Real-IP")


def get_client_ip(request: Request, trust_proxy: bool = TRUST_PROXY) -> str:
    """Best-effort caller address, "unknown" when the transport has none."""
    if trust_proxy:
        for header in PROXY_HEADERS:
            value = request.headers.get(header)
            if value:
                return value.strip()

        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            # First hop is the original client
            return forwarded.split(",")[0].strip()

    if request.client:
        return request.client.host
    return "unknown"
