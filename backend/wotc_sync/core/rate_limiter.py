"""
Rate limiting for the sync engine API.

Webhook intake, manual sync triggers and state uploads each start work
against an external system, so they carry their own limits. Authenticated
callers are limited per principal, anonymous ones (webhooks) per client IP.
"""

import logging

from fastapi import Request
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.responses import JSONResponse

from wotc_sync.core.config import settings

logger = logging.getLogger("wotc_sync.rate_limiter")


def get_real_client_ip(request: Request) -> str:
    """
    Get the real client IP, accounting for reverse proxies.
    Checks X-Forwarded-For header first, then falls back to direct IP.
    """
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        # First address in the chain is the original client
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()

    return get_remote_address(request)


def get_caller_identifier(request: Request) -> str:
    """Bearer-token principal when authenticated, otherwise client IP."""
    principal = getattr(request.state, "principal", None)
    if principal is not None:
        return f"principal:{principal.subject}"
    return f"ip:{get_real_client_ip(request)}"


if settings.IS_PRODUCTION and settings.RATE_LIMIT_STORAGE_URI.startswith("memory://"):
    logger.warning(
        "Rate limiting is using in-memory storage; limits are not shared between workers. "
        "Set RATE_LIMIT_STORAGE_URI to a redis:// URL when running more than one."
    )

limiter = Limiter(
    key_func=get_caller_identifier,
    storage_uri=settings.RATE_LIMIT_STORAGE_URI,
    strategy="fixed-window",
    headers_enabled=True,
    enabled=settings.RATE_LIMIT_ENABLED,
)


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """JSON 429 with a Retry-After hint."""
    logger.warning(
        f"Rate limit exceeded for {get_caller_identifier(request)} "
        f"on {request.method} {request.url.path}"
    )

    retry_after = getattr(exc, "retry_after", 60)
    return JSONResponse(
        status_code=429,
        content={
            "error": "Rate limit exceeded",
            "detail": f"Too many requests. Please retry after {retry_after} seconds.",
            "retry_after": retry_after,
        },
        headers={"Retry-After": str(retry_after)},
    )


class RateLimits:
    """Limits for endpoints that start work against external systems."""

    WEBHOOK = "120/minute"
    SYNC_TRIGGER = "10/minute"
    STATE_UPLOAD = "10/minute"
    DETERMINATIONS = "30/minute"
