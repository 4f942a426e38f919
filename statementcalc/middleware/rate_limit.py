"""
Rate limiting for the relay endpoints.

Each processed image costs one Textract call and one model call, so the
endpoints that forward images are limited per client using slowapi.
"""
import os

import structlog
from fastapi import Request, Response
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.responses import JSONResponse

from statementcalc.config import get_settings

logger = structlog.get_logger(__name__)

RETRY_AFTER_SECONDS = 60


def get_client_identifier(request: Request) -> str:
    """Get client identifier for rate limiting, honoring X-Forwarded-For."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()

    return get_remote_address(request)


# In-memory storage unless RATE_LIMIT_STORAGE_URI points at a shared backend
STORAGE_URI = os.getenv("RATE_LIMIT_STORAGE_URI")
if STORAGE_URI:
    limiter = Limiter(key_func=get_client_identifier, storage_uri=STORAGE_URI)
else:
    limiter = Limiter(key_func=get_client_identifier)


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> Response:
    """
    Custom handler for rate limit exceeded errors.

    Returns the standard error body with retry information.
    """
    logger.warning(
        "rate_limit_exceeded",
        client=get_client_identifier(request),
        path=request.url.path,
        limit=str(exc.detail),
    )

    return JSONResponse(
        status_code=429,
        content={
            "error": True,
            "error_code": "SC-429",
            "message": "Too many requests. Please slow down.",
            "details": {
                "limit": str(exc.detail),
                "retry_after_seconds": RETRY_AFTER_SECONDS,
            },
        },
        headers={"Retry-After": str(RETRY_AFTER_SECONDS)},
    )


def process_rate_limit():
    """Rate limit decorator for endpoints that call the external providers."""
    return limiter.limit(lambda: get_settings().process_rate_limit)
