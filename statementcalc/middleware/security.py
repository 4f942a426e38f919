"""
Security headers middleware for API hardening.

Adds essential security headers to all responses.
"""
import os
from typing import Callable, List

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from statementcalc.config import get_settings


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """
    Middleware that adds security headers to all responses.

    Headers added:
    - X-Content-Type-Options: nosniff
    - X-Frame-Options: DENY
    - Referrer-Policy
    - Permissions-Policy
    - Content-Security-Policy
    - Strict-Transport-Security (when ENABLE_HSTS is set)
    """

    ENABLE_HSTS = os.getenv("ENABLE_HSTS", "false").lower() == "true"

    # 1 year
    HSTS_MAX_AGE = 31536000

    # JSON API with rendered overlays returned as data URLs
    CSP_POLICY = "; ".join([
        "default-src 'none'",
        "img-src 'self' data:",
        "frame-ancestors 'none'",
        "base-uri 'none'",
    ])

    DOCS_PATHS = {"/docs", "/redoc"}

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        response = await call_next(request)

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Permissions-Policy"] = (
            "camera=(), geolocation=(), microphone=(), payment=(), usb=()"
        )

        # Swagger UI loads its own scripts
        if request.url.path not in self.DOCS_PATHS:
            response.headers["Content-Security-Policy"] = self.CSP_POLICY

        if self.ENABLE_HSTS:
            response.headers["Strict-Transport-Security"] = (
                f"max-age={self.HSTS_MAX_AGE}; includeSubDomains"
            )

        if "Server" in response.headers:
            del response.headers["Server"]

        return response


def get_cors_origins() -> List[str]:
    """
    Get allowed CORS origins.

    Uses CORS_ORIGINS when set, otherwise the local development UI URLs.
    """
    origins = get_settings().cors_origin_list
    if origins:
        return origins

    return [
        "http://localhost:3000",
        "http://localhost:5173",
        "http://127.0.0.1:3000",
        "http://127.0.0.1:5173",
    ]
