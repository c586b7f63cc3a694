"""
Security middleware for the admin gate API.
Adds security headers and logs slow requests.
"""

from fastapi import Request, Response
import time
import logging
from typing import Callable

logger = logging.getLogger(__name__)

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
    "Permissions-Policy": "geolocation=(), microphone=(), camera=()",
    "Content-Security-Policy": "default-src 'self'; object-src 'none'; base-uri 'self'; "
                               "form-action 'self'; frame-ancestors 'none'",
}


class SecurityHeadersMiddleware:
    """Adds security headers to every response"""

    def __init__(self, slow_request_seconds: float = 1.0, protected_prefixes=("/admin",)):
        self.slow_request_seconds = slow_request_seconds
        self.protected_prefixes = tuple(protected_prefixes)

    async def __call__(self, request: Request, call_next: Callable) -> Response:
        start_time = time.time()
        response = await call_next(request)
        process_time = time.time() - start_time

        for name, value in SECURITY_HEADERS.items():
            response.headers[name] = value
        response.headers["X-Process-Time"] = f"{process_time:.4f}"

        # Gate responses carry fresh CSRF tokens and must never be cached
        if request.url.path.startswith(self.protected_prefixes):
            response.headers["Cache-Control"] = "no-store"

        if "server" in response.headers:
            del response.headers["server"]

        if process_time > self.slow_request_seconds:
            logger.warning(f"⏱️ Slow request: {request.url.path} took {process_time:.2f}s")

        return response
