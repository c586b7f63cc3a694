"""
Rate limiting configuration for the admin gate API
"""

from fastapi import Request
from slowapi.util import get_remote_address


def get_real_ip(request: Request) -> str:
    """
    Get the real IP address, considering proxy headers.
    Needed when running behind a load balancer.
    """
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        # X-Forwarded-For can contain multiple IPs, take the first
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip

    return get_remote_address(request)


RATE_LIMITS = {
    "protected_view": "120/minute",     # Gate evaluations per client
    "session_bootstrap": "20/minute",   # Upstream login service
    "logout": "30/minute",
}

RATE_LIMIT_MESSAGE = "Too many requests. Please wait a moment and try again."
