"""
Security layer of the admin gate.

- Session registry with device binding
- CSRF token authority with rotation
- Client storage capability (cookies or in-memory)
- Navigation gate composing the above
"""

from datetime import timedelta
from typing import Tuple

from admingate.core.config import Settings
from .client_storage import (
    ClientStorage,
    CookieClientStorage,
    InMemoryClientStorage,
    compute_device_fingerprint
)
from .csrf_authority import CsrfAuthority, InMemoryCsrfAuthority, RedisCsrfAuthority
from .gate import NavigationGate
from .session_registry import InMemorySessionRegistry, RedisSessionRegistry, SessionRegistry


def build_security_stores(
    settings: Settings,
    redis_service=None
) -> Tuple[SessionRegistry, CsrfAuthority]:
    """Create the session registry and CSRF authority for the configured backend"""
    session_kwargs = dict(
        max_age=timedelta(minutes=settings.SESSION_MAX_AGE_MINUTES),
        renew_threshold=timedelta(minutes=settings.SESSION_RENEW_THRESHOLD_MINUTES),
    )
    csrf_kwargs = dict(
        token_bytes=settings.CSRF_TOKEN_BYTES,
        ttl=timedelta(hours=settings.CSRF_TOKEN_TTL_HOURS),
    )

    if redis_service is not None and redis_service.is_connected():
        prefix = settings.REDIS_KEY_PREFIX
        return (
            RedisSessionRegistry(redis_service, prefix=prefix, **session_kwargs),
            RedisCsrfAuthority(redis_service, prefix=prefix, **csrf_kwargs),
        )

    return InMemorySessionRegistry(**session_kwargs), InMemoryCsrfAuthority(**csrf_kwargs)


def build_gate(settings: Settings, redis_service=None) -> NavigationGate:
    sessions, csrf = build_security_stores(settings, redis_service)
    return NavigationGate(sessions, csrf, settings)


__all__ = [
    'ClientStorage',
    'CookieClientStorage',
    'InMemoryClientStorage',
    'compute_device_fingerprint',
    'CsrfAuthority',
    'InMemoryCsrfAuthority',
    'RedisCsrfAuthority',
    'NavigationGate',
    'SessionRegistry',
    'InMemorySessionRegistry',
    'RedisSessionRegistry',
    'build_security_stores',
    'build_gate',
]
