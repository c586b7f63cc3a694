# tests/core/conftest.py
"""
Shared fixtures for the security core tests.

Provides settings without retry backoff, fresh in-memory registries, a gate
wired to them, and client storage pre-populated with a valid login.
"""

import pytest
from datetime import timedelta

from admingate.core.config import Settings
from admingate.core.security import (
    InMemoryClientStorage,
    InMemoryCsrfAuthority,
    InMemorySessionRegistry,
    NavigationGate,
)


@pytest.fixture
def test_settings():
    """Settings isolated from the environment"""
    return Settings(
        _env_file=None,
        ADMINGATE_API_KEY="test-api-key",
        GATE_RETRY_BACKOFF_SECONDS=0,
        GATE_TRANSIENT_RETRIES=1,
        COOKIE_SECURE=False,
    )


@pytest.fixture
def session_registry():
    return InMemorySessionRegistry(max_age=timedelta(minutes=30), renew_threshold=timedelta(minutes=5))


@pytest.fixture
def csrf_authority():
    return InMemoryCsrfAuthority(token_bytes=32, ttl=timedelta(hours=24))


@pytest.fixture
def gate(session_registry, csrf_authority, test_settings):
    return NavigationGate(session_registry, csrf_authority, test_settings)


@pytest.fixture
async def logged_in(session_registry, csrf_authority, test_settings):
    """
    Simulate the login collaborator: a session for u1 on fp-A plus a CSRF
    token, mirrored into client storage.
    """
    session = await session_registry.create("u1", "fp-A")
    token = await csrf_authority.issue("u1")
    storage = InMemoryClientStorage({
        test_settings.SESSION_ID_KEY: session.session_id,
        test_settings.USER_ID_KEY: "u1",
        test_settings.DEVICE_FINGERPRINT_KEY: "fp-A",
        test_settings.CSRF_TOKEN_KEY: token,
    })
    return session, token, storage
