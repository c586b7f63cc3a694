# tests/conftest.py
"""
Fixtures for API-level tests: an application built from isolated settings
and a TestClient that runs its lifespan.
"""

import pytest
from fastapi.testclient import TestClient

from admingate.core.config import Settings
from admingate.main import create_app

TEST_API_KEY = "test-api-key-for-security-testing"
BROWSER_HEADERS = {"User-Agent": "TestBrowser/1.0", "Accept-Language": "en-US"}


@pytest.fixture
def api_settings():
    return Settings(
        _env_file=None,
        ADMINGATE_API_KEY=TEST_API_KEY,
        REDIS_URL=None,
        COOKIE_SECURE=False,
        GATE_RETRY_BACKOFF_SECONDS=0,
        ALLOWED_ORIGINS=["https://admin.example.com"],
    )


@pytest.fixture
def api_headers():
    return {"X-API-Key": TEST_API_KEY}


@pytest.fixture
def client(api_settings):
    app = create_app(api_settings)
    with TestClient(app, headers=BROWSER_HEADERS) as test_client:
        yield test_client


@pytest.fixture
def logged_in_client(client):
    """Client whose cookie jar holds a freshly bootstrapped session for u1"""
    response = client.post(
        "/internal/sessions",
        json={"user_id": "u1"},
        headers={"X-API-Key": TEST_API_KEY}
    )
    assert response.status_code == 200
    client.bootstrap = response.json()
    return client
