"""API test fixtures: authenticated TestClient over the assembled app with in-memory services."""

from datetime import timedelta
from unittest.mock import Mock

import pytest
from starlette.testclient import TestClient

from api.app import build_services, create_app
from auth.rate_limiter import RateLimiter
from auth.session import SessionManager
from auth.types import Session
from utils.timezone import now_utc


# Low ceilings so rate limiting is reachable in a few requests
CHECKOUT_ATTEMPTS = 3
EXPORT_ATTEMPTS = 2


# =============================================================================
# SERVICES DICT
# =============================================================================


@pytest.fixture
def services(db, audit, vault, stripe_gateway, email, config, event_bus):
    return build_services(
        db, audit, vault, stripe_gateway,
        email=email, config=config, event_bus=event_bus,
    )


# =============================================================================
# AUTH FIXTURES
# =============================================================================


@pytest.fixture
def mock_session_manager(test_user_id, test_org_id):
    now = now_utc()
    mock = Mock(spec=SessionManager)
    mock.validate_session.return_value = Session(
        token="test-token",
        user_id=test_user_id,
        organization_id=test_org_id,
        created_at=now,
        expires_at=now + timedelta(hours=24),
        last_activity_at=now,
    )
    return mock


# =============================================================================
# APP & CLIENT FIXTURES
# =============================================================================


@pytest.fixture
def app(services, mock_session_manager, stripe_gateway, valkey):
    """Assembled app: middleware, error handlers and every router."""
    return create_app(
        services,
        mock_session_manager,
        stripe_gateway,
        checkout_limiter=RateLimiter(valkey, "checkout", CHECKOUT_ATTEMPTS, 600),
        export_limiter=RateLimiter(valkey, "export", EXPORT_ATTEMPTS, 3600),
    )


@pytest.fixture
def client(app):
    """Authenticated test client."""
    c = TestClient(app, raise_server_exceptions=False)
    c.cookies.set("session_token", "test-token")
    return c


@pytest.fixture
def unauthed_client(app):
    """Unauthenticated test client (no session cookie)."""
    return TestClient(app, raise_server_exceptions=False)


@pytest.fixture
def post_action(client):
    """POST one action as the authenticated user."""

    def _post(domain: str, action_name: str, data: dict):
        return client.post("/api/actions", json={"domain": domain, "action": action_name, "data": data})

    return _post


@pytest.fixture
def checkout_attempts() -> int:
    return CHECKOUT_ATTEMPTS


@pytest.fixture
def export_attempts() -> int:
    return EXPORT_ATTEMPTS
