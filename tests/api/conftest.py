"""API test fixtures: TestClient over the full app with in-memory services."""

from datetime import timedelta
from unittest.mock import Mock
from uuid import UUID

import pytest
from starlette.testclient import TestClient

from api.app import create_app
from auth.session import SessionValidator
from auth.types import Session
from core.services.subscription_sync_service import SubscriptionSyncService
from utils.timezone import now_utc


PLATFORM_ADMIN_ID = UUID("00000000-0000-0000-0000-000000000003")


def _session_manager(user_id: UUID):
    now = now_utc()
    mock = Mock(spec=SessionValidator)
    mock.validate_session.return_value = Session(
        token="test-token",
        user_id=user_id,
        created_at=now,
        expires_at=now + timedelta(hours=24),
        last_activity_at=now,
    )
    return mock


# =============================================================================
# SERVICES DICT
# =============================================================================


@pytest.fixture
def webhook_verifier():
    verifier = Mock()
    verifier.construct_event.side_effect = ValueError("Missing stripe-signature header")
    return verifier


@pytest.fixture
def subscription_sync(billing_store):
    return SubscriptionSyncService(billing_store)


@pytest.fixture
def services(
    invoice_service,
    change_order_service,
    tier_change_service,
    override_service,
    seat_reconciler,
    permissions,
    subscription_sync,
    webhook_verifier,
):
    return {
        "invoice": invoice_service,
        "change_order": change_order_service,
        "tier_change": tier_change_service,
        "overrides": override_service,
        "seats": seat_reconciler,
        "permissions": permissions,
        "subscription_sync": subscription_sync,
        "webhook_verifier": webhook_verifier,
    }


# =============================================================================
# AUTH FIXTURES
# =============================================================================


@pytest.fixture
def mock_session_manager(test_user_id):
    return _session_manager(test_user_id)


# =============================================================================
# APP & CLIENT FIXTURES
# =============================================================================


@pytest.fixture
def app(mock_session_manager, services):
    return create_app(services, mock_session_manager)


@pytest.fixture
def client(app):
    """Client authenticated as the business owner."""
    c = TestClient(app, raise_server_exceptions=False)
    c.cookies.set("session_token", "test-token")
    return c


@pytest.fixture
def admin_client(services):
    """Client authenticated as a platform admin."""
    c = TestClient(create_app(services, _session_manager(PLATFORM_ADMIN_ID)), raise_server_exceptions=False)
    c.cookies.set("session_token", "test-token")
    return c


@pytest.fixture
def unauthed_client(app):
    """Unauthenticated test client (no session cookie)."""
    return TestClient(app, raise_server_exceptions=False)
