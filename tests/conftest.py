"""Shared test fixtures for the billing test suite."""

import os

import pytest
from uuid import UUID, uuid4
from pathlib import Path

from dotenv import load_dotenv

# Load .env file BEFORE any other imports that might use env vars
# override=True ensures .env takes precedence over shell env vars
load_dotenv(Path(__file__).parent.parent / ".env", override=True)

# Reset vault client singleton to pick up env vars
import clients.vault_client as vault_module
vault_module._vault_client_instance = None
vault_module._secret_cache.clear()

from auth.permissions import Permissions
from core.config import BillingConfig
from core.event_bus import EventBus
from core.services.change_order_service import ChangeOrderService
from core.services.invoice_service import InvoiceService
from core.services.override_service import OverrideService
from core.services.seat_reconciler import SeatReconciler
from core.services.tier_change_service import TierChangeService
from tests.fakes import (
    PRICES,
    FakeMembershipDirectory,
    FakePaymentGateway,
    FakeSubscriptionProvider,
    FakeTenantLock,
    InMemoryBillingStore,
    InMemoryInvoiceStore,
    RecordingAudit,
)
from utils.user_context import user_context, clear_current_user_id


# =============================================================================
# TEST USER CONSTANTS
# =============================================================================

# Business owner - use for invoice tests
TEST_USER_ID = UUID("00000000-0000-0000-0000-000000000001")

# Plain member of the same business - use for role denial tests
TEST_MEMBER_ID = UUID("00000000-0000-0000-0000-000000000002")

# Platform admin - use for billing override tests
TEST_ADMIN_ID = UUID("00000000-0000-0000-0000-000000000003")


# =============================================================================
# USER CONTEXT FIXTURES
# =============================================================================


@pytest.fixture(autouse=True)
def reset_user_context():
    """Ensure clean user context before and after each test."""
    clear_current_user_id()
    yield
    clear_current_user_id()


@pytest.fixture
def test_user_id() -> UUID:
    return TEST_USER_ID


@pytest.fixture
def as_test_user(test_user_id):
    """Act as the business owner."""
    with user_context(test_user_id):
        yield test_user_id


@pytest.fixture
def as_member():
    """Act as a non-admin member of the business."""
    with user_context(TEST_MEMBER_ID):
        yield TEST_MEMBER_ID


@pytest.fixture
def as_platform_admin():
    with user_context(TEST_ADMIN_ID):
        yield TEST_ADMIN_ID


# =============================================================================
# IN-MEMORY INFRASTRUCTURE
# =============================================================================


@pytest.fixture
def config() -> BillingConfig:
    return BillingConfig(app_base_url="https://app.example.com")


@pytest.fixture
def billing_store():
    return InMemoryBillingStore()


@pytest.fixture
def invoice_store():
    return InMemoryInvoiceStore()


@pytest.fixture
def provider():
    return FakeSubscriptionProvider()


@pytest.fixture
def payment_gateway():
    return FakePaymentGateway()


@pytest.fixture
def membership():
    directory = FakeMembershipDirectory()
    directory.platform_admins.add(TEST_ADMIN_ID)
    return directory


@pytest.fixture
def lock():
    return FakeTenantLock()


@pytest.fixture
def event_bus():
    return EventBus()


@pytest.fixture
def published(event_bus):
    """Every event published on the bus, by class name."""
    received = []
    for name in (
        "InvoiceSent", "InvoiceViewed", "PaymentRecorded", "InvoicePaid",
        "InvoiceVoided", "ChangeOrderApproved", "TierChanged", "CompApplied",
        "DiscountApplied", "MembershipChanged",
    ):
        event_bus.subscribe(name, received.append)
    return received


@pytest.fixture
def audit():
    return RecordingAudit()


@pytest.fixture
def permissions(membership):
    return Permissions(membership)


@pytest.fixture
def business(billing_store, membership):
    """A free-tier business owned by the test user with one plain member."""
    state = billing_store.add_business(name="Acme Plumbing")
    membership.add_member(state.business_id, TEST_USER_ID, "Owner")
    membership.add_member(state.business_id, TEST_MEMBER_ID, "Member")
    return state


@pytest.fixture
def business_id(business) -> UUID:
    return business.business_id


@pytest.fixture
def other_business_id(billing_store) -> UUID:
    return billing_store.add_business(name="Someone Else", business_id=uuid4()).business_id


# =============================================================================
# SERVICES
# =============================================================================


@pytest.fixture
def invoice_service(invoice_store, billing_store, permissions, audit, event_bus, config, payment_gateway):
    return InvoiceService(
        invoice_store, billing_store, permissions, audit, event_bus, config,
        payment_gateway=payment_gateway,
    )


@pytest.fixture
def change_order_service(invoice_store, permissions, audit, event_bus):
    return ChangeOrderService(invoice_store, permissions, audit, event_bus)


@pytest.fixture
def seat_reconciler(billing_store, provider, membership, lock):
    return SeatReconciler(billing_store, provider, membership, PRICES, lock)


@pytest.fixture
def tier_change_service(billing_store, provider, membership, lock, permissions, event_bus):
    return TierChangeService(billing_store, provider, membership, PRICES, lock, permissions, event_bus)


@pytest.fixture
def override_service(billing_store, provider, lock, permissions, event_bus, config):
    return OverrideService(billing_store, provider, lock, permissions, event_bus, config)


# =============================================================================
# DATABASE (integration tests)
# =============================================================================

SCHEMA_PATH = Path(__file__).parent.parent / "db" / "schema.sql"


@pytest.fixture(scope="session")
def db():
    """Session-scoped PostgresClient with the billing schema applied.

    Points at TEST_DATABASE_URL (usually set in .env). Tests that use it are
    skipped when no database is configured.
    """
    database_url = os.environ.get("TEST_DATABASE_URL")
    if not database_url:
        pytest.skip("TEST_DATABASE_URL not set")

    from clients.postgres_client import PostgresClient

    client = PostgresClient(database_url)
    client.execute(SCHEMA_PATH.read_text())
    yield client
    client.close()


@pytest.fixture
def db_business_id(db, billing_store, membership, test_user_id) -> UUID:
    """A business row owned by the test user; deleting it cascades to its invoices."""
    business_id = uuid4()
    db.execute(
        "INSERT INTO users (id, email) VALUES (%s, %s) ON CONFLICT (id) DO NOTHING",
        (test_user_id, "owner@example.com"),
    )
    db.execute("INSERT INTO businesses (id, name) VALUES (%s, %s)", (business_id, "Integration Plumbing"))
    billing_store.add_business(name="Integration Plumbing", business_id=business_id)
    membership.add_member(business_id, test_user_id, "Owner")
    yield business_id
    db.execute("DELETE FROM businesses WHERE id = %s", (business_id,))
