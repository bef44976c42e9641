"""
Process entry points.

    uvicorn --factory main:create_production_app   # HTTP API
    python main.py sweep-overdue                   # scheduled overdue sweep

Secrets come from Vault; tunables from BillingConfig defaults.
"""

import logging
import sys

from fastapi import FastAPI

from api.app import create_app
from auth.permissions import Permissions
from auth.session import ValkeySessionValidator
from clients.email_client import EmailGatewayClient
from clients.postgres_client import PostgresClient
from clients.stripe_client import StripePaymentGateway, StripeSubscriptionProvider, StripeWebhookVerifier
from clients.valkey_client import ValkeyClient
from clients.vault_client import get_database_url, get_email_config, get_stripe_config, get_valkey_url
from core.audit import AuditLogger
from core.config import BillingConfig
from core.event_bus import EventBus
from core.handlers.invoice_notification_handler import handle_invoice_sent, handle_payment_recorded
from core.handlers.seat_sync_handler import handle_membership_changed
from core.locks import TenantLock
from core.plans import PriceCatalog
from core.services.change_order_service import ChangeOrderService
from core.services.invoice_service import InvoiceService
from core.services.override_service import OverrideService
from core.services.seat_reconciler import SeatReconciler
from core.services.subscription_sync_service import SubscriptionSyncService
from core.services.tier_change_service import TierChangeService
from core.stores.billing_store import PostgresBillingStore
from core.stores.invoice_store import PostgresInvoiceStore
from core.stores.membership_store import PostgresMembershipDirectory

logger = logging.getLogger(__name__)


def build_services(
    postgres: PostgresClient,
    valkey: ValkeyClient,
    stripe_config: dict[str, str],
    email_client: EmailGatewayClient | None = None,
    config: BillingConfig | None = None,
) -> dict:
    """Construct every service and subscribe the event handlers."""
    config = config or BillingConfig()
    event_bus = EventBus()

    billing_store = PostgresBillingStore(postgres)
    invoice_store = PostgresInvoiceStore(postgres)
    membership = PostgresMembershipDirectory(postgres)
    permissions = Permissions(membership)
    audit = AuditLogger(postgres)
    lock = TenantLock(valkey, config)
    prices = PriceCatalog.from_config(stripe_config)
    provider = StripeSubscriptionProvider(stripe_config["secret_key"])

    seats = SeatReconciler(billing_store, provider, membership, prices, lock)
    services = {
        "permissions": permissions,
        "seats": seats,
        "tier_change": TierChangeService(
            billing_store, provider, membership, prices, lock, permissions, event_bus
        ),
        "overrides": OverrideService(billing_store, provider, lock, permissions, event_bus, config),
        "invoice": InvoiceService(
            invoice_store,
            billing_store,
            permissions,
            audit,
            event_bus,
            config,
            payment_gateway=StripePaymentGateway(stripe_config["secret_key"]),
        ),
        "change_order": ChangeOrderService(invoice_store, permissions, audit, event_bus),
        "subscription_sync": SubscriptionSyncService(billing_store),
        "webhook_verifier": StripeWebhookVerifier(stripe_config["webhook_secret"]),
        "event_bus": event_bus,
    }

    event_bus.subscribe("MembershipChanged", handle_membership_changed(seats))
    if email_client is not None:
        event_bus.subscribe("InvoiceSent", handle_invoice_sent(email_client, invoice_store, billing_store, config))
        event_bus.subscribe(
            "PaymentRecorded", handle_payment_recorded(email_client, invoice_store, billing_store)
        )
    else:
        logger.warning("No email gateway configured; invoice emails are disabled")

    return services


def _email_client_from_vault() -> EmailGatewayClient:
    email_config = get_email_config()
    return EmailGatewayClient(
        gateway_url=email_config["gateway_url"],
        api_key=email_config["api_key"],
        hmac_secret=email_config["hmac_secret"],
    )


def create_production_app() -> FastAPI:
    postgres = PostgresClient(get_database_url())
    valkey = ValkeyClient(get_valkey_url())
    services = build_services(postgres, valkey, get_stripe_config(), _email_client_from_vault())
    return create_app(services, ValkeySessionValidator(valkey))


def sweep_overdue() -> int:
    """Mark overdue invoices across all businesses. Returns how many flipped."""
    postgres = PostgresClient(get_database_url())
    valkey = ValkeyClient(get_valkey_url())
    try:
        services = build_services(postgres, valkey, get_stripe_config())
        flipped = services["invoice"].mark_overdue()
        logger.info(f"Overdue sweep flipped {len(flipped)} invoices")
        return len(flipped)
    finally:
        valkey.close()
        postgres.close()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    if sys.argv[1:] == ["sweep-overdue"]:
        sweep_overdue()
    else:
        print(__doc__)
        sys.exit(2)
