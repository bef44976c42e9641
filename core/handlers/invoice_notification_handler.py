"""
Handlers that email clients about their invoices.

InvoiceSent delivers the public link; PaymentRecorded sends a receipt with
the remaining balance. Both carry the business's invoice branding (company
name, reply-to address) from its invoice settings. Gateway failures
propagate to the event bus, which logs them: the invoice write has already
committed.
"""

import logging
from typing import Callable, NamedTuple

from clients.email_client import EmailGatewayClient
from core.config import BillingConfig
from core.events import InvoiceSent, PaymentRecorded
from core.models import Invoice
from core.money import format_usd
from core.stores.billing_store import PostgresBillingStore
from core.stores.invoice_store import PostgresInvoiceStore

logger = logging.getLogger(__name__)


class Issuer(NamedTuple):
    name: str
    reply_to: str | None


def invoice_link(config: BillingConfig, token: str) -> str:
    return f"{config.app_base_url.rstrip('/')}/invoice/{token}"


def issuer_for(
    invoice: Invoice,
    invoice_store: PostgresInvoiceStore,
    billing_store: PostgresBillingStore,
) -> Issuer:
    """Company name from invoice settings, then the business name."""
    settings = invoice_store.get_settings(invoice.business_id)
    name = settings.company_name if settings else None
    if not name:
        state = billing_store.get_state(invoice.business_id)
        name = (state and state.name) or "Your service provider"
    return Issuer(name=name, reply_to=settings.company_email if settings else None)


def handle_invoice_sent(
    email_client: EmailGatewayClient,
    invoice_store: PostgresInvoiceStore,
    billing_store: PostgresBillingStore,
    config: BillingConfig,
) -> Callable:
    """
    Factory that returns an InvoiceSent handler.

    Returns:
        Handler callable that emails the invoice link to the recipient
    """

    def handler(event: InvoiceSent):
        invoice = event.invoice
        issuer = issuer_for(invoice, invoice_store, billing_store)
        amount = format_usd(invoice.total)
        due = invoice.due_date.strftime("%b %d, %Y") if invoice.due_date else "Upon receipt"

        email_client.send_email(
            to=event.recipient_email,
            subject=f"Invoice {invoice.invoice_number} from {issuer.name}: {amount} due by {due}",
            body=(
                f"Hi {event.recipient_name or 'there'},\n\n"
                f"{issuer.name} has sent you invoice {invoice.invoice_number} for {amount}.\n"
                f"Due: {due}\n\n"
                f"View and pay online: {invoice_link(config, invoice.viewing_token)}\n"
            ),
            reply_to=issuer.reply_to,
        )

    return handler


def handle_payment_recorded(
    email_client: EmailGatewayClient,
    invoice_store: PostgresInvoiceStore,
    billing_store: PostgresBillingStore,
) -> Callable:
    """
    Factory that returns a PaymentRecorded handler.

    Invoices without a client email on file get no receipt.
    """

    def handler(event: PaymentRecorded):
        invoice = event.invoice
        if invoice.client_id is None:
            return
        client = invoice_store.get_client_contact(invoice.client_id)
        if not client or not client.get("email"):
            logger.debug(f"No client email for receipt on invoice {invoice.invoice_number}")
            return

        issuer = issuer_for(invoice, invoice_store, billing_store)
        paid = format_usd(event.payment.amount)
        email_client.send_email(
            to=client["email"],
            subject=f"Payment of {paid} received on Invoice {invoice.invoice_number}",
            body=(
                f"Hi {client.get('name') or 'there'},\n\n"
                f"A payment of {paid} has been recorded on invoice {invoice.invoice_number} "
                f"from {issuer.name}.\n"
                f"Remaining balance: {format_usd(invoice.amount_due)}\n"
            ),
            reply_to=issuer.reply_to,
        )

    return handler
