"""
Invoice service: the client-facing invoice ledger.

Invoices are created as drafts, edited freely while draft, then sent to a
client through a public token link. Payments accumulate until the balance
reaches zero. Status rules live in core/invoice_state.py and all money
arithmetic in core/ledger.py; this service loads, checks, persists, audits
and publishes.
"""

import logging
import secrets
from datetime import date, datetime, time, timezone
from decimal import Decimal
from uuid import UUID

from auth.permissions import Permissions
from core.audit import AuditAction, AuditLogger, compute_changes
from core.config import BillingConfig
from core.errors import AuthorizationError, NotFoundError, StateConflict, ValidationError
from core.event_bus import EventBus
from core.events import InvoicePaid, InvoiceSent, InvoiceViewed, InvoiceVoided, PaymentRecorded
from core.invoice_state import InvoiceAction, PAYABLE, check_action
from core.ledger import apply_payment, build_line_items, compute_totals, totals_for_items
from core.models import (
    ChangeOrderStatus,
    Invoice,
    InvoiceCreate,
    InvoiceDetail,
    InvoiceFilter,
    InvoiceSettings,
    InvoiceSettingsUpdate,
    InvoiceStatus,
    InvoiceUpdate,
    PaymentCreate,
    PaymentResult,
    PublicBusiness,
    PublicChangeOrder,
    PublicClient,
    PublicInvoiceView,
    PublicLineItem,
    PublicPayment,
    PublicPaymentSession,
)
from core.money import format_usd, to_money
from core.plans import PlanTier, plan_config
from core.ports import PaymentGateway
from core.stores.billing_store import PostgresBillingStore
from core.stores.invoice_store import PostgresInvoiceStore
from utils.timezone import days_from_now, now_utc, today_utc
from utils.user_context import get_current_user_id

logger = logging.getLogger(__name__)


def _start_of_month(today: date) -> datetime:
    return datetime.combine(today.replace(day=1), time.min, tzinfo=timezone.utc)


def generate_viewing_token() -> str:
    """Opaque, unguessable token for the public invoice link."""
    return secrets.token_urlsafe(32)


class InvoiceService:
    """Service for invoice operations."""

    def __init__(
        self,
        store: PostgresInvoiceStore,
        billing_store: PostgresBillingStore,
        permissions: Permissions,
        audit: AuditLogger,
        event_bus: EventBus,
        config: BillingConfig,
        payment_gateway: PaymentGateway | None = None,
    ):
        self.store = store
        self.billing_store = billing_store
        self.permissions = permissions
        self.audit = audit
        self.event_bus = event_bus
        self.config = config
        self.payment_gateway = payment_gateway

    # -------------------------------------------------------------------------
    # Loading
    # -------------------------------------------------------------------------

    def _load(self, invoice_id: UUID) -> Invoice:
        invoice = self.store.get_invoice(invoice_id)
        if invoice is None:
            raise NotFoundError("Invoice not found")
        return invoice

    def _load_for_member(self, invoice_id: UUID) -> Invoice:
        invoice = self._load(invoice_id)
        self.permissions.require_member(invoice.business_id)
        return invoice

    def _load_by_token(self, token: str | None) -> Invoice:
        if not token:
            raise ValidationError("Missing token")
        invoice = self.store.get_invoice_by_token(token)
        if invoice is None:
            raise NotFoundError("Invalid or expired invoice link")
        return invoice

    def _settings_or_default(self, business_id: UUID) -> InvoiceSettings:
        return self.store.get_settings(business_id) or InvoiceSettings(business_id=business_id)

    # -------------------------------------------------------------------------
    # Create / read
    # -------------------------------------------------------------------------

    def create(self, data: InvoiceCreate) -> Invoice:
        """
        Create a draft invoice.

        Tax rate and payment terms fall back to the business's invoice
        settings, then to configured defaults. The invoice number is
        allocated in the same transaction as the insert.

        Raises:
            AuthorizationError: Caller is not a member, or the plan's monthly limit is reached
        """
        user_id = get_current_user_id()
        self.permissions.require_member(data.business_id)
        self._check_invoice_limit(data.business_id)

        settings = self._settings_or_default(data.business_id)
        tax_rate = data.tax_rate if data.tax_rate is not None else settings.default_tax_rate
        totals = totals_for_items(data.line_items, tax_rate)

        fields = {
            "client_id": data.client_id,
            "project_id": data.project_id,
            "status": InvoiceStatus.DRAFT,
            **totals.as_columns(),
            "issue_date": data.issue_date or today_utc(),
            "due_date": data.due_date,
            "payment_terms": (
                data.payment_terms
                or settings.default_payment_terms
                or self.config.default_payment_terms
            ),
            "notes": data.notes,
            "internal_notes": data.internal_notes,
            "created_by": user_id,
        }
        invoice = self.store.create_invoice(
            data.business_id,
            fields,
            build_line_items(data.line_items),
            self.config.invoice_number_prefix,
        )

        self.audit.log_change(
            entity_type="invoice",
            entity_id=invoice.id,
            action=AuditAction.CREATE,
            changes={
                "created": {
                    "invoice_number": invoice.invoice_number,
                    "line_items": len(data.line_items),
                    "subtotal": invoice.subtotal,
                    "tax_rate": invoice.tax_rate,
                    "total": invoice.total,
                }
            },
        )
        return invoice

    def _check_invoice_limit(self, business_id: UUID) -> None:
        state = self.billing_store.get_state(business_id)
        tier = state.plan_tier if state else PlanTier.FREE
        limit = plan_config(tier).max_invoices_per_month
        if limit < 0:
            return
        count = self.store.count_invoices_since(business_id, _start_of_month(today_utc()))
        if count >= limit:
            raise AuthorizationError("Invoice limit reached for your plan. Upgrade to create more invoices.")

    def get(self, invoice_id: UUID) -> InvoiceDetail:
        """Invoice with line items, payments and all change orders."""
        invoice = self._load_for_member(invoice_id)
        return InvoiceDetail(
            **invoice.model_dump(),
            line_items=self.store.list_line_items(invoice_id),
            payments=self.store.list_payments(invoice_id),
            change_orders=self.store.list_change_orders(invoice_id),
        )

    def list_invoices(self, business_id: UUID, filters: InvoiceFilter | None = None) -> list[Invoice]:
        """List a business's invoices, newest first. Runs the overdue sweep first."""
        self.permissions.require_member(business_id)
        self.mark_overdue(business_id=business_id)
        return self.store.list_invoices(business_id, filters)

    # -------------------------------------------------------------------------
    # Draft edits
    # -------------------------------------------------------------------------

    def update_draft(self, invoice_id: UUID, data: InvoiceUpdate) -> Invoice:
        """
        Edit a draft. Line items, when given, replace the existing set and
        totals are recomputed; a tax-rate-only change recomputes from the
        stored subtotal.

        Raises:
            StateConflict: Invoice is not a draft
        """
        current = self._load_for_member(invoice_id)
        check_action(current.status, InvoiceAction.EDIT)

        changes = data.model_dump(exclude_unset=True, exclude={"line_items"})
        tax_rate = data.tax_rate if data.tax_rate is not None else current.tax_rate
        changes.pop("tax_rate", None)

        if data.line_items is not None:
            totals = totals_for_items(data.line_items, tax_rate)
            updated = self.store.replace_line_items(
                invoice_id,
                build_line_items(data.line_items),
                {**changes, **totals.as_columns()},
            )
        else:
            if data.tax_rate is not None:
                changes.update(compute_totals(current.subtotal, tax_rate).as_columns())
            if not changes:
                return current
            updated = self.store.update_invoice(invoice_id, changes, expected_status=InvoiceStatus.DRAFT)

        diff = compute_changes(current.model_dump(mode="json"), updated.model_dump(mode="json"))
        if data.line_items is not None:
            diff["line_items"] = {"old": None, "new": len(data.line_items)}
        if diff:
            self.audit.log_change("invoice", invoice_id, AuditAction.UPDATE, diff)
        return updated

    # -------------------------------------------------------------------------
    # Send / view
    # -------------------------------------------------------------------------

    def send(
        self,
        invoice_id: UUID,
        recipient_email: str | None = None,
        recipient_name: str | None = None,
    ) -> Invoice:
        """
        Send (or re-send) an invoice with a fresh public link.

        The email itself is dispatched by the InvoiceSent handler.

        Raises:
            StateConflict: Invoice is not draft or sent
            ValidationError: No recipient email given or on file
        """
        current = self._load_for_member(invoice_id)
        check_action(current.status, InvoiceAction.SEND)

        client = self.store.get_client_contact(current.client_id) if current.client_id else None
        recipient_email = recipient_email or (client or {}).get("email")
        recipient_name = recipient_name or (client or {}).get("name") or "Client"
        if not recipient_email:
            raise ValidationError("No recipient email. Provide email in request or set client email.")

        updated = self.store.update_invoice(
            invoice_id,
            {
                "status": InvoiceStatus.SENT,
                "viewing_token": generate_viewing_token(),
                "token_expires_at": days_from_now(self.config.viewing_token_expiry_days),
                "sent_at": now_utc(),
            },
            expected_status=current.status,
        )

        self.audit.log_change(
            entity_type="invoice",
            entity_id=invoice_id,
            action=AuditAction.UPDATE,
            changes={
                "status": {"old": current.status.value, "new": InvoiceStatus.SENT.value},
                "sent_at": {"old": current.sent_at, "new": updated.sent_at},
                "recipient_email": {"old": None, "new": recipient_email},
            },
        )

        self.event_bus.publish(InvoiceSent.create(
            invoice=updated,
            recipient_email=recipient_email,
            recipient_name=recipient_name,
        ))
        return updated

    def view_by_token(self, token: str | None) -> PublicInvoiceView:
        """
        Public, unauthenticated view of an invoice.

        The first view of a sent invoice moves it to viewed. Expired links
        still open once the invoice is paid.

        Raises:
            ValidationError: Missing token
            NotFoundError: Unknown token
            StateConflict: Link expired
        """
        invoice = self._load_by_token(token)

        if (
            invoice.status != InvoiceStatus.PAID
            and invoice.token_expires_at is not None
            and invoice.token_expires_at < now_utc()
        ):
            raise StateConflict("This invoice link has expired")

        if invoice.status == InvoiceStatus.SENT:
            try:
                invoice = self.store.update_invoice(
                    invoice.id,
                    {"status": InvoiceStatus.VIEWED, "viewed_at": now_utc()},
                    expected_status=InvoiceStatus.SENT,
                )
            except StateConflict:
                # A concurrent view or payment already moved it on.
                invoice = self._load(invoice.id)
            else:
                self.event_bus.publish(InvoiceViewed.create(invoice=invoice))

        return self._public_view(invoice)

    def _public_view(self, invoice: Invoice) -> PublicInvoiceView:
        settings = self.store.get_settings(invoice.business_id)
        state = self.billing_store.get_state(invoice.business_id)
        client = self.store.get_client_contact(invoice.client_id) if invoice.client_id else None

        business = PublicBusiness(
            name=(settings and settings.company_name) or (state and state.name) or "",
            address=(settings and settings.company_address) or "",
            phone=(settings and settings.company_phone) or "",
            email=(settings and settings.company_email) or "",
            footer_text=(settings and settings.footer_text) or "",
        )
        payments = sorted(self.store.list_payments(invoice.id), key=lambda p: p.payment_date, reverse=True)

        return PublicInvoiceView(
            **invoice.model_dump(include=set(PublicInvoiceView.model_fields) - {
                "client", "line_items", "payments", "change_orders", "business",
            }),
            client=PublicClient.model_validate(client) if client else None,
            line_items=[
                PublicLineItem.model_validate(item.model_dump())
                for item in self.store.list_line_items(invoice.id)
            ],
            payments=[PublicPayment.model_validate(p.model_dump(mode="json")) for p in payments],
            change_orders=[
                PublicChangeOrder.model_validate(co.model_dump())
                for co in self.store.list_change_orders(invoice.id, status=ChangeOrderStatus.APPROVED)
            ],
            business=business,
        )

    # -------------------------------------------------------------------------
    # Payments
    # -------------------------------------------------------------------------

    def record_payment(self, invoice_id: UUID, data: PaymentCreate) -> PaymentResult:
        """
        Record a payment against an invoice.

        Raises:
            StateConflict: Invoice is void, paid or draft, or another payment landed first
            ValidationError: Amount not positive or above the amount due
        """
        user_id = get_current_user_id()
        current = self._load_for_member(invoice_id)
        outcome = apply_payment(current, data.amount)

        invoice_changes = {
            "amount_paid": outcome.amount_paid,
            "amount_due": outcome.amount_due,
            "status": outcome.status,
        }
        if outcome.fully_paid:
            invoice_changes["paid_at"] = now_utc()

        updated, payment = self.store.record_payment(
            current,
            {
                "amount": to_money(data.amount),
                "payment_method": data.payment_method,
                "reference_number": data.reference_number,
                "notes": data.notes,
                "payment_date": data.payment_date or today_utc(),
                "recorded_by": user_id,
            },
            invoice_changes,
        )

        self.audit.log_change(
            entity_type="invoice_payment",
            entity_id=payment.id,
            action=AuditAction.CREATE,
            changes={"created": payment.model_dump(mode="json")},
        )
        self.audit.log_change(
            entity_type="invoice",
            entity_id=invoice_id,
            action=AuditAction.UPDATE,
            changes={
                "amount_paid": {"old": current.amount_paid, "new": updated.amount_paid},
                "amount_due": {"old": current.amount_due, "new": updated.amount_due},
                "status": {"old": current.status.value, "new": updated.status.value},
            },
        )

        self.event_bus.publish(PaymentRecorded.create(invoice=updated, payment=payment))
        if outcome.fully_paid:
            self.event_bus.publish(InvoicePaid.create(invoice=updated))

        return PaymentResult(
            amount_paid=updated.amount_paid,
            amount_due=updated.amount_due,
            status=updated.status,
        )

    def prepare_public_payment(self, token: str | None, amount: Decimal | None) -> PublicPaymentSession:
        """
        Start an online card payment from the public link.

        Only creates the provider payment intent. Card details never reach
        this service.

        Raises:
            ValidationError: Missing token, bad amount, or amount above balance due
            NotFoundError: Unknown token
            StateConflict: Link expired, invoice not payable, or online payments unavailable
        """
        if amount is None or to_money(amount) <= 0:
            raise ValidationError("Invalid amount")
        invoice = self._load_by_token(token)
        amount = to_money(amount)

        if invoice.token_expires_at is not None and invoice.token_expires_at < now_utc():
            raise StateConflict("This invoice link has expired")
        if invoice.status not in PAYABLE:
            raise StateConflict(f"Cannot pay a {invoice.status.value} invoice")
        if amount > invoice.amount_due:
            raise ValidationError(f"Amount exceeds balance due of {format_usd(invoice.amount_due)}")

        state = self.billing_store.get_state(invoice.business_id)
        if state is None:
            raise NotFoundError("Business not found")
        if self.payment_gateway is None or not plan_config(state.plan_tier).has_online_payments:
            raise StateConflict("Online payments are not available for this invoice")

        intent = self.payment_gateway.create_payment_intent(
            amount,
            self.config.currency,
            {
                "invoice_id": str(invoice.id),
                "business_id": str(invoice.business_id),
                "invoice_number": invoice.invoice_number,
            },
        )
        logger.info(f"Payment intent {intent.id} created for invoice {invoice.invoice_number}")
        return PublicPaymentSession(
            client_secret=intent.client_secret,
            amount=amount,
            payment_intent_id=intent.id,
        )

    # -------------------------------------------------------------------------
    # Void / overdue
    # -------------------------------------------------------------------------

    def void(self, invoice_id: UUID, reason: str | None = None) -> Invoice:
        """
        Void an invoice. Payments already recorded stay on it.

        Raises:
            AuthorizationError: Caller is not Owner/Admin
            StateConflict: Invoice is paid or already void
        """
        current = self._load(invoice_id)
        self.permissions.require_business_admin(current.business_id, "Only admins can void invoices")
        check_action(current.status, InvoiceAction.VOID)

        changes = {"status": InvoiceStatus.VOID, "voided_at": now_utc()}
        if current.status != InvoiceStatus.DRAFT:
            note = f"Voided: {reason or ''}".rstrip()
            changes["internal_notes"] = (
                f"{current.internal_notes}\n\n{note}" if current.internal_notes else note
            )

        updated = self.store.update_invoice(invoice_id, changes, expected_status=current.status)

        self.audit.log_change(
            entity_type="invoice",
            entity_id=invoice_id,
            action=AuditAction.UPDATE,
            changes={
                "status": {"old": current.status.value, "new": InvoiceStatus.VOID.value},
                "voided_at": {"old": None, "new": updated.voided_at},
                "reason": {"old": None, "new": reason},
            },
        )
        self.event_bus.publish(InvoiceVoided.create(invoice=updated, reason=reason))
        return updated

    def mark_overdue(self, business_id: UUID | None = None, today: date | None = None) -> list[Invoice]:
        """
        Label sent/viewed invoices past due as overdue. Idempotent.

        Runs for one business on list reads, or for all from the scheduler.
        """
        flipped = self.store.mark_overdue(today or today_utc(), business_id=business_id)
        for invoice in flipped:
            self.audit.log_change(
                entity_type="invoice",
                entity_id=invoice.id,
                action=AuditAction.UPDATE,
                changes={"status": {"old": "sent/viewed", "new": InvoiceStatus.OVERDUE.value}},
            )
        if flipped:
            logger.info(f"Marked {len(flipped)} invoices overdue")
        return flipped

    # -------------------------------------------------------------------------
    # Settings
    # -------------------------------------------------------------------------

    def get_settings(self, business_id: UUID) -> InvoiceSettings:
        self.permissions.require_member(business_id)
        return self._settings_or_default(business_id)

    def update_settings(self, business_id: UUID, data: InvoiceSettingsUpdate) -> InvoiceSettings:
        """
        Raises:
            AuthorizationError: Caller is not Owner/Admin
        """
        self.permissions.require_business_admin(business_id, "Only admins can update invoice settings")
        current = self._settings_or_default(business_id)
        updated = self.store.upsert_settings(business_id, data.model_dump(exclude_unset=True))

        changes = compute_changes(current.model_dump(mode="json"), updated.model_dump(mode="json"))
        if changes:
            self.audit.log_change("invoice_settings", business_id, AuditAction.UPDATE, changes)
        return updated

