"""
Change orders: amendments to an issued invoice.

A change order starts pending. Approving it appends one line item for its
amount and recomputes the invoice totals in the same transaction; rejecting
it has no ledger effect. Both are one-way.
"""

import logging
from uuid import UUID

from auth.permissions import Permissions
from core.audit import AuditAction, AuditLogger
from core.errors import NotFoundError, StateConflict, ValidationError
from core.event_bus import EventBus
from core.events import ChangeOrderApproved, InvoicePaid
from core.invoice_state import InvoiceAction, check_action, require_transition
from core.ledger import apply_change_order, next_sort_order
from core.models import (
    ChangeOrder,
    ChangeOrderApproval,
    ChangeOrderCreate,
    ChangeOrderStatus,
    Invoice,
    InvoiceStatus,
)
from core.money import to_money
from core.stores.invoice_store import PostgresInvoiceStore
from utils.timezone import now_utc
from utils.user_context import get_current_user_id

logger = logging.getLogger(__name__)


class ChangeOrderService:
    """Create, approve and reject change orders on invoices."""

    def __init__(
        self,
        store: PostgresInvoiceStore,
        permissions: Permissions,
        audit: AuditLogger,
        event_bus: EventBus,
    ):
        self.store = store
        self.permissions = permissions
        self.audit = audit
        self.event_bus = event_bus

    def _load_invoice(self, invoice_id: UUID) -> Invoice:
        invoice = self.store.get_invoice(invoice_id)
        if invoice is None:
            raise NotFoundError("Invoice not found")
        return invoice

    def _load_pending(self, invoice: Invoice, change_order_id: UUID) -> ChangeOrder:
        change_order = self.store.get_change_order(invoice.id, change_order_id)
        if change_order is None:
            raise NotFoundError("Change order not found")
        if change_order.status != ChangeOrderStatus.PENDING:
            raise StateConflict(f"Change order is already {change_order.status.value}")
        return change_order

    def create(self, invoice_id: UUID, data: ChangeOrderCreate) -> ChangeOrder:
        """
        Add a pending change order. Amount may be negative (a credit).

        Raises:
            StateConflict: Invoice is paid or void
            ValidationError: Missing title or amount
        """
        user_id = get_current_user_id()
        invoice = self._load_invoice(invoice_id)
        check_action(invoice.status, InvoiceAction.ADD_CHANGE_ORDER)
        self.permissions.require_member(invoice.business_id)

        title = (data.title or "").strip()
        if not title:
            raise ValidationError("Title is required")
        if data.amount is None:
            raise ValidationError("Valid amount is required")

        change_order = self.store.create_change_order(invoice, {
            "title": title,
            "description": (data.description or "").strip() or None,
            "amount": to_money(data.amount),
            "created_by": user_id,
        })

        self.audit.log_change(
            entity_type="change_order",
            entity_id=change_order.id,
            action=AuditAction.CREATE,
            changes={"created": change_order.model_dump(mode="json")},
        )
        logger.info(
            f"Change order #{change_order.change_order_number} ({change_order.amount}) "
            f"created on invoice {invoice.invoice_number}"
        )
        return change_order

    def approve(self, invoice_id: UUID, change_order_id: UUID) -> ChangeOrderApproval:
        """
        Approve a pending change order and fold it into the invoice.

        If a credit brings the balance to exactly zero on an invoice that has
        payments, the invoice becomes paid.

        Raises:
            AuthorizationError: Caller is not Owner/Admin
            NotFoundError: Invoice or change order missing
            StateConflict: Change order not pending, invoice paid/void, or
                the credit exceeds the remaining balance
        """
        user_id = get_current_user_id()
        invoice = self._load_invoice(invoice_id)
        self.permissions.require_business_admin(
            invoice.business_id, "Only admins can approve change orders"
        )
        change_order = self._load_pending(invoice, change_order_id)
        check_action(invoice.status, InvoiceAction.APPROVE_CHANGE_ORDER)

        totals = apply_change_order(invoice, change_order.amount)
        line_item = {
            "description": f"Change Order #{change_order.change_order_number}: {change_order.title}",
            "quantity": 1,
            "unit_price": change_order.amount,
            "amount": to_money(change_order.amount),
            "sort_order": next_sort_order(self.store.list_line_items(invoice_id)),
        }

        invoice_changes = totals.as_columns()
        settled = totals.amount_due == 0 and totals.amount_paid > 0
        if settled:
            require_transition(invoice.status, InvoiceStatus.PAID)
            invoice_changes.update(status=InvoiceStatus.PAID, paid_at=now_utc())

        approved, updated = self.store.approve_change_order(
            change_order, invoice, line_item, invoice_changes, approved_by=user_id
        )

        self.audit.log_change(
            entity_type="change_order",
            entity_id=approved.id,
            action=AuditAction.UPDATE,
            changes={"status": {"old": ChangeOrderStatus.PENDING.value, "new": approved.status.value}},
        )
        self.audit.log_change(
            entity_type="invoice",
            entity_id=invoice_id,
            action=AuditAction.UPDATE,
            changes={
                "subtotal": {"old": invoice.subtotal, "new": updated.subtotal},
                "total": {"old": invoice.total, "new": updated.total},
                "amount_due": {"old": invoice.amount_due, "new": updated.amount_due},
                "change_order": {"old": None, "new": approved.change_order_number},
            },
        )

        self.event_bus.publish(ChangeOrderApproved.create(change_order=approved, invoice=updated))
        if settled:
            self.event_bus.publish(InvoicePaid.create(invoice=updated))

        return ChangeOrderApproval(
            new_subtotal=updated.subtotal,
            new_total=updated.total,
            new_amount_due=updated.amount_due,
        )

    def reject(self, invoice_id: UUID, change_order_id: UUID) -> ChangeOrder:
        """
        Raises:
            AuthorizationError: Caller is not Owner/Admin
            StateConflict: Change order not pending
        """
        invoice = self._load_invoice(invoice_id)
        self.permissions.require_business_admin(
            invoice.business_id, "Only admins can reject change orders"
        )
        change_order = self._load_pending(invoice, change_order_id)

        rejected = self.store.reject_change_order(change_order.id)
        self.audit.log_change(
            entity_type="change_order",
            entity_id=rejected.id,
            action=AuditAction.UPDATE,
            changes={"status": {"old": ChangeOrderStatus.PENDING.value, "new": rejected.status.value}},
        )
        return rejected
