"""
Persistence for invoices, line items, payments, change orders and settings.

Writes that must stay consistent with each other share one transaction:

- invoice number allocation + invoice insert + line items
- payment row + invoice balance update (compare-and-set on amount_paid)
- change order approval + new line item + invoice totals

A compare-and-set that matches no row means another request changed the
invoice first; the store raises StateConflict and nothing is written.
"""

import logging
from datetime import date, datetime
from typing import Any
from uuid import UUID, uuid4

from clients.postgres_client import PostgresClient, Transaction
from core.errors import NotFoundError, StateConflict
from core.models import (
    ChangeOrder,
    ChangeOrderStatus,
    Invoice,
    InvoiceFilter,
    InvoiceLineItem,
    InvoicePayment,
    InvoiceSettings,
    InvoiceStatus,
)
from utils.timezone import now_utc

logger = logging.getLogger(__name__)

CONCURRENT_UPDATE = "Invoice was changed by another request. Reload and try again."

_SETTINGS_COLUMNS = {
    "default_tax_rate",
    "default_payment_terms",
    "company_name",
    "company_address",
    "company_phone",
    "company_email",
    "footer_text",
}


def _insert(tx: Transaction, table: str, values: dict[str, Any]) -> dict[str, Any]:
    columns = ", ".join(values)
    placeholders = ", ".join(["%s"] * len(values))
    return tx.execute_single(
        f"INSERT INTO {table} ({columns}) VALUES ({placeholders}) RETURNING *",
        tuple(values.values()),
    )


def _insert_line_items(tx: Transaction, invoice_id: UUID, items: list[dict]) -> list[InvoiceLineItem]:
    now = now_utc()
    rows = [
        _insert(tx, "invoice_line_items", {"id": uuid4(), "invoice_id": invoice_id, **item, "created_at": now})
        for item in items
    ]
    return [InvoiceLineItem.model_validate(row) for row in rows]


def _set_clause(changes: dict[str, Any]) -> tuple[str, list[Any]]:
    changes = {**changes, "updated_at": now_utc()}
    return ", ".join(f"{column} = %s" for column in changes), list(changes.values())


def format_invoice_number(prefix: str, number: int) -> str:
    return f"{prefix}{number:04d}"


class PostgresInvoiceStore:
    """Invoice ledger on Postgres."""

    def __init__(self, postgres: PostgresClient):
        self._db = postgres

    # -------------------------------------------------------------------------
    # Invoices
    # -------------------------------------------------------------------------

    def create_invoice(
        self,
        business_id: UUID,
        fields: dict[str, Any],
        line_items: list[dict],
        prefix: str,
    ) -> Invoice:
        """
        Insert a draft invoice with its line items under the next number.

        The counter increment and the insert commit together, so numbers
        are gap-free and never reused.
        """
        with self._db.transaction() as tx:
            allocated = tx.execute_single(
                """
                INSERT INTO invoice_settings (business_id, next_invoice_number, updated_at)
                VALUES (%s, 2, %s)
                ON CONFLICT (business_id) DO UPDATE
                SET next_invoice_number = invoice_settings.next_invoice_number + 1,
                    updated_at = EXCLUDED.updated_at
                RETURNING next_invoice_number - 1 AS number
                """,
                (business_id, now_utc()),
            )["number"]

            now = now_utc()
            row = _insert(tx, "invoices", {
                "id": uuid4(),
                "business_id": business_id,
                "invoice_number": format_invoice_number(prefix, allocated),
                **fields,
                "created_at": now,
                "updated_at": now,
            })
            _insert_line_items(tx, row["id"], line_items)

        invoice = Invoice.model_validate(row)
        logger.info(f"Created invoice {invoice.invoice_number} for business {business_id}")
        return invoice

    def get_invoice(self, invoice_id: UUID) -> Invoice | None:
        row = self._db.execute_single("SELECT * FROM invoices WHERE id = %s", (invoice_id,))
        return Invoice.model_validate(row) if row else None

    def get_invoice_by_token(self, token: str) -> Invoice | None:
        row = self._db.execute_single("SELECT * FROM invoices WHERE viewing_token = %s", (token,))
        return Invoice.model_validate(row) if row else None

    def list_invoices(self, business_id: UUID, filters: InvoiceFilter | None = None) -> list[Invoice]:
        """Invoices for a business, newest first, narrowed by any filter set."""
        filters = filters or InvoiceFilter()
        conditions = ["business_id = %s"]
        params: list[Any] = [business_id]

        if filters.status is not None:
            conditions.append("status = %s")
            params.append(filters.status)
        if filters.client_id is not None:
            conditions.append("client_id = %s")
            params.append(filters.client_id)
        if filters.project_id is not None:
            conditions.append("project_id = %s")
            params.append(filters.project_id)
        if filters.date_from is not None:
            conditions.append("issue_date >= %s")
            params.append(filters.date_from)
        if filters.date_to is not None:
            conditions.append("issue_date <= %s")
            params.append(filters.date_to)

        rows = self._db.execute(
            f"""
            SELECT * FROM invoices
            WHERE {" AND ".join(conditions)}
            ORDER BY created_at DESC
            """,
            tuple(params),
        )
        return [Invoice.model_validate(row) for row in rows]

    def count_invoices_since(self, business_id: UUID, since: datetime) -> int:
        return self._db.execute_scalar(
            "SELECT COUNT(*) FROM invoices WHERE business_id = %s AND created_at >= %s",
            (business_id, since),
        ) or 0

    def update_invoice(
        self,
        invoice_id: UUID,
        changes: dict[str, Any],
        expected_status: InvoiceStatus | None = None,
    ) -> Invoice:
        """
        Update invoice columns.

        With expected_status, the update only applies if the invoice is still
        in that status.

        Raises:
            NotFoundError: Invoice doesn't exist
            StateConflict: Status moved on since the caller read it
        """
        set_clause, values = _set_clause(changes)
        query = f"UPDATE invoices SET {set_clause} WHERE id = %s"
        params = [*values, invoice_id]
        if expected_status is not None:
            query += " AND status = %s"
            params.append(expected_status)

        rows = self._db.execute_returning(query + " RETURNING *", tuple(params))
        if not rows:
            if expected_status is not None:
                raise StateConflict(CONCURRENT_UPDATE)
            raise NotFoundError(f"Invoice {invoice_id} not found")
        return Invoice.model_validate(rows[0])

    def mark_overdue(self, today: date, business_id: UUID | None = None) -> list[Invoice]:
        """Flip sent/viewed invoices past their due date to overdue."""
        query = """
            UPDATE invoices SET status = 'overdue', updated_at = %s
            WHERE status IN ('sent', 'viewed')
              AND due_date IS NOT NULL AND due_date < %s
        """
        params: list[Any] = [now_utc(), today]
        if business_id is not None:
            query += " AND business_id = %s"
            params.append(business_id)

        rows = self._db.execute_returning(query + " RETURNING *", tuple(params))
        return [Invoice.model_validate(row) for row in rows]

    # -------------------------------------------------------------------------
    # Line items
    # -------------------------------------------------------------------------

    def list_line_items(self, invoice_id: UUID) -> list[InvoiceLineItem]:
        rows = self._db.execute(
            "SELECT * FROM invoice_line_items WHERE invoice_id = %s ORDER BY sort_order",
            (invoice_id,),
        )
        return [InvoiceLineItem.model_validate(row) for row in rows]

    def replace_line_items(
        self,
        invoice_id: UUID,
        line_items: list[dict],
        invoice_changes: dict[str, Any],
    ) -> Invoice:
        """
        Replace a draft's line items wholesale along with its totals.

        Raises:
            StateConflict: Invoice left draft before the write
        """
        set_clause, values = _set_clause(invoice_changes)
        with self._db.transaction() as tx:
            row = tx.execute_single(
                f"UPDATE invoices SET {set_clause} WHERE id = %s AND status = %s RETURNING *",
                (*values, invoice_id, InvoiceStatus.DRAFT),
            )
            if row is None:
                raise StateConflict("Only draft invoices can be edited")

            tx.execute("DELETE FROM invoice_line_items WHERE invoice_id = %s", (invoice_id,))
            _insert_line_items(tx, invoice_id, line_items)

        return Invoice.model_validate(row)

    # -------------------------------------------------------------------------
    # Payments
    # -------------------------------------------------------------------------

    def record_payment(
        self,
        invoice: Invoice,
        payment: dict[str, Any],
        invoice_changes: dict[str, Any],
    ) -> tuple[Invoice, InvoicePayment]:
        """
        Append a payment and move the invoice balance in one transaction.

        The balance update only applies while amount_paid and status still
        match what the caller validated against.

        Raises:
            StateConflict: Another payment or status change landed first
        """
        set_clause, values = _set_clause(invoice_changes)
        with self._db.transaction() as tx:
            row = tx.execute_single(
                f"""
                UPDATE invoices SET {set_clause}
                WHERE id = %s AND amount_paid = %s AND status = %s
                RETURNING *
                """,
                (*values, invoice.id, invoice.amount_paid, invoice.status),
            )
            if row is None:
                raise StateConflict(CONCURRENT_UPDATE)

            payment_row = _insert(tx, "invoice_payments", {
                "id": uuid4(),
                "invoice_id": invoice.id,
                "business_id": invoice.business_id,
                **payment,
                "created_at": now_utc(),
            })

        return Invoice.model_validate(row), InvoicePayment.model_validate(payment_row)

    def list_payments(self, invoice_id: UUID) -> list[InvoicePayment]:
        rows = self._db.execute(
            """
            SELECT * FROM invoice_payments
            WHERE invoice_id = %s
            ORDER BY payment_date, created_at
            """,
            (invoice_id,),
        )
        return [InvoicePayment.model_validate(row) for row in rows]

    # -------------------------------------------------------------------------
    # Change orders
    # -------------------------------------------------------------------------

    def create_change_order(self, invoice: Invoice, fields: dict[str, Any]) -> ChangeOrder:
        """Insert a pending change order numbered after the invoice's existing ones."""
        with self._db.transaction() as tx:
            # Row lock serializes numbering per invoice.
            tx.execute("SELECT id FROM invoices WHERE id = %s FOR UPDATE", (invoice.id,))
            count = tx.execute_single(
                "SELECT COUNT(*) AS n FROM invoice_change_orders WHERE invoice_id = %s",
                (invoice.id,),
            )["n"]
            row = _insert(tx, "invoice_change_orders", {
                "id": uuid4(),
                "invoice_id": invoice.id,
                "business_id": invoice.business_id,
                "change_order_number": count + 1,
                **fields,
                "status": ChangeOrderStatus.PENDING,
                "created_at": now_utc(),
            })
        return ChangeOrder.model_validate(row)

    def get_change_order(self, invoice_id: UUID, change_order_id: UUID) -> ChangeOrder | None:
        row = self._db.execute_single(
            "SELECT * FROM invoice_change_orders WHERE id = %s AND invoice_id = %s",
            (change_order_id, invoice_id),
        )
        return ChangeOrder.model_validate(row) if row else None

    def list_change_orders(
        self,
        invoice_id: UUID,
        status: ChangeOrderStatus | None = None,
    ) -> list[ChangeOrder]:
        query = "SELECT * FROM invoice_change_orders WHERE invoice_id = %s"
        params: list[Any] = [invoice_id]
        if status is not None:
            query += " AND status = %s"
            params.append(status)
        rows = self._db.execute(query + " ORDER BY change_order_number", tuple(params))
        return [ChangeOrder.model_validate(row) for row in rows]

    def approve_change_order(
        self,
        change_order: ChangeOrder,
        invoice: Invoice,
        line_item: dict[str, Any],
        invoice_changes: dict[str, Any],
        approved_by: UUID | None,
    ) -> tuple[ChangeOrder, Invoice]:
        """
        Approve a pending change order and fold it into the invoice.

        Raises:
            StateConflict: Change order no longer pending, or invoice totals moved
        """
        set_clause, values = _set_clause(invoice_changes)
        with self._db.transaction() as tx:
            co_row = tx.execute_single(
                """
                UPDATE invoice_change_orders
                SET status = %s, approved_by = %s, approved_at = %s
                WHERE id = %s AND status = %s
                RETURNING *
                """,
                (ChangeOrderStatus.APPROVED, approved_by, now_utc(),
                 change_order.id, ChangeOrderStatus.PENDING),
            )
            if co_row is None:
                raise StateConflict("Change order was processed by another request")

            invoice_row = tx.execute_single(
                f"""
                UPDATE invoices SET {set_clause}
                WHERE id = %s AND subtotal = %s AND amount_paid = %s AND status = %s
                RETURNING *
                """,
                (*values, invoice.id, invoice.subtotal, invoice.amount_paid, invoice.status),
            )
            if invoice_row is None:
                raise StateConflict(CONCURRENT_UPDATE)

            _insert_line_items(tx, invoice.id, [line_item])

        return ChangeOrder.model_validate(co_row), Invoice.model_validate(invoice_row)

    def reject_change_order(self, change_order_id: UUID) -> ChangeOrder:
        rows = self._db.execute_returning(
            """
            UPDATE invoice_change_orders SET status = %s
            WHERE id = %s AND status = %s
            RETURNING *
            """,
            (ChangeOrderStatus.REJECTED, change_order_id, ChangeOrderStatus.PENDING),
        )
        if not rows:
            raise StateConflict("Change order was processed by another request")
        return ChangeOrder.model_validate(rows[0])

    # -------------------------------------------------------------------------
    # Settings and contacts
    # -------------------------------------------------------------------------

    def get_settings(self, business_id: UUID) -> InvoiceSettings | None:
        row = self._db.execute_single(
            "SELECT * FROM invoice_settings WHERE business_id = %s",
            (business_id,),
        )
        return InvoiceSettings.model_validate(row) if row else None

    def upsert_settings(self, business_id: UUID, changes: dict[str, Any]) -> InvoiceSettings:
        """Create settings with defaults if missing, then apply changes."""
        unknown = set(changes) - _SETTINGS_COLUMNS
        if unknown:
            raise ValueError(f"Not updatable settings fields: {', '.join(sorted(unknown))}")

        with self._db.transaction() as tx:
            tx.execute(
                """
                INSERT INTO invoice_settings (business_id, next_invoice_number, updated_at)
                VALUES (%s, 1, %s)
                ON CONFLICT (business_id) DO NOTHING
                """,
                (business_id, now_utc()),
            )
            set_clause, values = _set_clause(changes)
            row = tx.execute_single(
                f"UPDATE invoice_settings SET {set_clause} WHERE business_id = %s RETURNING *",
                (*values, business_id),
            )
        return InvoiceSettings.model_validate(row)

    def get_client_contact(self, client_id: UUID) -> dict[str, Any] | None:
        """Name and contact details of the invoiced client."""
        return self._db.execute_single(
            "SELECT id, name, email, company_name, phone FROM clients WHERE id = %s",
            (client_id,),
        )
