"""Integration tests for PostgresInvoiceStore against a real database.

Skipped unless TEST_DATABASE_URL is set. Numbering and the payment
compare-and-set are enforced by SQL here, not by any in-process lock.
"""

import threading
from decimal import Decimal

import pytest

from core.errors import StateConflict, ValidationError
from core.models import InvoiceCreate, InvoiceStatus, LineItemInput, PaymentCreate
from core.services.invoice_service import InvoiceService
from core.stores.invoice_store import PostgresInvoiceStore
from utils.user_context import user_context


@pytest.fixture
def pg_store(db):
    return PostgresInvoiceStore(db)


@pytest.fixture
def pg_invoices(pg_store, billing_store, permissions, audit, event_bus, config):
    return InvoiceService(pg_store, billing_store, permissions, audit, event_bus, config)


def _create_data(business_id):
    return InvoiceCreate(
        business_id=business_id,
        line_items=[
            LineItemInput(description="Labor", quantity=2, unit_price=50),
            LineItemInput(description="Parts", quantity=1, unit_price=25),
        ],
        tax_rate=Decimal("8"),
    )


@pytest.fixture
def sent_invoice(pg_invoices, db_business_id, as_test_user):
    draft = pg_invoices.create(_create_data(db_business_id))
    return pg_invoices.send(draft.id, recipient_email="jane@example.com")


def _balance_row(db, invoice_id):
    return db.execute_single(
        "SELECT amount_paid, amount_due, status, updated_at FROM invoices WHERE id = %s",
        (invoice_id,),
    )


class TestInvoiceNumbering:

    def test_persisted_totals(self, pg_invoices, pg_store, db_business_id, as_test_user):
        invoice = pg_invoices.create(_create_data(db_business_id))

        stored = pg_store.get_invoice(invoice.id)
        assert stored.subtotal == Decimal("125.00")
        assert stored.tax_amount == Decimal("10.00")
        assert stored.total == Decimal("135.00")
        assert stored.amount_due == Decimal("135.00")
        assert stored.status == InvoiceStatus.DRAFT
        assert [i.amount for i in pg_store.list_line_items(invoice.id)] == [Decimal("100.00"), Decimal("25.00")]

    def test_concurrent_creates_are_gap_free(self, pg_invoices, pg_store, db_business_id, test_user_id):
        errors = []

        def create():
            try:
                with user_context(test_user_id):
                    pg_invoices.create(_create_data(db_business_id))
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=create) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        numbers = sorted(i.invoice_number for i in pg_store.list_invoices(db_business_id))
        assert numbers == [f"INV-{n:04d}" for n in range(1, 9)]
        assert pg_store.get_settings(db_business_id).next_invoice_number == 9


class TestPayments:

    def test_overpayment_leaves_row_untouched(self, pg_invoices, pg_store, db, sent_invoice):
        before = _balance_row(db, sent_invoice.id)

        with pytest.raises(ValidationError, match="exceeds amount due"):
            pg_invoices.record_payment(sent_invoice.id, PaymentCreate(amount=Decimal("135.01")))

        assert _balance_row(db, sent_invoice.id) == before
        assert pg_store.list_payments(sent_invoice.id) == []

    def test_stale_snapshot_loses_race(self, pg_store, db, sent_invoice, test_user_id):
        """Two writers validated against the same balance; only the first lands."""
        payment = {"amount": Decimal("100.00"), "payment_date": sent_invoice.issue_date, "recorded_by": test_user_id}
        changes = {
            "amount_paid": Decimal("100.00"),
            "amount_due": Decimal("35.00"),
            "status": InvoiceStatus.PARTIALLY_PAID,
        }
        pg_store.record_payment(sent_invoice, payment, changes)
        after_first = _balance_row(db, sent_invoice.id)

        with pytest.raises(StateConflict):
            pg_store.record_payment(sent_invoice, payment, changes)

        assert _balance_row(db, sent_invoice.id) == after_first
        assert len(pg_store.list_payments(sent_invoice.id)) == 1

    def test_partial_then_full(self, pg_invoices, pg_store, sent_invoice):
        first = pg_invoices.record_payment(sent_invoice.id, PaymentCreate(amount=Decimal("50")))
        assert first.status == InvoiceStatus.PARTIALLY_PAID
        assert first.amount_due == Decimal("85.00")

        final = pg_invoices.record_payment(sent_invoice.id, PaymentCreate(amount=Decimal("85")))
        assert final.status == InvoiceStatus.PAID
        assert pg_store.get_invoice(sent_invoice.id).paid_at is not None
