"""
Invoice ledger arithmetic.

Pure functions, no I/O. Every path that changes an invoice's money fields
goes through compute_totals so these hold after each mutation:

    total == subtotal + tax_amount
    tax_amount == round(subtotal * tax_rate / 100, 2)
    amount_due == total - amount_paid
    subtotal == sum(line_item.amount)
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Sequence

from core.errors import StateConflict, ValidationError
from core.invoice_state import InvoiceAction, check_action, status_after_payment
from core.models import Invoice, InvoiceLineItem, InvoiceStatus, LineItemInput
from core.money import ZERO, format_usd, money_sum, tax_amount, to_money


@dataclass(frozen=True)
class InvoiceTotals:
    subtotal: Decimal
    tax_rate: Decimal
    tax_amount: Decimal
    total: Decimal
    amount_paid: Decimal
    amount_due: Decimal

    def as_columns(self) -> dict:
        return {
            "subtotal": self.subtotal,
            "tax_rate": self.tax_rate,
            "tax_amount": self.tax_amount,
            "total": self.total,
            "amount_paid": self.amount_paid,
            "amount_due": self.amount_due,
        }


@dataclass(frozen=True)
class PaymentOutcome:
    amount_paid: Decimal
    amount_due: Decimal
    status: InvoiceStatus

    @property
    def fully_paid(self) -> bool:
        return self.status == InvoiceStatus.PAID


def compute_totals(
    subtotal: Decimal,
    tax_rate: Decimal,
    amount_paid: Decimal = ZERO,
) -> InvoiceTotals:
    subtotal = to_money(subtotal)
    rate = Decimal(tax_rate)
    tax = tax_amount(subtotal, rate)
    total = subtotal + tax
    paid = to_money(amount_paid)
    return InvoiceTotals(
        subtotal=subtotal,
        tax_rate=rate,
        tax_amount=tax,
        total=total,
        amount_paid=paid,
        amount_due=total - paid,
    )


def build_line_items(items: Sequence[LineItemInput], start_sort_order: int = 0) -> list[dict]:
    """Line item rows (without ids) with amounts and explicit sort order."""
    return [
        {
            "description": item.description,
            "quantity": item.quantity,
            "unit_price": item.unit_price,
            "amount": item.amount,
            "sort_order": start_sort_order + idx,
        }
        for idx, item in enumerate(items)
    ]


def totals_for_items(
    items: Sequence[LineItemInput],
    tax_rate: Decimal,
    amount_paid: Decimal = ZERO,
) -> InvoiceTotals:
    """
    Totals for a full set of line items.

    Credit lines may be negative but the invoice as a whole may not be.
    """
    subtotal = money_sum(item.amount for item in items)
    if subtotal < 0:
        raise ValidationError(f"Line items total cannot be negative ({format_usd(subtotal)})")
    return compute_totals(subtotal, tax_rate, amount_paid)


def apply_payment(invoice: Invoice, amount: Decimal) -> PaymentOutcome:
    """
    Validate a payment against the invoice and compute the new balances.

    Raises:
        StateConflict: Invoice is void, paid or still a draft
        ValidationError: Amount is not positive or exceeds the amount due
    """
    check_action(invoice.status, InvoiceAction.RECORD_PAYMENT)

    amount = to_money(amount)
    if amount <= 0:
        raise ValidationError("Payment amount must be positive")
    if amount > invoice.amount_due:
        raise ValidationError(
            f"Payment amount ({format_usd(amount)}) exceeds "
            f"amount due ({format_usd(invoice.amount_due)})"
        )

    amount_paid = to_money(invoice.amount_paid) + amount
    amount_due = to_money(invoice.total) - amount_paid
    return PaymentOutcome(
        amount_paid=amount_paid,
        amount_due=amount_due,
        status=status_after_payment(invoice.status, amount_due),
    )


def apply_change_order(invoice: Invoice, amount: Decimal) -> InvoiceTotals:
    """
    Totals after folding a signed change order amount into the invoice.

    Raises StateConflict if the result would leave a negative amount due,
    i.e. the credit exceeds what is still owed.
    """
    totals = compute_totals(
        to_money(invoice.subtotal) + to_money(amount),
        invoice.tax_rate,
        invoice.amount_paid,
    )
    if totals.amount_due < 0:
        raise StateConflict(
            f"Change order would reduce the amount due below zero "
            f"({format_usd(totals.amount_due)})"
        )
    return totals


def next_sort_order(line_items: Iterable[InvoiceLineItem]) -> int:
    orders = [item.sort_order for item in line_items]
    return max(orders) + 1 if orders else 0


def is_balanced(invoice: Invoice, line_items: Iterable[InvoiceLineItem] | None = None) -> bool:
    """True if the invoice's money fields satisfy every ledger invariant."""
    expected = compute_totals(invoice.subtotal, invoice.tax_rate, invoice.amount_paid)
    if (
        invoice.tax_amount != expected.tax_amount
        or invoice.total != expected.total
        or invoice.amount_due != expected.amount_due
        or invoice.amount_due < 0
    ):
        return False
    if line_items is not None:
        return to_money(invoice.subtotal) == money_sum(item.amount for item in line_items)
    return True
