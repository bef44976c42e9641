"""
Invoice state machine.

One table answers both "can status A become status B" and "can I do X to
an invoice in status A". Services ask here instead of checking status
strings inline.

    draft -> sent -> viewed -> {partially_paid, paid, overdue} -> paid
    void is reachable from every non-terminal status
    paid and void are terminal
"""

from enum import Enum

from core.errors import InvalidTransition, StateConflict
from core.models.invoice import InvoiceStatus

S = InvoiceStatus


class InvoiceAction(str, Enum):
    """Operations that depend on invoice status."""

    EDIT = "edit"
    SEND = "send"
    VIEW = "view"
    MARK_OVERDUE = "mark_overdue"
    RECORD_PAYMENT = "record_payment"
    VOID = "void"
    ADD_CHANGE_ORDER = "add_change_order"
    APPROVE_CHANGE_ORDER = "approve_change_order"


TERMINAL = frozenset({S.PAID, S.VOID})

# Resending a sent invoice is a self-loop (fresh token, fresh sent_at).
TRANSITIONS: dict[InvoiceStatus, frozenset[InvoiceStatus]] = {
    S.DRAFT: frozenset({S.SENT, S.VOID}),
    S.SENT: frozenset({S.SENT, S.VIEWED, S.OVERDUE, S.PARTIALLY_PAID, S.PAID, S.VOID}),
    S.VIEWED: frozenset({S.OVERDUE, S.PARTIALLY_PAID, S.PAID, S.VOID}),
    S.OVERDUE: frozenset({S.PARTIALLY_PAID, S.PAID, S.VOID}),
    S.PARTIALLY_PAID: frozenset({S.PAID, S.VOID}),
    S.PAID: frozenset(),
    S.VOID: frozenset(),
}

PAYABLE = frozenset({S.SENT, S.VIEWED, S.OVERDUE, S.PARTIALLY_PAID})

_ALLOWED: dict[InvoiceAction, frozenset[InvoiceStatus]] = {
    InvoiceAction.EDIT: frozenset({S.DRAFT}),
    InvoiceAction.SEND: frozenset({S.DRAFT, S.SENT}),
    InvoiceAction.VIEW: frozenset(S) - {S.DRAFT},
    InvoiceAction.MARK_OVERDUE: frozenset({S.SENT, S.VIEWED}),
    InvoiceAction.RECORD_PAYMENT: PAYABLE,
    InvoiceAction.VOID: frozenset(S) - TERMINAL,
    InvoiceAction.ADD_CHANGE_ORDER: frozenset(S) - TERMINAL,
    InvoiceAction.APPROVE_CHANGE_ORDER: frozenset(S) - TERMINAL,
}

# Specific rejection reasons, keyed by (action, status). Support tooling
# matches on these strings.
_REASONS: dict[tuple[InvoiceAction, InvoiceStatus], str] = {
    (InvoiceAction.RECORD_PAYMENT, S.VOID): "Cannot record payment on a voided invoice",
    (InvoiceAction.RECORD_PAYMENT, S.PAID): "Invoice is already fully paid",
    (InvoiceAction.RECORD_PAYMENT, S.DRAFT): "Cannot record payment on a draft invoice",
    (InvoiceAction.VOID, S.VOID): "Invoice is already voided",
    (InvoiceAction.VOID, S.PAID): "Cannot void a paid invoice",
    (InvoiceAction.VIEW, S.DRAFT): "Invoice has not been sent",
}

_DEFAULT_REASONS: dict[InvoiceAction, str] = {
    InvoiceAction.EDIT: "Only draft invoices can be edited",
    InvoiceAction.SEND: "Cannot send a {status} invoice",
    InvoiceAction.MARK_OVERDUE: "Cannot mark a {status} invoice overdue",
    InvoiceAction.ADD_CHANGE_ORDER: "Cannot add change orders to a {status} invoice",
    InvoiceAction.APPROVE_CHANGE_ORDER: "Cannot approve change orders on a {status} invoice",
}


def can_transition(current: InvoiceStatus, target: InvoiceStatus) -> bool:
    return InvoiceStatus(target) in TRANSITIONS[InvoiceStatus(current)]


def require_transition(current: InvoiceStatus, target: InvoiceStatus) -> None:
    """Raise InvalidTransition unless current -> target is in the table."""
    current, target = InvoiceStatus(current), InvoiceStatus(target)
    if not can_transition(current, target):
        raise InvalidTransition(
            f"Invoice cannot move from {current.value} to {target.value}"
        )


def is_allowed(status: InvoiceStatus, action: InvoiceAction) -> bool:
    return InvoiceStatus(status) in _ALLOWED[action]


def allowed_actions(status: InvoiceStatus) -> set[InvoiceAction]:
    status = InvoiceStatus(status)
    return {action for action, statuses in _ALLOWED.items() if status in statuses}


def check_action(status: InvoiceStatus, action: InvoiceAction) -> None:
    """
    Raise StateConflict with the product's wording if action is not
    allowed in this status.
    """
    status = InvoiceStatus(status)
    if status in _ALLOWED[action]:
        return
    reason = _REASONS.get((action, status)) or _DEFAULT_REASONS.get(
        action, "Cannot {action} a {status} invoice"
    )
    raise StateConflict(reason.format(status=status.value, action=action.value))


def status_after_payment(current: InvoiceStatus, amount_due) -> InvoiceStatus:
    """
    Status once a payment has brought the balance to amount_due.

    Zero balance means paid. Otherwise sent/viewed/overdue become
    partially_paid, and partially_paid stays put.
    """
    current = InvoiceStatus(current)
    if amount_due <= 0:
        return S.PAID
    if current in {S.SENT, S.VIEWED, S.OVERDUE}:
        return S.PARTIALLY_PAID
    return current
