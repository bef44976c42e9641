"""
Domain events for billing and invoicing.

Immutable event objects that represent state changes. A service publishes
what happened after its write has committed; handlers react without the
publisher knowing who's listening.

Event Categories:
- InvoiceEvent: Invoice lifecycle (send, view, payment, paid, void, change order)
- BillingEvent: Tenant plan lifecycle (tier change, comp, membership change)

Events carry the full domain object so handlers don't need to re-fetch state.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from utils.timezone import now_utc


@dataclass(frozen=True, kw_only=True)
class DomainEvent:
    """Base class for all billing domain events."""
    event_id: str = field(default_factory=lambda: str(uuid4()))
    occurred_at: datetime = field(default_factory=now_utc)


# =============================================================================
# INVOICE EVENTS
# =============================================================================


@dataclass(frozen=True)
class InvoiceEvent(DomainEvent):
    """Events related to invoice lifecycle."""
    pass


@dataclass(frozen=True)
class InvoiceSent(InvoiceEvent):
    """Invoice was sent (or re-sent) to a recipient with a fresh viewing token."""
    invoice: Any = None  # Invoice; Any avoids a circular import
    recipient_email: str | None = None
    recipient_name: str | None = None

    @classmethod
    def create(cls, invoice: Any, recipient_email: str, recipient_name: str | None = None) -> "InvoiceSent":
        return cls(invoice=invoice, recipient_email=recipient_email, recipient_name=recipient_name)


@dataclass(frozen=True)
class InvoiceViewed(InvoiceEvent):
    """Recipient opened the public link for the first time."""
    invoice: Any = None

    @classmethod
    def create(cls, invoice: Any) -> "InvoiceViewed":
        return cls(invoice=invoice)


@dataclass(frozen=True)
class PaymentRecorded(InvoiceEvent):
    """A payment was appended to an invoice."""
    invoice: Any = None
    payment: Any = None

    @classmethod
    def create(cls, invoice: Any, payment: Any) -> "PaymentRecorded":
        return cls(invoice=invoice, payment=payment)


@dataclass(frozen=True)
class InvoicePaid(InvoiceEvent):
    """Invoice balance reached zero."""
    invoice: Any = None

    @classmethod
    def create(cls, invoice: Any) -> "InvoicePaid":
        return cls(invoice=invoice)


@dataclass(frozen=True)
class InvoiceVoided(InvoiceEvent):
    invoice: Any = None
    reason: str | None = None

    @classmethod
    def create(cls, invoice: Any, reason: str | None) -> "InvoiceVoided":
        return cls(invoice=invoice, reason=reason)


@dataclass(frozen=True)
class ChangeOrderApproved(InvoiceEvent):
    """A change order was folded into its invoice."""
    change_order: Any = None
    invoice: Any = None

    @classmethod
    def create(cls, change_order: Any, invoice: Any) -> "ChangeOrderApproved":
        return cls(change_order=change_order, invoice=invoice)


# =============================================================================
# BILLING EVENTS
# =============================================================================


@dataclass(frozen=True)
class BillingEvent(DomainEvent):
    """Events related to a tenant's plan."""
    business_id: UUID | None = None


@dataclass(frozen=True)
class TierChanged(BillingEvent):
    from_tier: str | None = None
    to_tier: str | None = None
    effective_immediately: bool = True

    @classmethod
    def create(cls, business_id: UUID, from_tier: str, to_tier: str, effective_immediately: bool = True) -> "TierChanged":
        return cls(
            business_id=business_id,
            from_tier=from_tier,
            to_tier=to_tier,
            effective_immediately=effective_immediately,
        )


@dataclass(frozen=True)
class CompApplied(BillingEvent):
    tier: str | None = None

    @classmethod
    def create(cls, business_id: UUID, tier: str) -> "CompApplied":
        return cls(business_id=business_id, tier=tier)


@dataclass(frozen=True)
class MembershipChanged(BillingEvent):
    """
    Someone joined or left the workspace.

    Published by the membership system; the seat reconciler listens.
    """

    @classmethod
    def create(cls, business_id: UUID) -> "MembershipChanged":
        return cls(business_id=business_id)


@dataclass(frozen=True)
class DiscountApplied(BillingEvent):
    coupon_id: str | None = None
    discount_value: Decimal | None = None

    @classmethod
    def create(cls, business_id: UUID, coupon_id: str, discount_value: Decimal) -> "DiscountApplied":
        return cls(business_id=business_id, coupon_id=coupon_id, discount_value=discount_value)
