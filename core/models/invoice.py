"""Invoice domain models.

All amounts are Decimal with two fractional digits. Tax rate is a percentage
(8 = 8%). See core/money.py for rounding rules.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field

from core.models.line_item import InvoiceLineItem, LineItemInput


class InvoiceStatus(str, Enum):
    """Invoice lifecycle status. See core/invoice_state.py for transitions."""

    DRAFT = "draft"
    SENT = "sent"
    VIEWED = "viewed"
    PARTIALLY_PAID = "partially_paid"
    PAID = "paid"
    OVERDUE = "overdue"
    VOID = "void"


class InvoiceCreate(BaseModel):
    """Data required to create an invoice."""

    business_id: UUID
    client_id: UUID | None = None
    project_id: UUID | None = None
    line_items: list[LineItemInput] = Field(..., min_length=1)
    issue_date: date | None = None
    due_date: date | None = None
    payment_terms: str | None = Field(None, max_length=100)
    tax_rate: Decimal | None = Field(None, ge=0, le=100)
    notes: str | None = Field(None, max_length=5000)
    internal_notes: str | None = Field(None, max_length=5000)


class InvoiceUpdate(BaseModel):
    """Draft edit. Line items, when given, replace the existing set wholesale."""

    client_id: UUID | None = None
    project_id: UUID | None = None
    line_items: list[LineItemInput] | None = Field(None, min_length=1)
    issue_date: date | None = None
    due_date: date | None = None
    payment_terms: str | None = Field(None, max_length=100)
    tax_rate: Decimal | None = Field(None, ge=0, le=100)
    notes: str | None = Field(None, max_length=5000)
    internal_notes: str | None = Field(None, max_length=5000)


class Invoice(BaseModel):
    """Full invoice entity as stored."""

    id: UUID
    business_id: UUID
    client_id: UUID | None = None
    project_id: UUID | None = None
    invoice_number: str
    status: InvoiceStatus
    subtotal: Decimal
    tax_rate: Decimal
    tax_amount: Decimal
    total: Decimal
    amount_paid: Decimal
    amount_due: Decimal
    issue_date: date
    due_date: date | None = None
    payment_terms: str | None = None
    notes: str | None = None
    internal_notes: str | None = None
    viewing_token: str | None = None
    token_expires_at: datetime | None = None
    sent_at: datetime | None = None
    viewed_at: datetime | None = None
    paid_at: datetime | None = None
    voided_at: datetime | None = None
    created_by: UUID | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}

    @property
    def is_paid(self) -> bool:
        return self.status == InvoiceStatus.PAID


class InvoiceDetail(Invoice):
    """Invoice with its children, as returned by get."""

    line_items: list[InvoiceLineItem] = Field(default_factory=list)
    payments: list["InvoicePayment"] = Field(default_factory=list)
    change_orders: list["ChangeOrder"] = Field(default_factory=list)


class InvoiceSettings(BaseModel):
    """Per-business invoicing defaults and public-facing company details."""

    business_id: UUID
    next_invoice_number: int = 1
    default_tax_rate: Decimal = Decimal("0")
    default_payment_terms: str | None = None
    company_name: str | None = None
    company_address: str | None = None
    company_phone: str | None = None
    company_email: str | None = None
    footer_text: str | None = None
    updated_at: datetime | None = None

    model_config = {"from_attributes": True}


class InvoiceSettingsUpdate(BaseModel):
    default_tax_rate: Decimal | None = Field(None, ge=0, le=100)
    default_payment_terms: str | None = Field(None, max_length=100)
    company_name: str | None = Field(None, max_length=200)
    company_address: str | None = Field(None, max_length=500)
    company_phone: str | None = Field(None, max_length=50)
    company_email: str | None = Field(None, max_length=200)
    footer_text: str | None = Field(None, max_length=2000)


class PaymentResult(BaseModel):
    """Invoice balances after a payment was recorded."""

    amount_paid: Decimal
    amount_due: Decimal
    status: InvoiceStatus


class InvoiceFilter(BaseModel):
    status: InvoiceStatus | None = None
    client_id: UUID | None = None
    project_id: UUID | None = None
    date_from: date | None = None
    date_to: date | None = None


from core.models.payment import InvoicePayment  # noqa: E402
from core.models.change_order import ChangeOrder  # noqa: E402

InvoiceDetail.model_rebuild()
