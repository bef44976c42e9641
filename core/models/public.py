"""Redacted invoice projection served on public token links.

No internal notes, no business/creator ids, only approved change orders.
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field

from core.models.invoice import InvoiceStatus


class PublicLineItem(BaseModel):
    description: str
    quantity: Decimal
    unit_price: Decimal
    amount: Decimal
    sort_order: int


class PublicPayment(BaseModel):
    id: UUID
    amount: Decimal
    payment_method: str
    payment_date: date


class PublicChangeOrder(BaseModel):
    id: UUID
    change_order_number: int
    title: str
    description: str | None = None
    amount: Decimal


class PublicClient(BaseModel):
    name: str | None = None
    email: str | None = None
    company_name: str | None = None
    phone: str | None = None


class PublicBusiness(BaseModel):
    name: str = ""
    address: str = ""
    phone: str = ""
    email: str = ""
    footer_text: str = ""


class PublicInvoiceView(BaseModel):
    id: UUID
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
    client: PublicClient | None = None
    line_items: list[PublicLineItem] = Field(default_factory=list)
    payments: list[PublicPayment] = Field(default_factory=list)
    change_orders: list[PublicChangeOrder] = Field(default_factory=list)
    business: PublicBusiness = Field(default_factory=PublicBusiness)


class PublicPaymentRequest(BaseModel):
    token: str
    amount: Decimal


class PublicPaymentSession(BaseModel):
    client_secret: str
    amount: Decimal
    payment_intent_id: str
