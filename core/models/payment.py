"""Invoice payment models. Payments are append-only."""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field, field_validator


class PaymentMethod(str, Enum):
    CASH = "cash"
    CHECK = "check"
    CARD = "card"
    BANK_TRANSFER = "bank_transfer"
    OTHER = "other"


class PaymentCreate(BaseModel):
    """
    A payment to record against an invoice.

    amount is not range-checked here: the invoice service rejects
    non-positive amounts and overpayment with specific messages.
    """

    amount: Decimal
    payment_method: PaymentMethod = PaymentMethod.OTHER
    reference_number: str | None = Field(None, max_length=200)
    notes: str | None = Field(None, max_length=2000)
    payment_date: date | None = None

    @field_validator("payment_method", mode="before")
    @classmethod
    def blank_method_is_other(cls, v):
        return v or PaymentMethod.OTHER


class InvoicePayment(BaseModel):
    """Full payment entity as stored."""

    id: UUID
    invoice_id: UUID
    business_id: UUID
    amount: Decimal
    payment_method: PaymentMethod
    reference_number: str | None = None
    notes: str | None = None
    payment_date: date
    recorded_by: UUID | None = None
    created_at: datetime

    model_config = {"from_attributes": True}
