"""Change order models.

A change order amends an invoice. Approval folds its amount into the
invoice as one new line item. Amount is signed: negative means a credit.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field


class ChangeOrderStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ChangeOrderCreate(BaseModel):
    """Title and amount are checked by the service for specific messages."""

    title: str | None = Field(None, max_length=200)
    description: str | None = Field(None, max_length=5000)
    amount: Decimal | None = None


class ChangeOrder(BaseModel):
    """Full change order entity as stored."""

    id: UUID
    invoice_id: UUID
    business_id: UUID
    change_order_number: int
    title: str
    description: str | None = None
    amount: Decimal
    status: ChangeOrderStatus
    created_by: UUID | None = None
    approved_by: UUID | None = None
    approved_at: datetime | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class ChangeOrderApproval(BaseModel):
    """Invoice totals after a change order was folded in."""

    new_subtotal: Decimal
    new_total: Decimal
    new_amount_due: Decimal
