"""Invoice line item models.

Amount is always quantity * unit_price rounded to cents, computed on the
server. Clients never supply it.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from core.money import line_amount, to_money, to_quantity


class LineItemInput(BaseModel):
    """One line item as submitted on create or draft edit."""

    description: str = Field("", max_length=500)
    quantity: Decimal = Field(Decimal("1"), gt=0)
    unit_price: Decimal = Decimal("0")

    @field_validator("quantity", mode="before")
    @classmethod
    def default_quantity(cls, v):
        """Blank or missing quantity means one unit."""
        if v in (None, "", 0, "0"):
            return Decimal("1")
        return v

    @field_validator("unit_price", mode="before")
    @classmethod
    def default_price(cls, v):
        if v in (None, ""):
            return Decimal("0")
        return v

    @field_validator("quantity")
    @classmethod
    def store_quantity_precision(cls, v):
        v = to_quantity(v)
        if v <= 0:
            raise ValueError("Quantity must be at least 0.0001")
        return v

    @field_validator("unit_price")
    @classmethod
    def store_price_precision(cls, v):
        """Prices are stored in cents; amount is derived from the stored value."""
        return to_money(v)

    @property
    def amount(self) -> Decimal:
        return line_amount(self.quantity, self.unit_price)


class InvoiceLineItem(BaseModel):
    """Full line item entity as stored."""

    id: UUID
    invoice_id: UUID
    description: str
    quantity: Decimal
    unit_price: Decimal
    amount: Decimal
    sort_order: int
    created_at: datetime | None = None

    model_config = {"from_attributes": True}
