"""Provider-neutral view of an external subscription.

These are what core services see. clients/stripe_client.py translates
to and from Stripe objects.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field, model_validator

from core.models.billing import DiscountDuration


class SubscriptionItem(BaseModel):
    """One priced line of a subscription (base plan or extra seats)."""

    id: str
    price_id: str
    quantity: int = 1


class Coupon(BaseModel):
    id: str
    percent_off: Decimal | None = None
    amount_off_cents: int | None = None
    duration: str | None = None
    duration_in_months: int | None = None


class ExternalSubscription(BaseModel):
    id: str
    status: str
    items: list[SubscriptionItem] = Field(default_factory=list)
    discount: Coupon | None = None
    cancel_at_period_end: bool = False
    current_period_end: datetime | None = None
    metadata: dict[str, str] = Field(default_factory=dict)

    def item_for_price(self, price_id: str | None) -> SubscriptionItem | None:
        if price_id is None:
            return None
        for item in self.items:
            if item.price_id == price_id:
                return item
        return None


class ItemMutation(BaseModel):
    """
    One entry of a subscription item diff.

    - id + price + quantity: replace an existing item in place
    - id + quantity: change quantity only
    - price + quantity (no id): insert a fresh item
    - id + deleted: remove the item
    """

    id: str | None = None
    price_id: str | None = None
    quantity: int | None = Field(None, ge=0)
    deleted: bool = False

    @model_validator(mode="after")
    def check_shape(self) -> "ItemMutation":
        if self.deleted and self.id is None:
            raise ValueError("Deleting an item requires its id")
        if self.id is None and self.price_id is None:
            raise ValueError("Inserting an item requires a price")
        return self


class CouponSpec(BaseModel):
    """Parameters for a new provider coupon. Exactly one of the two amounts."""

    name: str
    percent_off: Decimal | None = None
    amount_off_cents: int | None = None
    currency: str = "usd"
    duration: DiscountDuration
    duration_in_months: int | None = None
    metadata: dict[str, str] = Field(default_factory=dict)

    @model_validator(mode="after")
    def one_amount(self) -> "CouponSpec":
        if (self.percent_off is None) == (self.amount_off_cents is None):
            raise ValueError("Coupon needs exactly one of percent_off or amount_off_cents")
        return self


class PaymentIntent(BaseModel):
    id: str
    client_secret: str
    amount_cents: int
    metadata: dict[str, Any] = Field(default_factory=dict)
