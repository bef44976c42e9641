"""Tenant billing state and administrative override models."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from core.plans import PlanTier, plan_config


class SubscriptionStatus(str, Enum):
    """Local view of the tenant's subscription lifecycle."""

    NONE = "none"
    ACTIVE = "active"
    TRIALING = "trialing"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    INCOMPLETE = "incomplete"
    COMPED = "comped"


class TenantBillingState(BaseModel):
    """Billing columns of a business, one row per tenant."""

    business_id: UUID
    name: str | None = None
    plan_tier: PlanTier = PlanTier.FREE
    included_seats: int | None = None
    seat_count: int = 1
    subscription_status: SubscriptionStatus = SubscriptionStatus.NONE
    external_customer_id: str | None = None
    external_subscription_id: str | None = None
    ai_credits_limit: int = 5
    ai_credits_used: int = 0
    cancel_at_period_end: bool = False
    current_period_end: datetime | None = None
    updated_at: datetime | None = None

    model_config = {"from_attributes": True}

    @model_validator(mode="after")
    def comped_has_no_subscription(self) -> "TenantBillingState":
        """A comped tenant never carries an external subscription reference."""
        if self.subscription_status == SubscriptionStatus.COMPED and self.external_subscription_id:
            raise ValueError("Comped businesses cannot have an external subscription")
        return self

    @property
    def effective_included_seats(self) -> int:
        """Included seats, falling back to the tier default when unset."""
        if self.included_seats:
            return self.included_seats
        return plan_config(self.plan_tier).included_seats

    @property
    def is_comped(self) -> bool:
        return self.subscription_status == SubscriptionStatus.COMPED

    @property
    def has_subscription(self) -> bool:
        return self.external_subscription_id is not None


def tier_defaults(tier: PlanTier) -> dict[str, Any]:
    """Column values a tenant gets when it lands on a tier."""
    config = plan_config(tier)
    return {
        "plan_tier": PlanTier(tier),
        "included_seats": config.included_seats,
        "ai_credits_limit": config.ai_credits,
    }


class OverrideAction(str, Enum):
    """Type of administrative billing override."""

    TIER_CHANGED = "tier_changed"
    COMP_APPLIED = "comp_applied"
    COMP_REMOVED = "comp_removed"
    DISCOUNT_APPLIED = "discount_applied"
    DISCOUNT_REMOVED = "discount_removed"


class BillingOverride(BaseModel):
    """Append-only override log row. Only is_active is ever mutated."""

    id: UUID
    business_id: UUID
    action_type: OverrideAction
    details: dict[str, Any] = Field(default_factory=dict)
    reason: str | None = None
    performed_by: UUID | None = None
    is_active: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class DiscountType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class DiscountDuration(str, Enum):
    ONCE = "once"
    REPEATING = "repeating"
    FOREVER = "forever"


class OverrideOperation(str, Enum):
    APPLY = "apply"
    REMOVE = "remove"


class TierChangeRequest(BaseModel):
    business_id: UUID
    new_tier: PlanTier
    reason: str | None = Field(None, max_length=1000)


class CompRequest(BaseModel):
    """Apply or remove a comp. Tier is required (and must be paid) to apply."""

    business_id: UUID
    action: OverrideOperation
    tier: PlanTier | None = None
    reason: str | None = Field(None, max_length=1000)


class DiscountRequest(BaseModel):
    """
    Apply or remove a discount.

    Range checks live in the override service so the caller gets the
    product's exact wording rather than a generic schema error.
    """

    business_id: UUID
    action: OverrideOperation
    discount_type: DiscountType | None = None
    discount_value: Decimal | None = None
    duration: DiscountDuration = DiscountDuration.FOREVER
    duration_in_months: int | None = None
    reason: str | None = Field(None, max_length=1000)


class BillingResult(BaseModel):
    """Outcome of an administrative billing operation."""

    success: bool = True
    message: str
    coupon_id: str | None = None
    warnings: list[str] = Field(default_factory=list)


class SeatSyncResult(BaseModel):
    """Outcome of one seat reconciliation pass."""

    business_id: UUID
    member_count: int
    extra_seats: int
    external_synced: bool


class ActiveDiscount(BaseModel):
    coupon_id: str
    percent_off: Decimal | None = None
    amount_off: Decimal | None = None
    duration: str | None = None
    duration_in_months: int | None = None
    effective_price: Decimal | None = None


class BillingOverview(BaseModel):
    """Admin view of a tenant's overrides."""

    business_id: UUID
    plan_tier: PlanTier
    subscription_status: SubscriptionStatus
    is_comped: bool
    comped_tier: PlanTier | None = None
    active_discount: ActiveDiscount | None = None
    history: list[BillingOverride] = Field(default_factory=list)
