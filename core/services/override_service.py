"""
Administrative billing overrides: comps and discounts.

A comp grants a paid tier with no subscription behind it. A discount is a
provider coupon attached to the tenant's subscription. The two exclude each
other: comping drops the subscription (and with it any discount), and
discounts are refused while a tenant is comped.

Every apply/remove appends a billing_overrides row in the same transaction
as the state change it describes.
"""

import logging
from decimal import Decimal
from uuid import UUID

from auth.permissions import Permissions
from core.config import BillingConfig
from core.errors import (
    ExternalProviderError,
    NotApplicable,
    NotComped,
    NotFoundError,
    ValidationError,
)
from core.event_bus import EventBus
from core.events import CompApplied, DiscountApplied
from core.locks import TenantLock
from core.models import (
    ActiveDiscount,
    BillingOverview,
    BillingResult,
    Coupon,
    CouponSpec,
    DiscountDuration,
    DiscountType,
    OverrideAction,
    SubscriptionStatus,
    TenantBillingState,
    tier_defaults,
)
from core.money import ZERO, format_usd, to_cents, to_money
from core.plans import PlanTier, plan_config
from core.ports import SubscriptionProvider
from core.stores.billing_store import PostgresBillingStore

logger = logging.getLogger(__name__)

# A prior subscription in these states has nothing left to cancel.
_ENDED_STATUSES = {SubscriptionStatus.CANCELED, SubscriptionStatus.NONE}


def describe_discount(discount_type: DiscountType, value: Decimal, duration: DiscountDuration) -> str:
    if discount_type == DiscountType.PERCENTAGE:
        amount = f"{Decimal(value).normalize():f}%"
    else:
        amount = format_usd(value)
    return f"{amount} off ({duration.value})"


def effective_price(base_price: Decimal, coupon: Coupon) -> Decimal | None:
    """Monthly base price after a coupon, floored at zero."""
    if coupon.percent_off:
        return to_money(base_price * (1 - coupon.percent_off / 100))
    if coupon.amount_off_cents:
        return max(ZERO, to_money(base_price - Decimal(coupon.amount_off_cents) / 100))
    return None


class OverrideService:
    """Comp and discount overrides, plus the admin overview of both."""

    def __init__(
        self,
        store: PostgresBillingStore,
        provider: SubscriptionProvider,
        lock: TenantLock,
        permissions: Permissions,
        event_bus: EventBus,
        config: BillingConfig,
    ):
        self.store = store
        self.provider = provider
        self.lock = lock
        self.permissions = permissions
        self.event_bus = event_bus
        self.config = config

    def _load(self, business_id: UUID) -> TenantBillingState:
        state = self.store.get_state(business_id)
        if state is None:
            raise NotFoundError(f"Business {business_id} not found")
        return state

    # -------------------------------------------------------------------------
    # Comp
    # -------------------------------------------------------------------------

    def apply_comp(self, business_id: UUID, tier: PlanTier | None, reason: str | None = None) -> BillingResult:
        """
        Comp a business onto a paid tier.

        The local comp commits first. Cancelling the subscription it replaces
        is best effort: a failure is logged and returned as a warning.

        Raises:
            AuthorizationError: Caller is not a platform admin
            ValidationError: Tier is not pro or enterprise
            NotFoundError: Business doesn't exist
        """
        admin_id = self.permissions.require_platform_admin()
        if tier is None or not PlanTier(tier).is_paid:
            raise ValidationError("Tier must be 'pro' or 'enterprise'")
        tier = PlanTier(tier)

        with self.lock.hold(business_id):
            state = self._load(business_id)

            prior_subscription = None
            if state.has_subscription and state.subscription_status not in _ENDED_STATUSES:
                prior_subscription = state.external_subscription_id

            details = {"tier": tier.value}
            if prior_subscription:
                details["canceled_subscription_id"] = prior_subscription

            self.store.record_override(
                business_id,
                OverrideAction.COMP_APPLIED,
                details=details,
                reason=reason,
                performed_by=admin_id,
                is_active=True,
                state_changes={
                    **tier_defaults(tier),
                    "subscription_status": SubscriptionStatus.COMPED,
                    "external_subscription_id": None,
                    "cancel_at_period_end": False,
                    "ai_credits_used": 0,
                },
                deactivate=(OverrideAction.COMP_APPLIED, OverrideAction.DISCOUNT_APPLIED),
            )

            warnings = []
            if prior_subscription:
                try:
                    self.provider.cancel_subscription(prior_subscription)
                except ExternalProviderError as e:
                    logger.warning(
                        f"Comp applied but cancelling subscription {prior_subscription} "
                        f"for business {business_id} failed: {e.message}"
                    )
                    warnings.append(
                        f"Previous subscription {prior_subscription} could not be canceled: {e.message}"
                    )

        self.event_bus.publish(CompApplied.create(business_id=business_id, tier=tier.value))

        message = f"Business comped with {plan_config(tier).name} tier"
        if warnings:
            message += f" (warning: {warnings[0]})"
        return BillingResult(message=message, warnings=warnings)

    def remove_comp(self, business_id: UUID, reason: str | None = None) -> BillingResult:
        """
        Raises:
            NotComped: Business is not currently comped
        """
        admin_id = self.permissions.require_platform_admin()

        with self.lock.hold(business_id):
            state = self._load(business_id)
            if not state.is_comped:
                raise NotComped("Business is not currently comped")

            self.store.record_override(
                business_id,
                OverrideAction.COMP_REMOVED,
                details={"previous_tier": state.plan_tier.value},
                reason=reason,
                performed_by=admin_id,
                is_active=False,
                state_changes={
                    **tier_defaults(PlanTier.FREE),
                    "subscription_status": SubscriptionStatus.NONE,
                    "ai_credits_used": 0,
                },
                deactivate=(OverrideAction.COMP_APPLIED,),
            )

        logger.info(f"Comp removed for business {business_id} (was {state.plan_tier.value})")
        return BillingResult(message="Comp removed. Business downgraded to Free.")

    # -------------------------------------------------------------------------
    # Discount
    # -------------------------------------------------------------------------

    def _require_discountable(self, state: TenantBillingState) -> None:
        if state.is_comped:
            raise NotApplicable("Cannot apply discounts to comped businesses. Remove comp first.")
        if not state.has_subscription:
            raise NotApplicable(
                "No active subscription. Cannot apply discount without a Stripe subscription."
            )

    def apply_discount(
        self,
        business_id: UUID,
        discount_type: DiscountType | None,
        value: Decimal | None,
        duration: DiscountDuration = DiscountDuration.FOREVER,
        duration_in_months: int | None = None,
        reason: str | None = None,
    ) -> BillingResult:
        """
        Attach a new coupon to the tenant's subscription, replacing any prior one.

        Nothing is written locally unless the provider accepted the coupon.

        Raises:
            ValidationError: Value out of range, or repeating without months
            NotApplicable: Business is comped or has no subscription
            ExternalProviderError: Coupon creation or attachment failed
        """
        admin_id = self.permissions.require_platform_admin()
        if discount_type is None or value is None:
            raise ValidationError("Discount type and value are required")
        discount_type = DiscountType(discount_type)
        duration = DiscountDuration(duration)
        value = Decimal(value)

        if discount_type == DiscountType.PERCENTAGE and not (1 <= value <= 100):
            raise ValidationError("Percentage must be between 1 and 100")
        if discount_type == DiscountType.FIXED and value <= 0:
            raise ValidationError("Fixed amount must be greater than 0")
        if duration == DiscountDuration.REPEATING and (not duration_in_months or duration_in_months < 1):
            raise ValidationError("Duration in months required for repeating discounts")

        with self.lock.hold(business_id):
            state = self._load(business_id)
            self._require_discountable(state)

            spec = CouponSpec(
                name=f"Admin discount for {business_id}",
                percent_off=value if discount_type == DiscountType.PERCENTAGE else None,
                amount_off_cents=to_cents(value) if discount_type == DiscountType.FIXED else None,
                currency=self.config.currency,
                duration=duration,
                duration_in_months=duration_in_months if duration == DiscountDuration.REPEATING else None,
                metadata={"admin_applied": "true", "business_id": str(business_id)},
            )
            coupon = self.provider.create_coupon(spec)
            self.provider.set_discount(state.external_subscription_id, coupon.id)

            self.store.record_override(
                business_id,
                OverrideAction.DISCOUNT_APPLIED,
                details={
                    "discount_type": discount_type.value,
                    "discount_value": str(value),
                    "duration": duration.value,
                    "duration_in_months": spec.duration_in_months,
                    "coupon_id": coupon.id,
                },
                reason=reason,
                performed_by=admin_id,
                is_active=True,
                deactivate=(OverrideAction.DISCOUNT_APPLIED,),
            )

        self.event_bus.publish(DiscountApplied.create(
            business_id=business_id,
            coupon_id=coupon.id,
            discount_value=value,
        ))
        return BillingResult(
            message=f"Discount applied: {describe_discount(discount_type, value, duration)}",
            coupon_id=coupon.id,
        )

    def remove_discount(self, business_id: UUID, reason: str | None = None) -> BillingResult:
        admin_id = self.permissions.require_platform_admin()

        with self.lock.hold(business_id):
            state = self._load(business_id)
            self._require_discountable(state)

            self.provider.set_discount(state.external_subscription_id, None)
            self.store.record_override(
                business_id,
                OverrideAction.DISCOUNT_REMOVED,
                details={},
                reason=reason,
                performed_by=admin_id,
                is_active=False,
                deactivate=(OverrideAction.DISCOUNT_APPLIED,),
            )

        logger.info(f"Discount removed for business {business_id}")
        return BillingResult(message="Discount removed")

    # -------------------------------------------------------------------------
    # Overview
    # -------------------------------------------------------------------------

    def get_overview(self, business_id: UUID) -> BillingOverview:
        """Comp state, live discount (best effort) and recent override history."""
        self.permissions.require_platform_admin()
        state = self._load(business_id)

        active_discount = None
        if state.has_subscription and not state.is_comped:
            try:
                subscription = self.provider.retrieve_subscription(state.external_subscription_id)
            except ExternalProviderError as e:
                logger.warning(f"Could not fetch discount for business {business_id}: {e.message}")
            else:
                coupon = subscription.discount
                if coupon is not None:
                    active_discount = ActiveDiscount(
                        coupon_id=coupon.id,
                        percent_off=coupon.percent_off,
                        amount_off=(
                            Decimal(coupon.amount_off_cents) / 100
                            if coupon.amount_off_cents is not None else None
                        ),
                        duration=coupon.duration,
                        duration_in_months=coupon.duration_in_months,
                        effective_price=effective_price(plan_config(state.plan_tier).base_price, coupon),
                    )

        return BillingOverview(
            business_id=business_id,
            plan_tier=state.plan_tier,
            subscription_status=state.subscription_status,
            is_comped=state.is_comped,
            comped_tier=state.plan_tier if state.is_comped else None,
            active_discount=active_discount,
            history=self.store.list_overrides(business_id, limit=self.config.override_history_limit),
        )
