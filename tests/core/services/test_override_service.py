"""Tests for OverrideService (comps, discounts, overview)."""

import pytest
from decimal import Decimal

from core.errors import (
    AuthorizationError,
    ExternalProviderError,
    NotApplicable,
    NotComped,
    ValidationError,
)
from core.models import (
    Coupon,
    DiscountDuration,
    DiscountType,
    OverrideAction,
    SubscriptionStatus,
)
from core.plans import PlanTier
from core.services.override_service import describe_discount, effective_price
from tests.fakes import PRICES


@pytest.fixture
def subscribed_business(billing_store, provider, business):
    """Pro tenant paying through an active subscription."""
    provider.add_subscription("sub_pro", [(PRICES.pro.base, 1)])
    return billing_store.update_state(business.business_id, {
        "plan_tier": PlanTier.PRO,
        "included_seats": 3,
        "subscription_status": SubscriptionStatus.ACTIVE,
        "external_subscription_id": "sub_pro",
    })


@pytest.fixture
def comped_business(billing_store, business):
    return billing_store.update_state(business.business_id, {
        "plan_tier": PlanTier.ENTERPRISE,
        "included_seats": 10,
        "subscription_status": SubscriptionStatus.COMPED,
    })


# =============================================================================
# HELPERS
# =============================================================================


class TestDescribeDiscount:

    def test_percentage(self):
        text = describe_discount(DiscountType.PERCENTAGE, Decimal("25.0"), DiscountDuration.FOREVER)
        assert text == "25% off (forever)"

    def test_fixed(self):
        text = describe_discount(DiscountType.FIXED, Decimal("10"), DiscountDuration.ONCE)
        assert text == "$10.00 off (once)"


class TestEffectivePrice:

    def test_percent_off(self):
        assert effective_price(Decimal("29.00"), Coupon(id="c", percent_off=Decimal("25"))) == Decimal("21.75")

    def test_amount_off_floors_at_zero(self):
        assert effective_price(Decimal("29.00"), Coupon(id="c", amount_off_cents=5000)) == Decimal("0.00")

    def test_no_amount(self):
        assert effective_price(Decimal("29.00"), Coupon(id="c")) is None


# =============================================================================
# COMP
# =============================================================================


class TestApplyComp:

    def test_requires_platform_admin(self, override_service, as_test_user, business_id):
        with pytest.raises(AuthorizationError):
            override_service.apply_comp(business_id, PlanTier.PRO)

    @pytest.mark.parametrize("tier", [None, PlanTier.FREE])
    def test_tier_must_be_paid(self, override_service, as_platform_admin, business_id, tier):
        with pytest.raises(ValidationError, match="'pro' or 'enterprise'"):
            override_service.apply_comp(business_id, tier)

    def test_free_business_becomes_comped(
        self, override_service, billing_store, provider, published, as_platform_admin, business_id
    ):
        result = override_service.apply_comp(business_id, PlanTier.ENTERPRISE, "Partner")

        assert result.message == "Business comped with Enterprise tier"
        assert result.warnings == []

        state = billing_store.get_state(business_id)
        assert state.is_comped
        assert state.plan_tier == PlanTier.ENTERPRISE
        assert state.included_seats == 10
        assert state.ai_credits_limit == 2000
        assert state.ai_credits_used == 0
        assert state.external_subscription_id is None
        assert provider.calls == []

        [override] = billing_store.overrides
        assert override.action_type == OverrideAction.COMP_APPLIED
        assert override.is_active is True
        assert override.details == {"tier": "enterprise"}

        assert [type(e).__name__ for e in published] == ["CompApplied"]

    def test_cancels_prior_subscription(
        self, override_service, billing_store, provider, as_platform_admin, subscribed_business
    ):
        override_service.apply_comp(subscribed_business.business_id, PlanTier.PRO)

        assert provider.subscriptions["sub_pro"].status == "canceled"
        [override] = billing_store.overrides
        assert override.details["canceled_subscription_id"] == "sub_pro"

    def test_cancel_failure_is_a_warning(
        self, override_service, billing_store, provider, as_platform_admin, subscribed_business
    ):
        provider.fail_on.add("cancel_subscription")

        result = override_service.apply_comp(subscribed_business.business_id, PlanTier.PRO)

        assert billing_store.get_state(subscribed_business.business_id).is_comped
        assert len(result.warnings) == 1
        assert "sub_pro" in result.warnings[0]
        assert "(warning:" in result.message

    def test_recomp_deactivates_previous_rows(
        self, override_service, billing_store, as_platform_admin, business_id
    ):
        override_service.apply_comp(business_id, PlanTier.PRO)
        override_service.apply_comp(business_id, PlanTier.ENTERPRISE)

        active = billing_store.active_overrides(business_id)
        assert len(active) == 1
        assert active[0].details == {"tier": "enterprise"}

    def test_comp_deactivates_discount(
        self, override_service, billing_store, as_platform_admin, subscribed_business
    ):
        business_id = subscribed_business.business_id
        override_service.apply_discount(business_id, DiscountType.PERCENTAGE, Decimal("20"))

        override_service.apply_comp(business_id, PlanTier.PRO)

        active = billing_store.active_overrides(business_id)
        assert [o.action_type for o in active] == [OverrideAction.COMP_APPLIED]


class TestRemoveComp:

    def test_not_comped(self, override_service, as_platform_admin, business_id):
        with pytest.raises(NotComped, match="not currently comped"):
            override_service.remove_comp(business_id)

    def test_downgrades_to_free(self, override_service, billing_store, as_platform_admin, comped_business):
        business_id = comped_business.business_id
        override_service.apply_comp(business_id, PlanTier.ENTERPRISE)

        result = override_service.remove_comp(business_id, "Partnership ended")

        assert result.message == "Comp removed. Business downgraded to Free."
        state = billing_store.get_state(business_id)
        assert state.plan_tier == PlanTier.FREE
        assert state.subscription_status == SubscriptionStatus.NONE
        assert state.included_seats == 1
        assert billing_store.active_overrides(business_id) == []
        assert billing_store.overrides[-1].details == {"previous_tier": "enterprise"}


# =============================================================================
# DISCOUNT
# =============================================================================


class TestApplyDiscount:

    @pytest.mark.parametrize("discount_type,value,message", [
        (DiscountType.PERCENTAGE, Decimal("0"), "between 1 and 100"),
        (DiscountType.PERCENTAGE, Decimal("101"), "between 1 and 100"),
        (DiscountType.FIXED, Decimal("0"), "greater than 0"),
        (None, Decimal("5"), "required"),
    ])
    def test_range_checks(
        self, override_service, as_platform_admin, subscribed_business, discount_type, value, message
    ):
        with pytest.raises(ValidationError, match=message):
            override_service.apply_discount(subscribed_business.business_id, discount_type, value)

    def test_repeating_requires_months(self, override_service, as_platform_admin, subscribed_business):
        with pytest.raises(ValidationError, match="Duration in months"):
            override_service.apply_discount(
                subscribed_business.business_id,
                DiscountType.PERCENTAGE,
                Decimal("10"),
                duration=DiscountDuration.REPEATING,
            )

    def test_comped_business_not_applicable(self, override_service, as_platform_admin, comped_business):
        with pytest.raises(NotApplicable, match="comped"):
            override_service.apply_discount(comped_business.business_id, DiscountType.FIXED, Decimal("5"))

    def test_no_subscription_not_applicable(self, override_service, as_platform_admin, business_id):
        with pytest.raises(NotApplicable, match="No active subscription"):
            override_service.apply_discount(business_id, DiscountType.FIXED, Decimal("5"))

    def test_percentage_discount(
        self, override_service, billing_store, provider, published, as_platform_admin, subscribed_business
    ):
        result = override_service.apply_discount(
            subscribed_business.business_id,
            DiscountType.PERCENTAGE,
            Decimal("25"),
            duration=DiscountDuration.REPEATING,
            duration_in_months=3,
            reason="Loyalty",
        )

        assert result.coupon_id == "coupon_1"
        assert result.message == "Discount applied: 25% off (repeating)"

        _, spec = provider.calls[0]
        assert spec.percent_off == Decimal("25")
        assert spec.duration_in_months == 3
        assert spec.metadata["admin_applied"] == "true"
        assert provider.subscriptions["sub_pro"].discount.id == "coupon_1"

        [override] = billing_store.overrides
        assert override.details["coupon_id"] == "coupon_1"
        assert override.details["discount_value"] == "25"
        assert published[0].coupon_id == "coupon_1"

    def test_fixed_discount_in_cents(self, override_service, provider, as_platform_admin, subscribed_business):
        override_service.apply_discount(subscribed_business.business_id, DiscountType.FIXED, Decimal("10.50"))

        _, spec = provider.calls[0]
        assert spec.amount_off_cents == 1050
        assert spec.percent_off is None
        assert spec.duration_in_months is None

    def test_replacing_discount_keeps_one_active(
        self, override_service, billing_store, as_platform_admin, subscribed_business
    ):
        business_id = subscribed_business.business_id
        override_service.apply_discount(business_id, DiscountType.FIXED, Decimal("5"))
        override_service.apply_discount(business_id, DiscountType.FIXED, Decimal("7"))

        [active] = billing_store.active_overrides(business_id)
        assert active.details["coupon_id"] == "coupon_2"

    def test_provider_failure_writes_nothing(
        self, override_service, billing_store, provider, as_platform_admin, subscribed_business
    ):
        provider.fail_on.add("set_discount")

        with pytest.raises(ExternalProviderError):
            override_service.apply_discount(subscribed_business.business_id, DiscountType.FIXED, Decimal("5"))

        assert billing_store.overrides == []


class TestRemoveDiscount:

    def test_removes_coupon_and_deactivates(
        self, override_service, billing_store, provider, as_platform_admin, subscribed_business
    ):
        business_id = subscribed_business.business_id
        override_service.apply_discount(business_id, DiscountType.FIXED, Decimal("5"))

        result = override_service.remove_discount(business_id)

        assert result.message == "Discount removed"
        assert provider.subscriptions["sub_pro"].discount is None
        assert billing_store.active_overrides(business_id) == []
        assert billing_store.overrides[-1].action_type == OverrideAction.DISCOUNT_REMOVED


# =============================================================================
# OVERVIEW
# =============================================================================


class TestOverview:

    def test_comped_overview(self, override_service, as_platform_admin, comped_business):
        overview = override_service.get_overview(comped_business.business_id)

        assert overview.is_comped is True
        assert overview.comped_tier == PlanTier.ENTERPRISE
        assert overview.active_discount is None

    def test_live_discount_and_history(
        self, override_service, provider, as_platform_admin, subscribed_business
    ):
        business_id = subscribed_business.business_id
        override_service.apply_discount(business_id, DiscountType.FIXED, Decimal("5"))
        subscription = provider.subscriptions["sub_pro"]
        provider.subscriptions["sub_pro"] = subscription.model_copy(update={
            "discount": Coupon(id="coupon_1", percent_off=Decimal("25"), duration="forever"),
        })

        overview = override_service.get_overview(business_id)

        assert overview.active_discount.coupon_id == "coupon_1"
        assert overview.active_discount.effective_price == Decimal("21.75")
        assert [o.action_type for o in overview.history] == [OverrideAction.DISCOUNT_APPLIED]

    def test_provider_failure_omits_discount(
        self, override_service, provider, as_platform_admin, subscribed_business
    ):
        provider.fail_on.add("retrieve_subscription")

        overview = override_service.get_overview(subscribed_business.business_id)

        assert overview.active_discount is None
        assert overview.plan_tier == PlanTier.PRO
