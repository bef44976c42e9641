"""Tests for TierChangeService."""

import pytest
from uuid import uuid4

from core.errors import (
    AuthorizationError,
    ExternalProviderError,
    InvalidTransition,
    NoSubscription,
    NotFoundError,
    StateConflict,
)
from core.models import ExternalSubscription, OverrideAction, SubscriptionItem, SubscriptionStatus
from core.plans import PlanTier, TierPrices
from core.services.tier_change_service import build_tier_diff
from tests.fakes import PRICES


@pytest.fixture
def pro_business(billing_store, provider, business):
    provider.add_subscription("sub_pro", [(PRICES.pro.base, 1)])
    return billing_store.update_state(business.business_id, {
        "plan_tier": PlanTier.PRO,
        "included_seats": 3,
        "subscription_status": SubscriptionStatus.ACTIVE,
        "external_subscription_id": "sub_pro",
        "external_customer_id": "cus_1",
    })


# =============================================================================
# ITEM DIFF
# =============================================================================


class TestBuildTierDiff:

    def _subscription(self, *items):
        return ExternalSubscription(
            id="sub_1",
            status="active",
            items=[SubscriptionItem(id=f"si_{i}", price_id=p, quantity=q) for i, (p, q) in enumerate(items)],
        )

    def test_replaces_base_and_seat_by_id(self):
        sub = self._subscription((PRICES.pro.base, 1), (PRICES.pro.seat, 4))

        mutations = build_tier_diff(sub, PRICES.pro, PRICES.enterprise, extra=2)

        assert [(m.id, m.price_id, m.quantity) for m in mutations] == [
            ("si_0", PRICES.enterprise.base, 1),
            ("si_1", PRICES.enterprise.seat, 2),
        ]

    def test_deletes_seat_item_when_no_extra_seats(self):
        sub = self._subscription((PRICES.pro.base, 1), (PRICES.pro.seat, 4))

        mutations = build_tier_diff(sub, PRICES.pro, PRICES.enterprise, extra=0)

        assert mutations[1].id == "si_1"
        assert mutations[1].deleted is True

    def test_inserts_missing_items(self):
        sub = self._subscription()

        mutations = build_tier_diff(sub, None, TierPrices(base="b", seat="s"), extra=3)

        assert [(m.id, m.price_id, m.quantity) for m in mutations] == [(None, "b", 1), (None, "s", 3)]

    def test_no_seat_item_and_no_extra(self):
        sub = self._subscription((PRICES.pro.base, 1))

        mutations = build_tier_diff(sub, PRICES.pro, PRICES.enterprise, extra=0)

        assert len(mutations) == 1


# =============================================================================
# CHANGE TIER
# =============================================================================


class TestChangeTierGuards:

    def test_requires_platform_admin(self, tier_change_service, as_test_user, pro_business):
        with pytest.raises(AuthorizationError, match="Platform admin"):
            tier_change_service.change_tier(pro_business.business_id, PlanTier.ENTERPRISE)

    def test_same_tier_is_invalid_and_records_nothing(
        self, tier_change_service, billing_store, provider, as_platform_admin, pro_business
    ):
        with pytest.raises(InvalidTransition, match="Already on this tier"):
            tier_change_service.change_tier(pro_business.business_id, PlanTier.PRO)

        assert billing_store.overrides == []
        assert provider.calls == []

    def test_comped_business_rejected(self, tier_change_service, billing_store, as_platform_admin, business_id):
        billing_store.update_state(business_id, {
            "plan_tier": PlanTier.PRO,
            "subscription_status": SubscriptionStatus.COMPED,
        })

        with pytest.raises(StateConflict, match="Remove comp first"):
            tier_change_service.change_tier(business_id, PlanTier.ENTERPRISE)

    def test_unknown_business(self, tier_change_service, as_platform_admin):
        with pytest.raises(NotFoundError):
            tier_change_service.change_tier(uuid4(), PlanTier.PRO)

    def test_paid_change_without_subscription(self, tier_change_service, as_platform_admin, business_id):
        with pytest.raises(NoSubscription, match="Use Comp"):
            tier_change_service.change_tier(business_id, PlanTier.PRO)

    def test_held_lock_is_a_conflict(self, tier_change_service, lock, as_platform_admin, pro_business):
        lock.busy.add(pro_business.business_id)

        with pytest.raises(StateConflict, match="Another billing operation"):
            tier_change_service.change_tier(pro_business.business_id, PlanTier.ENTERPRISE)


class TestPaidTierChange:

    def test_pro_to_enterprise(
        self, tier_change_service, billing_store, provider, membership, published,
        as_platform_admin, pro_business,
    ):
        membership.member_counts[pro_business.business_id] = 12

        result = tier_change_service.change_tier(pro_business.business_id, PlanTier.ENTERPRISE, "Upsell")

        assert result.message == "Tier changed from pro to enterprise with proration"

        state = billing_store.get_state(pro_business.business_id)
        assert state.plan_tier == PlanTier.ENTERPRISE
        assert state.included_seats == 10
        assert state.ai_credits_limit == 2000

        subscription = provider.subscriptions["sub_pro"]
        assert subscription.item_for_price(PRICES.enterprise.base).quantity == 1
        assert subscription.item_for_price(PRICES.enterprise.seat).quantity == 2
        assert subscription.item_for_price(PRICES.pro.base) is None
        assert subscription.metadata["plan_tier"] == "enterprise"

        [override] = billing_store.overrides
        assert override.action_type == OverrideAction.TIER_CHANGED
        assert override.details == {"from": "pro", "to": "enterprise"}
        assert override.is_active is False
        assert override.performed_by == as_platform_admin
        assert override.reason == "Upsell"

        [event] = published
        assert type(event).__name__ == "TierChanged"
        assert event.to_tier == "enterprise"
        assert event.effective_immediately is True

    def test_provider_failure_leaves_local_state(
        self, tier_change_service, billing_store, provider, published, as_platform_admin, pro_business
    ):
        provider.fail_on.add("update_subscription_items")

        with pytest.raises(ExternalProviderError):
            tier_change_service.change_tier(pro_business.business_id, PlanTier.ENTERPRISE)

        assert billing_store.get_state(pro_business.business_id).plan_tier == PlanTier.PRO
        assert billing_store.overrides == []
        assert published == []


class TestDowngradeToFree:

    def test_with_subscription_cancels_at_period_end(
        self, tier_change_service, billing_store, provider, published, as_platform_admin, pro_business
    ):
        result = tier_change_service.change_tier(pro_business.business_id, PlanTier.FREE)

        assert result.message == "Subscription will be canceled at the end of the billing period"
        assert provider.subscriptions["sub_pro"].cancel_at_period_end is True

        state = billing_store.get_state(pro_business.business_id)
        assert state.plan_tier == PlanTier.PRO
        assert state.cancel_at_period_end is True
        assert published[0].effective_immediately is False

    def test_without_subscription_downgrades_now(
        self, tier_change_service, billing_store, provider, as_platform_admin, business_id
    ):
        billing_store.update_state(business_id, {"plan_tier": PlanTier.PRO, "included_seats": 3})

        result = tier_change_service.change_tier(business_id, PlanTier.FREE)

        assert result.message == "Tier changed from pro to free"
        state = billing_store.get_state(business_id)
        assert state.plan_tier == PlanTier.FREE
        assert state.included_seats == 1
        assert state.ai_credits_limit == 5
        assert provider.calls == []
