"""Tests for SeatReconciler."""

import pytest
from uuid import uuid4

from core.errors import ExternalProviderError, NotFoundError, StateConflict
from core.plans import PlanTier
from core.services.seat_reconciler import extra_seats
from tests.fakes import PRICES


@pytest.fixture
def pro_business(billing_store, provider, business):
    """Pro tenant (3 included seats) with a base-only subscription."""
    provider.add_subscription("sub_pro", [(PRICES.pro.base, 1)])
    return billing_store.update_state(business.business_id, {
        "plan_tier": PlanTier.PRO,
        "included_seats": 3,
        "subscription_status": "active",
        "external_subscription_id": "sub_pro",
    })


class TestExtraSeats:

    @pytest.mark.parametrize("members,included,expected", [
        (1, 3, 0),
        (3, 3, 0),
        (5, 3, 2),
        (12, 10, 2),
    ])
    def test_members_past_included_are_billed(self, members, included, expected):
        assert extra_seats(members, included) == expected


class TestReconcileWithoutSubscription:

    def test_free_tier_persists_count_only(self, seat_reconciler, billing_store, provider, business_id):
        result = seat_reconciler.reconcile(business_id)

        assert result.member_count == 2
        assert result.extra_seats == 0
        assert result.external_synced is False
        assert billing_store.get_state(business_id).seat_count == 2
        assert provider.calls == []

    def test_zero_members_counts_owner(self, seat_reconciler, billing_store, membership, business_id):
        membership.member_counts[business_id] = 0

        result = seat_reconciler.reconcile(business_id)

        assert result.member_count == 1

    def test_unknown_business(self, seat_reconciler):
        with pytest.raises(NotFoundError):
            seat_reconciler.reconcile(uuid4())


class TestReconcileWithSubscription:

    def test_within_included_seats_makes_no_update(self, seat_reconciler, provider, pro_business):
        result = seat_reconciler.reconcile(pro_business.business_id)

        assert result.extra_seats == 0
        assert result.external_synced is True
        assert provider.call_names() == ["retrieve_subscription"]

    def test_adds_seat_item_for_extra_members(self, seat_reconciler, provider, membership, pro_business):
        membership.member_counts[pro_business.business_id] = 5

        result = seat_reconciler.reconcile(pro_business.business_id)

        assert result.extra_seats == 2
        seat_item = provider.subscriptions["sub_pro"].item_for_price(PRICES.pro.seat)
        assert seat_item.quantity == 2
        _, payload = provider.calls[-1]
        assert payload["prorate"] is True

    def test_updates_existing_seat_item_in_place(self, seat_reconciler, provider, membership, pro_business):
        provider.add_subscription("sub_pro", [(PRICES.pro.base, 1), (PRICES.pro.seat, 4)])
        seat_id = provider.subscriptions["sub_pro"].item_for_price(PRICES.pro.seat).id
        membership.member_counts[pro_business.business_id] = 4

        seat_reconciler.reconcile(pro_business.business_id)

        _, payload = provider.calls[-1]
        [mutation] = payload["mutations"]
        assert mutation.id == seat_id
        assert mutation.quantity == 1

    def test_shrinks_seat_item_to_zero_without_deleting(self, seat_reconciler, provider, pro_business):
        provider.add_subscription("sub_pro", [(PRICES.pro.base, 1), (PRICES.pro.seat, 2)])

        seat_reconciler.reconcile(pro_business.business_id)

        seat_item = provider.subscriptions["sub_pro"].item_for_price(PRICES.pro.seat)
        assert seat_item is not None
        assert seat_item.quantity == 0

    def test_second_run_is_a_no_op(self, seat_reconciler, provider, membership, pro_business):
        membership.member_counts[pro_business.business_id] = 6
        seat_reconciler.reconcile(pro_business.business_id)
        provider.calls.clear()

        result = seat_reconciler.reconcile(pro_business.business_id)

        assert result.extra_seats == 3
        assert provider.call_names() == ["retrieve_subscription"]

    def test_custom_included_seats_are_respected(self, seat_reconciler, billing_store, provider, membership, pro_business):
        billing_store.update_state(pro_business.business_id, {"included_seats": 10})
        membership.member_counts[pro_business.business_id] = 8

        result = seat_reconciler.reconcile(pro_business.business_id)

        assert result.extra_seats == 0


class TestReconcileFailures:

    def test_seat_count_committed_before_provider_failure(
        self, seat_reconciler, billing_store, provider, membership, pro_business
    ):
        membership.member_counts[pro_business.business_id] = 7
        provider.fail_on.add("update_subscription_items")

        with pytest.raises(ExternalProviderError):
            seat_reconciler.reconcile(pro_business.business_id)

        assert billing_store.get_state(pro_business.business_id).seat_count == 7

    def test_held_lock_is_a_conflict(self, seat_reconciler, lock, pro_business):
        lock.busy.add(pro_business.business_id)

        with pytest.raises(StateConflict, match="Another billing operation"):
            seat_reconciler.reconcile(pro_business.business_id)
