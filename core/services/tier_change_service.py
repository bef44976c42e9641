"""
Administrative plan tier changes with proration.

Paid-to-paid changes swap the subscription's base and seat prices in one
proration-enabled update; the local tier only moves once the provider has
accepted it. Downgrades to free cancel at period end and let the provider's
subscription.deleted webhook perform the final downgrade.
"""

import logging
from uuid import UUID

from auth.permissions import Permissions
from core.errors import InvalidTransition, NoSubscription, NotFoundError, StateConflict
from core.event_bus import EventBus
from core.events import TierChanged
from core.locks import TenantLock
from core.models import (
    BillingResult,
    ExternalSubscription,
    ItemMutation,
    OverrideAction,
    SubscriptionStatus,
    TenantBillingState,
    tier_defaults,
)
from core.plans import PlanTier, PriceCatalog, TierPrices, plan_config
from core.ports import MembershipDirectory, SubscriptionProvider
from core.services.seat_reconciler import extra_seats
from core.stores.billing_store import PostgresBillingStore

logger = logging.getLogger(__name__)


def build_tier_diff(
    subscription: ExternalSubscription,
    old_prices: TierPrices | None,
    new_prices: TierPrices,
    extra: int,
) -> list[ItemMutation]:
    """
    Item mutations that move a subscription onto new_prices.

    Existing base and seat items are replaced by id so the provider prorates
    them; missing ones are inserted. A seat item with no extra seats left is
    deleted.
    """
    old_base = subscription.item_for_price(old_prices.base) if old_prices else None
    old_seat = subscription.item_for_price(old_prices.seat) if old_prices else None

    mutations = []
    if old_base is not None:
        mutations.append(ItemMutation(id=old_base.id, price_id=new_prices.base, quantity=1))
    else:
        mutations.append(ItemMutation(price_id=new_prices.base, quantity=1))

    if old_seat is not None:
        if extra > 0:
            mutations.append(ItemMutation(id=old_seat.id, price_id=new_prices.seat, quantity=extra))
        else:
            mutations.append(ItemMutation(id=old_seat.id, deleted=True))
    elif extra > 0:
        mutations.append(ItemMutation(price_id=new_prices.seat, quantity=extra))

    return mutations


class TierChangeService:
    """Moves a tenant between free, pro and enterprise."""

    def __init__(
        self,
        store: PostgresBillingStore,
        provider: SubscriptionProvider,
        membership: MembershipDirectory,
        prices: PriceCatalog,
        lock: TenantLock,
        permissions: Permissions,
        event_bus: EventBus,
    ):
        self.store = store
        self.provider = provider
        self.membership = membership
        self.prices = prices
        self.lock = lock
        self.permissions = permissions
        self.event_bus = event_bus

    def change_tier(self, business_id: UUID, new_tier: PlanTier, reason: str | None = None) -> BillingResult:
        """
        Change a tenant's tier.

        Raises:
            AuthorizationError: Caller is not a platform admin
            NotFoundError: Business doesn't exist
            InvalidTransition: Already on new_tier
            StateConflict: Business is comped
            NoSubscription: Paid-to-paid change without a subscription
            ExternalProviderError: Provider rejected the update (nothing changed locally)
        """
        admin_id = self.permissions.require_platform_admin()
        new_tier = PlanTier(new_tier)

        with self.lock.hold(business_id):
            state = self.store.get_state(business_id)
            if state is None:
                raise NotFoundError(f"Business {business_id} not found")

            if state.is_comped:
                raise StateConflict("Cannot change tier for comped businesses. Remove comp first.")
            if state.plan_tier == new_tier:
                raise InvalidTransition("Already on this tier")

            if new_tier == PlanTier.FREE:
                result = self._downgrade_to_free(state, reason, admin_id)
            else:
                result = self._change_paid_tier(state, new_tier, reason, admin_id)

        self.event_bus.publish(TierChanged.create(
            business_id=business_id,
            from_tier=state.plan_tier.value,
            to_tier=new_tier.value,
            effective_immediately=not state.has_subscription or new_tier.is_paid,
        ))
        return result

    def _downgrade_to_free(
        self,
        state: TenantBillingState,
        reason: str | None,
        admin_id: UUID,
    ) -> BillingResult:
        if state.has_subscription:
            self.provider.cancel_subscription(state.external_subscription_id, at_period_end=True)
            state_changes = {"cancel_at_period_end": True}
            message = "Subscription will be canceled at the end of the billing period"
        else:
            state_changes = {
                **tier_defaults(PlanTier.FREE),
                "subscription_status": SubscriptionStatus.NONE,
            }
            message = f"Tier changed from {state.plan_tier.value} to free"

        self._record(state, PlanTier.FREE, reason, admin_id, state_changes)
        logger.info(f"Business {state.business_id} downgraded to free ({message})")
        return BillingResult(message=message)

    def _change_paid_tier(
        self,
        state: TenantBillingState,
        new_tier: PlanTier,
        reason: str | None,
        admin_id: UUID,
    ) -> BillingResult:
        if not state.has_subscription:
            raise NoSubscription(
                "No active subscription. Use Comp to grant a paid tier without a subscription."
            )

        new_prices = self.prices.for_tier(new_tier)
        old_prices = self.prices.for_tier(state.plan_tier)

        member_count = self.membership.count_members(state.business_id) or 1
        extra = extra_seats(member_count, plan_config(new_tier).included_seats)

        subscription = self.provider.retrieve_subscription(state.external_subscription_id)
        mutations = build_tier_diff(subscription, old_prices, new_prices, extra)

        self.provider.update_subscription_items(
            subscription.id,
            mutations,
            prorate=True,
            metadata={"business_id": str(state.business_id), "plan_tier": new_tier.value},
        )

        self._record(state, new_tier, reason, admin_id, tier_defaults(new_tier))
        logger.info(
            f"Business {state.business_id} moved {state.plan_tier.value} -> {new_tier.value} "
            f"({extra} extra seats)"
        )
        return BillingResult(
            message=f"Tier changed from {state.plan_tier.value} to {new_tier.value} with proration"
        )

    def _record(self, state, new_tier, reason, admin_id, state_changes) -> None:
        self.store.record_override(
            state.business_id,
            OverrideAction.TIER_CHANGED,
            details={"from": state.plan_tier.value, "to": new_tier.value},
            reason=reason,
            performed_by=admin_id,
            is_active=False,
            state_changes=state_changes,
        )
