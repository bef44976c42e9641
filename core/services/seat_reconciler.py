"""
Seat reconciliation between workspace membership and the subscription.

Paid plans include a number of seats; every member past that is billed
through a separate seat item on the subscription. Reconciling is
idempotent and can be re-run at any time as a repair action.
"""

import logging
from uuid import UUID

from core.errors import NotFoundError
from core.locks import TenantLock
from core.models import ItemMutation, SeatSyncResult, TenantBillingState
from core.plans import PriceCatalog
from core.ports import MembershipDirectory, SubscriptionProvider
from core.stores.billing_store import PostgresBillingStore

logger = logging.getLogger(__name__)


def extra_seats(member_count: int, included_seats: int) -> int:
    return max(0, member_count - included_seats)


class SeatReconciler:
    """Brings the billed seat quantity in line with the member count."""

    def __init__(
        self,
        store: PostgresBillingStore,
        provider: SubscriptionProvider,
        membership: MembershipDirectory,
        prices: PriceCatalog,
        lock: TenantLock,
    ):
        self.store = store
        self.provider = provider
        self.membership = membership
        self.prices = prices
        self.lock = lock

    def reconcile(self, business_id: UUID) -> SeatSyncResult:
        """
        Sync seat_count locally and the seat item quantity externally.

        The local seat count is committed before the provider is called, so
        it is current even if the provider update fails.

        Raises:
            NotFoundError: Business doesn't exist
            ExternalProviderError: Provider rejected the update
            StateConflict: Another billing operation holds the tenant lock
        """
        state = self.store.get_state(business_id)
        if state is None:
            raise NotFoundError(f"Business {business_id} not found")

        # The owner always occupies a seat.
        member_count = self.membership.count_members(business_id) or 1
        tier_prices = self.prices.for_tier(state.plan_tier)

        if tier_prices is None or not state.has_subscription:
            self._persist_seat_count(state, member_count)
            return SeatSyncResult(
                business_id=business_id,
                member_count=member_count,
                extra_seats=0,
                external_synced=False,
            )

        extra = extra_seats(member_count, state.effective_included_seats)
        self._persist_seat_count(state, member_count)

        with self.lock.hold(business_id):
            subscription = self.provider.retrieve_subscription(state.external_subscription_id)
            seat_item = subscription.item_for_price(tier_prices.seat)

            if seat_item is not None:
                if seat_item.quantity == extra:
                    logger.debug(f"Seat quantity already {extra} for business {business_id}")
                    return SeatSyncResult(
                        business_id=business_id,
                        member_count=member_count,
                        extra_seats=extra,
                        external_synced=True,
                    )
                # Quantity 0 keeps the item so later growth only needs an update.
                mutation = ItemMutation(id=seat_item.id, quantity=extra)
            elif extra > 0:
                mutation = ItemMutation(price_id=tier_prices.seat, quantity=extra)
            else:
                return SeatSyncResult(
                    business_id=business_id,
                    member_count=member_count,
                    extra_seats=0,
                    external_synced=True,
                )

            self.provider.update_subscription_items(subscription.id, [mutation], prorate=True)

        logger.info(f"Synced {extra} extra seats for business {business_id} ({member_count} members)")
        return SeatSyncResult(
            business_id=business_id,
            member_count=member_count,
            extra_seats=extra,
            external_synced=True,
        )

    def _persist_seat_count(self, state: TenantBillingState, member_count: int) -> None:
        if state.seat_count != member_count:
            self.store.update_state(state.business_id, {"seat_count": member_count})
