"""
Provider lifecycle sync.

Applies verified Stripe webhook events to local billing state: checkout
completion activates a plan, subscription updates mirror status and period,
deletion is the terminal downgrade to free, and invoice payment events move
the tenant between past_due and active.
"""

import logging
from typing import Any, Callable
from uuid import UUID

from core.models import SubscriptionStatus, TenantBillingState, tier_defaults
from core.plans import PlanTier, plan_config
from core.stores.billing_store import PostgresBillingStore
from utils.timezone import from_unix

logger = logging.getLogger(__name__)

_PROVIDER_STATUSES = {
    "active": SubscriptionStatus.ACTIVE,
    "past_due": SubscriptionStatus.PAST_DUE,
    "canceled": SubscriptionStatus.CANCELED,
    "trialing": SubscriptionStatus.TRIALING,
    "incomplete": SubscriptionStatus.INCOMPLETE,
    "incomplete_expired": SubscriptionStatus.INCOMPLETE,
}


def map_subscription_status(provider_status: str | None) -> SubscriptionStatus:
    """Local status for a provider subscription status. Unknown ones map to none."""
    return _PROVIDER_STATUSES.get(provider_status or "", SubscriptionStatus.NONE)


def _object_id(value: Any) -> str | None:
    """Stripe sends expandable references as either an id or an object."""
    if value is None or isinstance(value, str):
        return value
    return value.get("id")


def _period_end(subscription: dict) -> Any:
    period_end = subscription.get("current_period_end")
    if period_end:
        return period_end
    for item in (subscription.get("items") or {}).get("data") or []:
        if item.get("current_period_end"):
            return item["current_period_end"]
    return None


class SubscriptionSyncService:
    """Dispatches provider webhook events to local state updates."""

    def __init__(self, store: PostgresBillingStore):
        self.store = store
        self._handlers: dict[str, Callable[[dict, str], None]] = {
            "checkout.session.completed": self._checkout_completed,
            "customer.subscription.updated": self._subscription_updated,
            "customer.subscription.deleted": self._subscription_deleted,
            "invoice.payment_failed": self._payment_failed,
            "invoice.payment_succeeded": self._payment_succeeded,
        }

    def handle_event(self, event: dict) -> bool:
        """
        Apply one verified event. Returns False for event types we ignore.

        Processing errors are logged and swallowed: the provider always gets
        an acknowledgement and retries are not relied on.
        """
        event_type = event.get("type", "")
        handler = self._handlers.get(event_type)
        if handler is None:
            logger.debug(f"Ignoring provider event {event_type}")
            return False

        obj = (event.get("data") or {}).get("object") or {}
        try:
            handler(obj, event.get("id", ""))
        except Exception:
            logger.exception(f"Failed to process provider event {event_type} ({event.get('id')})")
        return True

    def _log(self, business_id: UUID, event_type: str, event_id: str, metadata: dict | None = None) -> None:
        self.store.record_subscription_event(business_id, event_type, event_id, metadata)

    def _find_by_subscription(self, subscription_id: str | None) -> TenantBillingState | None:
        if not subscription_id:
            return None
        return self.store.get_state_by_subscription(subscription_id)

    def _checkout_completed(self, session: dict, event_id: str) -> None:
        metadata = session.get("metadata") or {}
        business_id = metadata.get("business_id")
        if not business_id:
            logger.error("checkout.session.completed missing business_id metadata")
            return

        tier = PlanTier(metadata.get("plan_tier") or PlanTier.PRO.value)
        subscription_id = _object_id(session.get("subscription"))
        customer_id = _object_id(session.get("customer"))

        self.store.update_state(UUID(business_id), {
            **tier_defaults(tier),
            "external_customer_id": customer_id,
            "external_subscription_id": subscription_id,
            "subscription_status": SubscriptionStatus.ACTIVE,
            "cancel_at_period_end": False,
            "ai_credits_used": 0,
        })
        self._log(UUID(business_id), "checkout.session.completed", event_id, {
            "plan_tier": tier.value,
            "customer_id": customer_id,
            "subscription_id": subscription_id,
        })
        logger.info(f"Business {business_id} activated on {tier.value}")

    def _subscription_updated(self, subscription: dict, event_id: str) -> None:
        subscription_id = subscription.get("id")
        business_id = (subscription.get("metadata") or {}).get("business_id")
        if business_id:
            state = self.store.get_state(UUID(business_id))
        else:
            state = self._find_by_subscription(subscription_id)
        if state is None:
            logger.error(f"subscription.updated: cannot find business for {subscription_id}")
            return
        # Overrides win: a comp detaches the subscription before the provider reports on it.
        if state.is_comped or state.external_subscription_id != subscription_id:
            logger.info(f"subscription.updated for detached subscription {subscription_id} ignored")
            return

        status = map_subscription_status(subscription.get("status"))
        self.store.update_state(state.business_id, {
            "subscription_status": status,
            "current_period_end": from_unix(_period_end(subscription)),
            "cancel_at_period_end": bool(subscription.get("cancel_at_period_end")),
        })
        self._log(state.business_id, "customer.subscription.updated", event_id, {"status": status.value})

    def _subscription_deleted(self, subscription: dict, event_id: str) -> None:
        state = self._find_by_subscription(subscription.get("id"))
        if state is None:
            # Comping clears the subscription id first, so its cancellation lands here.
            logger.info(f"subscription.deleted for unknown or detached subscription {subscription.get('id')}")
            return
        if state.is_comped:
            return

        self.store.update_state(state.business_id, {
            **tier_defaults(PlanTier.FREE),
            "subscription_status": SubscriptionStatus.CANCELED,
            "external_subscription_id": None,
            "cancel_at_period_end": False,
            "ai_credits_used": 0,
        })
        self._log(state.business_id, "customer.subscription.deleted", event_id)
        logger.info(f"Business {state.business_id} downgraded to free after subscription ended")

    def _payment_failed(self, invoice: dict, event_id: str) -> None:
        state = self._find_by_subscription(_object_id(invoice.get("subscription")))
        if state is None:
            return
        self.store.update_state(state.business_id, {"subscription_status": SubscriptionStatus.PAST_DUE})
        self._log(state.business_id, "invoice.payment_failed", event_id)
        logger.warning(f"Subscription payment failed for business {state.business_id}")

    def _payment_succeeded(self, invoice: dict, event_id: str) -> None:
        state = self._find_by_subscription(_object_id(invoice.get("subscription")))
        if state is None:
            return
        self.store.update_state(state.business_id, {
            "subscription_status": SubscriptionStatus.ACTIVE,
            "ai_credits_used": 0,
            "ai_credits_limit": plan_config(state.plan_tier).ai_credits,
        })
        self._log(state.business_id, "invoice.payment_succeeded", event_id)
