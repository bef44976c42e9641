"""
Narrow interfaces to external collaborators.

Services depend on these, never on an SDK. clients/stripe_client.py and
core/stores/membership_store.py are the production implementations; tests
substitute in-memory fakes.
"""

from decimal import Decimal
from typing import Protocol
from uuid import UUID

from core.models import Coupon, CouponSpec, ExternalSubscription, ItemMutation, PaymentIntent


class SubscriptionProvider(Protocol):
    """External subscription provider. Every method raises ExternalProviderError on failure."""

    def retrieve_subscription(self, subscription_id: str) -> ExternalSubscription: ...

    def update_subscription_items(
        self,
        subscription_id: str,
        mutations: list[ItemMutation],
        prorate: bool = True,
        metadata: dict[str, str] | None = None,
    ) -> ExternalSubscription: ...

    def cancel_subscription(self, subscription_id: str, at_period_end: bool = False) -> ExternalSubscription: ...

    def create_coupon(self, spec: CouponSpec) -> Coupon: ...

    def set_discount(self, subscription_id: str, coupon_id: str | None) -> ExternalSubscription: ...


class PaymentGateway(Protocol):
    """Creates payment intents for public invoice payment. Card handling stays with the provider."""

    def create_payment_intent(
        self,
        amount: Decimal,
        currency: str,
        metadata: dict[str, str],
    ) -> PaymentIntent: ...


class MembershipDirectory(Protocol):
    """Workspace membership, owned by another system."""

    def count_members(self, business_id: UUID) -> int: ...

    def get_role(self, business_id: UUID, user_id: UUID) -> str | None:
        """Role name ("Owner", "Admin", "Member", ...) or None if not a member."""
        ...

    def is_platform_admin(self, user_id: UUID) -> bool: ...
