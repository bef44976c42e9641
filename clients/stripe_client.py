"""
Stripe adapters for the subscription provider and payment gateway ports.

Every call passes api_key explicitly instead of setting the module-global
stripe.api_key, so tests and multiple configurations never interfere.
Any stripe.StripeError is wrapped in ExternalProviderError with the
provider's own message.
"""

import logging
from decimal import Decimal
from typing import Any

import stripe

from core.errors import ExternalProviderError
from core.models import Coupon, CouponSpec, ExternalSubscription, ItemMutation, PaymentIntent, SubscriptionItem
from core.money import to_cents
from utils.timezone import from_unix

logger = logging.getLogger(__name__)


def _coupon_from_stripe(coupon: Any) -> Coupon | None:
    if not coupon:
        return None
    if isinstance(coupon, str):
        return Coupon(id=coupon)
    percent_off = coupon.get("percent_off")
    return Coupon(
        id=coupon["id"],
        percent_off=Decimal(str(percent_off)) if percent_off is not None else None,
        amount_off_cents=coupon.get("amount_off"),
        duration=coupon.get("duration"),
        duration_in_months=coupon.get("duration_in_months"),
    )


def _discount_coupon(sub: Any) -> Coupon | None:
    """Coupon behind the subscription's discount, legacy or multi-discount shape."""
    discount = sub.get("discount")
    if discount:
        return _coupon_from_stripe(discount.get("coupon"))
    for entry in sub.get("discounts") or []:
        if isinstance(entry, str):
            continue
        coupon = entry.get("coupon") or (entry.get("source") or {}).get("coupon")
        if coupon:
            return _coupon_from_stripe(coupon)
    return None


def subscription_from_stripe(sub: Any) -> ExternalSubscription:
    """Translate a Stripe Subscription (object or dict) to the neutral model."""
    items = []
    period_end = sub.get("current_period_end")
    for item in sub["items"]["data"]:
        price = item["price"]
        items.append(SubscriptionItem(
            id=item["id"],
            price_id=price if isinstance(price, str) else price["id"],
            quantity=item.get("quantity") or 0,
        ))
        # Newer API versions report the period per item.
        period_end = period_end or item.get("current_period_end")

    return ExternalSubscription(
        id=sub["id"],
        status=sub["status"],
        items=items,
        discount=_discount_coupon(sub),
        cancel_at_period_end=bool(sub.get("cancel_at_period_end")),
        current_period_end=from_unix(period_end),
        metadata=dict(sub.get("metadata") or {}),
    )


def _item_params(mutation: ItemMutation) -> dict:
    params: dict[str, Any] = {}
    if mutation.id is not None:
        params["id"] = mutation.id
    if mutation.deleted:
        params["deleted"] = True
        return params
    if mutation.price_id is not None:
        params["price"] = mutation.price_id
    if mutation.quantity is not None:
        params["quantity"] = mutation.quantity
    return params


class StripeSubscriptionProvider:
    """SubscriptionProvider backed by the Stripe Subscriptions and Coupons APIs."""

    def __init__(self, secret_key: str):
        if not secret_key:
            raise ValueError("secret_key is required")
        self._api_key = secret_key

    def retrieve_subscription(self, subscription_id: str) -> ExternalSubscription:
        try:
            sub = stripe.Subscription.retrieve(
                subscription_id,
                expand=["discounts"],
                api_key=self._api_key,
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe retrieve failed for {subscription_id}: {e}")
            raise ExternalProviderError(f"Failed to retrieve subscription: {e.user_message or e}", e.code)
        return subscription_from_stripe(sub)

    def update_subscription_items(
        self,
        subscription_id: str,
        mutations: list[ItemMutation],
        prorate: bool = True,
        metadata: dict[str, str] | None = None,
    ) -> ExternalSubscription:
        """Submit an item diff as one update. Proration is created when prorate is set."""
        params: dict[str, Any] = {
            "items": [_item_params(m) for m in mutations],
            "proration_behavior": "create_prorations" if prorate else "none",
        }
        if metadata:
            params["metadata"] = metadata

        try:
            sub = stripe.Subscription.modify(subscription_id, api_key=self._api_key, **params)
        except stripe.StripeError as e:
            logger.error(f"Stripe item update failed for {subscription_id}: {e}")
            raise ExternalProviderError(f"Failed to update subscription: {e.user_message or e}", e.code)
        return subscription_from_stripe(sub)

    def cancel_subscription(self, subscription_id: str, at_period_end: bool = False) -> ExternalSubscription:
        """Cancel now, or flag cancel_at_period_end and let Stripe end it later."""
        try:
            if at_period_end:
                sub = stripe.Subscription.modify(
                    subscription_id,
                    cancel_at_period_end=True,
                    api_key=self._api_key,
                )
            else:
                sub = stripe.Subscription.cancel(subscription_id, api_key=self._api_key)
        except stripe.StripeError as e:
            logger.error(f"Stripe cancel failed for {subscription_id}: {e}")
            raise ExternalProviderError(f"Failed to cancel subscription: {e.user_message or e}", e.code)
        return subscription_from_stripe(sub)

    def create_coupon(self, spec: CouponSpec) -> Coupon:
        params: dict[str, Any] = {
            "name": spec.name,
            "duration": spec.duration.value,
            "metadata": spec.metadata,
        }
        if spec.percent_off is not None:
            params["percent_off"] = float(spec.percent_off)
        else:
            params["amount_off"] = spec.amount_off_cents
            params["currency"] = spec.currency
        if spec.duration_in_months is not None:
            params["duration_in_months"] = spec.duration_in_months

        try:
            coupon = stripe.Coupon.create(api_key=self._api_key, **params)
        except stripe.StripeError as e:
            logger.error(f"Stripe coupon create failed: {e}")
            raise ExternalProviderError(f"Failed to create coupon: {e.user_message or e}", e.code)
        return _coupon_from_stripe(coupon)

    def set_discount(self, subscription_id: str, coupon_id: str | None) -> ExternalSubscription:
        """Attach coupon_id as the subscription's only discount, or clear it with None."""
        try:
            if coupon_id is None:
                stripe.Subscription.delete_discount(subscription_id, api_key=self._api_key)
                sub = stripe.Subscription.retrieve(subscription_id, api_key=self._api_key)
            else:
                sub = stripe.Subscription.modify(
                    subscription_id,
                    discounts=[{"coupon": coupon_id}],
                    api_key=self._api_key,
                )
        except stripe.StripeError as e:
            logger.error(f"Stripe discount update failed for {subscription_id}: {e}")
            raise ExternalProviderError(f"Failed to update discount: {e.user_message or e}", e.code)
        return subscription_from_stripe(sub)


class StripePaymentGateway:
    """PaymentGateway backed by Stripe PaymentIntents."""

    def __init__(self, secret_key: str):
        if not secret_key:
            raise ValueError("secret_key is required")
        self._api_key = secret_key

    def create_payment_intent(self, amount: Decimal, currency: str, metadata: dict[str, str]) -> PaymentIntent:
        amount_cents = to_cents(amount)
        try:
            intent = stripe.PaymentIntent.create(
                amount=amount_cents,
                currency=currency,
                metadata=metadata,
                automatic_payment_methods={"enabled": True},
                api_key=self._api_key,
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe payment intent failed: {e}")
            raise ExternalProviderError(f"Failed to start payment: {e.user_message or e}", e.code)

        return PaymentIntent(
            id=intent["id"],
            client_secret=intent["client_secret"],
            amount_cents=amount_cents,
            metadata=dict(intent.get("metadata") or {}),
        )


class StripeWebhookVerifier:
    """Verifies webhook signatures and parses the event payload."""

    def __init__(self, webhook_secret: str):
        if not webhook_secret:
            raise ValueError("webhook_secret is required")
        self._secret = webhook_secret

    def construct_event(self, payload: bytes, sig_header: str | None) -> dict:
        """
        Raises:
            ValueError: Missing or invalid signature, or malformed payload
        """
        if not sig_header:
            raise ValueError("Missing stripe-signature header")
        try:
            event = stripe.Webhook.construct_event(payload, sig_header, self._secret)
        except stripe.SignatureVerificationError as e:
            raise ValueError(f"Invalid webhook signature: {e}")
        return event.to_dict() if hasattr(event, "to_dict") else dict(event)
