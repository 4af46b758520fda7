"""Subscription subtree embedded in an account document."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional

ACTIVE = "active"
PAST_DUE = "past_due"
INACTIVE = "inactive"
CANCELED = "canceled"
CANCEL_AT_PERIOD_END = "cancel_at_period_end"

SUBSCRIPTION_STATUSES = frozenset({ACTIVE, PAST_DUE, INACTIVE, CANCELED, CANCEL_AT_PERIOD_END})

DEFAULT_CANCELLATION_REASON = "No reason provided"


class Subscription:
    """
    Read view over the ``subscription`` object stored on an account.

    Attributes:
        tier: Plan level (essential, advanced, premium, safety-net)
        status: Internal status (active, past_due, inactive, canceled, cancel_at_period_end)
        billing_cycle: annual, quarterly or monthly
        stripe_subscription_id: Stripe subscription ID
        stripe_customer_id: Stripe customer ID mirrored from the account
        stripe_price_id: Stripe price ID of the single line item
        period_start: Start of current billing period
        period_end: End of current billing period
        cancel_at_period_end: Whether Stripe will end the subscription at period end
        cancellation_reason: Free-text reason captured on cancel
        coupon_applied: Coupon code applied at checkout
        discount: Discount summary captured at checkout
        last_event_at: Creation time of the newest webhook event applied
    """

    def __init__(
        self,
        tier: Optional[str] = None,
        status: Optional[str] = None,
        billing_cycle: Optional[str] = None,
        stripe_subscription_id: Optional[str] = None,
        stripe_customer_id: Optional[str] = None,
        stripe_price_id: Optional[str] = None,
        period_start: Optional[datetime] = None,
        period_end: Optional[datetime] = None,
        cancel_at_period_end: bool = False,
        cancellation_reason: Optional[str] = None,
        canceled_at: Optional[datetime] = None,
        expires_at: Optional[datetime] = None,
        coupon_applied: Optional[str] = None,
        discount: Optional[Dict[str, Any]] = None,
        last_event_at: Optional[int] = None,
    ):
        self.tier = tier
        self.status = status
        self.billing_cycle = billing_cycle
        self.stripe_subscription_id = stripe_subscription_id
        self.stripe_customer_id = stripe_customer_id
        self.stripe_price_id = stripe_price_id
        self.period_start = period_start
        self.period_end = period_end
        self.cancel_at_period_end = cancel_at_period_end
        self.cancellation_reason = cancellation_reason
        self.canceled_at = canceled_at
        self.expires_at = expires_at
        self.coupon_applied = coupon_applied
        self.discount = discount
        self.last_event_at = last_event_at

    @classmethod
    def from_document(cls, data: Optional[Dict[str, Any]]) -> Optional["Subscription"]:
        if not data:
            return None
        return cls(
            tier=data.get("tier"),
            status=data.get("status"),
            billing_cycle=data.get("billingCycle"),
            stripe_subscription_id=data.get("stripeSubscriptionId"),
            stripe_customer_id=data.get("stripeCustomerId"),
            stripe_price_id=data.get("stripePriceId"),
            period_start=parse_timestamp(data.get("periodStart")),
            period_end=parse_timestamp(data.get("periodEnd")),
            cancel_at_period_end=bool(data.get("cancelAtPeriodEnd", False)),
            cancellation_reason=data.get("cancellationReason"),
            canceled_at=parse_timestamp(data.get("canceledAt")),
            expires_at=parse_timestamp(data.get("expiresAt")),
            coupon_applied=data.get("couponApplied"),
            discount=data.get("discount"),
            last_event_at=data.get("lastEventAt"),
        )

    def is_active(self) -> bool:
        """Check if subscription is currently active."""
        return self.status == ACTIVE

    def __repr__(self) -> str:
        return f"<Subscription tier={self.tier} status={self.status} ref={self.stripe_subscription_id}>"


def to_timestamp(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).replace(microsecond=0).isoformat()


def from_epoch(seconds: Optional[int]) -> Optional[datetime]:
    if seconds is None:
        return None
    return datetime.fromtimestamp(int(seconds), tz=timezone.utc)


def parse_timestamp(value: Any) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        result = value
    else:
        result = datetime.fromisoformat(str(value))
    if result.tzinfo is None:
        return result.replace(tzinfo=timezone.utc)
    return result.astimezone(timezone.utc)
