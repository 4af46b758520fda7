"""Account document holding subscription, payment method and company data."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from .subscription import Subscription


@dataclass(slots=True)
class Account:
    account_id: str
    email: Optional[str]
    billing_customer_ref: Optional[str]
    subscription_data: Dict[str, Any] = field(default_factory=dict)
    payment_method: Optional[Dict[str, Any]] = None
    company: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def subscription(self) -> Optional[Subscription]:
        return Subscription.from_document(self.subscription_data)

    @property
    def customer_ref(self) -> Optional[str]:
        """Stored Stripe customer, falling back to the copy kept on the subscription."""
        return self.billing_customer_ref or self.subscription_data.get("stripeCustomerId")
