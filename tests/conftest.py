"""Shared fixtures: a real SQLite store in a temp dir and a mocked Stripe adapter."""

from typing import Any, Dict, Optional
from unittest.mock import MagicMock

import pytest

from sitecare.domain.pricing import PriceCatalog
from sitecare.infrastructure.persistence.sqlite import SQLitePersistence
from sitecare.services.event_dispatcher import EventDispatcher
from sitecare.services.stripe_service import StripeService
from sitecare.services.subscription_service import SubscriptionService

PERIOD_START = 1_735_689_600  # 2025-01-01T00:00:00Z
PERIOD_END = 1_767_225_600  # 2026-01-01T00:00:00Z

ESSENTIAL_PRICE = "price_essential_annual"
ADVANCED_PRICE = "price_advanced_annual"
PREMIUM_PRICE = "price_premium_annual"
SAFETY_NET_PRICE = "price_safety_net_annual"


def make_subscription(
    subscription_id: str = "sub_123",
    status: str = "active",
    price_id: str = ESSENTIAL_PRICE,
    customer: str = "cus_123",
    cancel_at_period_end: bool = False,
    client_secret: Optional[str] = None,
    latest_invoice: Any = None,
) -> Dict[str, Any]:
    if client_secret:
        latest_invoice = {"id": "in_1", "payment_intent": {"client_secret": client_secret}}
    return {
        "id": subscription_id,
        "object": "subscription",
        "customer": customer,
        "status": status,
        "cancel_at_period_end": cancel_at_period_end,
        "current_period_start": PERIOD_START,
        "current_period_end": PERIOD_END,
        "latest_invoice": latest_invoice,
        "items": {"data": [{"id": "si_1", "price": {"id": price_id, "product": "prod_1"}}]},
    }


@pytest.fixture
def store(tmp_path):
    persistence = SQLitePersistence(tmp_path / "sitecare.db")
    yield persistence
    persistence.close()


@pytest.fixture
def catalog():
    return PriceCatalog(
        {
            ("essential", "annual"): ESSENTIAL_PRICE,
            ("advanced", "annual"): ADVANCED_PRICE,
            ("premium", "annual"): PREMIUM_PRICE,
            ("safety-net", "annual"): SAFETY_NET_PRICE,
        }
    )


@pytest.fixture
def billing():
    mock = MagicMock(spec=StripeService)
    mock.is_configured.return_value = True
    mock.retrieve_customer.return_value = None
    mock.create_customer.return_value = {"id": "cus_123"}
    mock.retrieve_coupon.return_value = None
    mock.retrieve_subscription.return_value = None
    mock.retrieve_price.return_value = {"id": ADVANCED_PRICE, "product": "prod_adv"}
    mock.retrieve_invoice.return_value = {"id": "in_1", "amount_paid": 31000}
    return mock


@pytest.fixture
def dispatcher():
    return EventDispatcher()


@pytest.fixture
def service(store, billing, catalog, dispatcher):
    return SubscriptionService(
        accounts=store,
        billing=billing,
        catalog=catalog,
        dispatcher=dispatcher,
        app_base_url="https://app.example.com",
    )


@pytest.fixture
def subscribed_account(store):
    """Account on essential/annual with an active Stripe subscription."""
    store.ensure_account("acct_1", "owner@example.com")
    store.update_account_fields(
        "acct_1",
        {
            "billing_customer_ref": "cus_123",
            "subscription": {
                "tier": "essential",
                "status": "active",
                "billingCycle": "annual",
                "stripeSubscriptionId": "sub_123",
                "stripeCustomerId": "cus_123",
                "stripePriceId": ESSENTIAL_PRICE,
                "periodStart": "2025-01-01T00:00:00+00:00",
                "periodEnd": "2026-01-01T00:00:00+00:00",
            },
        },
    )
    return "acct_1"
