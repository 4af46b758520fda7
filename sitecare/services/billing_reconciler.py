"""Applies Stripe webhook events to account records.

Stripe is authoritative: each handled event re-derives the subscription
fields it owns and overwrites them. Events older than the last one applied
to an account are skipped, so a late retry cannot roll state back.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Tuple

from ..domain.errors import WebhookProcessingError
from ..domain.models import Account
from ..domain.models.subscription import CANCELED, from_epoch, to_timestamp
from ..domain.ports.persistence import AccountRepository
from ..domain.pricing import BILLING_CYCLES, TIERS, PriceCatalog, map_status
from . import event_dispatcher as events
from .event_dispatcher import EventDispatcher
from .rate_limiter import TTLCache
from .stripe_service import StripeService, first_item, object_id, subscription_period

logger = logging.getLogger(__name__)

CHECKOUT_COMPLETED = "checkout.session.completed"
SUBSCRIPTION_CREATED = "customer.subscription.created"
SUBSCRIPTION_UPDATED = "customer.subscription.updated"
SUBSCRIPTION_DELETED = "customer.subscription.deleted"


class BillingReconciler:
    """Verifies and dispatches Stripe webhook events."""

    def __init__(
        self,
        accounts: AccountRepository,
        billing: StripeService,
        catalog: PriceCatalog,
        processed_events: TTLCache,
        dispatcher: Optional[EventDispatcher] = None,
    ) -> None:
        self._accounts = accounts
        self._billing = billing
        self._catalog = catalog
        self._processed = processed_events
        self._dispatcher = dispatcher or EventDispatcher()
        self._handlers: Dict[str, Callable[[Any, Optional[int]], None]] = {
            CHECKOUT_COMPLETED: self._handle_checkout_completed,
            SUBSCRIPTION_CREATED: self._handle_subscription_upserted,
            SUBSCRIPTION_UPDATED: self._handle_subscription_upserted,
            SUBSCRIPTION_DELETED: self._handle_subscription_deleted,
        }

    def handle(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        """Verify the signature, then process. Signature failures raise before any write."""
        event = self._billing.construct_event(payload, signature)
        return self.process_event(event)

    def process_event(self, event: Any) -> Dict[str, Any]:
        event_id = event.get("id")
        event_type = event.get("type")
        if event_id and event_id in self._processed:
            logger.info("Skipping duplicate webhook event %s (%s)", event_id, event_type)
            return {"received": True, "duplicate": True}

        handler = self._handlers.get(event_type)
        if handler is None:
            logger.debug("Ignoring webhook event type %s", event_type)
            return {"received": True}

        try:
            handler(event["data"]["object"], event.get("created"))
        except Exception as exc:
            logger.exception("Webhook %s (%s) failed", event_id, event_type)
            raise WebhookProcessingError() from exc

        if event_id:
            self._processed.add(event_id)
        return {"received": True}

    # Handlers -----------------------------------------------------------------
    def _handle_checkout_completed(self, session: Any, created: Optional[int]) -> None:
        account_id = session.get("client_reference_id") or (session.get("metadata") or {}).get("accountId")
        if not account_id:
            logger.warning("Checkout session %s carries no account reference", session.get("id"))
            return

        customer_id = object_id(session.get("customer"))
        subscription_id = object_id(session.get("subscription"))
        email = (session.get("customer_details") or {}).get("email") or session.get("customer_email")
        self._accounts.ensure_account(account_id, email)

        fields: Dict[str, Any] = {}
        if customer_id:
            fields["billing_customer_ref"] = customer_id
            fields["subscription.stripeCustomerId"] = customer_id
        if subscription_id:
            fields["subscription.stripeSubscriptionId"] = subscription_id
        if not fields:
            return
        account = self._accounts.update_account_fields(account_id, fields)
        logger.info("Linked checkout session %s to account %s", session.get("id"), account_id)

        # Subscription events can arrive before this one and find no account.
        if subscription_id:
            subscription = self._billing.retrieve_subscription(subscription_id)
            if subscription is not None and not self._is_stale(account, created):
                self._apply_subscription(account, subscription, created)

    def _handle_subscription_upserted(self, subscription: Any, created: Optional[int]) -> None:
        account = self._account_for(subscription)
        if account is None or self._is_stale(account, created):
            return
        self._apply_subscription(account, subscription, created)

    def _handle_subscription_deleted(self, subscription: Any, created: Optional[int]) -> None:
        account = self._account_for(subscription)
        if account is None or self._is_stale(account, created):
            return
        self._accounts.update_account_fields(
            account.account_id,
            {
                "subscription.status": CANCELED,
                "subscription.cancelAtPeriodEnd": True,
                "subscription.lastEventAt": created,
                "subscription.updatedAt": _event_time(created),
            },
        )
        logger.info("Subscription %s deleted for account %s", subscription.get("id"), account.account_id)
        self._dispatcher.emit(
            events.SUBSCRIPTION_RECONCILED,
            {"accountId": account.account_id, "status": CANCELED},
        )

    # Helpers ------------------------------------------------------------------
    def _apply_subscription(self, account: Account, subscription: Any, created: Optional[int]) -> None:
        customer_id = object_id(subscription.get("customer"))
        cancel_at_period_end = bool(subscription.get("cancel_at_period_end"))
        status = map_status(subscription.get("status"), cancel_at_period_end)
        item = first_item(subscription)
        price = (item or {}).get("price") or {}
        tier, billing_cycle = self._plan_for(price)
        period_start, period_end = subscription_period(subscription)

        fields: Dict[str, Any] = {
            "billing_customer_ref": customer_id,
            "subscription.status": status,
            "subscription.stripeSubscriptionId": subscription.get("id"),
            "subscription.stripeCustomerId": customer_id,
            "subscription.stripePriceId": price.get("id"),
            "subscription.periodStart": to_timestamp(from_epoch(period_start)),
            "subscription.periodEnd": to_timestamp(from_epoch(period_end)),
            "subscription.cancelAtPeriodEnd": cancel_at_period_end,
            "subscription.lastEventAt": created,
            "subscription.updatedAt": _event_time(created),
        }
        if tier:
            fields["subscription.tier"] = tier
        else:
            logger.warning("Price %s does not map to a plan; keeping stored tier", price.get("id"))
        if billing_cycle:
            fields["subscription.billingCycle"] = billing_cycle

        self._accounts.update_account_fields(account.account_id, fields)
        logger.info("Reconciled subscription %s for account %s: %s", subscription.get("id"), account.account_id, status)
        self._dispatcher.emit(
            events.SUBSCRIPTION_RECONCILED,
            {"accountId": account.account_id, "status": status, "tier": tier},
        )

    def _account_for(self, subscription: Any) -> Optional[Account]:
        customer_id = object_id(subscription.get("customer"))
        account = self._accounts.get_account_by_customer_ref(customer_id) if customer_id else None
        if account is not None:
            return account

        # Hosted Checkout stamps the account id on the subscription metadata.
        account_id = (subscription.get("metadata") or {}).get("accountId")
        if account_id:
            return self._accounts.ensure_account(account_id)
        logger.warning("No account found for subscription %s (customer %s)", subscription.get("id"), customer_id)
        return None

    @staticmethod
    def _is_stale(account: Account, created: Optional[int]) -> bool:
        last_applied = account.subscription_data.get("lastEventAt")
        if created is None or last_applied is None:
            return False
        if int(created) < int(last_applied):
            logger.info(
                "Skipping out-of-order event for account %s (%s < %s)",
                account.account_id,
                created,
                last_applied,
            )
            return True
        return False

    def _plan_for(self, price: Any) -> Tuple[Optional[str], Optional[str]]:
        known = self._catalog.lookup(price.get("id"))
        if known:
            return known
        # lookup keys look like "premium" or "premium_annual"
        lookup_key = (price.get("lookup_key") or "").lower()
        tier, _, cycle = lookup_key.partition("_")
        if tier not in TIERS:
            return None, None
        return tier, cycle if cycle in BILLING_CYCLES else None


def _event_time(created: Optional[int]) -> Optional[str]:
    if created is None:
        return to_timestamp(datetime.now(timezone.utc))
    return to_timestamp(from_epoch(created))
