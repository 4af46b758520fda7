"""Service for subscription management with Stripe."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

from ..domain.errors import (
    BillingError,
    InvalidTier,
    InvalidTransition,
    InvalidUpgradePath,
    NoActiveSubscription,
    NoCustomerOnFile,
    NotFound,
    ProviderUnavailable,
)
from ..domain.models import Account, CouponResult
from ..domain.models.subscription import (
    ACTIVE,
    CANCELED,
    DEFAULT_CANCELLATION_REASON,
    from_epoch,
    to_timestamp,
)
from ..domain.ports.persistence import AccountRepository
from ..domain.pricing import (
    ANNUAL,
    SAFETY_NET,
    TIERS,
    PriceCatalog,
    is_downgrade,
    is_upgrade,
    map_status,
    tier_rank,
)
from ..domain.reactivation import ReactivationAction, ReactivationState, decide_reactivation
from . import event_dispatcher as events
from .event_dispatcher import EventDispatcher
from .stripe_service import (
    StripeService,
    client_secret_of,
    first_item,
    invoice_line_items,
    object_id,
    subscription_period,
)

logger = logging.getLogger(__name__)


def normalize_coupon_code(code: Optional[str]) -> str:
    return (code or "").strip().upper()


INVOICE_STATUSES = {
    "paid": "completed",
    "open": "pending",
    "draft": "pending",
    "void": "failed",
    "uncollectible": "failed",
}


def _invoice_summary(invoice: Any, payment_display: str) -> Dict[str, Any]:
    number = invoice.get("number")
    lines = (invoice.get("lines") or {}).get("data") or []
    return {
        "id": invoice["id"],
        "orderId": f"#SC-{number}" if number else f"#{invoice['id'][3:12]}",
        "description": (lines[0].get("description") if lines else None) or "SiteCare Maintenance",
        "date": to_timestamp(from_epoch(invoice.get("created"))),
        "amount": (invoice.get("amount_paid") or 0) / 100,
        "status": INVOICE_STATUSES.get(invoice.get("status") or "paid", "pending"),
        "paymentMethod": payment_display,
        "invoiceUrl": invoice.get("hosted_invoice_url"),
    }


class SubscriptionService:
    """Orchestrates checkout, tier changes, cancellation and reactivation for an account."""

    def __init__(
        self,
        accounts: AccountRepository,
        billing: StripeService,
        catalog: PriceCatalog,
        dispatcher: Optional[EventDispatcher] = None,
        app_base_url: str = "http://localhost:3000",
    ):
        self._accounts = accounts
        self._billing = billing
        self._catalog = catalog
        self._dispatcher = dispatcher or EventDispatcher()
        self._app_base_url = app_base_url.rstrip("/")

    # ------------------------------------------------------------------ #
    # Checkout
    # ------------------------------------------------------------------ #
    def create_checkout_session(
        self,
        tier: str,
        billing_cycle: str,
        coupon_code: Optional[str] = None,
        client_reference_id: Optional[str] = None,
        customer_email: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Create a hosted Stripe Checkout session for a plan.

        Args:
            tier: Plan tier
            billing_cycle: annual, quarterly or monthly
            coupon_code: Optional promo code; invalid codes are dropped
            client_reference_id: Account reference echoed back by the completion webhook
            customer_email: Prefills the Checkout form

        Returns:
            Session id, hosted URL and discount summary
        """
        price_id = self._catalog.price_for(tier, billing_cycle)
        coupon = self._resolve_coupon(coupon_code)
        metadata = {"tier": tier, "billingCycle": billing_cycle}
        if client_reference_id:
            metadata["accountId"] = client_reference_id
        session = self._billing.create_checkout_session(
            price_id=price_id,
            success_url=f"{self._app_base_url}/checkout/confirmation?session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{self._app_base_url}/checkout",
            metadata=metadata,
            client_reference_id=client_reference_id,
            customer_email=customer_email,
            coupon_id=coupon[1].coupon_id if coupon else None,
        )
        return {
            "success": True,
            "sessionId": session["id"],
            "url": session.get("url"),
            "discount": coupon[1].discount_summary(coupon[0]) if coupon else None,
        }

    def create_subscription(
        self,
        account_id: str,
        email: Optional[str],
        tier: str,
        billing_cycle: str,
        coupon_code: Optional[str] = None,
        payment_method_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Create a subscription for an authenticated account.

        The customer reference is persisted before the subscription is
        created so a retried checkout reuses it.

        Returns:
            Subscription id, status, client secret and discount summary
        """
        price_id = self._catalog.price_for(tier, billing_cycle)
        account = self._accounts.ensure_account(account_id, email)
        customer_id = self._resolve_customer(account, email)

        if payment_method_id:
            self._billing.attach_payment_method(customer_id, payment_method_id)

        coupon = self._resolve_coupon(coupon_code)
        discount = coupon[1].discount_summary(coupon[0]) if coupon else None

        subscription = self._billing.create_subscription(
            customer_id=customer_id,
            price_id=price_id,
            metadata={"accountId": account_id, "tier": tier, "billingCycle": billing_cycle},
            coupon_id=coupon[1].coupon_id if coupon else None,
        )
        period_start, period_end = subscription_period(subscription)

        self._update_subscription(
            account_id,
            {
                "tier": tier,
                "status": map_status(subscription.get("status"), bool(subscription.get("cancel_at_period_end"))),
                "billingCycle": billing_cycle,
                "stripeSubscriptionId": subscription["id"],
                "stripeCustomerId": customer_id,
                "stripePriceId": price_id,
                "periodStart": to_timestamp(from_epoch(period_start)),
                "periodEnd": to_timestamp(from_epoch(period_end)),
                "cancelAtPeriodEnd": False,
                "cancellationReason": None,
                "canceledAt": None,
                "expiresAt": None,
                "couponApplied": coupon[0] if coupon else None,
                "discount": discount,
            },
        )
        logger.info("Created subscription %s for account %s (%s/%s)", subscription["id"], account_id, tier, billing_cycle)
        self._emit(events.SUBSCRIPTION_CREATED, account_id, tier=tier, billingCycle=billing_cycle)

        return {
            "success": True,
            "subscription": {
                "id": subscription["id"],
                "status": subscription.get("status"),
                "clientSecret": client_secret_of(subscription),
            },
            "discount": discount,
        }

    # ------------------------------------------------------------------ #
    # Tier changes
    # ------------------------------------------------------------------ #
    def upgrade(self, account_id: str, new_tier: str) -> Dict[str, Any]:
        """Move to a higher tier, charging the prorated difference immediately."""
        tier_rank(new_tier)
        account = self._get_account(account_id)
        current = account.subscription
        if not current or not current.is_active() or not current.stripe_subscription_id:
            raise NoActiveSubscription("No active subscription found for this user.")
        if not is_upgrade(current.tier, new_tier):
            raise InvalidUpgradePath()

        price_id = self._catalog.price_for(new_tier, current.billing_cycle or ANNUAL)
        item = self._subscription_item(current.stripe_subscription_id)
        updated = self._billing.update_subscription_item(
            current.stripe_subscription_id, item["id"], price_id, "always_invoice"
        )

        # Stripe has charged at this point, so the local record is written first.
        _, period_end = subscription_period(updated)
        period_end_iso = to_timestamp(from_epoch(period_end))
        self._update_subscription(
            account_id,
            {"tier": new_tier, "stripePriceId": price_id, "periodEnd": period_end_iso},
        )
        logger.info("Upgraded account %s from %s to %s", account_id, current.tier, new_tier)

        try:
            price = self._billing.retrieve_price(price_id)
        except BillingError as exc:
            logger.warning("Could not look up product for price %s: %s", price_id, exc.message)
        else:
            self._update_subscription(account_id, {"stripeProductId": object_id(price.get("product"))})

        prorated_amount = 0.0
        invoice_id = object_id(updated.get("latest_invoice"))
        if invoice_id:
            invoice = self._billing.retrieve_invoice(invoice_id)
            prorated_amount = (invoice.get("amount_paid") or 0) / 100

        self._emit(events.SUBSCRIPTION_UPGRADED, account_id, fromTier=current.tier, tier=new_tier)

        return {
            "success": True,
            "subscription": {
                "tier": new_tier,
                "status": updated.get("status"),
                "currentPeriodEnd": period_end_iso,
                "proratedAmount": prorated_amount,
            },
        }

    def downgrade(self, account_id: str, new_tier: str, current_tier: str) -> Dict[str, Any]:
        """Change tier crediting unused time toward the next invoice. Rank is not checked."""
        if current_tier not in TIERS:
            raise InvalidTier(f"Invalid tier: {current_tier}")
        account = self._get_account(account_id)
        current = account.subscription
        if not current or not current.stripe_subscription_id:
            raise NoActiveSubscription("No subscription found for this user.")

        price_id = self._catalog.price_for(new_tier, current.billing_cycle or ANNUAL)
        item = self._subscription_item(current.stripe_subscription_id)
        updated = self._billing.update_subscription_item(
            current.stripe_subscription_id, item["id"], price_id, "create_prorations"
        )
        _, period_end = subscription_period(updated)
        renewal_date = to_timestamp(from_epoch(period_end))

        self._update_subscription(
            account_id,
            {"tier": new_tier, "stripePriceId": price_id, "periodEnd": renewal_date},
        )
        logger.info("Downgraded account %s from %s to %s", account_id, current_tier, new_tier)
        self._emit(events.SUBSCRIPTION_DOWNGRADED, account_id, fromTier=current_tier, tier=new_tier)

        return {
            "success": True,
            "message": "Subscription downgraded successfully",
            "newTier": new_tier,
            "renewalDate": renewal_date,
        }

    def switch_to_safety_net(self, account_id: str, current_subscription_id: str) -> Dict[str, Any]:
        account = self._get_account(account_id)
        current = account.subscription
        if not current or current.stripe_subscription_id != current_subscription_id:
            raise NotFound("Subscription not found")
        if current.tier == SAFETY_NET:
            raise InvalidTransition("You are already on the Safety Net plan.")

        price_id = self._catalog.price_for(SAFETY_NET, ANNUAL)
        item = self._subscription_item(current_subscription_id)
        updated = self._billing.update_subscription_item(
            current_subscription_id, item["id"], price_id, "create_prorations"
        )
        _, period_end = subscription_period(updated)
        period_end_iso = to_timestamp(from_epoch(period_end))

        self._update_subscription(
            account_id,
            {
                "tier": SAFETY_NET,
                "billingCycle": ANNUAL,
                "stripePriceId": price_id,
                "periodEnd": period_end_iso,
            },
        )
        logger.info("Account %s switched to safety-net", account_id)
        self._emit(events.SUBSCRIPTION_SAFETY_NET, account_id, fromTier=current.tier, tier=SAFETY_NET)

        return {
            "success": True,
            "subscription": {
                "id": updated["id"],
                "tier": SAFETY_NET,
                "status": updated.get("status"),
                "currentPeriodEnd": period_end_iso,
            },
        }

    # ------------------------------------------------------------------ #
    # Cancellation and reactivation
    # ------------------------------------------------------------------ #
    def cancel(self, account_id: str, reason: Optional[str] = None) -> Dict[str, Any]:
        """
        Soft-cancel: Stripe keeps billing until period end, the account shows canceled now.

        ``cancelAtPeriodEnd`` is stored alongside ``status`` so the Stripe view
        can be recovered without another API call.
        """
        account = self._get_account(account_id)
        current = account.subscription
        if not current or not current.stripe_subscription_id:
            raise NoActiveSubscription("No active subscription to cancel.")

        updated = self._billing.set_cancel_at_period_end(current.stripe_subscription_id, True)
        _, period_end = subscription_period(updated)
        expires_at = to_timestamp(from_epoch(period_end)) or to_timestamp(current.period_end)
        cancellation_reason = (reason or "").strip() or DEFAULT_CANCELLATION_REASON

        self._update_subscription(
            account_id,
            {
                "status": CANCELED,
                "cancelAtPeriodEnd": True,
                "cancellationReason": cancellation_reason,
                "canceledAt": to_timestamp(_now()),
                "expiresAt": expires_at,
            },
        )
        logger.info("Canceled subscription %s for account %s", current.stripe_subscription_id, account_id)
        self._emit(events.SUBSCRIPTION_CANCELED, account_id, tier=current.tier, reason=cancellation_reason)

        return {
            "success": True,
            "message": "Subscription canceled. You keep access until the end of the current billing period.",
            "expiresAt": expires_at,
        }

    def reactivate(self, account_id: str, new_tier: str) -> Dict[str, Any]:
        """Bring a canceled or lapsed account back onto ``new_tier``.

        The branch follows the Stripe subscription's state; see
        ``decide_reactivation``.
        """
        account = self._get_account(account_id)
        current = account.subscription
        billing_cycle = (current.billing_cycle if current else None) or ANNUAL
        price_id = self._catalog.price_for(new_tier, billing_cycle)

        local_ref = current.stripe_subscription_id if current else None
        provider_sub = self._billing.retrieve_subscription(local_ref) if local_ref else None
        action = decide_reactivation(
            ReactivationState(
                has_local_ref=bool(local_ref),
                provider_exists=provider_sub is not None,
                flagged_for_cancel=bool(provider_sub and provider_sub.get("cancel_at_period_end")),
                fully_canceled=bool(provider_sub and provider_sub.get("status") == "canceled"),
                has_customer=bool(account.customer_ref),
            )
        )
        logger.info("Reactivating account %s onto %s via %s", account_id, new_tier, action.value)

        if action is ReactivationAction.ERROR_NO_CUSTOMER:
            raise NoCustomerOnFile()
        if action is ReactivationAction.CREATE_FRESH:
            customer_id = object_id(provider_sub.get("customer")) if provider_sub else account.customer_ref
            reactivated = self._billing.create_subscription(
                customer_id=customer_id,
                price_id=price_id,
                metadata={"accountId": account_id, "tier": new_tier, "billingCycle": billing_cycle},
                payment_behavior="allow_incomplete",
            )
        else:
            item = first_item(provider_sub)
            if not item:
                raise InvalidTransition("Subscription has no items")
            reactivated = self._billing.update_subscription_item(
                local_ref,
                item["id"],
                price_id,
                "create_prorations",
                cancel_at_period_end=False if action is ReactivationAction.UNDO_CANCEL_AND_SWAP else None,
            )

        period_start, period_end = subscription_period(reactivated)
        renewal_date = to_timestamp(from_epoch(period_end))
        self._update_subscription(
            account_id,
            {
                "tier": new_tier,
                "status": ACTIVE,
                "billingCycle": billing_cycle,
                "stripeSubscriptionId": reactivated["id"],
                "stripePriceId": price_id,
                "periodStart": to_timestamp(from_epoch(period_start)),
                "periodEnd": renewal_date,
                "cancelAtPeriodEnd": False,
                "canceledAt": None,
                "expiresAt": None,
                "cancellationReason": None,
            },
        )
        self._emit(events.SUBSCRIPTION_REACTIVATED, account_id, tier=new_tier, action=action.value)

        return {
            "success": True,
            "message": "Subscription reactivated successfully",
            "newTier": new_tier,
            "renewalDate": renewal_date,
        }

    # ------------------------------------------------------------------ #
    # Coupons, payment methods and read models
    # ------------------------------------------------------------------ #
    def validate_coupon(self, code: Optional[str]) -> CouponResult:
        """Look up a promo code. Invalid codes are a normal result, not an error."""
        normalized = normalize_coupon_code(code)
        if not normalized:
            return CouponResult(valid=False, error="Promo code is required")

        coupon = self._billing.retrieve_coupon(normalized)
        if coupon is None:
            return CouponResult(valid=False, error="Invalid promo code")
        if not coupon.get("valid"):
            return CouponResult(valid=False, error="This promo code is invalid or has expired")
        return CouponResult(
            valid=True,
            coupon_id=coupon["id"],
            percent_off=coupon.get("percent_off"),
            amount_off=coupon.get("amount_off"),
            duration=coupon.get("duration"),
            duration_in_months=coupon.get("duration_in_months"),
            name=coupon.get("name"),
        )

    def attach_payment_method(self, account_id: str, payment_method_id: str) -> Dict[str, Any]:
        account = self._get_account(account_id)
        customer_id = account.customer_ref
        if not customer_id:
            raise NoCustomerOnFile()

        self._billing.attach_payment_method(customer_id, payment_method_id)
        payment_method = self._billing.retrieve_payment_method(payment_method_id)
        card = payment_method.get("card") or {}
        summary = {
            "brand": card.get("brand"),
            "last4": card.get("last4"),
            "expMonth": card.get("exp_month"),
            "expYear": card.get("exp_year"),
            "paymentMethodId": payment_method_id,
            "updatedAt": to_timestamp(_now()),
        }
        self._accounts.update_account_fields(account_id, {"payment_method": summary})
        logger.info("Attached payment method for account %s", account_id)
        self._emit(events.PAYMENT_METHOD_ATTACHED, account_id, brand=summary["brand"])

        return {
            "success": True,
            "message": "Payment method attached successfully",
            "card": {"brand": summary["brand"], "last4": summary["last4"]},
        }

    def create_setup_intent(self, account_id: str) -> Dict[str, Any]:
        """Client secret for collecting a new card, later passed to ``attach_payment_method``."""
        account = self._get_account(account_id)
        customer_id = account.customer_ref
        if not customer_id:
            raise NoCustomerOnFile("No active subscription found. Please subscribe to a plan first.")

        intent = self._billing.create_setup_intent(customer_id)
        logger.info("Created setup intent for account %s", account_id)
        return {"success": True, "clientSecret": intent.get("client_secret")}

    def list_invoices(self, account_id: str) -> Dict[str, Any]:
        """Paid invoice history, newest first as Stripe returns it."""
        account = self._get_account(account_id)
        customer_id = account.customer_ref
        if not customer_id:
            return {"success": True, "invoices": []}

        card = account.payment_method or {}
        payment_display = f"•••• {card.get('last4') or '****'}"
        invoices = [
            _invoice_summary(invoice, payment_display) for invoice in self._billing.list_invoices(customer_id)
        ]
        logger.info("Fetched %d invoices for account %s", len(invoices), account_id)
        return {"success": True, "invoices": invoices}

    def preview_proration(self, account_id: str, new_tier: str) -> Dict[str, Any]:
        """Price a tier change without making it."""
        tier_rank(new_tier)
        account = self._get_account(account_id)
        current = account.subscription
        if not current or not current.is_active() or not current.stripe_subscription_id:
            raise NoActiveSubscription()
        customer_id = account.customer_ref
        if not customer_id:
            raise NoCustomerOnFile()
        if new_tier == current.tier:
            raise InvalidTransition("You are already on this plan")

        upgrading = is_upgrade(current.tier, new_tier)
        downgrading = is_downgrade(current.tier, new_tier)
        price_id = self._catalog.price_for(new_tier, current.billing_cycle or ANNUAL)

        provider_sub = self._billing.retrieve_subscription(current.stripe_subscription_id)
        if provider_sub is None:
            raise NotFound("Subscription not found")
        item = first_item(provider_sub)
        if not item:
            raise InvalidTransition("Subscription has no items")

        preview = self._billing.preview_invoice(
            customer_id=customer_id,
            subscription_id=current.stripe_subscription_id,
            item_id=item["id"],
            price_id=price_id,
            proration_behavior="always_invoice" if upgrading else "create_prorations",
        )
        line_items = invoice_line_items(preview)
        amount_due = (preview.get("amount_due") or 0) / 100
        _, period_end = subscription_period(provider_sub)

        return {
            "success": True,
            "preview": {
                "amountDue": max(amount_due, 0),
                "credit": abs(amount_due) if downgrading else 0,
                "subtotal": (preview.get("subtotal") or 0) / 100,
                "prorationCredit": next(
                    (
                        line["amount"]
                        for line in line_items
                        if "unused" in line["description"].lower() or "proration" in line["description"].lower()
                    ),
                    0,
                ),
                "tax": (preview.get("tax") or 0) / 100,
                "isUpgrade": upgrading,
                "isDowngrade": downgrading,
                "currentTier": current.tier,
                "newTier": new_tier,
                "renewalDate": to_timestamp(from_epoch(period_end)),
                "lineItems": line_items,
            },
        }

    def get_details(self, account_id: str) -> Dict[str, Any]:
        account = self._get_account(account_id)
        return {
            "success": True,
            "subscription": account.subscription_data or None,
            "paymentMethod": account.payment_method,
        }

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #
    def _get_account(self, account_id: str) -> Account:
        account = self._accounts.get_account(account_id)
        if not account:
            raise NotFound("User not found")
        return account

    def _resolve_customer(self, account: Account, email: Optional[str]) -> str:
        existing = account.customer_ref
        if existing and self._billing.retrieve_customer(existing) is not None:
            return existing
        if existing:
            logger.warning("Stored customer %s is gone at Stripe; creating a new one", existing)

        customer = self._billing.create_customer(account.account_id, email or account.email)
        customer_id = customer["id"]
        self._accounts.update_account_fields(
            account.account_id,
            {"billing_customer_ref": customer_id, "subscription.stripeCustomerId": customer_id},
        )
        return customer_id

    def _resolve_coupon(self, code: Optional[str]) -> Optional[Tuple[str, CouponResult]]:
        normalized = normalize_coupon_code(code)
        if not normalized:
            return None
        try:
            result = self.validate_coupon(normalized)
        except ProviderUnavailable:
            logger.warning("Coupon %s could not be checked; continuing without discount", normalized)
            return None
        if not result.valid:
            logger.info("Ignoring coupon %s: %s", normalized, result.error)
            return None
        return normalized, result

    def _subscription_item(self, subscription_id: str) -> Dict[str, Any]:
        provider_sub = self._billing.retrieve_subscription(subscription_id)
        if provider_sub is None:
            raise NotFound("Subscription not found")
        item = first_item(provider_sub)
        if not item:
            raise InvalidTransition("Subscription has no items")
        return item

    def _update_subscription(self, account_id: str, fields: Dict[str, Any]) -> Account:
        updates = {f"subscription.{key}": value for key, value in fields.items()}
        updates["subscription.updatedAt"] = to_timestamp(_now())
        return self._accounts.update_account_fields(account_id, updates)

    def _emit(self, event: str, account_id: str, **payload: Any) -> None:
        self._dispatcher.emit(event, {"accountId": account_id, **payload})


def _now() -> datetime:
    return datetime.now(timezone.utc)
