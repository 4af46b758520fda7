"""Stripe payment integration service."""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

import stripe

from ..domain.errors import (
    CardError,
    ConfigurationError,
    NotFound,
    ProviderUnavailable,
    WebhookSignatureError,
)

logger = logging.getLogger(__name__)

DEFAULT_API_VERSION = "2024-06-20"


def object_id(value: Any) -> Optional[str]:
    """Return the id of an expandable field, which Stripe sends as a string or an object."""
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return value.get("id")


def subscription_period(subscription: Any) -> Tuple[Optional[int], Optional[int]]:
    """Current period bounds as epoch seconds.

    Newer API versions moved the period onto the subscription items, so fall
    back to the first item when the top-level fields are absent.
    """
    start = subscription.get("current_period_start")
    end = subscription.get("current_period_end")
    if start is None or end is None:
        items = (subscription.get("items") or {}).get("data") or []
        if items:
            start = start if start is not None else items[0].get("current_period_start")
            end = end if end is not None else items[0].get("current_period_end")
    return start, end


def first_item(subscription: Any) -> Optional[Dict[str, Any]]:
    items = (subscription.get("items") or {}).get("data") or []
    return items[0] if items else None


def client_secret_of(subscription: Any) -> Optional[str]:
    invoice = subscription.get("latest_invoice")
    if not invoice or isinstance(invoice, str):
        return None
    intent = invoice.get("payment_intent")
    if not intent or isinstance(intent, str):
        return None
    return intent.get("client_secret")


def invoice_line_items(invoice: Any) -> List[Dict[str, Any]]:
    """Invoice lines as ``{description, amount}`` with amounts in dollars."""
    lines = (invoice.get("lines") or {}).get("data") or []
    return [
        {
            "description": line.get("description") or "Plan charge",
            "amount": (line.get("amount") or 0) / 100,
        }
        for line in lines
    ]


class StripeService:
    """Thin adapter over the Stripe SDK that speaks the billing core's error vocabulary."""

    def __init__(
        self,
        secret_key: Optional[str],
        webhook_secret: Optional[str] = None,
        api_version: str = DEFAULT_API_VERSION,
    ) -> None:
        self._secret_key = secret_key
        self._webhook_secret = webhook_secret
        self._api_version = api_version
        self._configure_stripe()

    def _configure_stripe(self) -> None:
        """Configure Stripe SDK with the secret key and pinned API version."""
        stripe.api_key = self._secret_key or None
        stripe.api_version = self._api_version

    def is_configured(self) -> bool:
        return bool(self._secret_key)

    def _ensure_configured(self) -> None:
        if not self._secret_key:
            raise ConfigurationError("Stripe not configured. Please set STRIPE_SECRET_KEY.")

    def _call(self, action: str, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Invoke a Stripe SDK call and translate its failures."""
        self._ensure_configured()
        try:
            return func(*args, **kwargs)
        except stripe.CardError as exc:
            logger.warning("Card declined during %s: %s", action, exc.user_message or exc)
            raise CardError(exc.user_message or str(exc)) from exc
        except stripe.InvalidRequestError as exc:
            if exc.code == "resource_missing":
                raise NotFound(f"Stripe resource not found during {action}.") from exc
            logger.exception("Stripe rejected %s", action)
            raise ProviderUnavailable(f"Failed to {action}.") from exc
        except stripe.StripeError as exc:
            logger.exception("Stripe call failed during %s", action)
            raise ProviderUnavailable(f"Failed to {action}.") from exc

    # Customers ---------------------------------------------------------------
    def retrieve_customer(self, customer_id: str) -> Optional[Any]:
        try:
            customer = self._call("retrieve customer", stripe.Customer.retrieve, customer_id)
        except NotFound:
            return None
        if customer.get("deleted"):
            return None
        return customer

    def create_customer(self, account_id: str, email: Optional[str] = None) -> Any:
        params: Dict[str, Any] = {"metadata": {"accountId": account_id}}
        if email:
            params["email"] = email
        customer = self._call("create customer", stripe.Customer.create, **params)
        logger.info("Created Stripe customer %s for account %s", customer["id"], account_id)
        return customer

    # Payment methods -----------------------------------------------------------
    def attach_payment_method(self, customer_id: str, payment_method_id: str) -> None:
        """Attach a payment method and make it the customer's invoice default.

        Stripe rejecting the payment method itself (detached, already used,
        wrong customer) is reported like a decline, with Stripe's message.
        """
        self._call_rejecting_card(
            "attach payment method",
            stripe.PaymentMethod.attach,
            payment_method_id,
            customer=customer_id,
        )
        self._call_rejecting_card(
            "set default payment method",
            stripe.Customer.modify,
            customer_id,
            invoice_settings={"default_payment_method": payment_method_id},
        )

    def _call_rejecting_card(self, action: str, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        def invoke() -> Any:
            try:
                return func(*args, **kwargs)
            except stripe.InvalidRequestError as exc:
                logger.warning("Stripe rejected payment method during %s: %s", action, exc.user_message or exc)
                raise CardError(exc.user_message or str(exc)) from exc

        return self._call(action, invoke)

    def retrieve_payment_method(self, payment_method_id: str) -> Any:
        return self._call("retrieve payment method", stripe.PaymentMethod.retrieve, payment_method_id)

    def create_setup_intent(self, customer_id: str) -> Any:
        """SetupIntent for collecting a card client-side without charging it."""
        return self._call(
            "create setup intent",
            stripe.SetupIntent.create,
            customer=customer_id,
            payment_method_types=["card"],
        )

    # Coupons -----------------------------------------------------------------
    def retrieve_coupon(self, code: str) -> Optional[Any]:
        """Return the coupon, or None when Stripe does not recognise the code."""
        self._ensure_configured()
        try:
            return stripe.Coupon.retrieve(code)
        except stripe.InvalidRequestError:
            return None
        except stripe.StripeError as exc:
            logger.exception("Stripe call failed during coupon lookup")
            raise ProviderUnavailable("Failed to validate coupon.") from exc

    # Subscriptions -------------------------------------------------------------
    def create_subscription(
        self,
        customer_id: str,
        price_id: str,
        metadata: Dict[str, str],
        coupon_id: Optional[str] = None,
        payment_behavior: str = "default_incomplete",
    ) -> Any:
        params: Dict[str, Any] = {
            "customer": customer_id,
            "items": [{"price": price_id}],
            "payment_behavior": payment_behavior,
            "payment_settings": {"save_default_payment_method": "on_subscription"},
            "expand": ["latest_invoice.payment_intent"],
            "metadata": metadata,
        }
        if coupon_id:
            params["discounts"] = [{"coupon": coupon_id}]
        return self._call("create subscription", stripe.Subscription.create, **params)

    def retrieve_subscription(self, subscription_id: str) -> Optional[Any]:
        """Return the subscription, or None when Stripe no longer has it."""
        try:
            return self._call("retrieve subscription", stripe.Subscription.retrieve, subscription_id)
        except NotFound:
            logger.info("Stripe subscription %s no longer exists", subscription_id)
            return None

    def update_subscription_item(
        self,
        subscription_id: str,
        item_id: str,
        price_id: str,
        proration_behavior: str,
        cancel_at_period_end: Optional[bool] = None,
    ) -> Any:
        """Swap the single line item to a new price."""
        params: Dict[str, Any] = {
            "items": [{"id": item_id, "price": price_id}],
            "proration_behavior": proration_behavior,
        }
        if cancel_at_period_end is not None:
            params["cancel_at_period_end"] = cancel_at_period_end
        return self._call("update subscription", stripe.Subscription.modify, subscription_id, **params)

    def set_cancel_at_period_end(self, subscription_id: str, value: bool = True) -> Any:
        return self._call(
            "cancel subscription",
            stripe.Subscription.modify,
            subscription_id,
            cancel_at_period_end=value,
        )

    # Checkout ----------------------------------------------------------------
    def create_checkout_session(
        self,
        price_id: str,
        success_url: str,
        cancel_url: str,
        metadata: Dict[str, str],
        client_reference_id: Optional[str] = None,
        customer_email: Optional[str] = None,
        coupon_id: Optional[str] = None,
    ) -> Any:
        params: Dict[str, Any] = {
            "mode": "subscription",
            "line_items": [{"price": price_id, "quantity": 1}],
            "success_url": success_url,
            "cancel_url": cancel_url,
            "metadata": metadata,
            "subscription_data": {"metadata": metadata},
        }
        if client_reference_id:
            params["client_reference_id"] = client_reference_id
        if customer_email:
            params["customer_email"] = customer_email
        if coupon_id:
            params["discounts"] = [{"coupon": coupon_id}]
        else:
            params["allow_promotion_codes"] = True
        return self._call("create checkout session", stripe.checkout.Session.create, **params)

    # Invoices and prices -------------------------------------------------------
    def retrieve_invoice(self, invoice_id: str) -> Any:
        return self._call("retrieve invoice", stripe.Invoice.retrieve, invoice_id)

    def list_invoices(self, customer_id: str, limit: int = 50, status: Optional[str] = "paid") -> List[Any]:
        params: Dict[str, Any] = {"customer": customer_id, "limit": limit}
        if status:
            params["status"] = status
        invoices = self._call("list invoices", stripe.Invoice.list, **params)
        return list(invoices.get("data") or [])

    def retrieve_price(self, price_id: str) -> Any:
        return self._call("retrieve price", stripe.Price.retrieve, price_id)

    def preview_invoice(
        self,
        customer_id: str,
        subscription_id: str,
        item_id: str,
        price_id: str,
        proration_behavior: str,
    ) -> Any:
        """Preview the next invoice for a price swap without changing anything."""
        return self._call(
            "preview invoice",
            stripe.Invoice.create_preview,
            customer=customer_id,
            subscription=subscription_id,
            subscription_details={
                "items": [{"id": item_id, "price": price_id}],
                "proration_behavior": proration_behavior,
            },
        )

    # Webhooks ----------------------------------------------------------------
    def construct_event(self, payload: bytes, signature: Optional[str]) -> Any:
        """Verify the Stripe-Signature header and parse the event."""
        if not self._webhook_secret:
            raise ConfigurationError("Stripe webhook secret is not configured.")
        if not signature:
            raise WebhookSignatureError("Missing Stripe-Signature header.")
        try:
            return stripe.Webhook.construct_event(payload, signature, self._webhook_secret)
        except stripe.SignatureVerificationError as exc:
            logger.warning("Webhook signature verification failed: %s", exc)
            raise WebhookSignatureError() from exc
        except ValueError as exc:
            logger.warning("Webhook payload could not be parsed: %s", exc)
            raise WebhookSignatureError("Invalid webhook payload.") from exc
