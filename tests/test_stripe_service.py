"""Tests for the Stripe adapter: request shapes and error translation."""

from unittest.mock import patch

import pytest
import stripe

from sitecare.domain.errors import (
    CardError,
    ConfigurationError,
    NotFound,
    ProviderUnavailable,
    WebhookSignatureError,
)
from sitecare.services.stripe_service import (
    StripeService,
    client_secret_of,
    invoice_line_items,
    object_id,
    subscription_period,
)


@pytest.fixture
def adapter():
    return StripeService(secret_key="sk_test_123", webhook_secret="whsec_123")


def _missing(message="No such object"):
    return stripe.InvalidRequestError(message, "id", code="resource_missing")


class TestConfiguration:
    """Tests for credential handling."""

    def test_configures_sdk(self, adapter):
        assert stripe.api_key == "sk_test_123"
        assert stripe.api_version == "2024-06-20"
        assert adapter.is_configured()

    def test_calls_fail_without_secret_key(self):
        adapter = StripeService(secret_key=None)
        with pytest.raises(ConfigurationError):
            adapter.retrieve_price("price_1")

    def test_webhooks_fail_without_webhook_secret(self):
        adapter = StripeService(secret_key="sk_test_123", webhook_secret=None)
        with pytest.raises(ConfigurationError):
            adapter.construct_event(b"{}", "t=1,v1=abc")


class TestErrorTranslation:
    """Tests for mapping SDK exceptions to the billing error taxonomy."""

    def test_card_error_message_passes_through(self, adapter):
        error = stripe.CardError("Your card was declined.", "card", "card_declined")
        with patch.object(stripe.PaymentMethod, "attach", side_effect=error):
            with pytest.raises(CardError) as exc_info:
                adapter.attach_payment_method("cus_1", "pm_1")

        assert exc_info.value.message == "Your card was declined."
        assert exc_info.value.status_code == 402

    def test_rejected_payment_method_is_card_error(self, adapter):
        error = stripe.InvalidRequestError(
            "The payment method has been detached",
            "payment_method",
            code="payment_method_unexpected_state",
        )
        with patch.object(stripe.PaymentMethod, "attach", side_effect=error), patch.object(
            stripe.Customer, "modify"
        ) as modify:
            with pytest.raises(CardError) as exc_info:
                adapter.attach_payment_method("cus_1", "pm_1")

        assert exc_info.value.message == "The payment method has been detached"
        assert exc_info.value.status_code == 402
        modify.assert_not_called()

    def test_attach_outage_stays_provider_unavailable(self, adapter):
        with patch.object(stripe.PaymentMethod, "attach", side_effect=stripe.APIConnectionError("timeout")):
            with pytest.raises(ProviderUnavailable):
                adapter.attach_payment_method("cus_1", "pm_1")

    def test_connection_error_is_provider_unavailable(self, adapter):
        with patch.object(stripe.Price, "retrieve", side_effect=stripe.APIConnectionError("timeout")):
            with pytest.raises(ProviderUnavailable) as exc_info:
                adapter.retrieve_price("price_1")

        assert "timeout" not in exc_info.value.message

    def test_missing_resource_is_not_found(self, adapter):
        with patch.object(stripe.Invoice, "retrieve", side_effect=_missing()):
            with pytest.raises(NotFound):
                adapter.retrieve_invoice("in_1")

    def test_missing_subscription_returns_none(self, adapter):
        with patch.object(stripe.Subscription, "retrieve", side_effect=_missing()):
            assert adapter.retrieve_subscription("sub_gone") is None

    def test_missing_or_deleted_customer_returns_none(self, adapter):
        with patch.object(stripe.Customer, "retrieve", side_effect=_missing()):
            assert adapter.retrieve_customer("cus_gone") is None
        with patch.object(stripe.Customer, "retrieve", return_value={"id": "cus_1", "deleted": True}):
            assert adapter.retrieve_customer("cus_1") is None

    def test_unknown_coupon_returns_none(self, adapter):
        with patch.object(stripe.Coupon, "retrieve", side_effect=_missing("No such coupon")):
            assert adapter.retrieve_coupon("NOPE") is None

    def test_coupon_lookup_outage_raises(self, adapter):
        with patch.object(stripe.Coupon, "retrieve", side_effect=stripe.APIConnectionError("down")):
            with pytest.raises(ProviderUnavailable):
                adapter.retrieve_coupon("SAVE20")


class TestRequests:
    """Tests for the parameters sent to Stripe."""

    def test_create_subscription_defaults_to_incomplete_payment(self, adapter):
        with patch.object(stripe.Subscription, "create", return_value={"id": "sub_1"}) as create:
            adapter.create_subscription("cus_1", "price_1", {"accountId": "acct_1"}, coupon_id="SAVE20")

        kwargs = create.call_args.kwargs
        assert kwargs["customer"] == "cus_1"
        assert kwargs["items"] == [{"price": "price_1"}]
        assert kwargs["payment_behavior"] == "default_incomplete"
        assert kwargs["payment_settings"] == {"save_default_payment_method": "on_subscription"}
        assert kwargs["expand"] == ["latest_invoice.payment_intent"]
        assert kwargs["discounts"] == [{"coupon": "SAVE20"}]

    def test_create_subscription_without_coupon(self, adapter):
        with patch.object(stripe.Subscription, "create", return_value={"id": "sub_1"}) as create:
            adapter.create_subscription("cus_1", "price_1", {})

        assert "discounts" not in create.call_args.kwargs

    def test_attach_sets_invoice_default(self, adapter):
        with patch.object(stripe.PaymentMethod, "attach") as attach, patch.object(
            stripe.Customer, "modify"
        ) as modify:
            adapter.attach_payment_method("cus_1", "pm_1")

        attach.assert_called_once_with("pm_1", customer="cus_1")
        modify.assert_called_once_with("cus_1", invoice_settings={"default_payment_method": "pm_1"})

    def test_setup_intent_for_cards(self, adapter):
        with patch.object(stripe.SetupIntent, "create", return_value={"client_secret": "seti_1_secret"}) as create:
            intent = adapter.create_setup_intent("cus_1")

        create.assert_called_once_with(customer="cus_1", payment_method_types=["card"])
        assert intent["client_secret"] == "seti_1_secret"

    def test_list_invoices_returns_paid_invoices(self, adapter):
        page = {"data": [{"id": "in_1"}, {"id": "in_2"}]}
        with patch.object(stripe.Invoice, "list", return_value=page) as listing:
            invoices = adapter.list_invoices("cus_1")

        listing.assert_called_once_with(customer="cus_1", limit=50, status="paid")
        assert [invoice["id"] for invoice in invoices] == ["in_1", "in_2"]

    def test_update_item_can_clear_cancellation(self, adapter):
        with patch.object(stripe.Subscription, "modify", return_value={"id": "sub_1"}) as modify:
            adapter.update_subscription_item("sub_1", "si_1", "price_2", "create_prorations", cancel_at_period_end=False)

        modify.assert_called_once_with(
            "sub_1",
            items=[{"id": "si_1", "price": "price_2"}],
            proration_behavior="create_prorations",
            cancel_at_period_end=False,
        )

    def test_update_item_leaves_cancellation_untouched_by_default(self, adapter):
        with patch.object(stripe.Subscription, "modify", return_value={"id": "sub_1"}) as modify:
            adapter.update_subscription_item("sub_1", "si_1", "price_2", "always_invoice")

        assert "cancel_at_period_end" not in modify.call_args.kwargs

    def test_preview_invoice(self, adapter):
        with patch.object(stripe.Invoice, "create_preview", return_value={"amount_due": 0}) as preview:
            adapter.preview_invoice("cus_1", "sub_1", "si_1", "price_2", "create_prorations")

        preview.assert_called_once_with(
            customer="cus_1",
            subscription="sub_1",
            subscription_details={
                "items": [{"id": "si_1", "price": "price_2"}],
                "proration_behavior": "create_prorations",
            },
        )


class TestWebhookVerification:
    """Tests for Stripe-Signature handling."""

    def test_bad_signature(self, adapter):
        error = stripe.SignatureVerificationError("No signatures found", "t=1,v1=bad")
        with patch.object(stripe.Webhook, "construct_event", side_effect=error):
            with pytest.raises(WebhookSignatureError):
                adapter.construct_event(b"{}", "t=1,v1=bad")

    def test_missing_signature(self, adapter):
        with pytest.raises(WebhookSignatureError):
            adapter.construct_event(b"{}", None)

    def test_valid_signature(self, adapter):
        event = {"id": "evt_1", "type": "ping"}
        with patch.object(stripe.Webhook, "construct_event", return_value=event) as construct:
            assert adapter.construct_event(b"{}", "t=1,v1=good") == event

        construct.assert_called_once_with(b"{}", "t=1,v1=good", "whsec_123")


class TestResponseHelpers:
    """Tests for reading fields out of Stripe objects."""

    def test_object_id(self):
        assert object_id("cus_1") == "cus_1"
        assert object_id({"id": "cus_1"}) == "cus_1"
        assert object_id(None) is None

    def test_period_from_subscription(self):
        assert subscription_period({"current_period_start": 1, "current_period_end": 2}) == (1, 2)

    def test_period_falls_back_to_first_item(self):
        subscription = {"items": {"data": [{"current_period_start": 3, "current_period_end": 4}]}}
        assert subscription_period(subscription) == (3, 4)

    def test_client_secret(self):
        subscription = {"latest_invoice": {"payment_intent": {"client_secret": "pi_secret"}}}
        assert client_secret_of(subscription) == "pi_secret"
        assert client_secret_of({"latest_invoice": "in_1"}) is None
        assert client_secret_of({}) is None

    def test_invoice_line_items(self):
        invoice = {"lines": {"data": [{"description": "Unused time", "amount": -5000}, {"amount": 12000}]}}
        assert invoice_line_items(invoice) == [
            {"description": "Unused time", "amount": -50.0},
            {"description": "Plan charge", "amount": 120.0},
        ]
