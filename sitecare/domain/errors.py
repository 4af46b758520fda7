"""Error taxonomy raised by the billing core and rendered by the HTTP layer."""

from __future__ import annotations

from typing import Optional


class BillingError(Exception):
    """Base class for every failure the API reports to a client."""

    status_code = 400
    default_message = "Request could not be completed."

    def __init__(self, message: Optional[str] = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(BillingError):
    status_code = 400
    default_message = "Invalid request."


class InvalidTier(ValidationError):
    default_message = "Invalid tier specified."


class InvalidUpgradePath(BillingError):
    status_code = 400
    default_message = "Invalid upgrade path. You can only upgrade to a higher tier."


class InvalidTransition(BillingError):
    status_code = 400
    default_message = "This plan change is not allowed."


class NoActiveSubscription(BillingError):
    status_code = 400
    default_message = "No active subscription found."


class NoCustomerOnFile(BillingError):
    status_code = 400
    default_message = "No billing customer found. Please contact support."


class CardError(BillingError):
    """Payment declined; the provider's message is shown to the user as-is."""

    status_code = 402
    default_message = "Payment failed. Please update your payment method and try again."


class ProviderUnavailable(BillingError):
    status_code = 500
    default_message = "The billing provider is unavailable. Please try again."


class NotFound(BillingError):
    status_code = 404
    default_message = "Not found."


class Unauthenticated(BillingError):
    status_code = 401
    default_message = "Unauthorized."


class ConfigurationError(BillingError):
    status_code = 500
    default_message = "Server configuration error."


class WebhookSignatureError(BillingError):
    status_code = 400
    default_message = "Invalid webhook signature."


class IdentityError(Exception):
    """Failure reported by the identity provider while mutating a credential."""

    def __init__(self, message: str, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.code = code


class WeakPasswordError(IdentityError):
    def __init__(self, message: str = "Password is too weak.") -> None:
        super().__init__(message, code="weak-password")


class WebhookProcessingError(BillingError):
    """Signature was valid but handling failed; a 500 makes Stripe retry delivery."""

    status_code = 500
    default_message = "Webhook handler failed."


class ResetTokenError(ValidationError):
    """Reset link unusable; the message never says whether the token exists."""

    default_message = "Invalid reset link. Please request a new password reset."


class PasswordResetFailed(BillingError):
    status_code = 500
    default_message = "An unexpected error occurred while resetting your password. Please try again."
