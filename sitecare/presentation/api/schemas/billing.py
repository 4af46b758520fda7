"""Pydantic schemas for checkout, subscription, coupon and payment method endpoints."""

from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from ....domain.pricing import ANNUAL


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class CheckoutSessionRequest(CamelModel):
    tier: str = Field(..., min_length=1)
    billing_cycle: str = Field(default=ANNUAL, alias="billingCycle")
    coupon_code: Optional[str] = Field(default=None, alias="couponCode")
    client_reference_id: Optional[str] = Field(default=None, alias="clientReferenceId", max_length=200)
    email: Optional[EmailStr] = None


class CreateSubscriptionRequest(CamelModel):
    email: Optional[EmailStr] = None
    tier: str = Field(..., min_length=1)
    billing_cycle: str = Field(default=ANNUAL, alias="billingCycle")
    coupon_code: Optional[str] = Field(default=None, alias="couponCode")
    payment_method_id: Optional[str] = Field(default=None, alias="paymentMethodId")


class UpgradeRequest(CamelModel):
    new_tier: str = Field(..., alias="newTier", min_length=1)


class DowngradeRequest(CamelModel):
    new_tier: str = Field(..., alias="newTier", min_length=1)
    current_tier: str = Field(..., alias="currentTier", min_length=1)


class ReactivateRequest(CamelModel):
    new_tier: str = Field(..., alias="newTier", min_length=1)


class CancelRequest(CamelModel):
    reason: Optional[str] = Field(default=None, max_length=2000)


class SwitchSafetyNetRequest(CamelModel):
    current_subscription_id: str = Field(..., alias="currentSubscriptionId", min_length=1)


class PreviewProrationRequest(CamelModel):
    new_tier: str = Field(..., alias="newTier", min_length=1)


class ValidateCouponRequest(CamelModel):
    coupon_code: Optional[str] = Field(default=None, alias="couponCode")


class CouponResponse(CamelModel):
    valid: bool
    id: Optional[str] = None
    percent_off: Optional[float] = Field(default=None, alias="percentOff")
    amount_off: Optional[int] = Field(default=None, alias="amountOff")
    duration: Optional[str] = None
    duration_in_months: Optional[int] = Field(default=None, alias="durationInMonths")
    name: Optional[str] = None
    error: Optional[str] = None


class AttachPaymentMethodRequest(CamelModel):
    payment_method_id: str = Field(..., alias="paymentMethodId", min_length=1)
