from typing import Any, Dict

from fastapi import APIRouter, Depends

from ..dependencies import require_account
from ..schemas.billing import CheckoutSessionRequest, CreateSubscriptionRequest
from ....core.dependencies import get_subscription_service
from ....services.subscription_service import SubscriptionService

router = APIRouter(prefix="/checkout", tags=["checkout"])


@router.post("")
async def create_checkout_session(
    payload: CheckoutSessionRequest,
    service: SubscriptionService = Depends(get_subscription_service),
) -> Dict[str, Any]:
    return service.create_checkout_session(
        tier=payload.tier,
        billing_cycle=payload.billing_cycle,
        coupon_code=payload.coupon_code,
        client_reference_id=payload.client_reference_id,
        customer_email=payload.email,
    )


@router.post("/create-subscription")
async def create_subscription(
    payload: CreateSubscriptionRequest,
    account_id: str = Depends(require_account),
    service: SubscriptionService = Depends(get_subscription_service),
) -> Dict[str, Any]:
    return service.create_subscription(
        account_id=account_id,
        email=payload.email,
        tier=payload.tier,
        billing_cycle=payload.billing_cycle,
        coupon_code=payload.coupon_code,
        payment_method_id=payload.payment_method_id,
    )
