from typing import Any, Dict

from fastapi import APIRouter, Depends

from ..dependencies import require_account
from ..schemas.billing import AttachPaymentMethodRequest
from ....core.dependencies import get_subscription_service
from ....services.subscription_service import SubscriptionService

router = APIRouter(prefix="/payment-method", tags=["payment-method"])


@router.post("/attach")
async def attach_payment_method(
    payload: AttachPaymentMethodRequest,
    account_id: str = Depends(require_account),
    service: SubscriptionService = Depends(get_subscription_service),
) -> Dict[str, Any]:
    return service.attach_payment_method(account_id, payload.payment_method_id)


@router.post("/setup-intent")
async def create_setup_intent(
    account_id: str = Depends(require_account),
    service: SubscriptionService = Depends(get_subscription_service),
) -> Dict[str, Any]:
    return service.create_setup_intent(account_id)
