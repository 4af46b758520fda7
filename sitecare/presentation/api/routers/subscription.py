from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends

from ..dependencies import require_account
from ..schemas.billing import (
    CancelRequest,
    DowngradeRequest,
    PreviewProrationRequest,
    ReactivateRequest,
    SwitchSafetyNetRequest,
    UpgradeRequest,
)
from ....core.dependencies import get_subscription_service
from ....services.subscription_service import SubscriptionService

router = APIRouter(prefix="/subscription", tags=["subscription"])


@router.get("")
async def get_subscription(
    account_id: str = Depends(require_account),
    service: SubscriptionService = Depends(get_subscription_service),
) -> Dict[str, Any]:
    return service.get_details(account_id)


@router.get("/invoices")
async def list_invoices(
    account_id: str = Depends(require_account),
    service: SubscriptionService = Depends(get_subscription_service),
) -> Dict[str, Any]:
    return service.list_invoices(account_id)


@router.post("/upgrade")
async def upgrade_subscription(
    payload: UpgradeRequest,
    account_id: str = Depends(require_account),
    service: SubscriptionService = Depends(get_subscription_service),
) -> Dict[str, Any]:
    return service.upgrade(account_id, payload.new_tier)


@router.post("/downgrade")
async def downgrade_subscription(
    payload: DowngradeRequest,
    account_id: str = Depends(require_account),
    service: SubscriptionService = Depends(get_subscription_service),
) -> Dict[str, Any]:
    return service.downgrade(account_id, payload.new_tier, payload.current_tier)


@router.post("/cancel")
async def cancel_subscription(
    payload: Optional[CancelRequest] = None,
    account_id: str = Depends(require_account),
    service: SubscriptionService = Depends(get_subscription_service),
) -> Dict[str, Any]:
    return service.cancel(account_id, payload.reason if payload else None)


@router.post("/reactivate")
async def reactivate_subscription(
    payload: ReactivateRequest,
    account_id: str = Depends(require_account),
    service: SubscriptionService = Depends(get_subscription_service),
) -> Dict[str, Any]:
    return service.reactivate(account_id, payload.new_tier)


@router.post("/switch-safety-net")
async def switch_to_safety_net(
    payload: SwitchSafetyNetRequest,
    account_id: str = Depends(require_account),
    service: SubscriptionService = Depends(get_subscription_service),
) -> Dict[str, Any]:
    return service.switch_to_safety_net(account_id, payload.current_subscription_id)


@router.post("/preview-proration")
async def preview_proration(
    payload: PreviewProrationRequest,
    account_id: str = Depends(require_account),
    service: SubscriptionService = Depends(get_subscription_service),
) -> Dict[str, Any]:
    return service.preview_proration(account_id, payload.new_tier)
