from typing import Any, Dict

from fastapi import APIRouter, Depends, Request

from ....core.dependencies import get_billing_reconciler
from ....services.billing_reconciler import BillingReconciler

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/billing")
async def billing_webhook(
    request: Request,
    reconciler: BillingReconciler = Depends(get_billing_reconciler),
) -> Dict[str, Any]:
    # Signature verification needs the raw, unparsed body.
    payload = await request.body()
    return reconciler.handle(payload, request.headers.get("stripe-signature"))
