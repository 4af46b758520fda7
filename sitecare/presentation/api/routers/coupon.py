import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from ..dependencies import client_ip
from ..schemas.billing import CouponResponse, ValidateCouponRequest
from ....core.dependencies import get_coupon_rate_limiter, get_subscription_service
from ....domain.errors import BillingError
from ....services.rate_limiter import AdmissionPolicy
from ....services.subscription_service import SubscriptionService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/coupon", tags=["coupon"])


@router.post("/validate", response_model=CouponResponse, response_model_exclude_none=True)
async def validate_coupon(
    payload: ValidateCouponRequest,
    request: Request,
    service: SubscriptionService = Depends(get_subscription_service),
    limiter: AdmissionPolicy = Depends(get_coupon_rate_limiter),
):
    if not limiter.should_admit(f"coupon:{client_ip(request)}"):
        return JSONResponse(
            status_code=429,
            content={"valid": False, "error": "Too many attempts. Please try again in a minute."},
        )
    try:
        result = service.validate_coupon(payload.coupon_code)
    except BillingError as exc:
        return JSONResponse(status_code=exc.status_code, content={"valid": False, "error": exc.message})

    return CouponResponse(
        valid=result.valid,
        id=result.coupon_id,
        percent_off=result.percent_off,
        amount_off=result.amount_off,
        duration=result.duration,
        duration_in_months=result.duration_in_months,
        name=result.name,
        error=result.error,
    )
