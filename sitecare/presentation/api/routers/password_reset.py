from typing import Optional

from fastapi import APIRouter, Depends, Query

from ..schemas.password_reset import (
    MessageResponse,
    RequestResetRequest,
    ResetPasswordRequest,
    TokenCheckResponse,
)
from ....core.dependencies import get_password_reset_service, get_settings
from ....core.config import Settings
from ....domain.errors import ResetTokenError
from ....services.password_reset_service import PasswordResetService

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/request-reset", response_model=MessageResponse)
async def request_reset(
    payload: RequestResetRequest,
    service: PasswordResetService = Depends(get_password_reset_service),
    settings: Settings = Depends(get_settings),
) -> MessageResponse:
    message = service.request_reset(payload.email, settings.app_base_url)
    return MessageResponse(message=message)


@router.get("/reset", response_model=TokenCheckResponse, response_model_exclude_none=True)
async def validate_reset_token(
    token: Optional[str] = Query(default=None),
    service: PasswordResetService = Depends(get_password_reset_service),
) -> TokenCheckResponse:
    try:
        email = service.validate_token(token)
    except ResetTokenError as exc:
        return TokenCheckResponse(valid=False, error=exc.message)
    return TokenCheckResponse(valid=True, email=email)


@router.post("/reset", response_model=MessageResponse)
async def reset_password(
    payload: ResetPasswordRequest,
    service: PasswordResetService = Depends(get_password_reset_service),
) -> MessageResponse:
    message = service.reset_password(payload.token, payload.password)
    return MessageResponse(message=message)
