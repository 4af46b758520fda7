from typing import Optional

from pydantic import BaseModel, Field


class RequestResetRequest(BaseModel):
    # Format is checked by the service so the error message stays uniform.
    email: str = Field(default="", max_length=320)


class ResetPasswordRequest(BaseModel):
    token: Optional[str] = None
    password: Optional[str] = None


class MessageResponse(BaseModel):
    success: bool = True
    message: str


class TokenCheckResponse(BaseModel):
    valid: bool
    email: Optional[str] = None
    error: Optional[str] = None
