"""Password reset: issue, validate and consume single-use reset tokens."""

from __future__ import annotations

import logging
import re
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

from ..domain.errors import (
    IdentityError,
    PasswordResetFailed,
    ResetTokenError,
    ValidationError,
)
from ..domain.models import ResetToken
from ..domain.ports.identity import IdentityProvider
from ..domain.ports.persistence import ResetTokenRepository
from . import event_dispatcher as events
from .email_service import EmailService
from .event_dispatcher import EventDispatcher
from .rate_limiter import AdmissionPolicy

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
TOKEN_PATTERN = re.compile(r"^[0-9a-f]{64}$")
TOKEN_TTL = timedelta(hours=1)
MIN_PASSWORD_LENGTH = 8

REQUEST_ACCEPTED = "If an account exists with this email, you will receive password reset instructions shortly."
INVALID_LINK = "Invalid reset link. Please request a new password reset."
USED_LINK = "This reset link has already been used. Please request a new password reset."
EXPIRED_LINK = "This reset link has expired. Please request a new password reset."
RESET_COMPLETE = "Your password has been reset successfully. You can now sign in with your new password."


class PasswordResetService:
    """Issues reset links and applies new passwords through the identity provider."""

    def __init__(
        self,
        tokens: ResetTokenRepository,
        identity: IdentityProvider,
        email_service: EmailService,
        limiter: AdmissionPolicy,
        dispatcher: Optional[EventDispatcher] = None,
        app_base_url: str = "http://localhost:3000",
    ) -> None:
        self._tokens = tokens
        self._identity = identity
        self._email = email_service
        self._limiter = limiter
        self._dispatcher = dispatcher or EventDispatcher()
        self._app_base_url = app_base_url.rstrip("/")

    def request_reset(self, email: str, origin: Optional[str] = None) -> str:
        """
        Issue a reset token and email the link.

        Unknown emails and rate-limited requests get the same answer as a
        genuine issuance.

        Returns:
            The uniform acknowledgement message
        """
        normalized = (email or "").strip().lower()
        if not EMAIL_PATTERN.fullmatch(normalized):
            raise ValidationError("Please enter a valid email address")

        if not self._limiter.should_admit(normalized):
            logger.warning("Password reset rate limit reached for an email address")
            return REQUEST_ACCEPTED

        user = self._identity.find_user_by_email(normalized)
        if user is None:
            logger.info("Password reset requested for unknown email")
            return REQUEST_ACCEPTED

        now = datetime.now(timezone.utc)
        record = ResetToken(
            token=secrets.token_hex(32),
            token_id=secrets.token_hex(16),
            email=user.email,
            account_id=user.id,
            created_at=now,
            expires_at=now + TOKEN_TTL,
        )
        self._tokens.create_reset_token(record)
        logger.info("Issued password reset token %s for account %s", record.token_id, user.id)

        reset_url = f"{(origin or self._app_base_url).rstrip('/')}/reset-password?token={record.token}"
        try:
            if not self._email.send_password_reset_email(user.email, reset_url, user.first_name):
                logger.warning("Password reset email for token %s was not delivered", record.token_id)
        except Exception:
            logger.exception("Failed to send password reset email for token %s", record.token_id)

        self._dispatcher.emit(events.PASSWORD_RESET_REQUESTED, {"accountId": user.id})
        return REQUEST_ACCEPTED

    def validate_token(self, token: Optional[str]) -> str:
        """Return the email bound to a usable token, or raise ``ResetTokenError``."""
        return self._load_usable(token).email

    def reset_password(self, token: Optional[str], password: Optional[str]) -> str:
        """
        Consume a token and set the new password.

        The token is marked used before the password changes so a concurrent
        request cannot reuse it. If the change fails the mark is reverted.
        """
        if not password or len(password) < MIN_PASSWORD_LENGTH:
            raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")

        record = self._load_usable(token)
        if not self._tokens.mark_reset_token_used(record.token, datetime.now(timezone.utc)):
            raise ResetTokenError(USED_LINK)

        try:
            self._identity.update_password(record.account_id, password)
        except Exception as exc:
            self._revert(record)
            if isinstance(exc, IdentityError) and exc.code == "weak-password":
                raise ValidationError(str(exc)) from exc
            logger.exception("Password update failed for reset token %s", record.token_id)
            raise PasswordResetFailed() from exc

        logger.info("Password reset completed with token %s", record.token_id)
        self._dispatcher.emit(events.PASSWORD_RESET_COMPLETED, {"accountId": record.account_id})
        return RESET_COMPLETE

    def _load_usable(self, token: Optional[str]) -> ResetToken:
        # Shape is checked before any storage read.
        if not isinstance(token, str) or not TOKEN_PATTERN.fullmatch(token):
            raise ResetTokenError(INVALID_LINK)

        record = self._tokens.get_reset_token(token)
        if record is None or not record.email or not record.account_id:
            raise ResetTokenError(INVALID_LINK)
        if record.used:
            raise ResetTokenError(USED_LINK)
        if record.is_expired():
            raise ResetTokenError(EXPIRED_LINK)
        return record

    def _revert(self, record: ResetToken) -> None:
        try:
            self._tokens.revert_reset_token(record.token)
        except Exception:
            logger.exception("Could not revert reset token %s", record.token_id)
