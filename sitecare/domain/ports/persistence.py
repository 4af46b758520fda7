from __future__ import annotations

from datetime import datetime
from typing import Any, Mapping, Optional, Protocol

from ..models import Account, ResetToken, User


class AccountRepository(Protocol):
    """Abstract storage for per-account documents."""

    def get_account(self, account_id: str) -> Optional[Account]:
        ...

    def get_account_by_customer_ref(self, customer_ref: str) -> Optional[Account]:
        ...

    def ensure_account(self, account_id: str, email: Optional[str] = None) -> Account:
        ...

    def update_account_fields(self, account_id: str, fields: Mapping[str, Any]) -> Account:
        """Apply dotted field-path updates (``subscription.tier``) without touching other fields."""
        ...


class ResetTokenRepository(Protocol):
    """Abstract storage for password reset tokens keyed by the token value."""

    def create_reset_token(self, token: ResetToken) -> None:
        ...

    def get_reset_token(self, token: str) -> Optional[ResetToken]:
        ...

    def mark_reset_token_used(self, token: str, used_at: datetime) -> bool:
        """Mark the token consumed; False when it was already used."""
        ...

    def revert_reset_token(self, token: str) -> None:
        ...


class UserRepository(Protocol):
    """Persistence functions related to sign-in credentials."""

    def get_user_by_email(self, email: str) -> Optional[User]:
        ...

    def get_user_by_id(self, user_id: str) -> Optional[User]:
        ...

    def create_user(
        self,
        email: str,
        password_hash: str,
        display_name: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> User:
        ...

    def update_user_password(self, user_id: str, password_hash: str) -> User:
        ...


class PersistenceGateway(
    AccountRepository,
    ResetTokenRepository,
    UserRepository,
    Protocol,
):
    """Composite gateway combining every persistence concern used by the app."""

    pass
