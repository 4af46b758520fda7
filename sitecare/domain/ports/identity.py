from __future__ import annotations

from typing import Optional, Protocol

from ..models import User


class IdentityProvider(Protocol):
    """External identity service: verifies bearer credentials and owns passwords."""

    def verify(self, token: str) -> str:
        """Return the account id for a bearer credential or raise ``Unauthenticated``."""
        ...

    def find_user_by_email(self, email: str) -> Optional[User]:
        ...

    def update_password(self, account_id: str, password: str) -> None:
        """Raise ``IdentityError`` (``WeakPasswordError`` for policy rejections) on failure."""
        ...
