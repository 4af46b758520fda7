"""Single-use password reset credential."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional


@dataclass(slots=True)
class ResetToken:
    token: str
    token_id: str
    email: Optional[str]
    account_id: Optional[str]
    created_at: datetime
    expires_at: Optional[datetime]
    used: bool = False
    used_at: Optional[datetime] = None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return True
        return self.expires_at <= (now or datetime.now(timezone.utc))

    def __repr__(self) -> str:
        # The token value is the secret; only the secondary id is printable.
        return f"<ResetToken id={self.token_id} used={self.used}>"
