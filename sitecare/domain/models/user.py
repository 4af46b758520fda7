"""User domain model for the identity provider's credential records."""

from datetime import datetime
from typing import Optional


class User:
    """
    User entity backing an account's sign-in credential.

    Attributes:
        id: Opaque account identifier shared with the account document
        email: User email address (unique, lower-cased)
        password_hash: bcrypt hash of the password
        display_name: Name used to personalise outbound email
        created_at: Account creation timestamp
        updated_at: Last update timestamp
    """

    def __init__(
        self,
        id: str,
        email: str,
        password_hash: str,
        display_name: Optional[str] = None,
        created_at: Optional[datetime] = None,
        updated_at: Optional[datetime] = None,
    ):
        self.id = id
        self.email = email
        self.password_hash = password_hash
        self.display_name = display_name
        self.created_at = created_at or datetime.utcnow()
        self.updated_at = updated_at or datetime.utcnow()

    @property
    def first_name(self) -> Optional[str]:
        if not self.display_name:
            return None
        return self.display_name.split(" ")[0]

    def __repr__(self) -> str:
        return f"<User id={self.id} email={self.email}>"
