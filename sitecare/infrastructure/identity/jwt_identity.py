"""Identity adapter backed by signed bearer tokens and a local credential table."""

import logging
from typing import Optional

import bcrypt
import jwt

from ...domain.errors import Unauthenticated, WeakPasswordError
from ...domain.models import User
from ...domain.ports.persistence import UserRepository

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6
# bcrypt only accepts up to 72 bytes of input
MAX_PASSWORD_BYTES = 72


class JwtIdentityProvider:
    """Verifies bearer tokens issued by the identity service and manages passwords."""

    def __init__(
        self,
        users: UserRepository,
        secret: str,
        algorithm: str = "HS256",
        audience: Optional[str] = None,
    ):
        self._users = users
        self._secret = secret
        self._algorithm = algorithm
        self._audience = audience

    def verify(self, token: str) -> str:
        """
        Decode a bearer token and return the account id it names.

        Args:
            token: Raw token without the ``Bearer`` prefix

        Returns:
            The ``sub`` claim

        Raises:
            Unauthenticated: If the token is missing, expired or forged
        """
        if not token:
            raise Unauthenticated("Unauthorized - Missing token")
        options = {"require": ["sub", "exp"]}
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[self._algorithm],
                audience=self._audience,
                options=options if self._audience else {**options, "verify_aud": False},
            )
        except jwt.ExpiredSignatureError:
            raise Unauthenticated("Unauthorized - Token expired") from None
        except jwt.InvalidTokenError:
            raise Unauthenticated("Unauthorized - Invalid token") from None

        account_id = payload.get("sub")
        if not account_id:
            raise Unauthenticated("Unauthorized - Invalid token")
        return str(account_id)

    def find_user_by_email(self, email: str) -> Optional[User]:
        return self._users.get_user_by_email(email.strip().lower())

    def create_user(
        self,
        email: str,
        password: str,
        display_name: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> User:
        """Seed a credential record; used by provisioning scripts and tests."""
        self._check_policy(password)
        return self._users.create_user(
            email=email.strip().lower(),
            password_hash=self._hash(password),
            display_name=display_name,
            user_id=user_id,
        )

    def update_password(self, account_id: str, password: str) -> None:
        self._check_policy(password)
        self._users.update_user_password(account_id, self._hash(password))
        logger.info("Password updated for account %s", account_id)

    def check_password(self, email: str, password: str) -> bool:
        user = self.find_user_by_email(email)
        if not user:
            return False
        return bcrypt.checkpw(password.encode("utf-8"), user.password_hash.encode("utf-8"))

    @staticmethod
    def _check_policy(password: str) -> None:
        if len(password) < MIN_PASSWORD_LENGTH:
            raise WeakPasswordError(f"Password should be at least {MIN_PASSWORD_LENGTH} characters.")
        if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
            raise WeakPasswordError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes long.")

    @staticmethod
    def _hash(password: str) -> str:
        return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")
