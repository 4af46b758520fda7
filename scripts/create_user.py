"""Seed a local identity user and print a bearer token for it.

Usage: python scripts/create_user.py [email]
"""

import getpass
import sys
import time

import jwt

from sitecare.core.config import Settings
from sitecare.infrastructure.identity.jwt_identity import JwtIdentityProvider
from sitecare.infrastructure.persistence.sqlite import SQLitePersistence

TOKEN_LIFETIME_SECONDS = 12 * 60 * 60


def main() -> None:
    settings = Settings()

    email = (sys.argv[1] if len(sys.argv) > 1 else input("Email: ")).strip().lower()
    display_name = input("Display name (optional): ").strip() or None
    password = getpass.getpass("Password: ")

    store = SQLitePersistence(settings.database_path)
    try:
        identity = JwtIdentityProvider(
            users=store,
            secret=settings.identity_token_secret,
            algorithm=settings.identity_token_algorithm,
            audience=settings.identity_token_audience,
        )
        user = identity.find_user_by_email(email)
        if user is None:
            user = identity.create_user(email, password, display_name=display_name)
            store.ensure_account(user.id, user.email)
            print("Created user", user.id)
        else:
            identity.update_password(user.id, password)
            print("User already existed; password updated for", user.id)
    finally:
        store.close()

    claims = {"sub": user.id, "exp": int(time.time()) + TOKEN_LIFETIME_SECONDS}
    if settings.identity_token_audience:
        claims["aud"] = settings.identity_token_audience
    token = jwt.encode(claims, settings.identity_token_secret, algorithm=settings.identity_token_algorithm)
    print("Bearer token (valid 12h):")
    print(token)


if __name__ == "__main__":
    main()
