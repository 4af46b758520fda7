from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from ...core.dependencies import get_identity_provider
from ...domain.errors import Unauthenticated
from ...domain.ports.identity import IdentityProvider

_bearer_scheme = HTTPBearer(auto_error=False)


def require_account(
    credentials: HTTPAuthorizationCredentials = Depends(_bearer_scheme),
    identity: IdentityProvider = Depends(get_identity_provider),
) -> str:
    """Resolve the bearer token to the caller's account id."""
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise Unauthenticated("Unauthorized - Missing token")
    return identity.verify(credentials.credentials)


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"
