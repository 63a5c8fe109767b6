"""Bearer token authentication for the dashboard API.

Tokens are itsdangerous signatures over {principal_id, is_admin}.
"""

from typing import Optional

from fastapi import Depends, HTTPException, Request
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from pydantic import BaseModel

from rental_sync.api.state import AppState, get_app_state
from rental_sync.config import get_settings

TOKEN_SALT = "rental-sync-principal"
TOKEN_MAX_AGE = 60 * 60 * 24 * 30  # 30 days


class Principal(BaseModel):
    """Acting user of a request."""

    principal_id: str
    is_admin: bool = False


def get_serializer(secret_key: Optional[str] = None) -> URLSafeTimedSerializer:
    """Get serializer for principal tokens."""
    return URLSafeTimedSerializer(secret_key or get_settings().secret_key, salt=TOKEN_SALT)


def create_access_token(
    principal_id: str, is_admin: bool = False, secret_key: Optional[str] = None
) -> str:
    """Create a signed access token for a principal."""
    return get_serializer(secret_key).dumps(
        {"principal_id": principal_id, "is_admin": is_admin}
    )


def verify_access_token(
    token: Optional[str], secret_key: Optional[str] = None
) -> Optional[Principal]:
    """Verify an access token.

    Args:
        token: The token to verify.
        secret_key: Signing key, defaults to the configured one.

    Returns:
        The principal, or None if the token is missing, tampered or expired.
    """
    if not token:
        return None

    try:
        data = get_serializer(secret_key).loads(token, max_age=TOKEN_MAX_AGE)
    except (BadSignature, SignatureExpired):
        return None

    if not isinstance(data, dict) or not data.get("principal_id"):
        return None
    return Principal(principal_id=str(data["principal_id"]), is_admin=bool(data.get("is_admin")))


def get_principal(request: Request, state: AppState = Depends(get_app_state)) -> Principal:
    """Dependency resolving the principal from the Authorization header."""
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    principal = None
    if scheme.lower() == "bearer":
        principal = verify_access_token(token.strip(), state.settings.secret_key)
    if principal is None:
        raise HTTPException(
            status_code=401,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return principal


def get_admin(principal: Principal = Depends(get_principal)) -> Principal:
    """Dependency requiring an admin principal."""
    if not principal.is_admin:
        raise HTTPException(status_code=403, detail="Admin privileges required")
    return principal
