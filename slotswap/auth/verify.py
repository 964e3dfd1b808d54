"""
verify.py
---------
Purpose:
    JWT verification for API and WebSocket callers.

Notes:
    - Tokens are verified against the identity service JWKS (ES256/RS256).
    - When AUTH_JWT_SECRET is set, HS256 tokens signed with it are accepted
      instead (local development).
    - Provides `auth_dependency` for protected routes; the `sub` claim is
      the user id.
"""

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jwt import PyJWKClient

from slotswap.config import settings

_jwk_client = PyJWKClient(settings.jwks_url())
_security = HTTPBearer()


def verify_jwt(token: str) -> dict:
    try:
        if settings.AUTH_JWT_SECRET:
            key = settings.AUTH_JWT_SECRET
            algorithms = ["HS256"]
        else:
            key = _jwk_client.get_signing_key_from_jwt(token).key
            algorithms = ["ES256", "RS256"]

        decoded = jwt.decode(
            token,
            key,
            algorithms=algorithms,
            audience=settings.AUTH_AUDIENCE,
            options={"verify_exp": True, "require": ["sub"]},
        )
        return decoded
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid authentication token: {e}",
            headers={"WWW-Authenticate": "Bearer"},
        ) from e


def auth_dependency(credentials: HTTPAuthorizationCredentials = Depends(_security)) -> dict:
    token = credentials.credentials
    return verify_jwt(token)


def current_user_id(claims: dict = Depends(auth_dependency)) -> str:
    """Authenticated user id from the `sub` claim."""
    user_id = claims.get("sub")
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token: missing user ID"
        )
    return str(user_id)
