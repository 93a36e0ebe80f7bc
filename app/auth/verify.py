"""
verify.py
---------
Member authentication for the event routes.

Members sign in through Supabase; their access tokens are ES256 JWTs
checked against the project's JWKS. The `sub` claim is the member id that
owns RSVPs, so most routes depend on `current_member_id` rather than on
the raw claims.
"""

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jwt import PyJWKClient

from app.config import settings

MEMBER_AUDIENCE = "authenticated"
MEMBER_ALGORITHMS = ["ES256"]

_jwk_client = PyJWKClient(settings.jwks_url(), cache_keys=True)
_bearer = HTTPBearer()


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def decode_member_token(token: str) -> dict:
    """Verify signature, audience and expiry; return the token claims."""
    try:
        signing_key = _jwk_client.get_signing_key_from_jwt(token)
        return jwt.decode(
            token,
            signing_key.key,
            algorithms=MEMBER_ALGORITHMS,
            audience=MEMBER_AUDIENCE,
            options={"require": ["sub", "exp"]},
        )
    except jwt.PyJWTError as e:
        raise _unauthorized(f"Invalid member token: {e}") from e


def auth_dependency(credentials: HTTPAuthorizationCredentials = Depends(_bearer)) -> dict:
    return decode_member_token(credentials.credentials)


def current_member_id(claims: dict = Depends(auth_dependency)) -> str:
    member_id = claims.get("sub")
    if not member_id:
        raise _unauthorized("Token has no member id")
    return str(member_id)
