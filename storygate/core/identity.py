"""Identity resolution for inbound requests.

Validates bearer JWTs and derives a stable user key from the verified claims.
"""
import logging
from typing import Any, Dict, Mapping, Optional

import jwt
from fastapi import Request

from storygate.core.config import Settings, settings as default_settings
from storygate.core.errors import AuthError

logger = logging.getLogger(__name__)


def resolve_user_key(claims: Optional[Mapping[str, Any]]) -> str:
    """
    Derive the user key from verified claims.

    Prefers the stable ``sub`` claim. Falls back to ``email`` only when no subject is
    present; a changed email then starts a fresh quota history.

    Raises:
        AuthError: no principal, or neither claim is usable
    """
    if not claims:
        raise AuthError("Not authenticated")
    for claim in ("sub", "email"):
        value = claims.get(claim)
        if isinstance(value, str) and value.strip():
            return value.strip()
    raise AuthError("Not authenticated", details={"reason": "token has no subject"})


def decode_bearer_token(token: str, settings: Settings) -> Dict[str, Any]:
    """Verify a bearer JWT (signature, expiry, audience when configured) and return its claims."""
    if not settings.auth_jwt_secret:
        logger.warning("AUTH_JWT_SECRET not set; rejecting bearer token")
        raise AuthError("Not authenticated")

    options = {"verify_signature": True, "verify_exp": True, "verify_aud": bool(settings.auth_jwt_audience)}
    try:
        return jwt.decode(
            token,
            settings.auth_jwt_secret,
            algorithms=settings.auth_jwt_algorithms,
            audience=settings.auth_jwt_audience,
            options=options,
        )
    except jwt.ExpiredSignatureError:
        raise AuthError("Token expired")
    except jwt.InvalidTokenError as e:
        logger.debug(f"Invalid token: {e}")
        raise AuthError("Invalid token")


def user_key_from_authorization(authorization: Optional[str], settings: Settings) -> str:
    if not authorization:
        raise AuthError("Not authenticated")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthError("Not authenticated")
    claims = decode_bearer_token(token.strip(), settings)
    return resolve_user_key(claims)


async def require_user_key(request: Request) -> str:
    """FastAPI dependency: the caller's user key, or 401."""
    settings = getattr(request.app.state, "settings", None) or default_settings
    return user_key_from_authorization(request.headers.get("Authorization"), settings)
