"""Verification of Supabase access tokens."""

from __future__ import annotations

from typing import Any, Dict

from jose import JWTError, jwt

from ..domain.users import AuthenticatedUser
from .config import Settings, get_settings

ALGORITHM = "HS256"


class TokenConfigurationError(RuntimeError):
    """Raised when no JWT secret is configured to verify sessions with."""


def decode_supabase_token(token: str, settings: Settings | None = None) -> Dict[str, Any]:
    """Decode and verify a Supabase JWT, raising ``JWTError`` when invalid."""

    settings = settings or get_settings()
    if not settings.supabase_jwt_secret:
        raise TokenConfigurationError("SUPABASE_JWT_SECRET is not configured")
    return jwt.decode(
        token,
        settings.supabase_jwt_secret,
        algorithms=[ALGORITHM],
        audience=settings.supabase_jwt_audience,
    )


def user_from_token(token: str, settings: Settings | None = None) -> AuthenticatedUser:
    payload = decode_supabase_token(token, settings)
    subject = payload.get("sub")
    if not subject:
        raise JWTError("Token has no subject")
    return AuthenticatedUser(id=str(subject), email=payload.get("email"), role=payload.get("role"))
