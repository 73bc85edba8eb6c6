"""
Request authentication.

Validates bearer JWTs (``sub`` claim is the user id) and falls back to the
X-User-Id header outside production for tests and local tooling.
"""
import logging
from dataclasses import dataclass
from typing import Optional

import jwt
from fastapi import Depends, Request
from sqlalchemy import select
from sqlalchemy.orm import Session

from family_helper.core.config import settings
from family_helper.core.database import get_db, users
from family_helper.core.errors import AuthenticationError
from family_helper.models.user import User

logger = logging.getLogger("family_helper.auth")


@dataclass
class AuthenticatedUser:
    """The caller of a request, plus the client details audit rows need."""
    user_id: str
    record: Optional[User] = None
    ip_address: str = "unknown"
    user_agent: str = "unknown"

    @property
    def email(self) -> Optional[str]:
        return self.record.email if self.record else None


def verify_jwt(token: str) -> str:
    """
    Verify a bearer JWT and return its ``sub`` claim.

    Raises:
        AuthenticationError: expired, invalid or unverifiable token
    """
    if not settings.AUTH_JWT_SECRET:
        raise AuthenticationError("Bearer authentication is not configured", code="auth_unconfigured")

    options = {"verify_signature": True, "verify_exp": True, "verify_aud": bool(settings.AUTH_JWT_AUDIENCE)}
    try:
        payload = jwt.decode(
            token,
            settings.AUTH_JWT_SECRET,
            algorithms=settings.jwt_algorithms,
            audience=settings.AUTH_JWT_AUDIENCE,
            options=options,
        )
    except jwt.ExpiredSignatureError:
        raise AuthenticationError("Token expired", code="token_expired")
    except jwt.InvalidTokenError as e:
        logger.debug(f"Invalid token: {e}")
        raise AuthenticationError("Invalid token", code="invalid_token")

    user_id = payload.get("sub")
    if not user_id:
        raise AuthenticationError("Token has no subject", code="invalid_token")
    return user_id


def resolve_user_id(request: Request) -> Optional[str]:
    """
    Priority:
    1. Bearer JWT from Authorization header
    2. X-User-Id header (when header auth is enabled)
    """
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        token = auth_header[7:].strip()
        if token:
            return verify_jwt(token)

    if settings.header_auth_enabled:
        header_user = request.headers.get("X-User-Id", "").strip()
        if header_user:
            return header_user

    return None


def client_ip(request: Request) -> str:
    if request.client and request.client.host:
        return request.client.host
    return request.headers.get("x-forwarded-for") or "unknown"


def get_optional_user(request: Request, session: Session = Depends(get_db)) -> Optional[AuthenticatedUser]:
    """FastAPI dependency: the caller, or None when no credentials were sent."""
    user_id = resolve_user_id(request)
    if not user_id:
        return None

    row = session.execute(select(users).where(users.c.user_id == user_id)).first()
    return AuthenticatedUser(
        user_id=user_id,
        record=User.from_row(row) if row else None,
        ip_address=client_ip(request),
        user_agent=request.headers.get("user-agent") or "unknown",
    )


def get_current_user(user: Optional[AuthenticatedUser] = Depends(get_optional_user)) -> AuthenticatedUser:
    """FastAPI dependency: the caller; 401 when unauthenticated."""
    if user is None:
        raise AuthenticationError(
            "Missing Authorization (Bearer JWT) or X-User-Id header",
            code="unauthorized",
        )
    return user
