import logging
import secrets
import uuid
from datetime import datetime, timedelta
from typing import Literal

import jwt
from fastapi import Depends, Header
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel
from sqlmodel import Session

from config import (
    JWT_ALGORITHM,
    JWT_AUDIENCE,
    JWT_ISSUER,
    SESSION_LIFETIME_DAYS,
    SESSION_SECRET_KEY,
    SWEEP_API_KEY,
)
from database import get_db, utcnow
from errors import Forbidden
from models import SessionResponse
from records import User
from services.user_service import touch_user

logger = logging.getLogger("safecast_api.auth")


class TokenPayload(BaseModel):
    """JWT session token payload structure."""

    sub: str  # user id
    email: str
    typ: Literal["session"]
    exp: datetime | None = None  # expiration time


security = HTTPBearer(auto_error=False)


def create_session_token(
    user_id: str,
    email: str,
    expires_delta: timedelta | None = None,
    now: datetime | None = None,
) -> tuple[str, datetime]:
    """
    Create a signed session token.

    Args:
        user_id: The user's id
        email: The user's email address
        expires_delta: Custom lifetime (optional)
        now: Issue time, defaults to the current time

    Returns:
        The encoded token and its expiry time
    """
    now = now or utcnow()

    if expires_delta:
        expire = now + expires_delta
    else:
        expire = now + timedelta(days=SESSION_LIFETIME_DAYS)

    to_encode = {
        "sub": user_id,
        "email": email,
        "typ": "session",
        "exp": expire,
        "iss": JWT_ISSUER,
        "aud": JWT_AUDIENCE,
        "iat": now,
        "jti": str(uuid.uuid4()),
    }

    encoded_jwt = jwt.encode(to_encode, str(SESSION_SECRET_KEY), algorithm=JWT_ALGORITHM)
    return encoded_jwt, expire


def create_session(user: User) -> SessionResponse:
    token, expires_at = create_session_token(user.id, user.email)
    return SessionResponse(token=token, expiresAt=expires_at)


def decode_token(token: str) -> TokenPayload:
    """
    Decode and validate a session token.

    Raises:
        Forbidden: If the token is invalid or expired
    """
    try:
        payload = jwt.decode(
            token,
            str(SESSION_SECRET_KEY),
            algorithms=[JWT_ALGORITHM],
            audience=JWT_AUDIENCE,
            issuer=JWT_ISSUER,
        )
        return TokenPayload(**payload)
    except jwt.ExpiredSignatureError:
        raise Forbidden("Session has expired. Please sign in again.")
    except (jwt.InvalidTokenError, ValueError):
        raise Forbidden()


async def get_current_token(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> TokenPayload:
    """Dependency to get and validate the bearer session token."""
    if credentials is None:
        raise Forbidden("Not authenticated")

    return decode_token(credentials.credentials)


def require_user(
    token: TokenPayload = Depends(get_current_token),
    session: Session = Depends(get_db),
) -> User:
    """
    Dependency that requires a valid session for a user that still exists.
    Refreshes the user's last_active_at.
    """
    user = session.get(User, token.sub)
    if user is None or user.email != token.email:
        logger.warning(f"Rejected session for unknown user id={token.sub}")
        raise Forbidden()

    return touch_user(session, user)


def verify_email_access(user: User, email: str) -> None:
    """Raise Forbidden unless ``email`` belongs to the signed-in user."""
    if user.email != email:
        raise Forbidden("You do not have permission to modify this account")


async def require_sweep_key(x_sweep_key: str | None = Header(default=None)) -> None:
    """Dependency guarding the on-demand sweep; disabled when no key is configured."""
    if SWEEP_API_KEY is None or not str(SWEEP_API_KEY):
        raise Forbidden("Sweep endpoint is disabled")

    if x_sweep_key is None or not secrets.compare_digest(x_sweep_key, str(SWEEP_API_KEY)):
        raise Forbidden("Invalid sweep key")
