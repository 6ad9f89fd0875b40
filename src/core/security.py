"""
Bearer token handling.

Tokens are issued by the identity provider and signed with the shared
``SECRET_KEY``; Sparkbid only checks the signature and expiry and reads the
user id from ``sub``. ``create_access_token`` mints the same shape for local
development and tests.
"""
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

from jose import JWTError, jwt

from src.core.config import settings


def create_access_token(subject: uuid.UUID | str, ttl: timedelta | None = None, **claims: Any) -> str:
    issued_at = datetime.now(timezone.utc)
    lifetime = ttl or timedelta(minutes=settings.access_token_expire_minutes)
    payload = {**claims, "sub": str(subject), "iat": issued_at, "exp": issued_at + lifetime}
    return jwt.encode(payload, settings.secret_key, algorithm=settings.algorithm)


def token_subject(token: str) -> uuid.UUID | None:
    """User id carried by a valid token; None for bad signatures, expiry or a non-UUID subject."""
    try:
        claims = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
        return uuid.UUID(str(claims["sub"]))
    except (JWTError, KeyError, ValueError):
        return None
