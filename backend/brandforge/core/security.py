"""
JWT helpers (python-jose).

Tokens are issued by the account service that owns login; this backend
verifies them. create_access_token exists for service-to-service calls,
operator scripts and tests.
"""

from datetime import datetime, timedelta, timezone
from typing import Any

from jose import JWTError, jwt

from brandforge.core.config import settings

ALGORITHM = settings.JWT_ALGORITHM


def create_access_token(data: dict[str, Any], expires_delta: timedelta | None = None) -> str:
    """
    Sign `data` (which should carry "sub", the user's email) with an
    expiry, JWT_ACCESS_TOKEN_EXPIRE_MINUTES by default.

    Example:
        >>> token = create_access_token({"sub": "ops@brand.io"}, timedelta(minutes=30))
    """
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES))

    claims = {**data, "exp": expire, "iat": now}
    return jwt.encode(claims, settings.JWT_SECRET_KEY, algorithm=ALGORITHM)


def decode_access_token(token: str) -> dict[str, Any] | None:
    """Verified payload, or None when the signature or expiry check fails."""
    try:
        return jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        return None
