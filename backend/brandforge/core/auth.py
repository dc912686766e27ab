"""
Authentication dependencies for FastAPI.

Bearer tokens are issued by the account service that owns login; this
backend only verifies them and resolves the user. Every RAG route is
scoped to that user's content, and the vectorization admin surface
additionally requires `is_admin`.
"""

import structlog
from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from brandforge.core.config import settings
from brandforge.core.security import decode_access_token
from brandforge.db.deps import get_db
from brandforge.models.user import User

# Only used to document the scheme in OpenAPI; login lives elsewhere.
# A missing Authorization header is a 401.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl=f"{settings.API_V1_PREFIX}/auth/login")


async def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db),
) -> User:
    """
    Resolve the user a bearer token belongs to (the "sub" claim is the
    email) and tag the request's log lines with their id.

    Raises:
        HTTPException 401: Token invalid/expired, or the user no longer exists
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    payload = decode_access_token(token)
    email = payload.get("sub") if payload else None
    if not email:
        raise credentials_exception

    result = await db.execute(select(User).where(User.email == email))
    user = result.scalar_one_or_none()
    if user is None:
        raise credentials_exception

    structlog.contextvars.bind_contextvars(user_id=user.id)
    return user


async def get_current_active_user(
    current_user: User = Depends(get_current_user),
) -> User:
    if not current_user.is_active:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Inactive user",
        )
    return current_user


async def require_admin(
    current_user: User = Depends(get_current_active_user),
) -> User:
    """
    Gate for /admin/rag/*: starting, pausing, resuming and cancelling
    vectorization jobs.

    Raises:
        HTTPException 403: User is not an admin
    """
    if not current_user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return current_user
