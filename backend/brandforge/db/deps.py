"""
FastAPI database dependencies.

Routes take `DBSession` for request-scoped work (retrieval, the brand
profile endpoint). The admin vectorization routes take the session
factory, because job updates each run in their own short transaction.

Tests replace both through `app.dependency_overrides`.
"""

from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from brandforge.core.logging import get_logger
from brandforge.db.session import AsyncSessionLocal

logger = get_logger(__name__)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    One session per request. Routes commit explicitly; an exception
    escaping the route rolls the session back and is re-raised.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception as e:
            logger.error(
                "database_session_error",
                error=str(e),
                error_type=type(e).__name__,
            )
            await session.rollback()
            raise


def get_session_factory() -> async_sessionmaker:
    return AsyncSessionLocal


DBSession = Annotated[AsyncSession, Depends(get_db)]
