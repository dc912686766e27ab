"""
Database engine and session factory.

One engine per process. The API hands out one session per request
(brandforge.db.deps.get_db); the vectorization orchestrator takes the
`AsyncSessionLocal` factory instead and opens a short session for each
job-row update, so progress writes and operator control writes never
share a transaction.

Vectors live in PostgreSQL through pgvector. Any other dialect (SQLite in
tests) stores them as JSON float lists and similarity is computed in
Python, see brandforge.services.rag.vector_store.
"""

from typing import Any

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncConnection,
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import AsyncAdaptedQueuePool, NullPool

from brandforge.core.config import settings
from brandforge.core.logging import get_logger

logger = get_logger(__name__)


def is_postgres_url(url: str) -> bool:
    return url.startswith("postgresql")


def get_engine_config() -> dict[str, Any]:
    """
    Engine options for the current environment.

    development and production pool connections (the API and each Celery
    worker process hold their own pool); staging and tests use NullPool.
    """
    config: dict[str, Any] = {
        "echo": settings.DB_ECHO,
        "pool_pre_ping": True,
    }

    if settings.DATABASE_URL.startswith("postgresql+asyncpg"):
        # Shows up in pg_stat_activity
        config["connect_args"] = {
            "server_settings": {"application_name": settings.APP_NAME},
        }

    if settings.is_development or settings.is_production:
        config.update({
            "poolclass": AsyncAdaptedQueuePool,
            "pool_size": settings.DB_POOL_SIZE,
            "max_overflow": settings.DB_MAX_OVERFLOW,
            "pool_timeout": 30,
            "pool_recycle": 7200 if settings.is_production else 3600,
        })
    else:
        config["poolclass"] = NullPool

    return config


def create_engine() -> AsyncEngine:
    engine_config = get_engine_config()
    engine = create_async_engine(settings.DATABASE_URL, **engine_config)

    logger.info(
        "database_engine_created",
        environment=settings.APP_ENV,
        pool_size=engine_config.get("pool_size", "NullPool"),
        pgvector=is_postgres_url(settings.DATABASE_URL),
    )
    return engine


engine: AsyncEngine = create_engine()

# expire_on_commit=False: the orchestrator reads a job's fields after the
# session that committed it has closed.
AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    autoflush=False,
    expire_on_commit=False,
)


async def ensure_vector_extension(conn: AsyncConnection) -> None:
    """Enable pgvector on PostgreSQL; no-op on other dialects."""
    if conn.dialect.name != "postgresql":
        return
    await conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))


async def init_db() -> None:
    """
    Verify the connection at API startup.

    In development the pgvector extension and all tables are created
    directly; every other environment relies on Alembic migrations.
    """
    try:
        async with engine.begin() as conn:
            await conn.execute(text("SELECT 1"))

        if settings.is_development:
            from brandforge.db.base import Base
            import brandforge.models  # noqa: F401  (register tables)

            async with engine.begin() as conn:
                await ensure_vector_extension(conn)
                await conn.run_sync(Base.metadata.create_all)

            logger.info("database_tables_created")

    except Exception as e:
        logger.error(
            "database_initialization_failed",
            error=str(e),
            error_type=type(e).__name__,
        )
        raise

    logger.info("database_ready", dialect=engine.dialect.name)


async def close_db() -> None:
    try:
        await engine.dispose()
        logger.info("database_connections_closed")
    except Exception as e:
        logger.error(
            "database_closure_failed",
            error=str(e),
            error_type=type(e).__name__,
        )


async def check_db_health() -> bool:
    """True when a trivial query succeeds."""
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error(
            "database_health_check_failed",
            error=str(e),
            error_type=type(e).__name__,
        )
        return False
