"""
Alembic environment for the brandforge schema.

Reads DATABASE_URL from application settings and runs migrations through
the async engine. The pgvector type is registered with the PostgreSQL
dialect so autogenerate can compare `vector(n)` columns instead of
reporting them as unknown types.
"""

import asyncio
import sys
from logging.config import fileConfig
from pathlib import Path

from pgvector.sqlalchemy import Vector
from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import async_engine_from_config

from alembic import context

# Allow `alembic` to run from backend/ without an installed package
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from brandforge.core.config import settings
from brandforge.db.base import Base
import brandforge.models  # noqa: F401,E402  (register tables)

config = context.config
config.set_main_option("sqlalchemy.url", settings.DATABASE_URL)

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def include_object(obj, name, type_, reflected, compare_to):
    # Tables created by other services sharing the database are not ours to drop
    if type_ == "table" and reflected and compare_to is None:
        return False
    return True


def configure(**kwargs) -> None:
    context.configure(
        target_metadata=target_metadata,
        include_object=include_object,
        compare_type=True,
        compare_server_default=True,
        **kwargs,
    )


def run_migrations_offline() -> None:
    """Emit SQL instead of applying it (``alembic upgrade head --sql``)."""
    configure(
        url=config.get_main_option("sqlalchemy.url"),
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection: Connection) -> None:
    if connection.dialect.name == "postgresql":
        connection.dialect.ischema_names["vector"] = Vector

    configure(connection=connection)

    with context.begin_transaction():
        context.run_migrations()


async def run_async_migrations() -> None:
    connectable = async_engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    async with connectable.connect() as connection:
        await connection.run_sync(do_run_migrations)

    await connectable.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_async_migrations())
