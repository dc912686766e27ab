"""
Declarative base and column types shared by the models.

The same models run against PostgreSQL (pgvector, JSONB) and SQLite
(tests). Types that differ between the two are declared with
`with_variant` here so model modules never branch on the dialect.
"""

from datetime import datetime, timezone
from typing import Optional

from pgvector.sqlalchemy import Vector
from sqlalchemy import JSON, DateTime, MetaData, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# Deterministic constraint names keep Alembic autogenerate diffs stable,
# e.g. uq_content_vectors_user_id, fk_vectorization_jobs_created_by_users.
metadata = MetaData(naming_convention={
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
})


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    metadata = metadata


class BaseModel(Base):
    """
    Abstract base for every table: integer id plus UTC created/updated stamps.

    `updated_at` is maintained by the ORM on flush. Recency ranking reads
    the vector row's own `content_updated_at` instead.
    """

    __abstract__ = True

    id: Mapped[int] = mapped_column(
        primary_key=True,
        autoincrement=True,
        comment="Auto-incrementing primary key",
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
        comment="Timestamp when record was created (UTC)",
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
        comment="Timestamp when record was last updated (UTC)",
    )

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(id={self.id})"


String50 = String(50)
String100 = String(100)
String255 = String(255)

# JSONB on PostgreSQL, generic JSON on other dialects (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


def embedding_type(dimension: int):
    """Vector column type: pgvector on PostgreSQL, a JSON float list elsewhere."""
    return JSON().with_variant(Vector(dimension), "postgresql")


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Return a timezone-aware UTC datetime.

    SQLite drops tzinfo on round-trip, so values read back from it are naive.
    They were written as UTC, so we just re-attach the zone.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
