"""Persistence layer: declarative base, portable vector/JSON types, sessions."""

from brandforge.db.base import Base, BaseModel, JSONType, embedding_type, ensure_utc
from brandforge.db.deps import DBSession, get_db, get_session_factory
from brandforge.db.session import (
    AsyncSessionLocal,
    check_db_health,
    close_db,
    engine,
    ensure_vector_extension,
    init_db,
)

__all__ = [
    "Base",
    "BaseModel",
    "JSONType",
    "embedding_type",
    "ensure_utc",
    "engine",
    "AsyncSessionLocal",
    "ensure_vector_extension",
    "init_db",
    "close_db",
    "check_db_health",
    "get_db",
    "get_session_factory",
    "DBSession",
]
