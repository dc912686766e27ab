"""
Pytest configuration and fixtures.

This file is automatically discovered by pytest and provides
shared fixtures for all test modules.

Every test gets its own SQLite database file (aiosqlite), a deterministic
bag-of-words embedder and a dispatcher that records instead of queueing
Celery tasks.

References:
-----------
- Pytest Fixtures: https://docs.pytest.org/en/stable/fixture.html
- FastAPI Testing: https://fastapi.tiangolo.com/advanced/async-tests/
"""

import hashlib
import os
import re
import tempfile
from datetime import timedelta
from typing import AsyncGenerator, List, Tuple

# Settings are read at import time; configure the environment first
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-brandforge-0123456789")
os.environ.setdefault("JWT_SECRET_KEY", "test-jwt-key-for-brandforge-9876543210abc")
os.environ.setdefault(
    "DATABASE_URL",
    f"sqlite+aiosqlite:///{os.path.join(tempfile.gettempdir(), 'brandforge_test.db')}",
)
os.environ.setdefault("APP_ENV", "staging")
os.environ.setdefault("DEBUG", "false")
os.environ.setdefault("EMBEDDING_DIMENSION", "64")
os.environ.setdefault("RAG_SIMILARITY_THRESHOLD", "0.0")
os.environ.setdefault("LOG_FORMAT", "text")

import numpy as np
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from brandforge.api.deps import get_embedder, get_vectorization_service
from brandforge.core.config import settings
from brandforge.core.security import create_access_token
from brandforge.db.base import Base
from brandforge.db.deps import get_db, get_session_factory
from brandforge.main import app
from brandforge.models.content import ContentType, SourceDocument
from brandforge.models.user import User
from brandforge.services.rag.normalizer import source_collection_for
from brandforge.services.vectorization import VectorizationService


# ================================
# Test Doubles
# ================================

class FakeEmbedder:
    """
    Deterministic embedding provider.

    Hashes each lowercase word into one of `dimension` buckets and L2
    normalizes, so texts sharing words have positive cosine similarity.
    Texts containing any marker in `fail_on` raise like a provider outage.
    """

    def __init__(self, dimension: int | None = None):
        self.dimension = dimension or settings.EMBEDDING_DIMENSION
        self.calls: List[str] = []
        self.fail_on: set[str] = set()

    def get_embedding_dimension(self) -> int:
        return self.dimension

    async def embed_text(self, text: str) -> list[float]:
        self.calls.append(text)
        for marker in self.fail_on:
            if marker in text:
                raise RuntimeError(f"embedding provider unavailable ({marker})")

        vector = np.zeros(self.dimension)
        for token in re.findall(r"[a-z0-9#]+", text.lower()):
            bucket = int(hashlib.md5(token.encode()).hexdigest(), 16) % self.dimension
            vector[bucket] += 1.0

        norm = np.linalg.norm(vector)
        if norm:
            vector = vector / norm
        return vector.tolist()


class RecordingDispatcher:
    """Stands in for dispatch_vectorization_job; remembers (job_id, attempt)."""

    def __init__(self):
        self.calls: List[Tuple[int, int]] = []

    def __call__(self, job_id: int, attempt: int) -> None:
        self.calls.append((job_id, attempt))


# ================================
# Database Fixtures
# ================================

@pytest_asyncio.fixture
async def test_engine(tmp_path):
    """
    Fresh SQLite database per test.

    NullPool gives every session its own connection, like the worker and
    the API do against PostgreSQL.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        poolclass=NullPool,
        echo=False,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker:
    return async_sessionmaker(
        bind=test_engine,
        class_=AsyncSession,
        autoflush=False,
        expire_on_commit=False,
    )


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def fake_embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def vectorization_service(session_factory, dispatcher) -> VectorizationService:
    return VectorizationService(session_factory, dispatcher)


# ================================
# Data Helpers
# ================================

async def create_user(
    session_factory: async_sessionmaker,
    email: str,
    name: str = "Test User",
    brand_name: str | None = None,
    is_admin: bool = False,
    is_active: bool = True,
) -> User:
    async with session_factory() as db:
        user = User(
            email=email,
            name=name,
            brand_name=brand_name,
            is_admin=is_admin,
            is_active=is_active,
        )
        db.add(user)
        await db.commit()
        return user


async def add_document(
    session_factory: async_sessionmaker,
    user_id: int,
    content_type: ContentType,
    doc_id: str,
    data: dict,
) -> SourceDocument:
    async with session_factory() as db:
        document = SourceDocument(
            user_id=user_id,
            content_type=content_type,
            collection=source_collection_for(content_type),
            doc_id=doc_id,
            data=data,
        )
        db.add(document)
        await db.commit()
        return document


def bearer(user: User) -> dict[str, str]:
    token = create_access_token(data={"sub": user.email}, expires_delta=timedelta(minutes=30))
    return {"Authorization": f"Bearer {token}"}


# ================================
# User Fixtures
# ================================

@pytest_asyncio.fixture
async def test_user(session_factory) -> User:
    return await create_user(
        session_factory,
        email="maker@example.com",
        name="Content Maker",
        brand_name="Acme",
    )


@pytest_asyncio.fixture
async def admin_user(session_factory) -> User:
    return await create_user(
        session_factory,
        email="ops@example.com",
        name="Ops Admin",
        is_admin=True,
    )


@pytest.fixture
def auth_headers(test_user: User) -> dict[str, str]:
    return bearer(test_user)


@pytest.fixture
def admin_headers(admin_user: User) -> dict[str, str]:
    return bearer(admin_user)


# ================================
# FastAPI Client Fixtures
# ================================

@pytest_asyncio.fixture
async def client(
    session_factory,
    fake_embedder,
    vectorization_service,
) -> AsyncGenerator[AsyncClient, None]:
    """
    Async HTTP client against the app with test dependencies.

    Usage:
        async def test_something(client: AsyncClient, admin_headers):
            response = await client.get("/api/v1/admin/rag/vectorization", headers=admin_headers)
    """
    async def override_get_db():
        async with session_factory() as session:
            yield session

    async def override_get_embedder():
        return fake_embedder

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_embedder] = override_get_embedder
    app.dependency_overrides[get_vectorization_service] = lambda: vectorization_service

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
