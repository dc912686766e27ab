"""
Service dependencies for API routes.

Tests swap these out through `app.dependency_overrides` (fake embedder,
recording dispatcher).
"""

from fastapi import Depends
from sqlalchemy.ext.asyncio import async_sessionmaker

from brandforge.db.deps import get_session_factory
from brandforge.services.processors.embedder import EmbeddingService, get_embedding_service
from brandforge.services.vectorization import VectorizationService
from brandforge.tasks.vectorization_tasks import dispatch_vectorization_job


async def get_embedder() -> EmbeddingService:
    """Shared, lazily initialized embedding model."""
    return await get_embedding_service()


def get_vectorization_service(
    session_factory: async_sessionmaker = Depends(get_session_factory),
) -> VectorizationService:
    """Job control service dispatching work to the Celery vectorization queue."""
    return VectorizationService(session_factory, dispatch_vectorization_job)
