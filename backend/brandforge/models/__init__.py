"""
Database Models

Import models from this module to ensure they're registered with SQLAlchemy:

    from brandforge.models import User, ContentVector, VectorizationJob

This ensures that:
1. Alembic can detect all models for migrations
2. Relationships resolve correctly
3. Base.metadata.create_all sees every table
"""

from brandforge.models.content import (
    CONTENT_TYPE_ORDER,
    ContentType,
    ContentVector,
    SourceDocument,
)
from brandforge.models.job import (
    TERMINAL_STATUSES,
    VECTORIZATION_JOB_TYPE,
    JobScope,
    JobScopeLock,
    JobStatus,
    VectorizationJob,
)
from brandforge.models.user import User

__all__ = [
    # User models
    "User",
    # Content models
    "SourceDocument",
    "ContentVector",
    # Job models
    "VectorizationJob",
    "JobScopeLock",
    # Enums
    "ContentType",
    "JobScope",
    "JobStatus",
    # Constants
    "CONTENT_TYPE_ORDER",
    "TERMINAL_STATUSES",
    "VECTORIZATION_JOB_TYPE",
]
