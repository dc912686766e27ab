"""
Exceptions raised by the RAG engine and the vectorization orchestrator.

Batch jobs count EmbeddingError, StorageError and MalformedContentError per
item and keep going; ValidationError marks an item as skipped. Interactive
retrieval swallows all of them into an empty context. The JobStateError
family is reported to the admin caller.
"""


class RAGError(Exception):
    """Base exception for RAG engine errors."""
    pass


class EmbeddingError(RAGError):
    """Raised when the embedding provider cannot produce a usable vector."""
    pass


class StorageError(RAGError):
    """Raised when reading or writing vectors fails."""
    pass


class ValidationError(RAGError):
    """Raised when normalized content is empty (item is skipped, not failed)."""
    pass


class MalformedContentError(RAGError):
    """Raised when a raw content record does not match its type's shape."""
    pass


class RateLimitExceededError(RAGError):
    """Raised when a user exceeds the interactive embedding rate limit."""

    def __init__(self, message: str, retry_after_seconds: int):
        super().__init__(message)
        self.retry_after_seconds = retry_after_seconds


class JobStateError(RAGError):
    """Raised when a control action is invalid for the job's current state."""
    pass


class JobNotFoundError(JobStateError):
    """Raised when a control action targets a job that does not exist."""
    pass


class JobTargetError(RAGError):
    """Raised when a job's scope/target combination is invalid (unknown user, missing type)."""
    pass


class ScopeLockedError(JobStateError):
    """Raised when another live job already owns the requested scope."""

    def __init__(self, message: str, scope_key: str, job_id: int | None = None):
        super().__init__(message)
        self.scope_key = scope_key
        self.job_id = job_id
