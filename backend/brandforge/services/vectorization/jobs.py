"""
Shared helpers for vectorization job persistence.

Every job-row mutation goes through `update_job`: load the row in a fresh
session, apply a mutation, commit. The commit is a compare-and-swap on
`version_id`; losing the race raises StaleDataError and the mutation is
re-applied to the freshly loaded row.
"""

import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from brandforge.core.config import settings
from brandforge.models.content import ContentType, SourceDocument
from brandforge.models.job import JobScope, JobScopeLock, VectorizationJob

logger = logging.getLogger(__name__)

# Returns False when the mutation decided not to change anything
JobMutation = Callable[[AsyncSession, VectorizationJob], Awaitable[bool]]


class JobContentionError(RuntimeError):
    """Raised when a job row keeps changing under us past the retry budget."""
    pass


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def scope_key(
    scope: JobScope,
    user_id: Optional[int] = None,
    content_type: Optional[ContentType] = None,
) -> str:
    """Canonical lock key for a job scope."""
    scope = JobScope(scope)
    if scope == JobScope.SINGLE_USER:
        return f"single_user:{user_id}"
    if scope == JobScope.CONTENT_TYPE:
        return f"content_type:{ContentType(content_type).value}"
    return "all_users"


def job_scope_key(job: VectorizationJob) -> str:
    details = job.details or {}
    return scope_key(job.scope, details.get("userId"), details.get("contentType"))


async def release_scope_lock(db: AsyncSession, job: VectorizationJob) -> None:
    """Delete the job's scope lock inside the caller's transaction."""
    await db.execute(delete(JobScopeLock).where(JobScopeLock.job_id == job.id))


async def count_source_documents(
    db: AsyncSession,
    scope: JobScope,
    user_id: Optional[int] = None,
    content_type: Optional[ContentType] = None,
) -> int:
    """Item estimate for a scope: exact for one user, a snapshot otherwise."""
    stmt = select(func.count(SourceDocument.id))
    if JobScope(scope) == JobScope.SINGLE_USER:
        stmt = stmt.where(SourceDocument.user_id == user_id)
    elif JobScope(scope) == JobScope.CONTENT_TYPE:
        stmt = stmt.where(SourceDocument.content_type == ContentType(content_type))
    result = await db.execute(stmt)
    return result.scalar() or 0


async def update_job(
    session_factory: async_sessionmaker,
    job_id: int,
    mutate: JobMutation,
    retries: Optional[int] = None,
) -> Optional[VectorizationJob]:
    """
    Apply `mutate` to a job row with optimistic concurrency.

    Args:
        session_factory: Session factory (one short session per attempt)
        job_id: Job to update
        mutate: Async callable (db, job) -> bool; may raise to abort
        retries: Attempts before giving up (VECTORIZATION_CAS_RETRIES)

    Returns:
        The job as committed (or as read, when mutate returned False), or
        None if the job does not exist.

    Raises:
        JobContentionError: Every attempt lost the compare-and-swap
    """
    retries = retries or settings.VECTORIZATION_CAS_RETRIES

    for attempt in range(1, retries + 1):
        async with session_factory() as db:
            job = await db.get(VectorizationJob, job_id)
            if job is None:
                return None

            changed = await mutate(db, job)
            if not changed:
                # Nothing was flushed; detach with its loaded state intact.
                # A rollback here would expire the row.
                db.expunge(job)
                return job

            try:
                await db.commit()
                return job
            except StaleDataError:
                await db.rollback()
                logger.info(f"Job {job_id} changed concurrently, retrying update ({attempt}/{retries})")

    raise JobContentionError(f"Could not update job {job_id} after {retries} attempts")
