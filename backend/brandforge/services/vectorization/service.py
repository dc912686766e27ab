"""
Vectorization Job Service

Control surface of the batch vectorization orchestrator: start jobs,
pause/resume/cancel them, list them. Work itself happens in
VectorizationRunner on a Celery worker; this service only writes the job
registry and dispatches the worker.

Transitions handled here:
-------------------------
- start:  (new) → pending, scope lock taken
- pause:  running → paused
- resume: paused → running, run_attempt + 1, worker re-dispatched
- cancel: pending | running | paused → failed, scope lock released

Anything else, and any action on a missing or terminal job, raises
JobStateError (JobNotFoundError for a missing job) and changes nothing.
"""

import enum
import logging
from typing import Callable, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from brandforge.models.content import ContentType
from brandforge.models.job import (
    VECTORIZATION_JOB_TYPE,
    JobScope,
    JobScopeLock,
    JobStatus,
    VectorizationJob,
)
from brandforge.models.user import User
from brandforge.services.rag.errors import (
    JobNotFoundError,
    JobStateError,
    JobTargetError,
    ScopeLockedError,
)
from brandforge.services.vectorization.jobs import (
    count_source_documents,
    release_scope_lock,
    scope_key,
    update_job,
    utcnow,
)

logger = logging.getLogger(__name__)

# dispatcher(job_id, run_attempt): hand the job to a worker
Dispatcher = Callable[[int, int], None]


class JobAction(str, enum.Enum):
    """Operator control actions."""

    PAUSE = "pause"
    RESUME = "resume"
    CANCEL = "cancel"

    def __str__(self) -> str:
        return self.value


class VectorizationService:
    """
    Start and control vectorization jobs.

    Usage:
    ------
    service = VectorizationService(AsyncSessionLocal, dispatch_vectorization_job)
    job = await service.start(JobScope.SINGLE_USER, created_by="ops@brand.io", user_id=7)
    await service.control(job.id, JobAction.PAUSE, operator="ops@brand.io")
    """

    def __init__(self, session_factory: async_sessionmaker, dispatcher: Dispatcher):
        self.session_factory = session_factory
        self.dispatcher = dispatcher

    # ========================================
    # Start
    # ========================================

    async def start(
        self,
        scope: JobScope,
        created_by: str,
        user_id: Optional[int] = None,
        content_type: Optional[ContentType] = None,
    ) -> VectorizationJob:
        """
        Create a pending job for `scope` and dispatch a worker for it.

        Returns as soon as the job row is committed; no caller waits for
        the run.

        Raises:
            JobTargetError: Unknown scope, missing/unknown user or content type
            ScopeLockedError: Another live job owns the same scope
        """
        try:
            scope = JobScope(scope)
        except ValueError as e:
            raise JobTargetError(f"Unknown scope: {scope}") from e

        async with self.session_factory() as db:
            details = await self._resolve_target(db, scope, user_id, content_type)
            target_type = ContentType(details["contentType"]) if "contentType" in details else None

            total = await count_source_documents(db, scope, user_id, target_type)
            key = scope_key(scope, user_id, target_type)

            job = VectorizationJob(
                job_type=VECTORIZATION_JOB_TYPE,
                scope=scope,
                status=JobStatus.PENDING,
                total_items=total,
                processed_items=0,
                failed_items=0,
                skipped_items=0,
                progress=0.0,
                started_at=utcnow(),
                created_by=created_by,
                details=details,
                run_attempt=1,
            )
            db.add(job)

            try:
                await db.flush()
                db.add(JobScopeLock(scope_key=key, job_id=job.id))
                await db.commit()
            except IntegrityError as e:
                await db.rollback()
                owner = await self._lock_owner(db, key)
                raise ScopeLockedError(
                    f"Scope {key} is already owned by job {owner}",
                    scope_key=key,
                    job_id=owner,
                ) from e

        logger.info(
            f"Created vectorization job {job.id}: scope={scope}, key={key}, "
            f"estimated_items={total}, created_by={created_by}"
        )

        self._dispatch(job)
        return job

    async def _resolve_target(
        self,
        db: AsyncSession,
        scope: JobScope,
        user_id: Optional[int],
        content_type: Optional[ContentType],
    ) -> dict:
        if scope == JobScope.SINGLE_USER:
            if user_id is None:
                raise JobTargetError("single_user scope requires userId")
            user = await db.get(User, user_id)
            if user is None:
                raise JobTargetError(f"User {user_id} not found")
            return {
                "userId": user.id,
                "userEmail": user.email,
                "brandName": user.brand_name,
            }

        if scope == JobScope.CONTENT_TYPE:
            if content_type is None:
                raise JobTargetError("content_type scope requires contentType")
            try:
                return {"contentType": ContentType(content_type).value}
            except ValueError as e:
                raise JobTargetError(f"Unknown content type: {content_type}") from e

        return {}

    async def _lock_owner(self, db: AsyncSession, key: str) -> Optional[int]:
        result = await db.execute(
            select(JobScopeLock.job_id).where(JobScopeLock.scope_key == key)
        )
        return result.scalar_one_or_none()

    def _dispatch(self, job: VectorizationJob) -> None:
        # A job left pending by a failed dispatch is picked up by reconciliation
        try:
            self.dispatcher(job.id, job.run_attempt)
        except Exception as e:
            logger.error(
                f"Failed to dispatch vectorization job {job.id} (attempt {job.run_attempt}): {e}",
                exc_info=True,
            )

    # ========================================
    # Control
    # ========================================

    async def control(
        self,
        job_id: int,
        action: JobAction,
        operator: str,
    ) -> VectorizationJob:
        """
        Pause, resume or cancel a job.

        Raises:
            JobNotFoundError: No such job
            JobStateError: Job is terminal or the transition is not allowed
        """
        try:
            action = JobAction(action)
        except ValueError as e:
            raise JobStateError(f"Unknown action: {action}") from e

        async def mutate(db: AsyncSession, job: VectorizationJob) -> bool:
            if job.is_terminal:
                raise JobStateError(f"Job {job.id} is already {job.status}")

            if action == JobAction.PAUSE:
                if job.status != JobStatus.RUNNING:
                    raise JobStateError(f"Cannot pause job {job.id} in state {job.status}")
                job.status = JobStatus.PAUSED

            elif action == JobAction.RESUME:
                if job.status != JobStatus.PAUSED:
                    raise JobStateError(f"Cannot resume job {job.id} in state {job.status}")
                job.status = JobStatus.RUNNING
                job.run_attempt += 1

            elif action == JobAction.CANCEL:
                now = utcnow()
                job.status = JobStatus.FAILED
                job.cancelled_by = operator
                job.cancelled_at = now
                job.completed_at = now
                job.error_message = f"Cancelled by {operator}"
                await release_scope_lock(db, job)

            job.updated_by = operator
            return True

        job = await update_job(self.session_factory, job_id, mutate)
        if job is None:
            raise JobNotFoundError(f"Job {job_id} not found")

        logger.info(f"Job {job_id}: {action} by {operator} → {job.status}")

        if action == JobAction.RESUME:
            self._dispatch(job)

        return job

    # ========================================
    # Queries
    # ========================================

    async def get_job(self, job_id: int) -> VectorizationJob:
        async with self.session_factory() as db:
            job = await db.get(VectorizationJob, job_id)
        if job is None:
            raise JobNotFoundError(f"Job {job_id} not found")
        return job

    async def list_jobs(self, limit: int = 50) -> List[VectorizationJob]:
        """Vectorization jobs, newest first."""
        async with self.session_factory() as db:
            result = await db.execute(
                select(VectorizationJob)
                .where(VectorizationJob.job_type == VECTORIZATION_JOB_TYPE)
                .order_by(VectorizationJob.started_at.desc(), VectorizationJob.id.desc())
                .limit(limit)
            )
            return list(result.scalars().all())
