"""
Vectorization Job Runner

The worker side of the batch vectorization orchestrator. Runs inside a
Celery task, detached from any request.

Run Loop:
---------
1. Claim: pending → running (only the worker holding the job's current
   run_attempt may claim or advance it)
2. Repeat per top-level unit (one user's full content set):
   a. Re-read the job. Not running, or a newer attempt exists → stop.
      This is the only pause/cancel check point.
   b. Pick the next user after resume_cursor (ascending id).
      None left → complete.
   c. For each content type in fixed order, for each source document:
      normalize → skip if already indexed or empty → embed + store.
      Per-item EmbeddingError / StorageError / MalformedContentError are
      logged and counted as failed; they never abort the job.
   d. Persist counters, progress, cursor and heartbeat (compare-and-swap).
3. Exhaustion: completed, progress 100, total = processed + failed + skipped,
   completed_at, scope lock released.
4. Anything escaping the per-item boundary: failed, error_message,
   completed_at, scope lock released.
"""

import logging
import time
from dataclasses import dataclass
from datetime import timedelta
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from brandforge.core.config import settings
from brandforge.db.base import ensure_utc
from brandforge.models.content import CONTENT_TYPE_ORDER, ContentType, SourceDocument
from brandforge.models.job import JobScope, JobStatus, VectorizationJob
from brandforge.models.user import User
from brandforge.services.processors.embedder import EmbeddingService
from brandforge.services.rag.errors import (
    EmbeddingError,
    MalformedContentError,
    StorageError,
    ValidationError,
)
from brandforge.services.rag.normalizer import make_content_id, normalize_content
from brandforge.services.rag.vector_store import VectorStore
from brandforge.services.vectorization.jobs import release_scope_lock, update_job, utcnow
from brandforge.services.vectorization.service import Dispatcher

logger = logging.getLogger(__name__)


@dataclass
class UnitResult:
    """Counters for one top-level unit of work."""

    processed: int = 0
    failed: int = 0
    skipped: int = 0

    @property
    def handled(self) -> int:
        return self.processed + self.failed + self.skipped


class VectorizationRunner:
    """
    Executes one vectorization job attempt.

    Usage (from the Celery task):
    ------
    runner = VectorizationRunner(AsyncSessionLocal, await get_embedding_service())
    result = await runner.run(job_id=12, attempt=1)
    """

    def __init__(self, session_factory: async_sessionmaker, embedder: EmbeddingService):
        self.session_factory = session_factory
        self.embedder = embedder

    # ========================================
    # Entry Point
    # ========================================

    async def run(self, job_id: int, attempt: int) -> Dict:
        """
        Drive a job until it completes, fails, is paused/cancelled, or is
        taken over by a newer attempt.

        Returns:
            Summary dict for the task result backend
        """
        start_time = time.time()
        totals = UnitResult()
        units = 0

        job = await self._claim(job_id, attempt)
        if job is None:
            return {"success": False, "job_id": job_id, "error": "job not found"}
        if job.status != JobStatus.RUNNING or job.run_attempt != attempt:
            logger.info(
                f"Job {job_id} attempt {attempt} not runnable "
                f"(status={job.status}, current attempt={job.run_attempt})"
            )
            return {"success": True, "job_id": job_id, "status": str(job.status), "units": 0}

        logger.info(f"Running vectorization job {job_id} (scope={job.scope}, attempt={attempt})")

        try:
            while True:
                job = await self._reload(job_id)
                if job is None or job.status != JobStatus.RUNNING or job.run_attempt != attempt:
                    status = job.status if job else "missing"
                    logger.info(f"Job {job_id} attempt {attempt} stopping at check point (status={status})")
                    break

                user_id = await self._next_user_id(job)
                if user_id is None:
                    await self._complete(job_id, attempt)
                    break

                result = await self.process_user(user_id, self._content_types(job))
                totals.processed += result.processed
                totals.failed += result.failed
                totals.skipped += result.skipped
                units += 1

                await self._record_unit(job_id, attempt, user_id, result)

        except Exception as e:
            logger.error(f"Vectorization job {job_id} failed: {e}", exc_info=True)
            await self._fail(job_id, attempt, str(e))

        final = await self._reload(job_id)
        elapsed = time.time() - start_time
        logger.info(
            f"Job {job_id} attempt {attempt} finished {units} unit(s) in {elapsed:.2f}s: "
            f"processed={totals.processed}, failed={totals.failed}, skipped={totals.skipped}"
        )

        return {
            "success": final is not None and final.status != JobStatus.FAILED,
            "job_id": job_id,
            "status": str(final.status) if final else None,
            "units": units,
            "processed": totals.processed,
            "failed": totals.failed,
            "skipped": totals.skipped,
            "processing_time_seconds": round(elapsed, 2),
        }

    # ========================================
    # Unit of Work
    # ========================================

    async def process_user(self, user_id: int, content_types: Iterable[ContentType]) -> UnitResult:
        """
        Vectorize one user's content for the given types, in order.

        Raises only for failures outside the per-item boundary (e.g. the
        existing-id lookup), which abort the job.
        """
        result = UnitResult()

        async with self.session_factory() as db:
            store = VectorStore(db, self.embedder)
            existing = await store.existing_content_ids(user_id)

            for content_type in content_types:
                documents = await self._documents(db, user_id, content_type)

                for doc_id, data in documents:
                    content_id = make_content_id(content_type, doc_id)
                    if content_id in existing:
                        result.skipped += 1
                        continue

                    try:
                        normalized = normalize_content(content_type, doc_id, data)
                        await store.store_normalized(user_id, normalized, enforce_rate_limit=False)
                        existing.add(content_id)
                        result.processed += 1
                    except ValidationError:
                        result.skipped += 1
                    except (MalformedContentError, EmbeddingError, StorageError) as e:
                        result.failed += 1
                        logger.warning(
                            f"Failed to vectorize user={user_id} type={content_type} "
                            f"doc={doc_id}: {type(e).__name__}: {e}"
                        )

        logger.debug(
            f"User {user_id}: processed={result.processed}, "
            f"failed={result.failed}, skipped={result.skipped}"
        )
        return result

    async def _documents(
        self,
        db: AsyncSession,
        user_id: int,
        content_type: ContentType,
    ) -> List[Tuple[str, dict]]:
        """
        (doc_id, data) pairs in id order.

        Plain values rather than ORM rows: a failed store rolls the session
        back, which would expire loaded rows mid-iteration.
        """
        result = await db.execute(
            select(SourceDocument.doc_id, SourceDocument.data)
            .where(
                SourceDocument.user_id == user_id,
                SourceDocument.content_type == content_type,
            )
            .order_by(SourceDocument.id)
        )
        return [(doc_id, data) for doc_id, data in result.all()]

    def _content_types(self, job: VectorizationJob) -> List[ContentType]:
        if job.scope == JobScope.CONTENT_TYPE:
            return [ContentType(job.details["contentType"])]
        return list(CONTENT_TYPE_ORDER)

    async def _next_user_id(self, job: VectorizationJob) -> Optional[int]:
        cursor = job.resume_cursor

        if job.scope == JobScope.SINGLE_USER:
            target = int(job.details["userId"])
            if cursor is not None and cursor >= target:
                return None
            return target

        async with self.session_factory() as db:
            stmt = select(User.id).order_by(User.id).limit(1)
            if cursor is not None:
                stmt = stmt.where(User.id > cursor)
            result = await db.execute(stmt)
            return result.scalar_one_or_none()

    # ========================================
    # Job Row Writes
    # ========================================

    async def _reload(self, job_id: int) -> Optional[VectorizationJob]:
        async with self.session_factory() as db:
            return await db.get(VectorizationJob, job_id)

    async def _claim(self, job_id: int, attempt: int) -> Optional[VectorizationJob]:
        async def mutate(db: AsyncSession, job: VectorizationJob) -> bool:
            if job.status != JobStatus.PENDING or job.run_attempt != attempt:
                return False
            job.status = JobStatus.RUNNING
            job.heartbeat_at = utcnow()
            return True

        return await update_job(self.session_factory, job_id, mutate)

    async def _record_unit(self, job_id: int, attempt: int, user_id: int, result: UnitResult) -> None:
        """
        Merge one unit's counters into the job.

        Counters still merge when the job was paused (or taken over) while
        the unit ran, since that work is done. They are dropped once the job
        is terminal.
        """
        async def mutate(db: AsyncSession, job: VectorizationJob) -> bool:
            if job.is_terminal:
                logger.info(
                    f"Job {job_id} is {job.status}; discarding counters for user {user_id}"
                )
                return False
            job.processed_items += result.processed
            job.failed_items += result.failed
            job.skipped_items += result.skipped
            job.resume_cursor = max(job.resume_cursor or 0, user_id)
            job.recompute_progress()
            if job.run_attempt == attempt:
                job.heartbeat_at = utcnow()
            return True

        await update_job(self.session_factory, job_id, mutate)

    async def _complete(self, job_id: int, attempt: int) -> None:
        async def mutate(db: AsyncSession, job: VectorizationJob) -> bool:
            if job.status != JobStatus.RUNNING or job.run_attempt != attempt:
                return False
            job.status = JobStatus.COMPLETED
            job.total_items = job.processed_items + job.failed_items + job.skipped_items
            job.recompute_progress()
            job.completed_at = utcnow()
            job.heartbeat_at = job.completed_at
            await release_scope_lock(db, job)
            return True

        job = await update_job(self.session_factory, job_id, mutate)
        if job is not None and job.status == JobStatus.COMPLETED:
            logger.info(
                f"Job {job_id} completed: processed={job.processed_items}, "
                f"failed={job.failed_items}, skipped={job.skipped_items}"
            )

    async def _fail(self, job_id: int, attempt: int, message: str) -> None:
        async def mutate(db: AsyncSession, job: VectorizationJob) -> bool:
            if job.is_terminal or job.run_attempt != attempt:
                return False
            job.status = JobStatus.FAILED
            job.error_message = message[:2000]
            job.completed_at = utcnow()
            await release_scope_lock(db, job)
            return True

        await update_job(self.session_factory, job_id, mutate)


# ========================================
# Reconciliation
# ========================================

async def reconcile_jobs(
    session_factory: async_sessionmaker,
    dispatcher: Dispatcher,
    stale_after_seconds: Optional[int] = None,
) -> List[int]:
    """
    Re-dispatch jobs whose worker has gone away.

    - pending jobs older than the threshold (dispatch lost or queue purged)
    - running jobs whose last heartbeat is older than the threshold

    Each re-dispatch bumps run_attempt, so a zombie worker that wakes up
    later is fenced out at its next check point.

    Returns:
        Ids of re-dispatched jobs
    """
    stale_after = stale_after_seconds or settings.VECTORIZATION_STALE_JOB_SECONDS
    cutoff = utcnow() - timedelta(seconds=stale_after)

    async with session_factory() as db:
        result = await db.execute(
            select(VectorizationJob.id).where(
                or_(
                    VectorizationJob.status == JobStatus.PENDING,
                    VectorizationJob.status == JobStatus.RUNNING,
                )
            )
        )
        candidate_ids = list(result.scalars().all())

    bumped: set[int] = set()

    async def bump_if_stale(db: AsyncSession, job: VectorizationJob) -> bool:
        bumped.discard(job.id)
        if job.status not in (JobStatus.PENDING, JobStatus.RUNNING):
            return False
        last_seen = ensure_utc(job.heartbeat_at or job.started_at)
        if last_seen is not None and last_seen > cutoff:
            return False
        job.run_attempt += 1
        job.heartbeat_at = utcnow()
        bumped.add(job.id)
        return True

    redispatched: List[int] = []

    for job_id in candidate_ids:
        job = await update_job(session_factory, job_id, bump_if_stale)
        if job is None or job_id not in bumped:
            continue

        logger.warning(
            f"Re-dispatching stale job {job_id} (status={job.status}, attempt={job.run_attempt})"
        )
        dispatcher(job.id, job.run_attempt)
        redispatched.append(job.id)

    return redispatched
