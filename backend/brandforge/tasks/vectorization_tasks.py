"""
Celery tasks for batch content vectorization.

This module contains background tasks for:
- Running one vectorization job attempt (started or resumed by an admin)
- Reconciling jobs whose worker disappeared (periodic, Celery Beat)
"""

import asyncio
import concurrent.futures
import logging

from celery import Task

from brandforge.core.config import settings
from brandforge.db.session import AsyncSessionLocal
from brandforge.services.processors.embedder import get_embedding_service
from brandforge.services.vectorization.runner import VectorizationRunner, reconcile_jobs
from brandforge.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


# ========================================
# Async Helper
# ========================================

def run_async(coro):
    """
    Run async coroutine, handling both event loop and no event loop scenarios.

    - Celery worker (no running loop): asyncio.run()
    - Tests (pytest-asyncio loop already running): run in a worker thread
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)

    with concurrent.futures.ThreadPoolExecutor() as executor:
        future = executor.submit(asyncio.run, coro)
        return future.result()


# ========================================
# Dispatch
# ========================================

def dispatch_vectorization_job(job_id: int, attempt: int) -> None:
    """Queue one attempt of a vectorization job on the vectorization queue."""
    run_vectorization_job.apply_async(args=[job_id, attempt], queue="vectorization")
    logger.info(f"Dispatched vectorization job {job_id} (attempt {attempt})")


# ========================================
# Base Task Class
# ========================================

class VectorizationTask(Task):
    """
    Base task for vectorization work.

    No autoretry: a failed run is recorded on the job row, and stale jobs
    are re-dispatched by reconciliation with a new attempt number.
    """

    acks_late = True
    reject_on_worker_lost = False


# ========================================
# Tasks
# ========================================

@celery_app.task(
    base=VectorizationTask,
    name='vectorization.run_job',
    bind=True,
)
def run_vectorization_job(self, job_id: int, attempt: int) -> dict:
    """
    Run one attempt of a vectorization job.

    Args:
        job_id: VectorizationJob id
        attempt: run_attempt this worker was dispatched with; the run stops
            as soon as the job row carries a different attempt

    Returns:
        Dictionary with run results:
        {
            'success': bool,
            'job_id': int,
            'status': str,
            'units': int,
            'processed': int,
            'failed': int,
            'skipped': int,
            'processing_time_seconds': float
        }
    """
    async def _run():
        embedder = await get_embedding_service()
        runner = VectorizationRunner(AsyncSessionLocal, embedder)
        return await runner.run(job_id, attempt)

    logger.info(f"Worker picked up vectorization job {job_id} (attempt {attempt})")
    return run_async(_run())


@celery_app.task(
    base=VectorizationTask,
    name='vectorization.reconcile_jobs',
    bind=True,
)
def reconcile_vectorization_jobs(self) -> dict:
    """
    Re-dispatch pending/running jobs with no worker heartbeat for
    VECTORIZATION_STALE_JOB_SECONDS.

    Returns:
        {'success': True, 'redispatched': [job ids]}
    """
    async def _reconcile():
        return await reconcile_jobs(
            AsyncSessionLocal,
            dispatch_vectorization_job,
            stale_after_seconds=settings.VECTORIZATION_STALE_JOB_SECONDS,
        )

    redispatched = run_async(_reconcile())
    if redispatched:
        logger.warning(f"Reconciliation re-dispatched jobs: {redispatched}")
    return {'success': True, 'redispatched': redispatched}
