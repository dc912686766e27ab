"""
Celery tasks for background processing.
"""

from brandforge.tasks.vectorization_tasks import (
    dispatch_vectorization_job,
    reconcile_vectorization_jobs,
    run_vectorization_job,
)

__all__ = [
    "dispatch_vectorization_job",
    "reconcile_vectorization_jobs",
    "run_vectorization_job",
]
