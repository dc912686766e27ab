"""
Batch Vectorization Job Orchestrator

- service: start / pause / resume / cancel / list (admin control surface)
- runner: the worker-side run loop and stale-job reconciliation
- jobs: job-row compare-and-swap updates and scope lock helpers
"""

from brandforge.services.vectorization.runner import VectorizationRunner, reconcile_jobs
from brandforge.services.vectorization.service import JobAction, VectorizationService

__all__ = [
    "JobAction",
    "VectorizationService",
    "VectorizationRunner",
    "reconcile_jobs",
]
