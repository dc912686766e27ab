"""
Admin API Routes

Operator surface of the batch vectorization orchestrator:
- List vectorization jobs
- Start a job (all_users / single_user / content_type)
- Pause, resume or cancel a job
- Inspect the effective RAG configuration

All endpoints require an admin bearer token.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, status

from brandforge.api.deps import get_vectorization_service
from brandforge.core.auth import require_admin
from brandforge.core.config import settings
from brandforge.models.job import JobScope
from brandforge.models.user import User
from brandforge.schemas.rag import (
    RAGSettingsResponse,
    VectorizationControlResponse,
    VectorizationJobListResponse,
    VectorizationJobResponse,
    VectorizationRequest,
    VectorizationStartResponse,
)
from brandforge.services.rag.errors import (
    JobNotFoundError,
    JobStateError,
    JobTargetError,
    ScopeLockedError,
)
from brandforge.services.vectorization import JobAction, VectorizationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin/rag", tags=["admin"])

ACTION_RESULTS = {
    JobAction.PAUSE: "paused",
    JobAction.RESUME: "resumed",
    JobAction.CANCEL: "cancelled",
}


# ========================================
# Vectorization Jobs
# ========================================

@router.get("/vectorization", response_model=VectorizationJobListResponse)
async def list_vectorization_jobs(
    limit: int = 50,
    admin: User = Depends(require_admin),
    service: VectorizationService = Depends(get_vectorization_service),
):
    """
    List vectorization jobs, newest first.

    Args:
        limit: Maximum number of jobs (1-200)
    """
    limit = max(1, min(limit, 200))
    jobs = await service.list_jobs(limit=limit)
    return VectorizationJobListResponse(
        jobs=[VectorizationJobResponse.model_validate(job) for job in jobs]
    )


@router.post(
    "/vectorization",
    response_model=VectorizationStartResponse | VectorizationControlResponse,
)
async def control_vectorization(
    request: VectorizationRequest,
    admin: User = Depends(require_admin),
    service: VectorizationService = Depends(get_vectorization_service),
):
    """
    Start a vectorization job, or pause/resume/cancel an existing one.

    Start returns as soon as the job is recorded; the work runs on a
    Celery worker.

    Raises:
        HTTPException 400: Missing/unknown scope, user or content type
        HTTPException 404: jobId does not exist
        HTTPException 409: Scope already locked, or transition not allowed
    """
    if request.action == "start":
        return await _start(request, admin, service)
    return await _control(request, admin, service)


async def _start(
    request: VectorizationRequest,
    admin: User,
    service: VectorizationService,
) -> VectorizationStartResponse:
    if not request.scope:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="scope is required to start a job",
        )

    try:
        job = await service.start(
            scope=request.scope,
            created_by=admin.email,
            user_id=request.user_id,
            content_type=request.content_type,
        )
    except JobTargetError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except ScopeLockedError as e:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={
                "message": str(e),
                "scopeKey": e.scope_key,
                "jobId": e.job_id,
            },
        )

    logger.info(f"Admin {admin.email} started vectorization job {job.id} ({job.scope})")

    return VectorizationStartResponse(
        job_id=job.id,
        message=f"Vectorization job started for scope {JobScope(job.scope).value}",
    )


async def _control(
    request: VectorizationRequest,
    admin: User,
    service: VectorizationService,
) -> VectorizationControlResponse:
    if request.job_id is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"jobId is required to {request.action} a job",
        )

    action = JobAction(request.action)

    try:
        job = await service.control(request.job_id, action, operator=admin.email)
    except JobNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except JobStateError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    return VectorizationControlResponse(
        message=f"Job {job.id} {ACTION_RESULTS[action]}",
        job=VectorizationJobResponse.model_validate(job),
    )


# ========================================
# Settings
# ========================================

@router.get("/settings", response_model=RAGSettingsResponse)
async def get_rag_settings(admin: User = Depends(require_admin)):
    """Effective retrieval, ranking and rate-limit configuration."""
    return RAGSettingsResponse(
        embedding_model=settings.EMBEDDING_MODEL,
        embedding_dimension=settings.EMBEDDING_DIMENSION,
        top_k=settings.RAG_TOP_K,
        candidate_pool_size=settings.RAG_CANDIDATE_POOL_SIZE,
        similarity_threshold=settings.RAG_SIMILARITY_THRESHOLD,
        retrieval_timeout_seconds=settings.RAG_RETRIEVAL_TIMEOUT_SECONDS,
        weights={
            "similarity": settings.RAG_WEIGHT_SIMILARITY,
            "recency": settings.RAG_WEIGHT_RECENCY,
            "performance": settings.RAG_WEIGHT_PERFORMANCE,
        },
        recency_window_days=settings.RAG_RECENCY_WINDOW_DAYS,
        content_type_boosts=settings.RAG_CONTENT_TYPE_BOOSTS,
        min_confidence_for_insights=settings.RAG_MIN_CONFIDENCE_FOR_INSIGHTS,
        min_confidence_for_augmentation=settings.RAG_MIN_CONFIDENCE_FOR_AUGMENTATION,
        max_augmentation_chars=settings.RAG_MAX_AUGMENTATION_CHARS,
        rollout_percentage=settings.RAG_ROLLOUT_PERCENTAGE,
        rate_limit_enabled=settings.RAG_RATE_LIMIT_ENABLED,
        rate_limit_per_hour=settings.RAG_RATE_LIMIT_PER_HOUR,
        rate_limit_per_day=settings.RAG_RATE_LIMIT_PER_DAY,
    )
