"""
Pydantic schemas for the RAG and vectorization-admin APIs.

Request and response bodies use camelCase on the wire (the admin dashboard
and the generation flows are JavaScript clients); Python attributes stay
snake_case.
"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from brandforge.models.content import ContentType
from brandforge.models.job import JobScope, JobStatus


class CamelModel(BaseModel):
    """Base schema: camelCase aliases, populated by either name."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


# ========================================
# Vectorization Admin
# ========================================

class VectorizationRequest(CamelModel):
    """
    Admin control request.

    start needs `scope` (+ `userId` for single_user, `contentType` for
    content_type); pause/resume/cancel need `jobId`. Scope and content type
    stay strings here so that unknown values surface as a 400 from the
    service rather than a schema error.
    """

    action: Literal["start", "pause", "resume", "cancel"]
    scope: Optional[str] = None
    user_id: Optional[int] = None
    content_type: Optional[str] = None
    job_id: Optional[int] = None


class VectorizationJobResponse(CamelModel):
    """One vectorization job as shown on the admin dashboard."""

    id: int
    job_type: str
    scope: JobScope
    status: JobStatus
    total_items: int
    processed_items: int
    failed_items: int
    skipped_items: int
    progress: float
    started_at: datetime
    completed_at: Optional[datetime] = None
    heartbeat_at: Optional[datetime] = None
    created_by: str
    updated_by: Optional[str] = None
    cancelled_by: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    details: Dict[str, Any] = Field(default_factory=dict)
    error_message: Optional[str] = None
    run_attempt: int


class VectorizationJobListResponse(CamelModel):
    jobs: List[VectorizationJobResponse]


class VectorizationStartResponse(CamelModel):
    success: bool = True
    job_id: int
    message: str


class VectorizationControlResponse(CamelModel):
    success: bool = True
    message: str
    job: VectorizationJobResponse


class RAGSettingsResponse(CamelModel):
    """Effective retrieval and ranking configuration."""

    embedding_model: str
    embedding_dimension: int
    top_k: int
    candidate_pool_size: int
    similarity_threshold: float
    retrieval_timeout_seconds: float
    weights: Dict[str, float]
    recency_window_days: int
    content_type_boosts: Dict[str, float]
    min_confidence_for_insights: float
    min_confidence_for_augmentation: float
    max_augmentation_chars: int
    rollout_percentage: int
    rate_limit_enabled: bool
    rate_limit_per_hour: int
    rate_limit_per_day: int


# ========================================
# Retrieval
# ========================================

class ContextRequest(CamelModel):
    """Signals from a generation flow, plus an optional prompt to enhance."""

    brand_description: Optional[str] = Field(default=None, max_length=4000)
    brand_name: Optional[str] = Field(default=None, max_length=200)
    industry: Optional[str] = None
    platform: Optional[str] = None
    tone: Optional[str] = None
    topic: Optional[str] = Field(default=None, max_length=1000)
    language: Optional[str] = None
    content_type: ContentType = ContentType.SOCIAL_MEDIA
    content_types: Optional[List[ContentType]] = None
    min_performance: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    timeframe: Optional[Literal["recent", "30days", "90days", "all"]] = None
    base_prompt: Optional[str] = None
    include_insights: bool = True


class ScoredContentResponse(CamelModel):
    content_id: str
    content_type: ContentType
    source_collection: str
    source_doc_id: str
    text_content: str
    similarity: float
    recency_score: float
    final_score: float
    rank: int
    industry: Optional[str] = None
    style: Optional[str] = None
    platform: Optional[str] = None
    performance: float
    engagement: float
    tags: List[str] = Field(default_factory=list)
    updated_at: Optional[datetime] = None


class InsightResponse(CamelModel):
    type: str
    description: str
    confidence: float
    support: int
    values: List[str] = Field(default_factory=list)


class ContextResponse(CamelModel):
    confidence: float
    query_text: str
    relevant_content: List[ScoredContentResponse]
    insights: List[InsightResponse] = Field(default_factory=list)
    enhanced_prompt: Optional[str] = None


# ========================================
# Interactive Vectorization
# ========================================

class BrandProfileVectorizeRequest(CamelModel):
    """The saved brand profile, and the previous one when it was edited."""

    new_brand: Dict[str, Any]
    old_brand: Optional[Dict[str, Any]] = None


class BrandProfileVectorizeResponse(CamelModel):
    success: bool = True
    text_vectorized: bool
    content_id: str
    version: Optional[int] = None
