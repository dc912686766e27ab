"""
Pydantic schemas for request/response validation.

Import all schemas here for easy access.
"""

from brandforge.schemas.rag import (
    BrandProfileVectorizeRequest,
    BrandProfileVectorizeResponse,
    ContextRequest,
    ContextResponse,
    InsightResponse,
    RAGSettingsResponse,
    ScoredContentResponse,
    VectorizationControlResponse,
    VectorizationJobListResponse,
    VectorizationJobResponse,
    VectorizationRequest,
    VectorizationStartResponse,
)

__all__ = [
    # Vectorization admin
    "VectorizationRequest",
    "VectorizationJobResponse",
    "VectorizationJobListResponse",
    "VectorizationStartResponse",
    "VectorizationControlResponse",
    "RAGSettingsResponse",
    # Retrieval
    "ContextRequest",
    "ContextResponse",
    "ScoredContentResponse",
    "InsightResponse",
    # Interactive vectorization
    "BrandProfileVectorizeRequest",
    "BrandProfileVectorizeResponse",
]
