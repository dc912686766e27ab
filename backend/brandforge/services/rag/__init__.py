"""
RAG (Retrieval-Augmented Generation) Services

This package contains the brand-content RAG engine:
- Content normalization (raw records → canonical text + metadata)
- Vector storage and similarity queries
- Adaptive retrieval (re-ranking, confidence, insights)
- Prompt enhancement
"""

from brandforge.services.rag.normalizer import (
    NormalizedContent,
    normalize_content,
    parse_record,
    should_revectorize,
)
from brandforge.services.rag.vector_store import QueryFilters, ScoredContent, VectorStore
from brandforge.services.rag.retriever import (
    AdaptiveContextRetriever,
    RAGInsight,
    RequestSignals,
    RetrievalContext,
    create_rag_insights_from_context,
    get_adaptive_rag_context,
    should_use_rag_for_user,
)
from brandforge.services.rag.prompt_enhancer import enhance_prompt, enhance_social_media_prompt

__all__ = [
    "NormalizedContent",
    "normalize_content",
    "parse_record",
    "should_revectorize",
    "QueryFilters",
    "ScoredContent",
    "VectorStore",
    "AdaptiveContextRetriever",
    "RAGInsight",
    "RequestSignals",
    "RetrievalContext",
    "create_rag_insights_from_context",
    "get_adaptive_rag_context",
    "should_use_rag_for_user",
    "enhance_prompt",
    "enhance_social_media_prompt",
]
