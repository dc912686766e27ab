"""
Adaptive Context Retriever

Given a generation request, finds the user's most relevant prior content,
re-ranks it, and scores how much the result can be trusted.

Pipeline:
---------
1. Query building
   - Brand description, platform, tone, industry, topic and the content
     type label are joined into one query text
2. Candidate retrieval
   - VectorStore.query over a candidate pool larger than top_k, narrowed by
     the signals' content types, minimum performance and timeframe
3. Re-ranking
   - final = (w_sim * similarity + w_rec * recency + w_perf * performance)
             * content type boost
   - recency decays linearly to 0 over RAG_RECENCY_WINDOW_DAYS
   - brand profiles carry a boost > 1: they are the user's own declared
     voice and are rarely wrong
4. Confidence
   - mean_similarity * (c * coverage + (1 - c) * consistency), clamped to [0, 1]
   - coverage = min(1, n / top_k), consistency = 1 - std(similarities)
   - no candidates → 0

`get_adaptive_rag_context` is the entry point for generation flows. It never
raises: any error, or running past the latency budget, yields the empty
context so that generation proceeds unaugmented.
Users outside the RAG_ROLLOUT_PERCENTAGE group get the empty context too.
"""

import asyncio
import hashlib
import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import numpy as np
from sqlalchemy.ext.asyncio import AsyncSession

from brandforge.core.config import settings
from brandforge.models.content import ContentType
from brandforge.services.processors.embedder import EmbeddingService
from brandforge.services.rag.vector_store import QueryFilters, ScoredContent, VectorStore

logger = logging.getLogger(__name__)

CONTENT_TYPE_LABELS = {
    ContentType.BRAND_PROFILE: "brand profile",
    ContentType.SOCIAL_MEDIA: "social media",
    ContentType.BLOG_POST: "blog content",
    ContentType.SAVED_IMAGE: "image generation",
    ContentType.AD_CAMPAIGN: "advertising campaign",
}


@dataclass
class RequestSignals:
    """What the generation flow knows about the content it is about to create."""

    brand_description: Optional[str] = None
    brand_name: Optional[str] = None
    industry: Optional[str] = None
    platform: Optional[str] = None
    tone: Optional[str] = None
    topic: Optional[str] = None
    language: Optional[str] = None
    content_type: Optional[ContentType] = None
    # Restrict candidates to these types (None = all types)
    content_types: Optional[List[ContentType]] = None
    min_performance: Optional[float] = None
    # "recent" | "30days" | "90days" | "all"
    timeframe: Optional[str] = None

    def to_filters(self) -> Optional[QueryFilters]:
        if not (self.content_types or self.min_performance is not None or self.timeframe):
            return None
        return QueryFilters(
            content_types=list(self.content_types) if self.content_types else None,
            min_performance=self.min_performance,
            timeframe=self.timeframe,
        )

    def to_query_text(self) -> str:
        parts = [
            self.brand_name,
            self.brand_description,
            self.industry,
            self.platform,
            self.tone,
            self.topic,
        ]
        if self.content_type is not None:
            parts.append(CONTENT_TYPE_LABELS[ContentType(self.content_type)])
        return " ".join(p.strip() for p in parts if p and p.strip())


@dataclass
class RetrievalContext:
    """Ephemeral retrieval result; never persisted."""

    relevant_content: List[ScoredContent] = field(default_factory=list)
    confidence: float = 0.0
    query_text: str = ""

    @classmethod
    def empty(cls, query_text: str = "") -> "RetrievalContext":
        return cls(relevant_content=[], confidence=0.0, query_text=query_text)

    @property
    def is_empty(self) -> bool:
        return not self.relevant_content

    def to_dict(self) -> Dict[str, Any]:
        return {
            "relevant_content": [item.to_dict() for item in self.relevant_content],
            "confidence": round(self.confidence, 4),
            "query_text": self.query_text,
        }


class AdaptiveContextRetriever:
    """
    Retrieval, re-ranking and confidence scoring over one user's vectors.

    Usage:
    ------
    retriever = AdaptiveContextRetriever(VectorStore(db, embedder))
    context = await retriever.retrieve(user_id=7, signals=RequestSignals(platform="instagram"))
    """

    def __init__(
        self,
        store: VectorStore,
        top_k: Optional[int] = None,
        candidate_pool_size: Optional[int] = None,
        similarity_weight: Optional[float] = None,
        recency_weight: Optional[float] = None,
        performance_weight: Optional[float] = None,
        type_boosts: Optional[Dict[str, float]] = None,
        recency_window_days: Optional[int] = None,
        min_similarity: Optional[float] = None,
        coverage_weight: Optional[float] = None,
    ):
        self.store = store
        self.top_k = top_k or settings.RAG_TOP_K
        self.candidate_pool_size = max(
            candidate_pool_size or settings.RAG_CANDIDATE_POOL_SIZE,
            self.top_k,
        )
        self.recency_window_days = recency_window_days or settings.RAG_RECENCY_WINDOW_DAYS
        self.min_similarity = (
            settings.RAG_SIMILARITY_THRESHOLD if min_similarity is None else min_similarity
        )
        self.coverage_weight = (
            settings.RAG_CONFIDENCE_COVERAGE_WEIGHT if coverage_weight is None else coverage_weight
        )
        self.type_boosts = dict(settings.RAG_CONTENT_TYPE_BOOSTS)
        if type_boosts:
            self.type_boosts.update(type_boosts)

        w_sim = settings.RAG_WEIGHT_SIMILARITY if similarity_weight is None else similarity_weight
        w_rec = settings.RAG_WEIGHT_RECENCY if recency_weight is None else recency_weight
        w_perf = settings.RAG_WEIGHT_PERFORMANCE if performance_weight is None else performance_weight

        total_weight = w_sim + w_rec + w_perf
        if total_weight <= 0:
            raise ValueError("Ranking weights must not all be zero")

        if abs(total_weight - 1.0) > 0.01:
            logger.warning(
                f"Weights sum to {total_weight}, not 1.0. "
                f"Normalizing: similarity={w_sim/total_weight:.2f}, "
                f"recency={w_rec/total_weight:.2f}, "
                f"performance={w_perf/total_weight:.2f}"
            )
        self.similarity_weight = w_sim / total_weight
        self.recency_weight = w_rec / total_weight
        self.performance_weight = w_perf / total_weight

    async def retrieve(self, user_id: int, signals: RequestSignals) -> RetrievalContext:
        """
        Build the retrieval context for one generation request.

        Raises whatever the vector store raises; callers wanting fail-open
        behaviour use get_adaptive_rag_context.
        """
        query_text = signals.to_query_text()
        if not query_text:
            logger.debug(f"No request signals for user {user_id}, skipping retrieval")
            return RetrievalContext.empty()

        candidates = await self.store.query(
            user_id=user_id,
            query_text=query_text,
            k=self.candidate_pool_size,
            filters=signals.to_filters(),
            min_similarity=self.min_similarity,
        )

        ranked = self.rerank(candidates)[: self.top_k]
        confidence = self.compute_confidence(ranked)

        logger.info(
            f"Adaptive retrieval: user_id={user_id}, candidates={len(candidates)}, "
            f"returned={len(ranked)}, confidence={confidence:.3f}"
        )

        return RetrievalContext(
            relevant_content=ranked,
            confidence=confidence,
            query_text=query_text,
        )

    def recency_score(self, updated_at: Optional[datetime], now: datetime) -> float:
        """Linear decay: 1.0 for content written now, 0.0 at the window edge."""
        if updated_at is None:
            return 0.0
        age_days = max(0.0, (now - updated_at).total_seconds() / 86400)
        return max(0.0, 1.0 - age_days / self.recency_window_days)

    def rerank(
        self,
        candidates: List[ScoredContent],
        now: Optional[datetime] = None,
    ) -> List[ScoredContent]:
        """Score and order candidates; assigns final_score and rank in place."""
        now = now or datetime.now(timezone.utc)

        for item in candidates:
            item.recency_score = self.recency_score(item.updated_at, now)
            base = (
                self.similarity_weight * max(0.0, item.similarity)
                + self.recency_weight * item.recency_score
                + self.performance_weight * item.performance
            )
            boost = self.type_boosts.get(ContentType(item.content_type).value, 1.0)
            item.final_score = base * boost

        ordered = sorted(
            candidates,
            key=lambda s: (s.final_score, s.similarity),
            reverse=True,
        )
        for i, item in enumerate(ordered, 1):
            item.rank = i
        return ordered

    def compute_confidence(self, items: List[ScoredContent]) -> float:
        """
        Confidence in [0, 1] from candidate count, mean similarity and dispersion.

        Returns 0.0 for an empty list.
        """
        if not items:
            return 0.0

        sims = np.clip(np.array([item.similarity for item in items], dtype=float), 0.0, 1.0)
        mean_similarity = float(sims.mean())
        coverage = min(1.0, len(items) / self.top_k)
        consistency = max(0.0, 1.0 - float(sims.std()))

        confidence = mean_similarity * (
            self.coverage_weight * coverage + (1 - self.coverage_weight) * consistency
        )
        return float(min(1.0, max(0.0, confidence)))


def rollout_bucket(user_id: int) -> int:
    """Stable 0-99 bucket for a user, the same in every process."""
    digest = hashlib.md5(str(user_id).encode("utf-8")).hexdigest()
    return int(digest, 16) % 100


def should_use_rag_for_user(user_id: int, percentage: Optional[int] = None) -> bool:
    """
    Whether a user is in the augmented group of the rollout.

    RAG_ROLLOUT_PERCENTAGE (or `percentage`) of users, chosen by
    rollout_bucket, get retrieval; the rest generate unaugmented and serve
    as the baseline. 100 enables everyone, 0 no one.
    """
    percentage = settings.RAG_ROLLOUT_PERCENTAGE if percentage is None else percentage
    return rollout_bucket(user_id) < percentage


async def get_adaptive_rag_context(
    db: AsyncSession,
    embedder: EmbeddingService,
    user_id: int,
    signals: RequestSignals,
    timeout_seconds: Optional[float] = None,
) -> RetrievalContext:
    """
    Fail-open retrieval for generation flows.

    Returns the empty context (no content, confidence 0) on any error, when
    retrieval exceeds `timeout_seconds` (RAG_RETRIEVAL_TIMEOUT_SECONDS by
    default), or when the user is outside the RAG_ROLLOUT_PERCENTAGE group.
    """
    timeout = settings.RAG_RETRIEVAL_TIMEOUT_SECONDS if timeout_seconds is None else timeout_seconds
    query_text = signals.to_query_text()

    if not should_use_rag_for_user(user_id):
        logger.debug(f"User {user_id} is in the rollout baseline group, skipping retrieval")
        return RetrievalContext.empty(query_text)

    try:
        retriever = AdaptiveContextRetriever(VectorStore(db, embedder))
        return await asyncio.wait_for(retriever.retrieve(user_id, signals), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning(f"Adaptive retrieval timed out after {timeout}s for user {user_id}")
    except Exception as e:
        logger.warning(
            f"Adaptive retrieval failed for user {user_id}, continuing without context: {e}",
            exc_info=True,
        )
    return RetrievalContext.empty(query_text)


# ========================================
# Insights
# ========================================

@dataclass
class RAGInsight:
    """One recognised pattern in the retrieved set."""

    type: str
    description: str
    confidence: float
    support: int
    values: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "description": self.description,
            "confidence": round(self.confidence, 4),
            "support": self.support,
            "values": self.values,
            "is_active": True,
        }


def _dominant(values: List[str], min_support: int) -> Optional[tuple[str, int]]:
    counts = Counter(v.strip().lower() for v in values if v and v.strip())
    if not counts:
        return None
    value, count = counts.most_common(1)[0]
    if count < min_support:
        return None
    return value, count


def create_rag_insights_from_context(
    context: Optional[RetrievalContext],
    min_confidence: Optional[float] = None,
    min_support: Optional[int] = None,
) -> Optional[List[RAGInsight]]:
    """
    Summarize recognisable patterns in a retrieval context.

    Recognised patterns:
    - brand_patterns: a brand profile is among the results
    - voice_patterns: one tone dominates the user's posts/articles/campaigns
    - styles: one visual style dominates the user's saved images
    - hashtags: tags that recur across results
    - performance: several results scored as high performing

    Every pattern except brand_patterns needs at least `min_support`
    supporting items. A brand profile is the user's own declaration, one is
    enough.

    Returns:
        List of insights, or None when confidence is below `min_confidence`
        or nothing reaches the support threshold.
    """
    if context is None or context.is_empty:
        return None

    min_confidence = settings.RAG_MIN_CONFIDENCE_FOR_INSIGHTS if min_confidence is None else min_confidence
    min_support = settings.RAG_INSIGHT_MIN_SUPPORT if min_support is None else min_support

    if context.confidence < min_confidence:
        logger.debug(
            f"Confidence {context.confidence:.3f} below insight threshold {min_confidence}"
        )
        return None

    items = context.relevant_content
    n = len(items)
    insights: List[RAGInsight] = []

    brand_items = [i for i in items if i.content_type == ContentType.BRAND_PROFILE]
    if brand_items:
        voice = next((i.style for i in brand_items if i.style), None)
        description = "Using your established brand voice and messaging patterns"
        if voice:
            description += f" ({voice})"
        insights.append(RAGInsight(
            type="brand_patterns",
            description=description,
            confidence=context.confidence,
            support=len(brand_items),
            values=[voice] if voice else [],
        ))

    voice_items = [
        i for i in items
        if i.content_type in (ContentType.SOCIAL_MEDIA, ContentType.BLOG_POST, ContentType.AD_CAMPAIGN)
    ]
    dominant_tone = _dominant([i.style for i in voice_items], min_support)
    if dominant_tone:
        tone, count = dominant_tone
        insights.append(RAGInsight(
            type="voice_patterns",
            description=f"Applying your most consistent tone: {tone}",
            confidence=context.confidence * count / n,
            support=count,
            values=[tone],
        ))

    image_items = [i for i in items if i.content_type == ContentType.SAVED_IMAGE]
    dominant_style = _dominant([i.style for i in image_items], min_support)
    if dominant_style:
        style, count = dominant_style
        insights.append(RAGInsight(
            type="styles",
            description=f"Using the visual style from your saved images: {style}",
            confidence=context.confidence * count / n,
            support=count,
            values=[style],
        ))

    tag_counts = Counter(
        str(tag).strip().lstrip("#").lower()
        for item in items
        for tag in set(item.tags)
        if str(tag).strip().lstrip("#")
    )
    recurring = [
        (tag, count) for tag, count in tag_counts.most_common(settings.RAG_MAX_HASHTAGS)
        if count >= min_support
    ]
    if recurring:
        insights.append(RAGInsight(
            type="hashtags",
            description=f"Suggesting {len(recurring)} of your recurring hashtags",
            confidence=context.confidence * recurring[0][1] / n,
            support=recurring[0][1],
            values=[f"#{tag}" for tag, _ in recurring],
        ))

    strong = [i for i in items if i.performance >= settings.RAG_HIGH_PERFORMANCE_THRESHOLD]
    if len(strong) >= min_support:
        insights.append(RAGInsight(
            type="performance",
            description=f"Optimized from {len(strong)} of your best-performing pieces",
            confidence=context.confidence * len(strong) / n,
            support=len(strong),
        ))

    return insights or None
