"""
Vector Store Adapter

Embeds content text and upserts/queries content vectors keyed by
(user_id, content_id).

Write path:
-----------
text → embedding provider → shape checks → upsert into content_vectors
(insert, or replace text/embedding/metadata and bump `version`)

Read path:
----------
query text → embedding → cosine similarity against the user's vectors
(optionally filtered by type, industry, tag, minimum performance or
creation timeframe) → top-k, ties broken by the most recently updated
vector.

Similarity is computed in-process with numpy over one user's vectors. A
tenant's content set is small (hundreds of rows), so this keeps the same
behaviour on PostgreSQL and SQLite without an ANN index.
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence, Set, Union

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from brandforge.core.config import settings
from brandforge.db.base import ensure_utc
from brandforge.models.content import ContentType, ContentVector
from brandforge.services.processors.embedder import EmbeddingService, cosine_similarities
from brandforge.services.rag.errors import (
    EmbeddingError,
    RateLimitExceededError,
    StorageError,
    ValidationError,
)
from brandforge.services.rag.normalizer import ContentMetadata, NormalizedContent

logger = logging.getLogger(__name__)

TIMEFRAME_DAYS = {
    "recent": 30,
    "30days": 30,
    "90days": 90,
}


def timeframe_start(timeframe: Optional[str], now: Optional[datetime] = None) -> Optional[datetime]:
    """
    Earliest creation time a timeframe admits; None for no bound.

    Raises:
        ValidationError: Unknown timeframe
    """
    if timeframe is None or timeframe == "all":
        return None
    if timeframe not in TIMEFRAME_DAYS:
        raise ValidationError(f"Unknown timeframe: {timeframe}")
    now = now or datetime.now(timezone.utc)
    return now - timedelta(days=TIMEFRAME_DAYS[timeframe])


@dataclass
class QueryFilters:
    """Optional narrowing of a similarity query."""

    content_types: Optional[List[ContentType]] = None
    industry: Optional[str] = None
    tag: Optional[str] = None
    min_performance: Optional[float] = None
    # "recent" | "30days" | "90days" | "all", by content creation time
    timeframe: Optional[str] = None


@dataclass
class ScoredContent:
    """One retrieved content vector with its scores."""

    content_id: str
    content_type: ContentType
    source_collection: str
    source_doc_id: str
    text_content: str
    similarity: float
    industry: Optional[str] = None
    style: Optional[str] = None
    platform: Optional[str] = None
    language: Optional[str] = None
    performance: float = 0.5
    engagement: float = 0.0
    tags: List[str] = field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    version: int = 1
    # Filled by the retriever
    recency_score: float = 0.0
    final_score: float = 0.0
    rank: int = 0

    @classmethod
    def from_vector(cls, vector: ContentVector, similarity: float) -> "ScoredContent":
        return cls(
            content_id=vector.content_id,
            content_type=ContentType(vector.content_type),
            source_collection=vector.source_collection,
            source_doc_id=vector.source_doc_id,
            text_content=vector.text_content,
            similarity=similarity,
            industry=vector.industry,
            style=vector.style,
            platform=vector.platform,
            language=vector.language,
            performance=vector.performance,
            engagement=vector.engagement,
            tags=list(vector.tags or []),
            created_at=ensure_utc(vector.content_created_at),
            updated_at=ensure_utc(vector.content_updated_at),
            version=vector.version,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "content_id": self.content_id,
            "content_type": self.content_type.value,
            "source_collection": self.source_collection,
            "source_doc_id": self.source_doc_id,
            "text_content": self.text_content,
            "similarity": round(self.similarity, 4),
            "recency_score": round(self.recency_score, 4),
            "final_score": round(self.final_score, 4),
            "rank": self.rank,
            "industry": self.industry,
            "style": self.style,
            "platform": self.platform,
            "performance": self.performance,
            "engagement": self.engagement,
            "tags": self.tags,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class VectorStore:
    """
    Vector Store Adapter over the content_vectors table.

    One instance per session; it does not own the session.

    Usage:
    ------
    store = VectorStore(db, embedder)
    await store.store_content_vector(
        user_id=7,
        content_type=ContentType.BRAND_PROFILE,
        content_id="brand_abc",
        text="Brand: Acme\\nIndustry: Tech",
        metadata={"industry": "Tech", "performance": 0.7},
        source_collection="brandProfiles",
        source_doc_id="abc",
    )
    results = await store.query(7, "tech brand voice", k=5)
    """

    def __init__(self, db: AsyncSession, embedder: EmbeddingService):
        self.db = db
        self.embedder = embedder
        self.dimension = settings.EMBEDDING_DIMENSION

    # ========================================
    # Embedding
    # ========================================

    async def embed(self, text: str) -> List[float]:
        """
        Embed text and check the vector is usable.

        Raises:
            EmbeddingError: Provider failure, wrong dimension, non-finite
                values or an all-zero vector
        """
        try:
            vector = await self.embedder.embed_text(text)
        except Exception as e:
            raise EmbeddingError(f"Embedding provider failed: {e}") from e

        if vector is None:
            raise EmbeddingError("Embedding provider returned no vector")

        values = [float(v) for v in vector]
        if len(values) != self.dimension:
            raise EmbeddingError(
                f"Embedding dimension mismatch: got {len(values)}, expected {self.dimension}"
            )
        if not all(math.isfinite(v) for v in values):
            raise EmbeddingError("Embedding contains non-finite values")
        if not any(values):
            raise EmbeddingError("Embedding provider returned a zero vector")

        return values

    # ========================================
    # Write Path
    # ========================================

    async def store_content_vector(
        self,
        user_id: int,
        content_type: Union[ContentType, str],
        content_id: str,
        text: str,
        metadata: Union[ContentMetadata, Dict[str, Any], None],
        source_collection: str,
        source_doc_id: str,
        enforce_rate_limit: bool = True,
    ) -> ContentVector:
        """
        Embed `text` and upsert it under (user_id, content_id).

        Args:
            user_id: Owning user
            content_type: Content type tag
            content_id: Deterministic content id (e.g. "social_42")
            text: Canonical text to embed; must not be empty
            metadata: Ranking metadata (ContentMetadata or a plain dict)
            source_collection: Collection the content came from
            source_doc_id: Document id inside that collection
            enforce_rate_limit: Apply the per-user interactive rate limit and
                count this write toward it (bulk jobs pass False)

        Returns:
            The stored ContentVector

        Raises:
            ValidationError: Empty text
            RateLimitExceededError: User over the interactive limit
            EmbeddingError: Provider could not produce a usable vector
            StorageError: Persistence failed
        """
        if not text or not text.strip():
            raise ValidationError(f"Refusing to store empty content for {content_id}")

        meta = self._coerce_metadata(metadata)

        if enforce_rate_limit:
            await self.check_rate_limit(user_id)

        embedding = await self.embed(text)

        for attempt in range(2):
            try:
                vector = await self._upsert(
                    user_id=user_id,
                    content_type=ContentType(content_type),
                    content_id=content_id,
                    text=text,
                    embedding=embedding,
                    meta=meta,
                    source_collection=source_collection,
                    source_doc_id=str(source_doc_id),
                    interactive=enforce_rate_limit,
                )
                await self.db.commit()
                logger.debug(
                    f"Stored vector {content_id} for user {user_id} (version {vector.version})"
                )
                return vector
            except IntegrityError as e:
                # Lost an insert race on (user_id, content_id): retry as update
                await self.db.rollback()
                if attempt == 1:
                    raise StorageError(f"Could not upsert {content_id}: {e}") from e
                logger.warning(f"Concurrent insert of {content_id} for user {user_id}, retrying")
            except SQLAlchemyError as e:
                await self.db.rollback()
                raise StorageError(f"Failed to store {content_id}: {e}") from e

        raise StorageError(f"Could not upsert {content_id}")

    async def store_normalized(
        self,
        user_id: int,
        normalized: NormalizedContent,
        enforce_rate_limit: bool = True,
    ) -> ContentVector:
        """Store the output of the content normalizer."""
        return await self.store_content_vector(
            user_id=user_id,
            content_type=normalized.content_type,
            content_id=normalized.content_id,
            text=normalized.text,
            metadata=normalized.metadata,
            source_collection=normalized.source_collection,
            source_doc_id=normalized.source_doc_id,
            enforce_rate_limit=enforce_rate_limit,
        )

    async def _upsert(
        self,
        user_id: int,
        content_type: ContentType,
        content_id: str,
        text: str,
        embedding: List[float],
        meta: ContentMetadata,
        source_collection: str,
        source_doc_id: str,
        interactive: bool = True,
    ) -> ContentVector:
        now = datetime.now(timezone.utc)

        result = await self.db.execute(
            select(ContentVector).where(
                ContentVector.user_id == user_id,
                ContentVector.content_id == content_id,
            )
        )
        vector = result.scalar_one_or_none()

        if vector is None:
            vector = ContentVector(
                user_id=user_id,
                content_id=content_id,
                content_created_at=now,
                version=1,
            )
            self.db.add(vector)
        else:
            vector.version = (vector.version or 0) + 1

        vector.content_type = content_type
        vector.source_collection = source_collection
        vector.source_doc_id = source_doc_id
        vector.text_content = text
        vector.embedding = embedding
        vector.industry = meta.industry
        vector.style = meta.style
        vector.platform = meta.platform
        vector.language = meta.language
        vector.performance = meta.performance
        vector.engagement = meta.engagement
        vector.tags = list(meta.tags)
        vector.content_updated_at = now
        vector.interactive = interactive

        await self.db.flush()
        return vector

    @staticmethod
    def _coerce_metadata(metadata: Union[ContentMetadata, Dict[str, Any], None]) -> ContentMetadata:
        if metadata is None:
            return ContentMetadata()
        if isinstance(metadata, ContentMetadata):
            return metadata
        try:
            return ContentMetadata.model_validate(metadata)
        except ValueError as e:
            raise ValidationError(f"Invalid content metadata: {e}") from e

    # ========================================
    # Lookups
    # ========================================

    async def existing_content_ids(self, user_id: int) -> Set[str]:
        """
        All content ids already indexed for a user.

        Raises:
            StorageError: Read failed
        """
        try:
            result = await self.db.execute(
                select(ContentVector.content_id).where(ContentVector.user_id == user_id)
            )
            return set(result.scalars().all())
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to list content ids for user {user_id}: {e}") from e

    async def count_vectors(self, user_id: int) -> int:
        try:
            result = await self.db.execute(
                select(func.count(ContentVector.id)).where(ContentVector.user_id == user_id)
            )
            return result.scalar() or 0
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to count vectors for user {user_id}: {e}") from e

    # ========================================
    # Rate Limiting
    # ========================================

    async def check_rate_limit(self, user_id: int) -> None:
        """
        Enforce the per-user interactive embedding limit.

        Counts vectors the user wrote (created or re-indexed) through
        interactive requests in the last hour and day; batch job writes are
        not counted. No-op unless RAG_RATE_LIMIT_ENABLED.

        Raises:
            RateLimitExceededError: Hourly or daily cap reached
        """
        if not settings.RAG_RATE_LIMIT_ENABLED:
            return

        now = datetime.now(timezone.utc)
        windows = (
            (timedelta(hours=1), settings.RAG_RATE_LIMIT_PER_HOUR, "hourly"),
            (timedelta(days=1), settings.RAG_RATE_LIMIT_PER_DAY, "daily"),
        )

        for window, limit, label in windows:
            try:
                result = await self.db.execute(
                    select(func.count(ContentVector.id)).where(
                        ContentVector.user_id == user_id,
                        ContentVector.interactive.is_(True),
                        ContentVector.content_updated_at >= now - window,
                    )
                )
                used = result.scalar() or 0
            except SQLAlchemyError as e:
                raise StorageError(f"Failed to read rate limit usage: {e}") from e

            if used >= limit:
                logger.warning(f"User {user_id} hit {label} vectorization limit ({used}/{limit})")
                raise RateLimitExceededError(
                    f"{label.capitalize()} vectorization limit of {limit} reached",
                    retry_after_seconds=int(window.total_seconds()),
                )

    # ========================================
    # Read Path
    # ========================================

    async def query(
        self,
        user_id: int,
        query_text: str,
        k: int = 5,
        filters: Optional[QueryFilters] = None,
        min_similarity: Optional[float] = None,
    ) -> List[ScoredContent]:
        """
        Top-k of the user's vectors by cosine similarity to `query_text`.

        Args:
            user_id: Tenant to search
            query_text: Text to embed as the query
            k: Maximum number of results
            filters: Optional narrowing (content type, industry, tag,
                minimum performance, timeframe)
            min_similarity: Drop candidates below this similarity

        Returns:
            Results sorted by similarity desc, then updated_at desc

        Raises:
            ValidationError: Unknown timeframe
            EmbeddingError: Query could not be embedded
            StorageError: Read failed
        """
        if k <= 0:
            return []

        candidates = await self._load_candidates(user_id, filters)
        if not candidates:
            logger.debug(f"No stored vectors for user {user_id}")
            return []

        query_embedding = await self.embed(query_text)
        similarities = cosine_similarities(
            query_embedding,
            [vector.embedding for vector in candidates],
        )

        scored = [
            ScoredContent.from_vector(vector, float(sim))
            for vector, sim in zip(candidates, similarities)
        ]

        if min_similarity is not None:
            scored = [s for s in scored if s.similarity >= min_similarity]

        epoch = datetime.min.replace(tzinfo=timezone.utc)
        scored.sort(
            key=lambda s: (s.similarity, s.updated_at or epoch),
            reverse=True,
        )
        return scored[:k]

    async def _load_candidates(
        self,
        user_id: int,
        filters: Optional[QueryFilters],
    ) -> Sequence[ContentVector]:
        stmt = select(ContentVector).where(ContentVector.user_id == user_id)

        if filters is not None:
            if filters.content_types:
                stmt = stmt.where(
                    ContentVector.content_type.in_([ContentType(t) for t in filters.content_types])
                )
            if filters.industry:
                stmt = stmt.where(func.lower(ContentVector.industry) == filters.industry.lower())
            if filters.min_performance is not None:
                stmt = stmt.where(ContentVector.performance >= filters.min_performance)
            since = timeframe_start(filters.timeframe)
            if since is not None:
                stmt = stmt.where(ContentVector.content_created_at >= since)

        try:
            result = await self.db.execute(stmt)
            vectors = result.scalars().all()
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to load vectors for user {user_id}: {e}") from e

        if filters is not None and filters.tag:
            wanted = filters.tag.lower().lstrip("#")
            vectors = [
                v for v in vectors
                if any(str(t).lower().lstrip("#") == wanted for t in v.tags or [])
            ]

        return vectors
