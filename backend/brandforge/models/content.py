"""
Content Models

This module contains the content-related models for the BrandForge RAG engine.

Models Included:
----------------
1. ContentType (Enum) - The five indexable domain entities
2. SourceDocument - Raw per-user content records (the document store)
3. ContentVector - One indexed, embedded piece of content

Database Tables:
----------------
- source_documents: Raw records written by the external CRUD surface
- content_vectors: Canonical text + embedding + ranking metadata

Relationships:
--------------
- User (1) ←→ (Many) SourceDocument
- SourceDocument and ContentVector are linked by value, not by foreign key:
  a vector carries (source_collection, source_doc_id) and a deterministic
  content_id such as "social_42". Deleting source documents is the external
  collaborator's job; this service never deletes vectors.
"""

import enum
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from brandforge.core.config import settings
from brandforge.db.base import BaseModel, JSONType, String50, String100, String255, embedding_type

if TYPE_CHECKING:
    from brandforge.models.user import User


# ================================
# Enums
# ================================

class ContentType(str, enum.Enum):
    """
    Enum for indexable content types.

    The declaration order is also the processing order inside one user's
    content set during a vectorization job:

    1. BRAND_PROFILE: Brand name, voice, audience, values
    2. SOCIAL_MEDIA: Social posts (caption, hashtags, platform)
    3. BLOG_POST: Blog articles
    4. SAVED_IMAGE: Generated images the user kept
    5. AD_CAMPAIGN: Ad campaign briefs
    """

    BRAND_PROFILE = "brand_profile"
    SOCIAL_MEDIA = "social_media"
    BLOG_POST = "blog_post"
    SAVED_IMAGE = "saved_image"
    AD_CAMPAIGN = "ad_campaign"

    def __str__(self) -> str:
        """Return the string value of the enum."""
        return self.value


# Fixed per-user processing sequence
CONTENT_TYPE_ORDER: tuple[ContentType, ...] = tuple(ContentType)


# ================================
# SourceDocument Model
# ================================

class SourceDocument(BaseModel):
    """
    Raw content record owned by one user.

    `collection` names the document collection the record came from
    (brandProfiles, socialMediaPosts, blogPosts, savedImages, adCampaigns)
    and `content_type` is its normalized type tag. `data` holds the record
    exactly as the CRUD surface wrote it (camelCase keys).
    """

    __tablename__ = "source_documents"

    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="Owning user"
    )

    content_type: Mapped[ContentType] = mapped_column(
        nullable=False,
        index=True,
        comment="Normalized content type tag"
    )

    collection: Mapped[str] = mapped_column(
        String50,
        nullable=False,
        comment="Source collection name (e.g. socialMediaPosts)"
    )

    doc_id: Mapped[str] = mapped_column(
        String100,
        nullable=False,
        comment="Document id inside its collection"
    )

    data: Mapped[dict] = mapped_column(
        JSONType,
        nullable=False,
        default=dict,
        comment="Raw record as written by the CRUD surface"
    )

    user: Mapped["User"] = relationship(
        "User",
        back_populates="documents",
        lazy="noload",
    )

    __table_args__ = (
        UniqueConstraint(
            "user_id",
            "content_type",
            "doc_id",
            name="uq_source_documents_user_type_doc"
        ),
    )

    def __repr__(self) -> str:
        return (
            f"SourceDocument(id={self.id}, user_id={self.user_id}, "
            f"type={self.content_type}, doc_id={self.doc_id!r})"
        )


# ================================
# ContentVector Model
# ================================

class ContentVector(BaseModel):
    """
    One indexed piece of content.

    Identity:
    ---------
    (user_id, content_id) is unique. content_id is derived from the type
    prefix and the source document id, so re-indexing the same document
    always lands on the same row (upsert), and `version` counts how many
    times it was written.

    Ranking Metadata:
    -----------------
    - performance: 0-1 score from engagement/views/rating, used by re-ranking
    - engagement: raw engagement count (likes), >= 0
    - tags: hashtags or image tags depending on type
    - content_created_at / content_updated_at: timestamps used for recency
      decay and for breaking similarity ties (most recent first)
    - interactive: last write was a user request rather than a batch job;
      only those count toward the per-user embedding rate limit

    Embedding:
    ----------
    pgvector `vector(EMBEDDING_DIMENSION)` on PostgreSQL; a JSON float list on
    other dialects. Similarity is computed in the application with numpy so
    both paths behave identically.
    """

    __tablename__ = "content_vectors"

    user_id: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        index=True,
        comment="Owning user"
    )

    content_type: Mapped[ContentType] = mapped_column(
        nullable=False,
        index=True,
        comment="Normalized content type tag"
    )

    content_id: Mapped[str] = mapped_column(
        String255,
        nullable=False,
        comment="Deterministic id: {prefix}_{source_doc_id}"
    )

    source_collection: Mapped[str] = mapped_column(
        String50,
        nullable=False,
        comment="Collection the content was read from"
    )

    source_doc_id: Mapped[str] = mapped_column(
        String100,
        nullable=False,
        comment="Document id inside the source collection"
    )

    text_content: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        comment="Canonical multi-line text that was embedded"
    )

    embedding = mapped_column(
        embedding_type(settings.EMBEDDING_DIMENSION),
        nullable=False,
        comment="Embedding vector for semantic search"
    )

    # ================================
    # Metadata
    # ================================

    industry: Mapped[str | None] = mapped_column(String100, nullable=True, index=True)
    style: Mapped[str | None] = mapped_column(String100, nullable=True)
    platform: Mapped[str | None] = mapped_column(String50, nullable=True)
    language: Mapped[str | None] = mapped_column(String(10), nullable=True)

    performance: Mapped[float] = mapped_column(
        Float,
        nullable=False,
        default=0.5,
        comment="Normalized performance score in [0, 1]"
    )

    engagement: Mapped[float] = mapped_column(
        Float,
        nullable=False,
        default=0.0,
        comment="Raw engagement (likes), >= 0"
    )

    tags: Mapped[list] = mapped_column(
        JSONType,
        nullable=False,
        default=list,
        comment="Hashtags / image tags"
    )

    content_created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        comment="When the vector was first written (UTC)"
    )

    content_updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        comment="When the vector was last written (UTC)"
    )

    version: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=1,
        comment="Incremented on every upsert of the same content_id"
    )

    interactive: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        comment="Last write came from a user request (counts toward the rate limit)"
    )

    __table_args__ = (
        UniqueConstraint(
            "user_id",
            "content_id",
            name="uq_content_vectors_user_content"
        ),
    )

    def __repr__(self) -> str:
        return (
            f"ContentVector(id={self.id}, user_id={self.user_id}, "
            f"content_id={self.content_id!r}, version={self.version})"
        )
