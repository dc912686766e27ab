"""
Content Normalizer

Converts one raw content record (brand profile, social post, blog post,
saved image, ad campaign) into canonical text + ranking metadata.

Record shapes are a pydantic discriminated union keyed on `content_type`.
Every variant provides the same capabilities:

- text_fields(): labelled values in the fixed per-type order
- to_text(): "Label: value" lines for non-empty fields, joined by newlines
- default_performance(): 0-1 score derived from the record's own signals
- metadata(): industry / style / platform / performance / engagement / tags

Example:
--------
    normalized = normalize_content(
        ContentType.SOCIAL_MEDIA, "42",
        {"caption": "New drop", "hashtags": ["#fall"], "platform": "instagram"},
    )
    normalized.content_id   # "social_42"
    normalized.text         # "Caption: New drop\\nHashtags: #fall\\nPlatform: instagram"
"""

import logging
from dataclasses import dataclass
from typing import Annotated, Any, ClassVar, Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from brandforge.models.content import ContentType
from brandforge.services.rag.errors import MalformedContentError, ValidationError

logger = logging.getLogger(__name__)

BLOG_CONTENT_EXCERPT_CHARS = 1000
BLOG_VIEWS_FOR_FULL_SCORE = 1000
NEUTRAL_PERFORMANCE = 0.5
BRAND_PROFILE_PERFORMANCE = 0.7
REVECTORIZE_SIMILARITY_THRESHOLD = 0.85


def _clean(value: Optional[str]) -> str:
    return value.strip() if value else ""


def _join(values: Optional[list[str]], sep: str) -> str:
    if not values:
        return ""
    return sep.join(v.strip() for v in values if v and v.strip())


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, float(value)))


class ContentMetadata(BaseModel):
    """Ranking metadata stored next to a content vector."""

    industry: Optional[str] = None
    style: Optional[str] = None
    platform: Optional[str] = None
    language: Optional[str] = None
    performance: float = Field(default=NEUTRAL_PERFORMANCE, ge=0.0, le=1.0)
    engagement: float = Field(default=0.0, ge=0.0)
    tags: list[str] = Field(default_factory=list)


# ========================================
# Record Variants
# ========================================

class _ContentRecord(BaseModel):
    """Shared behaviour of every content record variant."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    prefix: ClassVar[str]
    collection: ClassVar[str]

    language: Optional[str] = None

    def text_fields(self) -> list[tuple[str, str]]:
        raise NotImplementedError

    def default_performance(self) -> float:
        return NEUTRAL_PERFORMANCE

    def metadata(self) -> ContentMetadata:
        return ContentMetadata(
            language=_clean(self.language) or None,
            performance=_clamp(self.default_performance()),
        )

    def to_text(self) -> str:
        return "\n".join(
            f"{label}: {value}" for label, value in self.text_fields() if value
        )


class BrandProfileRecord(_ContentRecord):
    content_type: Literal[ContentType.BRAND_PROFILE] = ContentType.BRAND_PROFILE
    prefix: ClassVar[str] = "brand"
    collection: ClassVar[str] = "brandProfiles"

    brand_name: Optional[str] = Field(default=None, alias="brandName")
    description: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("description", "brandDescription"),
    )
    industry: Optional[str] = None
    target_audience: Optional[str] = Field(default=None, alias="targetAudience")
    brand_voice: Optional[str] = Field(default=None, alias="brandVoice")
    values: Optional[list[str]] = None
    unique_selling_points: Optional[list[str]] = Field(default=None, alias="uniqueSellingPoints")

    def text_fields(self) -> list[tuple[str, str]]:
        return [
            ("Brand", _clean(self.brand_name)),
            ("Description", _clean(self.description)),
            ("Industry", _clean(self.industry)),
            ("Target Audience", _clean(self.target_audience)),
            ("Brand Voice", _clean(self.brand_voice)),
            ("Values", _join(self.values, ", ")),
            ("USPs", _join(self.unique_selling_points, ", ")),
        ]

    def default_performance(self) -> float:
        # Brand profiles are curated by the user, treat them as good priors
        return BRAND_PROFILE_PERFORMANCE

    def metadata(self) -> ContentMetadata:
        meta = super().metadata()
        meta.industry = _clean(self.industry) or None
        meta.style = _clean(self.brand_voice) or None
        return meta


class SocialMediaRecord(_ContentRecord):
    content_type: Literal[ContentType.SOCIAL_MEDIA] = ContentType.SOCIAL_MEDIA
    prefix: ClassVar[str] = "social"
    collection: ClassVar[str] = "socialMediaPosts"

    caption: Optional[str] = None
    hashtags: Optional[list[str]] = None
    platform: Optional[str] = None
    tone: Optional[str] = None
    engagement: Optional[float] = None
    likes: Optional[float] = None

    def text_fields(self) -> list[tuple[str, str]]:
        return [
            ("Caption", _clean(self.caption)),
            ("Hashtags", _join(self.hashtags, " ")),
            ("Platform", _clean(self.platform)),
            ("Tone", _clean(self.tone)),
        ]

    def default_performance(self) -> float:
        if self.engagement is None:
            return NEUTRAL_PERFORMANCE
        return self.engagement

    def metadata(self) -> ContentMetadata:
        meta = super().metadata()
        meta.platform = _clean(self.platform) or None
        meta.style = _clean(self.tone) or None
        meta.engagement = max(0.0, self.likes or 0.0)
        meta.tags = [t.strip() for t in self.hashtags or [] if t and t.strip()]
        return meta


class BlogPostRecord(_ContentRecord):
    content_type: Literal[ContentType.BLOG_POST] = ContentType.BLOG_POST
    prefix: ClassVar[str] = "blog"
    collection: ClassVar[str] = "blogPosts"

    title: Optional[str] = None
    content: Optional[str] = None
    tags: Optional[list[str]] = None
    tone: Optional[str] = None
    views: Optional[float] = None

    def text_fields(self) -> list[tuple[str, str]]:
        return [
            ("Title", _clean(self.title)),
            ("Content", _clean(self.content)[:BLOG_CONTENT_EXCERPT_CHARS]),
            ("Tags", _join(self.tags, ", ")),
            ("Tone", _clean(self.tone)),
        ]

    def default_performance(self) -> float:
        if not self.views:
            return NEUTRAL_PERFORMANCE
        return min(self.views / BLOG_VIEWS_FOR_FULL_SCORE, 1.0)

    def metadata(self) -> ContentMetadata:
        meta = super().metadata()
        meta.style = _clean(self.tone) or None
        meta.tags = [t.strip() for t in self.tags or [] if t and t.strip()]
        return meta


class SavedImageRecord(_ContentRecord):
    content_type: Literal[ContentType.SAVED_IMAGE] = ContentType.SAVED_IMAGE
    prefix: ClassVar[str] = "image"
    collection: ClassVar[str] = "savedImages"

    prompt: Optional[str] = None
    style: Optional[str] = None
    description: Optional[str] = None
    tags: Optional[list[str]] = None
    rating: Optional[float] = None

    def text_fields(self) -> list[tuple[str, str]]:
        return [
            ("Prompt", _clean(self.prompt)),
            ("Style", _clean(self.style)),
            ("Description", _clean(self.description)),
            ("Tags", _join(self.tags, ", ")),
        ]

    def default_performance(self) -> float:
        if self.rating is None:
            return NEUTRAL_PERFORMANCE
        # Ratings above 1 come from the 5-star widget
        if self.rating > 1:
            return self.rating / 5
        return self.rating

    def metadata(self) -> ContentMetadata:
        meta = super().metadata()
        meta.style = _clean(self.style) or None
        meta.tags = [t.strip() for t in self.tags or [] if t and t.strip()]
        return meta


class AdCampaignRecord(_ContentRecord):
    content_type: Literal[ContentType.AD_CAMPAIGN] = ContentType.AD_CAMPAIGN
    prefix: ClassVar[str] = "campaign"
    collection: ClassVar[str] = "adCampaigns"

    title: Optional[str] = None
    description: Optional[str] = None
    target_audience: Optional[str] = Field(default=None, alias="targetAudience")
    platforms: Optional[list[str]] = None
    tone: Optional[str] = None
    performance: Optional[float] = None

    def text_fields(self) -> list[tuple[str, str]]:
        return [
            ("Campaign", _clean(self.title)),
            ("Description", _clean(self.description)),
            ("Target", _clean(self.target_audience)),
            ("Platforms", _join(self.platforms, ", ")),
            ("Tone", _clean(self.tone)),
        ]

    def default_performance(self) -> float:
        if self.performance is None:
            return NEUTRAL_PERFORMANCE
        return self.performance

    def metadata(self) -> ContentMetadata:
        meta = super().metadata()
        meta.style = _clean(self.tone) or None
        # First listed platform is the primary one; the full list is in the text.
        # Platforms are not hashtags, so tags stay empty.
        meta.platform = next((p.strip() for p in self.platforms or [] if p and p.strip()), None)
        return meta


ContentRecord = Annotated[
    Union[
        BrandProfileRecord,
        SocialMediaRecord,
        BlogPostRecord,
        SavedImageRecord,
        AdCampaignRecord,
    ],
    Field(discriminator="content_type"),
]

_record_adapter: TypeAdapter[ContentRecord] = TypeAdapter(ContentRecord)

RECORD_TYPES: dict[ContentType, type[_ContentRecord]] = {
    ContentType.BRAND_PROFILE: BrandProfileRecord,
    ContentType.SOCIAL_MEDIA: SocialMediaRecord,
    ContentType.BLOG_POST: BlogPostRecord,
    ContentType.SAVED_IMAGE: SavedImageRecord,
    ContentType.AD_CAMPAIGN: AdCampaignRecord,
}


# ========================================
# Public API
# ========================================

@dataclass(frozen=True)
class NormalizedContent:
    """Canonical form of one content record, ready to embed and store."""

    content_type: ContentType
    content_id: str
    source_collection: str
    source_doc_id: str
    text: str
    metadata: ContentMetadata


def make_content_id(content_type: ContentType, doc_id: str) -> str:
    """Deterministic content id, e.g. ("social_media", "42") -> "social_42"."""
    return f"{RECORD_TYPES[ContentType(content_type)].prefix}_{doc_id}"


def source_collection_for(content_type: ContentType) -> str:
    return RECORD_TYPES[ContentType(content_type)].collection


def parse_record(content_type: ContentType, raw: dict[str, Any]) -> _ContentRecord:
    """
    Validate a raw record against its type's shape.

    Raises:
        MalformedContentError: If the record is not a mapping or a field has
            the wrong type (e.g. hashtags given as a string).
    """
    if not isinstance(raw, dict):
        raise MalformedContentError(
            f"{content_type} record must be an object, got {type(raw).__name__}"
        )
    payload = {**raw, "content_type": ContentType(content_type)}
    try:
        return _record_adapter.validate_python(payload)
    except PydanticValidationError as e:
        raise MalformedContentError(
            f"Malformed {content_type} record: {e.error_count()} invalid field(s)"
        ) from e


def normalize_content(
    content_type: ContentType,
    doc_id: str,
    raw: dict[str, Any],
) -> NormalizedContent:
    """
    Normalize one raw content record.

    Args:
        content_type: Type tag of the record
        doc_id: Document id inside the source collection
        raw: Raw record (camelCase keys as stored by the CRUD surface)

    Returns:
        NormalizedContent with deterministic content_id

    Raises:
        MalformedContentError: Record does not match its type's shape
        ValidationError: Every text field is empty (caller skips the item)
    """
    record = parse_record(content_type, raw)
    text = record.to_text()
    content_id = make_content_id(record.content_type, doc_id)

    if not text.strip():
        raise ValidationError(f"No text content for {content_id}")

    return NormalizedContent(
        content_type=record.content_type,
        content_id=content_id,
        source_collection=record.collection,
        source_doc_id=str(doc_id),
        text=text,
        metadata=record.metadata(),
    )


def should_revectorize(
    old_text: Optional[str],
    new_text: Optional[str],
    threshold: float = REVECTORIZE_SIMILARITY_THRESHOLD,
) -> bool:
    """
    Decide whether an edited record is different enough to embed again.

    Word overlap (share of the old words still present, over the longer
    word count) below `threshold` means re-embed. Missing text on either
    side always re-embeds.
    """
    if not old_text or not new_text:
        return True

    old_words = old_text.lower().split()
    new_words = new_text.lower().split()
    if not old_words or not new_words:
        return True

    new_set = set(new_words)
    common = sum(1 for word in old_words if word in new_set)
    similarity = common / max(len(old_words), len(new_words))
    return similarity < threshold
