"""
Prompt Enhancer

Merges a retrieval context into a generation prompt as labelled sections:

    <base prompt>

    BRAND VOICE CONTEXT:
    Brand essence: Brand: Acme ...

    EFFECTIVE HASHTAGS FOR YOUR BRAND:
    #launch #techlife

Augmentation is optional. The base prompt comes back unchanged when there is
no context, when its confidence is below RAG_MIN_CONFIDENCE_FOR_AUGMENTATION,
or when nothing useful can be extracted. Users outside
RAG_ROLLOUT_PERCENTAGE also get the base prompt. Lines are deduplicated
case-insensitively across sections and the augmentation is capped at
RAG_MAX_AUGMENTATION_CHARS, cut at a line boundary.
"""

import logging
from collections import Counter
from typing import Callable, Dict, List, Optional, Tuple

from brandforge.core.config import settings
from brandforge.models.content import ContentType
from brandforge.services.rag.retriever import RetrievalContext, should_use_rag_for_user
from brandforge.services.rag.vector_store import ScoredContent

logger = logging.getLogger(__name__)

LOW_PERFORMANCE_THRESHOLD = 0.3
MAX_VOICE_PATTERNS = 3
MAX_STYLES = 5
MAX_AVOID_STYLES = 3
MAX_SEO_KEYWORDS = 8

Section = Tuple[str, List[str]]


# ========================================
# Extractors
# ========================================

def _of_type(items: List[ScoredContent], *types: ContentType) -> List[ScoredContent]:
    return [i for i in items if i.content_type in types]


def _high_performing(items: List[ScoredContent]) -> List[ScoredContent]:
    return [i for i in items if i.performance >= settings.RAG_HIGH_PERFORMANCE_THRESHOLD]


def _excerpt(text: str, limit: int) -> str:
    flat = " ".join(text.split())
    if len(flat) <= limit:
        return flat
    return flat[: limit - 3].rstrip() + "..."


def brand_patterns(items: List[ScoredContent]) -> List[str]:
    lines = [
        f"Brand essence: {_excerpt(item.text_content, settings.RAG_EXCERPT_CHARS)}"
        for item in _of_type(items, ContentType.BRAND_PROFILE)
    ]
    styles = _top_styles(_high_performing(items), 3)
    if styles:
        lines.append(f"Successful brand styles: {', '.join(styles)}")
    return lines


def _top_styles(items: List[ScoredContent], limit: int) -> List[str]:
    counts = Counter(i.style.strip() for i in items if i.style and i.style.strip())
    return [style for style, _ in counts.most_common(limit)]


def successful_styles(items: List[ScoredContent]) -> List[str]:
    counts = Counter(
        i.style.strip() for i in _high_performing(items) if i.style and i.style.strip()
    )
    return [
        f"{style} (used {count} times successfully)"
        for style, count in counts.most_common(MAX_STYLES)
    ]


def avoid_patterns(items: List[ScoredContent]) -> List[str]:
    low = [i for i in items if i.performance < LOW_PERFORMANCE_THRESHOLD]
    styles = _top_styles(low, MAX_AVOID_STYLES)
    if not styles:
        return []
    return [f"Avoid these styles that performed poorly: {', '.join(styles)}"]


def voice_patterns(items: List[ScoredContent]) -> List[str]:
    """First line of the user's best social posts, minus its label."""
    phrases = []
    for item in _high_performing(_of_type(items, ContentType.SOCIAL_MEDIA)):
        first = item.text_content.split("\n", 1)[0]
        if ": " in first:
            first = first.split(": ", 1)[1]
        first = first.split(".")[0].strip()
        if 10 < len(first) < 100:
            phrases.append(first)
    return phrases[:MAX_VOICE_PATTERNS]


def effective_hashtags(items: List[ScoredContent]) -> List[str]:
    counts = Counter(
        str(tag).strip().lstrip("#")
        for item in _high_performing(_of_type(items, ContentType.SOCIAL_MEDIA))
        for tag in item.tags
        if str(tag).strip().lstrip("#")
    )
    tags = [f"#{tag}" for tag, _ in counts.most_common(settings.RAG_MAX_HASHTAGS)]
    return [" ".join(tags)] if tags else []


def seo_keywords(items: List[ScoredContent]) -> List[str]:
    counts = Counter(
        str(tag).strip()
        for item in _high_performing(_of_type(items, ContentType.BLOG_POST))
        for tag in item.tags
        if str(tag).strip()
    )
    keywords = [kw for kw, _ in counts.most_common(MAX_SEO_KEYWORDS)]
    return [", ".join(keywords)] if keywords else []


def performance_insights(items: List[ScoredContent]) -> List[str]:
    if not items:
        return []
    average = sum(i.performance for i in items) / len(items)
    if average > settings.RAG_HIGH_PERFORMANCE_THRESHOLD:
        return ["Your content consistently performs well"]
    if average < LOW_PERFORMANCE_THRESHOLD:
        return ["Consider adjusting your content strategy based on successful patterns"]
    return []


# Heading and extractor per section, in output order
SECTIONS: Dict[ContentType, List[Tuple[str, Callable[[List[ScoredContent]], List[str]]]]] = {
    ContentType.SOCIAL_MEDIA: [
        ("BRAND VOICE CONTEXT", brand_patterns),
        ("SUCCESSFUL VOICE PATTERNS", voice_patterns),
        ("EFFECTIVE HASHTAGS FOR YOUR BRAND", effective_hashtags),
        ("PROVEN SUCCESSFUL STYLES", successful_styles),
        ("PERFORMANCE INSIGHTS", performance_insights),
    ],
    ContentType.BLOG_POST: [
        ("BRAND WRITING STYLE", brand_patterns),
        ("SUCCESSFUL CONTENT APPROACHES", successful_styles),
        ("EFFECTIVE SEO KEYWORDS FOR YOUR BRAND", seo_keywords),
        ("PERFORMANCE INSIGHTS", performance_insights),
    ],
    ContentType.SAVED_IMAGE: [
        ("BRAND CONTEXT (from your successful content)", brand_patterns),
        ("PROVEN SUCCESSFUL STYLES", successful_styles),
        ("AVOID THESE PATTERNS (performed poorly)", avoid_patterns),
    ],
    ContentType.AD_CAMPAIGN: [
        ("BRAND MESSAGING CONTEXT", brand_patterns),
        ("SUCCESSFUL CAMPAIGN APPROACHES", successful_styles),
        ("AVOID THESE MESSAGING PATTERNS", avoid_patterns),
        ("PERFORMANCE INSIGHTS", performance_insights),
    ],
}
SECTIONS[ContentType.BRAND_PROFILE] = SECTIONS[ContentType.SOCIAL_MEDIA]


# ========================================
# Assembly
# ========================================

def build_sections(context: RetrievalContext, content_type: ContentType) -> List[Section]:
    """Extract non-empty, deduplicated sections for a content type."""
    seen: set[str] = set()
    sections: List[Section] = []

    for heading, extractor in SECTIONS[ContentType(content_type)]:
        lines = []
        for line in extractor(context.relevant_content):
            line = line.strip()
            key = line.lower()
            if not line or key in seen:
                continue
            seen.add(key)
            lines.append(line)
        if lines:
            sections.append((heading, lines))

    return sections


def render_augmentation(sections: List[Section], max_chars: int) -> str:
    """
    Render sections, stopping at the last whole line that fits in max_chars.

    A heading is only emitted together with at least one of its lines.
    """
    out: List[str] = []
    used = 0

    for heading, lines in sections:
        block_header = f"\n\n{heading}:"
        for i, line in enumerate(lines):
            piece = f"\n{line}"
            if i == 0:
                piece = block_header + piece
            if used + len(piece) > max_chars:
                return "".join(out)
            out.append(piece)
            used += len(piece)

    return "".join(out)


def enhance_prompt(
    base_prompt: str,
    context: Optional[RetrievalContext],
    content_type: ContentType,
    min_confidence: Optional[float] = None,
    max_chars: Optional[int] = None,
    user_id: Optional[int] = None,
) -> str:
    """
    Append retrieved context to `base_prompt` for the given content type.

    Returns `base_prompt` unchanged when there is nothing trustworthy to add,
    or when `user_id` is given and falls in the rollout baseline group.
    """
    if context is None or context.is_empty:
        return base_prompt

    if user_id is not None and not should_use_rag_for_user(user_id):
        logger.debug(f"User {user_id} is in the rollout baseline group, prompt left unaugmented")
        return base_prompt

    min_confidence = settings.RAG_MIN_CONFIDENCE_FOR_AUGMENTATION if min_confidence is None else min_confidence
    max_chars = settings.RAG_MAX_AUGMENTATION_CHARS if max_chars is None else max_chars

    if context.confidence < min_confidence:
        logger.debug(
            f"Skipping augmentation: confidence {context.confidence:.3f} < {min_confidence}"
        )
        return base_prompt

    augmentation = render_augmentation(build_sections(context, content_type), max_chars)
    if not augmentation:
        return base_prompt

    logger.debug(f"Augmented {content_type} prompt with {len(augmentation)} chars")
    return base_prompt + augmentation


def enhance_social_media_prompt(base_prompt: str, context: Optional[RetrievalContext] = None) -> str:
    return enhance_prompt(base_prompt, context, ContentType.SOCIAL_MEDIA)


def enhance_blog_prompt(base_prompt: str, context: Optional[RetrievalContext] = None) -> str:
    return enhance_prompt(base_prompt, context, ContentType.BLOG_POST)


def enhance_image_prompt(base_prompt: str, context: Optional[RetrievalContext] = None) -> str:
    return enhance_prompt(base_prompt, context, ContentType.SAVED_IMAGE)


def enhance_ad_campaign_prompt(base_prompt: str, context: Optional[RetrievalContext] = None) -> str:
    return enhance_prompt(base_prompt, context, ContentType.AD_CAMPAIGN)
