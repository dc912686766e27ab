"""
Tests for the prompt enhancer.
"""

import pytest

from brandforge.core.config import settings
from brandforge.models.content import ContentType
from brandforge.services.rag.prompt_enhancer import (
    build_sections,
    enhance_ad_campaign_prompt,
    enhance_blog_prompt,
    enhance_image_prompt,
    enhance_prompt,
    enhance_social_media_prompt,
)
from brandforge.services.rag.retriever import RetrievalContext
from brandforge.services.rag.vector_store import ScoredContent

BASE = "Write an Instagram caption for our autumn launch."


def item(
    content_id: str,
    text: str,
    content_type: ContentType = ContentType.SOCIAL_MEDIA,
    performance: float = 0.5,
    style: str | None = None,
    tags: list[str] | None = None,
) -> ScoredContent:
    return ScoredContent(
        content_id=content_id,
        content_type=content_type,
        source_collection="x",
        source_doc_id=content_id,
        text_content=text,
        similarity=0.9,
        performance=performance,
        style=style,
        tags=tags or [],
    )


def context(*items: ScoredContent, confidence: float = 0.8) -> RetrievalContext:
    return RetrievalContext(relevant_content=list(items), confidence=confidence, query_text="q")


@pytest.fixture
def brand_and_post() -> RetrievalContext:
    return context(
        item(
            "brand_1", "Brand: Acme\nIndustry: Tech",
            content_type=ContentType.BRAND_PROFILE, performance=0.7,
        ),
        item(
            "social_1",
            "Caption: Fresh roast every single morning. Come by\nHashtags: #coffee #morning",
            performance=0.9, style="playful", tags=["#coffee", "#morning"],
        ),
    )


class TestUnchanged:
    """Cases where the base prompt is returned as is."""

    def test_no_context(self):
        assert enhance_social_media_prompt(BASE) == BASE
        assert enhance_social_media_prompt(BASE, RetrievalContext.empty()) == BASE

    def test_low_confidence(self, brand_and_post):
        brand_and_post.confidence = 0.1
        assert enhance_prompt(BASE, brand_and_post, ContentType.SOCIAL_MEDIA, min_confidence=0.3) == BASE

    def test_nothing_extractable(self):
        ctx = context(item("social_1", "Caption: ok", performance=0.5))
        assert enhance_social_media_prompt(BASE, ctx) == BASE

    def test_budget_too_small_for_any_line(self, brand_and_post):
        assert enhance_prompt(BASE, brand_and_post, ContentType.SOCIAL_MEDIA, max_chars=5) == BASE

    def test_baseline_rollout_group(self, brand_and_post, monkeypatch):
        monkeypatch.setattr(settings, "RAG_ROLLOUT_PERCENTAGE", 0)
        assert enhance_prompt(BASE, brand_and_post, ContentType.SOCIAL_MEDIA, user_id=7) == BASE
        # Without a user there is no group to check
        assert enhance_prompt(BASE, brand_and_post, ContentType.SOCIAL_MEDIA) != BASE

    def test_rollout_group_is_augmented(self, brand_and_post, monkeypatch):
        monkeypatch.setattr(settings, "RAG_ROLLOUT_PERCENTAGE", 100)
        enhanced = enhance_prompt(BASE, brand_and_post, ContentType.SOCIAL_MEDIA, user_id=7)
        assert enhanced.startswith(BASE)
        assert enhanced != BASE


class TestSocialMedia:
    """Section layout for social posts."""

    def test_sections_in_order(self, brand_and_post):
        result = enhance_social_media_prompt(BASE, brand_and_post)

        assert result.startswith(BASE + "\n\nBRAND VOICE CONTEXT:\n")
        headings = [
            "BRAND VOICE CONTEXT:",
            "SUCCESSFUL VOICE PATTERNS:",
            "EFFECTIVE HASHTAGS FOR YOUR BRAND:",
            "PROVEN SUCCESSFUL STYLES:",
            "PERFORMANCE INSIGHTS:",
        ]
        positions = [result.index(h) for h in headings]
        assert positions == sorted(positions)

        assert "Brand essence: Brand: Acme Industry: Tech" in result
        assert "SUCCESSFUL VOICE PATTERNS:\nFresh roast every single morning\n" in result
        assert "EFFECTIVE HASHTAGS FOR YOUR BRAND:\n#coffee #morning" in result
        assert "playful (used 1 times successfully)" in result
        assert result.endswith("Your content consistently performs well")

    def test_duplicate_lines_are_dropped(self):
        profile = "Brand: Acme\nIndustry: Tech"
        ctx = context(
            item("brand_1", profile, content_type=ContentType.BRAND_PROFILE, performance=0.7),
            item("brand_2", profile.upper(), content_type=ContentType.BRAND_PROFILE, performance=0.7),
        )
        result = enhance_social_media_prompt(BASE, ctx)
        assert result.lower().count("brand essence:") == 1

    def test_short_first_lines_are_not_voice_patterns(self):
        ctx = context(item("social_1", "Caption: Hi", performance=0.9))
        headings = [heading for heading, _ in build_sections(ctx, ContentType.SOCIAL_MEDIA)]
        assert "SUCCESSFUL VOICE PATTERNS" not in headings

    def test_truncates_at_line_boundary(self, brand_and_post):
        result = enhance_prompt(BASE, brand_and_post, ContentType.SOCIAL_MEDIA, max_chars=70)
        assert result == BASE + "\n\nBRAND VOICE CONTEXT:\nBrand essence: Brand: Acme Industry: Tech"

    def test_truncated_is_prefix_of_full(self, brand_and_post):
        full = enhance_prompt(BASE, brand_and_post, ContentType.SOCIAL_MEDIA, max_chars=10_000)
        for budget in (70, 120, 200):
            short = enhance_prompt(BASE, brand_and_post, ContentType.SOCIAL_MEDIA, max_chars=budget)
            assert full.startswith(short)
            assert len(short) - len(BASE) <= budget


class TestOtherContentTypes:
    """Blog, image and ad campaign wrappers."""

    def test_blog_prompt(self):
        ctx = context(item(
            "blog_1", "Title: Brewing guide",
            content_type=ContentType.BLOG_POST, performance=0.8,
            style="how-to", tags=["seo", "coffee"],
        ))
        result = enhance_blog_prompt("Draft a blog post.", ctx)

        assert "BRAND WRITING STYLE:\nSuccessful brand styles: how-to" in result
        assert "SUCCESSFUL CONTENT APPROACHES:\nhow-to (used 1 times successfully)" in result
        assert "EFFECTIVE SEO KEYWORDS FOR YOUR BRAND:\nseo, coffee" in result
        assert "HASHTAGS" not in result

    def test_image_prompt_lists_styles_to_avoid(self):
        ctx = context(
            item("image_1", "Prompt: neon city", content_type=ContentType.SAVED_IMAGE,
                 performance=0.9, style="cyberpunk"),
            item("image_2", "Prompt: foggy pier", content_type=ContentType.SAVED_IMAGE,
                 performance=0.1, style="grainy"),
        )
        result = enhance_image_prompt("Generate a hero image.", ctx)

        assert "PROVEN SUCCESSFUL STYLES:\ncyberpunk (used 1 times successfully)" in result
        assert (
            "AVOID THESE PATTERNS (performed poorly):\n"
            "Avoid these styles that performed poorly: grainy"
        ) in result

    def test_ad_campaign_low_performance_advice(self):
        ctx = context(
            item("campaign_1", "Campaign: Summer", content_type=ContentType.AD_CAMPAIGN,
                 performance=0.1, style="discount-heavy"),
            item("campaign_2", "Campaign: Winter", content_type=ContentType.AD_CAMPAIGN,
                 performance=0.2),
        )
        result = enhance_ad_campaign_prompt("Plan a campaign.", ctx)

        assert "AVOID THESE MESSAGING PATTERNS:" in result
        assert "PERFORMANCE INSIGHTS:\nConsider adjusting your content strategy" in result
