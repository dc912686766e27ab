"""
RAG API Routes

Endpoints used by the generation flows of the current user:
- Retrieve adaptive context (+ insights, + enhanced prompt)
- Vectorize a just-saved brand profile

Retrieval never fails the request: any retrieval error degrades to an
empty context and the base prompt comes back unchanged.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from brandforge.api.deps import get_embedder
from brandforge.core.auth import get_current_active_user
from brandforge.db.deps import get_db
from brandforge.models.content import ContentType, SourceDocument
from brandforge.models.user import User
from brandforge.schemas.rag import (
    BrandProfileVectorizeRequest,
    BrandProfileVectorizeResponse,
    ContextRequest,
    ContextResponse,
    InsightResponse,
    ScoredContentResponse,
)
from brandforge.services.processors.embedder import EmbeddingService
from brandforge.services.rag.errors import (
    EmbeddingError,
    MalformedContentError,
    RateLimitExceededError,
    StorageError,
    ValidationError,
)
from brandforge.services.rag.normalizer import (
    make_content_id,
    normalize_content,
    parse_record,
    should_revectorize,
    source_collection_for,
)
from brandforge.services.rag.prompt_enhancer import enhance_prompt
from brandforge.services.rag.retriever import (
    RequestSignals,
    create_rag_insights_from_context,
    get_adaptive_rag_context,
)
from brandforge.services.rag.vector_store import VectorStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/rag", tags=["rag"])


# ========================================
# Retrieval
# ========================================

@router.post("/context", response_model=ContextResponse)
async def get_context(
    request: ContextRequest,
    current_user: User = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db),
    embedder: EmbeddingService = Depends(get_embedder),
):
    """
    Retrieve the current user's most relevant past content.

    Args:
        request: Generation signals (brand, platform, tone, topic...) and an
            optional base prompt to enhance

    Returns:
        Ranked content, confidence, insights, and the enhanced prompt when
        `basePrompt` was given
    """
    signals = RequestSignals(
        brand_description=request.brand_description,
        brand_name=request.brand_name,
        industry=request.industry,
        platform=request.platform,
        tone=request.tone,
        topic=request.topic,
        language=request.language,
        content_type=request.content_type,
        content_types=request.content_types,
        min_performance=request.min_performance,
        timeframe=request.timeframe,
    )

    context = await get_adaptive_rag_context(db, embedder, current_user.id, signals)

    insights = []
    if request.include_insights:
        insights = create_rag_insights_from_context(context) or []

    enhanced = None
    if request.base_prompt is not None:
        enhanced = enhance_prompt(
            request.base_prompt, context, request.content_type, user_id=current_user.id,
        )

    return ContextResponse(
        confidence=context.confidence,
        query_text=context.query_text,
        relevant_content=[
            ScoredContentResponse.model_validate(item) for item in context.relevant_content
        ],
        insights=[InsightResponse.model_validate(insight) for insight in insights],
        enhanced_prompt=enhanced,
    )


# ========================================
# Interactive Vectorization
# ========================================

@router.post("/vectorize/brand-profile", response_model=BrandProfileVectorizeResponse)
async def vectorize_brand_profile(
    request: BrandProfileVectorizeRequest,
    current_user: User = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db),
    embedder: EmbeddingService = Depends(get_embedder),
):
    """
    Record the user's brand profile and (re)embed it when its text changed.

    The profile is saved as the user's brand_profile source document so
    later batch jobs see the same record. Re-embedding is skipped when the
    new text overlaps the previous profile closely.

    Raises:
        HTTPException 400: Profile has no text content
        HTTPException 422: Profile fields have the wrong shape
        HTTPException 429: Embedding rate limit exceeded
        HTTPException 503: Embedding or storage failed
    """
    doc_id = str(current_user.id)
    content_type = ContentType.BRAND_PROFILE
    content_id = make_content_id(content_type, doc_id)

    try:
        normalized = normalize_content(content_type, doc_id, request.new_brand)
    except MalformedContentError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    await _save_source_document(db, current_user.id, doc_id, request.new_brand)

    old_text = None
    if request.old_brand:
        try:
            old_text = parse_record(content_type, request.old_brand).to_text()
        except MalformedContentError:
            logger.info(f"Previous brand profile of user {current_user.id} unreadable, re-embedding")

    if old_text and not should_revectorize(old_text, normalized.text):
        logger.info(f"Brand profile of user {current_user.id} barely changed, keeping vector")
        return BrandProfileVectorizeResponse(text_vectorized=False, content_id=content_id)

    store = VectorStore(db, embedder)
    try:
        vector = await store.store_normalized(current_user.id, normalized)
    except RateLimitExceededError as e:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=str(e),
            headers={"Retry-After": str(e.retry_after_seconds)},
        )
    except (EmbeddingError, StorageError) as e:
        logger.error(f"Brand profile vectorization failed for user {current_user.id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Brand profile could not be vectorized, please retry",
        )

    return BrandProfileVectorizeResponse(
        text_vectorized=True,
        content_id=vector.content_id,
        version=vector.version,
    )


async def _save_source_document(db: AsyncSession, user_id: int, doc_id: str, data: dict) -> None:
    result = await db.execute(
        select(SourceDocument).where(
            SourceDocument.user_id == user_id,
            SourceDocument.content_type == ContentType.BRAND_PROFILE,
            SourceDocument.doc_id == doc_id,
        )
    )
    document = result.scalar_one_or_none()

    if document is None:
        db.add(SourceDocument(
            user_id=user_id,
            content_type=ContentType.BRAND_PROFILE,
            collection=source_collection_for(ContentType.BRAND_PROFILE),
            doc_id=doc_id,
            data=data,
        ))
    else:
        document.data = data

    try:
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error(f"Failed to save brand profile of user {user_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Brand profile could not be saved, please retry",
        )
