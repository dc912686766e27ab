"""
Startup validation of the environment.

The API calls validate_or_exit() from its lifespan. Secrets, the database
and broker URLs, and the retrieval/job tuning values are checked together
so an operator sees every problem in one run instead of one per restart.
"""

import sys
from typing import List, Optional, Tuple

from brandforge.core.config import settings
from brandforge.core.logging import get_logger
from brandforge.models.content import ContentType

logger = get_logger(__name__)

PLACEHOLDER_MARKERS = ("change", "your-", "example")


def validate_secret_key(key_name: str, key_value: Optional[str], min_length: int = 32) -> List[str]:
    """Errors for a missing, short, placeholder or reused secret."""
    if not key_value:
        return [f"{key_name} is not set"]

    errors = []
    if len(key_value) < min_length:
        errors.append(f"{key_name} is too short (must be at least {min_length} characters)")

    if any(marker in key_value.lower() for marker in PLACEHOLDER_MARKERS):
        errors.append(f"{key_name} appears to be a placeholder value - update with a real secret key")

    if key_name == "JWT_SECRET_KEY" and key_value == settings.SECRET_KEY:
        errors.append("JWT_SECRET_KEY should be different from SECRET_KEY for security")

    return errors


def validate_database_url() -> List[str]:
    """
    Vector search needs PostgreSQL with pgvector. Only staging (which the
    test suite runs as) may point at another database.
    """
    if not settings.DATABASE_URL:
        return ["DATABASE_URL is not set"]

    if settings.APP_ENV != "staging" and not settings.DATABASE_URL.startswith("postgresql+asyncpg://"):
        return ["DATABASE_URL must use asyncpg driver (format: postgresql+asyncpg://...)"]

    return []


def validate_broker_url() -> List[str]:
    if not settings.CELERY_BROKER_URL:
        return ["CELERY_BROKER_URL is not set"]

    if not settings.CELERY_BROKER_URL.startswith(("redis://", "rediss://")):
        return ["CELERY_BROKER_URL must start with redis:// (format: redis://host:port/db)"]

    return []


def validate_rag_settings() -> List[str]:
    """
    Retrieval, ranking and prompt augmentation settings.

    Weights that don't sum to 1.0 are normalized by the retriever, so they
    only warn. All-zero weights make ranking meaningless and are an error.
    """
    errors = []

    total = (
        settings.RAG_WEIGHT_SIMILARITY
        + settings.RAG_WEIGHT_RECENCY
        + settings.RAG_WEIGHT_PERFORMANCE
    )
    if total <= 0:
        errors.append("RAG ranking weights must not all be zero")
    elif abs(total - 1.0) > 1e-6:
        logger.warning("rag_weights_not_normalized", total=total)

    if settings.RAG_CANDIDATE_POOL_SIZE < settings.RAG_TOP_K:
        errors.append("RAG_CANDIDATE_POOL_SIZE must be >= RAG_TOP_K")

    if settings.EMBEDDING_DIMENSION <= 0:
        errors.append("EMBEDDING_DIMENSION must be positive")

    known_types = {content_type.value for content_type in ContentType}
    unknown = sorted(set(settings.RAG_CONTENT_TYPE_BOOSTS) - known_types)
    if unknown:
        errors.append(f"RAG_CONTENT_TYPE_BOOSTS has unknown content types: {', '.join(unknown)}")

    if settings.RAG_RETRIEVAL_TIMEOUT_SECONDS <= 0:
        errors.append("RAG_RETRIEVAL_TIMEOUT_SECONDS must be positive")

    return errors


def validate_job_settings() -> List[str]:
    """
    A job counts as stale after VECTORIZATION_STALE_JOB_SECONDS without a
    progress write. The reconciler must run more often than that, or
    stuck jobs wait a full extra interval before they are re-dispatched.
    """
    errors = []

    if settings.VECTORIZATION_STALE_JOB_SECONDS <= 0:
        errors.append("VECTORIZATION_STALE_JOB_SECONDS must be positive")
    elif settings.VECTORIZATION_RECONCILE_INTERVAL_MINUTES * 60 > settings.VECTORIZATION_STALE_JOB_SECONDS:
        logger.warning(
            "reconcile_interval_exceeds_stale_threshold",
            interval_minutes=settings.VECTORIZATION_RECONCILE_INTERVAL_MINUTES,
            stale_seconds=settings.VECTORIZATION_STALE_JOB_SECONDS,
        )

    if settings.VECTORIZATION_CAS_RETRIES < 1:
        errors.append("VECTORIZATION_CAS_RETRIES must be at least 1")

    return errors


def validate_production_settings() -> List[str]:
    errors = []

    if settings.DEBUG:
        errors.append("DEBUG must be false in production")

    if not settings.SENTRY_DSN:
        logger.warning("sentry_not_configured")

    if "localhost" in settings.ALLOWED_ORIGINS:
        logger.warning("localhost_in_allowed_origins")

    if settings.LOG_FORMAT != "json":
        logger.warning("log_format_not_json", log_format=settings.LOG_FORMAT)

    if settings.EMBEDDING_DEVICE == "cpu" and not settings.EMBEDDING_PRELOAD:
        # First retrieval after a deploy would pay the model load
        logger.warning("embedding_model_loaded_lazily")

    return errors


def validate_environment() -> Tuple[bool, List[str]]:
    """Run every check. Returns (is_valid, errors)."""
    logger.info("validating_environment", app_env=settings.APP_ENV)

    errors: List[str] = []
    errors.extend(validate_secret_key("SECRET_KEY", settings.SECRET_KEY))
    errors.extend(validate_secret_key("JWT_SECRET_KEY", settings.JWT_SECRET_KEY))
    errors.extend(validate_database_url())
    errors.extend(validate_broker_url())
    errors.extend(validate_rag_settings())
    errors.extend(validate_job_settings())

    if settings.is_production:
        errors.extend(validate_production_settings())

    if errors:
        logger.error("environment_validation_failed", errors=errors, error_count=len(errors))
        return False, errors

    logger.info(
        "environment_validation_successful",
        app_env=settings.APP_ENV,
        embedding_model=settings.EMBEDDING_MODEL,
        embedding_dimension=settings.EMBEDDING_DIMENSION,
        rate_limit=settings.RAG_RATE_LIMIT_ENABLED,
    )
    return True, []


def validate_or_exit() -> None:
    is_valid, errors = validate_environment()

    if not is_valid:
        logger.critical("startup_aborted_invalid_environment", errors=errors)
        print("\nENVIRONMENT VALIDATION FAILED\n")
        for i, error in enumerate(errors, 1):
            print(f"  {i}. {error}")
        print("\nFix these errors and restart the application.\n")
        sys.exit(1)
