"""
Settings for the API and the Celery workers (pydantic-settings).

Everything tunable about retrieval, ranking, prompt augmentation and
vectorization jobs is read here from the environment or .env; nothing
else in the package reads os.environ.
"""

from typing import Dict, List, Literal, Optional
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Process-wide settings; import the `settings` instance, not this class."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ================================
    # Application Configuration
    # ================================
    APP_NAME: str = "BrandForge"
    APP_ENV: Literal["development", "staging", "production"] = "development"
    DEBUG: bool = True
    SECRET_KEY: str = Field(..., min_length=32)

    # API Configuration
    API_V1_PREFIX: str = "/api/v1"
    ALLOWED_ORIGINS: str = "http://localhost:3000,http://localhost:8000"

    @property
    def allowed_origins_list(self) -> List[str]:
        """Parse comma-separated origins into list."""
        return [origin.strip() for origin in self.ALLOWED_ORIGINS.split(",") if origin.strip()]

    # ================================
    # Database Configuration
    # ================================
    DATABASE_URL: str = Field(..., description="PostgreSQL connection string")
    DB_ECHO: bool = False
    DB_POOL_SIZE: int = 20
    DB_MAX_OVERFLOW: int = 10

    # ================================
    # JWT Configuration
    # ================================
    JWT_SECRET_KEY: str = Field(..., min_length=32)
    JWT_ALGORITHM: str = "HS256"
    JWT_ACCESS_TOKEN_EXPIRE_MINUTES: int = 10080  # 7 days

    # ================================
    # Embedding Configuration
    # ================================
    EMBEDDING_MODEL: str = "google/embeddinggemma-300m"
    EMBEDDING_DIMENSION: int = 768
    EMBEDDING_DEVICE: Literal["cpu", "cuda", "mps"] = "cpu"
    # Load the model during API startup instead of on the first retrieval
    EMBEDDING_PRELOAD: bool = False

    # ================================
    # RAG Retrieval
    # ================================
    RAG_TOP_K: int = 5
    RAG_CANDIDATE_POOL_SIZE: int = 20
    RAG_SIMILARITY_THRESHOLD: float = Field(0.7, ge=0.0, le=1.0)
    RAG_RETRIEVAL_TIMEOUT_SECONDS: float = 2.0

    # ================================
    # RAG Ranking
    # ================================
    # Normalized to sum to 1.0 by the retriever when they don't
    RAG_WEIGHT_SIMILARITY: float = Field(0.6, ge=0.0)
    RAG_WEIGHT_RECENCY: float = Field(0.3, ge=0.0)
    RAG_WEIGHT_PERFORMANCE: float = Field(0.1, ge=0.0)
    RAG_RECENCY_WINDOW_DAYS: int = Field(365, gt=0)
    RAG_CONTENT_TYPE_BOOSTS: Dict[str, float] = {
        "brand_profile": 1.25,
        "social_media": 1.0,
        "blog_post": 1.0,
        "saved_image": 0.9,
        "ad_campaign": 1.0,
    }

    # ================================
    # RAG Confidence & Insights
    # ================================
    # Share of the confidence score driven by coverage (rest by consistency)
    RAG_CONFIDENCE_COVERAGE_WEIGHT: float = Field(0.5, ge=0.0, le=1.0)
    RAG_MIN_CONFIDENCE_FOR_INSIGHTS: float = Field(0.3, ge=0.0, le=1.0)
    RAG_MIN_CONFIDENCE_FOR_AUGMENTATION: float = Field(0.3, ge=0.0, le=1.0)
    RAG_INSIGHT_MIN_SUPPORT: int = Field(2, ge=1)
    RAG_HIGH_PERFORMANCE_THRESHOLD: float = Field(0.7, ge=0.0, le=1.0)
    RAG_MAX_HASHTAGS: int = 10

    # ================================
    # Prompt Augmentation
    # ================================
    RAG_MAX_AUGMENTATION_CHARS: int = Field(8000, gt=0)
    RAG_EXCERPT_CHARS: int = 200
    # Share of users (by stable id bucket) whose prompts get augmented;
    # the rest are the baseline group
    RAG_ROLLOUT_PERCENTAGE: int = Field(100, ge=0, le=100)

    # ================================
    # Embedding Rate Limiting
    # ================================
    RAG_RATE_LIMIT_ENABLED: bool = False
    RAG_RATE_LIMIT_PER_HOUR: int = 50
    RAG_RATE_LIMIT_PER_DAY: int = 500

    # ================================
    # Vectorization Jobs
    # ================================
    VECTORIZATION_STALE_JOB_SECONDS: int = 15 * 60
    VECTORIZATION_RECONCILE_INTERVAL_MINUTES: int = 5
    VECTORIZATION_CAS_RETRIES: int = 5

    # ================================
    # Celery Configuration
    # ================================
    CELERY_BROKER_URL: str = "redis://redis:6379/0"
    CELERY_RESULT_BACKEND: str = "redis://redis:6379/0"
    CELERY_TASK_SERIALIZER: str = "json"
    CELERY_RESULT_SERIALIZER: str = "json"
    # Comma-separated
    CELERY_ACCEPT_CONTENT: str = "json"
    CELERY_TIMEZONE: str = "UTC"
    CELERY_ENABLE_UTC: bool = True

    @property
    def celery_accept_content_list(self) -> List[str]:
        """Parse CELERY_ACCEPT_CONTENT into a list."""
        return [item.strip() for item in self.CELERY_ACCEPT_CONTENT.split(",")]

    # ================================
    # Logging Configuration
    # ================================
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    LOG_FORMAT: Literal["json", "text"] = "json"

    # ================================
    # Monitoring (optional)
    # ================================
    SENTRY_DSN: Optional[str] = None

    @field_validator("RAG_CONTENT_TYPE_BOOSTS")
    @classmethod
    def validate_boosts(cls, v: Dict[str, float]) -> Dict[str, float]:
        """Content type boosts must be non-negative."""
        for content_type, boost in v.items():
            if boost < 0:
                raise ValueError(f"Boost for {content_type} must be >= 0")
        return v

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.APP_ENV == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.APP_ENV == "production"


# Global settings instance
settings = Settings()
