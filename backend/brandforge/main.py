"""
Main FastAPI application entry point.

Serves the generation-time retrieval API and the admin vectorization
surface. Vectorization jobs themselves run on Celery workers
(brandforge.workers.celery_app).
"""

import time
import uuid
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from brandforge.api import api_router
from brandforge.core.config import settings
from brandforge.core.env_validation import validate_or_exit
from brandforge.core.logging import get_logger, setup_logging
from brandforge.db.session import init_db, close_db, check_db_health
from brandforge.services.processors.embedder import (
    embedding_service_loaded,
    get_embedding_service,
    shutdown_embedding_service,
)
from brandforge.services.rag.errors import (
    EmbeddingError,
    JobNotFoundError,
    JobStateError,
    JobTargetError,
    MalformedContentError,
    RAGError,
    RateLimitExceededError,
    StorageError,
    ValidationError,
)

# Setup logging
setup_logging()
logger = get_logger(__name__)

VERSION = "0.1.0"

# Most specific first; JobNotFoundError is a JobStateError
RAG_ERROR_STATUS = [
    (RateLimitExceededError, 429, "rate_limited"),
    (JobNotFoundError, 404, "job_not_found"),
    (JobStateError, 409, "invalid_job_state"),
    (JobTargetError, 400, "invalid_job_target"),
    (MalformedContentError, 422, "malformed_content"),
    (ValidationError, 400, "invalid_content"),
    (EmbeddingError, 503, "embedding_unavailable"),
    (StorageError, 503, "storage_unavailable"),
]


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan events.

    Startup: validate configuration, open the database pool and, with
    EMBEDDING_PRELOAD, load the embedding model. Shutdown releases both.
    """
    logger.info(
        "starting_application",
        app_name=settings.APP_NAME,
        environment=settings.APP_ENV,
        version=VERSION,
    )

    validate_or_exit()

    await init_db()

    if settings.EMBEDDING_PRELOAD:
        await get_embedding_service()
        logger.info("embedding_model_preloaded", model=settings.EMBEDDING_MODEL)

    yield

    logger.info("shutting_down_application")

    await shutdown_embedding_service()
    await close_db()


# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    description="Brand content RAG engine - retrieval, prompt enhancement and vectorization jobs",
    version=VERSION,
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None,
    lifespan=lifespan,
)

# Add middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(GZipMiddleware, minimum_size=1000)


@app.middleware("http")
async def request_context(request: Request, call_next):
    """
    Bind a request id to every log line written while handling the request.

    Honours an incoming X-Request-ID so traces can be followed from the
    calling generation flow.
    """
    request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=request_id)

    started = time.perf_counter()
    response = await call_next(request)

    response.headers["X-Request-ID"] = request_id
    logger.debug(
        "request_completed",
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        duration_ms=round((time.perf_counter() - started) * 1000, 1),
    )
    return response


@app.get("/health", tags=["health"])
async def health_check() -> JSONResponse:
    """
    Health check endpoint for monitoring.

    Unhealthy (503) only when the database is unreachable; the embedding
    model loads lazily, so "not loaded" is reported but not an error.
    """
    db_healthy = await check_db_health()

    return JSONResponse(
        status_code=200 if db_healthy else 503,
        content={
            "status": "healthy" if db_healthy else "unhealthy",
            "app_name": settings.APP_NAME,
            "environment": settings.APP_ENV,
            "version": VERSION,
            "database": "connected" if db_healthy else "disconnected",
            "embedding_model": settings.EMBEDDING_MODEL,
            "embedding_loaded": embedding_service_loaded(),
        }
    )


@app.get("/", tags=["root"])
async def root() -> JSONResponse:
    return JSONResponse(
        content={
            "message": f"Welcome to {settings.APP_NAME} API",
            "version": VERSION,
            "api": settings.API_V1_PREFIX,
            "docs": "/docs" if settings.DEBUG else "Documentation disabled in production",
        }
    )


# Include API routers
app.include_router(api_router, prefix=settings.API_V1_PREFIX)


@app.exception_handler(RAGError)
async def rag_exception_handler(request: Request, exc: RAGError) -> JSONResponse:
    """
    Map engine errors that escaped a route to HTTP responses.

    Routes translate the errors they expect; this covers the rest.
    """
    status_code, code = 500, "rag_error"
    for error_type, mapped_status, mapped_code in RAG_ERROR_STATUS:
        if isinstance(exc, error_type):
            status_code, code = mapped_status, mapped_code
            break

    logger.warning(
        "rag_error",
        error_type=type(exc).__name__,
        error=str(exc),
        path=request.url.path,
        status_code=status_code,
    )

    headers = None
    if isinstance(exc, RateLimitExceededError):
        headers = {"Retry-After": str(exc.retry_after_seconds)}

    return JSONResponse(
        status_code=status_code,
        content={"error": {"code": code, "message": str(exc)}},
        headers=headers,
    )


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Global exception handler for unhandled errors.
    """
    logger.error(
        "unhandled_exception",
        error=str(exc),
        path=request.url.path,
        method=request.method,
        exc_info=True,
    )

    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "internal_server_error",
                "message": "An unexpected error occurred. Please try again later.",
            }
        },
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "brandforge.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower(),
    )
