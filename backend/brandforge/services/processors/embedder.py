"""
Embedding provider for the vector store.

Content text is embedded when it is vectorized (batch jobs and the brand
profile endpoint) and request signals are embedded at retrieval time.
Both go through the same sentence-transformers model so the vectors are
comparable; the model name and dimension are fixed per deployment by
EMBEDDING_MODEL / EMBEDDING_DIMENSION.

The model is loaded once per process (API or Celery worker) and encode
calls run in a worker thread so they never block the event loop.
"""

import asyncio
import logging
from typing import Optional

import numpy as np
from sentence_transformers import SentenceTransformer
import torch

from brandforge.core.config import settings

logger = logging.getLogger(__name__)

RETRY_DELAY_SECONDS = 1


class EmbeddingService:
    """
    Wraps a SentenceTransformer model.

    Usage:
    ------
    embedder = EmbeddingService()
    await embedder.initialize()
    vector = await embedder.embed_text("Brand: Acme\\nIndustry: Tech")
    """

    def __init__(
        self,
        model_name: str = None,
        device: str = None,
        normalize: bool = True
    ):
        self.model_name = model_name or settings.EMBEDDING_MODEL
        self.device = self._available_device(device or settings.EMBEDDING_DEVICE)
        # Unit-length output makes the pgvector cosine operator and the
        # in-process fallback agree
        self.normalize = normalize
        self.model: Optional[SentenceTransformer] = None
        self._initialized = False

    @staticmethod
    def _available_device(device: str) -> str:
        if device == "cuda" and not torch.cuda.is_available():
            logger.warning("CUDA not available, falling back to CPU")
            return "cpu"
        if device == "mps" and not torch.backends.mps.is_available():
            logger.warning("MPS not available, falling back to CPU")
            return "cpu"
        return device

    async def initialize(self) -> None:
        """
        Load the model (downloading it on first use). Idempotent.

        Logs a warning when the model's dimension differs from
        EMBEDDING_DIMENSION; the vector store will then reject every
        vector it produces.
        """
        if self._initialized:
            return

        logger.info(f"Loading embedding model: {self.model_name} on {self.device}")

        try:
            self.model = await asyncio.to_thread(
                SentenceTransformer,
                self.model_name,
                device=self.device
            )
        except Exception as e:
            logger.error(f"Failed to load embedding model {self.model_name}: {e}")
            raise

        self._initialized = True

        dimension = self.get_embedding_dimension()
        if dimension != settings.EMBEDDING_DIMENSION:
            logger.warning(
                f"Model {self.model_name} produces {dimension}-dim vectors but "
                f"EMBEDDING_DIMENSION is {settings.EMBEDDING_DIMENSION}"
            )
        logger.info(f"Embedding model ready (dimension={dimension}, device={self.device})")

    def get_embedding_dimension(self) -> int:
        """Model dimension once loaded, the configured dimension before that."""
        if not self._initialized or self.model is None:
            return settings.EMBEDDING_DIMENSION
        return self.model.get_sentence_embedding_dimension()

    async def embed_text(self, text: str, retry_on_error: bool = True) -> list[float]:
        """
        Embed one text.

        Blank text yields a zero vector without calling the model; the
        vector store refuses zero vectors, so callers see that as an
        embedding failure. A failed encode is retried once after a short
        pause, then the error propagates.

        Raises:
            RuntimeError: If initialize() has not been called
        """
        if not self._initialized:
            raise RuntimeError("Embedding service not initialized. Call initialize() first.")

        if not text or not text.strip():
            logger.warning("Empty text provided for embedding")
            return [0.0] * self.get_embedding_dimension()

        try:
            embedding = await asyncio.to_thread(self._encode, text)
        except Exception as e:
            if not retry_on_error:
                raise
            logger.warning(f"Embedding failed ({e}), retrying once")
            await asyncio.sleep(RETRY_DELAY_SECONDS)
            return await self.embed_text(text, retry_on_error=False)

        return embedding.tolist()

    def _encode(self, text: str) -> np.ndarray:
        return self.model.encode(
            text,
            normalize_embeddings=self.normalize,
            show_progress_bar=False
        )

    async def shutdown(self) -> None:
        if self.model is not None:
            if self.device == "cuda":
                torch.cuda.empty_cache()
            self.model = None

        self._initialized = False
        logger.info("Embedding service shut down")


def cosine_similarities(query: list[float], candidates: list) -> np.ndarray:
    """
    Cosine similarity of `query` against each row of `candidates`.

    Used by the vector store when the database cannot rank vectors itself.
    Works for normalized and raw vectors; zero-norm rows score 0.
    """
    if len(candidates) == 0:
        return np.zeros(0, dtype=float)

    q = np.asarray(query, dtype=float)
    matrix = np.vstack([np.asarray(c, dtype=float) for c in candidates])

    denom = np.linalg.norm(matrix, axis=1) * np.linalg.norm(q)

    sims = np.zeros(matrix.shape[0], dtype=float)
    nonzero = denom > 0
    sims[nonzero] = (matrix[nonzero] @ q) / denom[nonzero]
    return np.clip(sims, -1.0, 1.0)


# ========================================
# Process-wide instance
# ========================================

_embedding_service: Optional[EmbeddingService] = None
_init_lock = asyncio.Lock()


async def get_embedding_service() -> EmbeddingService:
    """
    Return the process-wide service, loading the model on first call.

    Concurrent first requests wait on the same load instead of each
    loading a copy of the model.
    """
    global _embedding_service

    if _embedding_service is not None:
        return _embedding_service

    async with _init_lock:
        if _embedding_service is None:
            service = EmbeddingService()
            await service.initialize()
            _embedding_service = service

    return _embedding_service


async def shutdown_embedding_service() -> None:
    global _embedding_service

    if _embedding_service is not None:
        await _embedding_service.shutdown()
        _embedding_service = None


def embedding_service_loaded() -> bool:
    """Whether this process has loaded the embedding model yet."""
    return _embedding_service is not None
