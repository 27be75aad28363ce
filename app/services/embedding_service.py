"""Embedding gateway backed by Gemini embeddings."""

import logging
from collections.abc import Sequence

import google.generativeai as genai
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from app.core.config import Settings, settings
from app.exceptions.ai import (
    TRANSIENT_AI_ERRORS,
    AIConfigurationError,
    AIServiceError,
    EmbeddingError,
    map_provider_error,
)

logger = logging.getLogger(__name__)

TASK_RETRIEVAL_DOCUMENT = "retrieval_document"
TASK_RETRIEVAL_QUERY = "retrieval_query"


class EmbeddingService:
    """Turn texts into vectors, one per input, in input order.

    Inputs are sent in batches of ``embedding_batch_size``. Provider errors
    surface as ``EmbeddingError`` (or a more specific AI error); retrying is
    the caller's choice through ``max_attempts``.
    """

    def __init__(self, config: Settings = settings, max_attempts: int | None = None):
        if not config.gemini_api_key:
            raise AIConfigurationError("Gemini API key not configured")
        genai.configure(api_key=config.gemini_api_key)
        self.model = config.embedding_model
        self.batch_size = config.embedding_batch_size
        self.max_attempts = max_attempts or config.embedding_max_attempts

    async def embed(
        self, texts: Sequence[str], task_type: str = TASK_RETRIEVAL_DOCUMENT
    ) -> list[list[float]]:
        vectors: list[list[float]] = []
        for i in range(0, len(texts), self.batch_size):
            batch = list(texts[i : i + self.batch_size])
            vectors.extend(await self._embed_with_retry(batch, task_type))
        if len(vectors) != len(texts):
            raise EmbeddingError(
                f"Embedding provider returned {len(vectors)} vectors for {len(texts)} inputs"
            )
        return vectors

    async def embed_query(self, text: str) -> list[float]:
        vectors = await self.embed([text], task_type=TASK_RETRIEVAL_QUERY)
        return vectors[0]

    async def _embed_with_retry(self, batch: list[str], task_type: str) -> list[list[float]]:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=1, min=1, max=10),
            retry=retry_if_exception_type(TRANSIENT_AI_ERRORS),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        return await retrying(self._embed_batch, batch, task_type)

    async def _embed_batch(self, batch: list[str], task_type: str) -> list[list[float]]:
        try:
            result = await genai.embed_content_async(
                model=self.model, content=batch, task_type=task_type
            )
        except Exception as e:
            mapped = map_provider_error(e)
            logger.error(f"Embedding call failed for {len(batch)} texts: {mapped.message}")
            if type(mapped) is AIServiceError:
                raise EmbeddingError(f"Embedding request failed: {e}") from e
            raise mapped from e

        embedding = result["embedding"]
        # A single input comes back as one flat vector.
        if embedding and not isinstance(embedding[0], list | tuple):
            return [list(embedding)]
        return [list(vector) for vector in embedding]
