"""Embedding service for dense (OpenAI) vector generation.

Turns knowledge chunks and incoming queries into fixed-length vectors.
Large inputs are split into provider-sized batches which are sent
concurrently and flattened back into input order.

Rate limit handling uses exponential backoff on OpenAI API calls.
"""

from __future__ import annotations

import asyncio
import logging

from openai import APITimeoutError, AsyncOpenAI, OpenAIError, RateLimitError
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from src.knowledge.config import KnowledgeBaseConfig

logger = logging.getLogger(__name__)


class EmbeddingError(RuntimeError):
    """Raised when the embedding provider fails or times out."""


class EmbeddingService:
    """Generates dense embeddings for knowledge base operations.

    Args:
        config: Knowledge base configuration with API key and model settings.
        client: Optional pre-built AsyncOpenAI client (tests inject a mock).
    """

    def __init__(
        self, config: KnowledgeBaseConfig, client: AsyncOpenAI | None = None
    ) -> None:
        self._config = config
        self._openai = client or AsyncOpenAI(
            api_key=config.openai_api_key or "missing",
            timeout=config.embedding_timeout,
            max_retries=0,
        )
        self._model = config.embedding_model
        self._dimensions = config.embedding_dimensions
        self._batch_size = max(1, config.embedding_batch_size)

    @property
    def batch_size(self) -> int:
        """Maximum number of texts sent in one provider request."""
        return self._batch_size

    async def embed_text(self, text: str) -> list[float]:
        """Generate the embedding for a single text.

        Args:
            text: Non-empty input text. Truncation is the caller's job.

        Returns:
            Dense embedding vector.

        Raises:
            EmbeddingError: If the provider call fails.
        """
        vectors = await self._embed_request([text])
        return vectors[0]

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Generate embeddings for any number of texts, preserving order.

        The input is split into ``batch_size`` slices and every slice is
        requested concurrently. If any slice fails the whole call fails,
        the outstanding slices are cancelled and partial results are never
        returned.

        Args:
            texts: Input texts to embed.

        Returns:
            One vector per input text, in input order.

        Raises:
            EmbeddingError: If any batch request fails.
        """
        if not texts:
            return []

        batches = [
            texts[i : i + self._batch_size]
            for i in range(0, len(texts), self._batch_size)
        ]
        tasks = [asyncio.create_task(self._embed_request(batch)) for batch in batches]
        try:
            results = await asyncio.gather(*tasks)
        except BaseException:
            # Stop the sibling requests and collect their outcomes
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        vectors: list[list[float]] = []
        for batch_vectors in results:
            vectors.extend(batch_vectors)

        logger.info(
            "Generated %d embeddings in %d concurrent batches",
            len(vectors),
            len(batches),
        )
        return vectors

    async def _embed_request(self, texts: list[str]) -> list[list[float]]:
        """Issue one embeddings request with exponential backoff on rate limits.

        Args:
            texts: Input texts for a single provider request.

        Returns:
            Vectors ordered to match ``texts``.

        Raises:
            EmbeddingError: On timeout, exhausted retries, or provider errors.
        """
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(max(1, self._config.embedding_max_retries)),
                wait=wait_exponential(multiplier=1, min=1, max=10),
                retry=retry_if_exception_type(RateLimitError),
                reraise=True,
            ):
                with attempt:
                    if attempt.retry_state.attempt_number > 1:
                        logger.warning(
                            "OpenAI rate limit hit, retrying (attempt %d/%d)",
                            attempt.retry_state.attempt_number,
                            self._config.embedding_max_retries,
                        )
                    response = await self._openai.embeddings.create(
                        input=texts,
                        model=self._model,
                        dimensions=self._dimensions,
                    )
        except APITimeoutError as exc:
            raise EmbeddingError("Embedding request timed out") from exc
        except OpenAIError as exc:
            raise EmbeddingError(f"Embedding request failed: {exc}") from exc

        data = sorted(response.data, key=lambda item: item.index)
        if len(data) != len(texts):
            raise EmbeddingError(
                f"Embedding provider returned {len(data)} vectors for {len(texts)} inputs"
            )
        return [list(item.embedding) for item in data]
