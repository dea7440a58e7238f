"""Embedding orchestrator.

Sends texts to the configured embedding provider in sequential batches
of at most 100, re-sorts every batch by the index the provider reports,
and fails the whole call if any batch fails or comes back short.
"""

from __future__ import annotations

import asyncio

import structlog

from app.core.exceptions import EmbeddingProviderError
from app.services.llm.base import LLMProvider

logger = structlog.get_logger(__name__)

MAX_BATCH_SIZE = 100


class EmbeddingService:
    def __init__(
        self,
        provider: LLMProvider,
        batch_size: int = MAX_BATCH_SIZE,
        timeout: float | None = None,
    ) -> None:
        self._provider = provider
        self._batch_size = min(batch_size, MAX_BATCH_SIZE)
        self._timeout = timeout

    async def embed_query(self, text: str) -> list[float]:
        vectors = await self.embed_many([text])
        return vectors[0]

    async def embed_many(self, texts: list[str]) -> list[list[float]]:
        """Embed ``texts``, returning vectors in input order."""
        if not texts:
            return []

        vectors: list[list[float]] = []
        for offset in range(0, len(texts), self._batch_size):
            batch = texts[offset : offset + self._batch_size]
            vectors.extend(await self._embed_batch(batch, offset))

        logger.debug("embedding_batch_ok", text_count=len(texts))
        return vectors

    async def _embed_batch(self, batch: list[str], offset: int) -> list[list[float]]:
        try:
            call = self._provider.embed_batch(batch)
            if self._timeout:
                results = await asyncio.wait_for(call, timeout=self._timeout)
            else:
                results = await call
        except asyncio.TimeoutError as e:
            logger.error("embedding_timeout", batch_offset=offset, batch_size=len(batch))
            raise EmbeddingProviderError(
                f"Embedding batch at offset {offset} timed out after {self._timeout}s"
            ) from e
        except Exception as e:
            logger.error(
                "embedding_failed",
                batch_offset=offset,
                batch_size=len(batch),
                error=str(e),
            )
            raise EmbeddingProviderError(f"Embedding batch at offset {offset} failed: {e}") from e

        if len(results) != len(batch):
            raise EmbeddingProviderError(
                f"Embedding provider returned {len(results)} vectors for {len(batch)} inputs"
            )
        return [r.vector for r in sorted(results, key=lambda r: r.index)]
