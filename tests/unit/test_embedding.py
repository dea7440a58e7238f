"""Unit tests for the embedding orchestrator.

Tests:
  - Batches of at most 100, issued in order
  - Output order matches input even when the provider returns shuffled indexes
  - Any batch failure, short batch or timeout → EmbeddingProviderError
"""

from __future__ import annotations

import asyncio

import pytest

from app.core.exceptions import EmbeddingProviderError
from app.services.llm.base import IndexedEmbedding
from app.services.rag.embedding import EmbeddingService
from tests.conftest import MockLLMProvider, axis


class _ShortProvider(MockLLMProvider):
    async def embed_batch(self, texts: list[str]) -> list[IndexedEmbedding]:
        results = await super().embed_batch(texts)
        return results[:-1]


class _SlowProvider(MockLLMProvider):
    async def embed_batch(self, texts: list[str]) -> list[IndexedEmbedding]:
        await asyncio.sleep(1)
        return await super().embed_batch(texts)


class _FailSecondBatch(MockLLMProvider):
    async def embed_batch(self, texts: list[str]) -> list[IndexedEmbedding]:
        if len(self.embed_calls) == 1:
            self.embed_calls.append(list(texts))
            raise RuntimeError("rate limited")
        return await super().embed_batch(texts)


class TestEmbeddingService:
    @pytest.mark.asyncio
    async def test_batches_of_one_hundred(self) -> None:
        provider = MockLLMProvider()
        service = EmbeddingService(provider)

        vectors = await service.embed_many([f"text {i}" for i in range(250)])

        assert len(vectors) == 250
        assert [len(call) for call in provider.embed_calls] == [100, 100, 50]

    @pytest.mark.asyncio
    async def test_batch_size_never_exceeds_limit(self) -> None:
        provider = MockLLMProvider()
        service = EmbeddingService(provider, batch_size=500)
        await service.embed_many(["x"] * 150)
        assert [len(call) for call in provider.embed_calls] == [100, 50]

    @pytest.mark.asyncio
    async def test_order_preserved_after_resort(self) -> None:
        """The mock returns each batch reversed; output must follow input order."""
        provider = MockLLMProvider(topics={"alpha": axis(0), "beta": axis(1), "gamma": axis(2)})
        service = EmbeddingService(provider)

        vectors = await service.embed_many(["alpha", "beta", "gamma"])

        assert vectors == [axis(0), axis(1), axis(2)]

    @pytest.mark.asyncio
    async def test_embed_query_returns_single_vector(self) -> None:
        provider = MockLLMProvider(topics={"leave": axis(3)})
        service = EmbeddingService(provider)
        assert await service.embed_query("annual leave") == axis(3)

    @pytest.mark.asyncio
    async def test_empty_input_makes_no_calls(self) -> None:
        provider = MockLLMProvider()
        assert await EmbeddingService(provider).embed_many([]) == []
        assert provider.embed_calls == []

    @pytest.mark.asyncio
    async def test_provider_failure_raises(self) -> None:
        service = EmbeddingService(MockLLMProvider(fail_embed=True))
        with pytest.raises(EmbeddingProviderError):
            await service.embed_many(["a", "b"])

    @pytest.mark.asyncio
    async def test_failure_in_later_batch_fails_whole_call(self) -> None:
        service = EmbeddingService(_FailSecondBatch())
        with pytest.raises(EmbeddingProviderError, match="offset 100"):
            await service.embed_many(["x"] * 150)

    @pytest.mark.asyncio
    async def test_short_batch_raises(self) -> None:
        service = EmbeddingService(_ShortProvider())
        with pytest.raises(EmbeddingProviderError, match="returned 2 vectors for 3 inputs"):
            await service.embed_many(["a", "b", "c"])

    @pytest.mark.asyncio
    async def test_timeout_raises(self) -> None:
        service = EmbeddingService(_SlowProvider(), timeout=0.01)
        with pytest.raises(EmbeddingProviderError, match="timed out"):
            await service.embed_many(["a"])
