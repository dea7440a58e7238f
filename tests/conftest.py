"""Shared pytest fixtures for the pipeline test suite.

Provides:
  - MockLLMProvider: deterministic embeddings and canned completions
  - InMemoryBlobStore: dict-backed BlobStore
  - session_factory: real SQLAlchemy async sessions on a temp SQLite file
  - qdrant: the real QdrantService on qdrant-client's in-process :memory: mode
  - ingestion / query_service / learning_loop: services wired from the above
  - seed helpers for knowledge bases and agents

Only model providers are faked. Storage runs on real engines so status
transitions, chunk rows and vector counts are exercised end to end.
"""

from __future__ import annotations

import io
import math
import uuid
from typing import Any

import pytest
from pypdf import PdfWriter
from qdrant_client import AsyncQdrantClient

from app.db.blob import BlobStore
from app.db.postgres import build_engine, build_session_factory, close_engine, create_schema
from app.db.qdrant import QdrantService
from app.models.agent import Agent
from app.models.knowledge import KnowledgeBase
from app.services.agent.core import AgentQueryService
from app.services.agent.learning import LearningLoop
from app.services.llm.base import (
    IndexedEmbedding,
    LLMProvider,
    LLMResponse,
    ProviderKind,
    ProviderRegistry,
)
from app.services.rag.embedding import EmbeddingService
from app.services.rag.extraction import DocumentExtractor
from app.services.rag.generation import ResponseGenerator
from app.services.rag.ingestion import IngestionService
from app.services.rag.retrieval import RetrievalService

EMBED_DIM = 8


def unit(*components: float) -> list[float]:
    """Pad to EMBED_DIM and normalize."""
    vec = list(components) + [0.0] * (EMBED_DIM - len(components))
    norm = math.sqrt(sum(v * v for v in vec)) or 1.0
    return [v / norm for v in vec]


def axis(i: int) -> list[float]:
    vec = [0.0] * EMBED_DIM
    vec[i] = 1.0
    return vec


def blank_pdf(pages: int) -> bytes:
    writer = PdfWriter()
    for _ in range(pages):
        writer.add_blank_page(width=72, height=72)
    out = io.BytesIO()
    writer.write(out)
    return out.getvalue()


# ---------------------------------------------------------------------------
# Mock LLM Provider
# ---------------------------------------------------------------------------


class MockLLMProvider(LLMProvider):
    """Mock provider. Embeddings come from keyword → vector ``topics``.

    The first topic keyword found (case-insensitive) in a text picks its
    vector; texts with no keyword get ``default_vector``. Batches are
    returned in reverse order to exercise index re-sorting.
    """

    kind = ProviderKind.OPENAI

    def __init__(
        self,
        generate_text: str = "Mock response",
        topics: dict[str, list[float]] | None = None,
        default_vector: list[float] | None = None,
        fail_embed: bool = False,
        fail_generate: bool = False,
        vision_text: str | None = None,
    ) -> None:
        self._generate_text = generate_text
        self.topics = dict(topics or {})
        self._default_vector = default_vector or axis(EMBED_DIM - 1)
        self.fail_embed = fail_embed
        self.fail_generate = fail_generate
        self.vision_text = vision_text
        self.generate_calls: list[dict[str, Any]] = []
        self.embed_calls: list[list[str]] = []
        self.extract_calls: list[dict[str, Any]] = []

    def vector_for(self, text: str) -> list[float]:
        lowered = text.lower()
        for keyword, vector in self.topics.items():
            if keyword.lower() in lowered:
                return list(vector)
        return list(self._default_vector)

    async def generate(
        self,
        prompt: str,
        system_prompt: str,
        max_tokens: int = 1024,
        temperature: float = 0.7,
        model: str | None = None,
    ) -> LLMResponse:
        self.generate_calls.append(
            {
                "prompt": prompt,
                "system_prompt": system_prompt,
                "max_tokens": max_tokens,
                "temperature": temperature,
                "model": model,
            }
        )
        if self.fail_generate:
            raise RuntimeError("Mock generate failed")
        return LLMResponse(
            text=self._generate_text,
            input_tokens=50,
            output_tokens=10,
            model=model or "mock-model",
        )

    async def embed_batch(self, texts: list[str]) -> list[IndexedEmbedding]:
        self.embed_calls.append(list(texts))
        if self.fail_embed:
            raise RuntimeError("Mock embed failed")
        results = [IndexedEmbedding(index=i, vector=self.vector_for(t)) for i, t in enumerate(texts)]
        return list(reversed(results))

    async def extract_document(self, data: bytes, mime_type: str, title: str) -> str:
        self.extract_calls.append({"data": data, "mime_type": mime_type, "title": title})
        if self.vision_text is None:
            raise RuntimeError("Mock vision unavailable")
        return self.vision_text


# ---------------------------------------------------------------------------
# In-memory blob store
# ---------------------------------------------------------------------------


class InMemoryBlobStore(BlobStore):
    def __init__(self) -> None:
        self.objects: dict[str, bytes] = {}
        self.download_calls: list[str] = []

    async def upload(self, key: str, data: bytes, content_type: str | None = None) -> None:
        self.objects[key] = data

    async def download(self, key: str) -> bytes:
        from app.core.exceptions import BlobStoreError

        self.download_calls.append(key)
        if key not in self.objects:
            raise BlobStoreError(f"Blob '{key}' not found")
        return self.objects[key]

    async def delete(self, key: str) -> None:
        self.objects.pop(key, None)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_llm() -> MockLLMProvider:
    return MockLLMProvider()


@pytest.fixture
def providers(mock_llm: MockLLMProvider) -> ProviderRegistry:
    return ProviderRegistry({ProviderKind.OPENAI: mock_llm})


@pytest.fixture
def blob_store() -> InMemoryBlobStore:
    return InMemoryBlobStore()


@pytest.fixture
def database_url(tmp_path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'test.db'}"


@pytest.fixture
async def session_factory(database_url: str):
    engine = build_engine(database_url)
    await create_schema(engine)
    yield build_session_factory(engine)
    await close_engine(engine)


@pytest.fixture
async def qdrant():
    service = QdrantService(AsyncQdrantClient(location=":memory:"), vector_size=EMBED_DIM)
    yield service
    await service.close()


@pytest.fixture
def embeddings(mock_llm: MockLLMProvider) -> EmbeddingService:
    return EmbeddingService(mock_llm)


@pytest.fixture
def ingestion(session_factory, blob_store, mock_llm, embeddings, qdrant) -> IngestionService:
    return IngestionService(
        session_factory=session_factory,
        blob_store=blob_store,
        extractor=DocumentExtractor(vision=mock_llm),
        embeddings=embeddings,
        qdrant=qdrant,
        concurrency=2,
    )


@pytest.fixture
async def learning_loop(ingestion: IngestionService):
    loop = LearningLoop(ingestion, maxsize=10)
    loop.start()
    yield loop
    await loop.stop()


@pytest.fixture
def query_service(session_factory, embeddings, qdrant, providers, learning_loop) -> AgentQueryService:
    return AgentQueryService(
        session_factory=session_factory,
        retrieval=RetrievalService(embeddings, qdrant),
        generator=ResponseGenerator(),
        providers=providers,
        learning=learning_loop,
    )


@pytest.fixture
def sample_tenant_id() -> str:
    return "acme"


# ---------------------------------------------------------------------------
# Seed helpers
# ---------------------------------------------------------------------------


async def create_knowledge_base(session_factory, tenant_id: str, name: str = "Handbook") -> KnowledgeBase:
    async with session_factory() as session:
        kb = KnowledgeBase(tenant_id=tenant_id, name=name)
        session.add(kb)
        await session.commit()
        return kb


async def create_agent(
    session_factory,
    tenant_id: str,
    knowledge_bases: list[KnowledgeBase] | None = None,
    **overrides: Any,
) -> Agent:
    values: dict[str, Any] = {
        "tenant_id": tenant_id,
        "name": "Helper",
        "system_prompt": "You are a helpful assistant.",
        "provider": "openai",
        "model": "gpt-4-turbo-preview",
        "temperature": 0.7,
        "max_tokens": 1024,
        "confidence_threshold": 0.7,
        "is_active": True,
    }
    values.update(overrides)
    async with session_factory() as session:
        agent = Agent(id=uuid.uuid4(), **values)
        if knowledge_bases:
            kbs = [await session.get(KnowledgeBase, kb.id) for kb in knowledge_bases]
            agent.knowledge_bases = kbs
        session.add(agent)
        await session.commit()
        return agent


async def ingest_text(
    ingestion: IngestionService,
    tenant_id: str,
    text: str,
    title: str = "Expense Policy",
    knowledge_base_id: Any = None,
) -> str:
    """Create a TXT document from ``text`` and run it through the pipeline."""
    document = await ingestion.create_document(
        tenant_id=tenant_id,
        title=title,
        file_name=f"{title.lower().replace(' ', '-')}.txt",
        file_type="TXT",
        raw_content=text,
        knowledge_base_id=knowledge_base_id,
    )
    result = await ingestion.process_document(document.id)
    assert result.success, result.error
    return str(document.id)
