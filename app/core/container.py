"""Process-wide service wiring.

Every client (database engine, Qdrant, model providers, blob store) is
constructed here once from Settings and handed to the services that use
it. The FastAPI lifespan and the ingestion CLI both build a Services
bundle; nothing else creates clients.
"""

from __future__ import annotations

from dataclasses import dataclass

import httpx
import structlog
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from app.core.config import Settings
from app.core.exceptions import ConfigurationError
from app.db.blob import BlobStore, HttpBlobStore, LocalBlobStore
from app.db.postgres import build_engine, build_session_factory, close_engine, create_schema
from app.db.qdrant import QdrantService, build_qdrant_client
from app.services.agent.core import AgentQueryService
from app.services.agent.learning import LearningLoop
from app.services.llm.base import ProviderRegistry
from app.services.llm.factory import build_providers
from app.services.rag.embedding import EmbeddingService
from app.services.rag.extraction import DocumentExtractor
from app.services.rag.generation import ResponseGenerator
from app.services.rag.ingestion import IngestionService
from app.services.rag.retrieval import RetrievalService

logger = structlog.get_logger(__name__)


@dataclass
class Services:
    engine: AsyncEngine
    session_factory: async_sessionmaker[AsyncSession]
    qdrant: QdrantService
    providers: ProviderRegistry
    blob_store: BlobStore
    ingestion: IngestionService
    query: AgentQueryService
    learning: LearningLoop
    http_client: httpx.AsyncClient | None = None

    async def close(self) -> None:
        await self.learning.stop()
        if self.http_client is not None:
            await self.http_client.aclose()
        await self.qdrant.close()
        await close_engine(self.engine)


def build_blob_store(settings: Settings) -> tuple[BlobStore, httpx.AsyncClient | None]:
    backend = settings.blob_backend.lower()
    if backend == "local":
        return LocalBlobStore(settings.blob_root), None
    if backend == "http":
        if not settings.blob_base_url:
            raise ConfigurationError("BLOB_BASE_URL is required for the http blob backend")
        client = httpx.AsyncClient(timeout=settings.blob_timeout_seconds)
        return HttpBlobStore(settings.blob_base_url, client), client
    raise ConfigurationError(f"Unknown blob backend '{settings.blob_backend}'")


async def build_services(settings: Settings, providers: ProviderRegistry | None = None) -> Services:
    """Construct every client and service, creating the schema if needed."""
    engine = build_engine(settings.postgres_url)
    await create_schema(engine)
    session_factory = build_session_factory(engine)

    providers = providers or build_providers(settings)
    embedding_provider = providers.get(settings.embedding_provider)
    try:
        vision_provider = providers.get(settings.default_completion_provider)
    except ConfigurationError:
        vision_provider = embedding_provider

    qdrant = QdrantService(build_qdrant_client(settings), vector_size=settings.embedding_dimensions)
    blob_store, http_client = build_blob_store(settings)

    embeddings = EmbeddingService(embedding_provider, timeout=settings.embedding_timeout_seconds)
    ingestion = IngestionService(
        session_factory=session_factory,
        blob_store=blob_store,
        extractor=DocumentExtractor(vision=vision_provider),
        embeddings=embeddings,
        qdrant=qdrant,
        concurrency=settings.ingestion_concurrency,
        sweep_batch_size=settings.pending_sweep_batch_size,
        sweep_max_age_hours=settings.pending_sweep_max_age_hours,
    )
    learning = LearningLoop(
        ingestion,
        maxsize=settings.learning_queue_size,
        drain_timeout=settings.learning_drain_timeout_seconds,
    )
    query = AgentQueryService(
        session_factory=session_factory,
        retrieval=RetrievalService(embeddings, qdrant),
        generator=ResponseGenerator(),
        providers=providers,
        learning=learning,
        require_knowledge_base_scope=settings.require_knowledge_base_scope,
    )

    logger.info(
        "services_ready",
        embedding_provider=embedding_provider.kind.value,
        blob_backend=settings.blob_backend,
    )
    return Services(
        engine=engine,
        session_factory=session_factory,
        qdrant=qdrant,
        providers=providers,
        blob_store=blob_store,
        ingestion=ingestion,
        query=query,
        learning=learning,
        http_client=http_client,
    )
