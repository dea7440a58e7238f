"""Qdrant async client wrapper for the tenant-namespaced vector index.

Namespace convention: one collection per tenant, named f"tenant_{tenant_id}".
The name is built here and nowhere else. Every operation takes the tenant id and resolves the
collection itself, so a caller can never address another tenant's vectors.

Vector keys are ``{document_id}_chunk_{index}``. Qdrant point ids must be
UUIDs, so each key is mapped to a deterministic UUIDv5 and the key itself
travels in the payload as ``chunk_id``.

All Qdrant driver errors are caught and re-raised as VectorIndexError.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any

import structlog
from qdrant_client import models as qmodels
from qdrant_client.async_qdrant_client import AsyncQdrantClient

from app.core.config import Settings
from app.core.exceptions import VectorIndexError

logger = structlog.get_logger(__name__)

_DISTANCE = qmodels.Distance.COSINE
_UPSERT_BATCH_SIZE = 100  # recommended upper bound per upsert call
_POINT_ID_NAMESPACE = uuid.UUID("6f1f6a0e-4f4c-4d0a-9a43-2a8f3f6c9b11")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def namespace_for(tenant_id: str | uuid.UUID) -> str:
    """Canonical collection name for a tenant. Single source of truth."""
    return f"tenant_{tenant_id}"


def vector_key(document_id: str | uuid.UUID, chunk_index: int) -> str:
    """Key shared by a DocumentChunk row and its vector."""
    return f"{document_id}_chunk_{chunk_index}"


def point_id_for(key: str) -> str:
    """Deterministic Qdrant point id for a vector key."""
    return str(uuid.uuid5(_POINT_ID_NAMESPACE, key))


def build_qdrant_client(settings: Settings) -> AsyncQdrantClient:
    """Construct the process-wide Qdrant client from settings."""
    if settings.qdrant_url == ":memory:":
        return AsyncQdrantClient(location=":memory:")
    if settings.qdrant_url:
        return AsyncQdrantClient(
            url=settings.qdrant_url,
            api_key=settings.qdrant_api_key or None,
            timeout=int(settings.qdrant_timeout_seconds),
        )
    return AsyncQdrantClient(
        host=settings.qdrant_host,
        port=settings.qdrant_port,
        api_key=settings.qdrant_api_key or None,
        timeout=int(settings.qdrant_timeout_seconds),
    )


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

@dataclass
class VectorRecord:
    """One chunk embedding plus the payload needed to cite it."""

    key: str
    vector: list[float]
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass
class VectorMatch:
    """A similarity hit returned from a tenant namespace."""

    key: str
    score: float
    payload: dict[str, Any]


# ---------------------------------------------------------------------------
# Service wrapper
# ---------------------------------------------------------------------------

class QdrantService:
    """High-level async wrapper over Qdrant operations.

    Every public method catches qdrant-client exceptions and re-raises
    as VectorIndexError for the pipeline layer.
    """

    def __init__(
        self,
        client: AsyncQdrantClient,
        vector_size: int,
        batch_size: int = _UPSERT_BATCH_SIZE,
    ) -> None:
        self._q = client
        self._vector_size = vector_size
        self._batch_size = batch_size

    # -- Collection management -----------------------------------------------

    async def create_collection_if_not_exists(self, tenant_id: str | uuid.UUID) -> str:
        """Ensure a collection exists for the tenant. Returns the collection name.

        Idempotent, safe to call before every upsert.
        """
        name = namespace_for(tenant_id)
        try:
            exists = await self._q.collection_exists(collection_name=name)
            if not exists:
                await self._q.create_collection(
                    collection_name=name,
                    vectors_config=qmodels.VectorParams(
                        size=self._vector_size,
                        distance=_DISTANCE,
                    ),
                )
                logger.info("qdrant_collection_created", collection=name)
            return name
        except Exception as e:
            logger.error("qdrant_create_collection_failed", collection=name, error=str(e))
            raise VectorIndexError(
                f"Failed to create/check Qdrant collection '{name}': {e}"
            ) from e

    async def _collection_exists(self, name: str) -> bool:
        try:
            return await self._q.collection_exists(collection_name=name)
        except Exception as e:
            logger.error("qdrant_collection_check_failed", collection=name, error=str(e))
            raise VectorIndexError(f"Failed to check Qdrant collection '{name}': {e}") from e

    # -- Vector operations ---------------------------------------------------

    async def upsert(
        self,
        tenant_id: str | uuid.UUID,
        records: list[VectorRecord],
    ) -> int:
        """Upsert records into the tenant's namespace in batches of ≤100.

        Each call waits for the write to be applied so a following query
        sees the new vectors. Returns the number of records written.
        """
        if not records:
            return 0

        name = await self.create_collection_if_not_exists(tenant_id)
        written = 0
        for i in range(0, len(records), self._batch_size):
            batch = records[i : i + self._batch_size]
            points = [
                qmodels.PointStruct(
                    id=point_id_for(r.key),
                    vector=r.vector,
                    payload={**r.payload, "chunk_id": r.key, "tenant_id": str(tenant_id)},
                )
                for r in batch
            ]
            try:
                await self._q.upsert(collection_name=name, points=points, wait=True)
            except Exception as e:
                logger.error(
                    "qdrant_upsert_failed",
                    collection=name,
                    point_count=len(points),
                    error=str(e),
                )
                raise VectorIndexError(f"Qdrant upsert failed: {e}") from e
            written += len(points)

        logger.info("qdrant_upsert_ok", collection=name, point_count=written)
        return written

    async def query(
        self,
        tenant_id: str | uuid.UUID,
        vector: list[float],
        top_k: int = 5,
        knowledge_base_ids: list[str] | None = None,
    ) -> list[VectorMatch]:
        """Similarity search inside the tenant's namespace.

        ``knowledge_base_ids`` restricts hits to those knowledge bases; when
        it is None or empty the search is unfiltered. A tenant that has never
        written a vector has no collection and simply gets no matches.
        """
        name = namespace_for(tenant_id)
        if not await self._collection_exists(name):
            logger.debug("qdrant_query_no_collection", collection=name)
            return []

        must: list[qmodels.Condition] = [
            qmodels.FieldCondition(
                key="tenant_id", match=qmodels.MatchValue(value=str(tenant_id))
            )
        ]
        if knowledge_base_ids:
            must.append(
                qmodels.FieldCondition(
                    key="knowledge_base_id",
                    match=qmodels.MatchAny(any=[str(kb) for kb in knowledge_base_ids]),
                )
            )

        try:
            response = await self._q.query_points(
                collection_name=name,
                query=vector,
                limit=top_k,
                query_filter=qmodels.Filter(must=must),
                with_payload=True,
            )
        except Exception as e:
            logger.error("qdrant_query_failed", collection=name, error=str(e))
            raise VectorIndexError(f"Qdrant query failed: {e}") from e

        matches = [
            VectorMatch(
                key=(p.payload or {}).get("chunk_id", str(p.id)),
                score=p.score,
                payload=p.payload or {},
            )
            for p in response.points
        ]
        logger.debug(
            "qdrant_query_ok",
            collection=name,
            top_k=top_k,
            filtered=bool(knowledge_base_ids),
            hit_count=len(matches),
        )
        return matches

    async def delete_by_document(
        self,
        tenant_id: str | uuid.UUID,
        document_id: str | uuid.UUID,
    ) -> None:
        """Remove every vector belonging to one document, waiting for completion."""
        name = namespace_for(tenant_id)
        if not await self._collection_exists(name):
            return
        try:
            await self._q.delete(
                collection_name=name,
                points_selector=qmodels.FilterSelector(
                    filter=qmodels.Filter(
                        must=[
                            qmodels.FieldCondition(
                                key="document_id",
                                match=qmodels.MatchValue(value=str(document_id)),
                            )
                        ]
                    )
                ),
                wait=True,
            )
            logger.info("qdrant_delete_ok", collection=name, document_id=str(document_id))
        except Exception as e:
            logger.error(
                "qdrant_delete_failed",
                collection=name,
                document_id=str(document_id),
                error=str(e),
            )
            raise VectorIndexError(f"Qdrant delete failed: {e}") from e

    async def count(self, tenant_id: str | uuid.UUID) -> int:
        """Number of vectors in a tenant's namespace. 0 if missing."""
        name = namespace_for(tenant_id)
        if not await self._collection_exists(name):
            return 0
        try:
            result = await self._q.count(collection_name=name, exact=True)
            return result.count
        except Exception as e:
            raise VectorIndexError(f"Qdrant count failed: {e}") from e

    async def close(self) -> None:
        """Gracefully close the Qdrant connection."""
        logger.info("qdrant_shutdown")
        await self._q.close()
