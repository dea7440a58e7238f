"""Dense retrieval and context assembly.

Pipeline: embed query → tenant-namespaced Qdrant search → relevance floor
          → group by source document → render context block

Public API:
    - RetrievalService.retrieve(query, tenant_id, knowledge_base_ids, top_k) → RetrievalOutput
    - build_context(matches) → str
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field

import structlog

from app.db.qdrant import QdrantService
from app.services.rag.embedding import EmbeddingService

logger = structlog.get_logger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

DEFAULT_TOP_K = 5
RELEVANCE_FLOOR = 0.5     # scores at or below this count as no grounding
NO_CONTEXT_MESSAGE = "No relevant documents found in the knowledge base."


# ---------------------------------------------------------------------------
# Dataclasses
# ---------------------------------------------------------------------------

@dataclass
class RetrievedMatch:
    """A chunk that cleared the relevance floor."""

    chunk_id: str
    document_id: str
    document_title: str
    content: str
    score: float
    knowledge_base_id: str | None = None


@dataclass
class RetrievalOutput:
    matches: list[RetrievedMatch] = field(default_factory=list)
    context: str = NO_CONTEXT_MESSAGE
    latency_ms: int = 0

    @property
    def has_relevant_context(self) -> bool:
        return bool(self.matches)

    @property
    def scores(self) -> list[float]:
        return [m.score for m in self.matches]


# ---------------------------------------------------------------------------
# Context rendering
# ---------------------------------------------------------------------------

def build_context(matches: list[RetrievedMatch]) -> str:
    """Render one section per source document.

    Documents appear in the order their first chunk was retrieved (matches
    arrive best-first, so that is also best-score order). Each section
    carries the title, the document's best score as a percentage and its
    chunk texts in retrieval order, closed by a horizontal rule.
    """
    if not matches:
        return NO_CONTEXT_MESSAGE

    grouped: dict[str, dict] = {}
    for match in matches:
        entry = grouped.setdefault(
            match.document_id,
            {"title": match.document_title, "score": match.score, "chunks": []},
        )
        entry["score"] = max(entry["score"], match.score)
        entry["chunks"].append(match.content)

    parts: list[str] = []
    for entry in grouped.values():
        parts.append(f'## From "{entry["title"]}" (relevance: {entry["score"] * 100:.0f}%)\n')
        parts.append("\n\n".join(entry["chunks"]))
        parts.append("\n---\n")
    return "\n".join(parts)


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------

class RetrievalService:
    """Query-time retrieval over a tenant's vector namespace."""

    def __init__(self, embeddings: EmbeddingService, qdrant: QdrantService) -> None:
        self._embeddings = embeddings
        self._qdrant = qdrant

    async def retrieve(
        self,
        query: str,
        tenant_id: str,
        knowledge_base_ids: list[str] | None = None,
        top_k: int = DEFAULT_TOP_K,
    ) -> RetrievalOutput:
        """Embed ``query``, search and assemble context.

        Raises EmbeddingProviderError or VectorIndexError; the caller decides
        how a failed retrieval degrades.
        """
        started = time.monotonic()

        vector = await self._embeddings.embed_query(query)
        candidates = await self._qdrant.query(
            tenant_id,
            vector,
            top_k=top_k,
            knowledge_base_ids=knowledge_base_ids or None,
        )

        matches = [
            RetrievedMatch(
                chunk_id=c.key,
                document_id=str(c.payload.get("document_id", "")),
                document_title=str(c.payload.get("document_title", "Untitled")),
                content=str(c.payload.get("content", "")),
                score=c.score,
                knowledge_base_id=c.payload.get("knowledge_base_id"),
            )
            for c in candidates
            if c.score > RELEVANCE_FLOOR
        ]

        output = RetrievalOutput(
            matches=matches,
            context=build_context(matches),
            latency_ms=int((time.monotonic() - started) * 1000),
        )
        logger.info(
            "retrieval_complete",
            tenant_id=tenant_id,
            candidates=len(candidates),
            relevant=len(matches),
            kb_filtered=bool(knowledge_base_ids),
            latency_ms=output.latency_ms,
        )
        return output
