"""Learning loop: high-confidence exchanges become ingestible documents.

The query path submits exchanges to a bounded in-process queue and
returns immediately. A single worker task drains the queue, stores each
exchange as a TXT document under the agent's oldest knowledge base and
runs it through the normal ingestion pipeline. Worker failures are
logged and counted; they never reach the query that produced the answer.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone

import structlog

from app.services.rag.ingestion import IngestionService

logger = structlog.get_logger(__name__)

LEARNING_TAGS = ["conversation", "auto-generated", "qa"]
_TITLE_QUESTION_CHARS = 50
DEFAULT_DRAIN_TIMEOUT_SECONDS = 10.0


@dataclass
class LearningExchange:
    tenant_id: str
    knowledge_base_id: str
    question: str
    answer: str
    confidence: float
    model: str
    citation_titles: list[str] = field(default_factory=list)
    agent_id: str | None = None
    conversation_id: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class LearningStats:
    submitted: int = 0
    processed: int = 0
    failed: int = 0
    dropped: int = 0
    abandoned: int = 0  # still queued or in flight at shutdown


def render_conversation_document(exchange: LearningExchange) -> str:
    """Plain-text body of the synthetic Q&A document."""
    titles = ", ".join(dict.fromkeys(exchange.citation_titles)) or "None"
    return (
        f"# Conversation Log - {exchange.created_at.isoformat()}\n\n"
        f"## Question\n{exchange.question}\n\n"
        f"## Answer\n{exchange.answer}\n\n"
        f"## Metadata\n"
        f"- Confidence: {exchange.confidence:.1%}\n"
        f"- Model: {exchange.model}\n"
        f"- Citations: {titles}\n"
    )


def conversation_title(question: str) -> str:
    return f"Q&A: {question[:_TITLE_QUESTION_CHARS]}..."


class LearningLoop:
    """Bounded queue plus one worker task feeding the ingestion pipeline."""

    def __init__(
        self,
        ingestion: IngestionService,
        maxsize: int = 100,
        drain_timeout: float = DEFAULT_DRAIN_TIMEOUT_SECONDS,
    ) -> None:
        self._ingestion = ingestion
        self._drain_timeout = drain_timeout
        self._queue: asyncio.Queue[LearningExchange] = asyncio.Queue(maxsize=maxsize)
        self._worker: asyncio.Task | None = None
        self.stats = LearningStats()

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def start(self) -> None:
        if self.running:
            return
        self._worker = asyncio.create_task(self._run(), name="learning-loop")
        logger.info("learning_loop_started", maxsize=self._queue.maxsize)

    async def stop(self) -> None:
        """Drain the queue for up to ``drain_timeout`` seconds, then stop the worker.

        Exchanges still queued, or cut off mid-ingestion, are counted as
        abandoned so submitted == processed + failed + abandoned afterwards.
        """
        if self.running:
            try:
                await asyncio.wait_for(self._queue.join(), timeout=self._drain_timeout)
            except asyncio.TimeoutError:
                logger.warning(
                    "learning_loop_drain_timeout",
                    timeout=self._drain_timeout,
                    pending=self._queue.qsize(),
                )

        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None

        left = 0
        while True:
            try:
                self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            self._queue.task_done()
            left += 1
        if left:
            self.stats.abandoned += left
            logger.warning("learning_loop_abandoned", count=left)
        logger.info("learning_loop_stopped", **vars(self.stats))

    def submit(self, exchange: LearningExchange) -> bool:
        """Queue an exchange without blocking. Returns False if it was dropped."""
        try:
            self._queue.put_nowait(exchange)
        except asyncio.QueueFull:
            self.stats.dropped += 1
            logger.warning(
                "learning_queue_full",
                tenant_id=exchange.tenant_id,
                maxsize=self._queue.maxsize,
            )
            return False
        self.stats.submitted += 1
        return True

    async def join(self) -> None:
        """Wait until every queued exchange has been handled."""
        await self._queue.join()

    async def _run(self) -> None:
        while True:
            exchange = await self._queue.get()
            try:
                await self.process(exchange)
                self.stats.processed += 1
            except asyncio.CancelledError:
                self.stats.abandoned += 1
                logger.warning("learning_loop_cancelled", tenant_id=exchange.tenant_id)
                raise
            except Exception as e:
                self.stats.failed += 1
                logger.error(
                    "learning_loop_failed",
                    tenant_id=exchange.tenant_id,
                    error=str(e),
                )
            finally:
                self._queue.task_done()

    async def process(self, exchange: LearningExchange) -> str:
        """Store one exchange as a document and ingest it. Returns the document id."""
        document = await self._ingestion.create_document(
            tenant_id=exchange.tenant_id,
            title=conversation_title(exchange.question),
            file_name=f"conversation-{int(time.time() * 1000)}.txt",
            file_type="TXT",
            raw_content=render_conversation_document(exchange),
            description="Auto-generated from a high-confidence conversation",
            knowledge_base_id=exchange.knowledge_base_id,
            tags=LEARNING_TAGS,
        )
        result = await self._ingestion.process_document(document.id)
        if not result.success:
            raise RuntimeError(f"Ingestion of learned exchange failed: {result.error}")

        logger.info(
            "learning_loop_document_ingested",
            tenant_id=exchange.tenant_id,
            document_id=str(document.id),
            chunk_count=result.chunk_count,
        )
        return str(document.id)
