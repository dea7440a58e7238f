"""Per-document ingestion pipeline and its bulk/periodic drivers.

Pipeline: load text (cache or blob → extract) → chunk → embed
          → delete old vectors → replace chunk rows → upsert vectors
Orchestrated by IngestionService.process_document(), which also manages
the document's status transitions in Postgres.

Public API:
    - IngestionService.create_document(...)              → Document
    - IngestionService.process_document(id, force)       → ProcessDocumentResult
    - IngestionService.retry_document(tenant, id, force) → ProcessDocumentResult
    - IngestionService.reprocess_tenant_documents(...)   → list[ProcessDocumentResult]
    - IngestionService.process_pending_documents()       → list[ProcessDocumentResult]
    - IngestionService.delete_document(tenant, id)       → None
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import structlog
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.exceptions import DocumentNotFoundError, ExtractionError, VectorIndexError
from app.db.blob import BlobStore
from app.db.qdrant import QdrantService, VectorRecord, vector_key
from app.models.document import Document, DocumentChunk, DocumentStatus
from app.services.rag.chunking import chunk_text, clean_text
from app.services.rag.embedding import EmbeddingService
from app.services.rag.extraction import DocumentExtractor, FileType

logger = structlog.get_logger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

MIN_CACHED_TEXT_CHARS = 100   # shorter cached text is re-extracted
DEFAULT_CONCURRENCY = 4
DEFAULT_SWEEP_BATCH = 5
DEFAULT_SWEEP_MAX_AGE_HOURS = 24


@dataclass
class ProcessDocumentResult:
    document_id: str
    success: bool
    chunk_count: int = 0
    error: str | None = None


def _as_uuid(value: str | uuid.UUID) -> uuid.UUID:
    return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))


class IngestionService:
    """Runs documents through extraction, chunking, embedding and indexing.

    Each call opens its own session from ``session_factory`` so documents
    can be processed concurrently. Failures never propagate: they are
    recorded on the document (FAILED + error_message) and returned in a
    ProcessDocumentResult.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        blob_store: BlobStore,
        extractor: DocumentExtractor,
        embeddings: EmbeddingService,
        qdrant: QdrantService,
        concurrency: int = DEFAULT_CONCURRENCY,
        sweep_batch_size: int = DEFAULT_SWEEP_BATCH,
        sweep_max_age_hours: int = DEFAULT_SWEEP_MAX_AGE_HOURS,
    ) -> None:
        self._session_factory = session_factory
        self._blob = blob_store
        self._extractor = extractor
        self._embeddings = embeddings
        self._qdrant = qdrant
        self._concurrency = max(1, concurrency)
        self._sweep_batch_size = sweep_batch_size
        self._sweep_max_age = timedelta(hours=sweep_max_age_hours)

    # -- Creation ------------------------------------------------------------

    async def create_document(
        self,
        tenant_id: str,
        title: str,
        file_name: str,
        file_type: str,
        *,
        data: bytes | None = None,
        file_key: str | None = None,
        raw_content: str | None = None,
        description: str | None = None,
        knowledge_base_id: str | uuid.UUID | None = None,
        tags: list[str] | None = None,
        content_type: str | None = None,
    ) -> Document:
        """Store a new PENDING document, uploading ``data`` to the blob store when given."""
        kind = FileType.parse(file_type)
        if data is not None and file_key:
            await self._blob.upload(file_key, data, content_type)

        if raw_content is None and data is not None and kind is not FileType.PDF:
            # Cheap formats are decoded up front; PDFs wait for the pipeline.
            try:
                raw_content = await self._extractor.extract(data, kind.value, title)
            except ExtractionError as e:
                logger.warning("upload_extraction_deferred", file_name=file_name, error=e.message)

        async with self._session_factory() as session:
            document = Document(
                tenant_id=tenant_id,
                title=title,
                description=description,
                file_name=file_name,
                file_type=kind.value,
                file_size=len(data) if data is not None else len((raw_content or "").encode()),
                file_key=file_key,
                raw_content=raw_content,
                status=DocumentStatus.PENDING.value,
                chunk_count=0,
                tags=list(tags or []),
                knowledge_base_id=_as_uuid(knowledge_base_id) if knowledge_base_id else None,
            )
            session.add(document)
            await session.commit()
            await session.refresh(document)

        logger.info(
            "document_created",
            tenant_id=tenant_id,
            document_id=str(document.id),
            file_type=kind.value,
        )
        return document

    # -- Single document -----------------------------------------------------

    async def process_document(
        self,
        document_id: str | uuid.UUID,
        force_reextract: bool = False,
    ) -> ProcessDocumentResult:
        """Run the full pipeline for one document.

        With ``force_reextract`` the cached raw text is ignored and the
        source file is downloaded and extracted again.
        """
        doc_id = str(document_id)
        try:
            doc_pk = _as_uuid(document_id)
        except ValueError:
            return ProcessDocumentResult(doc_id, success=False, error="Document not found")
        doc_id = str(doc_pk)

        async with self._session_factory() as session:
            document = await session.get(Document, doc_pk)
            if document is None:
                logger.warning("ingestion_document_missing", document_id=doc_id)
                return ProcessDocumentResult(doc_id, success=False, error="Document not found")

            tenant_id = document.tenant_id
            replacing = False
            try:
                document.status = DocumentStatus.PROCESSING.value
                await session.commit()

                text = await self._load_text(document, force_reextract)
                chunks = chunk_text(text, document.title)
                logger.info("ingestion_chunk_done", document_id=doc_id, chunk_count=len(chunks))
                if not chunks:
                    logger.warning("ingestion_no_chunks", document_id=doc_id, text_chars=len(text))

                vectors = await self._embeddings.embed_many([c.content for c in chunks])

                # Old vectors go first so a reprocess replaces rather than merges.
                replacing = True
                await self._qdrant.delete_by_document(tenant_id, doc_id)
                await session.execute(
                    delete(DocumentChunk).where(DocumentChunk.document_id == document.id)
                )

                kb_id = str(document.knowledge_base_id) if document.knowledge_base_id else None
                records: list[VectorRecord] = []
                for chunk, vector in zip(chunks, vectors):
                    key = vector_key(doc_id, chunk.index)
                    session.add(
                        DocumentChunk(
                            id=key,
                            document_id=document.id,
                            chunk_index=chunk.index,
                            content=chunk.content,
                            start_char=chunk.start_char,
                            end_char=chunk.end_char,
                            page_number=chunk.page_number,
                            token_count=chunk.token_count,
                        )
                    )
                    records.append(
                        VectorRecord(
                            key=key,
                            vector=vector,
                            payload={
                                "document_id": doc_id,
                                "document_title": document.title,
                                "chunk_index": chunk.index,
                                "content": chunk.content,
                                "page_number": chunk.page_number,
                                "knowledge_base_id": kb_id,
                            },
                        )
                    )
                await session.flush()

                await self._qdrant.upsert(tenant_id, records)

                document.status = DocumentStatus.COMPLETED.value
                document.chunk_count = len(chunks)
                document.raw_content = text
                document.error_message = None
                document.processed_at = datetime.now(timezone.utc)
                await session.commit()

            except Exception as e:
                message = getattr(e, "message", None) or str(e) or type(e).__name__
                logger.error(
                    "ingestion_failed",
                    tenant_id=tenant_id,
                    document_id=doc_id,
                    error=message,
                )
                await session.rollback()
                await self._mark_failed(session, tenant_id, doc_pk, message, clear_index=replacing)
                return ProcessDocumentResult(doc_id, success=False, error=message)
            except asyncio.CancelledError:
                logger.warning("ingestion_cancelled", tenant_id=tenant_id, document_id=doc_id)
                await session.rollback()
                await self._mark_failed(
                    session, tenant_id, doc_pk, "Processing was cancelled", clear_index=replacing
                )
                raise

        logger.info(
            "ingestion_complete",
            tenant_id=tenant_id,
            document_id=doc_id,
            chunk_count=len(chunks),
        )
        return ProcessDocumentResult(doc_id, success=True, chunk_count=len(chunks))

    async def _load_text(self, document: Document, force_reextract: bool) -> str:
        cached = document.raw_content or ""
        if not force_reextract and len(cached) > MIN_CACHED_TEXT_CHARS:
            logger.debug("ingestion_using_cached_text", document_id=str(document.id), chars=len(cached))
            return clean_text(cached)

        if not document.file_key:
            if cached.strip():
                return clean_text(cached)
            raise ExtractionError("Document has no stored file and no cached text")

        data = await self._blob.download(document.file_key)
        text = await self._extractor.extract(data, document.file_type, document.title)
        return clean_text(text)

    async def _mark_failed(
        self,
        session: AsyncSession,
        tenant_id: str,
        document_pk: uuid.UUID,
        message: str,
        clear_index: bool = False,
    ) -> None:
        """Record a failure.

        With ``clear_index`` the old vectors were already deleted, so the
        chunk rows and any partially upserted vectors go too and the
        document is left with zero chunks instead of stale ones.
        """
        document = await session.get(Document, document_pk)
        if document is None:
            return
        if clear_index:
            try:
                await self._qdrant.delete_by_document(tenant_id, document_pk)
            except VectorIndexError as e:
                logger.error(
                    "ingestion_vector_cleanup_failed",
                    tenant_id=tenant_id,
                    document_id=str(document_pk),
                    error=e.message,
                )
            await session.execute(
                delete(DocumentChunk).where(DocumentChunk.document_id == document_pk)
            )
            document.chunk_count = 0
        document.status = DocumentStatus.FAILED.value
        document.error_message = message
        await session.commit()

    async def retry_document(
        self,
        tenant_id: str,
        document_id: str | uuid.UUID,
        force_reextract: bool = False,
    ) -> ProcessDocumentResult:
        """Reset a tenant's document to PENDING and process it again."""
        async with self._session_factory() as session:
            document = await self._get_owned(session, tenant_id, document_id)
            document.status = DocumentStatus.PENDING.value
            document.error_message = None
            await session.commit()

        logger.info(
            "ingestion_retry",
            tenant_id=tenant_id,
            document_id=str(document_id),
            force_reextract=force_reextract,
        )
        return await self.process_document(document_id, force_reextract=force_reextract)

    # -- Bulk / periodic -----------------------------------------------------

    async def reprocess_tenant_documents(
        self,
        tenant_id: str,
        force_reextract: bool = False,
    ) -> list[ProcessDocumentResult]:
        """Reprocess every document a tenant owns through a bounded worker pool."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(Document.id)
                .where(Document.tenant_id == tenant_id)
                .order_by(Document.created_at)
            )
            document_ids = list(result.scalars().all())

        semaphore = asyncio.Semaphore(self._concurrency)

        async def _run(doc_id: uuid.UUID) -> ProcessDocumentResult:
            async with semaphore:
                return await self.process_document(doc_id, force_reextract=force_reextract)

        results = await asyncio.gather(*(_run(d) for d in document_ids))
        logger.info(
            "tenant_reprocess_complete",
            tenant_id=tenant_id,
            total=len(results),
            failed=sum(1 for r in results if not r.success),
        )
        return list(results)

    async def process_pending_documents(self) -> list[ProcessDocumentResult]:
        """Sweep recent PENDING documents, oldest first, one at a time."""
        cutoff = datetime.now(timezone.utc) - self._sweep_max_age
        async with self._session_factory() as session:
            result = await session.execute(
                select(Document.id)
                .where(Document.status == DocumentStatus.PENDING.value)
                .where(Document.created_at >= cutoff)
                .order_by(Document.created_at)
                .limit(self._sweep_batch_size)
            )
            document_ids = list(result.scalars().all())

        if not document_ids:
            return []

        logger.info("pending_sweep_start", count=len(document_ids))
        results = [await self.process_document(doc_id) for doc_id in document_ids]
        logger.info(
            "pending_sweep_complete",
            processed=sum(1 for r in results if r.success),
            failed=sum(1 for r in results if not r.success),
        )
        return results

    # -- Deletion ------------------------------------------------------------

    async def delete_document(self, tenant_id: str, document_id: str | uuid.UUID) -> None:
        """Delete a document's vectors, chunk rows, stored file and row."""
        async with self._session_factory() as session:
            document = await self._get_owned(session, tenant_id, document_id)
            await self._qdrant.delete_by_document(tenant_id, str(document.id))
            await session.execute(
                delete(DocumentChunk).where(DocumentChunk.document_id == document.id)
            )
            file_key = document.file_key
            await session.delete(document)
            await session.commit()

        if file_key:
            await self._blob.delete(file_key)
        logger.info("document_deleted", tenant_id=tenant_id, document_id=str(document_id))

    async def _get_owned(
        self,
        session: AsyncSession,
        tenant_id: str,
        document_id: str | uuid.UUID,
    ) -> Document:
        try:
            doc_uuid = _as_uuid(document_id)
        except ValueError as e:
            raise DocumentNotFoundError(f"Document {document_id} not found") from e
        document = await session.get(Document, doc_uuid)
        if document is None or document.tenant_id != tenant_id:
            raise DocumentNotFoundError(f"Document {document_id} not found")
        return document
