"""Integration tests for the ingestion pipeline.

Tests:
  - TXT upload → COMPLETED, chunk_count == chunk rows == vectors
  - Reprocessing replaces chunks and vectors instead of adding to them
  - Embedding failure → FAILED with error_message, no vectors written
  - A failed or cancelled reindex leaves zero chunks, never stale ones
  - Cached text skips the blob store unless force_reextract is set
  - PDF goes through the vision path
  - Retry, tenant-wide reprocess and the pending sweep
  - Delete removes vectors, rows and the stored file
  - Tenant namespaces never mix
"""

from __future__ import annotations

import asyncio
import uuid
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import func, select, update

from app.core.exceptions import DocumentNotFoundError, VectorIndexError
from app.db.blob import generate_file_key
from app.models.document import Document, DocumentChunk, DocumentStatus
from app.services.rag.chunking import clean_text
from app.services.rag.extraction import DocumentExtractor
from app.services.rag.ingestion import IngestionService
from tests.conftest import MockLLMProvider, axis, blank_pdf, create_knowledge_base


def _policy_text(total_chars: int = 8000) -> str:
    parts: list[str] = []
    i = 0
    while sum(len(p) for p in parts) < total_chars:
        parts.append(f"Rule {i}: employees must file expense reports within thirty days. ")
        i += 1
    return "".join(parts)


async def _upload(
    ingestion: IngestionService,
    tenant_id: str,
    text: str,
    title: str = "Expense Policy",
    file_type: str = "TXT",
    **kwargs,
) -> Document:
    file_name = f"{title.lower().replace(' ', '-')}.{file_type.lower()}"
    data = text.encode("utf-8") if isinstance(text, str) else text
    return await ingestion.create_document(
        tenant_id=tenant_id,
        title=title,
        file_name=file_name,
        file_type=file_type,
        data=data,
        file_key=generate_file_key(tenant_id, file_name),
        **kwargs,
    )


async def _reload(session_factory, document_id) -> Document:
    async with session_factory() as session:
        return await session.get(Document, document_id)


async def _chunk_rows(session_factory, document_id) -> int:
    async with session_factory() as session:
        result = await session.execute(
            select(func.count()).select_from(DocumentChunk).where(DocumentChunk.document_id == document_id)
        )
        return result.scalar_one()


class TestProcessDocument:
    @pytest.mark.asyncio
    async def test_txt_document_completes_consistently(
        self, ingestion, session_factory, qdrant, sample_tenant_id
    ) -> None:
        doc = await _upload(ingestion, sample_tenant_id, _policy_text())
        assert doc.status == DocumentStatus.PENDING.value

        result = await ingestion.process_document(doc.id)

        assert result.success is True
        assert result.chunk_count > 1
        stored = await _reload(session_factory, doc.id)
        assert stored.status == DocumentStatus.COMPLETED.value
        assert stored.processed_at is not None
        assert stored.error_message is None
        assert stored.chunk_count == result.chunk_count
        assert await _chunk_rows(session_factory, doc.id) == result.chunk_count
        assert await qdrant.count(sample_tenant_id) == result.chunk_count

    @pytest.mark.asyncio
    async def test_chunk_rows_carry_vector_keys(self, ingestion, session_factory, qdrant, sample_tenant_id) -> None:
        doc = await _upload(ingestion, sample_tenant_id, _policy_text(4000))
        await ingestion.process_document(doc.id)

        async with session_factory() as session:
            rows = (
                await session.execute(
                    select(DocumentChunk)
                    .where(DocumentChunk.document_id == doc.id)
                    .order_by(DocumentChunk.chunk_index)
                )
            ).scalars().all()

        assert [r.id for r in rows] == [f"{doc.id}_chunk_{i}" for i in range(len(rows))]
        matches = await qdrant.query(sample_tenant_id, axis(7), top_k=10)
        assert {m.key for m in matches} == {r.id for r in rows}
        assert all(m.payload["document_title"] == "Expense Policy" for m in matches)

    @pytest.mark.asyncio
    async def test_reprocess_replaces_chunks(self, ingestion, session_factory, qdrant, sample_tenant_id) -> None:
        doc = await _upload(ingestion, sample_tenant_id, _policy_text())
        first = await ingestion.process_document(doc.id)
        second = await ingestion.process_document(doc.id)

        assert second.success is True
        assert second.chunk_count == first.chunk_count
        assert await _chunk_rows(session_factory, doc.id) == first.chunk_count
        assert await qdrant.count(sample_tenant_id) == first.chunk_count

    @pytest.mark.asyncio
    async def test_embedding_failure_marks_failed(
        self, ingestion, session_factory, qdrant, mock_llm, sample_tenant_id
    ) -> None:
        doc = await _upload(ingestion, sample_tenant_id, _policy_text())
        mock_llm.fail_embed = True

        result = await ingestion.process_document(doc.id)

        assert result.success is False
        assert result.error
        stored = await _reload(session_factory, doc.id)
        assert stored.status == DocumentStatus.FAILED.value
        assert "Embedding" in stored.error_message
        assert await _chunk_rows(session_factory, doc.id) == 0
        assert await qdrant.count(sample_tenant_id) == 0

    @pytest.mark.asyncio
    async def test_short_document_completes_with_zero_chunks(self, ingestion, session_factory, sample_tenant_id) -> None:
        doc = await _upload(ingestion, sample_tenant_id, "Only a line.")
        result = await ingestion.process_document(doc.id)

        assert result.success is True
        assert result.chunk_count == 0
        stored = await _reload(session_factory, doc.id)
        assert stored.status == DocumentStatus.COMPLETED.value
        assert stored.chunk_count == 0

    @pytest.mark.asyncio
    async def test_unknown_document_returns_not_found(self, ingestion) -> None:
        result = await ingestion.process_document(uuid.uuid4())
        assert result.success is False
        assert result.error == "Document not found"

        result = await ingestion.process_document("not-a-uuid")
        assert result.success is False

    @pytest.mark.asyncio
    async def test_failed_reindex_leaves_no_stale_chunks(
        self, ingestion, session_factory, qdrant, sample_tenant_id
    ) -> None:
        doc = await _upload(ingestion, sample_tenant_id, _policy_text())
        first = await ingestion.process_document(doc.id)
        assert first.chunk_count > 1

        broken_upsert = AsyncMock(side_effect=VectorIndexError("Qdrant upsert failed: unavailable"))
        with patch.object(qdrant, "upsert", new=broken_upsert):
            result = await ingestion.process_document(doc.id)

        assert result.success is False
        assert "upsert" in result.error
        stored = await _reload(session_factory, doc.id)
        assert stored.status == DocumentStatus.FAILED.value
        assert stored.chunk_count == 0
        assert await _chunk_rows(session_factory, doc.id) == 0
        assert await qdrant.count(sample_tenant_id) == 0

    @pytest.mark.asyncio
    async def test_cancelled_processing_is_marked_failed(
        self, ingestion, embeddings, session_factory, sample_tenant_id
    ) -> None:
        doc = await _upload(ingestion, sample_tenant_id, _policy_text())
        started = asyncio.Event()

        async def _stall(texts):
            started.set()
            await asyncio.sleep(30)
            return []

        with patch.object(embeddings, "embed_many", new=_stall):
            task = asyncio.create_task(ingestion.process_document(doc.id))
            await started.wait()
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        stored = await _reload(session_factory, doc.id)
        assert stored.status == DocumentStatus.FAILED.value
        assert stored.error_message == "Processing was cancelled"


class TestReextraction:
    @pytest.mark.asyncio
    async def test_cached_text_skips_blob_store(self, ingestion, blob_store, sample_tenant_id) -> None:
        doc = await _upload(ingestion, sample_tenant_id, _policy_text())
        await ingestion.process_document(doc.id)
        assert blob_store.download_calls == []

    @pytest.mark.asyncio
    async def test_force_reextract_downloads_again(self, ingestion, blob_store, sample_tenant_id) -> None:
        doc = await _upload(ingestion, sample_tenant_id, _policy_text())
        result = await ingestion.process_document(doc.id, force_reextract=True)

        assert result.success is True
        assert blob_store.download_calls == [doc.file_key]

    @pytest.mark.asyncio
    async def test_cached_text_is_stored_cleaned(self, ingestion, session_factory, sample_tenant_id) -> None:
        raw = "Expense rules.\r\n\r\n\r\n\r\n" + _policy_text(6000).replace(". ", ".\r\n")
        doc = await ingestion.create_document(
            tenant_id=sample_tenant_id,
            title="Expense Policy",
            file_name="expense-policy.txt",
            file_type="TXT",
            raw_content=raw,
        )

        result = await ingestion.process_document(doc.id)

        assert result.success is True
        stored = await _reload(session_factory, doc.id)
        assert stored.raw_content == clean_text(raw)
        assert "\r" not in stored.raw_content
        async with session_factory() as session:
            rows = (
                await session.execute(
                    select(DocumentChunk)
                    .where(DocumentChunk.document_id == doc.id)
                    .order_by(DocumentChunk.chunk_index)
                )
            ).scalars().all()
        assert len(rows) > 1
        for row in rows[1:]:
            assert stored.raw_content[row.start_char : row.end_char].strip() == row.content

    @pytest.mark.asyncio
    async def test_pdf_uses_vision_extraction(
        self, session_factory, blob_store, embeddings, qdrant, sample_tenant_id
    ) -> None:
        body = _policy_text(3000)
        vision = MockLLMProvider(vision_text=f"--- Page 1 ---\n{body}\n--- Page 2 ---\n{body}")
        ingestion = IngestionService(
            session_factory=session_factory,
            blob_store=blob_store,
            extractor=DocumentExtractor(vision=vision),
            embeddings=embeddings,
            qdrant=qdrant,
        )
        doc = await _upload(ingestion, sample_tenant_id, blank_pdf(2), title="Handbook", file_type="PDF")
        assert doc.raw_content is None

        result = await ingestion.process_document(doc.id)

        assert result.success is True
        assert len(vision.extract_calls) == 1
        stored = await _reload(session_factory, doc.id)
        assert "\f" in stored.raw_content
        async with session_factory() as session:
            pages = (
                await session.execute(
                    select(DocumentChunk.page_number).where(DocumentChunk.document_id == doc.id)
                )
            ).scalars().all()
        assert max(pages) == 2


class TestRetryAndSweep:
    @pytest.mark.asyncio
    async def test_retry_after_failure(self, ingestion, session_factory, mock_llm, sample_tenant_id) -> None:
        doc = await _upload(ingestion, sample_tenant_id, _policy_text())
        mock_llm.fail_embed = True
        await ingestion.process_document(doc.id)

        mock_llm.fail_embed = False
        result = await ingestion.retry_document(sample_tenant_id, doc.id)

        assert result.success is True
        stored = await _reload(session_factory, doc.id)
        assert stored.status == DocumentStatus.COMPLETED.value
        assert stored.error_message is None

    @pytest.mark.asyncio
    async def test_retry_other_tenant_not_found(self, ingestion, sample_tenant_id) -> None:
        doc = await _upload(ingestion, sample_tenant_id, _policy_text())
        with pytest.raises(DocumentNotFoundError):
            await ingestion.retry_document("globex", doc.id)

    @pytest.mark.asyncio
    async def test_reprocess_tenant_documents(self, ingestion, qdrant, sample_tenant_id) -> None:
        docs = [
            await _upload(ingestion, sample_tenant_id, _policy_text(4000), title=f"Policy {i}")
            for i in range(3)
        ]
        other = await _upload(ingestion, "globex", _policy_text(4000))

        results = await ingestion.reprocess_tenant_documents(sample_tenant_id)

        assert sorted(r.document_id for r in results) == sorted(str(d.id) for d in docs)
        assert all(r.success for r in results)
        assert await qdrant.count(sample_tenant_id) == sum(r.chunk_count for r in results)
        assert await qdrant.count("globex") == 0
        assert str(other.id) not in {r.document_id for r in results}

    @pytest.mark.asyncio
    async def test_pending_sweep_skips_stale_documents(self, ingestion, session_factory, sample_tenant_id) -> None:
        fresh = await _upload(ingestion, sample_tenant_id, _policy_text(2000), title="Fresh")
        stale = await _upload(ingestion, sample_tenant_id, _policy_text(2000), title="Stale")
        async with session_factory() as session:
            await session.execute(
                update(Document)
                .where(Document.id == stale.id)
                .values(created_at=datetime.now(timezone.utc) - timedelta(hours=48))
            )
            await session.commit()

        results = await ingestion.process_pending_documents()

        assert [r.document_id for r in results] == [str(fresh.id)]
        assert (await _reload(session_factory, stale.id)).status == DocumentStatus.PENDING.value
        assert await ingestion.process_pending_documents() == []

    @pytest.mark.asyncio
    async def test_pending_sweep_is_batch_limited(
        self, session_factory, blob_store, mock_llm, embeddings, qdrant, sample_tenant_id
    ) -> None:
        ingestion = IngestionService(
            session_factory=session_factory,
            blob_store=blob_store,
            extractor=DocumentExtractor(vision=mock_llm),
            embeddings=embeddings,
            qdrant=qdrant,
            sweep_batch_size=2,
        )
        for i in range(3):
            await _upload(ingestion, sample_tenant_id, _policy_text(2000), title=f"Doc {i}")

        assert len(await ingestion.process_pending_documents()) == 2
        assert len(await ingestion.process_pending_documents()) == 1


class TestDeleteAndIsolation:
    @pytest.mark.asyncio
    async def test_delete_removes_everything(
        self, ingestion, session_factory, qdrant, blob_store, sample_tenant_id
    ) -> None:
        keep = await _upload(ingestion, sample_tenant_id, _policy_text(4000), title="Keep")
        drop = await _upload(ingestion, sample_tenant_id, _policy_text(4000), title="Drop")
        kept = await ingestion.process_document(keep.id)
        await ingestion.process_document(drop.id)

        await ingestion.delete_document(sample_tenant_id, drop.id)

        assert await _reload(session_factory, drop.id) is None
        assert await _chunk_rows(session_factory, drop.id) == 0
        assert drop.file_key not in blob_store.objects
        assert await qdrant.count(sample_tenant_id) == kept.chunk_count

    @pytest.mark.asyncio
    async def test_delete_other_tenant_not_found(self, ingestion, sample_tenant_id) -> None:
        doc = await _upload(ingestion, sample_tenant_id, _policy_text())
        with pytest.raises(DocumentNotFoundError):
            await ingestion.delete_document("globex", doc.id)

    @pytest.mark.asyncio
    async def test_tenants_use_separate_namespaces(self, ingestion, qdrant, sample_tenant_id) -> None:
        mine = await _upload(ingestion, sample_tenant_id, _policy_text(4000))
        theirs = await _upload(ingestion, "globex", _policy_text(4000))
        await ingestion.process_document(mine.id)
        await ingestion.process_document(theirs.id)

        matches = await qdrant.query(sample_tenant_id, axis(7), top_k=50)

        assert matches
        assert {m.payload["document_id"] for m in matches} == {str(mine.id)}
        assert all(m.payload["tenant_id"] == sample_tenant_id for m in matches)

    @pytest.mark.asyncio
    async def test_knowledge_base_recorded_in_payload(self, ingestion, session_factory, qdrant, sample_tenant_id) -> None:
        kb = await create_knowledge_base(session_factory, sample_tenant_id)
        doc = await _upload(ingestion, sample_tenant_id, _policy_text(4000), knowledge_base_id=kb.id)
        await ingestion.process_document(doc.id)

        matches = await qdrant.query(sample_tenant_id, axis(7), knowledge_base_ids=[str(kb.id)])
        assert matches
        assert all(m.payload["knowledge_base_id"] == str(kb.id) for m in matches)
