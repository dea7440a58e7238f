"""Document and knowledge base endpoints."""

import os
from uuid import UUID

import structlog
from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, Query, UploadFile
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_db, get_ingestion_service, get_tenant_id
from app.core.exceptions import (
    DocumentNotFoundError,
    InvalidFileTypeError,
    KnowledgeBaseNotFoundError,
)
from app.db.blob import generate_file_key
from app.models.document import Document
from app.models.knowledge import KnowledgeBase
from app.schemas.knowledge import (
    DocumentDeleteResponse,
    DocumentListItem,
    DocumentListResponse,
    DocumentStatusResponse,
    KnowledgeBaseCreate,
    KnowledgeBaseListResponse,
    KnowledgeBaseResponse,
    ProcessResultResponse,
    ReprocessResponse,
    UploadResponse,
)
from app.services.rag.ingestion import IngestionService

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/knowledge", tags=["knowledge"])
kb_router = APIRouter(prefix="/knowledge-bases", tags=["knowledge-bases"])

_EXTENSION_TYPES = {
    "pdf": "PDF",
    "txt": "TXT",
    "md": "MD",
    "markdown": "MD",
    "html": "HTML",
    "htm": "HTML",
    "json": "JSON",
}


def _get_file_type(filename: str) -> str:
    """Map a filename's extension to a declared file type."""
    _, ext = os.path.splitext(filename)
    file_type = _EXTENSION_TYPES.get(ext.lstrip(".").lower())
    if file_type is None:
        raise InvalidFileTypeError(
            f"File type '{ext or filename}' not supported. Supported types: PDF, TXT, MD, HTML, JSON"
        )
    return file_type


async def _get_owned_kb(db: AsyncSession, tenant_id: str, kb_id: UUID) -> KnowledgeBase:
    kb = await db.get(KnowledgeBase, kb_id)
    if kb is None or kb.tenant_id != tenant_id:
        raise KnowledgeBaseNotFoundError(f"Knowledge base {kb_id} not found")
    return kb


async def _process_in_background(ingestion: IngestionService, document_id: str) -> None:
    result = await ingestion.process_document(document_id)
    if not result.success:
        logger.warning("background_ingestion_failed", document_id=document_id, error=result.error)


# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------

@router.post("/documents", status_code=202, response_model=UploadResponse)
async def upload_document(
    background_tasks: BackgroundTasks,
    file: UploadFile = File(...),
    title: str | None = Form(None),
    description: str | None = Form(None),
    knowledge_base_id: UUID | None = Form(None),
    tags: str | None = Form(None),
    tenant_id: str = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db),
    ingestion: IngestionService = Depends(get_ingestion_service),
) -> UploadResponse:
    """Store an uploaded file and start processing it in the background."""
    if not file.filename:
        raise InvalidFileTypeError("No filename provided")
    file_type = _get_file_type(file.filename)

    if knowledge_base_id is not None:
        await _get_owned_kb(db, tenant_id, knowledge_base_id)

    data = await file.read()
    document = await ingestion.create_document(
        tenant_id=tenant_id,
        title=title or os.path.splitext(file.filename)[0],
        file_name=file.filename,
        file_type=file_type,
        data=data,
        file_key=generate_file_key(tenant_id, file.filename),
        description=description,
        knowledge_base_id=knowledge_base_id,
        tags=[t.strip() for t in tags.split(",") if t.strip()] if tags else [],
        content_type=file.content_type,
    )

    background_tasks.add_task(_process_in_background, ingestion, str(document.id))

    return UploadResponse(
        document_id=document.id,
        title=document.title,
        file_name=document.file_name,
        status=document.status,
        message=f"Processing started. Poll /v1/knowledge/documents/{document.id}/status",
    )


@router.get("/documents", response_model=DocumentListResponse)
async def list_documents(
    knowledge_base_id: UUID | None = Query(None),
    tenant_id: str = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db),
) -> DocumentListResponse:
    """List the tenant's documents, newest first."""
    stmt = select(Document).where(Document.tenant_id == tenant_id)
    if knowledge_base_id is not None:
        stmt = stmt.where(Document.knowledge_base_id == knowledge_base_id)
    result = await db.execute(stmt.order_by(Document.created_at.desc()))
    return DocumentListResponse(
        documents=[DocumentListItem.model_validate(d) for d in result.scalars().all()]
    )


@router.get("/documents/{document_id}/status", response_model=DocumentStatusResponse)
async def get_document_status(
    document_id: UUID,
    tenant_id: str = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db),
) -> DocumentStatusResponse:
    """Get the ingestion status of a document."""
    doc = await db.get(Document, document_id)
    if doc is None or doc.tenant_id != tenant_id:
        raise DocumentNotFoundError()

    return DocumentStatusResponse(
        document_id=doc.id,
        status=doc.status,
        chunk_count=doc.chunk_count,
        error_message=doc.error_message,
        processed_at=doc.processed_at,
    )


@router.post("/documents/reprocess", response_model=ReprocessResponse)
async def reprocess_documents(
    force_reextract: bool = Query(False),
    tenant_id: str = Depends(get_tenant_id),
    ingestion: IngestionService = Depends(get_ingestion_service),
) -> ReprocessResponse:
    """Reprocess every document the tenant owns."""
    results = await ingestion.reprocess_tenant_documents(tenant_id, force_reextract=force_reextract)
    succeeded = sum(1 for r in results if r.success)
    return ReprocessResponse(
        total=len(results),
        succeeded=succeeded,
        failed=len(results) - succeeded,
        results=[ProcessResultResponse.model_validate(r) for r in results],
    )


@router.post("/documents/{document_id}/retry", response_model=ProcessResultResponse)
async def retry_document(
    document_id: UUID,
    force_reextract: bool = Query(False),
    tenant_id: str = Depends(get_tenant_id),
    ingestion: IngestionService = Depends(get_ingestion_service),
) -> ProcessResultResponse:
    """Run a document through the pipeline again, optionally re-extracting its file."""
    result = await ingestion.retry_document(tenant_id, document_id, force_reextract=force_reextract)
    return ProcessResultResponse.model_validate(result)


@router.delete("/documents/{document_id}", response_model=DocumentDeleteResponse)
async def delete_document(
    document_id: UUID,
    tenant_id: str = Depends(get_tenant_id),
    ingestion: IngestionService = Depends(get_ingestion_service),
) -> DocumentDeleteResponse:
    """Delete a document together with its chunks and vectors."""
    await ingestion.delete_document(tenant_id, document_id)
    return DocumentDeleteResponse(deleted=True)


# ---------------------------------------------------------------------------
# Knowledge bases
# ---------------------------------------------------------------------------

@kb_router.post("", status_code=201, response_model=KnowledgeBaseResponse)
async def create_knowledge_base(
    body: KnowledgeBaseCreate,
    tenant_id: str = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db),
) -> KnowledgeBaseResponse:
    kb = KnowledgeBase(tenant_id=tenant_id, name=body.name, description=body.description)
    db.add(kb)
    await db.flush()
    await db.refresh(kb)
    logger.info("knowledge_base_created", tenant_id=tenant_id, knowledge_base_id=str(kb.id))
    return KnowledgeBaseResponse.model_validate(kb)


@kb_router.get("", response_model=KnowledgeBaseListResponse)
async def list_knowledge_bases(
    tenant_id: str = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db),
) -> KnowledgeBaseListResponse:
    result = await db.execute(
        select(KnowledgeBase)
        .where(KnowledgeBase.tenant_id == tenant_id)
        .order_by(KnowledgeBase.created_at)
    )
    return KnowledgeBaseListResponse(
        knowledge_bases=[KnowledgeBaseResponse.model_validate(kb) for kb in result.scalars().all()]
    )
