"""Document and knowledge base request/response schemas."""

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class UploadResponse(BaseModel):
    """POST /v1/knowledge/documents response body."""

    model_config = ConfigDict(from_attributes=True)

    document_id: uuid.UUID
    title: str
    file_name: str
    status: str
    message: str


class DocumentStatusResponse(BaseModel):
    """GET /v1/knowledge/documents/{document_id}/status response body."""

    model_config = ConfigDict(from_attributes=True)

    document_id: uuid.UUID
    status: str
    chunk_count: int = 0
    error_message: str | None = None
    processed_at: datetime | None = None


class DocumentListItem(BaseModel):
    """Single document in the list response."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    title: str
    file_name: str
    file_type: str
    file_size: int
    status: str
    chunk_count: int = 0
    knowledge_base_id: uuid.UUID | None = None
    tags: list[str] = Field(default_factory=list)
    created_at: datetime
    processed_at: datetime | None = None


class DocumentListResponse(BaseModel):
    documents: list[DocumentListItem]


class ProcessResultResponse(BaseModel):
    """Outcome of one synchronous pipeline run."""

    model_config = ConfigDict(from_attributes=True)

    document_id: str
    success: bool
    chunk_count: int = 0
    error: str | None = None


class ReprocessResponse(BaseModel):
    total: int
    succeeded: int
    failed: int
    results: list[ProcessResultResponse]


class DocumentDeleteResponse(BaseModel):
    deleted: bool


class KnowledgeBaseCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: str | None = None


class KnowledgeBaseResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    description: str | None = None
    created_at: datetime


class KnowledgeBaseListResponse(BaseModel):
    knowledge_bases: list[KnowledgeBaseResponse]
