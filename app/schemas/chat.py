"""Chat query request/response schemas."""

import uuid

from pydantic import BaseModel, ConfigDict, Field


class ChatQueryRequest(BaseModel):
    """POST /v1/chat/query request body."""

    question: str = Field(..., min_length=1, max_length=4000)
    agent_id: uuid.UUID | None = None
    conversation_id: str | None = None


class ChatQueryResponse(BaseModel):
    """Transport boundary response: answer text and the handoff flag."""

    answer: str
    should_handoff: bool


class CitationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    chunk_id: str
    document_id: str
    document_title: str
    snippet: str
    score: float


class AgentQueryResponse(BaseModel):
    """Full query result, returned by POST /v1/agents/{id}/test."""

    model_config = ConfigDict(from_attributes=True)

    content: str
    confidence: float
    tokens_used: int
    latency_ms: int
    model: str
    should_handoff: bool
    outcome: str
    agent_id: str | None = None
    agent_name: str | None = None
    citations: list[CitationOut] = Field(default_factory=list)
