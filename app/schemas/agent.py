"""Agent configuration schemas."""

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.models.agent import DEFAULT_FALLBACK_MESSAGE
from app.services.llm.base import ProviderKind


class AgentCreate(BaseModel):
    """POST /v1/agents request body."""

    name: str = Field(..., min_length=1, max_length=200)
    system_prompt: str = Field(..., min_length=1)
    provider: str = "openai"
    model: str = "gpt-4-turbo-preview"
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: int = Field(default=1024, ge=1, le=32000)
    confidence_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    fallback_message: str = DEFAULT_FALLBACK_MESSAGE
    greeting: str | None = None
    knowledge_base_ids: list[uuid.UUID] = Field(default_factory=list)

    @field_validator("provider")
    @classmethod
    def _known_provider(cls, v: str) -> str:
        return ProviderKind.parse(v).value


class AgentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    system_prompt: str
    provider: str
    model: str
    temperature: float
    max_tokens: int
    confidence_threshold: float
    fallback_message: str | None = None
    greeting: str | None = None
    is_active: bool
    knowledge_base_ids: list[uuid.UUID] = Field(default_factory=list)
    created_at: datetime


class AgentTestRequest(BaseModel):
    question: str = Field(..., min_length=1, max_length=4000)
