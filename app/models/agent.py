"""Agent ORM model: a tenant's bot configuration."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, DateTime, Float, Integer, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.postgres import Base
from app.models.knowledge import agent_knowledge_bases

DEFAULT_FALLBACK_MESSAGE = (
    "I'm not sure about that. Let me connect you with someone who can help."
)


class Agent(Base):
    __tablename__ = "agents"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    system_prompt: Mapped[str] = mapped_column(Text, nullable=False)
    provider: Mapped[str] = mapped_column(Text, default="openai")  # 'openai' | 'gemini'
    model: Mapped[str] = mapped_column(Text, default="gpt-4-turbo-preview")
    temperature: Mapped[float] = mapped_column(Float, default=0.7)
    max_tokens: Mapped[int] = mapped_column(Integer, default=1024)
    confidence_threshold: Mapped[float] = mapped_column(Float, default=0.7)
    fallback_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    greeting: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    # Relationships: eager-load explicitly with selectinload() when needed.
    knowledge_bases: Mapped[list["KnowledgeBase"]] = relationship(  # noqa: F821
        secondary=agent_knowledge_bases, back_populates="agents", lazy="noload"
    )
