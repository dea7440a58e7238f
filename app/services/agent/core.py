"""Agent query engine: one conversational turn.

Turn flow:
  load agent config → retrieve (KB-scoped when the agent has KBs)
  → generate → score confidence → handoff decision
  → persist the exchange → (confidence ≥ 0.7) submit to the learning loop

Any failure inside the turn degrades to a fixed apology answer with
confidence 0 and should_handoff=True; the error is logged, never shown.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from app.core.exceptions import AgentNotFoundError, ConfigurationError
from app.models.agent import DEFAULT_FALLBACK_MESSAGE, Agent
from app.models.message import Citation, Message
from app.services.agent.handoff import (
    DEFAULT_CONFIDENCE_THRESHOLD,
    FALLBACK_APPEND_BELOW,
    TurnOutcome,
    compute_confidence,
    decide_outcome,
    qualifies_for_learning,
)
from app.services.agent.learning import LearningExchange, LearningLoop
from app.services.llm.base import ProviderRegistry
from app.services.rag.generation import GenerationOptions, ResponseGenerator
from app.services.rag.retrieval import DEFAULT_TOP_K, RetrievalService

logger = structlog.get_logger(__name__)

APOLOGY_MESSAGE = (
    "I'm sorry, I encountered an error while processing your question. "
    "Please try again or contact support if the issue persists."
)
_SNIPPET_CHARS = 200


@dataclass(frozen=True)
class AgentConfig:
    """Snapshot of an agent read fresh for one query."""

    id: str
    tenant_id: str
    name: str
    system_prompt: str
    provider: str = "openai"
    model: str = "gpt-4-turbo-preview"
    temperature: float = 0.7
    max_tokens: int = 1024
    confidence_threshold: float = DEFAULT_CONFIDENCE_THRESHOLD
    fallback_message: str = DEFAULT_FALLBACK_MESSAGE
    knowledge_base_ids: tuple[str, ...] = ()  # oldest first

    @classmethod
    def from_model(cls, agent: Agent) -> AgentConfig:
        kbs = sorted(agent.knowledge_bases, key=lambda kb: kb.created_at)
        return cls(
            id=str(agent.id),
            tenant_id=agent.tenant_id,
            name=agent.name,
            system_prompt=agent.system_prompt,
            provider=agent.provider or "openai",
            model=agent.model or "gpt-4-turbo-preview",
            temperature=agent.temperature if agent.temperature is not None else 0.7,
            max_tokens=agent.max_tokens or 1024,
            confidence_threshold=(
                agent.confidence_threshold
                if agent.confidence_threshold is not None
                else DEFAULT_CONFIDENCE_THRESHOLD
            ),
            fallback_message=agent.fallback_message or DEFAULT_FALLBACK_MESSAGE,
            knowledge_base_ids=tuple(str(kb.id) for kb in kbs),
        )


@dataclass
class CitationResult:
    chunk_id: str
    document_id: str
    document_title: str
    snippet: str
    score: float


@dataclass
class AgentQueryResult:
    content: str
    confidence: float
    tokens_used: int
    latency_ms: int
    model: str
    should_handoff: bool
    outcome: TurnOutcome
    citations: list[CitationResult] = field(default_factory=list)
    agent_id: str | None = None
    agent_name: str | None = None
    fallback_message: str = DEFAULT_FALLBACK_MESSAGE
    message_id: str | None = None


class AgentQueryService:
    """Answers questions for a tenant's agent."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        retrieval: RetrievalService,
        generator: ResponseGenerator,
        providers: ProviderRegistry,
        learning: LearningLoop | None = None,
        require_knowledge_base_scope: bool = False,
        top_k: int = DEFAULT_TOP_K,
    ) -> None:
        self._session_factory = session_factory
        self._retrieval = retrieval
        self._generator = generator
        self._providers = providers
        self._learning = learning
        self._require_kb_scope = require_knowledge_base_scope
        self._top_k = top_k

    # -- Agent loading -------------------------------------------------------

    async def load_agent(
        self,
        session: AsyncSession,
        tenant_id: str,
        agent_id: str | uuid.UUID | None = None,
    ) -> AgentConfig:
        """Load an agent with its knowledge bases.

        Without ``agent_id`` the tenant's oldest active agent is used.
        Raises AgentNotFoundError / ConfigurationError.
        """
        stmt = (
            select(Agent)
            .options(selectinload(Agent.knowledge_bases))
            .where(Agent.tenant_id == tenant_id)
        )
        if agent_id is not None:
            try:
                agent_uuid = agent_id if isinstance(agent_id, uuid.UUID) else uuid.UUID(str(agent_id))
            except ValueError as e:
                raise AgentNotFoundError(f"Agent {agent_id} not found") from e
            agent = (await session.execute(stmt.where(Agent.id == agent_uuid))).scalar_one_or_none()
            if agent is None:
                raise AgentNotFoundError(f"Agent {agent_id} not found")
        else:
            agent = (
                await session.execute(
                    stmt.where(Agent.is_active.is_(True)).order_by(Agent.created_at).limit(1)
                )
            ).scalar_one_or_none()
            if agent is None:
                raise ConfigurationError(f"No active agent configured for tenant {tenant_id}")

        config = AgentConfig.from_model(agent)
        if self._require_kb_scope and not config.knowledge_base_ids:
            raise ConfigurationError(f"Agent {config.id} has no knowledge bases linked")
        return config

    # -- Query ---------------------------------------------------------------

    async def query_agent(
        self,
        tenant_id: str,
        agent_id: str | uuid.UUID | None,
        question: str,
        conversation_id: str | None = None,
        learn: bool = True,
    ) -> AgentQueryResult:
        """Answer ``question`` with the agent's knowledge. Never raises."""
        started = time.monotonic()
        config: AgentConfig | None = None

        try:
            async with self._session_factory() as session:
                config = await self.load_agent(session, tenant_id, agent_id)

            provider = self._providers.get(config.provider)
            retrieval = await self._retrieval.retrieve(
                question,
                tenant_id,
                knowledge_base_ids=list(config.knowledge_base_ids) or None,
                top_k=self._top_k,
            )
            generation = await self._generator.generate(
                provider,
                system_prompt=config.system_prompt,
                question=question,
                context=retrieval.context,
                options=GenerationOptions(
                    temperature=config.temperature,
                    max_tokens=config.max_tokens,
                    model=config.model,
                ),
            )

            confidence = compute_confidence(retrieval.scores, retrieval.has_relevant_context)
            outcome = decide_outcome(confidence, config.confidence_threshold)
            citations = [
                CitationResult(
                    chunk_id=m.chunk_id,
                    document_id=m.document_id,
                    document_title=m.document_title,
                    snippet=m.content[:_SNIPPET_CHARS] + "...",
                    score=m.score,
                )
                for m in retrieval.matches
            ]
            result = AgentQueryResult(
                content=generation.content,
                confidence=confidence,
                tokens_used=generation.tokens_used,
                latency_ms=int((time.monotonic() - started) * 1000),
                model=config.model,
                should_handoff=outcome is TurnOutcome.HANDED_OFF,
                outcome=outcome,
                citations=citations,
                agent_id=config.id,
                agent_name=config.name,
                fallback_message=config.fallback_message,
            )
        except Exception as e:
            logger.error(
                "agent_query_failed",
                tenant_id=tenant_id,
                agent_id=str(agent_id) if agent_id else None,
                error=str(e),
                error_type=type(e).__name__,
            )
            return self._apology(config, started)

        result.message_id = await self._persist(tenant_id, question, conversation_id, result)

        logger.info(
            "agent_query_complete",
            tenant_id=tenant_id,
            agent_id=result.agent_id,
            confidence=round(result.confidence, 3),
            outcome=result.outcome.value,
            citations=len(result.citations),
            latency_ms=result.latency_ms,
        )

        if learn:
            self._maybe_learn(tenant_id, config, question, conversation_id, result)
        return result

    async def handle_inbound_message(
        self,
        tenant_id: str,
        agent_id: str | uuid.UUID | None,
        question: str,
        conversation_id: str | None = None,
    ) -> tuple[str, bool]:
        """Transport boundary: text in, (answer, should_handoff) out."""
        result = await self.query_agent(tenant_id, agent_id, question, conversation_id)
        answer = result.content
        if result.should_handoff and result.confidence < FALLBACK_APPEND_BELOW and result.fallback_message:
            answer = f"{answer}\n\n{result.fallback_message}"
        return answer, result.should_handoff

    # -- Helpers -------------------------------------------------------------

    @staticmethod
    def _apology(config: AgentConfig | None, started: float) -> AgentQueryResult:
        return AgentQueryResult(
            content=APOLOGY_MESSAGE,
            confidence=0.0,
            tokens_used=0,
            latency_ms=int((time.monotonic() - started) * 1000),
            model=config.model if config else "",
            should_handoff=True,
            outcome=TurnOutcome.HANDED_OFF,
            citations=[],
            agent_id=config.id if config else None,
            agent_name=config.name if config else None,
            fallback_message=config.fallback_message if config else DEFAULT_FALLBACK_MESSAGE,
        )

    async def _persist(
        self,
        tenant_id: str,
        question: str,
        conversation_id: str | None,
        result: AgentQueryResult,
    ) -> str | None:
        """Store the exchange and its citations. Failure is logged, not raised."""
        try:
            async with self._session_factory() as session:
                message = Message(
                    tenant_id=tenant_id,
                    agent_id=uuid.UUID(result.agent_id) if result.agent_id else None,
                    conversation_id=conversation_id,
                    question=question,
                    answer=result.content,
                    confidence=result.confidence,
                    should_handoff=result.should_handoff,
                    model=result.model,
                    tokens_used=result.tokens_used,
                    latency_ms=result.latency_ms,
                )
                session.add(message)
                await session.flush()
                for c in result.citations:
                    session.add(
                        Citation(
                            message_id=message.id,
                            chunk_id=c.chunk_id,
                            document_id=c.document_id,
                            document_title=c.document_title,
                            snippet=c.snippet,
                            score=c.score,
                        )
                    )
                await session.commit()
                return str(message.id)
        except Exception as e:
            logger.error("agent_message_persist_failed", tenant_id=tenant_id, error=str(e))
            return None

    def _maybe_learn(
        self,
        tenant_id: str,
        config: AgentConfig,
        question: str,
        conversation_id: str | None,
        result: AgentQueryResult,
    ) -> None:
        if self._learning is None or not config.knowledge_base_ids:
            return
        if not qualifies_for_learning(result.confidence):
            return
        self._learning.submit(
            LearningExchange(
                tenant_id=tenant_id,
                knowledge_base_id=config.knowledge_base_ids[0],
                question=question,
                answer=result.content,
                confidence=result.confidence,
                model=result.model,
                citation_titles=[c.document_title for c in result.citations],
                agent_id=config.id,
                conversation_id=conversation_id,
            )
        )
