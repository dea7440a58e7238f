"""Agent configuration endpoints."""

from uuid import UUID

import structlog
from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.api.deps import get_db, get_query_service, get_tenant_id
from app.core.exceptions import AgentNotFoundError, KnowledgeBaseNotFoundError
from app.models.agent import Agent
from app.models.knowledge import KnowledgeBase
from app.schemas.agent import AgentCreate, AgentResponse, AgentTestRequest
from app.schemas.chat import AgentQueryResponse, CitationOut
from app.services.agent.core import AgentQueryResult, AgentQueryService

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/agents", tags=["agents"])


def _to_response(agent: Agent) -> AgentResponse:
    kbs = sorted(agent.knowledge_bases, key=lambda kb: kb.created_at)
    return AgentResponse(
        id=agent.id,
        name=agent.name,
        system_prompt=agent.system_prompt,
        provider=agent.provider,
        model=agent.model,
        temperature=agent.temperature,
        max_tokens=agent.max_tokens,
        confidence_threshold=agent.confidence_threshold,
        fallback_message=agent.fallback_message,
        greeting=agent.greeting,
        is_active=agent.is_active,
        knowledge_base_ids=[kb.id for kb in kbs],
        created_at=agent.created_at,
    )


def query_result_response(result: AgentQueryResult) -> AgentQueryResponse:
    return AgentQueryResponse(
        content=result.content,
        confidence=result.confidence,
        tokens_used=result.tokens_used,
        latency_ms=result.latency_ms,
        model=result.model,
        should_handoff=result.should_handoff,
        outcome=result.outcome.value,
        agent_id=result.agent_id,
        agent_name=result.agent_name,
        citations=[CitationOut.model_validate(c) for c in result.citations],
    )


@router.post("", status_code=201, response_model=AgentResponse)
async def create_agent(
    body: AgentCreate,
    tenant_id: str = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db),
) -> AgentResponse:
    """Create an agent linked to the given knowledge bases."""
    kbs: list[KnowledgeBase] = []
    if body.knowledge_base_ids:
        result = await db.execute(
            select(KnowledgeBase).where(
                KnowledgeBase.id.in_(body.knowledge_base_ids),
                KnowledgeBase.tenant_id == tenant_id,
            )
        )
        kbs = list(result.scalars().all())
        missing = set(body.knowledge_base_ids) - {kb.id for kb in kbs}
        if missing:
            raise KnowledgeBaseNotFoundError(
                f"Knowledge base(s) not found: {', '.join(sorted(str(m) for m in missing))}"
            )

    agent = Agent(
        tenant_id=tenant_id,
        name=body.name,
        system_prompt=body.system_prompt,
        provider=body.provider,
        model=body.model,
        temperature=body.temperature,
        max_tokens=body.max_tokens,
        confidence_threshold=body.confidence_threshold,
        fallback_message=body.fallback_message,
        greeting=body.greeting,
        is_active=True,
    )
    agent.knowledge_bases = kbs
    db.add(agent)
    await db.flush()

    logger.info(
        "agent_created",
        tenant_id=tenant_id,
        agent_id=str(agent.id),
        knowledge_bases=len(kbs),
    )
    return _to_response(agent)


@router.get("/{agent_id}", response_model=AgentResponse)
async def get_agent(
    agent_id: UUID,
    tenant_id: str = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db),
) -> AgentResponse:
    result = await db.execute(
        select(Agent)
        .options(selectinload(Agent.knowledge_bases))
        .where(Agent.id == agent_id, Agent.tenant_id == tenant_id)
    )
    agent = result.scalar_one_or_none()
    if agent is None:
        raise AgentNotFoundError(f"Agent {agent_id} not found")
    return _to_response(agent)


@router.post("/{agent_id}/test", response_model=AgentQueryResponse)
async def test_agent(
    agent_id: UUID,
    body: AgentTestRequest,
    tenant_id: str = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db),
    service: AgentQueryService = Depends(get_query_service),
) -> AgentQueryResponse:
    """Ask an agent a question and return the full result. Test turns are not learned from."""
    await service.load_agent(db, tenant_id, agent_id)
    result = await service.query_agent(tenant_id, agent_id, body.question, learn=False)
    return query_result_response(result)
