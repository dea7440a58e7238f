"""Chat query endpoint, the messaging transport boundary."""

import structlog
from fastapi import APIRouter, Depends

from app.api.deps import get_query_service, get_tenant_id
from app.schemas.chat import ChatQueryRequest, ChatQueryResponse
from app.services.agent.core import AgentQueryService

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/chat", tags=["chat"])


@router.post("/query", response_model=ChatQueryResponse)
async def chat_query(
    body: ChatQueryRequest,
    tenant_id: str = Depends(get_tenant_id),
    service: AgentQueryService = Depends(get_query_service),
) -> ChatQueryResponse:
    """Answer one inbound message. Failures degrade to an apology with should_handoff=True."""
    answer, should_handoff = await service.handle_inbound_message(
        tenant_id,
        body.agent_id,
        body.question,
        conversation_id=body.conversation_id,
    )
    if should_handoff:
        logger.info(
            "chat_handoff",
            tenant_id=tenant_id,
            conversation_id=body.conversation_id,
        )
    return ChatQueryResponse(answer=answer, should_handoff=should_handoff)
