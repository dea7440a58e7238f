"""Shared FastAPI dependencies: tenant header, database sessions, services.

Every service is created once during the FastAPI lifespan and stored on
app.state. Routers retrieve them via Depends(), never by direct import.
"""

from collections.abc import AsyncGenerator

from fastapi import Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ConfigurationError
from app.db.postgres import session_scope
from app.services.agent.core import AgentQueryService
from app.services.rag.ingestion import IngestionService


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------

async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """Yield a request-scoped session that commits on success."""
    async for session in session_scope(request.app.state.session_factory):
        yield session


# ---------------------------------------------------------------------------
# Tenant
# ---------------------------------------------------------------------------

async def get_tenant_id(x_tenant_id: str = Header(..., alias="X-Tenant-ID")) -> str:
    """Tenant identity comes from the X-Tenant-ID header."""
    tenant_id = x_tenant_id.strip()
    if not tenant_id:
        raise ConfigurationError("X-Tenant-ID header is empty")
    return tenant_id


# ---------------------------------------------------------------------------
# Services (retrieved from app.state, set during lifespan)
# ---------------------------------------------------------------------------

def get_ingestion_service(request: Request) -> IngestionService:
    return request.app.state.ingestion_service


def get_query_service(request: Request) -> AgentQueryService:
    return request.app.state.query_service

