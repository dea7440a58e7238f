"""FastAPI application entrypoint.

All routes prefixed /v1. Auto-generated OpenAPI docs at /docs.

Clients and services are built once during the lifespan and stored on
app.state for injection via Depends(). The learning loop worker runs for
the lifetime of the app, and the PENDING document sweep runs on an
APScheduler interval.

Run with: uvicorn app.main:create_app --factory
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api.v1.agents import router as agents_router
from app.api.v1.chat import router as chat_router
from app.api.v1.health import router as health_router
from app.api.v1.knowledge import kb_router as knowledge_bases_router
from app.api.v1.knowledge import router as knowledge_router
from app.core.config import Settings, get_settings
from app.core.container import Services, build_services
from app.core.exceptions import ArchiError
from app.core.logging import configure_logging
from app.services.llm.base import ProviderRegistry

logger = structlog.get_logger(__name__)


async def _pending_document_sweep(services: Services) -> None:
    """Process recent PENDING documents. Called by APScheduler."""
    try:
        await services.ingestion.process_pending_documents()
    except Exception as e:
        logger.error("pending_document_sweep_failed", error=str(e))


def create_app(
    settings: Settings | None = None,
    providers: ProviderRegistry | None = None,
    enable_scheduler: bool = True,
) -> FastAPI:
    """Build the application. ``providers`` overrides the registry built from settings."""
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        # --- Startup ---
        logger.info("app_startup", env=settings.app_env)
        services = await build_services(settings, providers=providers)
        services.learning.start()

        app.state.settings = settings
        app.state.services = services
        app.state.session_factory = services.session_factory
        app.state.providers = services.providers
        app.state.ingestion_service = services.ingestion
        app.state.query_service = services.query
        app.state.learning_loop = services.learning

        scheduler = None
        if enable_scheduler:
            scheduler = AsyncIOScheduler()
            scheduler.add_job(
                _pending_document_sweep,
                "interval",
                minutes=settings.pending_sweep_interval_minutes,
                args=[services],
                id="pending_document_sweep",
                max_instances=1,
            )
            scheduler.start()
        app.state.scheduler = scheduler

        yield

        # --- Shutdown ---
        logger.info("app_shutdown")
        if scheduler is not None:
            scheduler.shutdown(wait=False)
        await services.close()

    app = FastAPI(
        title="Archi Tenant Knowledge RAG API",
        description="Multi-tenant document ingestion and grounded question answering.",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if not settings.is_production else [],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(ArchiError)
    async def archi_error_handler(request: Request, exc: ArchiError) -> JSONResponse:
        """Structured error response for all pipeline exceptions."""
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    app.include_router(health_router, prefix="/v1")
    app.include_router(knowledge_router, prefix="/v1")
    app.include_router(knowledge_bases_router, prefix="/v1")
    app.include_router(agents_router, prefix="/v1")
    app.include_router(chat_router, prefix="/v1")
    return app
