"""Builds the ProviderRegistry from settings.

Called once from the FastAPI lifespan and once from the ingestion CLI.
Only providers with an API key are constructed.
"""

import structlog

from app.core.config import Settings
from app.core.exceptions import ConfigurationError
from app.services.llm.base import LLMProvider, ProviderKind, ProviderRegistry
from app.services.llm.gemini import GeminiProvider
from app.services.llm.openai import OpenAIProvider

logger = structlog.get_logger(__name__)


def build_providers(settings: Settings) -> ProviderRegistry:
    providers: dict[ProviderKind, LLMProvider] = {}

    if settings.openai_api_key:
        providers[ProviderKind.OPENAI] = OpenAIProvider(
            api_key=settings.openai_api_key,
            default_model=settings.default_completion_model,
            embedding_model=settings.embedding_model,
            embedding_dimensions=settings.embedding_dimensions,
            vision_model=settings.vision_model,
            base_url=settings.openai_base_url or None,
            generation_timeout=settings.generation_timeout_seconds,
            embedding_timeout=settings.embedding_timeout_seconds,
            vision_timeout=settings.vision_timeout_seconds,
        )

    if settings.gemini_api_key:
        gemini_embeds = ProviderKind.parse(settings.embedding_provider) is ProviderKind.GEMINI
        providers[ProviderKind.GEMINI] = GeminiProvider(
            api_key=settings.gemini_api_key,
            embedding_model=settings.embedding_model if gemini_embeds else "models/gemini-embedding-001",
            embedding_dimensions=settings.embedding_dimensions if gemini_embeds else None,
            generation_timeout=settings.generation_timeout_seconds,
            embedding_timeout=settings.embedding_timeout_seconds,
            vision_timeout=settings.vision_timeout_seconds,
        )

    if not providers:
        raise ConfigurationError("No model provider is configured; set OPENAI_API_KEY or GEMINI_API_KEY")

    logger.info("providers_ready", providers=[k.value for k in providers])
    return ProviderRegistry(providers)
