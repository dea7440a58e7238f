"""Abstract LLM provider interface and the provider tagged variant.

All provider implementations inherit from LLMProvider and declare their
ProviderKind. Business logic never imports a concrete provider directly:
providers are constructed once at startup, collected in a ProviderRegistry,
and looked up by kind.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum

from app.core.exceptions import ConfigurationError


class ProviderKind(str, Enum):
    """Closed set of supported model providers."""

    OPENAI = "openai"
    GEMINI = "gemini"

    @classmethod
    def parse(cls, value: str | ProviderKind) -> ProviderKind:
        """Case-insensitive parse. Raises ValueError for unknown providers."""
        if isinstance(value, ProviderKind):
            return value
        return cls(value.strip().lower())


@dataclass(frozen=True)
class LLMResponse:
    """Structured response from an LLM call, including token usage."""

    text: str
    input_tokens: int = 0
    output_tokens: int = 0
    model: str = ""


@dataclass(frozen=True)
class IndexedEmbedding:
    """One embedding plus the input position the provider reported for it."""

    index: int
    vector: list[float]


class LLMProvider(ABC):
    """Abstract base class for LLM providers."""

    kind: ProviderKind

    @abstractmethod
    async def generate(
        self,
        prompt: str,
        system_prompt: str,
        max_tokens: int = 1024,
        temperature: float = 0.7,
        model: str | None = None,
    ) -> LLMResponse:
        """Generate a complete response from the LLM.

        Args:
            prompt: The user/input prompt text.
            system_prompt: System-level instructions for the model.
            max_tokens: Maximum tokens in the generated response.
            temperature: Sampling temperature.
            model: Model identifier; the provider default when None.

        Returns:
            LLMResponse with text content, token usage and the model used.

        Raises:
            RuntimeError: If the LLM call fails or times out.
        """
        ...

    @abstractmethod
    async def embed_batch(self, texts: list[str]) -> list[IndexedEmbedding]:
        """Embed a batch of texts in a single provider call.

        Results may come back in any order; each carries the index of the
        input it belongs to.

        Raises:
            RuntimeError: If the embedding call fails or times out.
        """
        ...

    async def extract_document(self, data: bytes, mime_type: str, title: str) -> str:
        """Layout-aware text extraction from a binary document.

        Providers without a vision-capable model leave this unimplemented.
        """
        raise NotImplementedError(f"{type(self).__name__} has no vision extraction")


class ProviderRegistry:
    """Providers configured for this process, keyed by ProviderKind."""

    def __init__(self, providers: dict[ProviderKind, LLMProvider]) -> None:
        self._providers = dict(providers)

    def get(self, kind: ProviderKind | str) -> LLMProvider:
        try:
            parsed = ProviderKind.parse(kind)
        except ValueError as e:
            raise ConfigurationError(f"Unknown provider '{kind}'") from e
        provider = self._providers.get(parsed)
        if provider is None:
            raise ConfigurationError(f"Provider '{parsed.value}' is not configured")
        return provider

    def kinds(self) -> list[ProviderKind]:
        return list(self._providers)
