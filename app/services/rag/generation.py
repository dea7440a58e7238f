"""Grounded response generation.

Wraps the assembled context and the user's question in the standing
RAG instructions and sends them to the agent's completion provider.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache

import structlog
import tiktoken

from app.core.exceptions import GenerationError
from app.services.llm.base import LLMProvider
from app.services.llm.prompts import RAG_USER_PROMPT_TEMPLATE

logger = structlog.get_logger(__name__)

EMPTY_COMPLETION_TEXT = "I could not generate a response."


@dataclass(frozen=True)
class GenerationOptions:
    temperature: float = 0.7
    max_tokens: int = 1024
    model: str = "gpt-4-turbo-preview"


@dataclass
class GenerationResult:
    content: str
    tokens_used: int
    model: str


def build_user_prompt(question: str, context: str) -> str:
    return RAG_USER_PROMPT_TEMPLATE.format(context=context, question=question)


@lru_cache(maxsize=1)
def _encoder() -> tiktoken.Encoding:
    return tiktoken.get_encoding("cl100k_base")


def _count_tokens(*texts: str) -> int:
    enc = _encoder()
    return sum(len(enc.encode(t)) for t in texts)


class ResponseGenerator:
    async def generate(
        self,
        provider: LLMProvider,
        system_prompt: str,
        question: str,
        context: str,
        options: GenerationOptions | None = None,
    ) -> GenerationResult:
        """Run one completion. Provider failures raise GenerationError."""
        options = options or GenerationOptions()
        prompt = build_user_prompt(question, context)

        try:
            response = await provider.generate(
                prompt=prompt,
                system_prompt=system_prompt,
                max_tokens=options.max_tokens,
                temperature=options.temperature,
                model=options.model,
            )
        except Exception as e:
            logger.error("generation_failed", model=options.model, error=str(e))
            raise GenerationError(f"Completion failed: {e}") from e

        content = response.text or EMPTY_COMPLETION_TEXT
        tokens_used = response.input_tokens + response.output_tokens
        if tokens_used == 0:
            # Some providers omit usage metadata.
            tokens_used = _count_tokens(system_prompt, prompt, content)

        return GenerationResult(
            content=content,
            tokens_used=tokens_used,
            model=response.model or options.model,
        )
