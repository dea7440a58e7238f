"""OpenAI provider implementation.

Uses the AsyncOpenAI SDK for chat completions, embeddings and
vision-capable document extraction (PDF sent as a file content part).
Every call is bounded by a per-call timeout and structured error logging.
"""

import asyncio
import base64

import structlog
from openai import AsyncOpenAI

from app.services.llm.base import IndexedEmbedding, LLMProvider, LLMResponse, ProviderKind
from app.services.llm.prompts import VISION_EXTRACTION_PROMPT

logger = structlog.get_logger(__name__)


class OpenAIProvider(LLMProvider):
    """OpenAI chat + embeddings implementation of LLMProvider."""

    kind = ProviderKind.OPENAI

    def __init__(
        self,
        api_key: str,
        default_model: str = "gpt-4-turbo-preview",
        embedding_model: str = "text-embedding-3-small",
        embedding_dimensions: int = 1536,
        vision_model: str = "gpt-4o",
        base_url: str | None = None,
        generation_timeout: float = 60.0,
        embedding_timeout: float = 30.0,
        vision_timeout: float = 120.0,
    ) -> None:
        self._client = AsyncOpenAI(api_key=api_key, base_url=base_url or None)
        self._default_model = default_model
        self._embedding_model = embedding_model
        self._embedding_dimensions = embedding_dimensions
        self._vision_model = vision_model
        self._generation_timeout = generation_timeout
        self._embedding_timeout = embedding_timeout
        self._vision_timeout = vision_timeout
        logger.info(
            "openai_provider_initialized",
            model=default_model,
            embedding_model=embedding_model,
        )

    async def generate(
        self,
        prompt: str,
        system_prompt: str,
        max_tokens: int = 1024,
        temperature: float = 0.7,
        model: str | None = None,
    ) -> LLMResponse:
        """Generate a complete response with chat completions."""
        model_name = model or self._default_model
        try:
            response = await asyncio.wait_for(
                self._client.chat.completions.create(
                    model=model_name,
                    messages=[
                        {"role": "system", "content": system_prompt},
                        {"role": "user", "content": prompt},
                    ],
                    max_tokens=max_tokens,
                    temperature=temperature,
                ),
                timeout=self._generation_timeout,
            )
        except asyncio.TimeoutError as e:
            logger.error("openai_generate_timeout", model=model_name, prompt_len=len(prompt))
            raise RuntimeError(
                f"OpenAI generate timed out after {self._generation_timeout}s"
            ) from e
        except Exception as e:
            logger.error(
                "openai_generate_failed",
                error=str(e),
                model=model_name,
                prompt_len=len(prompt),
            )
            raise RuntimeError(f"OpenAI generate failed: {e}") from e

        text = response.choices[0].message.content if response.choices else None
        usage = response.usage
        result = LLMResponse(
            text=text or "",
            input_tokens=usage.prompt_tokens if usage else 0,
            output_tokens=usage.completion_tokens if usage else 0,
            model=response.model or model_name,
        )
        logger.debug(
            "openai_generate_ok",
            input_tokens=result.input_tokens,
            output_tokens=result.output_tokens,
            model=result.model,
        )
        return result

    async def embed_batch(self, texts: list[str]) -> list[IndexedEmbedding]:
        """Embed a batch with one embeddings.create call."""
        try:
            response = await asyncio.wait_for(
                self._client.embeddings.create(
                    model=self._embedding_model,
                    input=texts,
                    dimensions=self._embedding_dimensions,
                ),
                timeout=self._embedding_timeout,
            )
        except asyncio.TimeoutError as e:
            logger.error("openai_embed_timeout", batch_size=len(texts))
            raise RuntimeError(
                f"OpenAI embedding timed out after {self._embedding_timeout}s"
            ) from e
        except Exception as e:
            logger.error("openai_embed_failed", error=str(e), batch_size=len(texts))
            raise RuntimeError(f"OpenAI embed failed: {e}") from e

        return [IndexedEmbedding(index=d.index, vector=list(d.embedding)) for d in response.data]

    async def extract_document(self, data: bytes, mime_type: str, title: str) -> str:
        """Send the document to a vision model and return its transcription."""
        encoded = base64.b64encode(data).decode("ascii")
        try:
            response = await asyncio.wait_for(
                self._client.chat.completions.create(
                    model=self._vision_model,
                    max_tokens=4096,
                    messages=[
                        {"role": "system", "content": VISION_EXTRACTION_PROMPT},
                        {
                            "role": "user",
                            "content": [
                                {
                                    "type": "text",
                                    "text": f'Extract all content from "{title}". '
                                    "Include every detail visible on each page.",
                                },
                                {
                                    "type": "file",
                                    "file": {
                                        "filename": f"{title}.pdf",
                                        "file_data": f"data:{mime_type};base64,{encoded}",
                                    },
                                },
                            ],
                        },
                    ],
                ),
                timeout=self._vision_timeout,
            )
        except asyncio.TimeoutError as e:
            raise RuntimeError(
                f"OpenAI vision extraction timed out after {self._vision_timeout}s"
            ) from e
        except Exception as e:
            raise RuntimeError(f"OpenAI vision extraction failed: {e}") from e

        content = response.choices[0].message.content if response.choices else None
        return content or ""
