"""Google Gemini LLM provider implementation.

Uses the google-generativeai SDK. Gemini reads PDFs natively, so the
vision extraction path sends the document bytes inline.
All external calls have a timeout and structured error logging.
"""

import asyncio

import google.generativeai as genai
import structlog

from app.services.llm.base import IndexedEmbedding, LLMProvider, LLMResponse, ProviderKind
from app.services.llm.prompts import VISION_EXTRACTION_PROMPT

logger = structlog.get_logger(__name__)

_EMBEDDING_MODEL = "models/gemini-embedding-001"


class GeminiProvider(LLMProvider):
    """Gemini implementation of LLMProvider."""

    kind = ProviderKind.GEMINI

    def __init__(
        self,
        api_key: str,
        model: str = "gemini-2.5-flash",
        embedding_model: str = _EMBEDDING_MODEL,
        embedding_dimensions: int | None = None,
        generation_timeout: float = 60.0,
        embedding_timeout: float = 30.0,
        vision_timeout: float = 120.0,
    ) -> None:
        genai.configure(api_key=api_key)
        self._model_name = model
        self._embedding_model = embedding_model
        self._embedding_dimensions = embedding_dimensions
        self._generation_timeout = generation_timeout
        self._embedding_timeout = embedding_timeout
        self._vision_timeout = vision_timeout
        logger.info("gemini_provider_initialized", model=model)

    def _build_model(self, system_prompt: str, model: str | None = None) -> genai.GenerativeModel:
        """Build a GenerativeModel with the given system instruction."""
        return genai.GenerativeModel(
            model_name=model or self._model_name,
            system_instruction=system_prompt or None,
        )

    @staticmethod
    def _response_text(response) -> str:
        # response.text raises when Gemini returns no valid Part
        # (safety block, empty candidates).
        try:
            return response.text
        except (ValueError, AttributeError):
            text = ""
            if response.candidates:
                try:
                    for part in response.candidates[0].content.parts:
                        if getattr(part, "text", None):
                            text += part.text
                except (IndexError, AttributeError):
                    pass
            return text

    async def generate(
        self,
        prompt: str,
        system_prompt: str,
        max_tokens: int = 1024,
        temperature: float = 0.7,
        model: str | None = None,
    ) -> LLMResponse:
        """Generate a complete response using Gemini."""
        gm = self._build_model(system_prompt, model)
        generation_config = genai.GenerationConfig(
            max_output_tokens=max_tokens,
            temperature=temperature,
        )
        try:
            response = await asyncio.wait_for(
                gm.generate_content_async(prompt, generation_config=generation_config),
                timeout=self._generation_timeout,
            )
        except asyncio.TimeoutError as e:
            logger.error("gemini_generate_timeout", model=gm.model_name, prompt_len=len(prompt))
            raise RuntimeError(
                f"Gemini generate timed out after {self._generation_timeout}s"
            ) from e
        except Exception as e:
            logger.error(
                "gemini_generate_failed",
                error=str(e),
                model=gm.model_name,
                prompt_len=len(prompt),
            )
            raise RuntimeError(f"Gemini generate failed: {e}") from e

        text = self._response_text(response)
        if not text:
            logger.warning(
                "gemini_empty_response",
                prompt_len=len(prompt),
                candidates=len(response.candidates) if response.candidates else 0,
            )
        usage = response.usage_metadata
        result = LLMResponse(
            text=text,
            input_tokens=getattr(usage, "prompt_token_count", 0) or 0,
            output_tokens=getattr(usage, "candidates_token_count", 0) or 0,
            model=model or self._model_name,
        )
        logger.debug(
            "gemini_generate_ok",
            input_tokens=result.input_tokens,
            output_tokens=result.output_tokens,
            prompt_len=len(prompt),
        )
        return result

    async def embed_batch(self, texts: list[str]) -> list[IndexedEmbedding]:
        """Embed a batch with gemini-embedding-001.

        The genai.embed_content SDK call is synchronous, so it runs in a
        thread pool to avoid blocking the event loop. Gemini returns vectors
        in input order, so the position is the index.
        """
        kwargs = {"output_dimensionality": self._embedding_dimensions} if self._embedding_dimensions else {}
        try:
            result: dict = await asyncio.wait_for(
                asyncio.to_thread(
                    genai.embed_content,
                    model=self._embedding_model,
                    content=texts,
                    task_type="retrieval_document",
                    **kwargs,
                ),
                timeout=self._embedding_timeout,
            )
        except asyncio.TimeoutError as e:
            logger.error(
                "gemini_embed_timeout",
                batch_size=len(texts),
                timeout_seconds=self._embedding_timeout,
            )
            raise RuntimeError(
                f"Gemini embedding timed out after {self._embedding_timeout}s"
            ) from e
        except Exception as e:
            logger.error("gemini_embed_failed", error=str(e), batch_size=len(texts))
            raise RuntimeError(f"Gemini embed failed: {e}") from e

        embeddings = result["embedding"]
        logger.debug("gemini_embed_ok", batch_size=len(texts))
        return [IndexedEmbedding(index=i, vector=list(v)) for i, v in enumerate(embeddings)]

    async def extract_document(self, data: bytes, mime_type: str, title: str) -> str:
        """Transcribe a document with Gemini's native PDF understanding."""
        gm = self._build_model(VISION_EXTRACTION_PROMPT)
        try:
            response = await asyncio.wait_for(
                gm.generate_content_async(
                    [
                        {"mime_type": mime_type, "data": data},
                        f'Extract all content from "{title}". '
                        "Include every detail visible on each page.",
                    ],
                    generation_config=genai.GenerationConfig(max_output_tokens=8192),
                ),
                timeout=self._vision_timeout,
            )
        except asyncio.TimeoutError as e:
            raise RuntimeError(
                f"Gemini vision extraction timed out after {self._vision_timeout}s"
            ) from e
        except Exception as e:
            raise RuntimeError(f"Gemini vision extraction failed: {e}") from e
        return self._response_text(response)
