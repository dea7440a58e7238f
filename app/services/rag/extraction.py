"""Raw bytes → plain text, per declared file type.

PDF is the layout-sensitive type: it goes through the provider's
vision-capable extraction first and falls back to pypdf text extraction
when that path fails or comes back empty. Pages are separated by form
feeds in both paths so the chunker can estimate page numbers.
"""

from __future__ import annotations

import asyncio
import io
import json
import re
from enum import Enum

import structlog
from pypdf import PdfReader, PdfWriter
from pypdf.errors import PdfReadError

from app.core.exceptions import ExtractionError
from app.services.llm.base import LLMProvider

logger = structlog.get_logger(__name__)

MAX_VISION_PAGES = 20
_PAGE_MARKER = re.compile(r"^\s*---\s*Page\s+\d+\s*---\s*$", re.MULTILINE | re.IGNORECASE)


class FileType(str, Enum):
    PDF = "PDF"
    TXT = "TXT"
    MD = "MD"
    HTML = "HTML"
    JSON = "JSON"

    @classmethod
    def parse(cls, value: str) -> FileType:
        try:
            return cls(value.strip().upper())
        except ValueError as e:
            raise ExtractionError(f"Unsupported file type: {value}") from e


def _split_pages(text: str) -> str:
    """Turn '--- Page N ---' markers into form feeds."""
    parts = [p.strip() for p in _PAGE_MARKER.split(text)]
    return "\f".join(p for p in parts if p)


def _trim_pdf(data: bytes, max_pages: int) -> bytes:
    """First ``max_pages`` pages of a PDF; the input unchanged if already short."""
    reader = PdfReader(io.BytesIO(data))
    if len(reader.pages) <= max_pages:
        return data
    writer = PdfWriter()
    for page in reader.pages[:max_pages]:
        writer.add_page(page)
    out = io.BytesIO()
    writer.write(out)
    return out.getvalue()


def _pypdf_text(data: bytes) -> str:
    try:
        reader = PdfReader(io.BytesIO(data))
        return "\f".join((page.extract_text() or "").strip() for page in reader.pages)
    except (PdfReadError, ValueError) as e:
        raise ExtractionError(f"Could not read PDF: {e}") from e


class DocumentExtractor:
    """Extracts plain text from uploaded files.

    ``vision`` is the provider used for layout-aware extraction; with
    None every PDF goes straight to pypdf.
    """

    def __init__(self, vision: LLMProvider | None = None, max_vision_pages: int = MAX_VISION_PAGES) -> None:
        self._vision = vision
        self._max_vision_pages = max_vision_pages

    async def extract(self, data: bytes, file_type: str, title: str = "") -> str:
        kind = FileType.parse(file_type)

        if kind is FileType.PDF:
            return await self._extract_pdf(data, title)

        if kind is FileType.JSON:
            try:
                parsed = json.loads(data.decode("utf-8", errors="replace"))
            except json.JSONDecodeError as e:
                raise ExtractionError(f"Invalid JSON document: {e}") from e
            return json.dumps(parsed, indent=2, ensure_ascii=False)

        return data.decode("utf-8", errors="replace")

    async def _extract_pdf(self, data: bytes, title: str) -> str:
        if self._vision is not None:
            try:
                text = await self._extract_pdf_vision(data, title)
                if text.strip():
                    logger.info("pdf_vision_extraction_ok", title=title, chars=len(text))
                    return text
                logger.warning("pdf_vision_extraction_empty", title=title)
            except Exception as e:
                logger.warning("pdf_vision_extraction_failed", title=title, error=str(e))

        text = await asyncio.to_thread(_pypdf_text, data)
        logger.info("pdf_text_extraction_ok", title=title, chars=len(text))
        return text

    async def _extract_pdf_vision(self, data: bytes, title: str) -> str:
        trimmed = await asyncio.to_thread(_trim_pdf, data, self._max_vision_pages)
        raw = await self._vision.extract_document(trimmed, "application/pdf", title)
        return _split_pages(raw)
