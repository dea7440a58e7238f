"""Sentence-boundary-aware text chunking.

Windows of ~800 tokens (4 chars/token heuristic) with ~200 tokens of
overlap. Each cut is moved to the last sentence terminator within
±200 characters of the target boundary when that still leaves the chunk
more than 100 characters long.

Public API:
    - clean_text(text) → str
    - chunk_text(text, title) → list[TextChunk]
    - estimate_page_number(text, char_index) → int
    - estimate_tokens(text) → int
"""

from __future__ import annotations

import re
from dataclasses import dataclass

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

CHARS_PER_TOKEN = 4
CHUNK_TOKENS = 800
OVERLAP_TOKENS = 200
CHUNK_SIZE = CHUNK_TOKENS * CHARS_PER_TOKEN      # 3200 chars
CHUNK_OVERLAP = OVERLAP_TOKENS * CHARS_PER_TOKEN  # 800 chars

_BOUNDARY_WINDOW = 200     # chars searched either side of the target cut
_MIN_CUT_OFFSET = 100      # a cut must land this far past the chunk start
_MIN_CHUNK_CHARS = 50      # shorter chunks are noise
_CHARS_PER_PAGE = 2500     # used when the text carries no form feeds
_PAGE_BREAK = "\f"

_SENTENCE_ENDINGS = (". ", ".\n", "? ", "?\n", "! ", "!\n")
_BLANK_LINES = re.compile(r"\n{3,}")


@dataclass
class TextChunk:
    """One chunk with offsets into the cleaned text."""

    index: int
    content: str
    start_char: int
    end_char: int
    page_number: int
    token_count: int


def clean_text(text: str) -> str:
    """Normalize line endings and collapse runs of blank lines."""
    return _BLANK_LINES.sub("\n\n", text.replace("\r\n", "\n")).strip()


def estimate_tokens(text: str) -> int:
    return -(-len(text) // CHARS_PER_TOKEN)


def estimate_page_number(text: str, char_index: int) -> int:
    """1-based page for a character offset.

    Form feeds are treated as explicit page breaks; without any, pages
    are assumed to hold a fixed number of characters.
    """
    breaks = text.count(_PAGE_BREAK, 0, char_index)
    if breaks:
        return breaks + 1
    return char_index // _CHARS_PER_PAGE + 1


def _find_sentence_end(text: str, start: int, end: int) -> int:
    """Cut point after the last sentence terminator near ``end``, or ``end``."""
    lo = max(end - _BOUNDARY_WINDOW, start)
    hi = min(end + _BOUNDARY_WINDOW, len(text))
    window = text[lo:hi]

    best = -1
    for ending in _SENTENCE_ENDINGS:
        pos = window.rfind(ending)
        if pos > best:
            best = pos
    if best == -1:
        return end

    cut = lo + best + 1  # keep the terminator, drop the whitespace
    if cut - start > _MIN_CUT_OFFSET:
        return cut
    return end


def chunk_text(
    text: str,
    title: str,
    chunk_size: int = CHUNK_SIZE,
    overlap: int = CHUNK_OVERLAP,
) -> list[TextChunk]:
    """Split cleaned text into overlapping chunks.

    ``start_char``/``end_char`` index the cleaned text and describe the
    untrimmed slice a chunk came from. The first kept chunk is prefixed
    with a ``Document: {title}`` header. Loop ends once the final slice
    reaches the end of the text, so a trailing remainder shorter than the
    overlap is never re-chunked.
    """
    text = clean_text(text)
    length = len(text)
    chunks: list[TextChunk] = []
    start = 0

    while start < length:
        end = min(start + chunk_size, length)
        if end < length:
            end = _find_sentence_end(text, start, end)

        content = text[start:end].strip()
        if len(content) > _MIN_CHUNK_CHARS:
            if not chunks:
                content = f"Document: {title}\n\n{content}"
            chunks.append(
                TextChunk(
                    index=len(chunks),
                    content=content,
                    start_char=start,
                    end_char=end,
                    page_number=estimate_page_number(text, start),
                    token_count=estimate_tokens(content),
                )
            )

        if end >= length:
            break
        next_start = end - overlap
        if next_start <= start or next_start >= length - _MIN_CUT_OFFSET:
            break
        start = next_start

    return chunks
