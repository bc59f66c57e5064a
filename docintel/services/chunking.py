"""
Chunking Service

Splits per-page document text into overlapping, citeable Chunks.

Chunks never cross a page boundary, so every citation maps to exactly one
page. Within a page, paragraphs are packed greedily up to a target size;
each new chunk is seeded with the tail of the previous one so entities
and numbers spanning a boundary survive in at least one chunk.

Defaults:
    - target_chars=1200: fits comfortably in one embedding request.
    - overlap_chars=180: roughly one sentence carried across boundaries.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence

from docintel.models.schemas import ChunkMetadata, ChunkRecord, PageText

logger = logging.getLogger(__name__)

DEFAULT_TARGET_CHARS: int = 1200
DEFAULT_OVERLAP_CHARS: int = 180

PARAGRAPH_SEPARATOR: str = "\n\n"
# A paragraph this much larger than the target is hard-split.
HARD_SPLIT_FACTOR: float = 1.5

_PARAGRAPH_BREAK = re.compile(r"\n{2,}")
_WHITESPACE = re.compile(r"\s+")


def split_paragraphs(text: str) -> list[str]:
    """Split page text on blank lines, collapsing internal whitespace."""
    normalized = text.replace("\r\n", "\n").strip()
    if not normalized:
        return []

    paragraphs = (
        _WHITESPACE.sub(" ", part).strip() for part in _PARAGRAPH_BREAK.split(normalized)
    )
    return [p for p in paragraphs if p]


def make_chunk_id(document_id: str, page_number: int, ordinal: int) -> str:
    """Stable chunk id: ``<document_id>#p<page>c<ordinal>``."""
    return f"{document_id}#p{page_number}c{ordinal}"


class PageChunker:
    """
    Turns ordered page texts into overlapping Chunks.

    Usage::

        chunker = PageChunker()
        chunks = chunker.split(
            pages,
            document_id="4b1e...",
            tenant_id="acme",
            file_name="bol.pdf",
            uploaded_at="2026-01-01T00:00:00+00:00",
        )

    Args:
        target_chars: Preferred maximum characters per chunk.
        overlap_chars: Trailing characters carried into the next chunk.
    """

    def __init__(
        self,
        target_chars: int = DEFAULT_TARGET_CHARS,
        overlap_chars: int = DEFAULT_OVERLAP_CHARS,
    ) -> None:
        if overlap_chars >= target_chars:
            raise ValueError(
                f"overlap_chars ({overlap_chars}) must be less than "
                f"target_chars ({target_chars})"
            )
        self._target_chars = target_chars
        self._overlap_chars = overlap_chars

    @property
    def target_chars(self) -> int:
        """Preferred maximum characters per chunk."""
        return self._target_chars

    @property
    def overlap_chars(self) -> int:
        """Characters shared between consecutive chunks of a page."""
        return self._overlap_chars

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def split(
        self,
        pages: Sequence[PageText],
        *,
        document_id: str,
        tenant_id: str,
        file_name: str,
        uploaded_at: str,
    ) -> list[ChunkRecord]:
        """
        Chunk every page and number the chunks across the document.

        Args:
            pages: Pages in document order.
            document_id: Owning document id (prefix of every chunk id).
            tenant_id: Owning tenant.
            file_name: Original file name, stored as title and source.
            uploaded_at: ISO-8601 upload timestamp.

        Returns:
            Chunks in page order. ``chunk_number`` runs 1..N across the
            whole document; the ordinal in the chunk id restarts per page.
        """
        chunks: list[ChunkRecord] = []
        chunk_number = 1

        for page in pages:
            texts = self.split_page(page.text)
            for ordinal, text in enumerate(texts, start=1):
                chunks.append(
                    ChunkRecord(
                        id=make_chunk_id(document_id, page.page_number, ordinal),
                        text=text,
                        metadata=ChunkMetadata(
                            document_id=document_id,
                            tenant_id=tenant_id,
                            document_title=file_name,
                            source_file_name=file_name,
                            uploaded_at=uploaded_at,
                            page_number=page.page_number,
                            chunk_number=chunk_number,
                            chunk_text=text,
                        ),
                    )
                )
                chunk_number += 1

        logger.info(
            "Split '%s' into %d chunks across %d pages (target=%d, overlap=%d)",
            file_name,
            len(chunks),
            len(pages),
            self._target_chars,
            self._overlap_chars,
        )
        return chunks

    def split_page(self, text: str) -> list[str]:
        """Chunk the text of a single page."""
        chunks: list[str] = []
        buffer = ""

        for paragraph in split_paragraphs(text):
            if not buffer:
                buffer = paragraph
            else:
                candidate = f"{buffer}{PARAGRAPH_SEPARATOR}{paragraph}"
                if len(candidate) <= self._target_chars:
                    buffer = candidate
                else:
                    chunks.append(buffer)
                    buffer = self._seed(buffer, paragraph)

            buffer = self._hard_split(buffer, chunks)

        if buffer:
            chunks.append(buffer)
        return chunks

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _seed(self, flushed: str, paragraph: str) -> str:
        """Start a new buffer with the tail of the flushed one."""
        overlap = flushed[-self._overlap_chars :].strip()
        return f"{overlap}{PARAGRAPH_SEPARATOR}{paragraph}" if overlap else paragraph

    def _hard_split(self, buffer: str, chunks: list[str]) -> str:
        """Emit fixed-size pieces while the buffer is oversized."""
        limit = self._target_chars * HARD_SPLIT_FACTOR
        step = self._target_chars - self._overlap_chars
        while len(buffer) > limit:
            chunks.append(buffer[: self._target_chars])
            buffer = buffer[step:].strip()
        return buffer
