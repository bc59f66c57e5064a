"""
Document Ingestion Service

Turns uploaded file bytes into ordered page texts for the chunker.

Supported formats:
    - PDF (.pdf): one page per PDF page via PyMuPDF (fitz)
    - Word (.docx): paragraphs then table rows via python-docx, a single page
    - Plain text (.txt) and Markdown (.md): UTF-8, a single page
"""

from __future__ import annotations

import asyncio
import io
import logging
import zipfile
from pathlib import PurePath
from typing import Final

import fitz  # PyMuPDF
from docx import Document
from docx.opc.exceptions import PackageNotFoundError

from docintel.core.errors import InvalidInputError
from docintel.models.schemas import PageText

logger = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS: Final[frozenset[str]] = frozenset({".pdf", ".docx", ".txt", ".md"})


def file_extension(file_name: str) -> str:
    """Lower-cased extension including the dot (``""`` if none)."""
    return PurePath(file_name).suffix.lower()


def is_supported(file_name: str) -> bool:
    """True if the file name has a supported extension."""
    return file_extension(file_name) in SUPPORTED_EXTENSIONS


class FileProcessor:
    """
    Async page extractor for uploaded files.

    Blocking PDF and DOCX parsing is offloaded to a thread pool via
    ``asyncio.to_thread`` so the event loop stays free.

    Usage::

        processor = FileProcessor()
        pages = await processor.parse_pages("bol.pdf", raw_bytes)
        for page in pages:
            print(page.page_number, len(page.text))
    """

    async def parse_pages(self, file_name: str, raw: bytes) -> list[PageText]:
        """
        Extract page texts from raw file bytes.

        Args:
            file_name: Original file name (extension selects the parser).
            raw: File content.

        Returns:
            Pages in document order, numbered from 1.

        Raises:
            InvalidInputError: Unsupported extension or unreadable content.
        """
        suffix = file_extension(file_name)
        if suffix not in SUPPORTED_EXTENSIONS:
            raise InvalidInputError(
                f"Unsupported file type '{suffix.lstrip('.') or 'unknown'}'. "
                f"Supported: {', '.join(sorted(e.lstrip('.') for e in SUPPORTED_EXTENSIONS))}."
            )

        if suffix == ".pdf":
            pages = await asyncio.to_thread(self._extract_pdf_pages, raw)
            logger.info(
                "Processed PDF: %s (%d pages, %d bytes)", file_name, len(pages), len(raw)
            )
            return pages

        if suffix == ".docx":
            text = await asyncio.to_thread(self._extract_docx_text, raw)
            logger.info("Processed DOCX: %s (%d bytes)", file_name, len(raw))
            return [PageText(page_number=1, text=text)]

        try:
            text = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise InvalidInputError(f"'{file_name}' is not valid UTF-8 text.") from exc

        logger.info("Processed text file: %s (%d bytes)", file_name, len(raw))
        return [PageText(page_number=1, text=text)]

    @staticmethod
    def _extract_pdf_pages(raw: bytes) -> list[PageText]:
        """
        Extract per-page text from PDF bytes.

        This is a *synchronous* helper; always call via
        ``asyncio.to_thread`` to keep the event loop free.
        """
        try:
            doc = fitz.open(stream=raw, filetype="pdf")
        except (fitz.FileDataError, RuntimeError) as exc:
            raise InvalidInputError(f"Could not read PDF: {exc}") from exc

        try:
            return [
                PageText(page_number=index, text=page.get_text())
                for index, page in enumerate(doc, start=1)
            ]
        finally:
            doc.close()

    @staticmethod
    def _extract_docx_text(raw: bytes) -> str:
        """
        Extract DOCX body text as blank-line separated paragraphs.

        Table rows follow the body paragraphs, one row per paragraph with
        cells joined by `` | ``. Synchronous; call via ``asyncio.to_thread``.
        """
        try:
            doc = Document(io.BytesIO(raw))
        except (PackageNotFoundError, zipfile.BadZipFile, KeyError, ValueError) as exc:
            raise InvalidInputError(f"Could not read DOCX: {exc}") from exc

        blocks = [p.text.strip() for p in doc.paragraphs]
        for table in doc.tables:
            for row in table.rows:
                blocks.append(" | ".join(cell.text.strip() for cell in row.cells))
        return "\n\n".join(block for block in blocks if block.strip(" |"))
