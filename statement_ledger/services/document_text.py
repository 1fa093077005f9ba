"""Decode stored statement files into plain text."""

from __future__ import annotations

import io
from typing import Protocol

import pdfplumber

from statement_ledger.logger import get_logger
from statement_ledger.services.extraction import ExtractionFailure
from statement_ledger.services.ingestion import file_extension

logger = get_logger(__name__)


class TextExtractor(Protocol):
    def extract_text(self, content: bytes, file_name: str) -> str: ...


class DocumentTextExtractor:
    """PDF text via pdfplumber; plain-text files decoded as UTF-8."""

    def extract_text(self, content: bytes, file_name: str) -> str:
        ext = file_extension(file_name)
        if ext == "pdf":
            return self._pdf_text(content, file_name)
        if ext == "txt":
            return content.decode("utf-8", errors="replace")
        raise ExtractionFailure(f"No text extractor for .{ext} files")

    def _pdf_text(self, content: bytes, file_name: str) -> str:
        try:
            with pdfplumber.open(io.BytesIO(content)) as pdf:
                pages = [page.extract_text() or "" for page in pdf.pages]
        except Exception as exc:  # pdfminer raises a variety of parser errors
            raise ExtractionFailure(f"{file_name} is not a readable PDF") from exc
        logger.debug("Extracted PDF text", file_name=file_name, pages=len(pages))
        return "\n\n".join(pages)
