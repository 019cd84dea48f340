"""
PDF text extraction.
"""

from __future__ import annotations

import io
from dataclasses import dataclass

from pdfminer.high_level import extract_text
from pdfminer.psparser import PSException
from pypdf import PdfReader
from pypdf.errors import PyPdfError

from pdfxml.errors import PdfExtractionError


@dataclass(frozen=True)
class PdfText:
    page_count: int
    text: str


def extract_pdf(pdf_bytes: bytes) -> PdfText:
    """Return the page count (pypdf) and the plain text (pdfminer) of a PDF."""
    if not pdf_bytes:
        raise PdfExtractionError("Uploaded file is empty")
    try:
        reader = PdfReader(io.BytesIO(pdf_bytes))
        page_count = len(reader.pages)
    except (PyPdfError, ValueError) as exc:
        raise PdfExtractionError(f"Could not read PDF: {exc}") from exc
    try:
        text = extract_text(io.BytesIO(pdf_bytes)) or ""
    except (PSException, ValueError) as exc:
        raise PdfExtractionError(f"Could not extract PDF text: {exc}") from exc
    # pdfminer ends every page with a form feed; treat it as a paragraph break.
    return PdfText(page_count=page_count, text=text.replace("\x0c", "\n\n"))
