"""
Wraps extracted PDF text in the XML document returned to users.
"""

from __future__ import annotations

import re
import xml.etree.ElementTree as ET
from datetime import datetime

from pdfxml.pdf import PdfText

XML_DECLARATION = '<?xml version="1.0" encoding="UTF-8"?>'

# Characters XML 1.0 does not allow in element text.
_INVALID_XML_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\ufffe\uffff]")
_PARAGRAPH_BREAK = re.compile(r"\n\s*\n")


def split_paragraphs(text: str) -> list[str]:
    cleaned = _INVALID_XML_CHARS.sub("", text.replace("\x0c", "\n\n"))
    return [p.strip() for p in _PARAGRAPH_BREAK.split(cleaned) if p.strip()]


def document_title(filename: str) -> str:
    if filename.lower().endswith(".pdf"):
        return filename[: -len(".pdf")]
    return filename


def format_timestamp(value: datetime) -> str:
    return value.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def build_conversion_xml(filename: str, converted_at: datetime, pdf_text: PdfText) -> str:
    """
    Serialize a converted PDF.

    Layout::

        <document filename="..." convertedAt="...">
          <metadata><title/><pages/></metadata>
          <content>
            <page number="1"><paragraph>...</paragraph></page>
          </content>
        </document>

    Each non-blank paragraph of the extracted text becomes its own numbered
    ``page`` element.
    """
    safe_name = _INVALID_XML_CHARS.sub("", filename)
    root = ET.Element(
        "document",
        {"filename": safe_name, "convertedAt": format_timestamp(converted_at)},
    )
    metadata = ET.SubElement(root, "metadata")
    ET.SubElement(metadata, "title").text = document_title(safe_name)
    ET.SubElement(metadata, "pages").text = str(pdf_text.page_count)

    content = ET.SubElement(root, "content")
    for number, paragraph in enumerate(split_paragraphs(pdf_text.text), start=1):
        page = ET.SubElement(content, "page", {"number": str(number)})
        ET.SubElement(page, "paragraph").text = paragraph

    ET.indent(root, space="  ")
    return f"{XML_DECLARATION}\n{ET.tostring(root, encoding='unicode')}"
