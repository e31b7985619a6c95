"""
Text extraction for uploaded CVs.

PDF goes through PyMuPDF, DOCX through python-docx, plain text is decoded
as-is.
"""
import io
import logging
import re

import fitz  # PyMuPDF
from docx import Document

from ..errors import ExtractionFailed, UnsupportedFormat

logger = logging.getLogger(__name__)

PDF_MIME = "application/pdf"
DOCX_MIME = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
TEXT_MIME = "text/plain"

SUPPORTED_MIME_TYPES = (PDF_MIME, DOCX_MIME, TEXT_MIME)


def normalize_mime_type(mime_type: str) -> str:
    """Drop parameters such as ``; charset=utf-8``."""
    return (mime_type or "").split(";")[0].strip().lower()


def _extract_pdf(data: bytes) -> str:
    try:
        pdf_document = fitz.open(stream=data, filetype="pdf")
    except Exception as e:
        raise ExtractionFailed(f"Could not open PDF: {e}") from e

    try:
        pages = [page.get_text() for page in pdf_document]
    finally:
        pdf_document.close()
    return "\n".join(pages)


def _extract_docx(data: bytes) -> str:
    try:
        document = Document(io.BytesIO(data))
    except Exception as e:
        raise ExtractionFailed(f"Could not open DOCX: {e}") from e

    parts = [p.text for p in document.paragraphs if p.text.strip()]
    for table in document.tables:
        for row in table.rows:
            cells = [cell.text.strip() for cell in row.cells if cell.text.strip()]
            if cells:
                parts.append(" | ".join(cells))
    return "\n".join(parts)


def _clean_text(text: str) -> str:
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = re.sub(r"[ \t]+\n", "\n", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def extract_text(data: bytes, mime_type: str) -> str:
    """
    Extract plain text from raw file bytes.

    Args:
        data: Raw file content
        mime_type: Declared MIME type of the upload

    Returns:
        Extracted text. Plain text uploads are returned verbatim.

    Raises:
        UnsupportedFormat: No decoder for ``mime_type``
        ExtractionFailed: Corrupt input or no text content found
    """
    mime = normalize_mime_type(mime_type)

    if mime == TEXT_MIME:
        return data.decode("utf-8", errors="replace")

    if mime == PDF_MIME:
        text = _extract_pdf(data)
        if not text.strip():
            raise ExtractionFailed("PDF appears to be image-based (scanned) - no text content found")
    elif mime == DOCX_MIME:
        text = _extract_docx(data)
        if not text.strip():
            raise ExtractionFailed("Document appears to be empty")
    else:
        raise UnsupportedFormat(mime_type)

    cleaned = _clean_text(text)
    logger.info(f"[TextExtractor] Extracted {len(cleaned)} characters from {mime}")
    if len(cleaned) < 50:
        logger.warning(f"[TextExtractor] Extracted text is very short ({len(cleaned)} chars)")
    return cleaned
