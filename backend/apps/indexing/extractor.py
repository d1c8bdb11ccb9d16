"""
Text extraction from uploaded document bytes.

Supports:
- text/* (plain, markdown, csv), JSON and XML: decoded as UTF-8 with fallback
- application/pdf: best-effort extraction using PyMuPDF
- anything else: a placeholder sentence so analysis can still run

Extraction works on bytes because documents may live in S3 rather than
on the local filesystem.
"""
import logging

from apps.docs.errors import ProcessingError

logger = logging.getLogger(__name__)

PDF_MIME_TYPES = {'application/pdf'}

TEXT_MIME_TYPES = {
    'text/plain',
    'text/markdown',
    'text/x-markdown',
    'text/csv',
    'application/json',
    'application/xml',
    'text/xml',
}


class ExtractionError(ProcessingError):
    """Raised when text extraction fails."""
    pass


def unsupported_placeholder(mime_type: str) -> str:
    return f"Text extraction from {mime_type} documents is not yet supported."


def extract_text_from_bytes(content: bytes) -> str:
    """
    Decode text content.

    Tries UTF-8 (with or without BOM) first, then falls back to
    ignoring undecodable bytes.
    """
    try:
        return content.decode('utf-8-sig')
    except UnicodeDecodeError:
        logger.warning("UTF-8 decode failed, using errors='ignore'")
        return content.decode('utf-8', errors='ignore')


def extract_text_from_pdf(content: bytes) -> str:
    """
    Extract text from PDF bytes using PyMuPDF.

    This is a best-effort extraction - some PDFs (scanned, image-based)
    may not yield text. No OCR is attempted.

    Raises:
        ExtractionError: If the PDF cannot be parsed
    """
    import fitz  # PyMuPDF

    try:
        text_parts = []
        with fitz.open(stream=content, filetype='pdf') as doc:
            for page in doc:
                page_text = page.get_text()
                if page_text.strip():
                    text_parts.append(page_text)
    except Exception as e:
        raise ExtractionError(f"Failed to extract text from PDF: {e}")

    if not text_parts:
        logger.warning("No text extracted from PDF (may be image-based)")
        return ""

    return "\n\n".join(text_parts)


def extract_text(content: bytes, mime_type: str) -> str:
    """
    Extract text from document content.

    Args:
        content: Raw document bytes
        mime_type: MIME type recorded at upload

    Returns:
        Extracted text content (possibly empty)

    Raises:
        ExtractionError: If a supported format fails to parse
    """
    mime_type = (mime_type or '').split(';')[0].strip().lower()

    logger.info(f"Extracting text ({len(content)} bytes, mime_type={mime_type})")

    if mime_type in PDF_MIME_TYPES:
        return extract_text_from_pdf(content)

    if mime_type in TEXT_MIME_TYPES or mime_type.startswith('text/'):
        return extract_text_from_bytes(content)

    logger.info(f"No extractor for {mime_type}, using placeholder text")
    return unsupported_placeholder(mime_type)
