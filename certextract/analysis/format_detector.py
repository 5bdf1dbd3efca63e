"""
Document format analysis.

Inspects a document before any extraction tier runs: format, page count,
text layer and text quality decide which tiers are worth attempting.
Analysis is local and never raises; a file that cannot be parsed is
reported as unreadable.
"""

import io
import logging
import re
from email import message_from_bytes, policy
from pathlib import PurePath
from typing import Optional

import pdfplumber
from PIL import Image

from ..schemas.analysis import DocumentClassification, DocumentFormat, FormatAnalysis
from .certificate_types import classify_document, detect_certificate_type

logger = logging.getLogger(__name__)

MIME_TO_FORMAT: dict[str, DocumentFormat] = {
    "application/pdf": DocumentFormat.PDF_NATIVE,
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": DocumentFormat.DOCX,
    "application/msword": DocumentFormat.DOCX,
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet": DocumentFormat.XLSX,
    "application/vnd.ms-excel": DocumentFormat.XLSX,
    "text/csv": DocumentFormat.CSV,
    "text/html": DocumentFormat.HTML,
    "text/plain": DocumentFormat.TXT,
    "message/rfc822": DocumentFormat.EMAIL,
    "application/vnd.ms-outlook": DocumentFormat.EMAIL,
    "image/jpeg": DocumentFormat.IMAGE,
    "image/png": DocumentFormat.IMAGE,
    "image/tiff": DocumentFormat.IMAGE,
    "image/heic": DocumentFormat.IMAGE,
    "image/webp": DocumentFormat.IMAGE,
}

EXTENSION_TO_FORMAT: dict[str, DocumentFormat] = {
    "pdf": DocumentFormat.PDF_NATIVE,
    "docx": DocumentFormat.DOCX,
    "doc": DocumentFormat.DOCX,
    "xlsx": DocumentFormat.XLSX,
    "xls": DocumentFormat.XLSX,
    "csv": DocumentFormat.CSV,
    "html": DocumentFormat.HTML,
    "htm": DocumentFormat.HTML,
    "txt": DocumentFormat.TXT,
    "eml": DocumentFormat.EMAIL,
    "msg": DocumentFormat.EMAIL,
    "jpg": DocumentFormat.IMAGE,
    "jpeg": DocumentFormat.IMAGE,
    "png": DocumentFormat.IMAGE,
    "tiff": DocumentFormat.IMAGE,
    "tif": DocumentFormat.IMAGE,
    "heic": DocumentFormat.IMAGE,
    "webp": DocumentFormat.IMAGE,
}

SCANNED_CHARS_PER_PAGE = 50
HYBRID_CHARS_PER_PAGE = 100
TEXT_LAYER_MIN_CHARS = 100
MIN_TEXT_QUALITY = 0.1

_TAG_RE = re.compile(r"<[^>]+>")
_WS_RE = re.compile(r"[ \t]+")


def detect_format(mime_type: Optional[str], filename: Optional[str] = None) -> DocumentFormat:
    """Format from the mime type, falling back to the file extension."""
    fmt = MIME_TO_FORMAT.get((mime_type or "").split(";")[0].strip().lower())
    if fmt is None and filename:
        fmt = EXTENSION_TO_FORMAT.get(PurePath(filename).suffix.lower().lstrip("."))
    return fmt or DocumentFormat.PDF_NATIVE


def score_text(text: str, page_count: int) -> tuple[float, float]:
    """Return (avg_chars_per_page, text_quality) for extracted text."""
    pages = max(page_count, 1)
    avg_chars = len(text) / pages
    word_count = sum(1 for word in text.split() if len(word) > 2)
    quality = min(1.0, (avg_chars / 500) * (word_count / (pages * 50)))
    return avg_chars, round(quality, 4)


def unreadable_analysis(fmt: DocumentFormat, reason: str) -> FormatAnalysis:
    logger.warning(f"Document unreadable as {fmt.value}: {reason}")
    return FormatAnalysis(
        format=fmt,
        classification=DocumentClassification.UNREADABLE,
        page_count=1,
        has_text_layer=False,
        is_scanned=True,
        text_quality=0.0,
    )


def _analyse_text(text: str, fmt: DocumentFormat, page_count: int = 1) -> FormatAnalysis:
    avg_chars, quality = score_text(text, page_count)
    certificate_type = detect_certificate_type(text)
    classification = classify_document(text, certificate_type)
    if fmt in (DocumentFormat.CSV, DocumentFormat.XLSX) and (
        classification is DocumentClassification.UNKNOWN
    ):
        classification = DocumentClassification.SPREADSHEET
    return FormatAnalysis(
        format=fmt,
        classification=classification,
        page_count=page_count,
        has_text_layer=len(text) > TEXT_LAYER_MIN_CHARS,
        is_scanned=False,
        text_quality=quality,
        avg_chars_per_page=round(avg_chars, 2),
        text_content=text.strip() or None,
        detected_certificate_type=certificate_type,
    )


def analyse_pdf(content: bytes) -> FormatAnalysis:
    """Analyse a PDF's text layer with pdfplumber."""
    try:
        with pdfplumber.open(io.BytesIO(content)) as pdf:
            page_count = len(pdf.pages) or 1
            text = "\n".join((page.extract_text() or "") for page in pdf.pages)
    except Exception as e:
        return unreadable_analysis(DocumentFormat.PDF_SCANNED, str(e))

    avg_chars, quality = score_text(text, page_count)
    is_scanned = avg_chars < SCANNED_CHARS_PER_PAGE or quality < MIN_TEXT_QUALITY
    is_hybrid = SCANNED_CHARS_PER_PAGE <= avg_chars <= HYBRID_CHARS_PER_PAGE

    if is_scanned:
        fmt = DocumentFormat.PDF_SCANNED
    elif is_hybrid:
        fmt = DocumentFormat.PDF_HYBRID
    else:
        fmt = DocumentFormat.PDF_NATIVE

    certificate_type = detect_certificate_type(text)
    return FormatAnalysis(
        format=fmt,
        classification=classify_document(text, certificate_type),
        page_count=page_count,
        has_text_layer=len(text) > TEXT_LAYER_MIN_CHARS,
        is_scanned=is_scanned,
        is_hybrid=is_hybrid,
        text_quality=quality,
        avg_chars_per_page=round(avg_chars, 2),
        text_content=text.strip() or None,
        detected_certificate_type=certificate_type,
    )


def analyse_image(content: bytes) -> FormatAnalysis:
    """Images have no text layer; page count is the frame count (multi-page TIFF)."""
    try:
        with Image.open(io.BytesIO(content)) as image:
            image.verify()
        with Image.open(io.BytesIO(content)) as image:
            page_count = getattr(image, "n_frames", 1) or 1
    except Exception as e:
        # Decompression bombs and bad chunk checksums surface as non-OSError types
        return unreadable_analysis(DocumentFormat.IMAGE, str(e) or type(e).__name__)

    return FormatAnalysis(
        format=DocumentFormat.IMAGE,
        classification=DocumentClassification.STRUCTURED_CERTIFICATE,
        page_count=page_count,
        has_text_layer=False,
        is_scanned=True,
        text_quality=0.0,
    )


def _decode(content: bytes) -> str:
    try:
        return content.decode("utf-8")
    except UnicodeDecodeError:
        return content.decode("latin-1")


def _email_text(content: bytes) -> str:
    message = message_from_bytes(content, policy=policy.default)
    body = message.get_body(preferencelist=("plain", "html"))
    parts = [str(message.get("subject") or "")]
    if body is not None:
        text = body.get_content()
        if body.get_content_type() == "text/html":
            text = _TAG_RE.sub(" ", text)
        parts.append(text)
    return "\n".join(parts)


def analyse_document(
    content: bytes,
    mime_type: Optional[str],
    filename: Optional[str] = None,
) -> FormatAnalysis:
    """
    Analyse a document's format and text.

    Args:
        content: Raw document bytes
        mime_type: Declared mime type (may be empty or generic)
        filename: Original filename, used when the mime type is unknown

    Returns:
        FormatAnalysis; classification UNREADABLE with zero quality when the
        content cannot be parsed
    """
    fmt = detect_format(mime_type, filename)

    if not content:
        return unreadable_analysis(fmt, "empty content")

    if fmt.is_pdf:
        return analyse_pdf(content)

    if fmt is DocumentFormat.IMAGE:
        return analyse_image(content)

    if fmt in (DocumentFormat.TXT, DocumentFormat.CSV):
        return _analyse_text(_decode(content), fmt)

    if fmt is DocumentFormat.HTML:
        text = _WS_RE.sub(" ", _TAG_RE.sub(" ", _decode(content)))
        return _analyse_text(text, fmt)

    if fmt is DocumentFormat.EMAIL:
        try:
            return _analyse_text(_email_text(content), fmt)
        except (ValueError, LookupError) as e:
            return unreadable_analysis(fmt, str(e))

    # Office formats carry no parser here; only the layout and vision tiers
    # could read them, and those take PDFs and images.
    logger.info(f"No text extraction for {fmt.value}, analysing as opaque document")
    return FormatAnalysis(
        format=fmt,
        classification=(
            DocumentClassification.SPREADSHEET
            if fmt is DocumentFormat.XLSX
            else DocumentClassification.UNKNOWN
        ),
        page_count=1,
        has_text_layer=False,
        is_scanned=False,
        text_quality=0.0,
    )
