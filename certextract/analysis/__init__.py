"""Document format analysis and certificate type detection."""

from .certificate_types import classify_document, detect_certificate_type
from .format_detector import (
    analyse_document,
    detect_format,
    score_text,
    unreadable_analysis,
)

__all__ = [
    "analyse_document",
    "classify_document",
    "detect_certificate_type",
    "detect_format",
    "score_text",
    "unreadable_analysis",
]
