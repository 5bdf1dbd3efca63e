"""Document format analysis schema."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class DocumentFormat(str, Enum):
    PDF_NATIVE = "pdf-native"
    PDF_SCANNED = "pdf-scanned"
    PDF_HYBRID = "pdf-hybrid"
    DOCX = "docx"
    XLSX = "xlsx"
    CSV = "csv"
    HTML = "html"
    TXT = "txt"
    EMAIL = "email"
    IMAGE = "image"

    @property
    def is_pdf(self) -> bool:
        return self in (
            DocumentFormat.PDF_NATIVE,
            DocumentFormat.PDF_SCANNED,
            DocumentFormat.PDF_HYBRID,
        )

    @property
    def is_visual(self) -> bool:
        """Formats that can be rendered for vision or layout models."""
        return self.is_pdf or self is DocumentFormat.IMAGE


class DocumentClassification(str, Enum):
    STRUCTURED_CERTIFICATE = "structured_certificate"
    COMPLEX_DOCUMENT = "complex_document"
    HANDWRITTEN_CONTENT = "handwritten_content"
    SPREADSHEET = "spreadsheet"
    UNKNOWN = "unknown"
    UNREADABLE = "unreadable"


class FormatAnalysis(BaseModel):
    """Result of inspecting a document before any extraction tier runs."""

    format: DocumentFormat
    classification: DocumentClassification = DocumentClassification.UNKNOWN
    page_count: int = 1
    has_text_layer: bool = False
    is_scanned: bool = False
    is_hybrid: bool = False
    text_quality: float = Field(default=0.0, ge=0.0, le=1.0)
    avg_chars_per_page: float = 0.0
    text_content: Optional[str] = None
    detected_certificate_type: str = "UNKNOWN"

    @property
    def has_text(self) -> bool:
        return bool(self.text_content and self.text_content.strip())

    @property
    def is_unreadable(self) -> bool:
        return self.classification is DocumentClassification.UNREADABLE
