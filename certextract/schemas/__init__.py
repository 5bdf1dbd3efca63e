"""Pydantic schemas for certificate extraction."""

from .analysis import DocumentClassification, DocumentFormat, FormatAnalysis
from .certificate import (
    ApplianceOutcome,
    ApplianceRecord,
    DefectPriority,
    DefectRecord,
    ExtractedCertificateData,
    Outcome,
)
from .tiers import (
    TIER_COST_ESTIMATES,
    ExtractionOutcome,
    Tier,
    TierAttemptResult,
    TierAuditRecord,
    TierStatus,
)

__all__ = [
    "ApplianceOutcome",
    "ApplianceRecord",
    "DefectPriority",
    "DefectRecord",
    "DocumentClassification",
    "DocumentFormat",
    "ExtractedCertificateData",
    "ExtractionOutcome",
    "FormatAnalysis",
    "Outcome",
    "TIER_COST_ESTIMATES",
    "Tier",
    "TierAttemptResult",
    "TierAuditRecord",
    "TierStatus",
]
