"""
Tier definitions, attempt results and audit records.

Tiers are tried in a fixed ascending order; each has a static cost estimate
used for the per-document budget check before the tier is attempted.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

from .analysis import FormatAnalysis
from .certificate import ExtractedCertificateData


class Tier(str, Enum):
    """Extraction tiers, cheapest first."""

    QR_METADATA = "tier-0"
    CUSTOM_PATTERNS = "tier-0.5"
    TEMPLATE = "tier-1"
    AI_TEXT = "tier-1.5"
    DOCUMENT_INTELLIGENCE = "tier-2"
    VISION = "tier-3"
    MANUAL_REVIEW = "tier-4"

    @property
    def order(self) -> int:
        return _TIER_ORDER[self]

    @property
    def is_ai(self) -> bool:
        """Tiers that call paid external AI services."""
        return self in (Tier.AI_TEXT, Tier.DOCUMENT_INTELLIGENCE, Tier.VISION)

    @classmethod
    def ordered(cls) -> list["Tier"]:
        return sorted(cls, key=lambda tier: tier.order)


_TIER_ORDER = {tier: index for index, tier in enumerate(Tier)}

# Estimated cost per attempt in USD, used for the budget check.
TIER_COST_ESTIMATES: dict[Tier, float] = {
    Tier.QR_METADATA: 0.0,
    Tier.CUSTOM_PATTERNS: 0.0,
    Tier.TEMPLATE: 0.0,
    Tier.AI_TEXT: 0.003,
    Tier.DOCUMENT_INTELLIGENCE: 0.0015,
    Tier.VISION: 0.01,
    Tier.MANUAL_REVIEW: 0.0,
}


class TierStatus(str, Enum):
    """Outcome of a single tier attempt."""

    SUCCESS = "SUCCESS"
    LOW_CONFIDENCE = "LOW_CONFIDENCE"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"


class TierAttemptResult(BaseModel):
    """What happened when the orchestrator reached one tier."""

    tier: Tier
    status: TierStatus
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    duration_ms: int = 0
    field_count: int = 0
    cost: float = 0.0
    escalation_reason: Optional[str] = None
    provider: Optional[str] = None
    raw_output: Optional[Any] = None
    data: Optional[ExtractedCertificateData] = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TierAuditRecord(BaseModel):
    """Write-once audit row for one tier attempt of one extraction run."""

    certificate_id: str
    extraction_run_id: str
    tier: Tier
    tier_order: int
    status: TierStatus
    confidence: float = 0.0
    processing_time_ms: int = 0
    cost: float = 0.0
    extracted_field_count: int = 0
    escalation_reason: Optional[str] = None
    provider: Optional[str] = None
    attempted_at: datetime = Field(default_factory=_utcnow)
    completed_at: datetime = Field(default_factory=_utcnow)
    document_format: Optional[str] = None
    document_classification: Optional[str] = None
    page_count: Optional[int] = None
    text_quality: Optional[float] = None
    raw_output: Optional[Any] = None

    model_config = {"frozen": True}

    @classmethod
    def from_attempt(
        cls,
        attempt: TierAttemptResult,
        certificate_id: str,
        extraction_run_id: str,
        analysis: Optional[FormatAnalysis] = None,
        attempted_at: Optional[datetime] = None,
    ) -> "TierAuditRecord":
        """Build the audit row for an attempt, with document context when known."""
        completed_at = _utcnow()
        return cls(
            certificate_id=certificate_id,
            extraction_run_id=extraction_run_id,
            tier=attempt.tier,
            tier_order=attempt.tier.order,
            status=attempt.status,
            confidence=attempt.confidence,
            processing_time_ms=attempt.duration_ms,
            cost=attempt.cost,
            extracted_field_count=attempt.field_count,
            escalation_reason=attempt.escalation_reason,
            provider=attempt.provider,
            attempted_at=attempted_at or completed_at,
            completed_at=completed_at,
            document_format=analysis.format.value if analysis else None,
            document_classification=analysis.classification.value if analysis else None,
            page_count=analysis.page_count if analysis else None,
            text_quality=analysis.text_quality if analysis else None,
            raw_output=attempt.raw_output,
        )

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


class ExtractionOutcome(BaseModel):
    """Final result of one extraction run."""

    extraction_run_id: str
    success: bool
    data: Optional[ExtractedCertificateData] = None
    confidence: float = 0.0
    final_tier: Tier
    status: TierStatus
    requires_review: bool = False
    total_cost: float = 0.0
    processing_time_ms: int = 0
    warnings: list[str] = Field(default_factory=list)
    attempts: list[TierAttemptResult] = Field(default_factory=list)
    format_analysis: Optional[FormatAnalysis] = None
    raw_text: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude={"raw_text"})
