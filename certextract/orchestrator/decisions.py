"""
Tier planning, thresholds and cost tracking.

Pure policy for the orchestrator: which tiers apply to a document, what
confidence each must reach, and whether the budget allows the next attempt.
"""

import time
from dataclasses import dataclass, field
from typing import Optional

from ..config.extraction_settings import ExtractionSettings
from ..schemas.analysis import DocumentFormat, FormatAnalysis
from ..schemas.tiers import TIER_COST_ESTIMATES, Tier


def resolve_certificate_type(declared: Optional[str], analysis: FormatAnalysis) -> str:
    """The declared type when given, else the type detected from the text."""
    if declared and declared.strip() and declared.strip().upper() != "UNKNOWN":
        return declared.strip().upper()
    return analysis.detected_certificate_type or "UNKNOWN"


def tier_threshold(tier: Tier, settings: ExtractionSettings) -> float:
    if tier is Tier.QR_METADATA:
        return settings.qr_threshold
    if tier in (Tier.CUSTOM_PATTERNS, Tier.TEMPLATE):
        return settings.tier1_threshold
    if tier in (Tier.AI_TEXT, Tier.DOCUMENT_INTELLIGENCE):
        return settings.tier2_threshold
    if tier is Tier.VISION:
        return settings.tier3_threshold
    return 0.0


def threshold_for(tier: Tier, certificate_type: str, settings: ExtractionSettings) -> float:
    """Per-document-type override if configured, else the tier's threshold."""
    override = settings.document_type_thresholds.get(certificate_type.upper())
    if override is not None:
        return override
    return tier_threshold(tier, settings)


def tier_applies(
    tier: Tier,
    analysis: FormatAnalysis,
    settings: ExtractionSettings,
    certificate_type: str,
) -> bool:
    """Whether a tier can do anything for this document at all."""
    if analysis.is_unreadable:
        return tier is Tier.VISION and analysis.format.is_visual

    if tier is Tier.QR_METADATA:
        return analysis.is_scanned or analysis.format is DocumentFormat.IMAGE
    if tier is Tier.CUSTOM_PATTERNS:
        return analysis.has_text and bool(settings.patterns_for(certificate_type))
    if tier in (Tier.TEMPLATE, Tier.AI_TEXT):
        return analysis.has_text
    if tier in (Tier.DOCUMENT_INTELLIGENCE, Tier.VISION):
        return analysis.format.is_visual
    return False


def plan_tiers(
    analysis: FormatAnalysis,
    settings: ExtractionSettings,
    certificate_type: str,
) -> list[Tier]:
    """Applicable automated tiers in escalation order (manual review excluded)."""
    return [
        tier
        for tier in Tier.ordered()
        if tier is not Tier.MANUAL_REVIEW
        and tier_applies(tier, analysis, settings, certificate_type)
    ]


@dataclass
class CostTracker:
    """Actual spend for one run, checked against the static next-tier estimate."""

    max_cost: float
    total_cost: float = 0.0
    cost_by_provider: dict[str, float] = field(default_factory=dict)

    def record(self, amount: float, provider: str) -> None:
        self.total_cost += amount
        self.cost_by_provider[provider] = self.cost_by_provider.get(provider, 0.0) + amount

    def allows(self, tier: Tier) -> bool:
        return self.total_cost + TIER_COST_ESTIMATES[tier] <= self.max_cost

    def budget_reason(self, tier: Tier) -> str:
        remaining = max(self.max_cost - self.total_cost, 0.0)
        return (
            f"insufficient budget remaining ({remaining:.4f} < "
            f"{TIER_COST_ESTIMATES[tier]:.4f} estimated for {tier.value})"
        )


def low_confidence_reason(confidence: float, threshold: float, certificate_type: str) -> str:
    return f"confidence {confidence:.2f} below threshold {threshold:.2f} for {certificate_type}"


class ExtractionTimer:
    """Context manager for timing extraction operations."""

    def __init__(self):
        self.start_time: float = 0
        self.elapsed_ms: int = 0

    def __enter__(self):
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, *args):
        self.elapsed_ms = int((time.perf_counter() - self.start_time) * 1000)
