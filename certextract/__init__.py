"""
certextract: tiered extraction of structured data from compliance certificates.

Documents are run through QR/metadata decoding, regex templates, AI text,
document intelligence and vision tiers in ascending cost order, stopping at
the first tier whose confidence clears the configured threshold.
"""

from .config import ExtractionSettings, SettingsCache, StaticSettingsSource
from .orchestrator import (
    ExtractionOptions,
    InMemoryAuditStore,
    TierAuditRecorder,
    TierOrchestrator,
    build_orchestrator,
    extract_many,
)
from .schemas import ExtractedCertificateData, ExtractionOutcome, Tier, TierStatus

__version__ = "0.1.0"

__all__ = [
    "ExtractedCertificateData",
    "ExtractionOptions",
    "ExtractionOutcome",
    "ExtractionSettings",
    "InMemoryAuditStore",
    "SettingsCache",
    "StaticSettingsSource",
    "Tier",
    "TierAuditRecorder",
    "TierOrchestrator",
    "TierStatus",
    "build_orchestrator",
    "extract_many",
]
