"""Tier orchestration, audit recording and batch extraction."""

from typing import Optional

from ..config.extraction_settings import SettingsCache, SettingsSource
from ..config.settings import Settings, get_settings
from ..providers.registry import build_default_registry
from ..resilience.pool import ResiliencePool, get_resilience_pool
from .audit import AuditStore, InMemoryAuditStore, TierAuditRecorder
from .batch import DocumentJob, extract_many
from .decisions import CostTracker, plan_tiers, threshold_for
from .orchestrator import ExtractionOptions, TierOrchestrator, attempted_tiers


def build_orchestrator(
    settings_source: SettingsSource,
    audit_store: Optional[AuditStore] = None,
    settings: Optional[Settings] = None,
    pool: Optional[ResiliencePool] = None,
) -> TierOrchestrator:
    """Orchestrator wired with the default adapters and process-wide services."""
    settings = settings or get_settings()
    pool = pool or get_resilience_pool()
    return TierOrchestrator(
        registry=build_default_registry(settings, pool),
        settings_cache=SettingsCache(settings_source, settings.settings_cache_ttl_seconds),
        audit_recorder=TierAuditRecorder(
            audit_store or InMemoryAuditStore(), max_queue_size=settings.audit_queue_size
        ),
    )


__all__ = [
    "AuditStore",
    "CostTracker",
    "DocumentJob",
    "ExtractionOptions",
    "InMemoryAuditStore",
    "TierAuditRecorder",
    "TierOrchestrator",
    "attempted_tiers",
    "build_orchestrator",
    "extract_many",
    "plan_tiers",
    "threshold_for",
]
