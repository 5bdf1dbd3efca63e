"""
Multi-tier extraction orchestrator.

Runs a document through successively more expensive extraction tiers and
stops at the first whose confidence clears the threshold for the document's
certificate type:

    tier-0    QR codes and embedded metadata
    tier-0.5  custom per-type patterns from settings
    tier-1    built-in templates
    tier-1.5  AI text model
    tier-2    document intelligence
    tier-3    vision model
    tier-4    manual review (terminal)

Provider failures degrade to the next tier; nothing an adapter raises
escapes extract(). Every tier reached produces one audit record.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional

from ..analysis.format_detector import analyse_document, detect_format, unreadable_analysis
from ..config.extraction_settings import ExtractionSettings, SettingsCache
from ..resilience.errors import CircuitOpenError
from ..schemas.analysis import FormatAnalysis
from ..schemas.certificate import ExtractedCertificateData
from ..schemas.tiers import (
    ExtractionOutcome,
    Tier,
    TierAttemptResult,
    TierAuditRecord,
    TierStatus,
)
from ..providers.base import BaseExtractionProvider, ProviderInput
from ..providers.registry import ProviderRegistry
from .audit import TierAuditRecorder
from .decisions import (
    CostTracker,
    ExtractionTimer,
    low_confidence_reason,
    plan_tiers,
    resolve_certificate_type,
    threshold_for,
)

logger = logging.getLogger(__name__)

Analyser = Callable[[bytes, str, Optional[str]], FormatAnalysis]


@dataclass
class ExtractionOptions:
    """Per-call overrides."""

    force_ai: bool = False
    skip_tiers: set[Tier] = field(default_factory=set)


@dataclass
class _RunState:
    certificate_id: str
    run_id: str
    certificate_type: str
    analysis: FormatAnalysis
    costs: CostTracker
    attempts: list[TierAttemptResult] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def best(self) -> Optional[TierAttemptResult]:
        """Highest-confidence attempt that produced data (earliest on ties)."""
        candidates = [a for a in self.attempts if a.data is not None]
        if not candidates:
            return None
        return max(candidates, key=lambda a: (a.confidence, -a.tier.order))


class TierOrchestrator:
    """
    Runs the tier state machine for one document at a time.

    The orchestrator holds no per-run state; concurrent extract() calls are
    independent and share only the registry's circuit pool, the settings
    cache and the audit recorder.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        settings_cache: SettingsCache,
        audit_recorder: Optional[TierAuditRecorder] = None,
        analyser: Analyser = analyse_document,
    ):
        self.registry = registry
        self.settings_cache = settings_cache
        self.audit_recorder = audit_recorder
        self.analyser = analyser

    async def extract(
        self,
        certificate_id: str,
        content: bytes,
        mime_type: str,
        filename: Optional[str] = None,
        certificate_type: Optional[str] = None,
        options: Optional[ExtractionOptions] = None,
    ) -> ExtractionOutcome:
        """
        Extract structured certificate data from a document.

        Args:
            certificate_id: Caller's identifier, copied to every audit record
            content: Raw document bytes
            mime_type: Declared mime type
            filename: Original filename (format fallback)
            certificate_type: Declared certificate type; detected when omitted
            options: force_ai and skip_tiers overrides

        Returns:
            ExtractionOutcome with the final tier, confidence and attempts

        Raises:
            ExtractionSettingsError: If the settings store holds invalid values
        """
        options = options or ExtractionOptions()
        settings = await self.settings_cache.get()

        with ExtractionTimer() as run_timer:
            analysis = await self._analyse(content, mime_type, filename)
            doc_type = resolve_certificate_type(certificate_type, analysis)
            state = _RunState(
                certificate_id=certificate_id,
                run_id=uuid.uuid4().hex,
                certificate_type=doc_type,
                analysis=analysis,
                costs=CostTracker(max_cost=settings.max_cost_per_document),
            )
            ai_enabled = settings.ai_enabled or options.force_ai
            if not ai_enabled:
                state.warnings.append("AI extraction is disabled")
            if analysis.is_unreadable:
                state.warnings.append("Document could not be parsed; only vision extraction applies")

            logger.info(
                f"Extracting {certificate_id} ({analysis.format.value}, {doc_type}, "
                f"{analysis.page_count} page(s), run {state.run_id})"
            )

            provider_input = ProviderInput(
                content=content,
                mime_type=mime_type,
                certificate_type=doc_type,
                text=analysis.text_content,
                filename=filename,
                page_count=analysis.page_count,
                document_format=analysis.format,
                custom_patterns=settings.patterns_for(doc_type),
            )

            outcome = await self._run_tiers(
                state, settings, doc_type, provider_input, options, ai_enabled
            )

        outcome.processing_time_ms = run_timer.elapsed_ms
        logger.info(
            f"Extraction {state.run_id} finished at {outcome.final_tier.value} "
            f"({outcome.status.value}, confidence {outcome.confidence:.2f}, "
            f"cost ${outcome.total_cost:.4f})"
        )
        return outcome

    async def _analyse(
        self, content: bytes, mime_type: str, filename: Optional[str]
    ) -> FormatAnalysis:
        # pdfplumber and Pillow parsing runs off the event loop
        try:
            return await asyncio.to_thread(self.analyser, content, mime_type, filename)
        except Exception as e:
            logger.error(f"Format analysis failed: {e!r}")
            return unreadable_analysis(detect_format(mime_type, filename), str(e) or type(e).__name__)

    async def _run_tiers(
        self,
        state: _RunState,
        settings: ExtractionSettings,
        doc_type: str,
        provider_input: ProviderInput,
        options: ExtractionOptions,
        ai_enabled: bool,
    ) -> ExtractionOutcome:
        for tier in plan_tiers(state.analysis, settings, doc_type):
            if tier in options.skip_tiers:
                self._skip(state, tier, "skipped by caller")
                continue
            if tier.is_ai and not ai_enabled:
                self._skip(state, tier, "AI extraction disabled")
                continue

            provider = self.registry.resolve(tier)
            if provider is None:
                self._skip(state, tier, f"{self.registry.describe(tier)} not configured")
                continue

            if not state.costs.allows(tier):
                reason = state.costs.budget_reason(tier)
                self._skip(state, tier, reason)
                state.warnings.append(f"Stopped before {tier.value}: {reason}")
                best = state.best
                if best is not None:
                    return self._outcome(
                        state, best.tier, TierStatus.LOW_CONFIDENCE, best, success=False
                    )
                break

            attempt = await self._attempt(state, tier, provider, provider_input, doc_type, settings)
            if attempt.status is TierStatus.SUCCESS:
                return self._outcome(state, tier, TierStatus.SUCCESS, attempt, success=True)

        return self._manual_review(state)

    async def _attempt(
        self,
        state: _RunState,
        tier: Tier,
        provider: BaseExtractionProvider,
        provider_input: ProviderInput,
        doc_type: str,
        settings: ExtractionSettings,
    ) -> TierAttemptResult:
        attempted_at = datetime.now(timezone.utc)
        with ExtractionTimer() as timer:
            try:
                result = await provider.extract(provider_input)
            except CircuitOpenError as e:
                logger.warning(f"{tier.value} ({provider.name}): {e}")
                result = None
                error = "circuit open"
            except Exception as e:
                logger.error(f"{tier.value} ({provider.name}) failed: {e}")
                result = None
                error = str(e) or type(e).__name__

        if result is None:
            attempt = TierAttemptResult(
                tier=tier,
                status=TierStatus.FAILED,
                duration_ms=timer.elapsed_ms,
                escalation_reason=error,
                provider=provider.name,
            )
        elif not result.success:
            state.costs.record(result.cost, provider.name)
            attempt = TierAttemptResult(
                tier=tier,
                status=TierStatus.FAILED,
                duration_ms=timer.elapsed_ms,
                cost=result.cost,
                escalation_reason=result.error or "no usable result",
                provider=provider.name,
                raw_output=result.raw_response,
            )
        else:
            state.costs.record(result.cost, provider.name)
            confidence = min(max(result.confidence, 0.0), 1.0)
            threshold = threshold_for(tier, doc_type, settings)
            passed = confidence >= threshold
            attempt = TierAttemptResult(
                tier=tier,
                status=TierStatus.SUCCESS if passed else TierStatus.LOW_CONFIDENCE,
                confidence=confidence,
                duration_ms=timer.elapsed_ms,
                field_count=result.field_count,
                cost=result.cost,
                escalation_reason=None if passed else low_confidence_reason(
                    confidence, threshold, doc_type
                ),
                provider=provider.name,
                raw_output=result.raw_response,
                data=result.data,
            )

        logger.info(
            f"{tier.value} ({provider.name}): {attempt.status.value}"
            + (f", {attempt.escalation_reason}" if attempt.escalation_reason else "")
        )
        self._append(state, attempt, attempted_at)
        return attempt

    def _skip(self, state: _RunState, tier: Tier, reason: str) -> None:
        logger.info(f"{tier.value} skipped: {reason}")
        self._append(
            state,
            TierAttemptResult(tier=tier, status=TierStatus.SKIPPED, escalation_reason=reason),
        )

    def _append(
        self,
        state: _RunState,
        attempt: TierAttemptResult,
        attempted_at: Optional[datetime] = None,
    ) -> None:
        state.attempts.append(attempt)
        if self.audit_recorder is not None:
            self.audit_recorder.record(
                TierAuditRecord.from_attempt(
                    attempt,
                    certificate_id=state.certificate_id,
                    extraction_run_id=state.run_id,
                    analysis=state.analysis,
                    attempted_at=attempted_at,
                )
            )

    def _manual_review(self, state: _RunState) -> ExtractionOutcome:
        best = state.best
        reason = "no automated tier reached its confidence threshold; routed to manual review"
        if not any(a.status is not TierStatus.SKIPPED for a in state.attempts):
            reason = "no automated tier could be attempted; routed to manual review"
        self._append(
            state,
            TierAttemptResult(
                tier=Tier.MANUAL_REVIEW,
                status=TierStatus.SUCCESS,
                confidence=best.confidence if best else 0.0,
                field_count=best.field_count if best else 0,
                escalation_reason=reason,
            ),
        )
        state.warnings.append("Certificate requires manual review")
        return self._outcome(
            state, Tier.MANUAL_REVIEW, TierStatus.LOW_CONFIDENCE, best, success=False
        )

    def _outcome(
        self,
        state: _RunState,
        final_tier: Tier,
        status: TierStatus,
        chosen: Optional[TierAttemptResult],
        success: bool,
    ) -> ExtractionOutcome:
        return ExtractionOutcome(
            extraction_run_id=state.run_id,
            success=success,
            data=(
                chosen.data
                if chosen and chosen.data is not None
                else ExtractedCertificateData(certificate_type=state.certificate_type)
            ),
            confidence=chosen.confidence if chosen else 0.0,
            final_tier=final_tier,
            status=status,
            requires_review=not success,
            total_cost=round(state.costs.total_cost, 6),
            warnings=list(state.warnings),
            attempts=list(state.attempts),
            format_analysis=state.analysis,
            raw_text=state.analysis.text_content,
        )


def attempted_tiers(outcome: ExtractionOutcome) -> list[Tier]:
    """Tiers whose adapters actually ran, in order."""
    return [
        a.tier
        for a in outcome.attempts
        if a.status is not TierStatus.SKIPPED and a.tier is not Tier.MANUAL_REVIEW
    ]
