"""
Provider adapter contract.

Every extraction source (QR decoding, regex templates, AI text, document
intelligence, vision) implements BaseExtractionProvider. Adapters return
success=False for "ran, found nothing usable" and raise ProviderError
subclasses for transport failures; network adapters route each call through
the shared ResiliencePool.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, TypeVar

from ..mapping.confidence import (
    MalformedResponse,
    blend_confidence,
    map_to_extracted_data,
    parse_json_response,
)
from ..resilience.pool import ResiliencePool
from ..resilience.retry import BackoffPolicy
from ..schemas.analysis import DocumentFormat
from ..schemas.certificate import ExtractedCertificateData
from ..schemas.tiers import Tier

logger = logging.getLogger(__name__)

R = TypeVar("R")


@dataclass
class ProviderInput:
    """Everything an adapter may need about one document."""

    content: bytes
    mime_type: str
    certificate_type: str = "UNKNOWN"
    text: Optional[str] = None
    filename: Optional[str] = None
    page_count: int = 1
    document_format: Optional[DocumentFormat] = None
    custom_patterns: dict[str, list[str]] = field(default_factory=dict)


@dataclass
class ProviderResult:
    """Result of one adapter call."""

    success: bool
    data: Optional[ExtractedCertificateData] = None
    confidence: float = 0.0
    cost: float = 0.0
    raw_response: Optional[Any] = None
    error: Optional[str] = None

    @property
    def field_count(self) -> int:
        return self.data.populated_field_count() if self.data else 0

    @classmethod
    def failure(
        cls,
        error: str,
        cost: float = 0.0,
        raw_response: Optional[Any] = None,
    ) -> "ProviderResult":
        return cls(success=False, confidence=0.0, cost=cost, raw_response=raw_response, error=error)


class BaseExtractionProvider(ABC):
    """Base class for tier provider adapters."""

    name: str = "provider"
    tier: Tier

    def __init__(
        self,
        pool: Optional[ResiliencePool] = None,
        timeout: Optional[float] = None,
        policy: Optional[BackoffPolicy] = None,
    ):
        self._pool = pool
        self.timeout = timeout
        self.policy = policy

    @property
    def circuit_name(self) -> str:
        return self.name

    @property
    def pool(self) -> ResiliencePool:
        if self._pool is None:
            from ..resilience.pool import get_resilience_pool

            self._pool = get_resilience_pool()
        return self._pool

    def is_configured(self) -> bool:
        """Whether credentials and endpoints needed by this adapter are present."""
        return True

    @abstractmethod
    async def extract(self, provider_input: ProviderInput) -> ProviderResult:
        """Extract certificate data from a document."""
        pass

    async def close(self) -> None:
        """Release any client held by the adapter."""
        pass

    async def _call(self, operation: Callable[[], Awaitable[R]]) -> R:
        """Run an external call under this adapter's circuit, retry and timeout."""

        def _on_retry(error: BaseException, attempt: int) -> None:
            logger.info(f"{self.name}: retrying after attempt {attempt}: {error}")

        return await self.pool.call(
            self.circuit_name,
            operation,
            timeout=self.timeout,
            policy=self.policy,
            on_retry=_on_retry,
        )

    def _result_from_json(
        self,
        response_text: Optional[str],
        provider_confidence: float,
        cost: float,
        certificate_type: str = "UNKNOWN",
    ) -> ProviderResult:
        """Shared handling for model responses that should be a JSON object."""
        parsed = parse_json_response(response_text)
        if isinstance(parsed, MalformedResponse):
            logger.warning(f"{self.name}: malformed response: {parsed.reason}")
            return ProviderResult.failure(
                f"malformed response: {parsed.reason}",
                cost=cost,
                raw_response=response_text,
            )

        data = map_to_extracted_data(parsed.value, default_certificate_type=certificate_type)
        return ProviderResult(
            success=True,
            data=data,
            confidence=blend_confidence(provider_confidence, data),
            cost=cost,
            raw_response=parsed.value,
        )
