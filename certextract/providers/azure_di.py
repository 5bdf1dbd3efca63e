"""
Azure Document Intelligence extraction (tier-2).

Runs the prebuilt layout model through the SDK's async client and waits on
its long-running-operation poller, then maps the recognised text and
key/value pairs to certificate fields.
"""

import logging
import re
from typing import Any, Optional, Union

from azure.ai.documentintelligence.aio import DocumentIntelligenceClient
from azure.ai.documentintelligence.models import DocumentAnalysisFeature
from azure.core.credentials import AzureKeyCredential
from azure.core.exceptions import AzureError, DecodeError

from ..config.settings import Settings, get_settings
from ..mapping.confidence import MalformedResponse, calculate_confidence
from ..resilience.errors import RateLimitError, TransportError
from ..resilience.pool import ResiliencePool
from ..resilience.retry import BackoffPolicy
from ..schemas.certificate import ExtractedCertificateData
from ..schemas.tiers import Tier
from .base import BaseExtractionProvider, ProviderInput, ProviderResult
from .template_patterns import (
    DATE_VALUE,
    FieldPattern,
    apply_patterns,
    extract_with_template,
    normalize_date,
)

logger = logging.getLogger(__name__)

COST_PER_PAGE = 0.0015

GENERIC_PATTERNS = [
    FieldPattern(
        "certificate_number",
        [re.compile(r"(?:certificate|report)\s*(?:number|no|ref)\.?[:\s]*([A-Z0-9\-/]+)", re.I)],
        required=True,
    ),
    FieldPattern(
        "inspection_date",
        [
            re.compile(rf"(?:inspection\s*date|date\s*of\s*inspection|issued)[:\s]*{DATE_VALUE}", re.I),
            re.compile(rf"date[:\s]*{DATE_VALUE}", re.I),
        ],
        transform=normalize_date,
        required=True,
    ),
    FieldPattern(
        "expiry_date",
        [re.compile(rf"(?:expiry\s*date|valid\s*until|next\s*inspection(?:\s*due)?)[:\s]*{DATE_VALUE}", re.I)],
        transform=normalize_date,
    ),
    FieldPattern(
        "engineer_registration",
        [re.compile(r"gas\s*safe[^\d\n]*(\d{7})", re.I), re.compile(r"niceic[^\w\n]*([A-Z0-9]+)", re.I)],
    ),
    FieldPattern("property_address", [re.compile(r"(?:property\s*)?address[:\s]*([^\n]+)", re.I)]),
]

# Layout key/value labels mapped onto certificate fields
KEY_ALIASES: dict[str, str] = {
    "certificate number": "certificate_number",
    "certificate no": "certificate_number",
    "report reference": "certificate_number",
    "property address": "property_address",
    "address": "property_address",
    "uprn": "uprn",
    "inspection date": "inspection_date",
    "date of inspection": "inspection_date",
    "expiry date": "expiry_date",
    "next inspection date": "next_inspection_date",
    "engineer name": "engineer_name",
    "engineer": "engineer_name",
    "gas safe registration": "engineer_registration",
    "registration number": "engineer_registration",
    "company name": "contractor_name",
    "contractor": "contractor_name",
}
_DATE_FIELDS = {"inspection_date", "expiry_date", "next_inspection_date"}


def _mean_word_confidence(result: dict[str, Any]) -> Optional[float]:
    scores = [
        word.get("confidence")
        for page in result.get("pages") or []
        for word in page.get("words") or []
        if isinstance(word.get("confidence"), (int, float))
    ]
    return sum(scores) / len(scores) if scores else None


def _key_value_fields(result: dict[str, Any]) -> dict[str, str]:
    fields: dict[str, str] = {}
    for pair in result.get("keyValuePairs") or []:
        key = ((pair.get("key") or {}).get("content") or "").strip().rstrip(":").lower()
        value = ((pair.get("value") or {}).get("content") or "").strip()
        target = KEY_ALIASES.get(key)
        if not target or not value:
            continue
        if target in _DATE_FIELDS:
            value = normalize_date(value) or value
        fields.setdefault(target, value)
    return fields


def map_analyze_result(result: dict[str, Any], certificate_type: str) -> ExtractedCertificateData:
    """Map an analyzeResult payload to certificate data."""
    text = result.get("content") or ""
    match = extract_with_template(text, certificate_type)
    if match is None:
        match = apply_patterns(text, certificate_type, GENERIC_PATTERNS)
    data = match.data

    # Layout key/value pairs fill gaps left by the text patterns
    updates = {
        name: value
        for name, value in _key_value_fields(result).items()
        if getattr(data, name) is None
    }
    return data.model_copy(update=updates) if updates else data




def _transport_error(error: AzureError, provider: str) -> TransportError:
    """Map an SDK error to the provider error hierarchy."""
    status_code = getattr(error, "status_code", None)
    if status_code == 429:
        response = getattr(error, "response", None)
        retry_after = response.headers.get("Retry-After") if response is not None else None
        return RateLimitError(
            f"Rate limited by {provider}",
            provider=provider,
            retry_after=int(retry_after) if retry_after and retry_after.isdigit() else None,
        )
    return TransportError(
        f"{provider} request failed: {error.message}", provider, status_code=status_code
    )


class AzureDocumentIntelligenceProvider(BaseExtractionProvider):
    """Layout-model OCR with key/value extraction."""

    name = "azure-di"
    tier = Tier.DOCUMENT_INTELLIGENCE

    def __init__(
        self,
        settings: Optional[Settings] = None,
        client: Optional[DocumentIntelligenceClient] = None,
        pool: Optional[ResiliencePool] = None,
        timeout: Optional[float] = None,
        policy: Optional[BackoffPolicy] = None,
    ):
        self.settings = settings or get_settings()
        if timeout is None:
            # Submission plus the full polling window
            timeout = (
                self.settings.azure_di_poll_interval_seconds * self.settings.azure_di_max_polls
                + self.settings.provider_timeout_seconds
            )
        super().__init__(pool=pool, timeout=timeout, policy=policy)
        self._client = client

    def is_configured(self) -> bool:
        return self._client is not None or self.settings.is_document_intelligence_configured()

    def _ensure_client(self) -> DocumentIntelligenceClient:
        if self._client is None:
            self._client = DocumentIntelligenceClient(
                endpoint=self.settings.azure_di_endpoint,
                credential=AzureKeyCredential(self.settings.azure_di_key),
                api_version=self.settings.azure_di_api_version,
            )
        return self._client

    async def close(self) -> None:
        """Close the SDK client's transport."""
        if self._client is not None:
            await self._client.close()
            self._client = None

    async def _analyze(
        self, client: DocumentIntelligenceClient, content: bytes, mime_type: str
    ) -> Union[dict[str, Any], MalformedResponse]:
        """
        Submit the document and wait for the poller's result.

        An undecodable result is returned as MalformedResponse rather than
        raised: the service answered, so the circuit records a success.
        """
        try:
            poller = await client.begin_analyze_document(
                self.settings.azure_di_model,
                content,
                content_type=mime_type or "application/octet-stream",
                features=[DocumentAnalysisFeature.KEY_VALUE_PAIRS],
                polling_interval=self.settings.azure_di_poll_interval_seconds,
            )
            result = await poller.result()
        except DecodeError as e:
            return MalformedResponse(f"undecodable analysis result: {e.message}", "")
        except AzureError as e:
            raise _transport_error(e, self.name) from e

        if result is None:
            return MalformedResponse("empty analysis result", "")
        return result.as_dict()

    async def extract(self, provider_input: ProviderInput) -> ProviderResult:
        client = self._ensure_client()
        result = await self._call(
            lambda: self._analyze(client, provider_input.content, provider_input.mime_type)
        )

        if isinstance(result, MalformedResponse):
            logger.warning(f"{self.name}: malformed response: {result.reason}")
            return ProviderResult.failure(
                f"malformed response: {result.reason}",
                cost=round((provider_input.page_count or 1) * COST_PER_PAGE, 6),
            )

        page_count = len(result.get("pages") or []) or provider_input.page_count or 1
        cost = round(page_count * COST_PER_PAGE, 6)
        if not (result.get("content") or "").strip():
            return ProviderResult.failure("no text recognised", cost=cost, raw_response=result)

        data = map_analyze_result(result, provider_input.certificate_type)
        completeness = calculate_confidence(data)
        ocr_confidence = _mean_word_confidence(result)
        confidence = completeness if ocr_confidence is None else min(ocr_confidence, completeness)

        logger.info(
            f"Azure DI extracted {data.populated_field_count()} fields from "
            f"{page_count} page(s), confidence {confidence:.2f}"
        )
        return ProviderResult(
            success=True,
            data=data,
            confidence=round(confidence, 4),
            cost=cost,
            raw_response={"content": result.get("content"), "page_count": page_count},
        )
