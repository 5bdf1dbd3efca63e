"""Tests for provider adapters."""

import asyncio
import json
import os
from types import SimpleNamespace
from typing import Optional
from unittest.mock import patch

import httpx
import pymupdf
import pytest
from azure.ai.documentintelligence.models import DocumentAnalysisFeature
from azure.core.exceptions import DecodeError, HttpResponseError

from certextract.config import Settings
from certextract.providers import (
    AzureDocumentIntelligenceProvider,
    CustomPatternProvider,
    OllamaClient,
    OllamaTextProvider,
    OllamaVisionProvider,
    OpenAITextProvider,
    OpenAIVisionProvider,
    ProviderInput,
    ProviderRegistry,
    QRMetadataProvider,
    TemplateProvider,
    extract_with_template,
    normalize_date,
    parse_qr_payload,
)
from certextract.providers.rendering import document_images, render_pdf_pages
from certextract.providers.template_patterns import extract_defects
from certextract.resilience import (
    NO_RETRY,
    BackoffPolicy,
    CircuitBreakerConfig,
    RateLimitError,
    ResiliencePool,
    TransportError,
)
from certextract.schemas import (
    ApplianceOutcome,
    DefectPriority,
    DocumentFormat,
    Outcome,
    Tier,
)


GAS_TEXT = """LANDLORD GAS SAFETY RECORD
Certificate No: GS-12345
Gas Safe Registration: 1234567
Engineer: John Smith
Inspection Date: 15/03/2024
Expiry Date: 14/03/2025
Property Address: 1 High Street, London
Overall Result: PASS
Appliance 1: Boiler Kitchen PASS
"""

MODEL_JSON = json.dumps({
    "certificate_type": "GAS",
    "certificate_number": "GS-12345",
    "property_address": "1 High Street, London",
    "inspection_date": "2024-03-15",
    "expiry_date": "2025-03-14",
    "outcome": "PASS",
    "engineer_name": "John Smith",
    "engineer_registration": "1234567",
})


@pytest.fixture
def empty_settings():
    """Settings with no provider credentials."""
    with patch.dict(os.environ, {}, clear=True):
        yield Settings(_env_file=None)


@pytest.fixture
def pool():
    return ResiliencePool(default_policy=NO_RETRY, default_timeout=5.0)


def _text_input(text: str = GAS_TEXT, certificate_type: str = "GAS", **kwargs) -> ProviderInput:
    return ProviderInput(
        content=text.encode(),
        mime_type="text/plain",
        certificate_type=certificate_type,
        text=text,
        **kwargs,
    )


class TestNormalizeDate:
    """Tests for UK date normalisation."""

    def test_formats(self):
        """Test day-first, ISO and month-name dates."""
        assert normalize_date("15/03/2024") == "2024-03-15"
        assert normalize_date("1.2.2024") == "2024-02-01"
        assert normalize_date("2024-03-15") == "2024-03-15"
        assert normalize_date("5 March 2024") == "2024-03-05"

    def test_unparseable(self):
        """Test non-dates return None."""
        assert normalize_date("next year") is None

    def test_impossible_dates(self):
        """Test values that are not calendar dates return None."""
        assert normalize_date("13/13/2024") is None
        assert normalize_date("31/02/2024") is None
        assert normalize_date("29/02/2024") == "2024-02-29"


class TestTemplates:
    """Tests for built-in regex templates."""

    def test_gas_template(self):
        """Test a complete gas safety record."""
        match = extract_with_template(GAS_TEXT, "gas")
        data = match.data
        assert data.certificate_type == "GAS"
        assert data.certificate_number == "GS-12345"
        assert data.engineer_registration == "1234567"
        assert data.engineer_name == "John Smith"
        assert data.inspection_date == "2024-03-15"
        assert data.expiry_date == "2025-03-14"
        assert data.property_address == "1 High Street, London"
        assert data.outcome is Outcome.PASS
        assert match.confidence == 1.0
        assert match.missing_required == []

    def test_gas_appliances(self):
        """Test appliance lines are parsed."""
        data = extract_with_template(GAS_TEXT, "GAS").data
        assert len(data.appliances) == 1
        assert data.appliances[0].type == "Boiler Kitchen"
        assert data.appliances[0].outcome is ApplianceOutcome.PASS

    def test_missing_required_halves_confidence(self):
        """Test missing required fields halve the score."""
        match = extract_with_template("Certificate No: X1\nOverall Result: FAIL", "GAS")
        assert "inspection_date" in match.missing_required
        assert match.data.outcome is Outcome.FAIL
        assert match.confidence == round(2 / 7 * 0.5, 4)

    def test_no_template(self):
        """Test types without a template return None."""
        assert extract_with_template(GAS_TEXT, "LIFT") is None

    def test_epc_rating_in_additional_fields(self):
        """Test letter ratings are kept as additional fields, not outcomes."""
        text = "Certificate Reference: 1234-5678\nDate of assessment: 01/02/2024\nEnergy rating: c"
        data = extract_with_template(text, "EPC").data
        assert data.additional_fields == {"energy_rating": "C"}
        assert data.outcome is None

    def test_defect_codes(self):
        """Test defect codes and priorities."""
        defects = extract_defects("C1 Danger present at consumer unit\nC3 improvement recommended")
        assert [d.code for d in defects] == ["C1", "C3"]
        assert defects[0].priority is DefectPriority.IMMEDIATE
        assert defects[1].priority is DefectPriority.ADVISORY

    def test_template_provider(self, pool):
        """Test the tier-1 adapter contract."""
        provider = TemplateProvider(pool=pool)
        assert provider.tier is Tier.TEMPLATE
        assert provider.is_configured()
        result = asyncio.run(provider.extract(_text_input()))
        assert result.success
        assert result.confidence == 1.0
        assert result.cost == 0.0
        assert result.field_count >= 7

    def test_template_provider_no_text(self, pool):
        """Test documents without text are a failed result, not an error."""
        result = asyncio.run(TemplateProvider(pool=pool).extract(_text_input(text="")))
        assert not result.success
        assert result.error == "no text layer"

    def test_custom_patterns(self, pool):
        """Test operator-supplied patterns."""
        provider_input = _text_input(
            text="Ref#ABC123 Visited 01/02/2024",
            certificate_type="LIFT",
            custom_patterns={
                "certificate_number": [r"Ref#(\w+)"],
                "inspection_date": [r"Visited (\S+)"],
            },
        )
        result = asyncio.run(CustomPatternProvider(pool=pool).extract(provider_input))
        assert result.success
        assert result.confidence == 1.0
        assert result.data.certificate_type == "LIFT"
        assert result.data.certificate_number == "ABC123"
        assert result.data.inspection_date == "2024-02-01"

    def test_custom_patterns_absent(self, pool):
        """Test the custom tier fails cleanly without patterns."""
        result = asyncio.run(CustomPatternProvider(pool=pool).extract(_text_input()))
        assert not result.success


class TestQRMetadata:
    """Tests for QR payload parsing."""

    def test_gas_safe_payload(self):
        """Test Gas Safe register links."""
        qr = parse_qr_payload("https://www.gassaferegister.co.uk/check/ABC123")
        assert qr.provider == "gas-safe"
        assert qr.verification_code == "ABC123"
        assert qr.url == "https://www.gassaferegister.co.uk/check/ABC123"

    def test_niceic_payload(self):
        """Test NICEIC verification links."""
        qr = parse_qr_payload("https://niceic.com/verify/XYZ9")
        assert qr.provider == "niceic"
        assert qr.verification_code == "XYZ9"

    def test_other_payload(self):
        """Test unknown payloads."""
        qr = parse_qr_payload("hello world")
        assert qr.provider == "other"
        assert qr.url is None

    def test_blank_image_no_verification(self, pool):
        """Test an image without QR codes is an unsuccessful result."""
        import io

        from PIL import Image

        buffer = io.BytesIO()
        Image.new("RGB", (120, 120), "white").save(buffer, format="PNG")
        provider_input = ProviderInput(
            content=buffer.getvalue(),
            mime_type="image/png",
            document_format=DocumentFormat.IMAGE,
        )
        result = asyncio.run(QRMetadataProvider(pool=pool).extract(provider_input))
        assert not result.success
        assert result.confidence == 0.0

    def test_undecodable_image(self, pool):
        """Test corrupt bytes give a failed result."""
        provider_input = ProviderInput(
            content=b"not an image",
            mime_type="image/png",
            document_format=DocumentFormat.IMAGE,
        )
        result = asyncio.run(QRMetadataProvider(pool=pool).extract(provider_input))
        assert not result.success
        assert "could not scan" in result.error


class FakeCompletions:
    def __init__(self, content=None, error=None):
        self.content = content
        self.error = error
        self.calls = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.error:
            raise self.error
        return SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content=self.content))],
            usage=SimpleNamespace(prompt_tokens=1000, completion_tokens=500),
        )


def _fake_openai(content=None, error=None):
    completions = FakeCompletions(content, error)
    return SimpleNamespace(chat=SimpleNamespace(completions=completions)), completions


class TestOpenAIProviders:
    """Tests for OpenAI text and vision adapters."""

    def test_unconfigured(self, empty_settings, pool):
        """Test adapters report unconfigured without credentials."""
        assert not OpenAITextProvider(settings=empty_settings, pool=pool).is_configured()
        assert not OpenAIVisionProvider(settings=empty_settings, pool=pool).is_configured()

    def test_text_extraction(self, empty_settings, pool):
        """Test a JSON response is mapped, scored and costed."""
        client, completions = _fake_openai(MODEL_JSON)
        provider = OpenAITextProvider(
            settings=empty_settings, client=client, model="gpt-4o-mini", pool=pool
        )
        assert provider.is_configured()

        result = asyncio.run(provider.extract(_text_input()))
        assert result.success
        assert result.data.certificate_number == "GS-12345"
        assert result.confidence == 0.85
        assert result.cost == pytest.approx((1000 * 0.15 + 500 * 0.60) / 1_000_000)
        assert completions.calls[0]["response_format"] == {"type": "json_object"}
        assert "GAS certificate" in completions.calls[0]["messages"][1]["content"]

    def test_malformed_response(self, empty_settings, pool):
        """Test unparseable output is a failed result, not an exception."""
        client, _ = _fake_openai("I could not read this document.")
        provider = OpenAITextProvider(settings=empty_settings, client=client, model="gpt-4o-mini", pool=pool)
        result = asyncio.run(provider.extract(_text_input()))
        assert not result.success
        assert result.confidence == 0.0
        assert result.error.startswith("malformed response")

    def test_transport_error_propagates(self, empty_settings, pool):
        """Test transport failures propagate and count against the circuit."""
        client, completions = _fake_openai(error=TransportError("503", provider="openai-text"))
        provider = OpenAITextProvider(settings=empty_settings, client=client, model="gpt-4o-mini", pool=pool)
        with pytest.raises(TransportError):
            asyncio.run(provider.extract(_text_input()))
        assert pool.stats()["openai-text"].failure_count == 1

    def test_vision_renders_image(self, empty_settings, pool):
        """Test the vision adapter sends the image and a prompt."""
        import io

        from PIL import Image

        buffer = io.BytesIO()
        Image.new("RGB", (32, 32), "white").save(buffer, format="JPEG")
        client, completions = _fake_openai(MODEL_JSON)
        provider = OpenAIVisionProvider(settings=empty_settings, client=client, model="gpt-4o", pool=pool)
        provider_input = ProviderInput(
            content=buffer.getvalue(),
            mime_type="image/jpeg",
            certificate_type="GAS",
            document_format=DocumentFormat.IMAGE,
        )
        result = asyncio.run(provider.extract(provider_input))
        assert result.success
        assert result.confidence == 0.88
        content = completions.calls[0]["messages"][1]["content"]
        assert content[0]["image_url"]["url"].startswith("data:image/png;base64,")
        assert content[-1]["type"] == "text"


class FakePoller:
    def __init__(self, payload=None, error=None):
        self.payload = payload
        self.error = error

    async def result(self):
        if self.error is not None:
            raise self.error
        return SimpleNamespace(as_dict=lambda: self.payload)


class FakeDocumentIntelligence:
    """Stands in for the SDK's async DocumentIntelligenceClient."""

    def __init__(self, payload=None, error=None, submit_error=None):
        self.payload = payload
        self.error = error
        self.submit_error = submit_error
        self.calls = []

    async def begin_analyze_document(self, model_id, body, **kwargs):
        self.calls.append((model_id, body, kwargs))
        if self.submit_error is not None:
            raise self.submit_error
        return FakePoller(self.payload, self.error)


def _http_error(message: str, status_code: Optional[int] = None) -> HttpResponseError:
    error = HttpResponseError(message=message)
    error.status_code = status_code
    return error


class TestAzureDocumentIntelligence:
    """Tests for the document intelligence adapter."""

    def _provider(self, settings, pool, client):
        return AzureDocumentIntelligenceProvider(settings=settings, client=client, pool=pool)

    def test_unconfigured(self, empty_settings, pool):
        """Test the adapter is unconfigured without endpoint and key."""
        assert not AzureDocumentIntelligenceProvider(settings=empty_settings, pool=pool).is_configured()

    def test_analyze_and_map(self, empty_settings, pool):
        """Test layout text and key/value pairs map to certificate fields."""
        payload = {
            "content": GAS_TEXT,
            "pages": [{"words": [{"confidence": 0.99}, {"confidence": 0.97}]}],
            "keyValuePairs": [
                {"key": {"content": "UPRN:"}, "value": {"content": "100023336956"}},
            ],
        }
        client = FakeDocumentIntelligence(payload)
        provider = self._provider(empty_settings, pool, client)
        provider_input = ProviderInput(
            content=b"%PDF-1.4", mime_type="application/pdf", certificate_type="GAS"
        )
        result = asyncio.run(provider.extract(provider_input))
        assert result.success
        assert result.cost == 0.0015
        assert result.data.certificate_number == "GS-12345"
        assert result.data.uprn == "100023336956"
        assert result.confidence == 0.95

        model_id, body, kwargs = client.calls[0]
        assert model_id == "prebuilt-layout"
        assert body == b"%PDF-1.4"
        assert kwargs["content_type"] == "application/pdf"
        assert DocumentAnalysisFeature.KEY_VALUE_PAIRS in kwargs["features"]

    def test_failed_analysis(self, empty_settings, pool):
        """Test a failed analysis operation raises a transport error."""
        client = FakeDocumentIntelligence(error=_http_error("corrupt document"))
        provider = self._provider(empty_settings, pool, client)
        with pytest.raises(TransportError, match="corrupt document"):
            asyncio.run(provider.extract(ProviderInput(content=b"x", mime_type="application/pdf")))
        assert pool.stats()["azure-di"].failure_count == 1

    def test_http_error_status(self, empty_settings, pool):
        """Test service errors map to TransportError with the status code."""
        client = FakeDocumentIntelligence(submit_error=_http_error("server error", 500))
        provider = self._provider(empty_settings, pool, client)
        with pytest.raises(TransportError) as exc_info:
            asyncio.run(provider.extract(ProviderInput(content=b"x", mime_type="application/pdf")))
        assert exc_info.value.status_code == 500

    def test_rate_limited(self, empty_settings, pool):
        """Test 429 responses map to RateLimitError."""
        client = FakeDocumentIntelligence(submit_error=_http_error("too many requests", 429))
        provider = self._provider(empty_settings, pool, client)
        with pytest.raises(RateLimitError):
            asyncio.run(provider.extract(ProviderInput(content=b"x", mime_type="application/pdf")))

    def test_undecodable_result(self, empty_settings):
        """Test an undecodable result is a failed result that is neither retried nor a circuit failure."""
        pool = ResiliencePool(default_policy=BackoffPolicy(max_attempts=3, initial_delay=0.0))
        client = FakeDocumentIntelligence(error=DecodeError(message="invalid JSON"))
        provider = self._provider(empty_settings, pool, client)
        result = asyncio.run(
            provider.extract(ProviderInput(content=b"x", mime_type="application/pdf", page_count=2))
        )
        assert not result.success
        assert result.confidence == 0.0
        assert result.error.startswith("malformed response")
        assert result.cost == 0.003
        assert len(client.calls) == 1
        assert pool.stats()["azure-di"].failure_count == 0

    def test_empty_content(self, empty_settings, pool):
        """Test no recognised text is a failed result that still costs."""
        client = FakeDocumentIntelligence({"content": "", "pages": [{}, {}]})
        provider = self._provider(empty_settings, pool, client)
        result = asyncio.run(provider.extract(ProviderInput(content=b"x", mime_type="application/pdf")))
        assert not result.success
        assert result.cost == 0.003


class TestOllama:
    """Tests for the local model fallback."""

    def _client(self, reply):
        def handler(request: httpx.Request) -> httpx.Response:
            payload = json.loads(request.content)
            assert payload["stream"] is False
            assert payload["format"] == "json"
            return httpx.Response(200, json=reply)

        return OllamaClient("http://ollama.local", transport=httpx.MockTransport(handler))

    def test_unconfigured(self, empty_settings, pool):
        """Test the local fallback needs OLLAMA_BASE_URL."""
        assert not OllamaTextProvider(settings=empty_settings, pool=pool).is_configured()
        assert not OllamaVisionProvider(settings=empty_settings, pool=pool).is_configured()

    def test_text_extraction(self, empty_settings, pool):
        """Test local text extraction is free and lower confidence."""
        provider = OllamaTextProvider(
            settings=empty_settings,
            client=self._client({"message": {"content": MODEL_JSON}}),
            pool=pool,
        )
        result = asyncio.run(provider.extract(_text_input()))
        assert result.success
        assert result.cost == 0.0
        assert result.confidence == 0.75
        assert provider.circuit_name == "ollama"

    def test_unexpected_shape(self, empty_settings):
        """Test a reply without a message is a failed result, not retried or counted by the circuit."""
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json={"done": True})

        pool = ResiliencePool(default_policy=BackoffPolicy(max_attempts=3, initial_delay=0.0))
        provider = OllamaTextProvider(
            settings=empty_settings,
            client=OllamaClient("http://ollama.local", transport=httpx.MockTransport(handler)),
            pool=pool,
        )
        result = asyncio.run(provider.extract(_text_input()))
        assert not result.success
        assert result.confidence == 0.0
        assert result.error.startswith("malformed response")
        assert len(requests) == 1
        assert pool.stats()["ollama"].failure_count == 0

    def test_non_json_reply(self, empty_settings, pool):
        """Test a body that is not JSON at all is a failed result."""
        provider = OllamaTextProvider(
            settings=empty_settings,
            client=OllamaClient(
                "http://ollama.local",
                transport=httpx.MockTransport(lambda request: httpx.Response(200, text="<html>")),
            ),
            pool=pool,
        )
        result = asyncio.run(provider.extract(_text_input()))
        assert not result.success
        assert result.raw_response == "<html>"

    def test_model_output_not_json(self, empty_settings, pool):
        """Test prose from the model is classified as malformed."""
        provider = OllamaTextProvider(
            settings=empty_settings,
            client=self._client({"message": {"content": "I cannot read this."}}),
            pool=pool,
        )
        result = asyncio.run(provider.extract(_text_input()))
        assert not result.success
        assert result.error.startswith("malformed response")


class TestRendering:
    """Tests for page rendering."""

    def test_pdf_pages_rendered_as_png(self):
        """Test PDF pages are rendered up to the page limit."""
        doc = pymupdf.open()
        for _ in range(3):
            doc.new_page(width=200, height=200)
        content = doc.tobytes()
        doc.close()

        images = render_pdf_pages(content, max_pages=2)
        assert len(images) == 2
        assert all(image.startswith(b"\x89PNG") for image in images)

    def test_image_reencoded_as_png(self):
        """Test images are re-encoded to a single PNG."""
        import io

        from PIL import Image

        buffer = io.BytesIO()
        Image.new("RGB", (16, 16), "white").save(buffer, format="JPEG")
        images = document_images(buffer.getvalue(), is_pdf=False)
        assert len(images) == 1
        assert images[0].startswith(b"\x89PNG")


class TestProviderRegistry:
    """Tests for tier candidate resolution."""

    def test_first_configured_wins(self, empty_settings, pool):
        """Test a configured fallback serves the tier when the hosted one is not."""
        hosted = OpenAITextProvider(settings=empty_settings, pool=pool)
        local = OllamaTextProvider(
            settings=empty_settings,
            client=OllamaClient("http://ollama.local"),
            pool=pool,
        )
        registry = ProviderRegistry([hosted, local])
        assert registry.resolve(Tier.AI_TEXT) is local
        assert registry.describe(Tier.AI_TEXT) == "openai-text / ollama-text"

    def test_missing_tier(self):
        """Test tiers without candidates resolve to None."""
        registry = ProviderRegistry([TemplateProvider(pool=ResiliencePool())])
        assert registry.has_tier(Tier.TEMPLATE)
        assert not registry.has_tier(Tier.VISION)
        assert registry.resolve(Tier.VISION) is None

    def test_circuit_config_per_provider(self, empty_settings):
        """Test a provider's circuit can be tuned on the shared pool."""
        pool = ResiliencePool(default_policy=NO_RETRY)
        pool.configure("openai-text", CircuitBreakerConfig(failure_threshold=1))
        client, _ = _fake_openai(error=TransportError("down"))
        provider = OpenAITextProvider(settings=empty_settings, client=client, model="gpt-4o-mini", pool=pool)
        with pytest.raises(TransportError):
            asyncio.run(provider.extract(_text_input()))
        assert pool.state("openai-text").value == "OPEN"

    def test_close_releases_clients(self, empty_settings, pool):
        """Test closing the registry closes adapter clients."""
        client = OllamaClient("http://ollama.local")
        assert not client.client.is_closed
        registry = ProviderRegistry(
            [OllamaTextProvider(settings=empty_settings, client=client, pool=pool)]
        )
        asyncio.run(registry.close())
        assert client._client is None
