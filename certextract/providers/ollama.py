"""
Local model fallback via Ollama.

Used when no hosted AI provider is configured. Local models are free to call
but less accurate, so their reported confidence is lower.
"""

import asyncio
import json
import logging
from typing import Any, Optional

import httpx
from PIL import UnidentifiedImageError

from ..config.settings import Settings, get_settings
from ..resilience.pool import ResiliencePool
from ..resilience.retry import BackoffPolicy
from ..schemas.tiers import Tier
from .base import BaseExtractionProvider, ProviderInput, ProviderResult
from .http import BaseAPIClient
from .prompts import SYSTEM_PROMPT, build_text_prompt, build_vision_prompt
from .rendering import document_images, to_base64

logger = logging.getLogger(__name__)

TEXT_CONFIDENCE = 0.75
VISION_CONFIDENCE = 0.70


class OllamaClient(BaseAPIClient):
    """Minimal client for the Ollama chat API."""

    provider_name = "ollama"

    def __init__(
        self,
        base_url: str,
        timeout: float = 120.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(base_url=base_url, timeout=timeout, transport=transport)

    def _get_headers(self) -> dict[str, str]:
        return {"Content-Type": "application/json"}

    async def chat(self, model: str, messages: list[dict[str, Any]]) -> str:
        """Send a chat request and return the raw response body."""
        response = await self._request(
            "POST",
            f"{self.base_url}/api/chat",
            json={"model": model, "messages": messages, "stream": False, "format": "json"},
        )
        return response.text


def reply_content(body: str) -> Optional[str]:
    """Model output from an /api/chat reply, or None when the envelope is not as expected."""
    try:
        content = json.loads(body)["message"]["content"]
    except (ValueError, KeyError, TypeError):
        return None
    return content if isinstance(content, str) else None


class _OllamaProvider(BaseExtractionProvider):
    def __init__(
        self,
        settings: Optional[Settings] = None,
        client: Optional[OllamaClient] = None,
        pool: Optional[ResiliencePool] = None,
        timeout: Optional[float] = None,
        policy: Optional[BackoffPolicy] = None,
    ):
        super().__init__(pool=pool, timeout=timeout, policy=policy)
        self.settings = settings or get_settings()
        self._client = client

    @property
    def circuit_name(self) -> str:
        # Text and vision share one local server
        return "ollama"

    def _ensure_client(self) -> OllamaClient:
        if self._client is None:
            self._client = OllamaClient(
                self.settings.ollama_base_url,
                timeout=self.settings.provider_timeout_seconds,
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()

    def _result_from_reply(
        self, body: str, provider_confidence: float, certificate_type: str
    ) -> ProviderResult:
        content = reply_content(body)
        if content is None:
            logger.warning(f"{self.name}: malformed response: unexpected chat reply")
            return ProviderResult.failure(
                "malformed response: unexpected chat reply", raw_response=body
            )
        return self._result_from_json(content, provider_confidence, 0.0, certificate_type)


class OllamaTextProvider(_OllamaProvider):
    name = "ollama-text"
    tier = Tier.AI_TEXT

    def is_configured(self) -> bool:
        return self._client is not None or self.settings.is_ollama_configured()

    async def extract(self, provider_input: ProviderInput) -> ProviderResult:
        if not provider_input.text:
            return ProviderResult.failure("no text layer")
        client = self._ensure_client()
        messages = [
            {"role": "system", "content": SYSTEM_PROMPT},
            {
                "role": "user",
                "content": build_text_prompt(provider_input.text, provider_input.certificate_type),
            },
        ]
        body = await self._call(lambda: client.chat(self.settings.ollama_model, messages))
        return self._result_from_reply(body, TEXT_CONFIDENCE, provider_input.certificate_type)


class OllamaVisionProvider(_OllamaProvider):
    name = "ollama-vision"
    tier = Tier.VISION

    def is_configured(self) -> bool:
        if not self.settings.ollama_vision_model:
            return False
        return self._client is not None or self.settings.is_ollama_configured()

    async def extract(self, provider_input: ProviderInput) -> ProviderResult:
        is_pdf = bool(provider_input.document_format and provider_input.document_format.is_pdf)
        try:
            images = await asyncio.to_thread(
                document_images, provider_input.content, is_pdf, max_pages=3
            )
        except (UnidentifiedImageError, OSError, RuntimeError, ValueError) as e:
            return ProviderResult.failure(f"could not render document: {e}")
        if not images:
            return ProviderResult.failure("document has no pages to render")

        client = self._ensure_client()
        messages = [
            {"role": "system", "content": SYSTEM_PROMPT},
            {
                "role": "user",
                "content": build_vision_prompt(provider_input.certificate_type, len(images)),
                "images": [to_base64(image) for image in images],
            },
        ]
        body = await self._call(
            lambda: client.chat(self.settings.ollama_vision_model, messages)
        )
        return self._result_from_reply(body, VISION_CONFIDENCE, provider_input.certificate_type)
