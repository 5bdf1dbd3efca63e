"""AI vision extraction with OpenAI / Azure OpenAI (tier-3)."""

import asyncio
import logging
from typing import Optional

from PIL import UnidentifiedImageError

from ..config.settings import Settings, get_settings
from ..resilience.pool import ResiliencePool
from ..resilience.retry import BackoffPolicy
from ..schemas.tiers import Tier
from .base import BaseExtractionProvider, ProviderInput, ProviderResult
from .openai_client import (
    OpenAIClient,
    completion_cost,
    create_chat_completion,
    get_openai_client,
)
from .prompts import SYSTEM_PROMPT, build_vision_prompt
from .rendering import document_images, to_base64

logger = logging.getLogger(__name__)

PROVIDER_CONFIDENCE = 0.88
MAX_PAGES = 5


def build_vision_messages(images: list[bytes], prompt: str) -> list[dict]:
    content = [
        {
            "type": "image_url",
            "image_url": {"url": f"data:image/png;base64,{to_base64(image)}", "detail": "high"},
        }
        for image in images
    ]
    content.append({"type": "text", "text": prompt})
    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": content},
    ]


class OpenAIVisionProvider(BaseExtractionProvider):
    """Reads certificate images (or rendered PDF pages) with a vision model."""

    name = "openai-vision"
    tier = Tier.VISION

    def __init__(
        self,
        settings: Optional[Settings] = None,
        client: Optional[OpenAIClient] = None,
        model: Optional[str] = None,
        pool: Optional[ResiliencePool] = None,
        timeout: Optional[float] = None,
        policy: Optional[BackoffPolicy] = None,
    ):
        super().__init__(pool=pool, timeout=timeout, policy=policy)
        self.settings = settings or get_settings()
        self._client = client
        self._model = model

    def is_configured(self) -> bool:
        return self._client is not None or self.settings.is_openai_configured()

    def _ensure_client(self) -> tuple[OpenAIClient, str]:
        if self._client is None:
            self._client, model, _ = get_openai_client(self.settings, vision=True)
            self._model = self._model or model
        return self._client, self._model or self.settings.openai_vision_model

    async def extract(self, provider_input: ProviderInput) -> ProviderResult:
        is_pdf = bool(provider_input.document_format and provider_input.document_format.is_pdf)
        try:
            images = await asyncio.to_thread(
                document_images, provider_input.content, is_pdf, max_pages=MAX_PAGES
            )
        except (UnidentifiedImageError, OSError, RuntimeError, ValueError) as e:
            return ProviderResult.failure(f"could not render document: {e}")
        if not images:
            return ProviderResult.failure("document has no pages to render")

        client, model = self._ensure_client()
        messages = build_vision_messages(
            images, build_vision_prompt(provider_input.certificate_type, len(images))
        )

        response = await self._call(
            lambda: create_chat_completion(
                client,
                self.name,
                model=model,
                messages=messages,
                temperature=self.settings.llm_temperature,
                max_tokens=self.settings.llm_max_tokens,
                response_format={"type": "json_object"},
            )
        )

        cost = completion_cost(model, getattr(response, "usage", None))
        content = response.choices[0].message.content if response.choices else None
        return self._result_from_json(
            content, PROVIDER_CONFIDENCE, cost, provider_input.certificate_type
        )
