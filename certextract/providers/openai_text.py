"""AI text extraction with OpenAI / Azure OpenAI (tier-1.5)."""

import logging
from typing import Optional

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
from .prompts import SYSTEM_PROMPT, build_text_prompt

logger = logging.getLogger(__name__)

# Empirical accuracy of text extraction on well-formed certificates
PROVIDER_CONFIDENCE = 0.85


class OpenAITextProvider(BaseExtractionProvider):
    """Extracts fields from the document's text layer with a chat model."""

    name = "openai-text"
    tier = Tier.AI_TEXT

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
            self._client, model, is_azure = get_openai_client(self.settings)
            self._model = self._model or model
            logger.info(f"{self.name} using {'Azure OpenAI' if is_azure else 'OpenAI'} ({self._model})")
        return self._client, self._model or self.settings.openai_model

    async def extract(self, provider_input: ProviderInput) -> ProviderResult:
        if not provider_input.text:
            return ProviderResult.failure("no text layer")

        client, model = self._ensure_client()
        messages = [
            {"role": "system", "content": SYSTEM_PROMPT},
            {
                "role": "user",
                "content": build_text_prompt(
                    provider_input.text, provider_input.certificate_type
                ),
            },
        ]

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
