"""Per-tier adapter registry."""

import logging
from typing import Iterable, Optional

from ..config.settings import Settings, get_settings
from ..resilience.pool import ResiliencePool, get_resilience_pool
from ..schemas.tiers import Tier
from .azure_di import AzureDocumentIntelligenceProvider
from .base import BaseExtractionProvider
from .ollama import OllamaTextProvider, OllamaVisionProvider
from .openai_text import OpenAITextProvider
from .openai_vision import OpenAIVisionProvider
from .qr_metadata import QRMetadataProvider
from .template_patterns import CustomPatternProvider, TemplateProvider

logger = logging.getLogger(__name__)


class ProviderRegistry:
    """
    Ordered candidate adapters per tier.

    The first configured candidate serves the tier, so a hosted provider can
    be listed ahead of a local fallback.
    """

    def __init__(self, providers: Optional[Iterable[BaseExtractionProvider]] = None):
        self._providers: dict[Tier, list[BaseExtractionProvider]] = {}
        for provider in providers or []:
            self.register(provider)

    def register(self, provider: BaseExtractionProvider) -> None:
        self._providers.setdefault(provider.tier, []).append(provider)

    def candidates(self, tier: Tier) -> list[BaseExtractionProvider]:
        return list(self._providers.get(tier, []))

    def has_tier(self, tier: Tier) -> bool:
        return bool(self._providers.get(tier))

    def resolve(self, tier: Tier) -> Optional[BaseExtractionProvider]:
        """First configured adapter for the tier, or None."""
        for provider in self._providers.get(tier, []):
            if provider.is_configured():
                return provider
        return None

    def describe(self, tier: Tier) -> str:
        names = [p.name for p in self._providers.get(tier, [])]
        return " / ".join(names) if names else tier.value

    async def close(self) -> None:
        """Close every registered adapter."""
        for providers in self._providers.values():
            for provider in providers:
                await provider.close()


def build_default_registry(
    settings: Optional[Settings] = None,
    pool: Optional[ResiliencePool] = None,
) -> ProviderRegistry:
    """Registry with every built-in adapter, hosted providers before local ones."""
    settings = settings or get_settings()
    pool = pool or get_resilience_pool()
    return ProviderRegistry([
        QRMetadataProvider(pool=pool),
        CustomPatternProvider(pool=pool),
        TemplateProvider(pool=pool),
        OpenAITextProvider(settings=settings, pool=pool),
        OllamaTextProvider(settings=settings, pool=pool),
        AzureDocumentIntelligenceProvider(settings=settings, pool=pool),
        OpenAIVisionProvider(settings=settings, pool=pool),
        OllamaVisionProvider(settings=settings, pool=pool),
    ])
