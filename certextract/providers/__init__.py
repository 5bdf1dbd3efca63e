"""Provider adapters for each extraction tier."""

from .azure_di import AzureDocumentIntelligenceProvider
from .base import BaseExtractionProvider, ProviderInput, ProviderResult
from .ollama import OllamaClient, OllamaTextProvider, OllamaVisionProvider
from .openai_text import OpenAITextProvider
from .openai_vision import OpenAIVisionProvider
from .qr_metadata import QRMetadataProvider, parse_qr_payload
from .registry import ProviderRegistry, build_default_registry
from .template_patterns import (
    CustomPatternProvider,
    TemplateProvider,
    extract_with_template,
    normalize_date,
)

__all__ = [
    "AzureDocumentIntelligenceProvider",
    "BaseExtractionProvider",
    "CustomPatternProvider",
    "OllamaClient",
    "OllamaTextProvider",
    "OllamaVisionProvider",
    "OpenAITextProvider",
    "OpenAIVisionProvider",
    "ProviderInput",
    "ProviderRegistry",
    "ProviderResult",
    "QRMetadataProvider",
    "TemplateProvider",
    "build_default_registry",
    "extract_with_template",
    "normalize_date",
    "parse_qr_payload",
]
