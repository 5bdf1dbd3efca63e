"""
OpenAI / Azure OpenAI client construction and call wrapping.

Azure OpenAI is used when fully configured, otherwise OpenAI. SDK retries are
disabled: retry, timeout and circuit policy belong to the ResiliencePool.
"""

import logging
from typing import Any, Optional, Union

import openai
from openai import AsyncAzureOpenAI, AsyncOpenAI

from ..config.settings import Settings
from ..resilience.errors import RateLimitError, TransportError, UnconfiguredProviderError

logger = logging.getLogger(__name__)

OpenAIClient = Union[AsyncOpenAI, AsyncAzureOpenAI]

# USD per 1M tokens (input, output)
MODEL_PRICING: dict[str, tuple[float, float]] = {
    "gpt-4o": (2.50, 10.00),
    "gpt-4o-mini": (0.15, 0.60),
    "gpt-4.1": (2.00, 8.00),
    "gpt-4.1-mini": (0.40, 1.60),
}
DEFAULT_PRICING = MODEL_PRICING["gpt-4o"]


def get_openai_client(
    settings: Settings,
    vision: bool = False,
) -> tuple[OpenAIClient, str, bool]:
    """
    Get the appropriate client based on configuration.

    Returns:
        Tuple of (client, model_name, is_azure)

    Raises:
        UnconfiguredProviderError: If neither Azure OpenAI nor OpenAI is configured
    """
    if settings.is_azure_configured():
        client = AsyncAzureOpenAI(
            api_key=settings.azure_openai_api_key,
            azure_endpoint=settings.azure_openai_endpoint,
            api_version=settings.azure_openai_api_version,
            max_retries=0,
        )
        return (client, settings.azure_openai_deployment_name, True)

    if not settings.openai_api_key:
        raise UnconfiguredProviderError(
            "No OpenAI provider configured. Set OPENAI_API_KEY or "
            "AZURE_OPENAI_ENDPOINT + AZURE_OPENAI_API_KEY + AZURE_OPENAI_DEPLOYMENT_NAME",
            provider="openai",
        )

    client = AsyncOpenAI(api_key=settings.openai_api_key, max_retries=0)
    model = settings.openai_vision_model if vision else settings.openai_model
    return (client, model, False)


def completion_cost(model: str, usage: Optional[Any]) -> float:
    """Cost in USD from a completion's token usage."""
    if usage is None:
        return 0.0
    input_rate, output_rate = MODEL_PRICING.get(model, DEFAULT_PRICING)
    prompt_tokens = getattr(usage, "prompt_tokens", 0) or 0
    completion_tokens = getattr(usage, "completion_tokens", 0) or 0
    return round(
        (prompt_tokens * input_rate + completion_tokens * output_rate) / 1_000_000, 6
    )


async def create_chat_completion(client: OpenAIClient, provider: str, **kwargs) -> Any:
    """Call chat.completions.create, translating SDK errors to TransportError."""
    try:
        return await client.chat.completions.create(**kwargs)
    except openai.RateLimitError as e:
        raise RateLimitError(str(e), provider=provider) from e
    except openai.APIStatusError as e:
        raise TransportError(
            f"{provider} error {e.status_code}: {e.message}",
            provider=provider,
            status_code=e.status_code,
        ) from e
    except openai.APIConnectionError as e:
        raise TransportError(f"{provider} connection failed: {e}", provider=provider) from e
