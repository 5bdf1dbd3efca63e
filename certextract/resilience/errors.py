"""Exception hierarchy for extraction and provider calls."""

from typing import Optional


class ExtractionError(Exception):
    """Base exception for certextract."""


class ExtractionSettingsError(ExtractionError):
    """Raised when extraction settings are present but invalid."""


class ProviderError(ExtractionError):
    """Base exception for provider adapter failures."""

    def __init__(self, message: str, provider: Optional[str] = None):
        super().__init__(message)
        self.provider = provider


class TransportError(ProviderError):
    """Network or service-side failure talking to a provider."""

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message, provider)
        self.status_code = status_code


class RateLimitError(TransportError):
    """Raised when the provider rejects the call with HTTP 429."""

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        provider: Optional[str] = None,
        retry_after: Optional[int] = None,
    ):
        super().__init__(message, provider, status_code=429)
        self.retry_after = retry_after


class ProviderTimeoutError(ProviderError):
    """A provider call exceeded its time ceiling and was abandoned."""

    def __init__(self, seconds: float, provider: Optional[str] = None):
        super().__init__(f"timed out after {seconds:g}s", provider)
        self.seconds = seconds


class CircuitOpenError(ProviderError):
    """The named circuit is open; the call was not attempted."""

    def __init__(self, circuit_name: str, retry_in: float = 0.0):
        super().__init__(f"circuit '{circuit_name}' is open", circuit_name)
        self.circuit_name = circuit_name
        self.retry_in = retry_in


class UnconfiguredProviderError(ProviderError):
    """The provider is missing credentials or endpoint configuration."""


class MalformedResponseError(ProviderError):
    """The provider answered, but the payload could not be parsed."""
