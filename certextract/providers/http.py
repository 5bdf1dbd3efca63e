"""Base HTTP client for REST providers."""

import logging
from abc import ABC, abstractmethod
from typing import Optional

import httpx

from ..resilience.errors import RateLimitError, TransportError

logger = logging.getLogger(__name__)


class BaseAPIClient(ABC):
    """Base class for httpx-backed provider clients with common error handling."""

    provider_name: str = "api"

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: float = 120.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/") if base_url else base_url
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def client(self) -> httpx.AsyncClient:
        """Lazy initialization of HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                headers=self._get_headers(),
                transport=self._transport,
            )
        return self._client

    @abstractmethod
    def _get_headers(self) -> dict[str, str]:
        """Return headers for API requests."""
        pass

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "BaseAPIClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        """Send a request, mapping transport errors and error statuses to TransportError."""
        try:
            response = await self.client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise TransportError(
                f"{self.provider_name} request failed: {e}", self.provider_name
            ) from e
        self._handle_response_error(response)
        return response

    def _handle_response_error(self, response: httpx.Response) -> None:
        """Handle error responses from API."""
        if response.status_code == 429:
            retry_after = response.headers.get("Retry-After")
            raise RateLimitError(
                f"Rate limited by {self.provider_name}",
                provider=self.provider_name,
                retry_after=int(retry_after) if retry_after and retry_after.isdigit() else None,
            )
        elif response.status_code >= 400:
            try:
                error_detail = response.json()
            except ValueError:
                error_detail = response.text
            raise TransportError(
                f"{self.provider_name} error {response.status_code}: {error_detail}",
                provider=self.provider_name,
                status_code=response.status_code,
            )
