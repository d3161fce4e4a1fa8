"""
Shared HTTP client for the REST collaborators.

Enforces the defaults every TradingView endpoint expects: a 15 second
timeout, the ``origin`` header, and 4xx responses handed back to the caller
instead of raised (only 5xx and transport failures raise).
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from ..errors import HTTPRequestError
from ..types import ORIGIN


logger = logging.getLogger("tvclient.rest")


@dataclass
class HTTPClientConfig:
    """HTTP client configuration."""
    timeout: float = 15.0
    origin: str = ORIGIN
    max_redirects: int = 5
    max_connections: int = 20


class HTTPClient:
    """
    Lazily created ``httpx.AsyncClient`` with TradingView defaults.

    Usage:
        async with HTTPClient() as http:
            response = await http.get("https://scanner.tradingview.com/...")
    """

    def __init__(
        self,
        config: Optional[HTTPClientConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        """
        Args:
            config: Client configuration (uses defaults if None)
            transport: Custom httpx transport (``httpx.MockTransport`` in tests)
        """
        self.config = config or HTTPClientConfig()
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._client_lock = asyncio.Lock()

    async def _get_or_create_client(self) -> httpx.AsyncClient:
        async with self._client_lock:
            if self._client is None or self._client.is_closed:
                self._client = httpx.AsyncClient(
                    timeout=httpx.Timeout(self.config.timeout),
                    limits=httpx.Limits(max_connections=self.config.max_connections),
                    headers={"origin": self.config.origin},
                    follow_redirects=True,
                    max_redirects=self.config.max_redirects,
                    transport=self._transport,
                )
            return self._client

    async def request(
        self,
        method: str,
        url: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        follow_redirects: Optional[bool] = None,
        **kwargs: Any
    ) -> httpx.Response:
        """
        Issue a request.

        Raises:
            HTTPRequestError: On transport failure or a 5xx status
        """
        client = await self._get_or_create_client()
        options: Dict[str, Any] = dict(kwargs)
        if follow_redirects is not None:
            options["follow_redirects"] = follow_redirects

        try:
            response = await client.request(method, url, params=params, headers=headers, **options)
        except httpx.HTTPError as e:
            logger.warning(f"{method} {url} failed: {e}")
            raise HTTPRequestError(f"{method} {url} failed: {e}") from e

        if response.status_code >= 500:
            raise HTTPRequestError(
                f"{method} {url} returned {response.status_code}",
                status_code=response.status_code,
            )

        logger.debug(f"{method} {url} -> {response.status_code}")
        return response

    async def get(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("GET", url, **kwargs)

    async def post(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("POST", url, **kwargs)

    async def delete(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("DELETE", url, **kwargs)

    async def close(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    async def __aenter__(self) -> "HTTPClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()


# Global client shared by the REST helpers - replaceable for tests
_http_client: Optional[HTTPClient] = None


def get_http_client() -> HTTPClient:
    """Get the shared HTTP client, creating it on first use."""
    global _http_client
    if _http_client is None:
        _http_client = HTTPClient()
    return _http_client


def set_http_client(client: Optional[HTTPClient]) -> None:
    """Replace the shared HTTP client (``None`` resets to a fresh default)."""
    global _http_client
    _http_client = client
