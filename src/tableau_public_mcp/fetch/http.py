"""httpx-based fetcher for the Tableau Public API.

Every call is bounded by a deadline that covers the whole exchange, not only
the individual connect/read phases httpx times on its own.
"""

import asyncio
from typing import Any

import httpx
from loguru import logger

from ..errors import FetchError, FetchTimeoutError, UpstreamError, UpstreamNotFound
from .base import Fetcher


async def _log_request(request: httpx.Request) -> None:
    logger.debug("[API Request] {} {}", request.method, request.url)


async def _log_response(response: httpx.Response) -> None:
    if response.is_success:
        logger.debug("[API Response] {} {}", response.status_code, response.request.url)
    else:
        logger.warning(
            "[API Error] {} {}: {}",
            response.status_code,
            response.request.url,
            response.reason_phrase,
        )


class HttpFetcher(Fetcher):
    """Fetcher backed by a shared ``httpx.AsyncClient``."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        user_agent: str = "tableau-public-mcp/0.1.0",
        client: httpx.AsyncClient | None = None,
    ):
        """
        Initialize the fetcher.

        Args:
            base_url: Base URL for relative API paths
            timeout: Default deadline for every call in seconds
            user_agent: User-Agent header value
            client: Optional preconfigured client (the fetcher will not own it)
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            follow_redirects=True,
            headers={"User-Agent": user_agent, "Accept": "application/json"},
            event_hooks={"request": [_log_request], "response": [_log_response]},
        )
        logger.debug("HttpFetcher initialized: base_url={}, timeout={}s", self.base_url, timeout)

    async def get_json(
        self,
        path: str,
        params: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> Any:
        response = await self._get(path, params=params, timeout=timeout)
        try:
            return response.json()
        except ValueError as e:
            raise UpstreamError(
                f"Invalid JSON from {path}: {e}", url=str(response.request.url)
            ) from e

    async def get_bytes(self, url: str, timeout: float | None = None) -> bytes:
        response = await self._get(url, timeout=timeout, headers={"Accept": "image/*,*/*"})
        return response.content

    async def _get(
        self,
        url: str,
        params: dict[str, Any] | None = None,
        timeout: float | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        deadline = self.timeout if timeout is None else timeout
        try:
            response = await asyncio.wait_for(
                self.client.get(url, params=params, headers=headers, timeout=deadline),
                timeout=deadline,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            raise FetchTimeoutError(f"Request to {url} timed out after {deadline}s", url=url) from e
        except httpx.RequestError as e:
            raise FetchError(f"Request to {url} failed: {e}", url=url) from e

        if response.status_code == 404:
            raise UpstreamNotFound(
                f"Not found: {url}", url=str(response.request.url), status_code=404
            )
        if response.is_error:
            raise UpstreamError(
                f"HTTP {response.status_code} {response.reason_phrase} from {url}",
                url=str(response.request.url),
                status_code=response.status_code,
            )
        return response

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()
