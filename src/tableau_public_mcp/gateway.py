"""
Resource gateway.

``ResourceGateway`` is the single object the resource-handler layer talks
to. It owns the fetcher, the response cache with its coordinator, and the
image optimizer. Create one per process and pass it by reference; close it
on shutdown.

Example:
    async with ResourceGateway(load_settings()) as gateway:
        profile = await gateway.get("/profile/api/john")
        image = await gateway.process_image(url, ImageOptions(max_width=400))
"""

import re
from typing import Any

from loguru import logger

from .cache import CacheStore, RequestCoordinator
from .client import CachedApiClient
from .config import Settings
from .fetch import Fetcher, create_fetcher
from .images import ImageOptimizer, ImageOptions, ImageResult, SavedImage


class ResourceGateway:
    """Cache-aside JSON access and image optimization over one upstream API."""

    def __init__(self, settings: Settings, fetcher: Fetcher | None = None):
        """
        Initialize the gateway and all components it owns.

        Args:
            settings: Configuration snapshot shared with every component
            fetcher: Optional fetcher (defaults to an HttpFetcher for settings.base_url)
        """
        self.settings = settings
        self.fetcher = fetcher or create_fetcher(settings)
        self.store = CacheStore(
            max_entries=settings.cache_max_entries,
            default_ttl=settings.cache_default_ttl,
        )
        self.coordinator = RequestCoordinator(
            self.store,
            max_concurrency=settings.max_concurrency,
            batch_delay=settings.batch_delay,
            timeout=settings.api_timeout,
        )
        self.client = CachedApiClient(self.fetcher, self.coordinator, settings)
        self.optimizer = ImageOptimizer(self.fetcher, settings)
        self._closed = False
        logger.info(
            "Gateway ready: base_url={}, cache={} (max {} entries), concurrency={}",
            settings.base_url,
            "on" if settings.cache_enabled else "off",
            settings.cache_max_entries,
            settings.max_concurrency,
        )

    async def get(
        self,
        path: str,
        params: dict[str, Any] | None = None,
        *,
        bypass_cache: bool = False,
        ttl: float | None = None,
    ) -> Any:
        """Fetch a JSON resource through the cache. See ``CachedApiClient.get``."""
        return await self.client.get(path, params, bypass_cache=bypass_cache, ttl=ttl)

    async def process_image(self, url: str, options: ImageOptions | None = None) -> ImageResult:
        """Fetch and optimize an image. See ``ImageOptimizer.process``."""
        return await self.optimizer.process(url, options)

    async def save_image(
        self, url: str, output_path: str, options: ImageOptions | None = None
    ) -> SavedImage:
        """Fetch, optimize and save an image. See ``ImageOptimizer.process_and_save``."""
        return await self.optimizer.process_and_save(url, output_path, options)

    def image_fits(self, result: ImageResult) -> bool:
        """Check an optimized image against the configured token ceiling."""
        return result.estimated_tokens <= self.settings.image_token_limit

    def invalidate(self, pattern: str | re.Pattern[str]) -> int:
        """Invalidate cached responses whose key matches a regex."""
        return self.client.invalidate(pattern)

    def stats(self) -> dict[str, Any]:
        """Return cache and outbound call statistics."""
        return self.coordinator.stats()

    async def aclose(self) -> None:
        """Cancel pending requests, drop cached data and close the fetcher."""
        if self._closed:
            return
        self._closed = True
        self.coordinator.close()
        await self.fetcher.aclose()
        logger.debug("Gateway closed")

    async def __aenter__(self) -> "ResourceGateway":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()
