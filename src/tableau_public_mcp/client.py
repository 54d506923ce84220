"""
Cached access to the Tableau Public JSON API.

``CachedApiClient.get`` is a drop-in replacement for a plain fetcher call:
it picks a TTL from the request path, builds a canonical cache key and lets
the ``RequestCoordinator`` decide whether an outbound call is needed.
"""

import re
from typing import Any, NamedTuple

from loguru import logger

from .cache import RequestCoordinator, make_cache_key
from .config import Settings
from .errors import GatewayError
from .fetch import Fetcher


class TtlRule(NamedTuple):
    """Cache lifetime for requests whose path matches a pattern."""

    name: str
    pattern: re.Pattern[str]
    ttl: float


def _rule(name: str, pattern: str, minutes: float) -> TtlRule:
    return TtlRule(name, re.compile(pattern), minutes * 60)


# Order matters - first match wins
DEFAULT_TTL_RULES: tuple[TtlRule, ...] = (
    _rule("followers", r"^/profile/api/followers/", 5),
    _rule("following", r"^/profile/api/following/", 5),
    _rule("favorites", r"^/profile/api/favorites/", 5),
    _rule("workbook-details", r"^/profile/api/single_workbook/", 10),
    _rule("profile", r"^/profile/api/[^/]+$", 5),
    _rule("workbooks", r"^/public/apis/workbooks", 2),
    _rule("search", r"^/api/search/", 1),
    _rule("votd", r"^/public/apis/bff/discover/.*viz-of-the-day", 30),
    _rule("featured", r"^/public/apis/featured-authors", 30),
)


class CachedApiClient:
    """Cache-aside JSON client for the upstream API."""

    def __init__(
        self,
        fetcher: Fetcher,
        coordinator: RequestCoordinator,
        settings: Settings,
        ttl_rules: tuple[TtlRule, ...] = DEFAULT_TTL_RULES,
    ):
        self.fetcher = fetcher
        self.coordinator = coordinator
        self.settings = settings
        self.ttl_rules = ttl_rules

    def match_rule(self, path: str) -> TtlRule | None:
        """Return the first TTL rule matching a path, if any."""
        for rule in self.ttl_rules:
            if rule.pattern.search(path):
                return rule
        return None

    async def get(
        self,
        path: str,
        params: dict[str, Any] | None = None,
        *,
        bypass_cache: bool = False,
        ttl: float | None = None,
    ) -> Any:
        """
        Make a cached GET request.

        Args:
            path: API path relative to the base URL
            params: Optional query parameters
            bypass_cache: Fetch fresh data (the result is still cached)
            ttl: Lifetime override for this response in seconds

        Returns:
            Decoded JSON payload, untouched

        Raises:
            GatewayError: Typed failure from the upstream call
        """
        timeout = self.settings.api_timeout

        async def compute() -> Any:
            return await self.fetcher.get_json(path, params, timeout=timeout)

        key = make_cache_key(path, params)
        if not self.settings.cache_enabled:
            logger.debug("GET {} (cache disabled)", key)
            return await self.coordinator.fetch_or_compute(
                key, compute, timeout=timeout, use_cache=False
            )

        rule = self.match_rule(path)
        if ttl is None and rule is not None:
            ttl = rule.ttl

        logger.debug(
            "GET {} (cache={}, ttl={}, bypass={})",
            key,
            rule.name if rule else "default",
            ttl if ttl is not None else self.coordinator.store.default_ttl,
            bypass_cache,
        )
        return await self.coordinator.fetch_or_compute(
            key, compute, ttl=ttl, timeout=timeout, bypass_cache=bypass_cache
        )

    def invalidate(self, pattern: str | re.Pattern[str]) -> int:
        """
        Invalidate cache entries whose key matches a pattern.

        Returns:
            Number of entries invalidated
        """
        count = self.coordinator.store.invalidate_pattern(pattern)
        logger.info("Invalidated {} cache entries", count)
        return count

    async def prefetch(self, path: str, params: dict[str, Any] | None = None) -> bool:
        """
        Warm the cache for a request.

        Returns:
            True if the response is now cached, False if the fetch failed
        """
        try:
            await self.get(path, params)
        except GatewayError as e:
            logger.debug("Prefetch failed for {}: {}", path, e)
            return False
        return True
