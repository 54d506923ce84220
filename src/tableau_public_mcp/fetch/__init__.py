"""Network fetcher package.

Provides a factory function to create the configured fetcher.
"""

from ..config import Settings
from .base import Fetcher
from .http import HttpFetcher


def create_fetcher(settings: Settings) -> Fetcher:
    """Create the fetcher used for all outbound calls.

    Args:
        settings: Configuration snapshot (base URL, timeout, user agent)

    Returns:
        Configured Fetcher instance

    """
    return HttpFetcher(
        base_url=settings.base_url,
        timeout=settings.api_timeout,
        user_agent=settings.user_agent,
    )


__all__ = [
    "Fetcher",
    "HttpFetcher",
    "create_fetcher",
]
