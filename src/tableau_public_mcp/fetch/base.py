"""Abstract base class for network fetchers.

Enables swapping the HTTP client in tests or for other transports.
"""

from abc import ABC, abstractmethod
from typing import Any


class Fetcher(ABC):
    """Abstract interface for a single outbound retrieval with a deadline."""

    @abstractmethod
    async def get_json(
        self,
        path: str,
        params: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> Any:
        """Fetch a JSON document from the API.

        Args:
            path: API path relative to the base URL (e.g. "/profile/api/john")
            params: Optional query parameters
            timeout: Deadline in seconds (defaults to the fetcher's own)

        Returns:
            Decoded JSON value

        Raises:
            FetchError: On transport failure, non-success status or timeout

        """
        pass

    @abstractmethod
    async def get_bytes(self, url: str, timeout: float | None = None) -> bytes:
        """Fetch raw bytes from an absolute or base-relative URL.

        Args:
            url: Resource URL
            timeout: Deadline in seconds (defaults to the fetcher's own)

        Returns:
            Response body

        Raises:
            FetchError: On transport failure, non-success status or timeout

        """
        pass

    async def aclose(self) -> None:
        """Release network resources held by the fetcher."""
        return None
