"""
Cache-aside request coordination.

``RequestCoordinator.fetch_or_compute`` serves fresh values from the
``CacheStore`` and otherwise runs exactly one outbound call per key, no matter
how many callers ask for it concurrently:

- The first caller for a key starts a shared fetch task and registers it as
  the key's in-flight entry.
- Every caller, the first one included, awaits that task through
  ``asyncio.shield`` and receives its outcome, value or exception, verbatim.
  A caller that is cancelled only detaches itself; the shared fetch is
  cancelled once nobody is left waiting for it.
- The fetch waits out a short coalescing window, then takes one of
  ``max_concurrency`` outbound slots before calling out.
- Successful values are cached; failures never are.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from loguru import logger

from ..errors import FetchTimeoutError
from .store import CacheStore

T = TypeVar("T")

_MISSING = object()


@dataclass
class InFlightRequest:
    """An outbound call in progress and the number of callers awaiting it."""

    key: str
    started_at: float
    task: "asyncio.Task[Any] | None" = None
    callers: int = 0

    def cancel(self) -> None:
        if self.task is not None and not self.task.done():
            self.task.cancel()


class RequestCoordinator:
    """Deduplicates, throttles and caches outbound calls keyed by request signature."""

    def __init__(
        self,
        store: CacheStore,
        max_concurrency: int = 5,
        batch_delay: float = 0.0,
        timeout: float = 30.0,
    ):
        """
        Initialize the coordinator.

        Args:
            store: Cache store owned by this coordinator
            max_concurrency: Maximum number of outbound calls running at once
            batch_delay: Coalescing window in seconds before each outbound call
            timeout: Default deadline in seconds for each outbound call
        """
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")

        self.store = store
        self.max_concurrency = max_concurrency
        self.batch_delay = batch_delay
        self.timeout = timeout
        self._slots = asyncio.Semaphore(max_concurrency)
        self._in_flight: dict[str, InFlightRequest] = {}
        self._active_calls = 0
        self._peak_concurrency = 0
        self._fetches = 0
        self._coalesced = 0
        self._failures = 0
        self._closed = False

    @property
    def in_flight(self) -> int:
        """Number of keys with an outbound call in progress."""
        return len(self._in_flight)

    @property
    def active_calls(self) -> int:
        """Number of outbound calls currently holding a slot."""
        return self._active_calls

    async def fetch_or_compute(
        self,
        key: str,
        compute: Callable[[], Awaitable[T]],
        *,
        ttl: float | None = None,
        timeout: float | None = None,
        bypass_cache: bool = False,
        use_cache: bool = True,
    ) -> T:
        """
        Return the cached value for a key, or compute it once.

        Args:
            key: Canonical request signature
            compute: Zero-argument coroutine function performing the outbound call
            ttl: Lifetime of the cached result (defaults to the store's default)
            timeout: Deadline for the outbound call (defaults to the coordinator's)
            bypass_cache: Skip the cache lookup but still join in-flight calls
                and store the fresh result
            use_cache: When False, neither read nor write the store; concurrent
                calls are still deduplicated and throttled

        Returns:
            The cached or freshly computed value

        Raises:
            FetchTimeoutError: If the outbound call exceeds its deadline
            GatewayError: Whatever typed failure the outbound call raised
        """
        if self._closed:
            raise RuntimeError("RequestCoordinator is closed")
        if ttl is not None and ttl <= 0:
            raise ValueError("TTL must be greater than 0")

        # Cache check, in-flight check and registration must not be separated
        # by an await, or two callers could both start a fetch.
        if use_cache and not bypass_cache:
            cached = self.store.get(key, _MISSING)
            if cached is not _MISSING:
                logger.debug("Cache hit: {}", key)
                return cached

        request = self._in_flight.get(key)
        if request is not None:
            self._coalesced += 1
            logger.debug("Waiting for in-flight request: {}", key)
        else:
            request = InFlightRequest(key=key, started_at=time.monotonic())
            request.task = asyncio.create_task(
                self._fetch(request, compute, ttl, timeout, use_cache)
            )
            self._in_flight[key] = request
            logger.debug("Cache miss, fetching: {}", key)

        return await self._join(request)

    async def _join(self, request: InFlightRequest) -> Any:
        request.callers += 1
        try:
            return await asyncio.shield(request.task)
        finally:
            request.callers -= 1
            if request.callers == 0 and not request.task.done():
                # Later callers for the key must start a new fetch, not join this one
                logger.debug("All callers gone, cancelling fetch: {}", request.key)
                if self._in_flight.get(request.key) is request:
                    del self._in_flight[request.key]
                request.task.cancel()

    async def _fetch(
        self,
        request: InFlightRequest,
        compute: Callable[[], Awaitable[T]],
        ttl: float | None,
        timeout: float | None,
        use_cache: bool,
    ) -> T:
        deadline = self.timeout if timeout is None else timeout
        try:
            if self.batch_delay > 0:
                await asyncio.sleep(self.batch_delay)

            async with self._slots:
                self._active_calls += 1
                self._peak_concurrency = max(self._peak_concurrency, self._active_calls)
                self._fetches += 1
                try:
                    value = await asyncio.wait_for(compute(), timeout=deadline)
                except asyncio.TimeoutError as e:
                    if isinstance(e, FetchTimeoutError):
                        raise
                    raise FetchTimeoutError(
                        f"Request for {request.key} timed out after {deadline}s"
                    ) from e
                finally:
                    self._active_calls -= 1
        except asyncio.CancelledError:
            logger.debug("Fetch cancelled: {}", request.key)
            raise
        except Exception as e:
            self._failures += 1
            logger.debug("Request failed for {}: {}", request.key, e)
            raise
        finally:
            if self._in_flight.get(request.key) is request:
                del self._in_flight[request.key]

        if use_cache:
            self.store.put(request.key, value, ttl)
        elapsed = time.monotonic() - request.started_at
        logger.debug(
            "Fetched {} in {:.3f}s ({} callers)", request.key, elapsed, request.callers
        )
        return value

    def stats(self) -> dict[str, Any]:
        """Return cache statistics plus outbound call counters."""
        return {
            **self.store.stats().model_dump(),
            "fetches": self._fetches,
            "coalesced": self._coalesced,
            "failures": self._failures,
            "in_flight": self.in_flight,
            "active_calls": self._active_calls,
            "peak_concurrency": self._peak_concurrency,
        }

    def close(self) -> None:
        """Cancel outstanding fetches and drop all cached values."""
        self._closed = True
        for request in list(self._in_flight.values()):
            request.cancel()
        self._in_flight.clear()
        self.store.clear()

    async def __aenter__(self) -> "RequestCoordinator":
        return self

    async def __aexit__(self, *exc_info) -> None:
        self.close()
