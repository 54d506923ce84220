"""
Tests for the request coordinator.

Tests cache-aside behavior, single-flight deduplication, concurrency slots,
timeouts and failure propagation.
"""

import asyncio
import time

import pytest

from tableau_public_mcp.cache import CacheStore, RequestCoordinator
from tableau_public_mcp.errors import FetchTimeoutError, UpstreamError, UpstreamNotFound


class CountingCompute:
    """Async compute function that counts invocations and concurrency."""

    def __init__(self, value="value", delay=0.05, error=None):
        self.value = value
        self.delay = delay
        self.error = error
        self.calls = 0
        self.active = 0
        self.peak = 0

    async def __call__(self):
        self.calls += 1
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            await asyncio.sleep(self.delay)
            if self.error is not None:
                raise self.error
            return self.value
        finally:
            self.active -= 1


@pytest.fixture
def store(clock):
    """Create a store on a fake clock."""
    return CacheStore(max_entries=100, default_ttl=60.0, clock=clock)


@pytest.fixture
def coordinator(store):
    """Create a coordinator with no coalescing delay."""
    return RequestCoordinator(store, max_concurrency=3, batch_delay=0.0, timeout=1.0)


class TestCacheAside:
    """Test cache hit and miss behavior."""

    @pytest.mark.asyncio
    async def test_miss_computes_and_caches(self, coordinator, store):
        """Test that a miss invokes compute and stores the value."""
        compute = CountingCompute(value={"n": 1})

        result = await coordinator.fetch_or_compute("A", compute)

        assert result == {"n": 1}
        assert compute.calls == 1
        assert store.get("A") == {"n": 1}

    @pytest.mark.asyncio
    async def test_hit_makes_no_call(self, coordinator, store):
        """Test that a fresh cache entry is returned without computing."""
        store.put("A", "cached")
        compute = CountingCompute()

        result = await coordinator.fetch_or_compute("A", compute)

        assert result == "cached"
        assert compute.calls == 0

    @pytest.mark.asyncio
    async def test_expired_entry_triggers_recompute(self, coordinator, clock):
        """Test that a stale entry is recomputed."""
        compute = CountingCompute(value={"n": 1})
        await coordinator.fetch_or_compute("A", compute, ttl=0.1)

        clock.advance(0.15)
        await coordinator.fetch_or_compute("A", compute, ttl=0.1)

        assert compute.calls == 2

    @pytest.mark.asyncio
    async def test_ttl_passed_to_store(self, coordinator, clock):
        """Test that a custom TTL controls the cached lifetime."""
        compute = CountingCompute()
        await coordinator.fetch_or_compute("A", compute, ttl=5)

        clock.advance(4)
        await coordinator.fetch_or_compute("A", compute, ttl=5)
        assert compute.calls == 1

        clock.advance(2)
        await coordinator.fetch_or_compute("A", compute, ttl=5)
        assert compute.calls == 2

    @pytest.mark.asyncio
    async def test_invalid_ttl_rejected(self, coordinator):
        """Test that a non-positive TTL fails before any call is made."""
        compute = CountingCompute()

        with pytest.raises(ValueError):
            await coordinator.fetch_or_compute("A", compute, ttl=0)
        assert compute.calls == 0

    @pytest.mark.asyncio
    async def test_bypass_cache_refreshes(self, coordinator, store):
        """Test that bypass_cache skips the lookup and stores the new value."""
        store.put("A", "old")
        compute = CountingCompute(value="new")

        result = await coordinator.fetch_or_compute("A", compute, bypass_cache=True)

        assert result == "new"
        assert compute.calls == 1
        assert store.get("A") == "new"

    @pytest.mark.asyncio
    async def test_cached_none_is_a_hit(self, coordinator, store):
        """Test that a cached null payload is served from cache."""
        store.put("A", None)
        compute = CountingCompute()

        result = await coordinator.fetch_or_compute("A", compute)

        assert result is None
        assert compute.calls == 0


class TestSingleFlight:
    """Test deduplication of concurrent identical requests."""

    @pytest.mark.asyncio
    async def test_concurrent_calls_share_one_compute(self, coordinator):
        """Test 5 concurrent calls for X invoke compute exactly once."""
        compute = CountingCompute(value={"shared": True})

        results = await asyncio.gather(
            *(coordinator.fetch_or_compute("X", compute) for _ in range(5))
        )

        assert compute.calls == 1
        assert all(r == {"shared": True} for r in results)
        # Every caller sees the very same object
        assert all(r is results[0] for r in results)
        assert coordinator.stats()["coalesced"] == 4

    @pytest.mark.asyncio
    async def test_in_flight_cleared_after_resolution(self, coordinator):
        """Test that the in-flight entry is removed once resolved."""
        compute = CountingCompute()

        await asyncio.gather(*(coordinator.fetch_or_compute("X", compute) for _ in range(3)))

        assert coordinator.in_flight == 0
        assert coordinator.active_calls == 0

    @pytest.mark.asyncio
    async def test_distinct_keys_compute_separately(self, coordinator):
        """Test that different keys are not merged."""
        compute = CountingCompute()

        await asyncio.gather(
            coordinator.fetch_or_compute("A", compute),
            coordinator.fetch_or_compute("B", compute),
        )

        assert compute.calls == 2

    @pytest.mark.asyncio
    async def test_failure_shared_by_all_waiters(self, coordinator, store):
        """Test that every waiter receives the owner's failure."""
        error = UpstreamError("boom", status_code=503)
        compute = CountingCompute(error=error)

        results = await asyncio.gather(
            *(coordinator.fetch_or_compute("X", compute) for _ in range(4)),
            return_exceptions=True,
        )

        assert compute.calls == 1
        assert all(r is error for r in results)
        assert "X" not in store
        assert coordinator.stats()["failures"] == 1

    @pytest.mark.asyncio
    async def test_failures_are_not_cached(self, coordinator):
        """Test that a later call retries after a failure."""
        failing = CountingCompute(error=UpstreamNotFound("missing", status_code=404))
        with pytest.raises(UpstreamNotFound):
            await coordinator.fetch_or_compute("X", failing)

        working = CountingCompute(value="ok")
        result = await coordinator.fetch_or_compute("X", working)

        assert result == "ok"
        assert working.calls == 1

    @pytest.mark.asyncio
    async def test_timeout_reaches_all_waiters(self, coordinator, store):
        """Test that a timed-out fetch fails every waiter and caches nothing."""
        compute = CountingCompute(delay=5.0)

        results = await asyncio.gather(
            *(coordinator.fetch_or_compute("X", compute, timeout=0.05) for _ in range(3)),
            return_exceptions=True,
        )

        assert compute.calls == 1
        assert all(isinstance(r, FetchTimeoutError) for r in results)
        assert all(isinstance(r, TimeoutError) for r in results)
        assert "X" not in store
        assert coordinator.in_flight == 0

    @pytest.mark.asyncio
    async def test_explicit_zero_timeout_not_replaced_by_default(self, store):
        """Test that timeout=0 is honored rather than falling back to the default."""
        coordinator = RequestCoordinator(store, max_concurrency=1, batch_delay=0.0, timeout=5.0)
        compute = CountingCompute(delay=1.0)

        started = time.monotonic()
        with pytest.raises(FetchTimeoutError):
            await coordinator.fetch_or_compute("X", compute, timeout=0)

        assert time.monotonic() - started < 0.5

    @pytest.mark.asyncio
    async def test_fetcher_timeout_error_passed_through(self, coordinator):
        """Test that a FetchTimeoutError raised by compute is not rewrapped."""
        error = FetchTimeoutError("slow upstream", url="/x")
        compute = CountingCompute(delay=0, error=error)

        with pytest.raises(FetchTimeoutError) as exc_info:
            await coordinator.fetch_or_compute("X", compute)

        assert exc_info.value is error


class TestCancellation:
    """Test cancellation of owners and waiters."""

    @pytest.mark.asyncio
    async def test_cancelled_waiter_does_not_affect_others(self, coordinator):
        """Test that one waiter giving up leaves the rest intact."""
        compute = CountingCompute(value="done", delay=0.1)

        owner = asyncio.create_task(coordinator.fetch_or_compute("X", compute))
        await asyncio.sleep(0)
        quitter = asyncio.create_task(coordinator.fetch_or_compute("X", compute))
        stayer = asyncio.create_task(coordinator.fetch_or_compute("X", compute))
        await asyncio.sleep(0.01)

        quitter.cancel()

        assert await owner == "done"
        assert await stayer == "done"
        with pytest.raises(asyncio.CancelledError):
            await quitter
        assert compute.calls == 1

    @pytest.mark.asyncio
    async def test_cancelled_first_caller_leaves_others_served(self, coordinator, store):
        """Test that cancelling the caller who started the fetch does not fail the rest."""
        compute = CountingCompute(value="value", delay=0.2)

        first = asyncio.create_task(coordinator.fetch_or_compute("X", compute))
        await asyncio.sleep(0)
        second = asyncio.create_task(coordinator.fetch_or_compute("X", compute))
        await asyncio.sleep(0.01)

        first.cancel()

        with pytest.raises(asyncio.CancelledError):
            await first
        assert await second == "value"
        assert compute.calls == 1
        assert store.get("X") == "value"

    @pytest.mark.asyncio
    async def test_fetch_cancelled_when_every_caller_leaves(self, coordinator, store):
        """Test that an abandoned fetch is cancelled and not cached."""
        compute = CountingCompute(delay=5.0)

        callers = [
            asyncio.create_task(coordinator.fetch_or_compute("X", compute)) for _ in range(2)
        ]
        await asyncio.sleep(0.01)
        for caller in callers:
            caller.cancel()
        await asyncio.gather(*callers, return_exceptions=True)
        await asyncio.sleep(0.01)

        assert compute.active == 0
        assert coordinator.in_flight == 0
        assert "X" not in store

    @pytest.mark.asyncio
    async def test_new_caller_after_abandoned_fetch_starts_fresh(self, coordinator):
        """Test that a caller arriving after everyone left gets its own fetch."""
        slow = CountingCompute(delay=5.0)
        abandoned = asyncio.create_task(coordinator.fetch_or_compute("X", slow))
        await asyncio.sleep(0.01)
        abandoned.cancel()

        fresh = CountingCompute(value="fresh", delay=0)
        result = await coordinator.fetch_or_compute("X", fresh)

        assert result == "fresh"
        assert fresh.calls == 1

    @pytest.mark.asyncio
    async def test_close_cancels_pending_callers(self, coordinator):
        """Test that closing the coordinator releases everyone waiting."""
        compute = CountingCompute(delay=5.0)
        caller = asyncio.create_task(coordinator.fetch_or_compute("X", compute))
        await asyncio.sleep(0.01)

        coordinator.close()

        with pytest.raises(asyncio.CancelledError):
            await caller
        assert coordinator.in_flight == 0


class TestConcurrencyLimits:
    """Test outbound slot limits and the coalescing delay."""

    @pytest.mark.asyncio
    async def test_max_concurrency_respected(self, store):
        """Test that no more than max_concurrency calls run at once."""
        coordinator = RequestCoordinator(store, max_concurrency=2, batch_delay=0.0, timeout=1.0)
        compute = CountingCompute(delay=0.02)

        await asyncio.gather(
            *(coordinator.fetch_or_compute(f"key-{i}", compute) for i in range(8))
        )

        assert compute.calls == 8
        assert compute.peak <= 2
        assert coordinator.stats()["peak_concurrency"] <= 2

    @pytest.mark.asyncio
    async def test_batch_delay_applied(self, store):
        """Test that the owner waits out the coalescing window."""
        coordinator = RequestCoordinator(store, max_concurrency=2, batch_delay=0.05, timeout=1.0)
        compute = CountingCompute(delay=0)

        started = time.monotonic()
        await coordinator.fetch_or_compute("A", compute)

        assert time.monotonic() - started >= 0.045

    @pytest.mark.asyncio
    async def test_waiters_joining_during_delay_are_coalesced(self, store):
        """Test that callers arriving during the coalescing window share the call."""
        coordinator = RequestCoordinator(store, max_concurrency=2, batch_delay=0.05, timeout=1.0)
        compute = CountingCompute(delay=0)

        first = asyncio.create_task(coordinator.fetch_or_compute("A", compute))
        await asyncio.sleep(0.01)
        second = asyncio.create_task(coordinator.fetch_or_compute("A", compute))

        assert await first == await second
        assert compute.calls == 1

    def test_invalid_concurrency(self, store):
        """Test that at least one slot is required."""
        with pytest.raises(ValueError):
            RequestCoordinator(store, max_concurrency=0)


class TestUncached:
    """Test calls that skip the store but keep deduplication and slots."""

    @pytest.mark.asyncio
    async def test_store_neither_read_nor_written(self, coordinator, store):
        """Test that use_cache=False ignores and leaves the store untouched."""
        store.put("A", "stale copy")
        compute = CountingCompute(value="fresh", delay=0)

        result = await coordinator.fetch_or_compute("A", compute, use_cache=False)
        await coordinator.fetch_or_compute("B", compute, use_cache=False)

        assert result == "fresh"
        assert store.get("A") == "stale copy"
        assert "B" not in store
        assert compute.calls == 2

    @pytest.mark.asyncio
    async def test_concurrency_limit_still_applies(self, store):
        """Test that uncached calls never exceed max_concurrency."""
        coordinator = RequestCoordinator(store, max_concurrency=1, batch_delay=0.0, timeout=1.0)
        compute = CountingCompute(delay=0.02)

        await asyncio.gather(
            *(
                coordinator.fetch_or_compute(f"key-{i}", compute, use_cache=False)
                for i in range(5)
            )
        )

        assert compute.calls == 5
        assert compute.peak == 1

    @pytest.mark.asyncio
    async def test_identical_calls_still_coalesced(self, coordinator):
        """Test that concurrent uncached calls for one key share the fetch."""
        compute = CountingCompute(delay=0.05)

        await asyncio.gather(
            *(coordinator.fetch_or_compute("X", compute, use_cache=False) for _ in range(3))
        )

        assert compute.calls == 1


class TestLifecycle:
    """Test closing the coordinator."""

    @pytest.mark.asyncio
    async def test_close_clears_store_and_rejects_calls(self, coordinator, store):
        """Test that a closed coordinator drops its cache and refuses work."""
        store.put("A", 1)

        async with coordinator:
            pass

        assert len(store) == 0
        with pytest.raises(RuntimeError):
            await coordinator.fetch_or_compute("A", CountingCompute())

    @pytest.mark.asyncio
    async def test_stats_include_store_counters(self, coordinator):
        """Test that stats combine cache and call counters."""
        compute = CountingCompute()
        await coordinator.fetch_or_compute("A", compute)
        await coordinator.fetch_or_compute("A", compute)

        stats = coordinator.stats()

        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["fetches"] == 1
        assert stats["size"] == 1
