"""Pytest fixtures and configuration for tableau-public-mcp tests.

This module provides shared fixtures for testing the cache store, request
coordinator, fetcher, image optimizer, gateway and MCP server.
"""

import asyncio
import tempfile
from collections.abc import Generator
from io import BytesIO
from pathlib import Path
from typing import Any

import pytest
from PIL import Image

from tableau_public_mcp.config import Settings
from tableau_public_mcp.fetch.base import Fetcher

BASE_URL = "https://public.tableau.com"


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeFetcher(Fetcher):
    """In-memory fetcher that counts calls and can be slowed down or failed."""

    def __init__(
        self,
        json_responses: dict[str, Any] | None = None,
        byte_responses: dict[str, bytes] | None = None,
        delay: float = 0.0,
        error: Exception | None = None,
    ):
        self.json_responses = json_responses or {}
        self.byte_responses = byte_responses or {}
        self.delay = delay
        self.error = error
        self.json_calls: list[tuple[str, dict | None]] = []
        self.byte_calls: list[str] = []
        self.active = 0
        self.peak = 0
        self.closed = False

    async def get_json(self, path, params=None, timeout=None):
        self.json_calls.append((path, params))
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.error is not None:
                raise self.error
            return self.json_responses.get(path, {"path": path, "params": params})
        finally:
            self.active -= 1

    async def get_bytes(self, url, timeout=None):
        self.byte_calls.append(url)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.byte_responses[url]

    async def aclose(self) -> None:
        self.closed = True


# --- Temporary Directory Fixtures ---


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmp:
        yield Path(tmp)


# --- Settings Fixtures ---


@pytest.fixture
def settings() -> Settings:
    """Settings with a short timeout and no coalescing delay."""
    return Settings(
        base_url=BASE_URL,
        api_timeout=2.0,
        cache_max_entries=100,
        cache_default_ttl=60.0,
        max_concurrency=3,
        batch_delay_ms=0,
        log_level="DEBUG",
    )


@pytest.fixture
def clock() -> FakeClock:
    """Create a controllable clock."""
    return FakeClock()


# --- Fetcher Fixtures ---


@pytest.fixture
def fake_fetcher() -> FakeFetcher:
    """Create a fetcher that answers every JSON path with an echo payload."""
    return FakeFetcher()


# --- Image Fixtures ---


def make_image_bytes(
    size: tuple[int, int] = (100, 100),
    mode: str = "RGB",
    fmt: str = "JPEG",
    color: Any = "red",
) -> bytes:
    """Encode a solid-color image."""
    img = Image.new(mode, size, color=color)
    buffer = BytesIO()
    img.save(buffer, format=fmt)
    return buffer.getvalue()


@pytest.fixture
def sample_image_bytes() -> bytes:
    """Create sample image bytes for testing (100x100 red JPEG)."""
    return make_image_bytes()


@pytest.fixture
def large_image_bytes() -> bytes:
    """Create a 1600x1200 (4:3) PNG with some detail."""
    img = Image.new("RGB", (1600, 1200), color="white")
    for x in range(0, 1600, 40):
        for y in range(0, 1200, 40):
            img.paste((x % 255, y % 255, (x + y) % 255), (x, y, x + 20, y + 20))
    buffer = BytesIO()
    img.save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def transparent_png_bytes() -> bytes:
    """Create a 50x50 semi-transparent PNG."""
    return make_image_bytes((50, 50), mode="RGBA", fmt="PNG", color=(255, 0, 0, 128))
