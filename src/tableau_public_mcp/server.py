"""
FastMCP server exposing the resource gateway.

Provides generic tools for cached API access and token-bounded images.
Per-resource tools build on the same gateway instance.
"""

import json
import re
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any, Literal

from fastmcp import FastMCP
from loguru import logger
from mcp.types import ImageContent, TextContent

from .errors import GatewayError, describe_error
from .gateway import ResourceGateway
from .images import ImageOptions


def error_content(error: BaseException, context: str) -> list[TextContent]:
    """Format a failure as tool output."""
    message, details = describe_error(error, context)
    text = f"Error: {message}\n\nDetails: {json.dumps(details, indent=2, default=str)}"
    return [TextContent(type="text", text=text)]


def json_content(data: Any) -> list[TextContent]:
    """Format a payload as tool output."""
    text = data if isinstance(data, str) else json.dumps(data, indent=2, default=str)
    return [TextContent(type="text", text=text)]


def create_server(gateway: ResourceGateway) -> FastMCP:
    """
    Create the MCP server bound to a gateway.

    The gateway is closed when the server shuts down.

    Args:
        gateway: Gateway instance shared by all tools

    Returns:
        Configured FastMCP server
    """

    @asynccontextmanager
    async def lifespan(server: FastMCP) -> AsyncIterator[None]:
        try:
            yield
        finally:
            await gateway.aclose()

    mcp = FastMCP(
        name="tableau-public-mcp",
        instructions=(
            "Read-only access to the Tableau Public API. JSON responses are cached; "
            "visualization images are resized and compressed to fit response limits."
        ),
        lifespan=lifespan,
    )

    @mcp.tool()
    async def api_get(
        path: str,
        params: dict[str, Any] | None = None,
        bypass_cache: bool = False,
    ) -> list:
        """
        Fetch a JSON resource from the Tableau Public API.

        Responses are cached per path and query parameters.

        Args:
            path: API path, e.g. "/profile/api/username"
            params: Optional query parameters
            bypass_cache: Fetch fresh data instead of a cached copy

        Returns:
            The JSON response, pretty-printed
        """
        logger.info("api_get: path='{}', params={}, bypass={}", path, params, bypass_cache)
        if not path.startswith("/"):
            return error_content(ValueError("path must start with '/'"), f"fetching '{path}'")
        try:
            data = await gateway.get(path, params, bypass_cache=bypass_cache)
        except GatewayError as e:
            logger.warning("api_get failed for {}: {}", path, e)
            return error_content(e, f"fetching '{path}'")
        return json_content(data)

    @mcp.tool()
    async def get_image(
        url: str,
        max_width: int = gateway.settings.image_max_width,
        max_height: int = gateway.settings.image_max_height,
        quality: int = gateway.settings.image_quality,
        format: Literal["jpeg", "webp", "png"] = gateway.settings.image_format,
    ) -> list:
        """
        Fetch and optimize an image so it fits within MCP response limits.

        Resizes the image into the bounding box (never upscaling) and
        re-encodes it. If the result is still over the token limit, call
        again with a lower quality or smaller dimensions.

        Args:
            url: Image URL (absolute, or a path relative to Tableau Public)
            max_width: Maximum width in pixels
            max_height: Maximum height in pixels
            quality: JPEG/WebP quality 1-100 (ignored for PNG)
            format: Output format: jpeg, webp or png

        Returns:
            The image followed by size and token metadata
        """
        logger.info(
            "get_image: {} ({}x{}, quality={}, format={})",
            url[:80],
            max_width,
            max_height,
            quality,
            format,
        )
        context = f"fetching and optimizing image '{url}'"
        try:
            options = ImageOptions(
                max_width=max_width, max_height=max_height, quality=quality, format=format
            )
            result = await gateway.process_image(url, options)
        except ValueError as e:
            # pydantic ValidationError is a ValueError
            return error_content(e, context)
        except GatewayError as e:
            logger.warning("get_image failed for {}: {}", url[:80], e)
            return error_content(e, context)

        limit = gateway.settings.image_token_limit
        within_limit = gateway.image_fits(result)
        if not within_limit:
            logger.warning(
                "Image exceeds token limit ({} > {}): {}", result.estimated_tokens, limit, url[:80]
            )

        metadata = {
            "originalUrl": url,
            "optimization": {
                "originalSize": result.original_size,
                "processedSize": result.processed_size,
                "compressionRatio": round(result.compression_ratio, 1),
                "width": result.width,
                "height": result.height,
                "format": result.mime_type,
                "quality": quality,
            },
            "tokenInfo": {
                "estimatedTokens": result.estimated_tokens,
                "mcpLimit": limit,
                "withinLimit": within_limit,
            },
        }
        return [
            ImageContent(type="image", data=result.to_base64(), mimeType=result.mime_type),
            *json_content(metadata),
        ]

    @mcp.tool()
    async def cache_stats() -> list:
        """
        Show response cache statistics.

        Returns:
            Hits, misses, evictions, size, hit rate and outbound call counters
        """
        return json_content(gateway.stats())

    @mcp.tool()
    async def invalidate_cache(pattern: str) -> list:
        """
        Drop cached responses whose key matches a regular expression.

        Args:
            pattern: Regex matched against cache keys, e.g. "^/profile/api/john"

        Returns:
            Number of entries invalidated
        """
        try:
            count = gateway.invalidate(pattern)
        except re.error as e:
            return error_content(e, f"invalidating cache with pattern '{pattern}'")
        return json_content({"invalidated": count, "pattern": pattern})

    return mcp
