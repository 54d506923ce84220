"""
Tableau Public MCP Server.

An MCP server that fronts the read-only Tableau Public API with a cached,
deduplicating request layer and token-bounded image optimization.

Usage:
    # Start server (stdio transport)
    tableau-public-mcp serve

    # Fetch a resource through the cache
    tableau-public-mcp get /profile/api/username

    # Check configuration
    tableau-public-mcp info
"""

__version__ = "0.1.0"

from .config import Settings, load_settings
from .errors import (
    ConfigError,
    DecodeError,
    FetchError,
    FetchTimeoutError,
    GatewayError,
    UpstreamError,
    UpstreamNotFound,
)
from .gateway import ResourceGateway
from .images import ImageOptions, ImageResult

__all__ = [
    "ConfigError",
    "DecodeError",
    "FetchError",
    "FetchTimeoutError",
    "GatewayError",
    "ImageOptions",
    "ImageResult",
    "ResourceGateway",
    "Settings",
    "UpstreamError",
    "UpstreamNotFound",
    "load_settings",
]
