"""
Image optimization package.

Provides image fetching, resizing and re-encoding for MCP tool responses.
"""

from .base import ImageOptions, ImageResult, SavedImage
from .optimizer import (
    ImageOptimizer,
    estimate_tokens,
    fit_within,
    is_within_token_limit,
    suggest_quality_for_token_limit,
)

__all__ = [
    "ImageOptimizer",
    "ImageOptions",
    "ImageResult",
    "SavedImage",
    "estimate_tokens",
    "fit_within",
    "is_within_token_limit",
    "suggest_quality_for_token_limit",
]
