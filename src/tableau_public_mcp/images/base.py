"""
Data models for image optimization.

Provides Pydantic models for transform options and processed images.
"""

import base64
from typing import Literal

from pydantic import BaseModel, Field

from ..config import Settings

MIME_TYPES = {
    "jpeg": "image/jpeg",
    "webp": "image/webp",
    "png": "image/png",
}


class ImageOptions(BaseModel):
    """Transform parameters for one image."""

    max_width: int = Field(default=800, ge=1, description="Bounding box width in pixels")
    max_height: int = Field(default=600, ge=1, description="Bounding box height in pixels")
    quality: int = Field(default=80, ge=1, le=100, description="Quality for lossy formats")
    format: Literal["jpeg", "webp", "png"] = Field(default="jpeg", description="Output format")

    @classmethod
    def from_settings(cls, settings: Settings) -> "ImageOptions":
        """Build the default options from the configuration snapshot."""
        return cls(
            max_width=settings.image_max_width,
            max_height=settings.image_max_height,
            quality=settings.image_quality,
            format=settings.image_format,
        )

    @property
    def mime_type(self) -> str:
        return MIME_TYPES[self.format]


class ImageMetrics(BaseModel):
    """Size and dimension metrics shared by processed and saved images."""

    mime_type: str = Field(description="MIME type of the processed image")
    original_size: int = Field(description="Fetched size in bytes")
    processed_size: int = Field(description="Encoded size in bytes")
    width: int = Field(description="Processed width in pixels")
    height: int = Field(description="Processed height in pixels")
    original_width: int = Field(description="Source width in pixels")
    original_height: int = Field(description="Source height in pixels")
    estimated_tokens: int = Field(description="Estimated token cost of the base64 payload")
    compression_ratio: float = Field(description="original_size / processed_size")
    was_resized: bool = Field(description="Whether the source exceeded the bounding box")


class ImageResult(ImageMetrics):
    """A processed image held in memory."""

    data: bytes = Field(repr=False, description="Encoded image bytes")

    def to_base64(self) -> str:
        """Return the image data as a base64 string."""
        return base64.b64encode(self.data).decode("ascii")


class SavedImage(ImageMetrics):
    """A processed image written to disk."""

    file_path: str = Field(description="Absolute path of the written file")
