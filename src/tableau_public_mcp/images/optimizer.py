"""
Image optimization utilities.

Fetches remote images, resizes them into a bounding box and re-encodes them
so they fit the token budget of an MCP response. The optimizer is
single-pass: it reports the size metrics and leaves any retry at a lower
quality to the caller (see ``suggest_quality_for_token_limit``).
"""

import asyncio
import math
from io import BytesIO
from pathlib import Path

from loguru import logger
from PIL import Image as PILImage
from PIL import UnidentifiedImageError

from ..config import Settings
from ..errors import DecodeError
from ..fetch import Fetcher
from .base import ImageOptions, ImageResult, SavedImage

# Base64 inflates bytes by ~4/3; clients count ~4 base64 characters per token
BASE64_OVERHEAD = 1.33
CHARS_PER_TOKEN = 4


def estimate_tokens(size_bytes: int) -> int:
    """Estimate the token cost of sending ``size_bytes`` as base64."""
    base64_size = math.ceil(size_bytes * BASE64_OVERHEAD)
    return math.ceil(base64_size / CHARS_PER_TOKEN)


def is_within_token_limit(size_bytes: int, token_limit: int = 25000) -> bool:
    """Check whether an encoded image fits within a token limit."""
    return estimate_tokens(size_bytes) <= token_limit


def suggest_quality_for_token_limit(original_size: int, target_tokens: int = 20000) -> int:
    """
    Suggest a starting quality that should fit a token budget.

    JPEG size scales roughly linearly with quality in the 20-90 range, so the
    needed compression factor maps onto a coarse quality ladder.

    Args:
        original_size: Source image size in bytes
        target_tokens: Token budget for the encoded image

    Returns:
        Quality setting between 20 and 90
    """
    target_bytes = math.floor(target_tokens * CHARS_PER_TOKEN / BASE64_OVERHEAD)
    compression_needed = original_size / target_bytes

    if compression_needed <= 1:
        return 90
    if compression_needed <= 2:
        return 80
    if compression_needed <= 4:
        return 60
    if compression_needed <= 8:
        return 40
    return 20


def fit_within(width: int, height: int, max_width: int, max_height: int) -> tuple[int, int]:
    """
    Scale dimensions down into a bounding box, preserving aspect ratio.

    Images already inside the box keep their size; nothing is upscaled.

    Returns:
        Tuple of (width, height)
    """
    scale = min(max_width / width, max_height / height, 1.0)
    if scale == 1.0:
        return width, height
    new_width = min(max_width, max(1, round(width * scale)))
    new_height = min(max_height, max(1, round(height * scale)))
    return new_width, new_height


class ImageOptimizer:
    """Fetches images and re-encodes them to fit a size budget."""

    def __init__(self, fetcher: Fetcher, settings: Settings):
        """
        Initialize the optimizer.

        Args:
            fetcher: Network fetcher for image bytes
            settings: Configuration snapshot (timeout and default transform)
        """
        self.fetcher = fetcher
        self.timeout = settings.api_timeout
        self.default_options = ImageOptions.from_settings(settings)
        logger.debug(
            "ImageOptimizer initialized: default={}x{}, quality={}, format={}",
            self.default_options.max_width,
            self.default_options.max_height,
            self.default_options.quality,
            self.default_options.format,
        )

    async def process(self, url: str, options: ImageOptions | None = None) -> ImageResult:
        """
        Fetch an image and optimize it for an MCP response.

        Args:
            url: Image URL to fetch
            options: Transform parameters (defaults from settings)

        Returns:
            ImageResult with encoded bytes and size metrics

        Raises:
            FetchError: If the image could not be fetched (incl. timeouts)
            DecodeError: If the bytes are not a recognized image
        """
        opts = options or self.default_options
        logger.debug("Fetching image: {}", url[:80])
        source = await self.fetcher.get_bytes(url, timeout=self.timeout)
        result = await asyncio.to_thread(self._transform, source, opts)
        logger.debug(
            "Optimized image: {} -> {} bytes ({:.1f}x), {}x{}, ~{} tokens",
            result.original_size,
            result.processed_size,
            result.compression_ratio,
            result.width,
            result.height,
            result.estimated_tokens,
        )
        return result

    async def process_and_save(
        self,
        url: str,
        output_path: Path | str,
        options: ImageOptions | None = None,
    ) -> SavedImage:
        """
        Fetch and optimize an image, then write it to disk.

        Args:
            url: Image URL to fetch
            output_path: Destination file (parent directories are created)
            options: Transform parameters (defaults from settings)

        Returns:
            SavedImage with the absolute file path and size metrics
        """
        result = await self.process(url, options)
        path = Path(output_path).resolve()
        await asyncio.to_thread(self._write, path, result.data)
        logger.debug("Saved image to {}", path)
        return SavedImage(file_path=str(path), **result.model_dump(exclude={"data"}))

    @staticmethod
    def _write(path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)

    def _transform(self, source: bytes, options: ImageOptions) -> ImageResult:
        """
        Decode, resize and re-encode image bytes.

        Raises:
            DecodeError: If the image format is not recognized or data is corrupted
        """
        try:
            img = PILImage.open(BytesIO(source))
            img.load()
        except (UnidentifiedImageError, PILImage.DecompressionBombError, OSError) as e:
            raise DecodeError(f"Unrecognized or corrupt image data: {e}") from e

        original_width, original_height = img.size
        width, height = fit_within(
            original_width, original_height, options.max_width, options.max_height
        )
        was_resized = (width, height) != (original_width, original_height)
        if was_resized:
            img = img.resize((width, height), PILImage.Resampling.LANCZOS)

        data = self._encode(img, options)
        processed_size = len(data)

        return ImageResult(
            data=data,
            mime_type=options.mime_type,
            original_size=len(source),
            processed_size=processed_size,
            width=width,
            height=height,
            original_width=original_width,
            original_height=original_height,
            estimated_tokens=estimate_tokens(processed_size),
            compression_ratio=len(source) / processed_size,
            was_resized=was_resized,
        )

    @staticmethod
    def _encode(img: PILImage.Image, options: ImageOptions) -> bytes:
        has_transparency = img.mode in ("RGBA", "LA") or (
            img.mode == "P" and "transparency" in img.info
        )
        output = BytesIO()

        if options.format == "png":
            if img.mode not in ("RGB", "RGBA", "L", "LA", "P"):
                img = img.convert("RGBA" if has_transparency else "RGB")
            img.save(output, format="PNG", optimize=True, compress_level=9)
        elif options.format == "webp":
            if img.mode not in ("RGB", "RGBA"):
                img = img.convert("RGBA" if has_transparency else "RGB")
            img.save(output, format="WEBP", quality=options.quality)
        else:
            # JPEG has no alpha channel: flatten onto white
            if has_transparency:
                rgba = img.convert("RGBA")
                background = PILImage.new("RGB", rgba.size, (255, 255, 255))
                background.paste(rgba, mask=rgba.getchannel("A"))
                img = background
            elif img.mode not in ("RGB", "L"):
                img = img.convert("RGB")
            img.save(
                output,
                format="JPEG",
                quality=options.quality,
                optimize=True,
                progressive=True,
            )

        return output.getvalue()
