from __future__ import annotations

import asyncio
import io
import logging
from typing import Any, Dict, Optional, Tuple

from PIL import Image

from image_transcoder.datatypes import (
    DEFAULT_BACKGROUND,
    FALLBACK_FORMAT,
    EncodedResult,
    OutputFormat,
)
from image_transcoder.render.capabilities import CapabilityCache, process_capabilities
from image_transcoder.render.errors import EncodeFailure

__all__ = [
    "Encoder",
    "map_png_compression_level",
    "normalise_compression_level",
    "quality_to_unit",
    "unit_to_codec_quality",
]

logger = logging.getLogger(__name__)

MIN_UNIT_QUALITY = 0.01


def normalise_compression_level(level: int) -> int:
    """Clamp arbitrary compression levels to the 0–2 range."""

    try:
        value = int(level)
    except (ValueError, TypeError):
        return 1
    return max(0, min(2, value))


def map_png_compression_level(level: int) -> int:
    """Translate the user configured level into a PNG compress level."""

    normalised = normalise_compression_level(level)
    mapping = {0: 0, 1: 6, 2: 9}
    return mapping.get(normalised, 6)


def quality_to_unit(quality: Any) -> float:
    """Map a 1–100 quality onto the codec's 0.01–1.0 scale."""

    try:
        value = float(quality)
    except (TypeError, ValueError):
        return 1.0
    return min(1.0, max(MIN_UNIT_QUALITY, value / 100))


def unit_to_codec_quality(unit: float) -> int:
    """Map a 0.01–1.0 quality onto Pillow's integer 1–100 scale."""

    return max(1, min(100, int(round(float(unit) * 100))))


def _flatten(surface: Image.Image, background: str = DEFAULT_BACKGROUND) -> Image.Image:
    if surface.mode != "RGBA":
        return surface.convert("RGB")
    base = Image.new("RGBA", surface.size, background)
    base.alpha_composite(surface)
    return base.convert("RGB")


class Encoder:
    """
    Encode rendering surfaces to bytes, substituting a fallback format when the
    runtime cannot produce the requested one.
    """

    def __init__(
        self,
        capabilities: Optional[CapabilityCache] = None,
        *,
        fallback: OutputFormat = FALLBACK_FORMAT,
        png_compression_level: int = 1,
    ) -> None:
        self.capabilities = capabilities if capabilities is not None else process_capabilities()
        self.fallback = OutputFormat.parse(fallback)
        self.png_compression_level = normalise_compression_level(png_compression_level)

    def resolve_format(self, fmt: OutputFormat | str) -> Tuple[OutputFormat, bool]:
        """Return the format that will actually be written and whether it was substituted."""

        requested = OutputFormat.parse(fmt)
        if self.capabilities.is_supported(requested):
            return requested, False
        logger.warning(
            "Output format %s is not supported by this runtime; substituting %s",
            requested.value,
            self.fallback.value,
        )
        return self.fallback, True

    def _save_options(self, fmt: OutputFormat, unit_quality: float) -> Dict[str, Any]:
        codec_quality = unit_to_codec_quality(unit_quality)
        if fmt is OutputFormat.PNG:
            return {"compress_level": map_png_compression_level(self.png_compression_level)}
        if fmt is OutputFormat.JPEG:
            return {"quality": codec_quality, "optimize": True}
        if fmt is OutputFormat.WEBP:
            return {"quality": codec_quality, "method": 4}
        if fmt is OutputFormat.AVIF:
            return {"quality": codec_quality}
        raise AssertionError(f"unhandled format {fmt!r}")

    def encode_now(self, surface: Image.Image, fmt: OutputFormat | str, unit_quality: float) -> EncodedResult:
        """Synchronously encode *surface* at a 0.01–1.0 quality."""

        requested = OutputFormat.parse(fmt)
        effective, substituted = self.resolve_format(requested)
        unit = min(1.0, max(MIN_UNIT_QUALITY, float(unit_quality)))
        image = surface if effective.supports_alpha else _flatten(surface)
        buffer = io.BytesIO()
        try:
            image.save(buffer, format=effective.pil_format, **self._save_options(effective, unit))
        except (KeyError, OSError, ValueError) as exc:
            raise EncodeFailure(f"Failed to encode image as {effective.value}: {exc}") from exc
        data = buffer.getvalue()
        if not data:
            raise EncodeFailure(f"Failed to encode image as {effective.value}: no data produced")
        return EncodedResult(
            data=data,
            byte_size=len(data),
            mime_type=effective.mime_type,
            format=effective,
            requested_format=requested,
            fallback_applied=substituted,
            quality=None if not effective.is_lossy else unit,
        )

    async def encode_unit(self, surface: Image.Image, fmt: OutputFormat | str, unit_quality: float) -> EncodedResult:
        """Encode at a 0.01–1.0 quality, yielding to the event loop first."""

        await asyncio.sleep(0)
        return self.encode_now(surface, fmt, unit_quality)

    async def encode(self, surface: Image.Image, fmt: OutputFormat | str, quality: int = 90) -> EncodedResult:
        """Encode at a 1–100 quality."""

        result = await self.encode_unit(surface, fmt, quality_to_unit(quality))
        logger.debug("Encoded %s: %d bytes", result.format.value, result.byte_size)
        return result
