from __future__ import annotations

import asyncio
import io
import logging
from collections.abc import Callable
from typing import Optional, Tuple

from PIL import Image, ImageColor, ImageEnhance, UnidentifiedImageError

from image_transcoder.datatypes import (
    DEFAULT_BACKGROUND,
    FilterSettings,
    OutputFormat,
    SourceImage,
)
from image_transcoder.render.errors import DecodeError, SurfaceAllocationError
from image_transcoder.render.geometry import Geometry

__all__ = [
    "apply_filters",
    "allocate_surface",
    "decode_source",
    "needs_background",
    "parse_colour",
    "read_source_header",
    "render_surface",
]

logger = logging.getLogger(__name__)

RGBA = Tuple[int, int, int, int]

_DECODE_ERRORS = (
    UnidentifiedImageError,
    OSError,
    ValueError,
    SyntaxError,
    Image.DecompressionBombError,
)


def _mime_for(pil_format: Optional[str]) -> str:
    if not pil_format:
        return ""
    return Image.MIME.get(pil_format.upper(), "")


def read_source_header(data: bytes) -> Tuple[int, int, str]:
    """Return ``(width, height, mime)`` from the image header without decoding pixels."""

    try:
        with Image.open(io.BytesIO(data)) as image:
            width, height = image.size
            return int(width), int(height), _mime_for(image.format)
    except _DECODE_ERRORS as exc:
        raise DecodeError(f"Unreadable image data: {exc}") from exc


async def decode_source(source: SourceImage) -> Image.Image:
    """
    Decode *source* into an RGBA pixel buffer.

    Only the first frame of animated inputs is kept. The caller owns the
    returned image and must close it.
    """

    await asyncio.sleep(0)
    try:
        with Image.open(io.BytesIO(source.data)) as opened:
            opened.seek(0)
            opened.load()
            decoded = opened.convert("RGBA")
    except _DECODE_ERRORS as exc:
        raise DecodeError(f"Failed to decode {source.name}: {exc}") from exc
    logger.debug("Decoded %s (%dx%d)", source.name, decoded.width, decoded.height)
    return decoded


def parse_colour(value: Optional[str], default: str = DEFAULT_BACKGROUND) -> RGBA:
    """Parse a CSS-like colour string, falling back to *default* when invalid."""

    text = (value or "").strip() or default
    try:
        parsed = ImageColor.getrgb(text)
    except ValueError:
        logger.warning("Invalid background colour %r; using %s", value, default)
        parsed = ImageColor.getrgb(default)
    if len(parsed) == 3:
        return (parsed[0], parsed[1], parsed[2], 255)
    return (parsed[0], parsed[1], parsed[2], parsed[3])


def needs_background(
    fmt: OutputFormat,
    geometry: Geometry,
    *,
    background: Optional[str],
    has_alpha: bool,
) -> bool:
    """Return True when the surface must be filled before the blit."""

    if background:
        return True
    if fmt.supports_alpha:
        return False
    return has_alpha or geometry.letterboxed


def allocate_surface(width: int, height: int, fill: Optional[RGBA] = None) -> Image.Image:
    """Allocate a ``width × height`` RGBA surface, transparent unless *fill* is given."""

    colour = fill if fill is not None else (0, 0, 0, 0)
    try:
        return Image.new("RGBA", (int(width), int(height)), colour)
    except (MemoryError, ValueError, OverflowError) as exc:
        raise SurfaceAllocationError(
            f"Cannot allocate a {width}x{height} rendering surface: {exc}"
        ) from exc


def apply_filters(image: Image.Image, filters: Optional[FilterSettings]) -> Image.Image:
    """
    Apply brightness/contrast/saturation to the colour channels of *image*.

    Alpha is split off first because the enhancers blend every band,
    including alpha, against their degenerate image.
    """

    if filters is None or filters.is_identity:
        return image
    alpha = image.getchannel("A") if image.mode == "RGBA" else None
    rgb = image.convert("RGB")
    if filters.brightness != 100:
        rgb = ImageEnhance.Brightness(rgb).enhance(max(0.0, filters.brightness) / 100)
    if filters.contrast != 100:
        rgb = ImageEnhance.Contrast(rgb).enhance(max(0.0, filters.contrast) / 100)
    if filters.saturation != 100:
        rgb = ImageEnhance.Color(rgb).enhance(max(0.0, filters.saturation) / 100)
    if alpha is None:
        return rgb.convert("RGBA")
    rgb.putalpha(alpha)
    return rgb


def _clip_box(box: Tuple[int, int, int, int], size: Tuple[int, int]) -> Tuple[int, int, int, int]:
    # Declared source dimensions can disagree with the decoded pixels.
    width, height = size
    left = min(max(0, box[0]), width - 1)
    top = min(max(0, box[1]), height - 1)
    right = min(max(left + 1, box[2]), width)
    bottom = min(max(top + 1, box[3]), height)
    return (left, top, right, bottom)


def _blit(surface: Image.Image, decoded: Image.Image, geometry: Geometry, filters: Optional[FilterSettings]) -> None:
    dest = geometry.dest_rect
    patch = decoded.resize(
        (dest.width, dest.height),
        Image.Resampling.LANCZOS,
        box=_clip_box(geometry.source_rect.box, decoded.size),
    )
    patch = apply_filters(patch, filters)
    surface.alpha_composite(patch, dest=(dest.x, dest.y))


async def render_surface(
    source: SourceImage,
    geometry: Geometry,
    fmt: OutputFormat,
    *,
    background: Optional[str] = None,
    filters: Optional[FilterSettings] = None,
    has_alpha: Optional[bool] = None,
    alpha_probe: Optional[Callable[[Image.Image], bool]] = None,
    default_background: str = DEFAULT_BACKGROUND,
) -> Image.Image:
    """
    Decode *source* and composite it onto a fresh surface sized to *geometry*.

    ``has_alpha`` short-circuits the alpha probe when the caller already knows
    the answer; otherwise ``alpha_probe`` runs on the decoded pixels, and only
    when an alpha-incapable format could need a fill. A required fill with no
    explicit ``background`` uses ``default_background``.

    Raises:
        DecodeError: If the source bytes cannot be decoded.
        SurfaceAllocationError: If the target surface cannot be allocated.
    """

    decoded = await decode_source(source)
    try:
        transparent = bool(has_alpha)
        if has_alpha is None and not background and not fmt.supports_alpha and alpha_probe is not None:
            transparent = bool(alpha_probe(decoded))
        fill: Optional[RGBA] = None
        if needs_background(fmt, geometry, background=background, has_alpha=transparent):
            fill = parse_colour(background, default_background)
        surface = allocate_surface(geometry.target_width, geometry.target_height, fill)
        try:
            _blit(surface, decoded, geometry, filters)
        except Exception:
            surface.close()
            raise
    finally:
        decoded.close()
    logger.debug(
        "Rendered %s onto %dx%d surface (fit=%s, fill=%s)",
        source.name,
        geometry.target_width,
        geometry.target_height,
        geometry.fit_mode.value,
        "yes" if fill is not None else "no",
    )
    return surface
