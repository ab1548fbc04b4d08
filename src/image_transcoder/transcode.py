"""High-level transcoding orchestration."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from functools import partial
from typing import Optional

from image_transcoder.datatypes import (
    AppConfig,
    EncodedResult,
    OutputFormat,
    RenderOptions,
    SourceImage,
)
from image_transcoder.render.alpha import detect_has_alpha
from image_transcoder.render.capabilities import CapabilityCache
from image_transcoder.render.encoders import Encoder, quality_to_unit
from image_transcoder.render.errors import UnsupportedFormatError
from image_transcoder.render.geometry import format_dimensions, resolve_geometry
from image_transcoder.render.pipeline import render_surface
from image_transcoder.render.search import search_quality_for_size

__all__ = [
    "KEEP_FORMAT",
    "build_encoder",
    "parse_output_format",
    "resolve_keep_format",
    "transcode",
    "transcode_sync",
]

logger = logging.getLogger(__name__)

KEEP_FORMAT = "keep"
"""Pseudo-format meaning "write the same format as the source"."""


def parse_output_format(value: OutputFormat | str) -> OutputFormat:
    """Strictly parse a format name, raising ``UnsupportedFormatError`` when unknown."""

    try:
        return OutputFormat.parse(value)
    except ValueError as exc:
        raise UnsupportedFormatError(str(exc)) from exc


def resolve_keep_format(mime_type: Optional[str]) -> OutputFormat:
    """Map a source MIME type onto the output format that preserves it.

    PNG and WEBP keep their format; everything else (JPEG, GIF, BMP, unknown)
    becomes JPEG.
    """

    text = (mime_type or "").strip().lower()
    if "png" in text:
        return OutputFormat.PNG
    if "webp" in text:
        return OutputFormat.WEBP
    return OutputFormat.JPEG


def build_encoder(
    config: Optional[AppConfig] = None,
    capabilities: Optional[CapabilityCache] = None,
) -> Encoder:
    """Create an encoder configured from *config*."""

    cfg = config or AppConfig()
    return Encoder(
        capabilities,
        fallback=cfg.transcode.fallback_format,
        png_compression_level=cfg.transcode.png_compression_level,
    )


async def transcode(
    source: SourceImage,
    options: RenderOptions,
    *,
    capabilities: Optional[CapabilityCache] = None,
    config: Optional[AppConfig] = None,
    alpha_hint: Optional[bool] = None,
    encoder: Optional[Encoder] = None,
) -> EncodedResult:
    """
    Render *source* according to *options* and encode the result.

    The output format is resolved against the runtime capabilities before
    rendering, so background compositing matches the format actually written.
    When ``options.target_bytes`` is set and that format is lossy, the quality
    is searched to fit the budget; lossless formats encode once.

    Parameters:
        source: Decodable source bytes and declared dimensions.
        options: Render parameters from the controls collaborator.
        capabilities: Capability cache; defaults to the process-wide cache.
        config: Application config supplying encoder/search defaults.
        alpha_hint: Known transparency of *source*; skips the alpha probe when set.
        encoder: Pre-built encoder, mainly for reuse across preview renders.

    Returns:
        EncodedResult: Encoded bytes, size and MIME type of the effective format.

    Raises:
        DecodeError: If the source cannot be decoded.
        SurfaceAllocationError: If the rendering surface cannot be allocated.
        EncodeFailure: If encoding produced no bytes.
    """

    cfg = config or AppConfig()
    active_encoder = encoder or build_encoder(cfg, capabilities)
    requested = options.format
    effective, substituted = active_encoder.resolve_format(requested)

    target_w = options.width if options.width is not None else source.width
    target_h = options.height if options.height is not None else source.height
    geometry = resolve_geometry(
        source.width,
        source.height,
        target_w,
        target_h,
        options.fit_mode,
        options.anchor,
    )
    logger.debug(
        "Transcoding %s: %s -> %s (%s, %s)",
        source.name,
        format_dimensions(source.width, source.height),
        format_dimensions(geometry.target_width, geometry.target_height),
        geometry.fit_mode.value,
        effective.value,
    )

    max_dimension = cfg.transcode.alpha_probe_max_dimension
    surface = await render_surface(
        source,
        geometry,
        effective,
        background=options.background,
        filters=options.filters,
        has_alpha=alpha_hint,
        alpha_probe=partial(detect_has_alpha, max_dimension=max_dimension),
        default_background=cfg.transcode.background,
    )
    try:
        encode_at = partial(active_encoder.encode_unit, surface, effective)
        if options.target_bytes and effective.is_lossy:
            outcome = await search_quality_for_size(
                encode_at,
                options.target_bytes,
                quality_to_unit(options.quality),
                iterations=cfg.search.iterations,
                min_quality=cfg.search.min_quality,
                max_quality=cfg.search.max_quality,
            )
            result = outcome.result
        else:
            result = await encode_at(quality_to_unit(options.quality))
    finally:
        surface.close()

    if substituted:
        result = replace(result, requested_format=requested, fallback_applied=True)
    logger.info(
        "Encoded %s as %s (%d bytes)",
        source.name,
        result.format.value,
        result.byte_size,
    )
    return result


def transcode_sync(source: SourceImage, options: RenderOptions, **kwargs) -> EncodedResult:
    """Run :func:`transcode` to completion outside an event loop."""

    return asyncio.run(transcode(source, options, **kwargs))
