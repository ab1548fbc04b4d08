"""Transparency detection on decoded sources."""

from __future__ import annotations

import logging

from PIL import Image

__all__ = ["ALPHA_PROBE_MAX_DIMENSION", "OPAQUE", "detect_has_alpha"]

logger = logging.getLogger(__name__)

ALPHA_PROBE_MAX_DIMENSION = 256
"""Longest side of the downsampled copy that is scanned for alpha."""

OPAQUE = 255


def _downsample(image: Image.Image, max_dimension: int) -> Image.Image:
    rgba = image if image.mode == "RGBA" else image.convert("RGBA")
    width, height = rgba.size
    longest = max(width, height)
    if longest <= max_dimension:
        return rgba
    scale = max_dimension / longest
    size = (max(1, int(round(width * scale))), max(1, int(round(height * scale))))
    # BOX averages every source pixel, so isolated transparent pixels still lower the sample.
    return rgba.resize(size, Image.Resampling.BOX)


def detect_has_alpha(image: Image.Image, *, max_dimension: int = ALPHA_PROBE_MAX_DIMENSION) -> bool:
    """
    Return True when *image* has at least one pixel below full opacity.

    The scan runs on a copy downsampled to ``max_dimension`` so its cost does
    not grow with the source resolution. Pixel read failures are reported as
    "no transparency" instead of raising.
    """

    try:
        sample = _downsample(image, max(1, int(max_dimension)))
        data = sample.tobytes()
    except (OSError, ValueError) as exc:
        logger.debug("Alpha probe could not read pixels; assuming opaque: %s", exc)
        return False
    for value in data[3::4]:
        if value != OPAQUE:
            return True
    return False
