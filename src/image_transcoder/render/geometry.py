from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Tuple

from image_transcoder.datatypes import Anchor, FitMode

__all__ = [
    "Geometry",
    "Rect",
    "clamp_dimension",
    "format_dimensions",
    "lock_aspect",
    "normalise_anchor",
    "normalise_fit_mode",
    "resolve_geometry",
    "scale_dimensions",
]


@dataclass(frozen=True)
class Rect:
    """Integer pixel rectangle."""

    x: int
    y: int
    width: int
    height: int

    @property
    def box(self) -> Tuple[int, int, int, int]:
        """Return ``(left, top, right, bottom)`` for Pillow APIs."""

        return (self.x, self.y, self.x + self.width, self.y + self.height)


@dataclass(frozen=True)
class Geometry:
    """
    Resolved draw/crop plan for mapping a source onto a target box.

    Attributes:
        target_width (int): Output surface width.
        target_height (int): Output surface height.
        fit_mode (FitMode): ``contain`` letterboxes, ``cover`` crops.
        anchor (Anchor): Crop bias used under ``cover``.
        source_rect (Rect): Region of the source that is sampled.
        dest_rect (Rect): Region of the target surface that receives the sample.
    """

    target_width: int
    target_height: int
    fit_mode: FitMode
    anchor: Anchor
    source_rect: Rect
    dest_rect: Rect

    @property
    def letterboxed(self) -> bool:
        """Return True when part of the target box is left uncovered."""

        return (
            self.dest_rect.width < self.target_width
            or self.dest_rect.height < self.target_height
        )


def format_dimensions(width: int, height: int) -> str:
    """Return width × height using integer values."""

    return f"{int(width)} × {int(height)}"


def clamp_dimension(value: Any) -> int:
    """Round *value* to a positive integer, mapping invalid input to 1."""

    try:
        number = float(value)
    except (TypeError, ValueError):
        return 1
    if not math.isfinite(number):
        return 1
    return max(1, int(round(number)))


def normalise_fit_mode(value: FitMode | str) -> FitMode:
    """Return a canonical FitMode value."""

    return FitMode.parse(value)


def normalise_anchor(value: Anchor | str | None) -> Anchor:
    """Return a canonical Anchor, accepting ``_``/space separators."""

    return Anchor.parse(value)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _align(space: int, fraction: float) -> int:
    if space <= 0:
        return 0
    return min(space, max(0, _round_half_up(space * fraction)))


def resolve_geometry(
    source_width: Any,
    source_height: Any,
    target_width: Any,
    target_height: Any,
    fit_mode: FitMode | str = FitMode.CONTAIN,
    anchor: Anchor | str | None = Anchor.CENTER,
) -> Geometry:
    """
    Compute the source crop and destination rectangle for a fit mode.

    Invalid dimensions are clamped to 1 rather than rejected, so transient
    states such as an empty numeric field still yield a drawable plan.
    """

    src_w = clamp_dimension(source_width)
    src_h = clamp_dimension(source_height)
    dst_w = clamp_dimension(target_width)
    dst_h = clamp_dimension(target_height)
    mode = normalise_fit_mode(fit_mode)
    resolved_anchor = normalise_anchor(anchor)

    src_aspect = src_w / src_h
    dst_aspect = dst_w / dst_h

    if mode is FitMode.CONTAIN:
        if src_aspect > dst_aspect:
            draw_w = dst_w
            draw_h = _round_half_up(dst_w / src_aspect)
        else:
            draw_h = dst_h
            draw_w = _round_half_up(dst_h * src_aspect)
        draw_w = max(1, min(dst_w, draw_w))
        draw_h = max(1, min(dst_h, draw_h))
        dest = Rect(_align(dst_w - draw_w, 0.5), _align(dst_h - draw_h, 0.5), draw_w, draw_h)
        source = Rect(0, 0, src_w, src_h)
    else:
        scale = max(dst_w / src_w, dst_h / src_h)
        crop_w = max(1, min(src_w, _round_half_up(dst_w / scale)))
        crop_h = max(1, min(src_h, _round_half_up(dst_h / scale)))
        frac_x, frac_y = resolved_anchor.fractions
        source = Rect(
            _align(src_w - crop_w, frac_x),
            _align(src_h - crop_h, frac_y),
            crop_w,
            crop_h,
        )
        dest = Rect(0, 0, dst_w, dst_h)

    return Geometry(
        target_width=dst_w,
        target_height=dst_h,
        fit_mode=mode,
        anchor=resolved_anchor,
        source_rect=source,
        dest_rect=dest,
    )


def lock_aspect(
    source_width: int,
    source_height: int,
    *,
    width: Any = None,
    height: Any = None,
) -> Tuple[int, int]:
    """
    Fill in the missing dimension so the source aspect ratio is preserved.

    When both are given, *width* wins and *height* is recomputed. When neither
    is given the source dimensions are returned.
    """

    src_w = clamp_dimension(source_width)
    src_h = clamp_dimension(source_height)
    ratio = src_w / src_h
    if width is not None:
        out_w = clamp_dimension(width)
        return (out_w, max(1, int(round(out_w / ratio))))
    if height is not None:
        out_h = clamp_dimension(height)
        return (max(1, int(round(out_h * ratio))), out_h)
    return (src_w, src_h)


def scale_dimensions(width: int, height: int, percent: Any) -> Tuple[int, int]:
    """Scale both dimensions by *percent* (at least 1%)."""

    try:
        factor = max(1.0, float(percent))
    except (TypeError, ValueError):
        factor = 100.0
    if not math.isfinite(factor):
        factor = 100.0
    return (
        max(1, int(round(clamp_dimension(width) * factor / 100))),
        max(1, int(round(clamp_dimension(height) * factor / 100))),
    )
