"""Rendering, probing and encoding primitives."""

from __future__ import annotations

from .alpha import detect_has_alpha
from .capabilities import CapabilityCache, process_capabilities
from .encoders import Encoder, quality_to_unit
from .errors import (
    DecodeError,
    EncodeFailure,
    SurfaceAllocationError,
    TranscodeError,
    UnsupportedFormatError,
)
from .geometry import Geometry, Rect, resolve_geometry
from .pipeline import decode_source, render_surface
from .search import SearchOutcome, search_quality_for_size

__all__ = [
    "CapabilityCache",
    "DecodeError",
    "EncodeFailure",
    "Encoder",
    "Geometry",
    "Rect",
    "SearchOutcome",
    "SurfaceAllocationError",
    "TranscodeError",
    "UnsupportedFormatError",
    "decode_source",
    "detect_has_alpha",
    "process_capabilities",
    "quality_to_unit",
    "render_surface",
    "resolve_geometry",
    "search_quality_for_size",
]
