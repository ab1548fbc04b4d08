from __future__ import annotations

__all__ = [
    "DecodeError",
    "EncodeFailure",
    "SurfaceAllocationError",
    "TranscodeError",
    "UnsupportedFormatError",
]


class TranscodeError(RuntimeError):
    """Base error for failures inside the render/encode pipeline."""


class DecodeError(TranscodeError):
    """Raised when source bytes cannot be decoded into pixels."""


class SurfaceAllocationError(TranscodeError):
    """Raised when a rendering surface cannot be allocated."""


class EncodeFailure(TranscodeError):
    """Raised when an encode call yields no bytes."""


class UnsupportedFormatError(TranscodeError, ValueError):
    """Raised when a format name cannot be mapped to an encodable output format."""
