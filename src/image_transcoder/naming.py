"""Output naming and human-readable status lines."""

from __future__ import annotations

import re
from pathlib import PurePath
from typing import Optional

from image_transcoder.datatypes import EncodedResult, OutputFormat

__all__ = [
    "done_message",
    "error_message",
    "format_bytes",
    "sanitise_label",
    "suggest_name",
]

_UNSAFE_CHARS_RE = re.compile(r"[^A-Za-z0-9._-]+")
_BYTE_UNITS = ("B", "KB", "MB", "GB")


def sanitise_label(label: str) -> str:
    """Return a filename-safe version of *label*."""

    cleaned = _UNSAFE_CHARS_RE.sub("_", label.strip()).strip("._")
    return cleaned or "image"


def suggest_name(name: str, suffix: str, fmt: OutputFormat | str) -> str:
    """Replace the extension of *name* and tag it with *suffix*."""

    resolved = OutputFormat.parse(fmt)
    stem = PurePath(name or "image").stem or "image"
    return f"{sanitise_label(stem)}-{sanitise_label(suffix)}.{resolved.extension}"


def format_bytes(size: int) -> str:
    """Format *size* with binary units, one decimal for small multi-unit values."""

    value = float(max(0, int(size)))
    index = 0
    while value >= 1024 and index < len(_BYTE_UNITS) - 1:
        value /= 1024
        index += 1
    decimals = 1 if value < 10 and index > 0 else 0
    return f"{value:.{decimals}f} {_BYTE_UNITS[index]}"


def done_message(filename: str, result: EncodedResult, *, target_bytes: Optional[int] = None) -> str:
    """Status line for a successful encode."""

    message = f"Done → {filename} ({format_bytes(result.byte_size)})"
    if target_bytes:
        message += f". Target was ≤ {format_bytes(target_bytes)}."
    if result.fallback_applied:
        message += (
            f" {result.requested_format.value.upper()} unsupported here;"
            f" wrote {result.format.value.upper()} instead."
        )
    return message


def error_message(exc: BaseException) -> str:
    """Status line for a failed run."""

    text = str(exc).strip()
    return f"Error: {text or type(exc).__name__}"
