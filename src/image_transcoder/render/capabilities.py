"""Runtime encoder capability detection."""

from __future__ import annotations

import io
import logging
from collections.abc import Callable, Iterable
from typing import Dict, List, Mapping, Optional

from PIL import Image

from image_transcoder.datatypes import OutputFormat

__all__ = [
    "CapabilityCache",
    "probe_format",
    "process_capabilities",
    "reset_process_capabilities",
]

logger = logging.getLogger(__name__)

Prober = Callable[[OutputFormat], bool]

_PROBE_SIZE = (2, 2)


def probe_format(fmt: OutputFormat) -> bool:
    """Trial-encode a tiny surface and report whether any bytes came out."""

    surface = Image.new("RGBA", _PROBE_SIZE, (0, 0, 0, 0))
    if not fmt.supports_alpha:
        surface = surface.convert("RGB")
    buffer = io.BytesIO()
    try:
        surface.save(buffer, format=fmt.pil_format)
    except (KeyError, OSError, ValueError) as exc:
        logger.debug("Capability probe for %s failed: %s", fmt.value, exc)
        return False
    return len(buffer.getvalue()) > 0


class CapabilityCache:
    """
    Memoized ``format -> supported`` map.

    Each format is probed once on first query; later queries read the stored
    answer. Writes are idempotent, so repeated probing after a race still
    stores the same boolean.
    """

    def __init__(self, prober: Optional[Prober] = None) -> None:
        self._prober: Prober = prober or probe_format
        self._supported: Dict[OutputFormat, bool] = {}

    def is_supported(self, fmt: OutputFormat | str) -> bool:
        resolved = OutputFormat.parse(fmt)
        cached = self._supported.get(resolved)
        if cached is not None:
            return cached
        result = bool(self._prober(resolved))
        self._supported.setdefault(resolved, result)
        logger.debug("Capability %s -> %s", resolved.value, "supported" if result else "unsupported")
        return self._supported[resolved]

    def supported_formats(self, formats: Iterable[OutputFormat] | None = None) -> List[OutputFormat]:
        candidates = list(formats) if formats is not None else list(OutputFormat)
        return [fmt for fmt in candidates if self.is_supported(fmt)]

    def snapshot(self) -> Mapping[OutputFormat, bool]:
        """Return a copy of the formats probed so far."""

        return dict(self._supported)

    def __contains__(self, fmt: object) -> bool:
        return fmt in self._supported


_process_cache: Optional[CapabilityCache] = None


def process_capabilities() -> CapabilityCache:
    """Return the session-wide cache, creating it on first use."""

    global _process_cache
    if _process_cache is None:
        _process_cache = CapabilityCache()
    return _process_cache


def reset_process_capabilities() -> None:
    """Drop the session-wide cache so the next query re-probes."""

    global _process_cache
    _process_cache = None
