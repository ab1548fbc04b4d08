"""Quality search that fits an encode under a byte budget."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import List, Optional, Tuple

from image_transcoder.datatypes import EncodedResult
from image_transcoder.render.errors import EncodeFailure

__all__ = [
    "DEFAULT_ITERATIONS",
    "MAX_QUALITY",
    "MIN_QUALITY",
    "SearchOutcome",
    "SearchProbe",
    "search_quality_for_size",
]

logger = logging.getLogger(__name__)

MIN_QUALITY = 0.05
MAX_QUALITY = 1.0
DEFAULT_ITERATIONS = 8

EncodeAt = Callable[[float], Awaitable[EncodedResult]]


@dataclass(frozen=True)
class SearchProbe:
    """One encode attempt made during the search."""

    quality: float
    byte_size: Optional[int]
    accepted: bool


@dataclass(frozen=True)
class SearchOutcome:
    """Result of a constrained-size search.

    ``met_target`` reports whether ``result`` fits the budget.
    """

    result: EncodedResult
    met_target: bool
    probes: Tuple[SearchProbe, ...]


async def search_quality_for_size(
    encode_at: EncodeAt,
    target_bytes: int,
    initial_quality: float,
    *,
    iterations: int = DEFAULT_ITERATIONS,
    min_quality: float = MIN_QUALITY,
    max_quality: float = MAX_QUALITY,
) -> SearchOutcome:
    """
    Binary-search the encoder quality so the output fits ``target_bytes``.

    Probes run one after another because each one narrows the bounds for the
    next. An ``EncodeFailure`` during a probe counts as over budget. The best
    result under budget wins; if none fits, the encode at the lower bound is
    returned (best effort, not a guarantee).

    Raises:
        EncodeFailure: If no probe fit and the lower-bound encode also fails.
    """

    lo = float(min_quality)
    hi = float(max_quality)
    budget = max(1, int(target_bytes))
    q = min(hi, max(lo, float(initial_quality)))
    best: Optional[EncodedResult] = None
    probes: List[SearchProbe] = []

    for _ in range(max(1, int(iterations))):
        try:
            result = await encode_at(q)
        except EncodeFailure as exc:
            logger.debug("Probe at q=%.3f failed: %s", q, exc)
            probes.append(SearchProbe(quality=q, byte_size=None, accepted=False))
            hi = q
            q = (q + lo) / 2
            continue
        if result.byte_size <= budget:
            probes.append(SearchProbe(quality=q, byte_size=result.byte_size, accepted=True))
            best = result
            lo = q
            q = (q + hi) / 2
        else:
            probes.append(SearchProbe(quality=q, byte_size=result.byte_size, accepted=False))
            hi = q
            q = (q + lo) / 2

    if best is not None:
        logger.info(
            "Size search met %d byte budget with %d bytes after %d probes",
            budget,
            best.byte_size,
            len(probes),
        )
        return SearchOutcome(result=best, met_target=True, probes=tuple(probes))

    fallback = await encode_at(lo)
    probes.append(SearchProbe(quality=lo, byte_size=fallback.byte_size, accepted=fallback.byte_size <= budget))
    logger.info(
        "Size search could not reach %d bytes; returning %d bytes at q=%.2f",
        budget,
        fallback.byte_size,
        lo,
    )
    return SearchOutcome(
        result=fallback,
        met_target=fallback.byte_size <= budget,
        probes=tuple(probes),
    )
