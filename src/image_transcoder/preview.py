"""Debounced live preview with last-initiated-wins completion."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any, Dict, Optional, Set

from image_transcoder.datatypes import (
    AppConfig,
    EncodedResult,
    PreviewRequest,
    RenderOptions,
    SourceImage,
)
from image_transcoder.naming import error_message, format_bytes
from image_transcoder.render.capabilities import CapabilityCache
from image_transcoder.render.errors import TranscodeError
from image_transcoder.transcode import build_encoder, transcode

__all__ = [
    "DEFAULT_DEBOUNCE_SECONDS",
    "GenerationCounter",
    "PreviewController",
    "PreviewState",
    "preview_for_source",
    "transcode_renderer",
]

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_SECONDS = 0.35

RenderFn = Callable[[PreviewRequest], Awaitable[Optional[EncodedResult]]]
DisplayFn = Callable[[PreviewRequest, Optional[EncodedResult]], None]
SleepFn = Callable[[float], Awaitable[None]]


class PreviewState(str, Enum):
    """Lifecycle of a preview request."""

    IDLE = "idle"
    PENDING = "pending"
    RENDERING = "rendering"
    DISPLAYED = "displayed"
    DISCARDED = "discarded"
    FAILED = "failed"


_TERMINAL = frozenset({PreviewState.DISPLAYED, PreviewState.DISCARDED, PreviewState.FAILED})


class GenerationCounter:
    """Monotonic request counter shared by whoever needs to judge staleness."""

    def __init__(self, start: int = 0) -> None:
        self._value = int(start)

    @property
    def current(self) -> int:
        return self._value

    def advance(self) -> int:
        self._value += 1
        return self._value

    def is_current(self, generation: int) -> bool:
        return generation == self._value


class PreviewController:
    """
    Schedule preview renders after a quiet period and display only the newest.

    Every :meth:`submit` bumps the generation and restarts the debounce timer.
    Once a render starts it is never cancelled; when it completes its
    generation is compared with the counter and the result is either shown
    (``displayed``) or dropped (``discarded``).
    Only the two newest generations are remembered once finished; older ones
    report ``idle`` from :meth:`state_of`.
    """

    def __init__(
        self,
        render: RenderFn,
        *,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
        counter: Optional[GenerationCounter] = None,
        on_display: Optional[DisplayFn] = None,
        on_status: Optional[Callable[[str], None]] = None,
        sleep: Optional[SleepFn] = None,
    ) -> None:
        self._render = render
        self.debounce_seconds = max(0.0, float(debounce_seconds))
        self.counter = counter if counter is not None else GenerationCounter()
        self._on_display = on_display
        self._on_status = on_status
        self._sleep = sleep or asyncio.sleep
        self._timer: Optional[asyncio.Task[None]] = None
        self._inflight: Set[asyncio.Task[None]] = set()
        self._states: Dict[int, PreviewState] = {}
        self.displayed: Optional[PreviewRequest] = None
        self.result: Optional[EncodedResult] = None
        self.status: str = ""
        self.render_count = 0

    @property
    def state(self) -> PreviewState:
        """State of the newest request, or ``idle`` before the first submit."""

        return self._states.get(self.counter.current, PreviewState.IDLE)

    @property
    def busy(self) -> bool:
        return bool(self._inflight) or (self._timer is not None and not self._timer.done())

    def state_of(self, generation: int) -> PreviewState:
        return self._states.get(generation, PreviewState.IDLE)

    def submit(self, params: Any) -> PreviewRequest:
        """Record a parameter change and (re)start the debounce window.

        Must be called from within a running event loop.
        """

        request = PreviewRequest(params=params, generation=self.counter.advance())
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
            self._mark_superseded()
            self._prune()
        self._states[request.generation] = PreviewState.PENDING
        self._timer = asyncio.get_running_loop().create_task(self._debounce(request))
        return request

    def _mark_superseded(self) -> None:
        for generation, state in self._states.items():
            if state is PreviewState.PENDING and not self.counter.is_current(generation):
                self._states[generation] = PreviewState.DISCARDED

    async def _debounce(self, request: PreviewRequest) -> None:
        await self._sleep(self.debounce_seconds)
        task = asyncio.get_running_loop().create_task(self._run(request))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    async def _run(self, request: PreviewRequest) -> None:
        self._states[request.generation] = PreviewState.RENDERING
        self.render_count += 1
        try:
            result = await self._render(request)
        except Exception as exc:
            self._complete_failed(request, exc)
            return
        self._complete(request, result)

    def _complete(self, request: PreviewRequest, result: Optional[EncodedResult]) -> None:
        if not self.counter.is_current(request.generation):
            self._states[request.generation] = PreviewState.DISCARDED
            logger.debug(
                "Discarding stale preview generation %d (current %d)",
                request.generation,
                self.counter.current,
            )
            self._prune()
            return
        self._states[request.generation] = PreviewState.DISPLAYED
        self.displayed = request
        self.result = result
        if result is not None:
            self._set_status(f"Preview {result.format.value.upper()} ({format_bytes(result.byte_size)})")
        if self._on_display is not None:
            self._on_display(request, result)
        self._prune()

    def _complete_failed(self, request: PreviewRequest, exc: Exception) -> None:
        if not self.counter.is_current(request.generation):
            self._states[request.generation] = PreviewState.DISCARDED
            logger.debug("Stale preview generation %d failed: %s", request.generation, exc)
            self._prune()
            return
        self._states[request.generation] = PreviewState.FAILED
        logger.warning(
            "Preview render failed: %s",
            exc,
            exc_info=not isinstance(exc, TranscodeError),
        )
        self._set_status(error_message(exc))
        self._prune()

    def _prune(self) -> None:
        floor = self.counter.current - 1
        for generation in [g for g, state in self._states.items() if g < floor and state in _TERMINAL]:
            del self._states[generation]

    def _set_status(self, message: str) -> None:
        self.status = message
        if self._on_status is not None:
            self._on_status(message)

    async def drain(self) -> None:
        """Wait until the pending timer and every in-flight render have finished."""

        while True:
            pending = set(self._inflight)
            if self._timer is not None and not self._timer.done():
                pending.add(self._timer)
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    def close(self) -> None:
        """Cancel the pending debounce timer; in-flight renders run to completion."""

        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
            self._states[self.counter.current] = PreviewState.DISCARDED


def transcode_renderer(
    source: SourceImage,
    *,
    config: Optional[AppConfig] = None,
    capabilities: Optional[CapabilityCache] = None,
    alpha_hint: Optional[bool] = None,
) -> RenderFn:
    """Return a render callback that transcodes *source* with each request's ``RenderOptions``."""

    encoder = build_encoder(config, capabilities)

    async def _render(request: PreviewRequest) -> Optional[EncodedResult]:
        options = request.params
        if not isinstance(options, RenderOptions):
            raise TypeError("preview params must be RenderOptions")
        return await transcode(
            source,
            options,
            config=config,
            alpha_hint=alpha_hint,
            encoder=encoder,
        )

    return _render


def preview_for_source(
    source: SourceImage,
    *,
    config: Optional[AppConfig] = None,
    capabilities: Optional[CapabilityCache] = None,
    on_display: Optional[DisplayFn] = None,
    on_status: Optional[Callable[[str], None]] = None,
) -> PreviewController:
    """Build a controller wired to :func:`transcode` using the configured debounce window."""

    cfg = config or AppConfig()
    return PreviewController(
        transcode_renderer(source, config=cfg, capabilities=capabilities),
        debounce_seconds=cfg.preview.debounce_ms / 1000,
        on_display=on_display,
        on_status=on_status,
    )
