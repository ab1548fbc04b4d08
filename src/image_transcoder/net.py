"""Fetch remote source images with retries/backoff."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from pathlib import PurePosixPath
from urllib.parse import unquote, urlsplit

import httpx

from .datatypes import NetConfig, SourceImage

__all__ = [
    "DEFAULT_CONNECT_TIMEOUT",
    "FetchError",
    "RETRY_STATUS",
    "fetch_source",
    "is_remote_source",
    "redact_url_for_logs",
]

logger = logging.getLogger(__name__)

RETRY_STATUS = frozenset({429, 500, 502, 503, 504})
"""HTTP status codes treated as transient and eligible for backoff."""

DEFAULT_CONNECT_TIMEOUT = 10.0
"""Upper bound (seconds) on the connect phase of a download."""

INITIAL_BACKOFF = 0.5
MAX_BACKOFF = 4.0

SleepFn = Callable[[float], Awaitable[None]]


class FetchError(RuntimeError):
    """Raised when a remote source cannot be downloaded."""


def is_remote_source(value: str) -> bool:
    """Return True when *value* looks like an http(s) URL."""

    scheme = urlsplit(value.strip()).scheme.lower()
    return scheme in {"http", "https"}


def redact_url_for_logs(url: str) -> str:
    """Return a safe identifier for URLs when logging (host only, no query)."""

    try:
        parsed = urlsplit(url)
    except (ValueError, AttributeError):
        return "url"
    if parsed.netloc:
        if parsed.hostname:
            return parsed.hostname
        return parsed.netloc
    return parsed.path or "url"


def _retry_delay_from_response(response: httpx.Response, fallback: float) -> float:
    """Compute the delay for the next retry using Retry-After when available."""

    retry_after = response.headers.get("Retry-After")
    try:
        delay = float(retry_after) if retry_after else fallback
    except ValueError:
        delay = fallback
    return max(0.1, min(delay, MAX_BACKOFF))


async def _get_with_retries(
    client: httpx.AsyncClient,
    url: str,
    *,
    retries: int,
    timeout: httpx.Timeout,
    sleep: SleepFn,
) -> httpx.Response:
    """GET *url*, retrying network errors and :data:`RETRY_STATUS` responses.

    The delay doubles after each attempt up to :data:`MAX_BACKOFF`; a
    ``Retry-After`` header overrides it. The last response is returned once
    retries run out so the caller can report its status.
    """

    host_label = redact_url_for_logs(url)
    backoff = INITIAL_BACKOFF
    attempts = max(0, retries) + 1
    attempt = 1
    while True:
        try:
            response = await client.get(url, timeout=timeout)
        except httpx.RequestError:
            if attempt >= attempts:
                raise
            delay = backoff
        else:
            if response.status_code not in RETRY_STATUS or attempt >= attempts:
                logger.debug("GET %s finished after %d attempt(s)", host_label, attempt)
                return response
            delay = _retry_delay_from_response(response, backoff)
        logger.info("GET %s retry #%d scheduled in %.2f s", host_label, attempt, delay)
        await sleep(delay)
        backoff = min(backoff * 2, MAX_BACKOFF)
        attempt += 1


def _name_from_url(url: str) -> str:
    segment = PurePosixPath(unquote(urlsplit(url).path)).name
    return segment or "image"


def _declared_length(response: httpx.Response) -> int | None:
    raw = response.headers.get("Content-Length")
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError:
        return None


async def fetch_source(
    url: str,
    *,
    config: NetConfig | None = None,
    client: httpx.AsyncClient | None = None,
    sleep: SleepFn | None = None,
) -> SourceImage:
    """
    Download *url* and wrap the body as a :class:`SourceImage`.

    Parameters:
        url: Absolute http(s) URL of the image.
        config: Retry count, timeout and size cap; defaults to :class:`NetConfig`.
        client: Optional pre-built client (tests inject fakes here).
        sleep: Optional sleep implementation used between retries.

    Raises:
        FetchError: On a non-success status, exhausted retries, a network error, or an oversize body.
        DecodeError: If the body is not a decodable image.
    """

    cfg = config or NetConfig()
    timeout = httpx.Timeout(
        cfg.timeout_seconds,
        connect=min(DEFAULT_CONNECT_TIMEOUT, cfg.timeout_seconds),
        read=cfg.timeout_seconds,
    )
    host_label = redact_url_for_logs(url)

    async def _get(active: httpx.AsyncClient) -> httpx.Response:
        try:
            return await _get_with_retries(
                active,
                url,
                retries=cfg.retries,
                timeout=timeout,
                sleep=sleep or asyncio.sleep,
            )
        except httpx.RequestError as exc:
            raise FetchError(f"Could not reach {host_label}: {exc}") from exc

    if client is not None:
        response = await _get(client)
    else:
        async with httpx.AsyncClient(follow_redirects=True) as owned:
            response = await _get(owned)

    if response.status_code >= 400:
        raise FetchError(f"GET {host_label} returned HTTP {response.status_code}")

    declared = _declared_length(response)
    if declared is not None and declared > cfg.max_bytes:
        raise FetchError(f"{host_label} advertises {declared} bytes; limit is {cfg.max_bytes}")
    body = response.content
    if len(body) > cfg.max_bytes:
        raise FetchError(f"{host_label} sent {len(body)} bytes; limit is {cfg.max_bytes}")
    if not body:
        raise FetchError(f"{host_label} returned an empty body")

    content_type = response.headers.get("Content-Type", "").split(";", 1)[0].strip().lower()
    mime_type = content_type if content_type.startswith("image/") else None
    logger.debug("Fetched %d bytes from %s", len(body), host_label)
    return SourceImage.from_bytes(body, mime_type=mime_type, name=_name_from_url(url))
