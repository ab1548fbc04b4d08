from __future__ import annotations

import asyncio
import io
from typing import List, cast

import httpx
import pytest
from PIL import Image

from image_transcoder import net
from image_transcoder.datatypes import NetConfig
from image_transcoder.render.errors import DecodeError

ReadTimeout = httpx.ReadTimeout  # type: ignore[attr-defined]


def _png_bytes() -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (12, 8), "green").save(buffer, format="PNG")
    return buffer.getvalue()


def _image_response(status_code: int = 200) -> httpx.Response:
    return httpx.Response(status_code=status_code, content=_png_bytes(), headers={"Content-Type": "image/png"})


class ScriptedClient:
    """Replays a fixed list of responses (or exceptions) for successive GETs."""

    def __init__(self, *outcomes: httpx.Response | Exception) -> None:
        self.outcomes = list(outcomes)
        self.timeouts: list[httpx.Timeout | None] = []
        self.paths: List[str] = []

    async def get(self, path: str, timeout: httpx.Timeout | None = None) -> httpx.Response:
        self.paths.append(path)
        self.timeouts.append(timeout)
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def _fetch(client: ScriptedClient, url: str = "https://example.com/a.png", **kwargs: object):
    return asyncio.run(net.fetch_source(url, client=cast(httpx.AsyncClient, client), **kwargs))


def test_fetch_uses_configured_timeout() -> None:
    client = ScriptedClient(_image_response())

    _fetch(client, config=NetConfig(timeout_seconds=12.0))

    timeout = client.timeouts[0]
    assert timeout is not None
    assert timeout.read == pytest.approx(12.0)
    assert timeout.connect == pytest.approx(net.DEFAULT_CONNECT_TIMEOUT)
    assert client.paths == ["https://example.com/a.png"]


def test_fetch_retries_transient_statuses_and_doubles_delay() -> None:
    client = ScriptedClient(httpx.Response(status_code=503), httpx.Response(status_code=502), _image_response())
    sleep = RecordingSleep()

    source = _fetch(client, config=NetConfig(retries=3), sleep=sleep)

    assert source.width == 12
    assert sleep.delays == [0.5, 1.0]


def test_fetch_honours_retry_after_header() -> None:
    client = ScriptedClient(httpx.Response(status_code=429, headers={"Retry-After": "2"}), _image_response())
    sleep = RecordingSleep()

    _fetch(client, sleep=sleep)

    assert sleep.delays == [2.0]


def test_fetch_reports_last_status_after_exhausting_retries() -> None:
    client = ScriptedClient(httpx.Response(status_code=500), httpx.Response(status_code=500))
    sleep = RecordingSleep()

    with pytest.raises(net.FetchError, match="HTTP 500"):
        _fetch(client, config=NetConfig(retries=1), sleep=sleep)
    assert len(sleep.delays) == 1


def test_fetch_retries_network_errors() -> None:
    request = httpx.Request("GET", "https://example.com/a.png")
    client = ScriptedClient(httpx.ConnectError("refused", request=request), _image_response())
    sleep = RecordingSleep()

    source = _fetch(client, sleep=sleep)

    assert source.height == 8
    assert sleep.delays == [0.5]


def test_fetch_source_wraps_image_bytes() -> None:
    body = _png_bytes()
    client = ScriptedClient(
        httpx.Response(status_code=200, content=body, headers={"Content-Type": "image/png; charset=binary"})
    )

    source = asyncio.run(
        net.fetch_source("https://cdn.example.com/img/My%20Photo.png?sig=secret", client=cast(httpx.AsyncClient, client))
    )

    assert (source.width, source.height) == (12, 8)
    assert source.mime_type == "image/png"
    assert source.name == "My Photo.png"
    assert source.byte_size == len(body)


def test_fetch_source_reports_http_errors() -> None:
    client = ScriptedClient(httpx.Response(status_code=404))
    with pytest.raises(net.FetchError, match="HTTP 404"):
        asyncio.run(net.fetch_source("https://example.com/missing.png", client=cast(httpx.AsyncClient, client)))


def test_fetch_source_enforces_size_limit() -> None:
    client = ScriptedClient(httpx.Response(status_code=200, content=b"x" * 64))
    with pytest.raises(net.FetchError, match="limit is 16"):
        asyncio.run(
            net.fetch_source(
                "https://example.com/big.png",
                config=NetConfig(max_bytes=16),
                client=cast(httpx.AsyncClient, client),
            )
        )


def test_fetch_source_wraps_network_errors() -> None:
    request = httpx.Request("GET", "https://example.com/slow.png")
    client = ScriptedClient(ReadTimeout("timed out", request=request))
    sleep = RecordingSleep()

    with pytest.raises(net.FetchError, match="Could not reach example.com"):
        asyncio.run(
            net.fetch_source(
                "https://example.com/slow.png",
                config=NetConfig(retries=0),
                client=cast(httpx.AsyncClient, client),
                sleep=sleep,
            )
        )


def test_fetch_source_rejects_non_images() -> None:
    client = ScriptedClient(httpx.Response(status_code=200, content=b"<html></html>"))
    with pytest.raises(DecodeError):
        asyncio.run(net.fetch_source("https://example.com/page", client=cast(httpx.AsyncClient, client)))


def test_redact_url_for_logs_drops_path_and_query() -> None:
    assert net.redact_url_for_logs("https://user:pw@example.com/a?token=1") == "example.com"
    assert net.redact_url_for_logs("relative/path") == "relative/path"


def test_is_remote_source() -> None:
    assert net.is_remote_source("https://example.com/a.png")
    assert net.is_remote_source(" HTTP://example.com/a.png")
    assert not net.is_remote_source("/tmp/a.png")
    assert not net.is_remote_source("C:\\images\\a.png")
