from __future__ import annotations

import io
from collections.abc import Callable, Iterator
from pathlib import Path

import pytest
from click.testing import CliRunner
from PIL import Image

from image_transcoder.render import capabilities


@pytest.fixture
def runner() -> CliRunner:
    """Provide a Click runner configured for CLI smoke tests."""

    return CliRunner()


@pytest.fixture(autouse=True)
def fresh_capabilities() -> Iterator[None]:
    """Reset the session-wide capability cache between tests."""

    capabilities.reset_process_capabilities()
    yield
    capabilities.reset_process_capabilities()


@pytest.fixture
def write_image(tmp_path: Path) -> Callable[..., Path]:
    """Return a helper that saves a solid-colour image under ``tmp_path``."""

    def _write(
        name: str = "photo.png",
        size: tuple[int, int] = (100, 50),
        mode: str = "RGBA",
        colour: object = (200, 40, 40, 255),
        fmt: str = "PNG",
    ) -> Path:
        buffer = io.BytesIO()
        Image.new(mode, size, colour).save(buffer, format=fmt)
        path = tmp_path / name
        path.write_bytes(buffer.getvalue())
        return path

    return _write
