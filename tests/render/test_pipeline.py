from __future__ import annotations

import asyncio
import io
import logging
from typing import List

import pytest
from PIL import Image

from image_transcoder.datatypes import FilterSettings, FitMode, OutputFormat, SourceImage
from image_transcoder.render import pipeline
from image_transcoder.render.errors import DecodeError, SurfaceAllocationError
from image_transcoder.render.geometry import resolve_geometry


def _png_source(image: Image.Image, name: str = "sample.png") -> SourceImage:
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return SourceImage.from_bytes(buffer.getvalue(), name=name)


def test_read_source_header_reports_size_and_mime() -> None:
    source = _png_source(Image.new("RGB", (40, 30), "red"))
    assert (source.width, source.height) == (40, 30)
    assert source.mime_type == "image/png"
    assert source.byte_size == len(source.data)


def test_read_source_header_rejects_garbage() -> None:
    with pytest.raises(DecodeError):
        pipeline.read_source_header(b"not an image")


def test_decode_source_rejects_garbage() -> None:
    source = SourceImage(data=b"\x89PNG broken", width=10, height=10, byte_size=12)
    with pytest.raises(DecodeError):
        asyncio.run(pipeline.decode_source(source))


def test_contain_leaves_letterbox_transparent_for_alpha_formats() -> None:
    source = _png_source(Image.new("RGBA", (100, 50), (255, 0, 0, 255)))
    plan = resolve_geometry(100, 50, 50, 50, FitMode.CONTAIN)

    surface = asyncio.run(pipeline.render_surface(source, plan, OutputFormat.PNG))

    assert surface.size == (50, 50)
    assert surface.getpixel((0, 0))[3] == 0
    assert surface.getpixel((25, 25)) == (255, 0, 0, 255)


def test_letterbox_is_filled_for_alpha_incapable_formats() -> None:
    source = _png_source(Image.new("RGB", (100, 50), (255, 0, 0)))
    plan = resolve_geometry(100, 50, 50, 50, FitMode.CONTAIN)

    surface = asyncio.run(pipeline.render_surface(source, plan, OutputFormat.JPEG))

    assert surface.getpixel((0, 0)) == (255, 255, 255, 255)


def test_explicit_background_fills_even_for_alpha_formats() -> None:
    source = _png_source(Image.new("RGBA", (100, 50), (255, 0, 0, 255)))
    plan = resolve_geometry(100, 50, 50, 50, FitMode.CONTAIN)

    surface = asyncio.run(
        pipeline.render_surface(source, plan, OutputFormat.WEBP, background="#000000")
    )

    assert surface.getpixel((0, 0)) == (0, 0, 0, 255)


def test_default_background_applies_when_fill_is_required() -> None:
    source = _png_source(Image.new("RGB", (100, 50), (255, 0, 0)))
    plan = resolve_geometry(100, 50, 50, 50, FitMode.CONTAIN)

    surface = asyncio.run(
        pipeline.render_surface(source, plan, OutputFormat.JPEG, default_background="#00ff00")
    )

    assert surface.getpixel((0, 0)) == (0, 255, 0, 255)


def test_alpha_probe_runs_only_when_needed() -> None:
    transparent = Image.new("RGBA", (20, 20), (0, 0, 255, 0))
    source = _png_source(transparent)
    plan = resolve_geometry(20, 20, 20, 20)
    seen: List[Image.Image] = []

    def probe(image: Image.Image) -> bool:
        seen.append(image)
        return True

    surface = asyncio.run(
        pipeline.render_surface(source, plan, OutputFormat.JPEG, alpha_probe=probe)
    )
    assert len(seen) == 1
    assert surface.getpixel((10, 10)) == (255, 255, 255, 255)

    asyncio.run(pipeline.render_surface(source, plan, OutputFormat.PNG, alpha_probe=probe))
    asyncio.run(
        pipeline.render_surface(source, plan, OutputFormat.JPEG, has_alpha=False, alpha_probe=probe)
    )
    assert len(seen) == 1


def test_cover_samples_anchored_region() -> None:
    image = Image.new("RGB", (200, 100), (0, 0, 255))
    image.paste((255, 0, 0), (0, 0, 100, 100))
    source = _png_source(image)

    left = resolve_geometry(200, 100, 50, 50, FitMode.COVER, "left")
    right = resolve_geometry(200, 100, 50, 50, FitMode.COVER, "right")

    left_surface = asyncio.run(pipeline.render_surface(source, left, OutputFormat.PNG))
    right_surface = asyncio.run(pipeline.render_surface(source, right, OutputFormat.PNG))

    assert left_surface.getpixel((25, 25)) == (255, 0, 0, 255)
    assert right_surface.getpixel((25, 25)) == (0, 0, 255, 255)


def test_filters_adjust_colour_but_keep_alpha() -> None:
    image = Image.new("RGBA", (4, 4), (200, 100, 50, 128))
    darkened = pipeline.apply_filters(image, FilterSettings(brightness=0))

    assert darkened.getpixel((0, 0)) == (0, 0, 0, 128)
    assert pipeline.apply_filters(image, FilterSettings()) is image
    assert pipeline.apply_filters(image, None) is image


def test_zero_saturation_produces_grey() -> None:
    image = Image.new("RGB", (2, 2), (255, 0, 0))
    grey = pipeline.apply_filters(image, FilterSettings(saturation=0))
    red, green, blue, _ = grey.getpixel((0, 0))
    assert red == green == blue


def test_parse_colour_falls_back_with_warning(caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.WARNING, logger="image_transcoder.render.pipeline"):
        colour = pipeline.parse_colour("not-a-colour")
    assert colour == (255, 255, 255, 255)
    assert "Invalid background colour" in caplog.text
    assert pipeline.parse_colour("#ff000080") == (255, 0, 0, 128)


def test_allocate_surface_reports_failures() -> None:
    with pytest.raises(SurfaceAllocationError):
        pipeline.allocate_surface(-1, 5)


def test_surface_is_closed_when_compositing_fails(monkeypatch: pytest.MonkeyPatch) -> None:
    closed: List[bool] = []
    real_allocate = pipeline.allocate_surface

    def tracking_allocate(*args, **kwargs):
        surface = real_allocate(*args, **kwargs)
        real_close = surface.close

        def close() -> None:
            closed.append(True)
            real_close()

        surface.close = close
        return surface

    def failing_blit(*args, **kwargs) -> None:
        raise MemoryError("patch too large")

    monkeypatch.setattr(pipeline, "allocate_surface", tracking_allocate)
    monkeypatch.setattr(pipeline, "_blit", failing_blit)
    source = _png_source(Image.new("RGB", (20, 20), "red"))

    with pytest.raises(MemoryError):
        asyncio.run(pipeline.render_surface(source, resolve_geometry(20, 20, 10, 10), OutputFormat.PNG))
    assert closed == [True]
