from __future__ import annotations

import io
from collections.abc import Callable
from pathlib import Path

import pytest
from click.testing import CliRunner
from PIL import Image

from image_transcoder import cli_entry
from image_transcoder.datatypes import NetConfig, SourceImage
from image_transcoder.net import FetchError

_ENV = {"COLUMNS": "200"}


def _size_of(path: Path) -> tuple[int, int]:
    with Image.open(path) as image:
        return image.size


def test_convert_writes_suggested_name_next_to_source(
    runner: CliRunner, write_image: Callable[..., Path]
) -> None:
    source = write_image()

    result = runner.invoke(cli_entry.main, ["convert", str(source), "--format", "png"], env=_ENV)

    assert result.exit_code == 0, result.output
    output = source.parent / "photo-converted.png"
    assert output.exists()
    assert _size_of(output) == (100, 50)
    assert "Done → photo-converted.png (" in result.output


def test_convert_locks_aspect_when_only_width_is_given(
    runner: CliRunner, write_image: Callable[..., Path]
) -> None:
    source = write_image()

    result = runner.invoke(
        cli_entry.main,
        ["convert", str(source), "--format", "webp", "--width", "50"],
        env=_ENV,
    )

    assert result.exit_code == 0, result.output
    output = source.parent / "photo-resized.webp"
    assert _size_of(output) == (50, 25)


def test_convert_scale_and_cover(runner: CliRunner, write_image: Callable[..., Path]) -> None:
    source = write_image()
    target = source.parent / "square.jpg"

    scaled = runner.invoke(
        cli_entry.main,
        ["convert", str(source), "--format", "jpeg", "--scale", "50", "-o", str(target)],
        env=_ENV,
    )
    assert scaled.exit_code == 0, scaled.output
    assert _size_of(target) == (50, 25)

    covered = runner.invoke(
        cli_entry.main,
        [
            "convert",
            str(source),
            "--format",
            "jpeg",
            "--width",
            "40",
            "--height",
            "40",
            "--fit",
            "cover",
            "--anchor",
            "top-left",
            "-o",
            str(target),
        ],
        env=_ENV,
    )
    assert covered.exit_code == 0, covered.output
    assert _size_of(target) == (40, 40)


def test_convert_with_target_size_reports_budget(
    runner: CliRunner, tmp_path: Path
) -> None:
    source = tmp_path / "noise.png"
    Image.effect_noise((96, 96), 70).convert("RGB").save(source, format="PNG")

    result = runner.invoke(
        cli_entry.main,
        ["convert", str(source), "--format", "jpeg", "--target-size", "4", "--size-unit", "kb"],
        env=_ENV,
    )

    assert result.exit_code == 0, result.output
    assert (tmp_path / "noise-compressed.jpg").exists()
    assert "Target was ≤ 4.0 KB." in result.output


def test_convert_keep_preserves_jpeg(runner: CliRunner, write_image: Callable[..., Path]) -> None:
    source = write_image(name="shot.jpg", mode="RGB", colour=(0, 0, 255), fmt="JPEG")

    result = runner.invoke(cli_entry.main, ["convert", str(source), "--format", "keep"], env=_ENV)

    assert result.exit_code == 0, result.output
    with Image.open(source.parent / "shot-converted.jpg") as image:
        assert image.format == "JPEG"


def test_convert_uses_config_defaults(
    runner: CliRunner, write_image: Callable[..., Path], tmp_path: Path
) -> None:
    source = write_image()
    config = tmp_path / "config.toml"
    config.write_text('[transcode]\nformat = "jpeg"\nquality = 60\n', encoding="utf-8")

    result = runner.invoke(cli_entry.main, ["convert", str(source), "--config", str(config)], env=_ENV)

    assert result.exit_code == 0, result.output
    assert (tmp_path / "photo-converted.jpg").exists()


def test_convert_reports_invalid_config(
    runner: CliRunner, write_image: Callable[..., Path], tmp_path: Path
) -> None:
    source = write_image()
    config = tmp_path / "config.toml"
    config.write_text("[search]\niterations = 0\n", encoding="utf-8")

    result = runner.invoke(cli_entry.main, ["convert", str(source), "--config", str(config)], env=_ENV)

    assert result.exit_code == 1
    assert "search.iterations must be >= 1" in result.output


def test_convert_reports_decode_errors(runner: CliRunner, tmp_path: Path) -> None:
    source = tmp_path / "broken.png"
    source.write_bytes(b"definitely not a png")

    result = runner.invoke(cli_entry.main, ["convert", str(source)], env=_ENV)

    assert result.exit_code == 1
    assert "Error: Unreadable image data" in result.output
    assert not list(tmp_path.glob("broken-*"))


def test_convert_reports_missing_files(runner: CliRunner, tmp_path: Path) -> None:
    result = runner.invoke(cli_entry.main, ["convert", str(tmp_path / "absent.png")], env=_ENV)

    assert result.exit_code == 1
    assert "Cannot read" in result.output


def test_convert_fetches_urls(
    runner: CliRunner, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    buffer = io.BytesIO()
    Image.new("RGB", (30, 20), "yellow").save(buffer, format="PNG")
    seen: list[str] = []

    async def fake_fetch(url: str, *, config: NetConfig | None = None) -> SourceImage:
        seen.append(url)
        return SourceImage.from_bytes(buffer.getvalue(), name="remote.png")

    monkeypatch.setattr(cli_entry, "fetch_source", fake_fetch)
    target = tmp_path / "remote.webp"

    result = runner.invoke(
        cli_entry.main,
        ["convert", "https://example.com/remote.png", "--format", "webp", "-o", str(target)],
        env=_ENV,
    )

    assert result.exit_code == 0, result.output
    assert seen == ["https://example.com/remote.png"]
    assert _size_of(target) == (30, 20)


def test_convert_reports_fetch_failures(
    runner: CliRunner, monkeypatch: pytest.MonkeyPatch
) -> None:
    async def failing_fetch(url: str, *, config: NetConfig | None = None) -> SourceImage:
        raise FetchError("GET example.com returned HTTP 404")

    monkeypatch.setattr(cli_entry, "fetch_source", failing_fetch)

    result = runner.invoke(cli_entry.main, ["convert", "https://example.com/gone.png"], env=_ENV)

    assert result.exit_code == 1
    assert "Error: GET example.com returned HTTP 404" in result.output


def test_probe_lists_formats(runner: CliRunner) -> None:
    result = runner.invoke(cli_entry.main, ["probe"], env=_ENV)

    assert result.exit_code == 0, result.output
    lines = result.output.splitlines()
    assert any(line.startswith("png") and line.rstrip().endswith("yes") for line in lines)
    assert any(line.startswith("jpeg") and line.rstrip().endswith("yes") for line in lines)
    assert any(line.startswith("avif") for line in lines)
