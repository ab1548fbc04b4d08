"""Click CLI wiring and entry points for image_transcoder."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional

import click
from rich import print
from rich.logging import RichHandler
from rich.markup import escape

from image_transcoder.config_loader import ConfigError, load_config
from image_transcoder.datatypes import (
    Anchor,
    AppConfig,
    FilterSettings,
    FitMode,
    OutputFormat,
    RenderOptions,
    SourceImage,
)
from image_transcoder.naming import done_message, error_message, format_bytes, suggest_name
from image_transcoder.net import FetchError, fetch_source, is_remote_source
from image_transcoder.render.capabilities import CapabilityCache, process_capabilities
from image_transcoder.render.errors import TranscodeError
from image_transcoder.render.geometry import format_dimensions, lock_aspect, scale_dimensions
from image_transcoder.transcode import KEEP_FORMAT, resolve_keep_format, transcode

__all__ = ["main"]

logger = logging.getLogger(__name__)

_SIZE_UNITS = {"KB": 1024, "MB": 1024 * 1024}
_FORMAT_CHOICES = [fmt.value for fmt in OutputFormat] + [KEEP_FORMAT]


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True)],
    )


def _load_app_config(config_path: Optional[str]) -> AppConfig:
    try:
        return load_config(config_path)
    except ConfigError as exc:
        raise click.ClickException(f"Config parsing failed: {exc}") from exc


def _read_source(source: str, config: AppConfig) -> SourceImage:
    """Load *source* from disk or, for http(s) URLs, over the network."""

    if is_remote_source(source):
        return asyncio.run(fetch_source(source, config=config.net))
    path = Path(source).expanduser()
    try:
        data = path.read_bytes()
    except OSError as exc:
        raise click.ClickException(f"Cannot read {path}: {exc.strerror or exc}") from exc
    return SourceImage.from_bytes(data, name=path.name)


def _resolve_dimensions(
    source: SourceImage,
    *,
    width: Optional[float],
    height: Optional[float],
    scale: Optional[float],
) -> tuple[Optional[float], Optional[float]]:
    if scale is not None:
        return scale_dimensions(source.width, source.height, scale)
    if width is not None and height is not None:
        return (width, height)
    if width is None and height is None:
        return (None, None)
    return lock_aspect(source.width, source.height, width=width, height=height)


def _suffix_for(options: RenderOptions, source: SourceImage) -> str:
    if options.target_bytes:
        return "compressed"
    resized = options.width is not None and (
        int(round(options.width)) != source.width
        or int(round(options.height or source.height)) != source.height
    )
    return "resized" if resized else "converted"


def _default_output(source_arg: str, source: SourceImage, options: RenderOptions, fmt: OutputFormat) -> Path:
    name = suggest_name(source.name, _suffix_for(options, source), fmt)
    if is_remote_source(source_arg):
        return Path.cwd() / name
    return Path(source_arg).expanduser().parent / name


@click.group()
def main() -> None:
    """Transcode, resize and compress raster images in memory."""


@main.command("convert")
@click.argument("source")
@click.option("-o", "--output", "output", default=None, type=click.Path(dir_okay=False), help="Output file path.")
@click.option(
    "--format",
    "format_name",
    type=click.Choice(_FORMAT_CHOICES, case_sensitive=False),
    default=None,
    help="Output format; 'keep' preserves the source format. Defaults to [transcode].format.",
)
@click.option("--quality", type=click.IntRange(1, 100), default=None, help="Encoder quality 1-100 for lossy formats.")
@click.option("--width", type=float, default=None, help="Target width in pixels.")
@click.option("--height", type=float, default=None, help="Target height in pixels.")
@click.option("--scale", type=click.FloatRange(min=1), default=None, help="Scale both dimensions by a percentage.")
@click.option(
    "--fit",
    "fit_mode",
    type=click.Choice([mode.value for mode in FitMode], case_sensitive=False),
    default=None,
    help="contain letterboxes, cover crops.",
)
@click.option(
    "--anchor",
    type=click.Choice([anchor.value for anchor in Anchor], case_sensitive=False),
    default=None,
    help="Crop anchor for --fit cover.",
)
@click.option("--background", default=None, help="Fill colour for letterbox or flattened transparency.")
@click.option("--brightness", type=click.FloatRange(min=0), default=100.0, show_default=True, help="Brightness percent.")
@click.option("--contrast", type=click.FloatRange(min=0), default=100.0, show_default=True, help="Contrast percent.")
@click.option("--saturation", type=click.FloatRange(min=0), default=100.0, show_default=True, help="Saturation percent.")
@click.option("--target-size", type=click.FloatRange(min=0, min_open=True), default=None, help="Maximum output size.")
@click.option(
    "--size-unit",
    type=click.Choice(sorted(_SIZE_UNITS), case_sensitive=False),
    default="KB",
    show_default=True,
    help="Unit for --target-size.",
)
@click.option("--config", "config_path", default=None, type=click.Path(dir_okay=False), help="Path to a TOML config.")
@click.option("--verbose", is_flag=True, help="Show debug logging.")
def convert(
    source: str,
    output: Optional[str],
    format_name: Optional[str],
    quality: Optional[int],
    width: Optional[float],
    height: Optional[float],
    scale: Optional[float],
    fit_mode: Optional[str],
    anchor: Optional[str],
    background: Optional[str],
    brightness: float,
    contrast: float,
    saturation: float,
    target_size: Optional[float],
    size_unit: str,
    config_path: Optional[str],
    verbose: bool,
) -> None:
    """Render SOURCE (a path or http(s) URL) and write the encoded result."""

    _configure_logging(verbose)
    config = _load_app_config(config_path)

    try:
        image = _read_source(source, config)
    except (FetchError, TranscodeError) as exc:
        print(f"[red]{escape(error_message(exc))}[/red]")
        raise click.exceptions.Exit(1) from exc

    requested = (format_name or config.transcode.format.value).lower()
    fmt = resolve_keep_format(image.mime_type) if requested == KEEP_FORMAT else OutputFormat.parse(requested)
    out_w, out_h = _resolve_dimensions(image, width=width, height=height, scale=scale)
    target_bytes = None
    if target_size is not None:
        target_bytes = max(1, int(round(target_size * _SIZE_UNITS[size_unit.upper()])))

    options = RenderOptions(
        format=fmt,
        quality=quality if quality is not None else config.transcode.quality,
        width=out_w,
        height=out_h,
        fit_mode=FitMode(fit_mode.lower()) if fit_mode else config.transcode.fit_mode,
        anchor=Anchor(anchor.lower()) if anchor else config.transcode.anchor,
        background=background,
        filters=FilterSettings(brightness=brightness, contrast=contrast, saturation=saturation),
        target_bytes=target_bytes,
    )

    try:
        result = asyncio.run(transcode(image, options, config=config))
    except TranscodeError as exc:
        print(f"[red]{escape(error_message(exc))}[/red]")
        raise click.exceptions.Exit(1) from exc

    destination = Path(output).expanduser() if output else _default_output(source, image, options, result.format)
    try:
        destination.write_bytes(result.data)
    except OSError as exc:
        print(f"[red]{escape(error_message(exc))}[/red]")
        raise click.exceptions.Exit(1) from exc

    logger.debug(
        "Wrote %s (%s, %s)",
        destination,
        format_dimensions(int(out_w or image.width), int(out_h or image.height)),
        format_bytes(result.byte_size),
    )
    print(escape(done_message(destination.name, result, target_bytes=target_bytes)))


@main.command("probe")
@click.option("--verbose", is_flag=True, help="Show debug logging.")
def probe(verbose: bool) -> None:
    """List which output formats this runtime can encode."""

    _configure_logging(verbose)
    cache: CapabilityCache = process_capabilities()
    for fmt in OutputFormat:
        supported = cache.is_supported(fmt)
        marker = "[green]yes[/green]" if supported else "[red]no[/red]"
        print(f"{fmt.value:<5} {fmt.mime_type:<11} {marker}")


if __name__ == "__main__":
    main()
