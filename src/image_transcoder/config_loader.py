"""Configuration loader that parses and validates user-provided TOML."""

from __future__ import annotations

import math
import tomllib
from dataclasses import fields
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

from PIL import ImageColor

from .datatypes import (
    AppConfig,
    NetConfig,
    PreviewConfig,
    SearchConfig,
    TranscodeConfig,
)

__all__ = ["ConfigError", "load_config"]


class ConfigError(ValueError):
    """Raised when the configuration file is malformed or fails validation."""


def _coerce_enum(value: Any, dotted_key: str, enum_type: type[Enum]) -> Enum:
    """Return an enum member, coercing string values case-insensitively."""

    if isinstance(value, enum_type):
        return value
    if isinstance(value, str):
        normalized = value.strip().lower()
        for member in enum_type:
            member_value = str(member.value).lower()
            if normalized == member_value:
                return member
    raise ConfigError(
        f"{dotted_key} must be one of: {', '.join(str(member.value) for member in enum_type)}"
    )


def _sanitize_section(raw: dict[str, Any], name: str, cls):
    """
    Coerce a raw TOML table into an instance of ``cls`` with cleaned enums.

    Parameters:
        raw (dict[str, Any]): Raw TOML section data.
        name (str): Section name used when reporting validation errors.
        cls: Dataclass type used to construct the section object.

    Returns:
        Any: Instantiated dataclass populated with values from ``raw``.

    Raises:
        ConfigError: If the section is not a table or contains invalid keys or values.
    """
    if not isinstance(raw, dict):
        raise ConfigError(f"[{name}] must be a table")
    enum_fields = {
        field.name: field.type
        for field in fields(cls)
        if isinstance(field.type, type) and issubclass(field.type, Enum)
    }
    cleaned: Dict[str, Any] = {}
    for key, value in raw.items():
        if key in enum_fields:
            cleaned[key] = _coerce_enum(value, f"{name}.{key}", enum_fields[key])
        else:
            cleaned[key] = value
    try:
        return cls(**cleaned)
    except TypeError as exc:
        raise ConfigError(f"Invalid keys in [{name}]: {exc}") from exc


def _normalize_int(value: Any, dotted_key: str) -> int:
    """Return ``value`` as an int, rejecting bools and fractional numbers."""

    if isinstance(value, bool):
        raise ConfigError(f"{dotted_key} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    raise ConfigError(f"{dotted_key} must be an integer")


def _normalize_float(value: Any, dotted_key: str) -> float:
    """Return ``value`` as a finite float, raising ConfigError otherwise."""

    if isinstance(value, bool):
        raise ConfigError(f"{dotted_key} must be a number")
    try:
        numeric = float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{dotted_key} must be a number") from exc
    if not math.isfinite(numeric):
        raise ConfigError(f"{dotted_key} must be a finite number")
    return numeric


def _validate_transcode(section: TranscodeConfig) -> None:
    quality = _normalize_int(section.quality, "transcode.quality")
    if quality < 1 or quality > 100:
        raise ConfigError("transcode.quality must be between 1 and 100")
    section.quality = quality

    level = _normalize_int(section.png_compression_level, "transcode.png_compression_level")
    if level not in (0, 1, 2):
        raise ConfigError("transcode.png_compression_level must be 0, 1, or 2")
    section.png_compression_level = level

    probe = _normalize_int(section.alpha_probe_max_dimension, "transcode.alpha_probe_max_dimension")
    if probe < 1:
        raise ConfigError("transcode.alpha_probe_max_dimension must be >= 1")
    section.alpha_probe_max_dimension = probe

    if not isinstance(section.background, str) or not section.background.strip():
        raise ConfigError("transcode.background must be a colour string")
    try:
        ImageColor.getrgb(section.background.strip())
    except ValueError as exc:
        raise ConfigError(f"transcode.background is not a valid colour: {section.background!r}") from exc
    section.background = section.background.strip()


def _validate_preview(section: PreviewConfig) -> None:
    debounce = _normalize_int(section.debounce_ms, "preview.debounce_ms")
    if debounce < 0:
        raise ConfigError("preview.debounce_ms must be >= 0")
    section.debounce_ms = debounce


def _validate_search(section: SearchConfig) -> None:
    iterations = _normalize_int(section.iterations, "search.iterations")
    if iterations < 1:
        raise ConfigError("search.iterations must be >= 1")
    section.iterations = iterations

    lower = _normalize_float(section.min_quality, "search.min_quality")
    upper = _normalize_float(section.max_quality, "search.max_quality")
    if lower <= 0 or lower > 1:
        raise ConfigError("search.min_quality must be > 0 and <= 1")
    if upper <= 0 or upper > 1:
        raise ConfigError("search.max_quality must be > 0 and <= 1")
    if upper < lower:
        raise ConfigError("search.max_quality must be >= search.min_quality")
    section.min_quality = lower
    section.max_quality = upper


def _validate_net(section: NetConfig) -> None:
    retries = _normalize_int(section.retries, "net.retries")
    if retries < 0:
        raise ConfigError("net.retries must be >= 0")
    section.retries = retries

    timeout = _normalize_float(section.timeout_seconds, "net.timeout_seconds")
    if timeout <= 0:
        raise ConfigError("net.timeout_seconds must be > 0")
    section.timeout_seconds = timeout

    max_bytes = _normalize_int(section.max_bytes, "net.max_bytes")
    if max_bytes < 1:
        raise ConfigError("net.max_bytes must be >= 1")
    section.max_bytes = max_bytes


def load_config(path: Optional[str | Path] = None) -> AppConfig:
    """
    Load and validate an application configuration from a TOML file.

    Reads the file at `path`, parses it as UTF-8 TOML (BOM is accepted), coerces each section into its dataclass and validates numeric ranges. With no path the defaults are returned.

    Returns:
        AppConfig: The validated application configuration.

    Raises:
        ConfigError: If the file is missing or not UTF-8, TOML parsing fails, or any validation rule is violated.
    """

    if path is None:
        return AppConfig()

    try:
        with open(path, "rb") as handle:
            raw_bytes = handle.read()
    except OSError as exc:
        raise ConfigError(f"Unable to read configuration file {path}: {exc}") from exc
    if raw_bytes.startswith(b"\xef\xbb\xbf"):
        raw_bytes = raw_bytes[3:]
    try:
        raw = tomllib.loads(raw_bytes.decode("utf-8"))
    except UnicodeDecodeError as exc:
        raise ConfigError("Configuration file must be UTF-8 encoded") from exc
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Failed to parse TOML: {exc}") from exc

    known = {field.name for field in fields(AppConfig)}
    unknown = sorted(set(raw) - known)
    if unknown:
        raise ConfigError(f"Unknown configuration sections: {', '.join(unknown)}")

    app = AppConfig(
        transcode=_sanitize_section(raw.get("transcode", {}), "transcode", TranscodeConfig),
        preview=_sanitize_section(raw.get("preview", {}), "preview", PreviewConfig),
        search=_sanitize_section(raw.get("search", {}), "search", SearchConfig),
        net=_sanitize_section(raw.get("net", {}), "net", NetConfig),
    )

    _validate_transcode(app.transcode)
    _validate_preview(app.preview)
    _validate_search(app.search)
    _validate_net(app.net)
    return app
