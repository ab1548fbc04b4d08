"""In-memory image transcoding with fit geometry and size-constrained encoding."""

from .config_loader import ConfigError, load_config
from .datatypes import (
    Anchor,
    AppConfig,
    EncodedResult,
    FilterSettings,
    FitMode,
    OutputFormat,
    RenderOptions,
    SourceImage,
)
from .preview import PreviewController, preview_for_source
from .transcode import transcode, transcode_sync

__all__ = [
    "Anchor",
    "AppConfig",
    "ConfigError",
    "EncodedResult",
    "FilterSettings",
    "FitMode",
    "OutputFormat",
    "PreviewController",
    "RenderOptions",
    "SourceImage",
    "load_config",
    "preview_for_source",
    "transcode",
    "transcode_sync",
]

__version__ = "0.1.0"
