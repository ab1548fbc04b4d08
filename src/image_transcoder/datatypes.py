"""Value objects and configuration dataclasses for the image transcoder."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional


class OutputFormat(str, Enum):
    """Encodable output formats."""

    PNG = "png"
    JPEG = "jpeg"
    WEBP = "webp"
    AVIF = "avif"

    @property
    def mime_type(self) -> str:
        return _MIME_TYPES[self]

    @property
    def pil_format(self) -> str:
        return _PIL_FORMATS[self]

    @property
    def extension(self) -> str:
        return _EXTENSIONS[self]

    @property
    def supports_alpha(self) -> bool:
        return _ALPHA_CAPABLE[self]

    @property
    def is_lossy(self) -> bool:
        return _LOSSY[self]

    @classmethod
    def parse(cls, value: "OutputFormat | str") -> "OutputFormat":
        """Return the member matching *value* (name, extension or MIME type).

        Raises ``ValueError`` for unknown values.
        """

        if isinstance(value, cls):
            return value
        normalized = str(value).strip().lower()
        if normalized in _ALIASES:
            return _ALIASES[normalized]
        raise ValueError(f"Unknown output format: {value!r}")


_MIME_TYPES: Mapping[OutputFormat, str] = {
    OutputFormat.PNG: "image/png",
    OutputFormat.JPEG: "image/jpeg",
    OutputFormat.WEBP: "image/webp",
    OutputFormat.AVIF: "image/avif",
}

_PIL_FORMATS: Mapping[OutputFormat, str] = {
    OutputFormat.PNG: "PNG",
    OutputFormat.JPEG: "JPEG",
    OutputFormat.WEBP: "WEBP",
    OutputFormat.AVIF: "AVIF",
}

_EXTENSIONS: Mapping[OutputFormat, str] = {
    OutputFormat.PNG: "png",
    OutputFormat.JPEG: "jpg",
    OutputFormat.WEBP: "webp",
    OutputFormat.AVIF: "avif",
}

_ALPHA_CAPABLE: Mapping[OutputFormat, bool] = {
    OutputFormat.PNG: True,
    OutputFormat.JPEG: False,
    OutputFormat.WEBP: True,
    OutputFormat.AVIF: True,
}

_LOSSY: Mapping[OutputFormat, bool] = {
    OutputFormat.PNG: False,
    OutputFormat.JPEG: True,
    OutputFormat.WEBP: True,
    OutputFormat.AVIF: True,
}

_ALIASES: Dict[str, OutputFormat] = {}
for _member in OutputFormat:
    _ALIASES[_member.value] = _member
    _ALIASES[_EXTENSIONS[_member]] = _member
    _ALIASES[_MIME_TYPES[_member]] = _member
_ALIASES["image/jpg"] = OutputFormat.JPEG
del _member

FALLBACK_FORMAT = OutputFormat.JPEG
"""General-purpose lossy format substituted when a requested format cannot be encoded."""

DEFAULT_BACKGROUND = "#ffffff"


class FitMode(str, Enum):
    """Policies mapping a source aspect ratio onto a target box."""

    CONTAIN = "contain"
    COVER = "cover"

    @classmethod
    def parse(cls, value: "FitMode | str | None") -> "FitMode":
        """Return the matching member case-insensitively; unknown values mean ``contain``."""

        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.CONTAIN


class Anchor(str, Enum):
    """Edge/corner/center bias used when cropping under ``cover``."""

    TOP_LEFT = "top-left"
    TOP = "top"
    TOP_RIGHT = "top-right"
    LEFT = "left"
    CENTER = "center"
    RIGHT = "right"
    BOTTOM_LEFT = "bottom-left"
    BOTTOM = "bottom"
    BOTTOM_RIGHT = "bottom-right"

    @property
    def fractions(self) -> tuple[float, float]:
        """Horizontal and vertical alignment fractions in ``[0, 1]``."""

        return _ANCHOR_FRACTIONS[self]

    @classmethod
    def parse(cls, value: "Anchor | str | None") -> "Anchor":
        """Return the matching member, accepting ``_``/space separators; unknown values mean ``center``."""

        if isinstance(value, cls):
            return value
        if value is None:
            return cls.CENTER
        text = str(value).strip().lower().replace("_", "-").replace(" ", "-")
        if text in {"centre", "middle"}:
            return cls.CENTER
        try:
            return cls(text)
        except ValueError:
            return cls.CENTER


_ANCHOR_FRACTIONS: Mapping[Anchor, tuple[float, float]] = {
    Anchor.TOP_LEFT: (0.0, 0.0),
    Anchor.TOP: (0.5, 0.0),
    Anchor.TOP_RIGHT: (1.0, 0.0),
    Anchor.LEFT: (0.0, 0.5),
    Anchor.CENTER: (0.5, 0.5),
    Anchor.RIGHT: (1.0, 0.5),
    Anchor.BOTTOM_LEFT: (0.0, 1.0),
    Anchor.BOTTOM: (0.5, 1.0),
    Anchor.BOTTOM_RIGHT: (1.0, 1.0),
}


@dataclass(frozen=True)
class FilterSettings:
    """Colour adjustments expressed as percentages (100 leaves the image unchanged)."""

    brightness: float = 100.0
    contrast: float = 100.0
    saturation: float = 100.0

    @property
    def is_identity(self) -> bool:
        return self.brightness == 100 and self.contrast == 100 and self.saturation == 100


@dataclass(frozen=True)
class RenderOptions:
    """Parameters pushed by the controls collaborator for one render."""

    format: OutputFormat = OutputFormat.WEBP
    quality: int = 90
    width: Optional[float] = None
    height: Optional[float] = None
    fit_mode: FitMode = FitMode.CONTAIN
    anchor: Anchor = Anchor.CENTER
    background: Optional[str] = None
    filters: Optional[FilterSettings] = None
    target_bytes: Optional[int] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "format", OutputFormat.parse(self.format))
        object.__setattr__(self, "fit_mode", FitMode.parse(self.fit_mode))
        object.__setattr__(self, "anchor", Anchor.parse(self.anchor))
        try:
            quality = int(round(float(self.quality)))
        except (TypeError, ValueError):
            quality = 90
        object.__setattr__(self, "quality", max(1, min(100, quality)))


@dataclass(frozen=True)
class SourceImage:
    """Decodable source bytes plus the metadata the upload collaborator reports."""

    data: bytes
    width: int
    height: int
    byte_size: int
    mime_type: str = ""
    name: str = "image"

    @classmethod
    def from_bytes(cls, data: bytes, *, mime_type: str | None = None, name: str = "image") -> "SourceImage":
        """Read dimensions from the header of *data*.

        Raises ``DecodeError`` when the bytes are not a readable image.
        """

        from .render.pipeline import read_source_header

        width, height, detected = read_source_header(data)
        return cls(
            data=bytes(data),
            width=width,
            height=height,
            byte_size=len(data),
            mime_type=mime_type or detected,
            name=name,
        )


@dataclass(frozen=True)
class EncodedResult:
    """Immutable encoded output surfaced to the preview/download collaborators."""

    data: bytes
    byte_size: int
    mime_type: str
    format: OutputFormat
    requested_format: OutputFormat
    fallback_applied: bool = False
    quality: Optional[float] = None


@dataclass(frozen=True)
class PreviewRequest:
    """Snapshot of parameters tagged with the generation that produced it."""

    params: Any
    generation: int


@dataclass
class TranscodeConfig:
    """Defaults applied to CLI conversions and encoder behaviour."""

    format: OutputFormat = OutputFormat.WEBP
    quality: int = 90
    fit_mode: FitMode = FitMode.CONTAIN
    anchor: Anchor = Anchor.CENTER
    background: str = DEFAULT_BACKGROUND
    png_compression_level: int = 1
    fallback_format: OutputFormat = FALLBACK_FORMAT
    alpha_probe_max_dimension: int = 256


@dataclass
class PreviewConfig:
    """Live preview scheduling."""

    debounce_ms: int = 350


@dataclass
class SearchConfig:
    """Constrained-size quality search bounds."""

    iterations: int = 8
    min_quality: float = 0.05
    max_quality: float = 1.0


@dataclass
class NetConfig:
    """Remote source fetching."""

    retries: int = 3
    timeout_seconds: float = 30.0
    max_bytes: int = 50 * 1024 * 1024


@dataclass
class AppConfig:
    """Top-level configuration container."""

    transcode: TranscodeConfig = field(default_factory=TranscodeConfig)
    preview: PreviewConfig = field(default_factory=PreviewConfig)
    search: SearchConfig = field(default_factory=SearchConfig)
    net: NetConfig = field(default_factory=NetConfig)
