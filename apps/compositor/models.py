"""Value types shared by detection, placement, preview and export."""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Optional, Tuple


class ConfigValidationError(Exception):
    """Raised when a composition configuration is invalid."""
    pass


class FitMode(str, Enum):
    """How source video is scaled into the screen rect."""
    FIT = "fit"          # Show entire video, may letterbox
    FILL = "fill"        # Fill screen, may crop
    STRETCH = "stretch"  # Stretch to fill, may distort

    @property
    def label(self) -> str:
        return self.value.capitalize()

    @property
    def description(self) -> str:
        return {
            FitMode.FIT: "Show entire video",
            FitMode.FILL: "Fill screen (may crop)",
            FitMode.STRETCH: "Stretch to fill (may distort)",
        }[self]


class OutputFormat(str, Enum):
    MP4 = "mp4"
    MOV = "mov"


class Origin(str, Enum):
    """Vertical origin of a pixel coordinate space."""
    TOP_LEFT = "top-left"
    BOTTOM_LEFT = "bottom-left"


@dataclass(frozen=True)
class ScreenRect:
    """Screen window as percentages (0..100) of the trimmed frame image, top-left origin."""
    x: float
    y: float
    w: float
    h: float

    def clamped(self) -> "ScreenRect":
        """Return a copy that lies inside the 0..100 square."""
        x = min(max(self.x, 0.0), 100.0)
        y = min(max(self.y, 0.0), 100.0)
        w = min(max(self.w, 0.0), 100.0 - x)
        h = min(max(self.h, 0.0), 100.0 - y)
        return ScreenRect(x, y, w, h)

    def to_dict(self) -> Dict[str, float]:
        return {"x": self.x, "y": self.y, "w": self.w, "h": self.h}

    @classmethod
    def from_dict(cls, data: Dict) -> "ScreenRect":
        try:
            return cls(
                x=float(data["x"]),
                y=float(data["y"]),
                w=float(data["w"]),
                h=float(data["h"]),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ConfigValidationError(f"screenRect must have numeric x, y, w, h: {e}")


FULL_SCREEN_RECT = ScreenRect(0.0, 0.0, 100.0, 100.0)


@dataclass(frozen=True)
class PixelRect:
    """Rectangle in absolute canvas pixels."""
    x: float
    y: float
    width: float
    height: float

    @property
    def mid_x(self) -> float:
        return self.x + self.width / 2.0

    @property
    def mid_y(self) -> float:
        return self.y + self.height / 2.0

    def to_bottom_left(self, canvas_height: float) -> "PixelRect":
        """Convert a top-left origin rect into bottom-left origin (and back)."""
        return PixelRect(self.x, canvas_height - self.y - self.height, self.width, self.height)

    def rounded(self) -> Tuple[int, int, int, int]:
        return int(round(self.x)), int(round(self.y)), int(round(self.width)), int(round(self.height))


@dataclass(frozen=True)
class PlacementTransform:
    """Scale + translate from source video pixels into canvas pixels."""
    scale_x: float
    scale_y: float
    translate_x: float
    translate_y: float

    def scaled_size(self, source_size: Tuple[float, float]) -> Tuple[float, float]:
        src_w, src_h = source_size
        return src_w * self.scale_x, src_h * self.scale_y

    def to_pixels(self, source_size: Tuple[float, float]) -> Tuple[int, int, int, int]:
        """Integer (width, height, x, y) of the placed content, as rendered by both preview and export."""
        scaled_w, scaled_h = self.scaled_size(source_size)
        return (
            max(1, int(round(scaled_w))),
            max(1, int(round(scaled_h))),
            int(round(self.translate_x)),
            int(round(self.translate_y)),
        )


@dataclass(frozen=True)
class TrimRange:
    """Seconds of the source timeline to keep. end=None means end of source."""
    start: float = 0.0
    end: Optional[float] = None

    @property
    def duration(self) -> Optional[float]:
        return None if self.end is None else self.end - self.start


# Keys of the configuration surface consumed from the UI layer
_SURFACE_KEYS = {
    "screenRect",
    "fitMode",
    "zoomPercent",
    "offsetXPercent",
    "offsetYPercent",
    "trimStartSeconds",
    "trimEndSeconds",
    "outputFormat",
    "canvasWidth",
    "canvasHeight",
}


@dataclass(frozen=True)
class CompositionConfig:
    """Single value object threaded through preview and export."""
    output_format: OutputFormat = OutputFormat.MP4
    canvas_width: int = 1080
    canvas_height: int = 1920
    trim: TrimRange = field(default_factory=TrimRange)
    screen_rect: Optional[ScreenRect] = None  # None = preset default / detection
    zoom: float = 1.0
    offset_x: float = 0.0  # fraction of half the screen width, -1..1
    offset_y: float = 0.0  # fraction of half the screen height, -1..1
    fit_mode: FitMode = FitMode.FIT

    def with_screen_rect(self, rect: ScreenRect) -> "CompositionConfig":
        return replace(self, screen_rect=rect)

    def with_trim(self, trim: TrimRange) -> "CompositionConfig":
        return replace(self, trim=trim)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the configuration surface."""
        return {
            "screenRect": self.screen_rect.to_dict() if self.screen_rect else None,
            "fitMode": self.fit_mode.value,
            "zoomPercent": self.zoom * 100.0,
            "offsetXPercent": self.offset_x * 100.0,
            "offsetYPercent": self.offset_y * 100.0,
            "trimStartSeconds": self.trim.start,
            "trimEndSeconds": self.trim.end,
            "outputFormat": self.output_format.value,
            "canvasWidth": self.canvas_width,
            "canvasHeight": self.canvas_height,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CompositionConfig":
        """
        Build from the configuration surface.

        Raises:
            ConfigValidationError: On unknown keys or invalid values
        """
        if not isinstance(data, dict):
            raise ConfigValidationError("Configuration must be a JSON object")

        unknown = sorted(set(data) - _SURFACE_KEYS)
        if unknown:
            raise ConfigValidationError(f"Unknown configuration keys: {', '.join(unknown)}")

        screen_rect = None
        if data.get("screenRect") is not None:
            screen_rect = ScreenRect.from_dict(data["screenRect"])

        try:
            fit_mode = FitMode(str(data.get("fitMode", "fit")).lower())
        except ValueError:
            raise ConfigValidationError(f"fitMode must be one of fit, fill, stretch, got {data.get('fitMode')!r}")

        try:
            output_format = OutputFormat(str(data.get("outputFormat", "mp4")).lower())
        except ValueError:
            raise ConfigValidationError(f"outputFormat must be mp4 or mov, got {data.get('outputFormat')!r}")

        zoom_pct = _number(data, "zoomPercent", 100.0)
        offset_x_pct = _number(data, "offsetXPercent", 0.0)
        offset_y_pct = _number(data, "offsetYPercent", 0.0)
        trim_start = _number(data, "trimStartSeconds", 0.0)
        trim_end = data.get("trimEndSeconds")
        if trim_end is not None:
            trim_end = _number(data, "trimEndSeconds", 0.0)

        canvas_width = _number(data, "canvasWidth", 1080)
        canvas_height = _number(data, "canvasHeight", 1920)
        if canvas_width < 2 or canvas_height < 2:
            raise ConfigValidationError(
                f"canvasWidth and canvasHeight must be at least 2, got {canvas_width}x{canvas_height}"
            )

        return cls(
            output_format=output_format,
            canvas_width=int(canvas_width),
            canvas_height=int(canvas_height),
            trim=TrimRange(start=trim_start, end=trim_end),
            screen_rect=screen_rect,
            zoom=zoom_pct / 100.0,
            offset_x=offset_x_pct / 100.0,
            offset_y=offset_y_pct / 100.0,
            fit_mode=fit_mode,
        )


def _number(data: Dict[str, Any], key: str, default: float) -> float:
    value = data.get(key, default)
    # bool is an int subclass, reject it explicitly
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigValidationError(f"Field '{key}' must be a number, got {type(value).__name__}")
    return float(value)


@dataclass(frozen=True)
class VideoInfo:
    """Probed properties of a source video."""
    path: str
    width: int
    height: int
    duration: float
    fps: float
    rotation: int = 0
    has_audio: bool = False
    codec: str = ""

    @property
    def natural_size(self) -> Tuple[int, int]:
        return self.width, self.height

    @property
    def upright_size(self) -> Tuple[int, int]:
        if self.rotation % 180 != 0:
            return self.height, self.width
        return self.width, self.height

    @property
    def frame_duration(self) -> float:
        return 1.0 / self.fps if self.fps > 0 else 0.0
