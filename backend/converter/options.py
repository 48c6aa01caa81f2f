"""Turn an untrusted options payload into a bounded, canonical configuration."""
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Optional

from converter import config
from converter.errors import InputError

RESIZE_MODES = ("percent", "absolute")
CROP_MODES = ("none", "cover")
_BITRATE = re.compile(r"^\d+[KMG]?$", re.I)
_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")


@dataclass
class OptionsValidation:
    valid: bool
    sanitized: dict = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)


def _parse_int(value: Any) -> Optional[int]:
    """Lenient integer parse: ints, integral floats, numeric strings. Booleans are not numbers here."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value == value and abs(value) != float("inf") else None
    if isinstance(value, str):
        m = _LEADING_INT.match(value)
        return int(m.group(1)) if m else None
    return None


def _bounded_int(options: Mapping, key: str, low: int, high: int, message: str, sanitized: dict, errors: list) -> None:
    if key not in options or options[key] is None:
        return
    value = _parse_int(options[key])
    if value is None or value < low or value > high:
        errors.append(message)
    else:
        sanitized[key] = value


def _choice(options: Mapping, key: str, allowed, message: str, sanitized: dict, errors: list) -> None:
    if key not in options:
        return
    value = options[key]
    if not isinstance(value, str) or value not in allowed:
        errors.append(message.format(value=value))
    else:
        sanitized[key] = value


def _flag(options: Mapping, key: str, sanitized: dict) -> None:
    if key in options:
        sanitized[key] = bool(options[key])


def validate_options(options: Any, category: str) -> OptionsValidation:
    """
    Validate every recognized field independently. Errors accumulate rather than
    failing fast; sanitized output only holds the fields that passed.
    """
    if not isinstance(options, Mapping):
        return OptionsValidation(False, {}, ["Options must be an object"])

    errors: list[str] = []
    sanitized: dict = {}

    _bounded_int(options, "quality", 1, 100, "Quality must be a number between 1 and 100", sanitized, errors)
    _bounded_int(options, "resize", 1, 200, "Resize percentage must be between 1 and 200", sanitized, errors)
    _choice(options, "resizeMode", RESIZE_MODES, 'Resize mode must be "percent" or "absolute"', sanitized, errors)
    _bounded_int(options, "width", 1, 10000, "Width must be between 1 and 10000", sanitized, errors)
    _bounded_int(options, "height", 1, 10000, "Height must be between 1 and 10000", sanitized, errors)
    _choice(options, "crop", CROP_MODES, 'Crop mode must be "none" or "cover"', sanitized, errors)
    _flag(options, "allowEnlarge", sanitized)

    if category == "image":
        if "formats" in options:
            formats = options["formats"]
            if not isinstance(formats, (list, tuple)):
                errors.append("Formats must be an array")
            else:
                invalid = [str(f) for f in formats if f not in config.IMAGE_OUTPUT_FORMATS]
                if invalid:
                    errors.append(f"Invalid formats: {', '.join(invalid)}")
                elif not formats:
                    errors.append("At least one output format is required")
                else:
                    sanitized["formats"] = list(dict.fromkeys(formats))
        _bounded_int(options, "precision", 0, 5, "Precision must be between 0 and 5", sanitized, errors)
        for key in ("removeViewBox", "keepViewBox", "cleanupIDs"):
            if key in options:
                if isinstance(options[key], bool):
                    sanitized[key] = options[key]
                else:
                    errors.append(f"{key} must be a boolean")
        _flag(options, "useImageMagick", sanitized)

    elif category == "video":
        _choice(options, "format", config.VIDEO_OUTPUT_FORMATS, "Invalid video format: {value}", sanitized, errors)
        if "bitrate" in options and options["bitrate"] is not None:
            bitrate = options["bitrate"]
            if not isinstance(bitrate, str) or not _BITRATE.match(bitrate):
                errors.append("Invalid bitrate format")
            else:
                sanitized["bitrate"] = bitrate
        _choice(options, "preset", config.VIDEO_PRESETS, "Invalid preset: {value}", sanitized, errors)
        _flag(options, "audio", sanitized)

    else:
        errors.append(f"Unknown processing category: {category}")

    return OptionsValidation(valid=not errors, sanitized=sanitized, errors=errors)


@dataclass(frozen=True)
class ProcessingOptions:
    """Canonical options. Built only from a validated payload."""

    quality: int = config.DEFAULT_QUALITY
    resize_mode: str = "percent"
    resize: int = 100
    width: Optional[int] = None
    height: Optional[int] = None
    crop: str = "none"
    allow_enlarge: bool = False
    formats: tuple[str, ...] = ("webp",)
    # vector
    precision: int = 2
    keep_viewbox: bool = True
    cleanup_ids: bool = True
    use_specialty: bool = True
    # video
    video_format: str = "mp4"
    bitrate: Optional[str] = None
    preset: str = "web"
    audio: bool = True

    @classmethod
    def from_sanitized(cls, sanitized: Mapping) -> "ProcessingOptions":
        keep_viewbox = True
        if "keepViewBox" in sanitized:
            keep_viewbox = sanitized["keepViewBox"]
        if "removeViewBox" in sanitized:
            keep_viewbox = not sanitized["removeViewBox"]
        resize_mode = sanitized.get("resizeMode", "percent")
        width = sanitized.get("width")
        height = sanitized.get("height")
        if resize_mode == "percent":
            # One resize mode at a time: absolute dimensions are ignored in percent mode
            width = height = None
        return cls(
            quality=sanitized.get("quality", config.DEFAULT_QUALITY),
            resize_mode=resize_mode,
            resize=sanitized.get("resize", 100) if resize_mode == "percent" else 100,
            width=width,
            height=height,
            crop=sanitized.get("crop", "none"),
            allow_enlarge=sanitized.get("allowEnlarge", False),
            formats=tuple(sanitized.get("formats") or ("webp",)),
            precision=sanitized.get("precision", 2),
            keep_viewbox=keep_viewbox,
            cleanup_ids=sanitized.get("cleanupIDs", True),
            use_specialty=sanitized.get("useImageMagick", True),
            video_format=sanitized.get("format", "mp4"),
            bitrate=sanitized.get("bitrate"),
            preset=sanitized.get("preset", "web"),
            audio=sanitized.get("audio", True),
        )

    @property
    def has_absolute_size(self) -> bool:
        return self.resize_mode == "absolute" and (self.width is not None or self.height is not None)

    @property
    def raster_formats(self) -> list[str]:
        return [f for f in self.formats if f in config.RASTER_OUTPUT_FORMATS]

    @property
    def wants_vector(self) -> bool:
        return "svg" in self.formats


def build_options(raw: Any, category: str) -> ProcessingOptions:
    """Validate and canonicalize, raising InputError listing every problem."""
    result = validate_options(raw, category)
    if not result.valid:
        raise InputError("Invalid options: " + "; ".join(result.errors), result.errors)
    return ProcessingOptions.from_sanitized(result.sanitized)
