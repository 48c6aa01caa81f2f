"""Format id -> encoder dispatch table for raster outputs."""
import logging
from pathlib import Path
from typing import Callable

from PIL import Image

from converter import config

logger = logging.getLogger("converter.encoders")

Encoder = Callable[[Image.Image, Path, int], None]

_encoders: dict[str, Encoder] = {}


def register_encoder(*format_ids: str):
    """
    Decorator registering an encoder under one or more format ids.

    Usage:
        @register_encoder("jpg", "jpeg")
        def _jpeg(img, path, quality): ...
    """
    def decorator(func: Encoder) -> Encoder:
        for fmt in format_ids:
            if fmt not in config.RASTER_OUTPUT_FORMATS:
                raise ValueError(f"Format {fmt!r} is not in the raster output allow-list")
            _encoders[fmt] = func
            logger.debug("Registered encoder: %s -> %s", fmt, func.__name__)
        return func
    return decorator


def get_encoder(fmt: str) -> Encoder:
    try:
        return _encoders[fmt]
    except KeyError:
        raise ValueError(f"No encoder registered for format: {fmt}") from None


def encode(img: Image.Image, path: Path, fmt: str, quality: int) -> None:
    get_encoder(fmt)(img, path, quality)


def _without_alpha(img: Image.Image) -> Image.Image:
    if img.mode == "RGB":
        return img
    if img.mode in ("RGBA", "LA") or (img.mode == "P" and "transparency" in img.info):
        rgba = img.convert("RGBA")
        background = Image.new("RGB", rgba.size, (255, 255, 255))
        background.paste(rgba, mask=rgba.getchannel("A"))
        return background
    return img.convert("RGB")


def _keep_alpha(img: Image.Image) -> Image.Image:
    if img.mode in ("RGB", "RGBA"):
        return img
    if img.mode in ("LA", "PA") or "transparency" in img.info:
        return img.convert("RGBA")
    return img.convert("RGB")


@register_encoder("webp")
def _webp(img: Image.Image, path: Path, quality: int) -> None:
    _keep_alpha(img).save(str(path), format="WEBP", quality=quality, method=6)


@register_encoder("avif")
def _avif(img: Image.Image, path: Path, quality: int) -> None:
    _keep_alpha(img).save(str(path), format="AVIF", quality=quality)


@register_encoder("jpg", "jpeg")
def _jpeg(img: Image.Image, path: Path, quality: int) -> None:
    _without_alpha(img).save(str(path), format="JPEG", quality=quality, optimize=True)


@register_encoder("png")
def _png(img: Image.Image, path: Path, quality: int) -> None:
    compress_level = min(9, max(1, round(quality * 9 / 100)))
    _keep_alpha(img).save(str(path), format="PNG", compress_level=compress_level)


_missing = set(config.RASTER_OUTPUT_FORMATS) - set(_encoders)
if _missing:
    raise RuntimeError(f"Raster formats without an encoder: {sorted(_missing)}")
