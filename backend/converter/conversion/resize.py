"""Resize policy shared by the raster and vector-to-raster paths."""
import logging
import math
from typing import Optional

from PIL import Image, ImageOps

from converter.options import ProcessingOptions

logger = logging.getLogger("converter.resize")


def resize_percent(img: Image.Image, percent: int) -> Image.Image:
    """Exact dimensions scaled by percent/100, halves rounded up; aspect is whatever the rounding gives."""
    w, h = img.size
    new_w = max(1, math.floor(w * percent / 100 + 0.5))
    new_h = max(1, math.floor(h * percent / 100 + 0.5))
    if (new_w, new_h) == (w, h):
        return img
    return img.resize((new_w, new_h), Image.Resampling.LANCZOS)


def resize_cover(img: Image.Image, target_width: int, target_height: int) -> Image.Image:
    """Scale to cover the target, then center-crop to exactly (target_width, target_height)."""
    if img.size == (target_width, target_height):
        return img
    return ImageOps.fit(img, (target_width, target_height), Image.Resampling.LANCZOS, centering=(0.5, 0.5))


def resize_inside(
    img: Image.Image,
    target_width: Optional[int] = None,
    target_height: Optional[int] = None,
    allow_enlarge: bool = False,
) -> Image.Image:
    """
    Scale to fit within target width and/or height, maintaining aspect ratio.
    If only one dimension is set, the other is computed from the image ratio.
    """
    w, h = img.size
    if target_width is None and target_height is None:
        return img
    if target_width is not None and target_height is not None:
        scale = min(target_width / w, target_height / h)
    elif target_width is not None:
        scale = target_width / w
    else:
        scale = target_height / h
    if scale > 1 and not allow_enlarge:
        return img
    new_w = max(1, int(round(w * scale)))
    new_h = max(1, int(round(h * scale)))
    if (new_w, new_h) == (w, h):
        return img
    return img.resize((new_w, new_h), Image.Resampling.LANCZOS)


def apply_resize(img: Image.Image, options: ProcessingOptions) -> Image.Image:
    if options.has_absolute_size:
        if options.crop == "cover" and options.width and options.height:
            # Cover always yields exactly the requested box, upscaling if it must
            return resize_cover(img, options.width, options.height)
        if options.crop == "cover":
            logger.debug("Cover crop needs both dimensions, fitting inside instead")
        return resize_inside(img, options.width, options.height, options.allow_enlarge)
    if options.resize_mode == "percent" and options.resize != 100:
        return resize_percent(img, options.resize)
    return img
