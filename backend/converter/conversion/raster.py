"""Raster lane: Pillow decode, resize policy, one encode per requested format."""
import logging

from PIL import Image, UnidentifiedImageError

from converter.artifacts import ArtifactStore
from converter.conversion.base import BaseConverter
from converter.conversion.encoders import encode
from converter.conversion.models import ConversionResult, Lane, UploadedFile
from converter.conversion.resize import apply_resize
from converter.errors import ConversionError
from converter.options import ProcessingOptions

logger = logging.getLogger("converter.raster")


def write_raster_outputs(
    store: ArtifactStore,
    img: Image.Image,
    source_name: str,
    options: ProcessingOptions,
    result: ConversionResult,
) -> None:
    """Resize once, then encode into every raster format in `options`."""
    work = apply_resize(img, options)
    for fmt in options.raster_formats:
        record = store.allocate(source_name, fmt)
        try:
            encode(work, record.path, fmt, options.quality)
        except Exception:
            record.path.unlink(missing_ok=True)
            raise
        processed = result.add_output(fmt, record.path, record.logical_name)
        logger.info("Converted %s -> %s (%s bytes, %.2f%% saved)", source_name, record.filename, processed.size, processed.savings)


class RasterConverter(BaseConverter):
    lane = Lane.RASTER

    def convert(self, file: UploadedFile, options: ProcessingOptions, result: ConversionResult) -> None:
        if not options.raster_formats:
            raise ConversionError("SVG output is only available for SVG sources")
        try:
            with Image.open(file.path) as img:
                img.load()
                write_raster_outputs(self.store, img, file.filename, options, result)
        except (UnidentifiedImageError, Image.DecompressionBombError) as e:
            raise ConversionError(f"Unsupported or corrupt image data: {file.filename}") from e
        except OSError as e:
            # Pillow reports truncated or broken streams as OSError
            raise ConversionError(f"Could not decode {file.filename}: {e}") from e
