"""Vector lane: scour optimization for SVG output, CairoSVG rasterization for everything else."""
import io
import logging
import re

from PIL import Image
from scour import scour

from converter import config
from converter.conversion.base import BaseConverter
from converter.conversion.models import ConversionResult, Lane, UploadedFile
from converter.conversion.raster import write_raster_outputs
from converter.errors import CapabilityError, ConversionError
from converter.options import ProcessingOptions

logger = logging.getLogger("converter.vector")

_ROOT_TAG = re.compile(r"<svg\b[^>]*>", re.I | re.S)
_VIEWBOX_ATTR = re.compile(r"""\s+viewBox\s*=\s*(?:"[^"]*"|'[^']*')""", re.S)
_WIDTH_ATTR = re.compile(r"""\swidth\s*=""")
_HEIGHT_ATTR = re.compile(r"""\sheight\s*=""")


def _scour_options(precision: int, cleanup_ids: bool):
    opts = scour.sanitizeOptions()
    opts.digits = precision + 3
    opts.cdigits = -1
    opts.strip_comments = True
    opts.remove_metadata = True
    opts.remove_descriptive_elements = True
    opts.strip_xml_prolog = False
    opts.strip_ids = cleanup_ids
    opts.shorten_ids = cleanup_ids
    opts.embed_rasters = False
    opts.enable_viewboxing = False
    opts.indent_type = "none"
    opts.newlines = False
    opts.quiet = True
    return opts


def _drop_viewbox(svg_text: str) -> str:
    """Remove viewBox from the root element, only when it carries explicit width and height."""
    m = _ROOT_TAG.search(svg_text)
    if not m:
        return svg_text
    tag = m.group(0)
    if not (_WIDTH_ATTR.search(tag) and _HEIGHT_ATTR.search(tag)):
        return svg_text
    return svg_text[: m.start()] + _VIEWBOX_ATTR.sub("", tag, count=1) + svg_text[m.end():]


def optimize_svg(svg_text: str, precision: int = 2, keep_viewbox: bool = True, cleanup_ids: bool = True) -> str:
    try:
        out = scour.scourString(svg_text, _scour_options(precision, cleanup_ids))
    except Exception as e:
        raise ConversionError(f"SVG optimization failed: {e}") from e
    if not keep_viewbox:
        out = _drop_viewbox(out)
    return out


def rasterize_svg(data: bytes, density: int = config.SVG_RASTER_DENSITY) -> Image.Image:
    """Render SVG bytes to an RGBA Pillow image at `density` DPI."""
    try:
        import cairosvg  # loads libcairo
    except (ImportError, OSError) as e:
        raise CapabilityError(f"SVG rasterizer unavailable: {e}") from e
    try:
        png = cairosvg.svg2png(bytestring=data, scale=density / 72)
    except Exception as e:
        raise ConversionError(f"SVG rasterization failed: {e}") from e
    img = Image.open(io.BytesIO(png))
    img.load()
    return img


class VectorConverter(BaseConverter):
    """One merged result per SVG source: the optimized SVG plus any raster renderings."""

    lane = Lane.VECTOR

    def convert(self, file: UploadedFile, options: ProcessingOptions, result: ConversionResult) -> None:
        data = file.path.read_bytes()

        if options.wants_vector:
            try:
                text = data.decode("utf-8-sig")
            except UnicodeDecodeError as e:
                raise ConversionError(f"SVG is not valid UTF-8: {file.filename}") from e
            optimized = optimize_svg(text, options.precision, options.keep_viewbox, options.cleanup_ids)
            record = self.store.allocate(file.filename, "svg")
            record.path.write_text(optimized, encoding="utf-8")
            processed = result.add_output("svg", record.path, record.logical_name)
            logger.info("Optimized %s -> %s (%.2f%% saved)", file.filename, record.filename, processed.savings)

        if options.raster_formats:
            img = rasterize_svg(data)
            write_raster_outputs(self.store, img, file.filename, options, result)
