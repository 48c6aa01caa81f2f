"""Specialty lane: TIFF, PSD, EPS, AI, PDF and HEIC sources through the ImageMagick CLI."""
import logging
import shutil
import subprocess
from pathlib import Path
from typing import Optional

from converter import config
from converter.artifacts import ArtifactStore
from converter.conversion.base import BaseConverter
from converter.conversion.models import ConversionResult, Lane, UploadedFile
from converter.errors import CapabilityError, ConversionError
from converter.options import ProcessingOptions

logger = logging.getLogger("converter.specialty")

# Sources rendered from vector page descriptions need an explicit density
_DENSITY_EXTENSIONS = {".eps", ".ai", ".pdf"}
_MISSING_DELEGATE_MARKERS = ("no decode delegate", "no encode delegate", "delegate library support not built-in")


class ImageMagickCapability:
    """Locates the ImageMagick binary and probes it with `-version`."""

    def __init__(self, timeout: int = 10):
        self.timeout = timeout
        self._binary: Optional[str] = None

    def binary(self) -> Optional[str]:
        if self._binary is None:
            self._binary = shutil.which("magick") or shutil.which("convert")
        return self._binary

    def is_available(self) -> bool:
        binary = self.binary()
        if not binary:
            logger.warning("ImageMagick not found on PATH")
            return False
        try:
            proc = subprocess.run([binary, "-version"], capture_output=True, text=True, timeout=self.timeout)
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.warning("ImageMagick probe failed: %s", e)
            return False
        # Windows ships an unrelated convert.exe
        return proc.returncode == 0 and "ImageMagick" in proc.stdout


def _geometry_args(options: ProcessingOptions) -> list[str]:
    if options.has_absolute_size:
        w = str(options.width) if options.width else ""
        h = str(options.height) if options.height else ""
        if options.crop == "cover" and options.width and options.height:
            box = f"{w}x{h}"
            return ["-resize", f"{box}^", "-gravity", "center", "-extent", box]
        geometry = f"{w}x{h}"
        if not options.allow_enlarge:
            geometry += ">"
        return ["-resize", geometry]
    if options.resize_mode == "percent" and options.resize != 100:
        return ["-resize", f"{options.resize}%"]
    return []


def build_command(binary: str, src: Path, out: Path, fmt: str, options: ProcessingOptions) -> list[str]:
    """One ImageMagick invocation: first page/layer of `src` written as `fmt` to `out`."""
    cmd = [binary]
    if src.suffix.lower() in _DENSITY_EXTENSIONS:
        cmd += ["-density", str(config.SVG_RASTER_DENSITY)]
    cmd.append(f"{src}[0]")
    cmd += _geometry_args(options)
    if fmt in ("jpg", "jpeg"):
        cmd += ["-background", "white", "-flatten"]
    cmd += ["-quality", str(options.quality)]
    cmd.append(f"{fmt.upper() if fmt != 'jpg' else 'JPEG'}:{out}")
    return cmd


def run_imagemagick(cmd: list[str], timeout: int) -> None:
    """Run one command. Tool-level failures raise CapabilityError, input failures ConversionError."""
    try:
        proc = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout)
    except FileNotFoundError as e:
        raise CapabilityError("ImageMagick not installed") from e
    except subprocess.TimeoutExpired as e:
        raise CapabilityError(f"ImageMagick timed out after {timeout}s") from e
    if proc.returncode == 0:
        return
    stderr = (proc.stderr or proc.stdout or "").strip()
    if proc.returncode < 0:
        raise CapabilityError(f"ImageMagick killed by signal {-proc.returncode}")
    if any(marker in stderr.lower() for marker in _MISSING_DELEGATE_MARKERS):
        raise CapabilityError(f"ImageMagick delegate missing: {stderr}")
    raise ConversionError(stderr or f"ImageMagick exited with status {proc.returncode}")


class SpecialtyConverter(BaseConverter):
    lane = Lane.SPECIALTY
    propagate_capability_errors = True

    def __init__(
        self,
        store: Optional[ArtifactStore] = None,
        capability: Optional[ImageMagickCapability] = None,
        timeout: int = config.IMAGEMAGICK_TIMEOUT,
    ):
        super().__init__(store)
        self.capability = capability or ImageMagickCapability()
        self.timeout = timeout

    def convert(self, file: UploadedFile, options: ProcessingOptions, result: ConversionResult) -> None:
        if not options.raster_formats:
            raise ConversionError("SVG output is only available for SVG sources")
        binary = self.capability.binary()
        if not binary:
            raise CapabilityError("ImageMagick not installed")
        for fmt in options.raster_formats:
            record = self.store.allocate(file.filename, fmt)
            try:
                run_imagemagick(build_command(binary, file.path, record.path, fmt, options), self.timeout)
                if not record.path.is_file():
                    raise ConversionError(f"ImageMagick produced no output for {file.filename}")
            except ConversionError:
                record.path.unlink(missing_ok=True)
                raise
            processed = result.add_output(fmt, record.path, record.logical_name)
            logger.info("ImageMagick converted %s -> %s (%.2f%% saved)", file.filename, record.filename, processed.savings)
