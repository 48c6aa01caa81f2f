"""Video lane: one ffmpeg invocation per file, one output container per call."""
import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from converter import config
from converter.artifacts import ArtifactStore
from converter.conversion.base import BaseConverter
from converter.conversion.models import ConversionResult, Lane, UploadedFile
from converter.errors import CapabilityError, ConversionError
from converter.options import ProcessingOptions

logger = logging.getLogger("converter.video")

GIF_FPS = 15


@dataclass(frozen=True)
class VideoPreset:
    x264_preset: str
    crf: int
    vp9_crf: int
    vp9_deadline: str
    vp9_cpu_used: int


VIDEO_PRESETS = {
    "web": VideoPreset("medium", 23, 32, "good", 2),
    "quality": VideoPreset("slow", 18, 24, "good", 1),
    "fast": VideoPreset("veryfast", 28, 40, "realtime", 5),
}


def _even(n: int) -> int:
    return max(2, n - n % 2)


def _scale_filter(options: ProcessingOptions) -> Optional[str]:
    """ffmpeg scale expression; dimensions are kept even for yuv420p encoders."""
    if options.has_absolute_size:
        w, h = options.width, options.height
        if w and h:
            if options.crop == "cover":
                w, h = _even(w), _even(h)
                return f"scale={w}:{h}:force_original_aspect_ratio=increase,crop={w}:{h}"
            return f"scale={w}:{h}:force_original_aspect_ratio=decrease:force_divisible_by=2"
        if w:
            return f"scale={_even(w)}:-2"
        return f"scale=-2:{_even(h)}"
    if options.resize_mode == "percent" and options.resize != 100:
        r = options.resize
        return f"scale=trunc(iw*{r}/200)*2:trunc(ih*{r}/200)*2"
    return None


def build_ffmpeg_command(src: Path, out: Path, options: ProcessingOptions) -> list[str]:
    fmt = options.video_format
    preset = VIDEO_PRESETS[options.preset]
    scale = _scale_filter(options)
    cmd = ["ffmpeg", "-y", "-hide_banner", "-loglevel", "error", "-i", str(src)]

    if fmt == "gif":
        chain = ",".join(f for f in (scale, f"fps={GIF_FPS}") if f)
        cmd += [
            "-filter_complex", f"[0:v]{chain},split[a][b];[a]palettegen[p];[b][p]paletteuse",
            "-loop", "0", "-an",
        ]
        cmd.append(str(out))
        return cmd

    if scale:
        cmd += ["-vf", scale]

    if fmt == "webm":
        cmd += ["-c:v", "libvpx-vp9", "-deadline", preset.vp9_deadline, "-cpu-used", str(preset.vp9_cpu_used)]
        if options.bitrate:
            cmd += ["-b:v", options.bitrate]
        else:
            cmd += ["-crf", str(preset.vp9_crf), "-b:v", "0"]
        audio = ["-c:a", "libopus"]
    else:
        cmd += ["-c:v", "libx264", "-preset", preset.x264_preset, "-pix_fmt", "yuv420p"]
        if options.bitrate:
            cmd += ["-b:v", options.bitrate]
        else:
            cmd += ["-crf", str(preset.crf)]
        audio = ["-c:a", "aac"]
        if fmt in ("mp4", "mov"):
            cmd += ["-movflags", "+faststart"]

    cmd += audio if options.audio else ["-an"]
    cmd.append(str(out))
    return cmd


def run_ffmpeg(cmd: list[str], timeout: int) -> None:
    try:
        proc = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout)
    except FileNotFoundError as e:
        logger.error("ffmpeg not found. Install ffmpeg for video conversion.")
        raise CapabilityError("ffmpeg not installed") from e
    except subprocess.TimeoutExpired as e:
        raise ConversionError(f"ffmpeg timed out after {timeout}s") from e
    if proc.returncode != 0:
        raise ConversionError((proc.stderr or proc.stdout or "").strip() or "ffmpeg failed")


class VideoConverter(BaseConverter):
    lane = Lane.VIDEO

    def __init__(self, store: Optional[ArtifactStore] = None, timeout: int = config.FFMPEG_TIMEOUT):
        super().__init__(store)
        self.timeout = timeout

    def convert(self, file: UploadedFile, options: ProcessingOptions, result: ConversionResult) -> None:
        record = self.store.allocate(file.filename, options.video_format)
        try:
            run_ffmpeg(build_ffmpeg_command(file.path, record.path, options), self.timeout)
            if not record.path.is_file():
                raise ConversionError(f"ffmpeg produced no output for {file.filename}")
        except ConversionError:
            record.path.unlink(missing_ok=True)
            raise
        processed = result.add_output(options.video_format, record.path, record.logical_name)
        logger.info("Converted video %s -> %s (%.2f%% saved)", file.filename, record.filename, processed.savings)
