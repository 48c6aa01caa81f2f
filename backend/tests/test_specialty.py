import subprocess
from pathlib import Path
from unittest.mock import patch

import pytest
from PIL import Image

from conftest import StaticCapability

from converter.conversion.models import Lane
from converter.conversion.router import FormatRouter, RouterConfig
from converter.conversion.service import ConversionService
from converter.conversion.specialty import ImageMagickCapability, SpecialtyConverter, build_command
from converter.content import ContentValidator
from converter.errors import CapabilityError
from converter.options import build_options


class FixedBinary(ImageMagickCapability):
    def binary(self):
        return "magick"


def _fake_magick(cmd, **kwargs):
    """Write a real image at the output path so sizes can be measured."""
    out = cmd[-1].split(":", 1)[1]
    Image.new("RGB", (8, 8), (1, 2, 3)).save(out, format="PNG")
    return subprocess.CompletedProcess(cmd, 0, stdout="", stderr="")


def test_build_command_percent_and_density():
    opts = build_options({"resize": 50, "quality": 70}, "image")
    cmd = build_command("magick", Path("/in/doc.pdf"), Path("/out/doc.png"), "png", opts)
    assert cmd == ["magick", "-density", "300", "/in/doc.pdf[0]", "-resize", "50%", "-quality", "70", "PNG:/out/doc.png"]


def test_build_command_absolute_geometry():
    inside = build_options({"resizeMode": "absolute", "width": 300, "height": 200}, "image")
    cmd = build_command("magick", Path("a.tif"), Path("a.webp"), "webp", inside)
    assert cmd[cmd.index("-resize") + 1] == "300x200>"

    enlarge = build_options({"resizeMode": "absolute", "width": 300, "allowEnlarge": True}, "image")
    cmd = build_command("magick", Path("a.tif"), Path("a.webp"), "webp", enlarge)
    assert cmd[cmd.index("-resize") + 1] == "300x"

    cover = build_options({"resizeMode": "absolute", "width": 300, "height": 200, "crop": "cover"}, "image")
    cmd = build_command("magick", Path("a.tif"), Path("a.jpg"), "jpg", cover)
    assert cmd[cmd.index("-resize") + 1 : cmd.index("-resize") + 6] == ["300x200^", "-gravity", "center", "-extent", "300x200"]
    assert cmd[-1] == "JPEG:a.jpg"


def test_capability_probe_checks_banner():
    cap = FixedBinary()
    ok = subprocess.CompletedProcess([], 0, stdout="Version: ImageMagick 7.1.1-21 Q16-HDRI", stderr="")
    other = subprocess.CompletedProcess([], 0, stdout="Converts FAT volumes to NTFS", stderr="")
    with patch("converter.conversion.specialty.subprocess.run", return_value=ok):
        assert cap.is_available()
    with patch("converter.conversion.specialty.subprocess.run", return_value=other):
        assert not cap.is_available()


def test_specialty_conversion_writes_each_format(store, make_image):
    upload = make_image("scan.tif", fmt="TIFF")
    converter = SpecialtyConverter(store, FixedBinary())
    with patch("converter.conversion.specialty.subprocess.run", side_effect=_fake_magick) as run:
        result = converter.process(upload, build_options({"formats": ["webp", "png"]}, "image"))
    assert result.ok, result.error
    assert result.lane == Lane.SPECIALTY
    assert run.call_count == 2
    assert [p.name for p in result.processed_files] == ["scan.webp", "scan.png"]
    assert not upload.path.exists()


def test_missing_binary_propagates_and_keeps_input(store, make_image):
    upload = make_image("scan.tif", fmt="TIFF")
    converter = SpecialtyConverter(store, FixedBinary())
    with patch("converter.conversion.specialty.subprocess.run", side_effect=FileNotFoundError("magick")):
        with pytest.raises(CapabilityError):
            converter.process(upload, build_options({}, "image"))
    assert upload.path.exists()


def test_input_failure_is_a_result_not_a_fallback(store, make_image):
    upload = make_image("scan.tif", fmt="TIFF")
    failed = subprocess.CompletedProcess([], 1, stdout="", stderr="magick: improper image header `scan.tif'")
    converter = SpecialtyConverter(store, FixedBinary())
    with patch("converter.conversion.specialty.subprocess.run", return_value=failed):
        result = converter.process(upload, build_options({}, "image"))
    assert not result.ok
    assert "improper image header" in result.error
    assert not upload.path.exists()


def test_mid_batch_capability_failure_falls_back_to_raster(store, make_image):
    files = [
        make_image("a.tif", fmt="TIFF"),
        make_image("b.tif", fmt="TIFF"),
        make_image("c.png"),
        make_image("d.tif", fmt="TIFF"),
    ]
    svc = ConversionService(
        store=store,
        validator=ContentValidator(),
        router=FormatRouter(RouterConfig(), StaticCapability(True)),
        capability=FixedBinary(),
        max_workers=2,
    )
    calls = []

    def flaky(cmd, **kwargs):
        calls.append(cmd)
        if len(calls) == 1:
            return _fake_magick(cmd)
        raise subprocess.TimeoutExpired(cmd, 120)

    try:
        with patch("converter.conversion.specialty.subprocess.run", side_effect=flaky):
            results = svc.process_batch(files, build_options({"formats": ["png"]}, "image"))
    finally:
        svc.shutdown()

    by_name = {r.name: r for r in results}
    assert [r.name for r in results] == ["a.tif", "b.tif", "c.png", "d.tif"]
    assert all(r.ok for r in results)
    assert by_name["a.tif"].lane == Lane.SPECIALTY
    assert by_name["b.tif"].lane == Lane.RASTER
    assert by_name["d.tif"].lane == Lane.RASTER
    assert by_name["c.png"].lane == Lane.RASTER
    # only a.tif and b.tif reached ImageMagick
    assert len(calls) == 2
    assert not any(f.path.exists() for f in files)
