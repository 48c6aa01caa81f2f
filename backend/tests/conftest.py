from pathlib import Path

import pytest
from PIL import Image

from converter.artifacts import ArtifactStore
from converter.content import ContentValidator
from converter.conversion.models import UploadedFile
from converter.conversion.router import FormatRouter, RouterConfig
from converter.conversion.service import ConversionService

SIMPLE_SVG = (
    '<?xml version="1.0" encoding="UTF-8"?>\n'
    "<!-- exported by a drawing tool -->\n"
    '<svg xmlns="http://www.w3.org/2000/svg" width="40" height="20" viewBox="0 0 40 20">\n'
    "  <metadata>tool metadata</metadata>\n"
    '  <rect id="background-rectangle" x="0.000000" y="0.000000" width="40.000000" height="20.000000" fill="#ff0000"/>\n'
    "</svg>\n"
)


class StaticCapability:
    """Specialty probe stand-in that counts calls."""

    def __init__(self, available: bool = True):
        self.available = available
        self.calls = 0

    def is_available(self) -> bool:
        self.calls += 1
        return self.available


@pytest.fixture
def staging(tmp_path) -> Path:
    path = tmp_path / "uploads"
    path.mkdir()
    return path


@pytest.fixture
def store(tmp_path) -> ArtifactStore:
    return ArtifactStore(tmp_path / "outputs")


@pytest.fixture
def make_image(staging):
    """Write a Pillow-generated image into staging and return it as an UploadedFile."""

    def _make(name: str = "photo.png", size=(64, 48), mode: str = "RGB", color=(200, 30, 30), fmt=None):
        path = staging / name
        Image.new(mode, size, color).save(path, format=fmt)
        return UploadedFile(filename=name, path=path, size=path.stat().st_size)

    return _make


@pytest.fixture
def make_file(staging):
    def _make(name: str, data):
        path = staging / name
        if isinstance(data, str):
            path.write_text(data, encoding="utf-8")
        else:
            path.write_bytes(data)
        return UploadedFile(filename=name, path=path, size=path.stat().st_size)

    return _make


@pytest.fixture
def service(store):
    svc = ConversionService(
        store=store,
        validator=ContentValidator(),
        router=FormatRouter(RouterConfig(specialty_enabled=False), StaticCapability(False)),
        max_workers=4,
    )
    yield svc
    svc.shutdown()


def require_cairosvg():
    try:
        import cairosvg  # noqa: F401
    except (ImportError, OSError) as e:
        pytest.skip(f"cairosvg unavailable: {e}")
