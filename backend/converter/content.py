"""Verify that staged bytes really are what the upload claims to be."""
import logging
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional, Union

import magic

from converter import config

logger = logging.getLogger("converter.content")

ALLOWED_IMAGE_MIMES = {
    "image/jpeg",
    "image/png",
    "image/gif",
    "image/webp",
    "image/avif",
    "image/bmp",
    "image/tiff",
}
# Only with ACCEPT_SPECIALTY_UPLOADS; these are rendered through ImageMagick
SPECIALTY_IMAGE_MIMES = {
    "image/vnd.adobe.photoshop",
    "application/postscript",
    "application/pdf",
    "image/heic",
    "image/heif",
}
ALLOWED_VIDEO_MIMES = {
    "video/mp4",
    "video/webm",
    "video/quicktime",
    "video/x-matroska",
    "video/x-msvideo",
    "video/x-flv",
    "video/x-ms-wmv",
    "video/x-m4v",
}

# libmagic spellings differ between versions
_MIME_ALIASES = {
    "image/x-ms-bmp": "image/bmp",
    "image/x-bmp": "image/bmp",
    "image/x-photoshop": "image/vnd.adobe.photoshop",
    "image/x-eps": "application/postscript",
    "video/avi": "video/x-msvideo",
    "video/msvideo": "video/x-msvideo",
    "video/x-ms-asf": "video/x-ms-wmv",
    "application/vnd.ms-asf": "video/x-ms-wmv",
    "video/matroska": "video/x-matroska",
    "video/x-flash-video": "video/x-flv",
}
_UNDETERMINED = {"application/octet-stream", "inode/x-empty", ""}

_SVG_DANGERS = [
    (re.compile(r"<(?:[\w.-]+:)?script[\s>/]", re.I), "script element"),
    (re.compile(r"javascript:", re.I), "javascript: URI"),
    (re.compile(r"(?<![\w:-])on\w+\s*=", re.I), "inline event handler"),
    (re.compile(r"<(?:[\w.-]+:)?foreignObject", re.I), "foreignObject element"),
    (re.compile(r"""xlink:href\s*=\s*["'](?!#)""", re.I), "external xlink:href reference"),
]
_DANGEROUS_ELEMENTS = {"script": "script element", "foreignobject": "foreignObject element"}
_XLINK_HREF = "{http://www.w3.org/1999/xlink}href"
_URI_NOISE = re.compile(r"[\s\x00-\x1f]+")


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _scan_svg_tree(root: ET.Element) -> Optional[str]:
    """Label of the first dangerous construct in the parsed document, if any."""
    for element in root.iter():
        if not isinstance(element.tag, str):
            continue
        label = _DANGEROUS_ELEMENTS.get(_local_name(element.tag).lower())
        if label:
            return label
        for attr, value in element.attrib.items():
            name = _local_name(attr).lower()
            if name.startswith("on"):
                return "inline event handler"
            uri = _URI_NOISE.sub("", value).lower()
            if "javascript:" in uri:
                return "javascript: URI"
            if attr == _XLINK_HREF and not uri.startswith("#"):
                return "external xlink:href reference"
    return None


class ValidationOutcome(str, Enum):
    VALID = "valid"
    INVALID = "invalid"
    ERROR = "error"


@dataclass
class ContentCheck:
    outcome: ValidationOutcome
    detected_type: Optional[str] = None
    error: Optional[str] = None

    @property
    def valid(self) -> bool:
        return self.outcome == ValidationOutcome.VALID


def _invalid(error: str, detected_type: Optional[str] = None) -> ContentCheck:
    return ContentCheck(ValidationOutcome.INVALID, detected_type, error)


def detect_mime(path: Path) -> str:
    """MIME type from the file signature, normalized to one spelling."""
    mime = (magic.from_file(str(path), mime=True) or "").lower()
    return _MIME_ALIASES.get(mime, mime)


class ContentValidator:
    """Signature and content inspection for staged uploads."""

    def __init__(self, accept_specialty: bool = False):
        self.accept_specialty = accept_specialty

    def allowed_mimes(self, category: str) -> set[str]:
        if category == "image":
            if self.accept_specialty:
                return ALLOWED_IMAGE_MIMES | SPECIALTY_IMAGE_MIMES
            return set(ALLOWED_IMAGE_MIMES)
        if category == "video":
            return set(ALLOWED_VIDEO_MIMES)
        return set()

    def validate(self, staged_path: Union[str, Path], claimed_category: str) -> ContentCheck:
        path = Path(staged_path)
        try:
            if not path.is_file():
                raise FileNotFoundError(f"No such file: {path.name}")
            if path.suffix.lower() in config.VECTOR_EXTENSIONS:
                return self._validate_svg(path, claimed_category)
            return self._validate_binary(path, claimed_category)
        except (OSError, magic.MagicException) as e:
            logger.warning("Could not read %s for validation: %s", path.name, e)
            return ContentCheck(ValidationOutcome.ERROR, None, f"Validation error: {e}")

    def _validate_svg(self, path: Path, claimed_category: str) -> ContentCheck:
        if claimed_category != "image":
            return _invalid("SVG files are only allowed for image processing", "svg")
        content = path.read_text(encoding="utf-8", errors="replace")
        head = content.strip().lower()
        if not (head.startswith("<?xml") or head.startswith("<svg") or "<svg" in head):
            return _invalid("Invalid SVG file format")
        for pattern, label in _SVG_DANGERS:
            if pattern.search(content):
                return self._dangerous_svg(path, label)
        # Entity and character references only resolve after parsing
        try:
            root = ET.fromstring(path.read_bytes())
        except ET.ParseError as e:
            logger.warning("Rejected %s: SVG is not well-formed XML: %s", path.name, e)
            return _invalid("Invalid SVG file format")
        label = _scan_svg_tree(root)
        if label:
            return self._dangerous_svg(path, label)
        return ContentCheck(ValidationOutcome.VALID, "image/svg+xml")

    @staticmethod
    def _dangerous_svg(path: Path, label: str) -> ContentCheck:
        logger.warning("Rejected %s: SVG contains %s", path.name, label)
        return _invalid(f"SVG contains potentially dangerous content ({label})", "svg")

    def _validate_binary(self, path: Path, claimed_category: str) -> ContentCheck:
        mime = detect_mime(path)
        if mime in _UNDETERMINED:
            return _invalid("Unable to determine file type")
        if claimed_category not in ("image", "video"):
            return _invalid("Unknown validation type", mime)
        if mime in self.allowed_mimes(claimed_category):
            return ContentCheck(ValidationOutcome.VALID, mime)
        return _invalid(f"File type {mime} is not an allowed {claimed_category} format", mime)


_default_validator: Optional[ContentValidator] = None


def get_content_validator() -> ContentValidator:
    global _default_validator
    if _default_validator is None:
        _default_validator = ContentValidator(accept_specialty=config.ACCEPT_SPECIALTY_UPLOADS)
    return _default_validator


def validate_content(staged_path: Union[str, Path], claimed_category: str) -> ContentCheck:
    return get_content_validator().validate(staged_path, claimed_category)
