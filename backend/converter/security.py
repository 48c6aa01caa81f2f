"""Filename sanitization, path-traversal gates and the extension allow-list."""
import json
import ntpath
import os
import posixpath
import re
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional, Union

from converter import config
from converter.errors import InputError

# Applied in order to the base name
_DANGEROUS_PATTERNS = [
    (re.compile(r"\x00"), ""),
    (re.compile(r"\.\."), ""),
    (re.compile(r'[<>:"|?*]'), ""),
    (re.compile(r"[\x00-\x1f\x7f]"), ""),
    (re.compile(r"^\.+"), ""),
    (re.compile(r"\.+$"), ""),
    (re.compile(r"\s+$"), ""),
    (re.compile(r"^\s+"), ""),
]
_WHITESPACE = re.compile(r"\s+")
_UNSAFE_BASE_CHARS = re.compile(r"[^A-Za-z0-9_\-]")
_UNSAFE_EXT_CHARS = re.compile(r"[^a-z0-9]")


def _split_name(filename: str) -> tuple[str, str]:
    """Last path component split into (base, lower-cased extension with dot)."""
    name = re.split(r"[\\/]", filename)[-1]
    base, ext = os.path.splitext(name)
    ext = _UNSAFE_EXT_CHARS.sub("", ext.lower())
    return base, f".{ext}" if ext else ""


def sanitize_filename(filename: Any) -> str:
    """
    Repair an arbitrary caller-supplied filename into one safe for the filesystem.
    Never raises; the base name falls back to "file" (or "unnamed" for no input).
    """
    if not filename or not isinstance(filename, str):
        return "unnamed"
    base, ext = _split_name(filename)
    for pattern, repl in _DANGEROUS_PATTERNS:
        base = pattern.sub(repl, base)
    base = _WHITESPACE.sub("_", base)
    base = _UNSAFE_BASE_CHARS.sub("", base)
    if not base:
        base = "file"
    base = base[: config.MAX_FILENAME_LENGTH]
    return base + ext


def is_path_traversal_safe(filename: Any) -> bool:
    """Reject (never repair) names that could escape a directory join."""
    if not filename or not isinstance(filename, str):
        return False
    if "\x00" in filename:
        return False
    if ".." in filename or "/" in filename or "\\" in filename:
        return False
    if posixpath.isabs(filename) or ntpath.isabs(filename):
        return False
    return os.path.basename(filename) == filename


def is_within_directory(path: Union[str, Path], directory: Union[str, Path]) -> bool:
    resolved = Path(path).resolve()
    root = Path(directory).resolve()
    return resolved == root or root in resolved.parents


def generate_secure_filename(original_name: Any) -> str:
    """Collision-resistant store name: <sanitized-base>-<epoch ms>-<random><ext>."""
    sanitized = sanitize_filename(original_name)
    base, ext = os.path.splitext(sanitized)
    return f"{base}-{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}{ext}"


def logical_name(original_name: Any, fmt: str) -> str:
    """Download name for an output: sanitized source base with the target format as extension."""
    base, _ = os.path.splitext(sanitize_filename(original_name))
    return f"{base}.{fmt}"


@dataclass
class ExtensionCheck:
    valid: bool
    error: Optional[str] = None


def allowed_extensions(category: str, accept_specialty: Optional[bool] = None) -> set[str]:
    if accept_specialty is None:
        accept_specialty = config.ACCEPT_SPECIALTY_UPLOADS
    if category == "image":
        if accept_specialty:
            return config.IMAGE_EXTENSIONS | config.SPECIALTY_EXTENSIONS
        return set(config.IMAGE_EXTENSIONS)
    if category == "video":
        return set(config.VIDEO_EXTENSIONS)
    return set()


def validate_extension(filename: str, category: str, accept_specialty: Optional[bool] = None) -> ExtensionCheck:
    """Cheap early gate on the declared extension; content inspection comes later."""
    if category not in ("image", "video"):
        return ExtensionCheck(False, "Unknown validation type")
    _, ext = _split_name(filename or "")
    if ext in allowed_extensions(category, accept_specialty):
        return ExtensionCheck(True)
    return ExtensionCheck(False, f"Extension {ext or '(none)'} is not an allowed {category} extension")


def parse_options_json(raw: Optional[str]) -> dict:
    """Decode the options form field. Missing or blank means no options."""
    if raw is None or not raw.strip():
        return {}
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise InputError(f"JSON parse error: {e.msg}")
    if not isinstance(data, dict):
        raise InputError("Parsed JSON is not an object")
    return data
