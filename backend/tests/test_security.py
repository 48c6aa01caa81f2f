import re

import pytest

from converter.errors import InputError
from converter.security import (
    generate_secure_filename,
    is_path_traversal_safe,
    is_within_directory,
    logical_name,
    parse_options_json,
    sanitize_filename,
    validate_extension,
)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("../../etc/passwd", "passwd"),
        ("my photo.JPG", "my_photo.jpg"),
        ("  ..hidden..png", "hidden.png"),
        ("a<b>c:d|e?.png", "abcde.png"),
        ("C:\\Users\\me\\shot.png", "shot.png"),
        ("***.png", "file.png"),
        ("", "unnamed"),
        (None, "unnamed"),
        (42, "unnamed"),
    ],
)
def test_sanitize_filename(raw, expected):
    assert sanitize_filename(raw) == expected


def test_sanitize_filename_output_charset_and_length():
    result = sanitize_filename("x" * 500 + "\x00é€.webp")
    base, ext = result.rsplit(".", 1)
    assert ext == "webp"
    assert len(base) == 200
    assert re.fullmatch(r"[A-Za-z0-9_\-]+", base)


def test_sanitize_filename_is_idempotent():
    once = sanitize_filename("../My Holiday (1).tar.GZ")
    assert sanitize_filename(once) == once


@pytest.mark.parametrize(
    "name, safe",
    [
        ("photo-1700000000000-abc.webp", True),
        ("../secret", False),
        ("a/b.png", False),
        ("a\\b.png", False),
        ("/etc/passwd", False),
        ("C:\\x.png", False),
        ("ok\x00.png", False),
        ("", False),
        (None, False),
    ],
)
def test_is_path_traversal_safe(name, safe):
    assert is_path_traversal_safe(name) is safe


def test_generate_secure_filename_is_unique_and_sanitized():
    a = generate_secure_filename("../My Photo.PNG")
    b = generate_secure_filename("../My Photo.PNG")
    assert a != b
    assert re.fullmatch(r"My_Photo-\d+-[0-9a-f]{8}\.png", a)
    assert is_path_traversal_safe(a)


def test_logical_name_swaps_extension():
    assert logical_name("holiday shot.jpeg", "webp") == "holiday_shot.webp"


def test_validate_extension():
    assert validate_extension("a.PNG", "image").valid
    assert validate_extension("clip.mov", "video").valid
    assert not validate_extension("clip.mov", "image").valid
    assert not validate_extension("doc.psd", "image", accept_specialty=False).valid
    assert validate_extension("doc.psd", "image", accept_specialty=True).valid
    check = validate_extension("a.png", "audio")
    assert not check.valid
    assert check.error == "Unknown validation type"


def test_parse_options_json():
    assert parse_options_json(None) == {}
    assert parse_options_json("  ") == {}
    assert parse_options_json('{"quality": 50}') == {"quality": 50}
    with pytest.raises(InputError):
        parse_options_json("{not json")
    with pytest.raises(InputError):
        parse_options_json("[1, 2]")


def test_is_within_directory(tmp_path):
    assert is_within_directory(tmp_path / "a.png", tmp_path)
    assert is_within_directory(tmp_path, tmp_path)
    assert not is_within_directory(tmp_path / ".." / "a.png", tmp_path)
    (tmp_path / "escape").symlink_to(tmp_path.parent)
    assert not is_within_directory(tmp_path / "escape" / "a.png", tmp_path)
