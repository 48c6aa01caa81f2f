import pytest

from conftest import SIMPLE_SVG

from converter.content import ContentValidator, ValidationOutcome


def test_real_png_is_valid_image(make_image):
    upload = make_image("photo.png")
    check = ContentValidator().validate(upload.path, "image")
    assert check.valid
    assert check.detected_type == "image/png"


def test_spoofed_extension_is_rejected(make_file):
    upload = make_file("evil.png", b"MZ\x90\x00" + b"\x00" * 200 + b"This program cannot be run in DOS mode")
    check = ContentValidator().validate(upload.path, "image")
    assert check.outcome == ValidationOutcome.INVALID
    assert check.error


def test_image_is_not_a_video(make_image):
    upload = make_image("frame.png")
    check = ContentValidator().validate(upload.path, "video")
    assert not check.valid
    assert check.error == "File type image/png is not an allowed video format"


def test_clean_svg_is_valid(make_file):
    upload = make_file("logo.svg", SIMPLE_SVG)
    check = ContentValidator().validate(upload.path, "image")
    assert check.valid
    assert check.detected_type == "image/svg+xml"


def test_svg_with_script_is_rejected(make_file):
    svg = '<svg xmlns="http://www.w3.org/2000/svg"><script>alert(1)</script></svg>'
    upload = make_file("logo.svg", svg)
    check = ContentValidator().validate(upload.path, "image")
    assert not check.valid
    assert "dangerous" in check.error
    assert "script" in check.error


def test_svg_with_event_handler_is_rejected(make_file):
    svg = '<svg xmlns="http://www.w3.org/2000/svg"><rect onload="steal()" width="1" height="1"/></svg>'
    upload = make_file("logo.svg", svg)
    assert not ContentValidator().validate(upload.path, "image").valid


def test_svg_font_attributes_are_not_event_handlers(make_file):
    svg = '<svg xmlns="http://www.w3.org/2000/svg"><text font-family="serif" font-size="4">hi</text></svg>'
    upload = make_file("text.svg", svg)
    assert ContentValidator().validate(upload.path, "image").valid


def test_svg_claimed_as_video_is_rejected(make_file):
    upload = make_file("logo.svg", SIMPLE_SVG)
    check = ContentValidator().validate(upload.path, "video")
    assert not check.valid
    assert check.error == "SVG files are only allowed for image processing"


def test_non_svg_text_with_svg_extension_is_rejected(make_file):
    upload = make_file("notes.svg", "just some text")
    check = ContentValidator().validate(upload.path, "image")
    assert check.error == "Invalid SVG file format"


def test_missing_file_is_an_error_outcome(staging):
    check = ContentValidator().validate(staging / "gone.png", "image")
    assert check.outcome == ValidationOutcome.ERROR
    assert check.error.startswith("Validation error:")


def test_specialty_mimes_need_opt_in(make_file):
    upload = make_file("doc.pdf", b"%PDF-1.4\n1 0 obj\n<< /Type /Catalog >>\nendobj\ntrailer\n<<>>\n%%EOF\n")
    assert not ContentValidator(accept_specialty=False).validate(upload.path, "image").valid
    assert ContentValidator(accept_specialty=True).validate(upload.path, "image").valid


@pytest.mark.parametrize(
    "svg, label",
    [
        (
            '<svg xmlns="http://www.w3.org/2000/svg" xmlns:s="http://www.w3.org/2000/svg">'
            '<s:script>alert(1)</s:script><rect width="1" height="1"/></svg>',
            "script element",
        ),
        (
            '<svg xmlns="http://www.w3.org/2000/svg"><a href="jav&#97;script:alert(1)"><rect width="1" height="1"/></a></svg>',
            "javascript: URI",
        ),
        (
            '<svg xmlns="http://www.w3.org/2000/svg"><a href="java&#x09;script:alert(1)"><rect width="1" height="1"/></a></svg>',
            "javascript: URI",
        ),
        (
            '<?xml version="1.0"?>\n<!DOCTYPE svg [<!ENTITY payload "&#60;script&#62;alert(1)&#60;/script&#62;">]>\n'
            '<svg xmlns="http://www.w3.org/2000/svg">&payload;</svg>',
            "script element",
        ),
    ],
)
def test_disguised_svg_payloads_are_rejected(make_file, svg, label):
    upload = make_file("logo.svg", svg)
    check = ContentValidator().validate(upload.path, "image")
    assert check.outcome == ValidationOutcome.INVALID
    assert label in check.error


def test_malformed_svg_is_rejected(make_file):
    upload = make_file("broken.svg", '<svg xmlns="http://www.w3.org/2000/svg"><rect width="1"></svg>')
    check = ContentValidator().validate(upload.path, "image")
    assert check.error == "Invalid SVG file format"
