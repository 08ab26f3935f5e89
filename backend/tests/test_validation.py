"""
ImageAnalyzer Backend: Validation Gate Unit Tests
==================================================

What:  Tests for the ordered per-file checks of ValidationGate and the
       filename policy helpers.
How:   Pure functions over UploadDescriptor; no disk, no HTTP.

Test Strategy:
    ✅ Every allow-listed MIME type and extension
    ✅ One rejection per check, with the expected ErrorKind
    ✅ Check order: the first failing check decides the kind
    ✅ Double-extension and reserved-name smuggling
"""

import pytest

from imageanalyzer.exceptions import ErrorKind
from imageanalyzer.schemas.upload import ValidationState
from imageanalyzer.services.filename_policy import (
    extract_extension,
    is_safe_storage_name,
    mime_to_extension,
    normalize_mime_type,
)
from imageanalyzer.services.validation import ValidationGate


class TestValidationGateAccepts:
    """Inputs that must pass every check."""

    def setup_method(self):
        self.gate = ValidationGate()

    @pytest.mark.parametrize(
        "name,mime_type",
        [
            ("test.jpg", "image/jpeg"),
            ("photo.jpeg", "image/jpeg"),
            ("scan.png", "image/png"),
            ("loop.gif", "image/gif"),
            ("modern.webp", "image/webp"),
            ("legacy.jpg", "image/jpg"),
        ],
    )
    def test_allowed_types(self, make_descriptor, name, mime_type):
        result = self.gate.validate(make_descriptor(name, mime_type))
        assert result.is_accepted
        assert result.state is ValidationState.ACCEPTED
        assert result.error_kind is None

    def test_uppercase_extension_and_mime(self, make_descriptor):
        assert self.gate.validate(make_descriptor("PHOTO.JPG", "IMAGE/JPEG")).is_accepted

    def test_mime_parameters_ignored(self, make_descriptor):
        assert self.gate.validate(make_descriptor("a.png", "image/png; charset=binary")).is_accepted

    def test_missing_extension_is_fine(self, make_descriptor):
        """Extension is derived from the MIME type later."""
        assert self.gate.validate(make_descriptor("camera-upload", "image/png")).is_accepted

    def test_name_with_spaces_and_unicode(self, make_descriptor):
        assert self.gate.validate(make_descriptor("Urlaub Strand ü.jpg")).is_accepted

    def test_name_of_exactly_255_bytes(self, make_descriptor):
        name = "a" * 251 + ".jpg"
        assert len(name.encode("utf-8")) == 255
        assert self.gate.validate(make_descriptor(name)).is_accepted


class TestValidationGateRejects:
    """One test per check, in check order."""

    def setup_method(self):
        self.gate = ValidationGate()

    def _kind(self, descriptor):
        result = self.gate.validate(descriptor)
        assert result.state is ValidationState.REJECTED
        assert result.message
        return result.error_kind

    def test_mime_type_not_allowed(self, make_descriptor):
        assert self._kind(make_descriptor("doc.jpg", "application/pdf")) is ErrorKind.INVALID_MIME_TYPE

    def test_empty_mime_type(self, make_descriptor):
        assert self._kind(make_descriptor("doc.jpg", "")) is ErrorKind.INVALID_MIME_TYPE

    def test_svg_is_not_allowed(self, make_descriptor):
        assert self._kind(make_descriptor("vector.svg", "image/svg+xml")) is ErrorKind.INVALID_MIME_TYPE

    def test_extension_not_allowed(self, make_descriptor):
        assert self._kind(make_descriptor("image.bmp", "image/png")) is ErrorKind.INVALID_EXTENSION

    @pytest.mark.parametrize("name", ["../../evil.png", "a/b.png", "a\\b.png", "..png"])
    def test_path_characters(self, make_descriptor, name):
        assert self._kind(make_descriptor(name, "image/png")) is ErrorKind.INVALID_FILENAME_PATH

    @pytest.mark.parametrize("name", ["virus.exe.png", "x.bat.jpg", "run.js.gif", "a.vbs.webp"])
    def test_dangerous_extension_anywhere(self, make_descriptor, name):
        assert self._kind(make_descriptor(name, "image/png")) is ErrorKind.DANGEROUS_FILENAME

    def test_dangerous_substring_is_over_strict(self, make_descriptor):
        """".com" inside a domain-like name is rejected as well."""
        assert self._kind(make_descriptor("example.com.jpg")) is ErrorKind.DANGEROUS_FILENAME

    def test_too_long_in_utf8_bytes(self, make_descriptor):
        # 260 UTF-8 bytes but only 132 characters
        name = "ü" * 128 + ".jpg"
        assert len(name) < 255
        assert self._kind(make_descriptor(name)) is ErrorKind.FILENAME_TOO_LONG

    def test_null_byte(self, make_descriptor):
        assert self._kind(make_descriptor("photo\0.jpg")) is ErrorKind.NULL_BYTE_FILENAME

    @pytest.mark.parametrize(
        "name",
        [
            "shell.php.jpg",
            "page.asp.png",
            "con.jpg",
            "CON.png",
            "lpt1.gif",
            "nul.jpeg",
            "what?.jpg",
            "a<b>.png",
            'quote".jpg',
            "pipe|.jpg",
            "star*.jpg",
            "drive:.jpg",
        ],
    )
    def test_malicious_patterns(self, make_descriptor, name):
        assert self._kind(make_descriptor(name, "image/jpeg")) is ErrorKind.MALICIOUS_FILENAME

    def test_reserved_name_only_as_whole_stem(self, make_descriptor):
        assert self.gate.validate(make_descriptor("console.jpg")).is_accepted
        assert self.gate.validate(make_descriptor("com10.jpg")).is_accepted


class TestCheckOrder:
    """The first failing check decides the reported kind."""

    def setup_method(self):
        self.gate = ValidationGate()

    def test_mime_before_path(self, make_descriptor):
        result = self.gate.validate(make_descriptor("../evil.exe", "application/x-msdownload"))
        assert result.error_kind is ErrorKind.INVALID_MIME_TYPE

    def test_extension_before_dangerous(self, make_descriptor):
        result = self.gate.validate(make_descriptor("payload.exe", "image/png"))
        assert result.error_kind is ErrorKind.INVALID_EXTENSION

    def test_path_before_null_byte(self, make_descriptor):
        result = self.gate.validate(make_descriptor("../\0.png", "image/png"))
        assert result.error_kind is ErrorKind.INVALID_FILENAME_PATH

    def test_validate_all_keeps_order(self, make_descriptor):
        results = self.gate.validate_all([
            make_descriptor("ok.jpg"),
            make_descriptor("bad.pdf", "application/pdf"),
        ])
        assert [r.is_accepted for r in results] == [True, False]


class TestFilenamePolicyHelpers:
    def test_extract_extension(self):
        assert extract_extension("Photo.JPG") == ".jpg"
        assert extract_extension("noext") == ""
        assert extract_extension(".gitkeep") == ""
        assert extract_extension("") == ""

    def test_normalize_mime_type(self):
        assert normalize_mime_type(" Image/PNG ; q=1") == "image/png"
        assert normalize_mime_type(None) == ""

    def test_mime_to_extension(self):
        assert mime_to_extension("image/jpeg") == ".jpg"
        assert mime_to_extension("image/webp") == ".webp"
        assert mime_to_extension("application/octet-stream") == ".jpg"

    def test_safe_storage_name(self):
        assert is_safe_storage_name("image-1700000000000-abcdef.png")
        assert not is_safe_storage_name("image 1.png")
        assert not is_safe_storage_name("../x.png")
        assert not is_safe_storage_name("")
