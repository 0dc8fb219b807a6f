"""
Tests for byte-scanning text recovery.
"""

from extraction.typedstream import recover_text
from tests.fixtures.typedstream_samples import (
    attributed_body,
    corrupt_reference_body,
    string_body,
)


class TestRecoverText:
    """Tests for recover_text()."""

    def test_string_payload(self):
        """Should find the text of a plain string payload."""
        assert recover_text(string_body("hi there")) == "hi there"

    def test_attributed_payload(self):
        """Should find the backing text of an attributed string."""
        assert recover_text(attributed_body("Hello world")) == "Hello world"

    def test_long_text(self):
        """Should read two-byte lengths."""
        text = "a" * 500
        assert recover_text(string_body(text)) == text

    def test_cut_off_text(self):
        """Should keep whatever text survived in a cut-off blob."""
        assert recover_text(string_body("hello world")[:-4]) == "hello wo"

    def test_no_string(self):
        """Should return None when no string marker exists."""
        assert recover_text(corrupt_reference_body()) is None

    def test_short_or_empty(self):
        """Should return None for empty and tiny blobs."""
        assert recover_text(b"") is None
        assert recover_text(b"\x01+") is None
