"""
WalkLog Backend — Image Validator Unit Tests
==============================================

What:  Tests for ensure_valid_image() / validate_image().

Test Strategy:
    ✅ Every allowed format passes
    ✅ Size boundary: exactly the limit passes, one byte over fails
    ✅ Check order: an oversized non-image reports TooLarge, not NotAnImage
    ✅ Unsupported but decodable formats name the detected format
"""

import pytest

from walklog.exceptions import (
    ImageTooLargeError,
    NotAnImageError,
    UnsupportedFormatError,
)
from walklog.services.format_sniffer import DetectedFormat
from walklog.services.image_validator import (
    BYTES_PER_MB,
    ensure_valid_image,
    validate_image,
)

from conftest import make_image_bytes


def pad_to(data: bytes, size: int) -> bytes:
    """Trailing bytes after the image end; decoders ignore them."""
    return data + b"\x00" * (size - len(data))


class TestAllowedFormats:

    def test_jpeg(self, jpeg_bytes):
        assert ensure_valid_image(jpeg_bytes).format is DetectedFormat.JPEG

    def test_png(self, png_alpha_bytes):
        assert validate_image(png_alpha_bytes).valid

    def test_16bit_grayscale_png(self):
        probe = ensure_valid_image(make_image_bytes("PNG", size=(32, 32), mode="I;16", color=30000))
        assert probe.format is DetectedFormat.PNG

    def test_webp(self, webp_bytes):
        assert validate_image(webp_bytes).valid

    def test_gif(self, gif_bytes):
        assert validate_image(gif_bytes).valid

    def test_heic(self, heic_bytes):
        assert ensure_valid_image(heic_bytes).format is DetectedFormat.HEIF


class TestSizeLimit:

    def test_exactly_at_limit_passes(self, jpeg_bytes):
        content = pad_to(jpeg_bytes, BYTES_PER_MB)
        result = validate_image(content, max_size_mb=1)
        assert result.valid
        assert result.error is None

    def test_one_byte_over_fails(self, jpeg_bytes):
        content = pad_to(jpeg_bytes, BYTES_PER_MB + 1)
        with pytest.raises(ImageTooLargeError) as exc_info:
            ensure_valid_image(content, max_size_mb=1)
        assert exc_info.value.kind == "TooLarge"
        assert "max: 1MB" in exc_info.value.message

    def test_message_format(self, jpeg_bytes):
        content = pad_to(jpeg_bytes, int(2.5 * BYTES_PER_MB))
        result = validate_image(content, max_size_mb=1)
        assert not result.valid
        assert result.message == "Image too large: 2.50MB (max: 1MB)"

    def test_size_checked_before_content(self):
        """An oversized buffer is never decoded, even if it is garbage."""
        with pytest.raises(ImageTooLargeError):
            ensure_valid_image(b"x" * (BYTES_PER_MB + 1), max_size_mb=1)


class TestRejections:

    def test_text_is_not_an_image(self):
        result = validate_image(b"hello, this is plain text")
        assert not result.valid
        assert isinstance(result.error, NotAnImageError)
        assert result.message.startswith("Not a valid image file: ")

    def test_empty_buffer(self):
        with pytest.raises(NotAnImageError):
            ensure_valid_image(b"")

    def test_bmp_is_unsupported(self, bmp_bytes):
        with pytest.raises(UnsupportedFormatError) as exc_info:
            ensure_valid_image(bmp_bytes)
        assert exc_info.value.message == (
            "Invalid image format: bmp. Allowed: JPEG, PNG, WebP, HEIC, GIF"
        )
        assert exc_info.value.kind == "UnsupportedFormat"
