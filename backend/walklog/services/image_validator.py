"""
WalkLog Backend — Image Validator
===================================

What:  Cheap policy checks that run before any decoding or re-encoding.
How:   Size is checked on the raw byte count; format and dimensions come
       from a header-only probe (see format_sniffer.probe_image).
Who:   ImageService.process_upload(), and any caller that wants a
       result object instead of an exception.

Check order (cheapest first, first failure wins):
    1. Size          → ImageTooLargeError      (TooLarge)
    2. Decodable     → NotAnImageError         (NotAnImage)
    3. Format        → UnsupportedFormatError  (UnsupportedFormat)
    4. Dimensions    → InvalidDimensionsError  (InvalidDimensions)
"""

import logging
from dataclasses import dataclass
from typing import Optional

from walklog.exceptions import (
    ImageTooLargeError,
    ImageValidationError,
    InvalidDimensionsError,
    NotAnImageError,
    UnsupportedFormatError,
)
from walklog.services.format_sniffer import DetectedFormat, ImageProbe, probe_image

logger = logging.getLogger(__name__)

ALLOWED_FORMATS = frozenset(
    {
        DetectedFormat.JPEG,
        DetectedFormat.PNG,
        DetectedFormat.WEBP,
        DetectedFormat.GIF,
        DetectedFormat.HEIF,
    }
)

BYTES_PER_MB = 1024 * 1024


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    error: Optional[ImageValidationError] = None

    @property
    def message(self) -> Optional[str]:
        return self.error.message if self.error else None


def ensure_valid_image(buffer: bytes, max_size_mb: float = 10) -> ImageProbe:
    """
    Run every check and return the probe on success.

    A buffer of exactly `max_size_mb` MiB passes; one byte more does not.

    Raises:
        ImageValidationError subclass for the first failing check.
    """
    size_mb = len(buffer) / BYTES_PER_MB
    if size_mb > max_size_mb:
        raise ImageTooLargeError(size_mb=size_mb, max_size_mb=max_size_mb)

    try:
        probe = probe_image(buffer)
    except Exception as exc:
        raise NotAnImageError(reason=str(exc) or type(exc).__name__) from exc

    if probe.format not in ALLOWED_FORMATS:
        codec_format = probe.codec_format.lower() if probe.codec_format else None
        raise UnsupportedFormatError(detected_format=codec_format)

    if probe.width < 1 or probe.height < 1:
        raise InvalidDimensionsError(width=probe.width, height=probe.height)

    logger.debug(
        "Image validated: format=%s %dx%d %.2fMB",
        probe.format.value,
        probe.width,
        probe.height,
        size_mb,
    )
    return probe


def validate_image(buffer: bytes, max_size_mb: float = 10) -> ValidationResult:
    """Non-raising form of ensure_valid_image()."""
    try:
        ensure_valid_image(buffer, max_size_mb)
    except ImageValidationError as exc:
        return ValidationResult(valid=False, error=exc)
    return ValidationResult(valid=True)
