"""
WalkLog Backend — Format Sniffer
==================================

What:  Works out what an uploaded buffer really is, regardless of the
       Content-Type the browser sent.
How:   Pillow reads only the file header (`Image.open` is lazy), which is
       enough to learn the format and pixel size without decoding pixels.
       HEIC/HEIF is handled by pillow-heif, which is NOT registered as a
       Pillow plugin: plain Pillow stays the "main codec", and HEIC is an
       explicit branch.
Who:   Used by the Validator (`probe_image`) and the Optimizer (`detect_format`).

Detection rules (detect_format):
    1. Declared MIME type is a HEIF type          → HEIF
    2. Pillow opens it                            → mapped Pillow format
    3. Pillow cannot open it at all               → HEIF (mobile-photo heuristic)
       With strict=True, step 3 only answers HEIF when pillow-heif recognises
       the `ftyp` brand, and UNKNOWN otherwise.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from io import BytesIO
from typing import Optional

import pillow_heif
from PIL import Image

logger = logging.getLogger(__name__)

HEIF_MIME_TYPES = frozenset(
    {
        "image/heic",
        "image/heif",
        "image/heic-sequence",
        "image/heif-sequence",
    }
)


class DetectedFormat(str, Enum):
    """The true source format of an upload."""

    JPEG = "jpeg"
    PNG = "png"
    WEBP = "webp"
    GIF = "gif"
    HEIF = "heif"
    UNKNOWN = "unknown"


# Pillow format names → DetectedFormat.
# MPO is the multi-picture JPEG variant many phone cameras write.
_PILLOW_FORMATS = {
    "JPEG": DetectedFormat.JPEG,
    "MPO": DetectedFormat.JPEG,
    "PNG": DetectedFormat.PNG,
    "WEBP": DetectedFormat.WEBP,
    "GIF": DetectedFormat.GIF,
    "HEIF": DetectedFormat.HEIF,
    "HEIC": DetectedFormat.HEIF,
}


@dataclass(frozen=True)
class ImageProbe:
    """Header-level facts about a buffer."""

    format: DetectedFormat
    codec_format: Optional[str]  # name reported by the decoder, e.g. "MPO", "BMP"
    width: int
    height: int


def normalize_mime_type(mime_type: Optional[str]) -> str:
    """'Image/JPEG; charset=binary' → 'image/jpeg'. None → ''."""
    if not mime_type:
        return ""
    return mime_type.split(";", 1)[0].strip().lower()


def is_heif_mime_type(mime_type: Optional[str]) -> bool:
    return normalize_mime_type(mime_type) in HEIF_MIME_TYPES


def from_codec_format(codec_format: Optional[str]) -> DetectedFormat:
    return _PILLOW_FORMATS.get((codec_format or "").upper(), DetectedFormat.UNKNOWN)


def probe_with_pillow(buffer: bytes) -> ImageProbe:
    """
    Reads format and size through Pillow only.

    Raises whatever Pillow raises (usually `PIL.UnidentifiedImageError`)
    when the buffer is not something Pillow can open.
    """
    with Image.open(BytesIO(buffer)) as image:
        width, height = image.size
        return ImageProbe(
            format=from_codec_format(image.format),
            codec_format=image.format,
            width=width,
            height=height,
        )


def probe_image(buffer: bytes) -> ImageProbe:
    """
    Reads format and size, falling back to pillow-heif for HEIC/HEIF.

    Raises:
        The original Pillow error when neither decoder recognises the buffer.
    """
    try:
        return probe_with_pillow(buffer)
    except Exception as pillow_error:
        if not buffer or not pillow_heif.is_supported(buffer):
            raise
        logger.debug("Pillow could not open buffer (%s); probing as HEIF", pillow_error)

    heif_file = pillow_heif.open_heif(buffer, convert_hdr_to_8bit=True)
    width, height = heif_file.size
    return ImageProbe(
        format=DetectedFormat.HEIF,
        codec_format="HEIF",
        width=width,
        height=height,
    )


def detect_format(
    buffer: bytes,
    declared_mime_type: Optional[str] = None,
    *,
    strict: bool = False,
) -> DetectedFormat:
    """
    Classifies a buffer, flagging anything that needs HEIC conversion as HEIF.

    Args:
        buffer: Raw upload bytes
        declared_mime_type: Content-Type sent by the client (may be wrong or missing)
        strict: Only treat Pillow-unreadable buffers as HEIF if their `ftyp`
            brand says so; otherwise return UNKNOWN for them.

    Returns:
        The detected format. Never raises.
    """
    if is_heif_mime_type(declared_mime_type):
        return DetectedFormat.HEIF

    try:
        return probe_with_pillow(buffer).format
    except Exception as exc:
        if not strict:
            logger.info(
                "Primary codec cannot read image (%s); treating it as HEIC/HEIF",
                type(exc).__name__,
            )
            return DetectedFormat.HEIF

    if buffer and pillow_heif.is_supported(buffer):
        return DetectedFormat.HEIF
    return DetectedFormat.UNKNOWN
