"""
WalkLog Backend — HEIC/HEIF Converter
=======================================

What:  Turns an iPhone-style HEIC/HEIF photo into a JPEG that Pillow can
       resize and re-encode.
How:   pillow-heif decodes the primary image (HDR is reduced to 8 bits),
       the result is handed to Pillow and saved as a quality-100, 4:4:4 JPEG.
       This stage is lossless in spirit: the real compression happens once,
       in the Optimizer.
When:  Only when the Format Sniffer answers HEIF.

EXIF and the ICC profile travel with the JPEG so the Optimizer can still
honour the orientation tag and convert the colours to sRGB. pillow-heif
already applies the container's rotation and resets the EXIF orientation
to 1, so the image is never rotated twice. Transparent areas are flattened
onto white, the same rule the Optimizer applies to JPEG output.
"""

import logging
from io import BytesIO

import pillow_heif

from walklog.exceptions import HeicConversionError
from walklog.services.image_modes import flatten_onto_white, has_alpha

logger = logging.getLogger(__name__)

# Pillow's JPEG quality ceiling; 0 = no chroma subsampling (4:4:4)
CONVERSION_QUALITY = 100
CONVERSION_SUBSAMPLING = 0


def convert_heic_to_jpeg(buffer: bytes) -> bytes:
    """
    Decode a HEIC/HEIF buffer and return maximum-quality JPEG bytes.

    Raises:
        HeicConversionError: the decoder could not parse the buffer. Not
            retryable; the message asks the user to re-save as JPEG.
    """
    try:
        heif_file = pillow_heif.open_heif(buffer, convert_hdr_to_8bit=True)
        image = heif_file.to_pillow()
    except Exception as exc:
        logger.warning("HEIC decode failed (%d bytes): %s", len(buffer), exc)
        raise HeicConversionError(
            context={"error": str(exc), "size_bytes": len(buffer)},
        ) from exc

    exif = image.info.get("exif")
    icc_profile = image.info.get("icc_profile")
    if has_alpha(image):
        image = flatten_onto_white(image)
    elif image.mode not in ("RGB", "L"):
        image = image.convert("RGB")

    output = BytesIO()
    try:
        save_kwargs = {
            "format": "JPEG",
            "quality": CONVERSION_QUALITY,
            "subsampling": CONVERSION_SUBSAMPLING,
        }
        if exif:
            save_kwargs["exif"] = exif
        if icc_profile:
            save_kwargs["icc_profile"] = icc_profile
        image.save(output, **save_kwargs)
    except Exception as exc:
        logger.warning("HEIC re-encode to JPEG failed: %s", exc)
        raise HeicConversionError(context={"error": str(exc)}) from exc

    jpeg_bytes = output.getvalue()
    logger.info(
        "Converted HEIC to JPEG: %dx%d, %d → %d bytes",
        image.width,
        image.height,
        len(buffer),
        len(jpeg_bytes),
    )
    return jpeg_bytes
