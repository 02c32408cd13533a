"""
WalkLog Backend — Pixel Normalization
=======================================

What:  Mode and colour-space fixes shared by the HEIC converter and the
       Optimizer, so both stages treat alpha, bit depth and colour
       profiles the same way.

    has_alpha / flatten_onto_white   transparency → white background
    reduce_to_8bit                   16/32-bit grayscale → 8-bit "L", scaled
    convert_to_srgb                  embedded ICC profile → sRGB pixels
"""

import logging
from io import BytesIO
from typing import Optional

from PIL import Image, ImageCms

logger = logging.getLogger(__name__)

# Integer grayscale modes Pillow uses for 16-bit PNGs (and 32-bit "I")
HIGH_BIT_DEPTH_MODES = frozenset({"I", "I;16", "I;16L", "I;16B", "I;16N"})

# Modes littlecms can transform into sRGB directly
_CMS_INPUT_MODES = frozenset({"RGB", "RGBA", "L", "CMYK"})

SRGB_PROFILE = ImageCms.ImageCmsProfile(ImageCms.createProfile("sRGB"))


def has_alpha(image: Image.Image) -> bool:
    return image.mode in ("RGBA", "LA", "PA") or (
        image.mode == "P" and "transparency" in image.info
    )


def flatten_onto_white(image: Image.Image) -> Image.Image:
    rgba = image.convert("RGBA")
    background = Image.new("RGB", rgba.size, (255, 255, 255))
    background.paste(rgba, mask=rgba.getchannel("A"))
    return background


def reduce_to_8bit(image: Image.Image) -> Image.Image:
    """
    Scales 16-bit grayscale down to 8-bit "L".

    A plain convert() clips every value above 255 to white; the 0..65535
    range has to be divided by 256 first.
    """
    if image.mode not in HIGH_BIT_DEPTH_MODES:
        return image
    scaled = image.convert("I").point(lambda v: v * (1 / 256))
    return scaled.convert("L")


def convert_to_srgb(image: Image.Image, icc_profile: Optional[bytes]) -> Image.Image:
    """
    Transforms pixels from their embedded profile into sRGB.

    Must run before metadata is stripped; afterwards browsers assume sRGB.
    Grayscale and CMYK sources come out as RGB. An unreadable profile, or
    one that does not match the image mode, leaves the pixels untouched.
    """
    if not icc_profile:
        return image

    if image.mode not in _CMS_INPUT_MODES:
        image = image.convert("RGBA" if has_alpha(image) else "RGB")
    output_mode = "RGBA" if image.mode == "RGBA" else "RGB"

    try:
        source_profile = ImageCms.ImageCmsProfile(BytesIO(icc_profile))
        return ImageCms.profileToProfile(
            image,
            source_profile,
            SRGB_PROFILE,
            outputMode=output_mode,
        )
    except (ImageCms.PyCMSError, OSError, ValueError) as exc:
        logger.warning("Ignoring unusable ICC profile (%d bytes): %s", len(icc_profile), exc)
        return image
