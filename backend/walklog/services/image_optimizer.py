"""
WalkLog Backend — Image Optimizer
===================================

What:  Shrinks, re-encodes and scrubs an uploaded photo before it is stored.
How:   Pillow, in one sequential pass per upload:

    ┌────────┐   ┌────────────┐   ┌─────────┐   ┌────────┐   ┌────────┐   ┌────────┐
    │ Sniff  │──▶│ HEIC→JPEG  │──▶│ Choose  │──▶│ Rotate │──▶│ Resize │──▶│ Encode │
    │ format │   │ (if HEIF)  │   │ output  │   │ (EXIF) │   │ ≤2000² │   │ q=85   │
    └────────┘   └────────────┘   └─────────┘   └────────┘   └────────┘   └────────┘

Who:   ImageService, inside a worker thread (everything here is CPU-bound
       and blocking).

Output format rule:
    HEIF source                          → JPEG
    PNG source or declared image/png     → PNG  (keeps transparency)
    WebP source or declared image/webp   → WEBP
    anything else (JPEG, GIF, unknown)   → JPEG

Pixels:
    16-bit grayscale is scaled down to 8-bit, and an embedded ICC profile
    is applied so the stored pixels are sRGB. PNG output is quantized to a
    palette (settings.png_palette_colors, 0 keeps truecolor).

Metadata:
    EXIF orientation is applied to the pixels first, then the encoder is
    given an empty `info` dict, so no EXIF, XMP, ICC or text chunks survive.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from io import BytesIO
from typing import Callable, Dict, Optional

from PIL import Image, ImageOps

from walklog.config import settings
from walklog.exceptions import HeicConversionError, ImageOptimizationError
from walklog.services.format_sniffer import DetectedFormat, detect_format, normalize_mime_type
from walklog.services.heic_converter import convert_heic_to_jpeg
from walklog.services.image_modes import (
    convert_to_srgb,
    flatten_onto_white,
    has_alpha,
    reduce_to_8bit,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OptimizedImage:
    data: bytes
    content_type: str
    width: int
    height: int

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class EncodeOptions:
    jpeg_quality: int = 85
    webp_quality: int = 85
    png_compress_level: int = 9
    png_palette_colors: int = 256


class OutputFormat(Enum):
    """
    The closed set of formats the pipeline writes.

    Each member carries its MIME type and extension; its encoder lives in
    `_ENCODERS` below and is looked up through `encode()`.
    """

    JPEG = ("JPEG", "image/jpeg", "jpg")
    PNG = ("PNG", "image/png", "png")
    WEBP = ("WEBP", "image/webp", "webp")

    def __init__(self, pillow_format: str, content_type: str, extension: str):
        self.pillow_format = pillow_format
        self.content_type = content_type
        self.extension = extension

    def encode(self, image: Image.Image, options: EncodeOptions) -> bytes:
        return _ENCODERS[self](image, options)


def choose_output_format(
    detected: DetectedFormat,
    declared_mime_type: Optional[str] = None,
) -> OutputFormat:
    """Applies the output format rule from the module docstring."""
    declared = normalize_mime_type(declared_mime_type)
    if detected is DetectedFormat.HEIF:
        return OutputFormat.JPEG
    if detected is DetectedFormat.PNG or declared == "image/png":
        return OutputFormat.PNG
    if detected is DetectedFormat.WEBP or declared == "image/webp":
        return OutputFormat.WEBP
    return OutputFormat.JPEG


# ══════════════════════════════════════════════════════════════════════════
# Mode handling
# ══════════════════════════════════════════════════════════════════════════


def _prepare_mode(image: Image.Image, output_format: OutputFormat) -> Image.Image:
    """Converts to a mode the target encoder accepts, keeping alpha where it can."""
    if output_format is OutputFormat.JPEG:
        if has_alpha(image):
            return flatten_onto_white(image)
        if image.mode not in ("RGB", "L"):
            return image.convert("RGB")
        return image

    # PNG and WebP both keep transparency
    if has_alpha(image):
        return image if image.mode == "RGBA" else image.convert("RGBA")
    if output_format is OutputFormat.PNG and image.mode == "L":
        return image
    if image.mode != "RGB":
        return image.convert("RGB")
    return image


# ══════════════════════════════════════════════════════════════════════════
# Encoders (one per OutputFormat member)
# ══════════════════════════════════════════════════════════════════════════


def _encode_jpeg(image: Image.Image, options: EncodeOptions) -> bytes:
    # optimize + progressive is Pillow's nearest match to mozjpeg output
    output = BytesIO()
    image.save(
        output,
        format="JPEG",
        quality=options.jpeg_quality,
        optimize=True,
        progressive=True,
    )
    return output.getvalue()


def _quantize(image: Image.Image, colors: int) -> Image.Image:
    """Reduces RGB/RGBA to a palette; FASTOCTREE is the method that keeps alpha."""
    if image.mode == "RGBA":
        return image.quantize(colors=colors, method=Image.Quantize.FASTOCTREE)
    if image.mode == "RGB":
        return image.quantize(colors=colors)
    return image


def _encode_png(image: Image.Image, options: EncodeOptions) -> bytes:
    # 0 colours keeps truecolor
    if options.png_palette_colors:
        image = _quantize(image, options.png_palette_colors)
    output = BytesIO()
    image.save(
        output,
        format="PNG",
        optimize=True,
        compress_level=options.png_compress_level,
    )
    return output.getvalue()


def _encode_webp(image: Image.Image, options: EncodeOptions) -> bytes:
    output = BytesIO()
    image.save(output, format="WEBP", quality=options.webp_quality, method=6)
    return output.getvalue()


_ENCODERS: Dict[OutputFormat, Callable[[Image.Image, EncodeOptions], bytes]] = {
    OutputFormat.JPEG: _encode_jpeg,
    OutputFormat.PNG: _encode_png,
    OutputFormat.WEBP: _encode_webp,
}

if set(_ENCODERS) != set(OutputFormat):
    raise RuntimeError("Every OutputFormat member needs an encoder")


# ══════════════════════════════════════════════════════════════════════════
# Optimizer
# ══════════════════════════════════════════════════════════════════════════


class ImageOptimizer:
    """
    Resize + re-encode + metadata strip.

    Stateless apart from its limits, so one instance is shared by all
    requests (see the `image_optimizer` singleton at the bottom).

    Args (all default to the values in settings):
        max_dimension: Longest allowed side; larger images are shrunk to fit
            inside a max_dimension × max_dimension box.
        options: Per-format encoder quality settings.
        strict_format_detection: Passed through to detect_format().
    """

    def __init__(
        self,
        max_dimension: Optional[int] = None,
        options: Optional[EncodeOptions] = None,
        strict_format_detection: Optional[bool] = None,
    ):
        self.max_dimension = max_dimension or settings.image_max_dimension
        self.options = options or EncodeOptions(
            jpeg_quality=settings.jpeg_quality,
            webp_quality=settings.webp_quality,
            png_compress_level=settings.png_compress_level,
            png_palette_colors=settings.png_palette_colors,
        )
        if strict_format_detection is None:
            strict_format_detection = settings.strict_format_detection
        self.strict_format_detection = strict_format_detection

    def optimize(self, buffer: bytes, declared_mime_type: Optional[str] = None) -> OptimizedImage:
        """
        Produce the stored version of an upload.

        Returns:
            OptimizedImage with the final bytes and their real dimensions.

        Raises:
            HeicConversionError: the buffer was flagged HEIF but would not decode.
            ImageOptimizationError: any other failure; the cause is chained.
        """
        try:
            return self._optimize(buffer, declared_mime_type)
        except HeicConversionError:
            raise
        except Exception as exc:
            logger.error("Image optimization failed: %s", exc, exc_info=True)
            raise ImageOptimizationError(
                reason=str(exc) or type(exc).__name__,
                context={"declared_mime_type": declared_mime_type, "size_bytes": len(buffer)},
            ) from exc

    def _optimize(self, buffer: bytes, declared_mime_type: Optional[str]) -> OptimizedImage:
        # ── Step 1: Sniff, convert HEIC ───────────────────────────────────
        detected = detect_format(
            buffer, declared_mime_type, strict=self.strict_format_detection
        )
        working = buffer
        if detected is DetectedFormat.HEIF:
            working = convert_heic_to_jpeg(buffer)

        with Image.open(BytesIO(working)) as source:
            # ── Step 2 & 3: Metadata, output format ───────────────────────
            source_width, source_height = source.size
            output_format = choose_output_format(detected, declared_mime_type)
            icc_profile = source.info.get("icc_profile")

            # ── Step 4: Bake EXIF orientation into the pixels ─────────────
            # Returns a loaded copy even when no rotation is needed
            image = ImageOps.exif_transpose(source)

        # Colour must be settled while the profile is still known
        image = reduce_to_8bit(image)
        image = convert_to_srgb(image, icc_profile)

        # ── Step 5: Bounded resize, never enlarging ───────────────────────
        box = self.max_dimension
        if image.width > box or image.height > box:
            image.thumbnail((box, box), Image.Resampling.LANCZOS)

        # ── Step 6: Strip metadata and re-encode ──────────────────────────
        image = _prepare_mode(image, output_format)
        image.info = {}
        data = output_format.encode(image, self.options)

        # ── Step 7: Report what was actually written ──────────────────────
        with Image.open(BytesIO(data)) as result:
            width, height = result.size

        logger.info(
            "Optimized %s image: %dx%d → %dx%d %s, %d → %d bytes",
            detected.value,
            source_width,
            source_height,
            width,
            height,
            output_format.content_type,
            len(buffer),
            len(data),
        )
        return OptimizedImage(
            data=data,
            content_type=output_format.content_type,
            width=width,
            height=height,
        )


image_optimizer = ImageOptimizer()
