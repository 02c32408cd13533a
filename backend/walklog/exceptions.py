"""
WalkLog Backend — Custom Exception Hierarchy
==============================================

What:  Application-specific exceptions for every failure the image pipeline
       can surface.
How:   Each exception carries a user-facing message and an optional context
       dict. Global exception handlers (registered in main.py) map each class
       to an HTTP status code and a structured JSON body.
Who:   Raised by services; caught by the global handlers or by callers that
       drive the pipeline directly.

Exception Hierarchy:
    WalkLogError (base)
    ├── ImageValidationError         → 400 (user can pick another file)
    │   ├── ImageTooLargeError
    │   ├── UnsupportedFormatError
    │   ├── InvalidDimensionsError
    │   └── NotAnImageError
    ├── UnprocessableImageError      → 422 (malformed / undecodable source)
    │   ├── HeicConversionError
    │   └── ImageOptimizationError
    ├── NotFoundError                → 404
    ├── StorageError                 → 500 (infrastructure, logged with cause)
    │   ├── UploadFailedError
    │   └── FetchFailedError
    ├── ConfigurationError           → 500 (storage settings missing)
    └── RateLimitExceededError       → 429

Every class exposes a stable `kind` string (e.g. "TooLarge") so callers can
branch on the failure without importing the class.
"""

from typing import Any, Dict, Optional


class WalkLogError(Exception):
    """
    Base exception for all WalkLog application errors.

    Attributes:
        message:  User-facing error description (safe to return in API response)
        context:  Additional debug info (logged but NOT returned for 5xx errors)
    """

    kind = "Error"

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


# ── Validation (400) ──────────────────────────────────────────────────────


class ImageValidationError(WalkLogError):
    """Raised (or returned inside a ValidationResult) when an upload fails policy checks."""

    kind = "InvalidImage"

    def __init__(
        self,
        message: str = "Image validation failed",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class ImageTooLargeError(ImageValidationError):
    """
    The buffer exceeds the configured ceiling.

    Example message: "Image too large: 12.40MB (max: 10MB)"
    """

    kind = "TooLarge"

    def __init__(self, size_mb: float, max_size_mb: float):
        super().__init__(
            message=f"Image too large: {size_mb:.2f}MB (max: {max_size_mb:g}MB)",
            context={"size_mb": round(size_mb, 2), "max_size_mb": max_size_mb},
        )
        self.size_mb = size_mb
        self.max_size_mb = max_size_mb


class UnsupportedFormatError(ImageValidationError):
    """The buffer decodes, but as a format the pipeline does not accept (BMP, TIFF, ...)."""

    kind = "UnsupportedFormat"

    def __init__(self, detected_format: Optional[str]):
        super().__init__(
            message=(
                f"Invalid image format: {detected_format or 'unknown'}. "
                "Allowed: JPEG, PNG, WebP, HEIC, GIF"
            ),
            context={"detected_format": detected_format},
        )
        self.detected_format = detected_format


class InvalidDimensionsError(ImageValidationError):
    kind = "InvalidDimensions"

    def __init__(self, width: int, height: int):
        super().__init__(
            message="Invalid image dimensions",
            context={"width": width, "height": height},
        )


class NotAnImageError(ImageValidationError):
    """Neither Pillow nor pillow-heif could parse the buffer."""

    kind = "NotAnImage"

    def __init__(self, reason: str = "Unknown error"):
        super().__init__(
            message=f"Not a valid image file: {reason}",
            context={"reason": reason},
        )


# ── Unprocessable input (422) ─────────────────────────────────────────────


class UnprocessableImageError(WalkLogError):
    """The file passed validation but could not be decoded or re-encoded."""

    kind = "Unprocessable"


class HeicConversionError(UnprocessableImageError):
    """
    The HEIC/HEIF decoder rejected the buffer.

    Terminal: a malformed HEIC file will fail the same way on every attempt.
    """

    kind = "HeicConversionFailed"

    def __init__(
        self,
        message: str = "Failed to convert HEIC image. Please save as JPEG and try again.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class ImageOptimizationError(UnprocessableImageError):
    """Resize / re-encode failed. The original exception is chained as __cause__."""

    kind = "ImageOptimizationFailed"

    def __init__(self, reason: str = "Unknown error", context: Optional[Dict[str, Any]] = None):
        super().__init__(message=f"Failed to optimize image: {reason}", context=context)


# ── Lookup (404) ──────────────────────────────────────────────────────────


class NotFoundError(WalkLogError):
    """Raised when a requested object key does not exist in the store."""

    kind = "NotFound"

    def __init__(
        self,
        resource: str = "image",
        resource_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = f"The requested {resource} was not found"
        if resource_id:
            message = f"{resource} '{resource_id}' was not found"
        ctx = context or {}
        ctx["resource"] = resource
        if resource_id:
            ctx["resource_id"] = resource_id
        super().__init__(message=message, context=ctx)


# ── Infrastructure (500) ──────────────────────────────────────────────────


class StorageError(WalkLogError):
    """
    Base class for object store failures (network, auth, quota).

    The message is generic; the underlying botocore error lives in `context`
    and `__cause__` and is only logged server-side.
    """

    kind = "StorageError"


class UploadFailedError(StorageError):
    kind = "UploadFailed"

    def __init__(
        self,
        message: str = "Failed to upload image. Please try again.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class FetchFailedError(StorageError):
    kind = "FetchFailed"

    def __init__(
        self,
        message: str = "Failed to fetch image",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class ConfigurationError(WalkLogError):
    """
    Raised when the storage gateway is constructed without its required settings.

    The message lists every missing environment variable at once.
    """

    kind = "ConfigurationMissing"

    def __init__(self, missing: list):
        super().__init__(
            message=(
                "Image storage is not configured. Missing environment variables: "
                + ", ".join(missing)
            ),
            context={"missing": list(missing)},
        )
        self.missing = list(missing)


class RateLimitExceededError(WalkLogError):
    """Raised when a client exceeds the per-IP request rate limit."""

    kind = "RateLimitExceeded"

    def __init__(
        self,
        retry_after: int = 60,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = (
            f"Rate limit exceeded. Please wait {retry_after} seconds before making more requests."
        )
        ctx = context or {}
        ctx["retry_after"] = retry_after
        super().__init__(message=message, context=ctx)
        self.retry_after = retry_after
