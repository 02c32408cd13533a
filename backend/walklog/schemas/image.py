"""
WalkLog Backend — Pydantic Response Schemas
=============================================

What:  The JSON contract of the image routes.
How:   Field names are snake_case in Python and camelCase on the wire
       (`imageKey`, `contentType`), matching what the front-end already
       stores. FastAPI serializes responses by alias.
"""

from typing import Dict, Optional

from pydantic import BaseModel, Field


class ImageMetadata(BaseModel):
    """Facts about the stored (optimized) image."""

    width: int = Field(description="Stored width in pixels")
    height: int = Field(description="Stored height in pixels")
    size: int = Field(description="Stored size in bytes")
    content_type: str = Field(alias="contentType", description="image/jpeg, image/png or image/webp")
    original_size: int = Field(alias="originalSize", description="Uploaded size in bytes")

    model_config = {"populate_by_name": True}


class UploadResponse(BaseModel):
    """
    Returned by POST /api/images/upload with HTTP 201.

    The caller persists `imageKey` on its activity record; `url` is the
    proxy path to show the image right away.
    """

    success: bool = Field(default=True)
    image_key: str = Field(alias="imageKey", description="Object key: <namespace>/<uuid>.<ext>")
    url: str = Field(description="Same-origin proxy URL for the stored image")
    metadata: ImageMetadata

    model_config = {"populate_by_name": True}


class DeleteResponse(BaseModel):
    success: bool = Field(description="True only if an existing image was removed")
    message: str


class ErrorResponse(BaseModel):
    """
    Standardized error body for all API errors.

    Example:
        {
            "error": "validation_error",
            "kind": "TooLarge",
            "message": "Image too large: 12.40MB (max: 10MB)",
            "details": {"size_mb": 12.4, "max_size_mb": 10},
            "request_id": "3f2a9c1e"
        }
    """

    error: str = Field(description="Machine-readable error category")
    kind: Optional[str] = Field(default=None, description="Specific failure, e.g. TooLarge, NotFound")
    message: str = Field(description="Human-readable error description")
    details: Optional[dict] = Field(default=None, description="Additional error context")
    request_id: Optional[str] = Field(default=None, description="Request correlation ID")


class HealthResponse(BaseModel):
    status: str = Field(description="Overall service status: healthy, degraded, unhealthy")
    version: str = Field(description="Application version")
    storage: str = Field(description="Object store: connected, unreachable, not_configured")
    storage_metrics: Dict[str, int] = Field(
        default_factory=dict,
        description="Upload/delete counters since start (delete_failures = leaked blobs)",
    )
    uptime_seconds: float = Field(description="Seconds since service started")
