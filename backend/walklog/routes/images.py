"""
WalkLog Backend — Image Route Handlers
========================================

What:  Upload, proxy and delete endpoints for activity images.
How:   Thin handlers: read the request, call ImageService / BlobStoreGateway,
       shape the response. Errors are raised as WalkLogError subclasses and
       formatted by the global handlers in main.py.

Routes:
    POST   /api/images/upload        multipart field "image" → 201 UploadResponse
    GET    /api/images/{key:path}    streams the stored bytes (proxy)
    DELETE /api/images/{key:path}    best-effort removal → DeleteResponse

Caching Strategy:
    Keys are random and objects are never rewritten in place, so proxied
    images are served as public, one-year, immutable.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, UploadFile
from fastapi.responses import StreamingResponse

from walklog.config import settings
from walklog.dependencies import get_blob_store, get_image_service
from walklog.exceptions import ImageTooLargeError, ImageValidationError
from walklog.schemas.image import DeleteResponse, ErrorResponse, ImageMetadata, UploadResponse
from walklog.services.blob_store import BlobStoreGateway
from walklog.services.image_service import ImageService
from walklog.services.image_validator import BYTES_PER_MB

logger = logging.getLogger(__name__)

# Upload and proxy share one prefix so resolve_image_url() always points here.
router = APIRouter(prefix=settings.image_proxy_prefix, tags=["Images"])

IMMUTABLE_CACHE_CONTROL = "public, max-age=31536000, immutable"


@router.post(
    "/upload",
    status_code=201,
    response_model=UploadResponse,
    responses={
        400: {"description": "Too large, not an image, or unsupported format", "model": ErrorResponse},
        422: {"description": "Image could not be decoded or converted", "model": ErrorResponse},
        429: {"description": "Rate limit exceeded", "model": ErrorResponse},
        500: {"description": "Object store unavailable or not configured", "model": ErrorResponse},
    },
    summary="Upload an activity image",
    description=(
        "Accepts JPEG, PNG, WebP, GIF or HEIC (max 10MB by default). The image is "
        "resized to fit 2000×2000, re-encoded, stripped of metadata and stored. "
        "Returns the object key to save on the activity."
    ),
)
async def upload_image(
    image: Optional[UploadFile] = File(default=None, description="The photo to store"),
    service: ImageService = Depends(get_image_service),
) -> UploadResponse:
    if image is None:
        raise ImageValidationError(message="No image file provided")

    try:
        # Never buffer more than one byte past the ceiling
        limit = int(service.max_upload_size_mb * BYTES_PER_MB)
        content = await image.read(limit + 1)
        if len(content) > limit:
            raise ImageTooLargeError(
                size_mb=(image.size or len(content)) / BYTES_PER_MB,
                max_size_mb=service.max_upload_size_mb,
            )

        logger.info(
            "Received image upload: filename=%s, type=%s, size=%d bytes",
            image.filename or "unknown",
            image.content_type or "unknown",
            len(content),
        )
        result = await service.process_upload(
            content=content,
            content_type=image.content_type,
            filename=image.filename,
        )
    finally:
        await image.close()

    return UploadResponse(
        image_key=result.image_key,
        url=result.url,
        metadata=ImageMetadata(
            width=result.width,
            height=result.height,
            size=result.size,
            content_type=result.content_type,
            original_size=result.original_size,
        ),
    )


@router.get(
    "/{key:path}",
    response_class=StreamingResponse,
    responses={
        200: {"description": "Raw image bytes", "content": {"image/*": {}}},
        404: {"description": "No image stored under this key", "model": ErrorResponse},
        500: {"description": "Object store error", "model": ErrorResponse},
    },
    summary="Serve a stored image",
)
async def get_image(
    key: str,
    blob_store: BlobStoreGateway = Depends(get_blob_store),
) -> StreamingResponse:
    """
    Proxy an object from the credentialed store to the browser.

    The trailing path is the object key, slashes included
    (/api/images/walks/abc.jpg → key "walks/abc.jpg").
    """
    stored = await blob_store.open(key)

    headers = {"Cache-Control": IMMUTABLE_CACHE_CONTROL}
    if stored.content_length is not None:
        headers["Content-Length"] = str(stored.content_length)

    return StreamingResponse(
        stored.iter_chunks(),
        media_type=stored.content_type,
        headers=headers,
    )


@router.delete(
    "/{key:path}",
    response_model=DeleteResponse,
    summary="Delete a stored image",
    description=(
        "Best-effort: a missing key or a store failure yields success=false "
        "rather than an error status, so callers never block on image cleanup."
    ),
)
async def delete_image(
    key: str,
    service: ImageService = Depends(get_image_service),
) -> DeleteResponse:
    deleted = await service.delete_image(key)
    if deleted:
        return DeleteResponse(success=True, message=f"Image {key} deleted successfully")
    return DeleteResponse(success=False, message="Failed to delete image")
