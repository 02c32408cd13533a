"""
WalkLog Backend — Image Service (Pipeline Orchestrator)
=========================================================

What:  The entry point callers use to turn an upload into a stored image,
       to swap one image for another, and to remove one.
How:   Composes the Validator, the Optimizer and the Blob Store Gateway.
Who:   The image routes, and the activity/walk handlers that own `image_key`.

Orchestration Flow (process_upload):
    ┌──────────┐    ┌─────────────┐    ┌──────────────┐    ┌──────────────┐
    │  Upload  │───▶│  Validate   │───▶│   Optimize   │───▶│  Blob Store  │──▶ image_key
    │  bytes   │    │  (size/fmt) │    │ (thread)     │    │  put_object  │
    └──────────┘    └─────────────┘    └──────────────┘    └──────────────┘

Replacement ordering (replace_image):
    1. upload the new image
    2. caller persists the new key (`persist` callback)
    3. delete the old image
    A crash between steps leaves at most an orphaned OLD blob, never a
    record pointing at a deleted one.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from walklog.config import settings
from walklog.services.blob_store import BlobStoreGateway
from walklog.services.image_optimizer import ImageOptimizer, image_optimizer
from walklog.services.image_urls import resolve_image_url
from walklog.services.image_validator import ensure_valid_image

logger = logging.getLogger(__name__)

PersistKey = Callable[[str], Awaitable[None]]


@dataclass(frozen=True)
class UploadResult:
    image_key: str
    url: str
    width: int
    height: int
    size: int
    content_type: str
    original_size: int


class ImageService:
    """
    Business logic for image uploads.

    Holds no per-request state; the gateway and optimizer are injected so
    tests can swap either one.
    """

    def __init__(
        self,
        blob_store: BlobStoreGateway,
        optimizer: Optional[ImageOptimizer] = None,
        max_upload_size_mb: Optional[float] = None,
    ):
        self.blob_store = blob_store
        self.optimizer = optimizer or image_optimizer
        self.max_upload_size_mb = max_upload_size_mb or settings.max_upload_size_mb

    async def process_upload(
        self,
        content: bytes,
        content_type: Optional[str] = None,
        filename: Optional[str] = None,
    ) -> UploadResult:
        """
        Validate → optimize → upload.

        Raises:
            ImageValidationError: rejected before any processing (400)
            HeicConversionError / ImageOptimizationError: undecodable input (422)
            UploadFailedError: the store refused the object (500)
        """
        ensure_valid_image(content, self.max_upload_size_mb)

        logger.info(
            "Optimizing image: %s (%.2f KB, declared %s)",
            filename or "unnamed",
            len(content) / 1024,
            content_type or "unknown",
        )
        optimized = await asyncio.to_thread(self.optimizer.optimize, content, content_type)
        logger.info(
            "Optimized: %dx%d, %.2f KB (%.1f%% of original)",
            optimized.width,
            optimized.height,
            optimized.size / 1024,
            (optimized.size / len(content)) * 100,
        )

        image_key = await self.blob_store.upload(
            optimized.data,
            optimized.content_type,
            filename,
        )
        return UploadResult(
            image_key=image_key,
            url=resolve_image_url(image_key),
            width=optimized.width,
            height=optimized.height,
            size=optimized.size,
            content_type=optimized.content_type,
            original_size=len(content),
        )

    async def replace_image(
        self,
        old_key: Optional[str],
        content: bytes,
        content_type: Optional[str],
        filename: Optional[str],
        persist: PersistKey,
    ) -> UploadResult:
        """
        Upload a new image, let the caller persist its key, then drop the old one.

        If `persist` raises, the freshly uploaded blob is removed again and
        the error propagates; the old image is left untouched.
        """
        result = await self.process_upload(content, content_type, filename)

        try:
            await persist(result.image_key)
        except Exception:
            logger.warning(
                "Persisting new image key %s failed; removing the new upload",
                result.image_key,
            )
            await self.blob_store.delete(result.image_key)
            raise

        if old_key and old_key != result.image_key:
            await self.blob_store.delete(old_key)
        return result

    async def delete_image(self, image_key: Optional[str]) -> bool:
        """Best-effort removal; False for empty, missing or undeletable keys."""
        return await self.blob_store.delete(image_key)
