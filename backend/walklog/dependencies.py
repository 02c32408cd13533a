"""
WalkLog Backend — Dependency Providers
========================================

What:  FastAPI dependencies that hand routes their BlobStoreGateway and
       ImageService.
How:   The gateway is built on first use and then reused. Construction
       validates the storage settings, so a missing S3_* variable surfaces
       as a ConfigurationError on the first image request rather than
       preventing the app (and /health) from starting.
Tests: override these with `app.dependency_overrides[...]`.
"""

import logging
from typing import Optional

from fastapi import Depends

from walklog.services.blob_store import BlobStoreConfig, BlobStoreGateway, create_blob_store
from walklog.services.image_service import ImageService

logger = logging.getLogger(__name__)

_blob_store: Optional[BlobStoreGateway] = None


def get_blob_store() -> BlobStoreGateway:
    """Get or create the BlobStoreGateway singleton."""
    global _blob_store
    if _blob_store is None:
        config = BlobStoreConfig.from_settings()
        _blob_store = create_blob_store(config)
        logger.info(
            "Blob store ready: endpoint=%s bucket=%s namespace=%s",
            config.endpoint_url,
            config.bucket,
            config.namespace,
        )
    return _blob_store


def reset_blob_store() -> None:
    """Close and forget the gateway (shutdown, tests)."""
    global _blob_store
    if _blob_store is not None:
        _blob_store.close()
        _blob_store = None


def get_image_service(blob_store: BlobStoreGateway = Depends(get_blob_store)) -> ImageService:
    return ImageService(blob_store=blob_store)
