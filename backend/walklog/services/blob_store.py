"""
WalkLog Backend — Blob Store Gateway
======================================

What:  Upload, delete, existence check and streaming reads against an
       S3-compatible object store (Garage in production).
How:   A boto3 S3 client is built explicitly from a validated
       `BlobStoreConfig` and injected into `BlobStoreGateway`. boto3 is
       blocking, so every call runs in a worker thread via asyncio.to_thread.
Who:   ImageService (upload / delete), the image proxy route (open), and
       the health check (check_bucket).

Object keys:
    <namespace>/<uuid4>.<ext>     e.g. walks/0b6f...-9c1e.jpg
    ext is derived from the content type, then the original filename,
    then falls back to "jpg".

Failure policy:
    upload  → UploadFailedError (no retry; the caller decides)
    open    → NotFoundError for missing keys, FetchFailedError otherwise
    delete  → False, never raises; counted in StorageMetrics
    exists  → False on any error
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Any, Callable, Dict, Iterator, Optional

import boto3
from botocore.client import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from walklog.config import Settings, settings
from walklog.exceptions import (
    ConfigurationError,
    FetchFailedError,
    NotFoundError,
    UploadFailedError,
)
from walklog.services.format_sniffer import normalize_mime_type

logger = logging.getLogger(__name__)

CONTENT_TYPE_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
    "image/gif": "gif",
}

FILENAME_EXTENSIONS = {
    "jpg": "jpg",
    "jpeg": "jpg",
    "png": "png",
    "webp": "webp",
    "gif": "gif",
}

DEFAULT_EXTENSION = "jpg"
DEFAULT_CONTENT_TYPE = "image/jpeg"
STREAM_CHUNK_SIZE = 64 * 1024

_NOT_FOUND_CODES = {"NoSuchKey", "NotFound", "404"}


def extension_for(content_type: Optional[str], original_filename: Optional[str] = None) -> str:
    """Picks the key extension: content type first, then filename, then jpg."""
    from_type = CONTENT_TYPE_EXTENSIONS.get(normalize_mime_type(content_type))
    if from_type:
        return from_type
    if original_filename:
        suffix = PurePosixPath(original_filename).suffix.lstrip(".").lower()
        if suffix in FILENAME_EXTENSIONS:
            return FILENAME_EXTENSIONS[suffix]
    return DEFAULT_EXTENSION


def is_not_found(error: ClientError) -> bool:
    """True for the various ways S3-compatible stores say 'no such object'."""
    code = str(error.response.get("Error", {}).get("Code", ""))
    status = error.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
    return code in _NOT_FOUND_CODES or status == 404


# ══════════════════════════════════════════════════════════════════════════
# Configuration & client construction
# ══════════════════════════════════════════════════════════════════════════


_REQUIRED_FIELDS = {
    "endpoint_url": "S3_ENDPOINT_URL",
    "region": "S3_REGION",
    "access_key_id": "S3_ACCESS_KEY_ID",
    "secret_access_key": "S3_SECRET_ACCESS_KEY",
    "bucket": "S3_BUCKET",
}


@dataclass(frozen=True)
class BlobStoreConfig:
    """
    Everything needed to talk to the object store.

    Validated on construction: a config object that exists is a complete one.

    Raises:
        ConfigurationError: listing every missing variable at once.
    """

    endpoint_url: str
    region: str
    access_key_id: str
    secret_access_key: str = field(repr=False)
    bucket: str
    namespace: str = "walks"
    connect_timeout: int = 5
    read_timeout: int = 30

    def __post_init__(self):
        missing = [
            env_name
            for attr, env_name in _REQUIRED_FIELDS.items()
            if not (getattr(self, attr) or "").strip()
        ]
        if missing:
            raise ConfigurationError(missing)

    @classmethod
    def from_settings(cls, config: Optional[Settings] = None) -> "BlobStoreConfig":
        config = config or settings
        return cls(
            endpoint_url=config.s3_endpoint_url,
            region=config.s3_region,
            access_key_id=config.s3_access_key_id,
            secret_access_key=config.s3_secret_access_key,
            bucket=config.s3_bucket,
            namespace=config.image_namespace,
            connect_timeout=config.s3_connect_timeout,
            read_timeout=config.s3_read_timeout,
        )


def create_s3_client(config: BlobStoreConfig):
    """
    Build a boto3 S3 client for an S3-compatible store.

    - Path-style addressing: Garage and MinIO do not serve virtual-host buckets
    - max_attempts=1: botocore's own retries are off; failures reach the caller
    - Checksums only when required: newer botocore defaults break Garage uploads
    """
    return boto3.client(
        "s3",
        endpoint_url=config.endpoint_url,
        region_name=config.region,
        aws_access_key_id=config.access_key_id,
        aws_secret_access_key=config.secret_access_key,
        config=BotoConfig(
            signature_version="s3v4",
            s3={"addressing_style": "path"},
            connect_timeout=config.connect_timeout,
            read_timeout=config.read_timeout,
            retries={"max_attempts": 1, "mode": "standard"},
            request_checksum_calculation="when_required",
            response_checksum_validation="when_required",
        ),
    )


# ══════════════════════════════════════════════════════════════════════════
# Observability
# ══════════════════════════════════════════════════════════════════════════


DeleteFailureHook = Callable[[str, BaseException], None]


class StorageMetrics:
    """
    In-process counters for storage outcomes.

    The gateway never raises on delete, so deletion failures
    are counted here (and optionally forwarded to `on_delete_failure`) so
    leaked blobs stay visible. Reported by GET /health.
    """

    def __init__(self, on_delete_failure: Optional[DeleteFailureHook] = None):
        self.on_delete_failure = on_delete_failure
        self.uploads = 0
        self.upload_failures = 0
        self.deletes = 0
        self.delete_failures = 0

    def record_delete_failure(self, key: str, error: BaseException) -> None:
        self.delete_failures += 1
        if self.on_delete_failure is None:
            return
        try:
            self.on_delete_failure(key, error)
        except Exception:
            logger.exception("Delete-failure hook raised for %s", key)

    def snapshot(self) -> Dict[str, int]:
        return {
            "uploads": self.uploads,
            "upload_failures": self.upload_failures,
            "deletes": self.deletes,
            "delete_failures": self.delete_failures,
        }


# ══════════════════════════════════════════════════════════════════════════
# Gateway
# ══════════════════════════════════════════════════════════════════════════


@dataclass
class StoredObject:
    """An object opened for reading. Iterate once; the body is closed afterwards."""

    key: str
    content_type: str
    content_length: Optional[int]
    body: Any  # botocore.response.StreamingBody

    def iter_chunks(self, chunk_size: int = STREAM_CHUNK_SIZE) -> Iterator[bytes]:
        try:
            yield from self.body.iter_chunks(chunk_size)
        finally:
            self.body.close()

    def read(self) -> bytes:
        try:
            return self.body.read()
        finally:
            self.body.close()


class BlobStoreGateway:
    """
    Key-value access to stored images.

    Args:
        client: A boto3 S3 client (or anything with the same methods)
        bucket: Bucket name
        namespace: First key segment for every uploaded object
        metrics: Counter sink; a fresh StorageMetrics if omitted
    """

    def __init__(
        self,
        client: Any,
        bucket: str,
        namespace: str = "walks",
        metrics: Optional[StorageMetrics] = None,
    ):
        if client is None:
            raise ValueError("client is required")
        if not bucket:
            raise ConfigurationError(["S3_BUCKET"])
        self._client = client
        self.bucket = bucket
        self.namespace = namespace.strip("/") or "walks"
        self.metrics = metrics or StorageMetrics()

    def build_key(self, content_type: Optional[str], original_filename: Optional[str] = None) -> str:
        return f"{self.namespace}/{uuid.uuid4()}.{extension_for(content_type, original_filename)}"

    async def upload(
        self,
        data: bytes,
        content_type: str,
        original_filename: Optional[str] = None,
    ) -> str:
        """
        Store bytes under a freshly generated key.

        Returns:
            The object key, to be persisted by the caller as `image_key`.

        Raises:
            UploadFailedError: network, auth or quota failure (cause chained).
        """
        key = self.build_key(content_type, original_filename)
        try:
            await asyncio.to_thread(
                self._client.put_object,
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
            )
        except (ClientError, BotoCoreError) as exc:
            self.metrics.upload_failures += 1
            logger.error("Failed to upload image %s to bucket %s: %s", key, self.bucket, exc)
            raise UploadFailedError(
                context={"key": key, "bucket": self.bucket, "error": str(exc)},
            ) from exc

        self.metrics.uploads += 1
        logger.info("Uploaded image: %s (%d bytes, %s)", key, len(data), content_type)
        return key

    async def delete(self, key: Optional[str]) -> bool:
        """
        Remove an object. Never raises.

        S3 DELETE succeeds for keys that do not exist, so the object is
        looked up first; only a real removal returns True.

        Returns:
            True if the object existed and was deleted, False otherwise.
        """
        if not key:
            logger.warning("Attempted to delete image with empty key")
            return False

        try:
            await asyncio.to_thread(self._client.head_object, Bucket=self.bucket, Key=key)
            await asyncio.to_thread(self._client.delete_object, Bucket=self.bucket, Key=key)
        except ClientError as exc:
            if is_not_found(exc):
                logger.info("Image %s not found; nothing to delete", key)
                return False
            logger.warning("Failed to delete image %s: %s", key, exc)
            self.metrics.record_delete_failure(key, exc)
            return False
        except Exception as exc:
            logger.warning("Failed to delete image %s: %s", key, exc)
            self.metrics.record_delete_failure(key, exc)
            return False

        self.metrics.deletes += 1
        logger.info("Deleted image: %s", key)
        return True

    async def exists(self, key: Optional[str]) -> bool:
        """Best-effort existence check: any error counts as 'no'."""
        if not key:
            return False
        try:
            await asyncio.to_thread(self._client.head_object, Bucket=self.bucket, Key=key)
        except Exception as exc:
            logger.debug("exists(%s) → False: %s", key, exc)
            return False
        return True

    async def open(self, key: Optional[str]) -> StoredObject:
        """
        Start reading an object.

        Raises:
            NotFoundError: empty key, or the store has no such object.
            FetchFailedError: any other store error (cause chained).
        """
        if not key:
            raise NotFoundError(resource="image")

        try:
            response = await asyncio.to_thread(
                self._client.get_object, Bucket=self.bucket, Key=key
            )
        except ClientError as exc:
            if is_not_found(exc):
                raise NotFoundError(resource="image", resource_id=key) from exc
            logger.error("Failed to fetch image %s: %s", key, exc)
            raise FetchFailedError(context={"key": key, "error": str(exc)}) from exc
        except BotoCoreError as exc:
            logger.error("Failed to fetch image %s: %s", key, exc)
            raise FetchFailedError(context={"key": key, "error": str(exc)}) from exc

        body = response.get("Body")
        if body is None:
            raise NotFoundError(resource="image", resource_id=key)

        return StoredObject(
            key=key,
            content_type=response.get("ContentType") or DEFAULT_CONTENT_TYPE,
            content_length=response.get("ContentLength"),
            body=body,
        )

    async def check_bucket(self) -> bool:
        """Used by /health: can we reach the bucket with our credentials?"""
        try:
            await asyncio.to_thread(self._client.head_bucket, Bucket=self.bucket)
        except Exception as exc:
            logger.warning("Bucket %s unreachable: %s", self.bucket, exc)
            return False
        return True

    def close(self) -> None:
        close = getattr(self._client, "close", None)
        if close is not None:
            close()


def create_blob_store(
    config: BlobStoreConfig,
    client: Any = None,
    metrics: Optional[StorageMetrics] = None,
) -> BlobStoreGateway:
    """Factory: validated config (+ optional prebuilt client) → gateway."""
    return BlobStoreGateway(
        client=client if client is not None else create_s3_client(config),
        bucket=config.bucket,
        namespace=config.namespace,
        metrics=metrics,
    )
