"""
WalkLog Backend — Application Configuration
=============================================

What:  Centralized configuration management using Pydantic Settings.
How:   Pydantic Settings reads from environment variables (or .env file),
       validates types/ranges, and provides a singleton `settings` object.
Who:   Imported by the routes, the image service and the storage factory.

Storage credentials are deliberately NOT validated here: the app must still
boot (and answer /health) without them. They are checked as a group by
`BlobStoreConfig.from_settings()` when the storage gateway is constructed.
"""

from typing import List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Attributes are grouped by concern. Every field can be overridden with an
    environment variable of the same name (case-insensitive).
    """

    # ── Object Storage (S3-compatible, e.g. Garage) ───────────────────────
    # All five are required before the first storage operation.
    s3_endpoint_url: str = Field(default="", description="Object store endpoint URL")
    s3_region: str = Field(default="", description="Object store region name")
    s3_access_key_id: str = Field(default="", description="Access key id")
    s3_secret_access_key: str = Field(default="", description="Secret access key")
    s3_bucket: str = Field(default="", description="Bucket holding uploaded images")

    # Format: <image_namespace>/<uuid>.<ext>
    image_namespace: str = Field(default="walks", min_length=1)

    # botocore timeouts (seconds); the pipeline itself has no timeouts
    s3_connect_timeout: int = Field(default=5, ge=1, le=60)
    s3_read_timeout: int = Field(default=30, ge=1, le=300)

    # ── Image Pipeline ────────────────────────────────────────────────────
    # Default: 10MB, matching the upload form's advertised limit
    max_upload_size_mb: float = Field(default=10, gt=0, le=100)

    # Bounding box for the longest side; smaller images are never enlarged
    image_max_dimension: int = Field(default=2000, ge=64, le=10000)

    jpeg_quality: int = Field(default=85, ge=1, le=100)
    webp_quality: int = Field(default=85, ge=1, le=100)
    png_compress_level: int = Field(default=9, ge=0, le=9)
    # PNG palette size; 0 keeps truecolor output
    png_palette_colors: int = Field(default=256, ge=0, le=256)

    # When False, any buffer Pillow cannot read is treated as HEIC.
    # When True, only buffers with a recognised HEIF `ftyp` brand are.
    strict_format_detection: bool = Field(default=False)

    # Same-origin route that proxies stored images to browsers
    image_proxy_prefix: str = Field(default="/api/images")

    @field_validator("image_proxy_prefix")
    @classmethod
    def normalize_proxy_prefix(cls, v: str) -> str:
        """Ensures a leading slash and no trailing slash."""
        return "/" + v.strip("/")

    @field_validator("image_namespace")
    @classmethod
    def normalize_namespace(cls, v: str) -> str:
        stripped = v.strip("/")
        if not stripped:
            raise ValueError("image_namespace must not be empty")
        return stripped

    # ── CORS ──────────────────────────────────────────────────────────────
    # Format: Comma-separated URLs
    cors_origins: str = Field(default="http://localhost:3000")

    @property
    def cors_origins_list(self) -> List[str]:
        return [origin.strip() for origin in self.cors_origins.split(",")]

    # ── Server ────────────────────────────────────────────────────────────
    backend_host: str = Field(default="0.0.0.0")
    backend_port: int = Field(default=8000, ge=1024, le=65535)

    # Valid: DEBUG, INFO, WARNING, ERROR, CRITICAL
    log_level: str = Field(default="INFO")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Ensures log level is a valid Python logging level name."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper = v.upper()
        if upper not in valid_levels:
            raise ValueError(f"Invalid log_level '{v}'. Must be one of: {valid_levels}")
        return upper

    # ── Rate Limiting ─────────────────────────────────────────────────────
    # Per-IP sliding window; applies to uploads and deletes, not to the proxy
    rate_limit_requests: int = Field(default=100, ge=10, le=10000)
    rate_limit_window: int = Field(default=3600, ge=60, le=86400)  # seconds

    # ── Pydantic Settings Config ──────────────────────────────────────────
    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "ignore",
    }

    def missing_storage_settings(self) -> List[str]:
        """
        Returns the environment variable names of unset storage settings.

        Used by the startup log (warning only) and by
        `BlobStoreConfig.from_settings()` (hard failure).
        """
        required = {
            "S3_ENDPOINT_URL": self.s3_endpoint_url,
            "S3_REGION": self.s3_region,
            "S3_ACCESS_KEY_ID": self.s3_access_key_id,
            "S3_SECRET_ACCESS_KEY": self.s3_secret_access_key,
            "S3_BUCKET": self.s3_bucket,
        }
        return [name for name, value in required.items() if not value.strip()]


settings = Settings()
