"""
WalkLog Backend — FastAPI Application Factory
===============================================

What:  Creates and configures the FastAPI application instance.
How:   create_app() wires middleware, exception handlers and routers;
       uvicorn serves the module-level `app` (uvicorn walklog.main:app).

Application Architecture:
    ┌──────────────────────────────────────────────────────────┐
    │                      FastAPI App                         │
    │                                                          │
    │  Middleware:  Request ID → Logging → Rate Limit → CORS   │
    │                                                          │
    │  Routes:                                                 │
    │    POST   /api/images/upload                             │
    │    GET    /api/images/{key:path}                         │
    │    DELETE /api/images/{key:path}                         │
    │    GET    /health                                        │
    │                                                          │
    │  Exception Handlers:                                     │
    │    Validation→400  Unprocessable→422  NotFound→404       │
    │    RateLimit→429   Storage/Config→500                    │
    └──────────────────────────────────────────────────────────┘

Lifecycle:
    Startup:  configure logging, warn about missing storage settings.
              The app still starts so /health can report "not_configured".
    Shutdown: close the S3 client.
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from walklog import __version__
from walklog.config import settings
from walklog.dependencies import reset_blob_store
from walklog.exceptions import (
    ConfigurationError,
    ImageValidationError,
    NotFoundError,
    RateLimitExceededError,
    StorageError,
    UnprocessableImageError,
    WalkLogError,
)
from walklog.middleware.logging import RequestLoggingMiddleware
from walklog.middleware.rate_limit import RateLimitMiddleware
from walklog.middleware.request_id import REQUEST_ID_HEADER, RequestIDMiddleware, request_id_var
from walklog.routes import health, images

logger = logging.getLogger(__name__)

# Third-party loggers that are chatty at INFO/DEBUG.
NOISY_LOGGERS = ("uvicorn.access", "botocore", "boto3", "s3transfer", "urllib3", "PIL", "httpx", "httpcore")


# ══════════════════════════════════════════════════════════════════════════
# Logging Configuration
# ══════════════════════════════════════════════════════════════════════════

def setup_logging() -> None:
    """
    Configure the root logger once for the whole process.

    Format: 2024-01-15T12:00:00 [INFO] walklog.services.blob_store: Uploaded image: ...
    """
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


# ══════════════════════════════════════════════════════════════════════════
# Application Lifespan (Startup & Shutdown)
# ══════════════════════════════════════════════════════════════════════════

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # ── Startup ───────────────────────────────────────────────────────────
    setup_logging()
    logger.info("=" * 60)
    logger.info("WalkLog image backend %s starting up...", __version__)

    missing = settings.missing_storage_settings()
    if missing:
        logger.error("Image storage is not configured. Missing: %s", ", ".join(missing))
        logger.error("Uploads and image reads will fail until these are set.")
    else:
        logger.info(
            "Object store: %s bucket=%s namespace=%s",
            settings.s3_endpoint_url,
            settings.s3_bucket,
            settings.image_namespace,
        )

    logger.info(
        "Image pipeline: max upload %gMB, max dimension %dpx, proxy prefix %s",
        settings.max_upload_size_mb,
        settings.image_max_dimension,
        settings.image_proxy_prefix,
    )
    logger.info("=" * 60)

    yield

    # ── Shutdown ──────────────────────────────────────────────────────────
    logger.info("WalkLog image backend shutting down...")
    reset_blob_store()
    logger.info("Shutdown complete.")


# ══════════════════════════════════════════════════════════════════════════
# Exception Handlers
# ══════════════════════════════════════════════════════════════════════════

def error_body(
    error: str,
    message: str,
    kind: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Build the ErrorResponse JSON shape shared by every handler."""
    body: Dict[str, Any] = {
        "error": error,
        "kind": kind,
        "message": message,
        "request_id": request_id_var.get() or None,
    }
    if details:
        body["details"] = details
    return body


def register_exception_handlers(app: FastAPI) -> None:
    """
    Map WalkLogError subclasses to HTTP responses.

        ImageValidationError    → 400 (size, format, dimensions, not an image)
        UnprocessableImageError → 422 (HEIC decode, re-encode failures)
        NotFoundError           → 404
        RateLimitExceededError  → 429
        StorageError            → 500 (store unreachable; cause logged only)
        ConfigurationError      → 500 (missing S3_* settings; names logged only)
        Exception               → 500

    5xx bodies carry a generic message; context stays in the server log.
    """

    @app.exception_handler(ImageValidationError)
    async def handle_validation_error(request: Request, exc: ImageValidationError):
        logger.warning("[%s] Validation error (%s): %s", request_id_var.get(), exc.kind, exc.message)
        return JSONResponse(
            status_code=400,
            content=error_body("validation_error", exc.message, exc.kind, exc.context),
        )

    @app.exception_handler(UnprocessableImageError)
    async def handle_unprocessable(request: Request, exc: UnprocessableImageError):
        logger.warning(
            "[%s] Unprocessable image (%s): %s",
            request_id_var.get(),
            exc.kind,
            exc.message,
            exc_info=exc.__cause__ is not None,
        )
        return JSONResponse(
            status_code=422,
            content=error_body("unprocessable_image", exc.message, exc.kind),
        )

    @app.exception_handler(NotFoundError)
    async def handle_not_found(request: Request, exc: NotFoundError):
        return JSONResponse(
            status_code=404,
            content=error_body("not_found", "Image not found", exc.kind),
        )

    @app.exception_handler(RateLimitExceededError)
    async def handle_rate_limit(request: Request, exc: RateLimitExceededError):
        retry_after = exc.context.get("retry_after", 60)
        return JSONResponse(
            status_code=429,
            content=error_body("rate_limit_exceeded", exc.message, exc.kind, exc.context),
            headers={"Retry-After": str(retry_after)},
        )

    @app.exception_handler(StorageError)
    async def handle_storage_error(request: Request, exc: StorageError):
        logger.error(
            "[%s] Storage error (%s): %s | Context: %s",
            request_id_var.get(),
            exc.kind,
            exc.message,
            exc.context,
        )
        error = "upload_failed" if exc.kind == "UploadFailed" else "fetch_failed"
        return JSONResponse(
            status_code=500,
            content=error_body(error, exc.message, exc.kind),
        )

    @app.exception_handler(ConfigurationError)
    async def handle_configuration_error(request: Request, exc: ConfigurationError):
        logger.error("[%s] %s", request_id_var.get(), exc.message)
        return JSONResponse(
            status_code=500,
            content=error_body(
                "server_error",
                "Image storage is not available. Please try again later.",
                exc.kind,
            ),
        )

    @app.exception_handler(WalkLogError)
    async def handle_walklog_error(request: Request, exc: WalkLogError):
        logger.error("[%s] %s: %s | Context: %s", request_id_var.get(), exc.kind, exc.message, exc.context)
        return JSONResponse(
            status_code=500,
            content=error_body("server_error", "An internal error occurred. Please try again later.", exc.kind),
        )

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        logger.error("[%s] Unexpected error: %s", request_id_var.get(), exc, exc_info=True)
        return JSONResponse(
            status_code=500,
            content=error_body(
                "internal_server_error",
                "An unexpected error occurred. Please try again or contact support.",
            ),
        )


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════

def create_app() -> FastAPI:
    app = FastAPI(
        title="WalkLog Image API",
        description=(
            "Image ingestion for activity logs: upload (HEIC included), resize, "
            "re-encode and store photos in an S3-compatible bucket, then serve "
            "them back through a same-origin proxy."
        ),
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # ── Register Middleware ───────────────────────────────────────────────
    # Last added runs first: RequestID → Logging → RateLimit → CORS.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[REQUEST_ID_HEADER, "Retry-After"],
    )
    app.add_middleware(RateLimitMiddleware)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)

    # ── Register Exception Handlers ───────────────────────────────────────
    register_exception_handlers(app)

    # ── Register Routes ───────────────────────────────────────────────────
    app.include_router(images.router)
    app.include_router(health.router)

    return app


app = create_app()
