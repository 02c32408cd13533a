"""
WalkLog Backend — Health Check Route
======================================

What:  Health check endpoint for monitoring and load balancer probes.
How:   Builds (or reuses) the blob store gateway and asks the bucket for a
       HEAD. Reports the storage counters alongside.

Status levels:
    - healthy:   Object store reachable (HTTP 200)
    - degraded:  Storage settings missing; the app runs but uploads fail (HTTP 200)
    - unhealthy: Store configured but unreachable (HTTP 503)
"""

import logging
import time

from fastapi import APIRouter, Response

from walklog import __version__
from walklog.dependencies import get_blob_store
from walklog.exceptions import ConfigurationError
from walklog.schemas.image import HealthResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])

_start_time = time.time()


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Service health check",
    description=(
        "Returns the health status of the backend and its object store, "
        "plus upload/delete counters since start."
    ),
)
async def health_check(response: Response) -> HealthResponse:
    storage_status = "connected"
    overall = "healthy"
    metrics = {}

    # ── Check Object Store ────────────────────────────────────────────────
    try:
        blob_store = get_blob_store()
    except ConfigurationError as e:
        storage_status = "not_configured"
        overall = "degraded"
        logger.warning("Health check: %s", e.message)
    else:
        metrics = blob_store.metrics.snapshot()
        if not await blob_store.check_bucket():
            storage_status = "unreachable"
            overall = "unhealthy"
            response.status_code = 503

    return HealthResponse(
        status=overall,
        version=__version__,
        storage=storage_status,
        storage_metrics=metrics,
        uptime_seconds=round(time.time() - _start_time, 2),
    )
