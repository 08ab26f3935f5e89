"""
ImageAnalyzer Backend: Health Check Route
==========================================

What:  Health endpoint for monitoring and load balancer health checks.
How:   Reports the upload directory status (existence, file count, bytes)
       and whether an image consumer is configured and reachable.
Who:   Docker health checks, load balancers, monitoring.

Status levels:
    - healthy:   upload directory present and consumer available
    - degraded:  upload directory missing, or consumer absent/unavailable
    The endpoint itself always answers 200; the body carries the status.
"""

import logging
import time

from fastapi import APIRouter, Request

from imageanalyzer import __version__
from imageanalyzer.schemas.upload import HealthResponse, UploadDirectoryHealth

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])

_start_time = time.time()


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Service health check",
)
async def health_check(request: Request) -> HealthResponse:
    overall = "healthy"

    # ── Upload Directory ──────────────────────────────────────────────────
    status = await request.app.state.lifecycle.get_status()
    if not status.exists:
        overall = "degraded"
        logger.warning("Health check: upload directory missing")

    # ── Image Consumer ────────────────────────────────────────────────────
    consumer = request.app.state.consumer
    if consumer is None:
        consumer_status = "not_configured"
        overall = "degraded"
    else:
        try:
            available = await consumer.health_check()
        except Exception as e:
            logger.warning("Health check: consumer check failed: %s", type(e).__name__)
            available = False
        consumer_status = "available" if available else "unavailable"
        if not available:
            overall = "degraded"

    return HealthResponse(
        status=overall,
        version=__version__,
        uptime_seconds=round(time.time() - _start_time, 2),
        consumer=consumer_status,
        uploads=UploadDirectoryHealth(
            exists=status.exists,
            file_count=status.file_count,
            total_bytes=status.total_bytes,
        ),
    )
