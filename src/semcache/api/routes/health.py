"""
Health check endpoint.

Returns the overall system health including a connectivity check
against the backing store.
"""

import logging
import time
from datetime import UTC, datetime

from fastapi import APIRouter, Request

from semcache.api.schemas.health import HealthChecks, HealthResponse, StoreHealthCheck
from semcache.domain.exceptions import StoreError

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Operations"])

VERSION = "0.1.0"


@router.get("/health", summary="System health check")
async def health_check(request: Request) -> HealthResponse:
    """Return overall system health.

    The service is unhealthy when no cache engine is configured or the
    store does not answer a ping.
    """
    start_time = getattr(request.app.state, "start_time", time.time())
    uptime_seconds = round(time.time() - start_time, 1)
    cache = getattr(request.app.state, "cache", None)

    if cache is None:
        return HealthResponse(
            status="unhealthy",
            version=VERSION,
            timestamp=datetime.now(UTC),
            uptime_seconds=uptime_seconds,
        )

    store_healthy = False
    start = time.perf_counter()
    try:
        store_healthy = await cache.similarity_store.ping()
    except StoreError as e:
        logger.warning("Store health check failed: %s", e)
    latency_ms = round((time.perf_counter() - start) * 1000, 2)

    return HealthResponse(
        status="healthy" if store_healthy else "unhealthy",
        version=VERSION,
        timestamp=datetime.now(UTC),
        uptime_seconds=uptime_seconds,
        model_revision=cache.model_revision,
        checks=HealthChecks(
            store=StoreHealthCheck(
                backend=type(cache.similarity_store).__name__,
                status="healthy" if store_healthy else "unhealthy",
                latency_ms=latency_ms,
            ),
            pending_refreshes=cache.pending_refreshes,
        ),
    )
