"""Health and operational response schemas."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel


class StoreHealthCheck(BaseModel):
    """Backing store health check result."""

    backend: str
    status: Literal["healthy", "unhealthy"]
    latency_ms: float


class HealthChecks(BaseModel):
    """Container for all health checks."""

    store: StoreHealthCheck
    pending_refreshes: int


class HealthResponse(BaseModel):
    """Full health check response with subsystem checks."""

    status: Literal["healthy", "unhealthy"]
    version: str
    timestamp: datetime
    uptime_seconds: float
    model_revision: str | None = None
    checks: HealthChecks | None = None
