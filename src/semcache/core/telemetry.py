"""
Structured telemetry for cache decisions.

Logs METADATA only - never log query text or cached items.
"""

import structlog

from semcache.core.context import get_request_id
from semcache.domain.exceptions import SemCacheError


# Configure structlog for JSON output
structlog.configure(
    processors=[
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.PrintLoggerFactory(),
)

logger = structlog.get_logger("semcache.telemetry")


def _tenant(tenant_id: str | None) -> str | None:
    return tenant_id[:12] if tenant_id else None


def log_cache_hit(query_key: str, tenant_id: str | None, similarity: float, protocol: str) -> None:
    logger.info(
        "cache_hit",
        request_id=get_request_id(),
        query_key=query_key,
        tenant_id=_tenant(tenant_id),
        similarity=round(similarity, 4),
        protocol=protocol,
    )


def log_cache_miss(
    query_key: str,
    tenant_id: str | None,
    protocol: str,
    reason: str,
) -> None:
    """Log a miss. reason is one of: no_match, stale, expired."""
    logger.info(
        "cache_miss",
        request_id=get_request_id(),
        query_key=query_key,
        tenant_id=_tenant(tenant_id),
        protocol=protocol,
        reason=reason,
    )


def log_refresh_scheduled(query_key: str, model_mismatch: bool, remaining_ttl_ms: int) -> None:
    logger.info(
        "refresh_scheduled",
        request_id=get_request_id(),
        query_key=query_key,
        model_mismatch=model_mismatch,
        remaining_ttl_ms=remaining_ttl_ms,
    )


def log_refresh_failed(query_key: str, error: BaseException) -> None:
    """Log a background refresh failure with error details."""
    log_data = {
        "request_id": get_request_id(),
        "query_key": query_key,
        "error_type": type(error).__name__,
        "error_message": str(error),
    }

    if isinstance(error, SemCacheError):
        log_data["error_details"] = error.details

    logger.error("refresh_failed", **log_data)
