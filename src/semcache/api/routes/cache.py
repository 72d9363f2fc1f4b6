"""
Cache administration endpoints.

Statistics, model-revision invalidation, idle eviction, orphan sweeping
and a full reset. Store failures surface as 503 so operators can tell
"nothing to report" apart from "the store is down".
"""

import logging

from fastapi import APIRouter, HTTPException, Request

from semcache.api.schemas.cache import (
    CacheStatsResponse,
    CacheStatsSchema,
    EvictRequest,
    InvalidateRequest,
    RemovedResponse,
    StoreStatsSchema,
)
from semcache.domain.exceptions import StoreError
from semcache.services.semantic_cache import SemanticCacheService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/cache", tags=["Cache"])


def _get_cache(request: Request) -> SemanticCacheService:
    cache = getattr(request.app.state, "cache", None)
    if cache is None:
        raise HTTPException(status_code=503, detail="Semantic cache is not configured")
    return cache


def _store_unavailable(e: StoreError) -> HTTPException:
    logger.error("Store operation %s failed: %s", e.operation, e.message)
    return HTTPException(status_code=503, detail=e.to_dict())


@router.get("/stats", summary="Cache statistics")
async def cache_stats(request: Request, tenant_id: str | None = None) -> CacheStatsResponse:
    cache = _get_cache(request)
    try:
        stats = await cache.get_stats(tenant_id)
        store_stats = await cache.get_store_stats()
    except StoreError as e:
        raise _store_unavailable(e) from e

    return CacheStatsResponse(
        tenant_id=tenant_id,
        model_revision=cache.model_revision,
        stats=CacheStatsSchema(**stats.to_dict()),
        store=StoreStatsSchema(**store_stats.to_dict()),
    )


@router.post("/invalidate", summary="Invalidate a model revision")
async def invalidate(body: InvalidateRequest, request: Request) -> RemovedResponse:
    cache = _get_cache(request)
    try:
        removed = await cache.invalidate_by_model_revision(body.model_revision)
    except StoreError as e:
        raise _store_unavailable(e) from e
    return RemovedResponse(removed=removed)


@router.post("/evict", summary="Evict idle entries")
async def evict(body: EvictRequest, request: Request) -> RemovedResponse:
    cache = _get_cache(request)
    try:
        removed = await cache.evict_older_than(body.max_age_ms)
    except StoreError as e:
        raise _store_unavailable(e) from e
    return RemovedResponse(removed=removed)


@router.post("/sweep", summary="Delete orphaned queries")
async def sweep(request: Request) -> RemovedResponse:
    cache = _get_cache(request)
    try:
        removed = await cache.sweep_orphans()
    except StoreError as e:
        raise _store_unavailable(e) from e
    return RemovedResponse(removed=removed)


@router.delete("", summary="Clear the cache")
async def clear(request: Request) -> dict[str, str]:
    """Remove every entry. Intended for test and reset flows."""
    cache = _get_cache(request)
    try:
        await cache.clear()
    except StoreError as e:
        raise _store_unavailable(e) from e
    return {"status": "ok", "message": "Cache cleared"}
