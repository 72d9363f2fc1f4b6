"""Cache administration request and response schemas."""

from pydantic import BaseModel, Field


class CacheStatsSchema(BaseModel):
    """Hit statistics; hit_rate counts hits beyond each entry's initial store."""

    total_queries: int
    total_hits: int
    hit_rate: float


class StoreStatsSchema(BaseModel):
    """Raw collection counts."""

    query_count: int
    result_count: int
    total_hits: int
    avg_hit_count: float


class CacheStatsResponse(BaseModel):
    tenant_id: str | None = None
    model_revision: str
    stats: CacheStatsSchema
    store: StoreStatsSchema


class InvalidateRequest(BaseModel):
    model_revision: str = Field(
        min_length=1,
        description="Results produced under this model revision are deleted.",
        examples=["embed:text-embedding-ada-002"],
    )


class EvictRequest(BaseModel):
    max_age_ms: int | None = Field(
        default=None,
        gt=0,
        description="Entries not hit within this window are deleted. Defaults to CACHE_EVICTION_MAX_AGE_MS.",
        examples=[30 * 24 * 60 * 60 * 1000],
    )


class RemovedResponse(BaseModel):
    removed: int
