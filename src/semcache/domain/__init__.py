"""semcache domain layer."""

from semcache.domain.models import (
    ItemKind,
    CacheSource,
    CacheItem,
    QueryIntent,
    CachedQuery,
    CachedResult,
    CacheMatch,
    RetrievalResult,
    CacheStats,
    StoreStats,
    generate_key,
    now_ms,
)

from semcache.domain.exceptions import (
    SemCacheError,
    DimensionMismatchError,
    EmbeddingError,
    StoreError,
    StoreConnectionError,
    StoreWriteError,
    StoreSerializationError,
)

__all__ = [
    # Models
    "ItemKind",
    "CacheSource",
    "CacheItem",
    "QueryIntent",
    "CachedQuery",
    "CachedResult",
    "CacheMatch",
    "RetrievalResult",
    "CacheStats",
    "StoreStats",
    "generate_key",
    "now_ms",
    # Exceptions
    "SemCacheError",
    "DimensionMismatchError",
    "EmbeddingError",
    "StoreError",
    "StoreConnectionError",
    "StoreWriteError",
    "StoreSerializationError",
]
