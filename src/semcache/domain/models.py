"""
Cache domain models.

These represent the internal truth of the system.
No external dependencies - only Python standard library.
"""

import secrets
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ItemKind(str, Enum):
    """Graph element a cached item refers to."""
    NODE = "node"
    EDGE = "edge"


class CacheSource(str, Enum):
    """Where a retrieval result came from."""
    SEMANTIC_CACHE = "semantic-cache"
    FRESH = "fresh"


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def generate_key() -> str:
    """Unique, roughly time-ordered key: millisecond timestamp plus random suffix."""
    return f"{now_ms():012x}{secrets.token_hex(5)}".upper()


@dataclass(frozen=True)
class CacheItem:
    """A node or edge returned by the hybrid retrieval."""
    id: str
    kind: ItemKind
    score: float

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "kind": self.kind.value, "score": self.score}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CacheItem":
        return cls(id=str(data["id"]), kind=ItemKind(data["kind"]), score=float(data["score"]))


@dataclass(frozen=True)
class QueryIntent:
    """Lightweight signal extracted from a query to drive TTL policy."""
    entities: frozenset[str] = frozenset()
    facets: frozenset[str] = frozenset()
    timebox: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "entities": sorted(self.entities),
            "facets": sorted(self.facets),
            "timebox": self.timebox,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "QueryIntent":
        return cls(
            entities=frozenset(data.get("entities") or ()),
            facets=frozenset(data.get("facets") or ()),
            timebox=data.get("timebox"),
        )


@dataclass
class CachedQuery:
    """One semantically keyed cache slot. Mutated in place on every hit."""
    key: str
    normalized_text: str
    embedding: list[float]
    intent: QueryIntent = field(default_factory=QueryIntent)
    created_at: int = field(default_factory=now_ms)
    last_hit_at: int = field(default_factory=now_ms)
    hit_count: int = 1
    tenant_id: str | None = None


@dataclass
class CachedResult:
    """Materialized payload for one CachedQuery, refreshed in place."""
    owner_key: str
    items: list[CacheItem]
    model_revision: str
    ttl_at: int
    freshened_at: int | None = None


@dataclass(frozen=True)
class CacheMatch:
    """Best complete entry found above the similarity threshold."""
    query: CachedQuery
    result: CachedResult
    similarity: float


@dataclass(frozen=True)
class RetrievalResult:
    """What the engine hands back to its caller."""
    items: list[CacheItem]
    source: CacheSource
    query_key: str
    similarity: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "items": [item.to_dict() for item in self.items],
            "source": self.source.value,
            "query_key": self.query_key,
            "similarity": self.similarity,
        }


# =============================================================================
# STATISTICS
# =============================================================================

@dataclass(frozen=True)
class CacheStats:
    """Hit statistics aggregated over stored queries.

    hit_rate counts hits beyond the initial store of each entry:
    (total_hits - total_queries) / total_hits.
    """
    total_queries: int = 0
    total_hits: int = 0

    @property
    def hit_rate(self) -> float:
        if self.total_hits <= 0:
            return 0.0
        return (self.total_hits - self.total_queries) / self.total_hits

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_queries": self.total_queries,
            "total_hits": self.total_hits,
            "hit_rate": self.hit_rate,
        }


@dataclass(frozen=True)
class StoreStats:
    """Raw collection counts, independent of the hit-rate definition."""
    query_count: int = 0
    result_count: int = 0
    total_hits: int = 0

    @property
    def avg_hit_count(self) -> float:
        return self.total_hits / self.query_count if self.query_count else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "query_count": self.query_count,
            "result_count": self.result_count,
            "total_hits": self.total_hits,
            "avg_hit_count": self.avg_hit_count,
        }
