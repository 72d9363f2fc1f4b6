"""Abstract base class for similarity stores."""

from abc import ABC, abstractmethod
from collections.abc import Sequence

from semcache.domain.models import CachedQuery, CachedResult, CacheMatch


class SimilarityStore(ABC):
    """Backing store for cached queries and their results.

    The store is the single source of truth for entry state. Implementations
    must raise from the StoreError family on failure rather than report an
    empty result, and must keep tenant partitions (including the tenant-less
    one) strictly separate in find_best_match.
    """

    @abstractmethod
    async def find_best_match(
        self,
        embedding: Sequence[float],
        threshold: float,
        tenant_id: str | None = None,
    ) -> CacheMatch | None:
        """Highest-similarity complete entry with similarity >= threshold."""
        ...

    @abstractmethod
    async def insert(self, query: CachedQuery, result: CachedResult) -> None:
        """Write a query and its result so both become visible together."""
        ...

    @abstractmethod
    async def update_result_in_place(self, result: CachedResult) -> bool:
        """Replace the result owned by result.owner_key.

        Returns False when the owner has no result (it was invalidated or
        evicted in the meantime); nothing is written in that case.
        """
        ...

    @abstractmethod
    async def touch(self, owner_key: str, now: int) -> None:
        """Set last_hit_at and increment hit_count atomically."""
        ...

    @abstractmethod
    async def delete_results_by_revision(self, model_revision: str) -> int: ...

    @abstractmethod
    async def delete_queries_idle_since(self, cutoff: int) -> int:
        """Delete queries with last_hit_at < cutoff together with their results."""
        ...

    @abstractmethod
    async def delete_orphaned_queries(self) -> int: ...

    @abstractmethod
    async def clear(self) -> None: ...

    @abstractmethod
    async def count_queries(self, tenant_id: str | None = None) -> int: ...

    @abstractmethod
    async def count_results(self) -> int: ...

    @abstractmethod
    async def aggregate_hits(self, tenant_id: str | None = None) -> tuple[int, int]:
        """Return (query count, sum of hit counts), optionally for one tenant."""
        ...

    async def ping(self) -> bool:
        return True

    async def aclose(self) -> None:
        return None
