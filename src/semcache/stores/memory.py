"""Process-local similarity store backed by per-tenant FAISS indexes."""

import dataclasses
import logging
from collections.abc import Sequence

from semcache.domain.exceptions import DimensionMismatchError
from semcache.domain.models import CachedQuery, CachedResult, CacheMatch
from semcache.services.similarity import cosine_similarity
from semcache.stores.base import SimilarityStore
from semcache.stores.vector_index import VectorIndex

logger = logging.getLogger(__name__)

DEFAULT_CANDIDATES = 16


class InMemorySimilarityStore(SimilarityStore):
    """Keeps queries and results in dicts, vectors in one VectorIndex per partition.

    Only complete entries (query with a result) are indexed, so orphaned
    queries can never be shortlisted. Shortlisted candidates are re-scored
    with exact float64 cosine similarity before the threshold is applied.
    All mutations happen without awaiting, so each call is atomic with
    respect to other coroutines on the same loop.
    """

    def __init__(self, dimension: int, candidates: int = DEFAULT_CANDIDATES):
        self._dimension = dimension
        self._candidates = candidates
        self._queries: dict[str, CachedQuery] = {}
        self._results: dict[str, CachedResult] = {}
        self._indexes: dict[str | None, VectorIndex] = {}

    def _check_dimension(self, embedding: Sequence[float]) -> None:
        if len(embedding) != self._dimension:
            raise DimensionMismatchError(self._dimension, len(embedding))

    def _index_for(self, tenant_id: str | None) -> VectorIndex:
        index = self._indexes.get(tenant_id)
        if index is None:
            index = self._indexes[tenant_id] = VectorIndex(self._dimension)
        return index

    def _unindex(self, query: CachedQuery) -> None:
        index = self._indexes.get(query.tenant_id)
        if index is not None:
            index.remove(query.key)

    async def find_best_match(
        self,
        embedding: Sequence[float],
        threshold: float,
        tenant_id: str | None = None,
    ) -> CacheMatch | None:
        self._check_dimension(embedding)
        index = self._indexes.get(tenant_id)
        if index is None or index.size == 0:
            return None

        best: CacheMatch | None = None
        for key, _ in index.search(embedding, self._candidates):
            query = self._queries.get(key)
            result = self._results.get(key)
            if query is None or result is None or query.tenant_id != tenant_id:
                continue
            similarity = cosine_similarity(query.embedding, embedding)
            if similarity < threshold:
                continue
            if best is None or similarity > best.similarity:
                best = CacheMatch(
                    query=dataclasses.replace(query),
                    result=dataclasses.replace(result),
                    similarity=similarity,
                )
        return best

    async def insert(self, query: CachedQuery, result: CachedResult) -> None:
        self._check_dimension(query.embedding)
        self._queries[query.key] = dataclasses.replace(query)
        self._results[query.key] = dataclasses.replace(result, owner_key=query.key)
        self._index_for(query.tenant_id).add(query.key, query.embedding)

    async def update_result_in_place(self, result: CachedResult) -> bool:
        if result.owner_key not in self._results:
            return False
        self._results[result.owner_key] = dataclasses.replace(result)
        return True

    async def touch(self, owner_key: str, now: int) -> None:
        query = self._queries.get(owner_key)
        if query is not None:
            query.last_hit_at = now
            query.hit_count += 1

    async def delete_results_by_revision(self, model_revision: str) -> int:
        keys = [k for k, r in self._results.items() if r.model_revision == model_revision]
        for key in keys:
            del self._results[key]
            query = self._queries.get(key)
            if query is not None:
                self._unindex(query)
        return len(keys)

    async def delete_queries_idle_since(self, cutoff: int) -> int:
        keys = [k for k, q in self._queries.items() if q.last_hit_at < cutoff]
        for key in keys:
            self._unindex(self._queries.pop(key))
            self._results.pop(key, None)
        return len(keys)

    async def delete_orphaned_queries(self) -> int:
        keys = [k for k in self._queries if k not in self._results]
        for key in keys:
            self._unindex(self._queries.pop(key))
        return len(keys)

    async def clear(self) -> None:
        self._results.clear()
        self._queries.clear()
        self._indexes.clear()

    def _partition(self, tenant_id: str | None) -> list[CachedQuery]:
        if tenant_id is None:
            return list(self._queries.values())
        return [q for q in self._queries.values() if q.tenant_id == tenant_id]

    async def count_queries(self, tenant_id: str | None = None) -> int:
        return len(self._partition(tenant_id))

    async def count_results(self) -> int:
        return len(self._results)

    async def aggregate_hits(self, tenant_id: str | None = None) -> tuple[int, int]:
        queries = self._partition(tenant_id)
        return len(queries), sum(q.hit_count for q in queries)

    @property
    def dimension(self) -> int:
        return self._dimension
