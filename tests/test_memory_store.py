"""Tests for the in-memory similarity store and its FAISS index."""

import pytest

from semcache.domain.exceptions import DimensionMismatchError
from semcache.domain.models import CacheItem, CachedQuery, CachedResult, ItemKind
from semcache.services.similarity import cosine_similarity
from semcache.stores.memory import InMemorySimilarityStore
from semcache.stores.vector_index import VectorIndex

NOW = 1_700_000_000_000


def _entry(key, vec, tenant_id=None, revision="embed:a", last_hit_at=NOW, hit_count=1):
    query = CachedQuery(
        key=key,
        normalized_text=f"text {key}",
        embedding=vec,
        created_at=last_hit_at,
        last_hit_at=last_hit_at,
        hit_count=hit_count,
        tenant_id=tenant_id,
    )
    result = CachedResult(
        owner_key=key,
        items=[CacheItem(id=f"n/{key}", kind=ItemKind.NODE, score=0.9)],
        model_revision=revision,
        ttl_at=NOW + 60_000,
    )
    return query, result


class TestVectorIndex:
    def test_search_returns_closest_first(self):
        index = VectorIndex(3)
        index.add("x", [1, 0, 0])
        index.add("y", [0, 1, 0])
        index.add("xy", [1, 1, 0])

        hits = index.search([1, 0.1, 0], k=3)

        assert [key for key, _ in hits][0] == "x"
        assert len(hits) == 3

    def test_k_is_capped_by_size(self):
        index = VectorIndex(2)
        index.add("a", [1, 0])
        assert len(index.search([1, 0], k=10)) == 1

    def test_remove(self):
        index = VectorIndex(2)
        index.add("a", [1, 0])
        assert index.remove("a") is True
        assert index.remove("a") is False
        assert index.size == 0
        assert index.search([1, 0], k=5) == []

    def test_re_adding_replaces_vector(self):
        index = VectorIndex(2)
        index.add("a", [1, 0])
        index.add("a", [0, 1])
        assert index.size == 1
        key, score = index.search([0, 1], k=1)[0]
        assert key == "a"
        assert score == pytest.approx(1.0, abs=1e-6)

    def test_wrong_dimension(self):
        index = VectorIndex(2)
        with pytest.raises(DimensionMismatchError):
            index.add("a", [1, 0, 0])


class TestInMemorySimilarityStore:
    @pytest.fixture
    def store(self):
        return InMemorySimilarityStore(4)

    @pytest.mark.anyio
    async def test_empty_store_has_no_match(self, store):
        assert await store.find_best_match([1, 0, 0, 0], 0.5) is None

    @pytest.mark.anyio
    async def test_returns_highest_similarity_above_threshold(self, store):
        await store.insert(*_entry("a", [1, 0, 0, 0]))
        await store.insert(*_entry("b", [0.9, 0.1, 0, 0]))
        await store.insert(*_entry("c", [0, 0, 1, 0]))

        match = await store.find_best_match([1, 0.02, 0, 0], 0.5)

        assert match is not None
        assert match.query.key == "a"
        assert match.similarity == pytest.approx(cosine_similarity([1, 0, 0, 0], [1, 0.02, 0, 0]))

    @pytest.mark.anyio
    async def test_nothing_above_threshold(self, store):
        await store.insert(*_entry("a", [1, 0, 0, 0]))
        assert await store.find_best_match([0, 1, 0, 0], 0.5) is None

    @pytest.mark.anyio
    async def test_tenant_partitions_are_isolated(self, store):
        await store.insert(*_entry("t1", [1, 0, 0, 0], tenant_id="acme"))
        await store.insert(*_entry("g", [0, 1, 0, 0]))

        assert (await store.find_best_match([1, 0, 0, 0], 0.9, tenant_id="acme")).query.key == "t1"
        assert await store.find_best_match([1, 0, 0, 0], 0.9, tenant_id="globex") is None
        assert await store.find_best_match([1, 0, 0, 0], 0.9) is None
        assert await store.find_best_match([0, 1, 0, 0], 0.9, tenant_id="acme") is None

    @pytest.mark.anyio
    async def test_orphaned_queries_never_match(self, store):
        await store.insert(*_entry("a", [1, 0, 0, 0], revision="embed:old"))

        assert await store.delete_results_by_revision("embed:old") == 1
        assert await store.find_best_match([1, 0, 0, 0], 0.5) is None
        assert await store.count_queries() == 1
        assert await store.count_results() == 0

        assert await store.delete_orphaned_queries() == 1
        assert await store.count_queries() == 0

    @pytest.mark.anyio
    async def test_update_in_place_requires_existing_result(self, store):
        query, result = _entry("a", [1, 0, 0, 0])
        await store.insert(query, result)

        refreshed = CachedResult(owner_key="a", items=[], model_revision="embed:b", ttl_at=NOW + 1, freshened_at=NOW)
        assert await store.update_result_in_place(refreshed) is True
        match = await store.find_best_match([1, 0, 0, 0], 0.5)
        assert match.result.model_revision == "embed:b"
        assert match.result.freshened_at == NOW

        missing = CachedResult(owner_key="zzz", items=[], model_revision="embed:b", ttl_at=NOW)
        assert await store.update_result_in_place(missing) is False

    @pytest.mark.anyio
    async def test_touch_increments_hit_count(self, store):
        await store.insert(*_entry("a", [1, 0, 0, 0]))

        await store.touch("a", NOW + 5)
        await store.touch("a", NOW + 9)

        match = await store.find_best_match([1, 0, 0, 0], 0.5)
        assert match.query.hit_count == 3
        assert match.query.last_hit_at == NOW + 9

    @pytest.mark.anyio
    async def test_returned_match_is_a_snapshot(self, store):
        await store.insert(*_entry("a", [1, 0, 0, 0]))
        match = await store.find_best_match([1, 0, 0, 0], 0.5)
        match.query.hit_count = 100

        assert await store.aggregate_hits() == (1, 1)

    @pytest.mark.anyio
    async def test_idle_eviction_cascades(self, store):
        await store.insert(*_entry("old", [1, 0, 0, 0], last_hit_at=NOW - 10_000))
        await store.insert(*_entry("new", [0, 1, 0, 0], last_hit_at=NOW))

        assert await store.delete_queries_idle_since(NOW - 5_000) == 1
        assert await store.count_queries() == 1
        assert await store.count_results() == 1
        assert await store.find_best_match([1, 0, 0, 0], 0.5) is None

    @pytest.mark.anyio
    async def test_aggregate_hits_per_tenant(self, store):
        await store.insert(*_entry("a", [1, 0, 0, 0], tenant_id="acme", hit_count=3))
        await store.insert(*_entry("b", [0, 1, 0, 0], hit_count=2))

        assert await store.aggregate_hits() == (2, 5)
        assert await store.aggregate_hits("acme") == (1, 3)
        assert await store.count_queries("acme") == 1

    @pytest.mark.anyio
    async def test_clear(self, store):
        await store.insert(*_entry("a", [1, 0, 0, 0]))
        await store.clear()
        assert await store.count_queries() == 0
        assert await store.find_best_match([1, 0, 0, 0], 0.5) is None

    @pytest.mark.anyio
    async def test_dimension_mismatch(self, store):
        with pytest.raises(DimensionMismatchError):
            await store.find_best_match([1, 0], 0.5)
        with pytest.raises(DimensionMismatchError):
            await store.insert(*_entry("a", [1, 0, 0]))
