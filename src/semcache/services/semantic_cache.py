"""Semantic cache decision engine.

Queries are matched by embedding similarity instead of exact text. A match
is only served when its result was produced by the current model revision
and has not expired; everything else goes to the caller's retrieval
function.

Two protocols are offered:

- ``retrieve``: stale matches are abandoned and a new entry is stored.
- ``retrieve_with_background_refresh``: the matched entry is refreshed in
  place, inline when expired, in a background task when it is about to
  expire or was produced by another model revision. Paraphrases above the
  threshold share one entry, so the original vector keeps attracting
  future near-duplicates and the cache does not grow per phrasing. The
  matched query's intent drives the new TTL.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from typing import TypeVar

from semcache.core import telemetry
from semcache.core.config import CacheSettings, get_settings
from semcache.core.metrics import cache_metrics
from semcache.domain.exceptions import DimensionMismatchError
from semcache.domain.models import (
    CacheItem,
    CacheMatch,
    CacheSource,
    CacheStats,
    CachedQuery,
    CachedResult,
    QueryIntent,
    RetrievalResult,
    StoreStats,
    generate_key,
    now_ms,
)
from semcache.services.embedding import EmbeddingProvider, get_model_revision
from semcache.services.freshness import (
    compute_ttl,
    is_expired,
    is_valid,
    needs_refresh,
    remaining_ttl_ms,
)
from semcache.services.text import extract_intent, normalize_text
from semcache.stores.base import SimilarityStore

logger = logging.getLogger(__name__)

RetrievalFn = Callable[[str, list[float]], Awaitable[list[CacheItem]]]

T = TypeVar("T")


async def _bounded(coro: Awaitable[T], timeout: float | None) -> T:
    if timeout is None:
        return await coro
    return await asyncio.wait_for(coro, timeout)


class SemanticCacheService:
    def __init__(
        self,
        similarity_store: SimilarityStore,
        embedding_service: EmbeddingProvider,
        config: CacheSettings | None = None,
        reranker_model: str | None = None,
    ):
        self.similarity_store = similarity_store
        self.embedding_service = embedding_service
        self.config = config or get_settings().cache
        self.dimension = embedding_service.dimension
        self.model_revision = get_model_revision(embedding_service.model_id, reranker_model)
        self._refresh_tasks: set[asyncio.Task] = set()

    # -- entry primitives ---------------------------------------------------

    async def _prepare(self, query_text: str) -> tuple[str, list[float], QueryIntent]:
        normalized = normalize_text(query_text)
        embedding = list(await self.embedding_service.embed(normalized))
        if len(embedding) != self.dimension:
            raise DimensionMismatchError(self.dimension, len(embedding))
        return normalized, embedding, extract_intent(query_text)

    async def find_match(
        self,
        embedding: Sequence[float],
        tenant_id: str | None = None,
        timeout: float | None = None,
    ) -> CacheMatch | None:
        """Best complete entry at or above the similarity threshold, or None.

        Store failures propagate; they are never reported as "no match".
        """
        return await _bounded(
            self.similarity_store.find_best_match(
                embedding, self.config.similarity_threshold, tenant_id
            ),
            timeout,
        )

    async def touch(self, query_key: str) -> None:
        await self.similarity_store.touch(query_key, now_ms())

    async def store(
        self,
        normalized_text: str,
        embedding: Sequence[float],
        items: Sequence[CacheItem],
        intent: QueryIntent,
        tenant_id: str | None = None,
    ) -> str:
        """Write a new query/result pair and return its key."""
        now = now_ms()
        key = generate_key()
        query = CachedQuery(
            key=key,
            normalized_text=normalized_text,
            embedding=list(embedding),
            intent=intent,
            created_at=now,
            last_hit_at=now,
            hit_count=1,
            tenant_id=tenant_id,
        )
        result = CachedResult(
            owner_key=key,
            items=list(items[: self.config.top_k_cached]),
            model_revision=self.model_revision,
            ttl_at=compute_ttl(intent, self.config.default_ttl_ms, now),
        )
        await self.similarity_store.insert(query, result)
        cache_metrics.record_store()
        logger.debug("Stored entry %s (%d items, ttl_at=%d)", key, len(result.items), result.ttl_at)
        return key

    async def update_results(
        self,
        query_key: str,
        items: Sequence[CacheItem],
        intent: QueryIntent | None = None,
    ) -> bool:
        """Refresh an entry's result in place; the default intent gives the base TTL."""
        now = now_ms()
        result = CachedResult(
            owner_key=query_key,
            items=list(items[: self.config.top_k_cached]),
            model_revision=self.model_revision,
            ttl_at=compute_ttl(intent or QueryIntent(), self.config.default_ttl_ms, now),
            freshened_at=now,
        )
        updated = await self.similarity_store.update_result_in_place(result)
        if not updated:
            logger.warning("Result for %s was removed before refresh; entry left incomplete", query_key)
        return updated

    async def _run_retrieval(
        self, retrieval_fn: RetrievalFn, normalized: str, embedding: list[float], mode: str
    ) -> list[CacheItem]:
        start = time.perf_counter()
        items = await retrieval_fn(normalized, embedding)
        cache_metrics.record_retrieval_latency(mode, time.perf_counter() - start)
        return list(items)

    async def _retrieve_fresh(
        self,
        retrieval_fn: RetrievalFn,
        normalized: str,
        embedding: list[float],
        intent: QueryIntent,
        tenant_id: str | None,
    ) -> RetrievalResult:
        items = await self._run_retrieval(retrieval_fn, normalized, embedding, mode="miss")
        key = await self.store(normalized, embedding, items, intent, tenant_id)
        return RetrievalResult(
            items=items[: self.config.top_k_returned],
            source=CacheSource.FRESH,
            query_key=key,
        )

    def _hit(self, match: CacheMatch) -> RetrievalResult:
        return RetrievalResult(
            items=match.result.items[: self.config.top_k_returned],
            source=CacheSource.SEMANTIC_CACHE,
            query_key=match.query.key,
            similarity=match.similarity,
        )

    # -- protocols ----------------------------------------------------------

    async def retrieve(
        self,
        query_text: str,
        retrieval_fn: RetrievalFn,
        tenant_id: str | None = None,
        timeout: float | None = None,
    ) -> RetrievalResult:
        """Serve a valid match or retrieve fresh results and store a new entry.

        Retrieval and store failures propagate to the caller. When
        ``timeout`` elapses the call raises TimeoutError.
        """
        return await _bounded(self._retrieve(query_text, retrieval_fn, tenant_id), timeout)

    async def _retrieve(
        self, query_text: str, retrieval_fn: RetrievalFn, tenant_id: str | None
    ) -> RetrievalResult:
        tenant_id = tenant_id if tenant_id is not None else self.config.tenant_id
        normalized, embedding, intent = await self._prepare(query_text)

        match = await self.find_match(embedding, tenant_id)
        if match is not None and is_valid(match.result, self.model_revision, now_ms()):
            await self.touch(match.query.key)
            cache_metrics.record_lookup("sync", "hit")
            telemetry.log_cache_hit(match.query.key, tenant_id, match.similarity, "sync")
            return self._hit(match)

        # A stale match is abandoned here; eviction reclaims it later
        result = await self._retrieve_fresh(retrieval_fn, normalized, embedding, intent, tenant_id)
        outcome = "miss" if match is None else "stale"
        cache_metrics.record_lookup("sync", outcome)
        telemetry.log_cache_miss(
            result.query_key, tenant_id, "sync", "no_match" if match is None else "stale"
        )
        return result

    async def retrieve_with_background_refresh(
        self,
        query_text: str,
        retrieval_fn: RetrievalFn,
        tenant_id: str | None = None,
        timeout: float | None = None,
    ) -> RetrievalResult:
        """Serve unexpired matches immediately, refreshing them in the background when due.

        Expired matches are refreshed inline and reported as fresh under the
        existing key. If that result was removed in the meantime the items are
        stored as a new entry instead. Background refresh failures are logged,
        never raised.
        """
        return await _bounded(
            self._retrieve_with_background_refresh(query_text, retrieval_fn, tenant_id), timeout
        )

    async def _retrieve_with_background_refresh(
        self, query_text: str, retrieval_fn: RetrievalFn, tenant_id: str | None
    ) -> RetrievalResult:
        tenant_id = tenant_id if tenant_id is not None else self.config.tenant_id
        normalized, embedding, intent = await self._prepare(query_text)

        match = await self.find_match(embedding, tenant_id)
        if match is None:
            result = await self._retrieve_fresh(
                retrieval_fn, normalized, embedding, intent, tenant_id
            )
            cache_metrics.record_lookup("background", "miss")
            telemetry.log_cache_miss(result.query_key, tenant_id, "background", "no_match")
            return result

        key = match.query.key
        now = now_ms()

        if is_expired(match.result, now):
            # Never serve expired data; refresh the matched entry inline
            items = await self._run_retrieval(retrieval_fn, normalized, embedding, mode="inline")
            if await self.update_results(key, items, match.query.intent):
                await self.touch(key)
                cache_metrics.record_refresh("inline", "ok")
            else:
                # Result removed mid-refresh; store the items under a new key
                key = await self.store(normalized, embedding, items, match.query.intent, tenant_id)
                cache_metrics.record_refresh("inline", "replaced")
            cache_metrics.record_lookup("background", "expired")
            telemetry.log_cache_miss(key, tenant_id, "background", "expired")
            return RetrievalResult(
                items=items[: self.config.top_k_returned],
                source=CacheSource.FRESH,
                query_key=key,
            )

        await self.touch(key)
        if needs_refresh(match.result, self.model_revision, now, self.config.near_expiry_ms):
            telemetry.log_refresh_scheduled(
                key,
                model_mismatch=match.result.model_revision != self.model_revision,
                remaining_ttl_ms=remaining_ttl_ms(match.result, now),
            )
            self._schedule_refresh(key, normalized, embedding, retrieval_fn, match.query.intent)

        cache_metrics.record_lookup("background", "hit")
        telemetry.log_cache_hit(key, tenant_id, match.similarity, "background")
        return self._hit(match)

    # -- background refresh -------------------------------------------------

    def _schedule_refresh(
        self,
        query_key: str,
        normalized: str,
        embedding: list[float],
        retrieval_fn: RetrievalFn,
        intent: QueryIntent,
    ) -> asyncio.Task:
        task = asyncio.create_task(
            self._background_refresh(query_key, normalized, embedding, retrieval_fn, intent),
            name=f"semcache-refresh-{query_key}",
        )
        self._refresh_tasks.add(task)
        task.add_done_callback(self._refresh_tasks.discard)
        return task

    async def _refresh_entry(
        self,
        query_key: str,
        normalized: str,
        embedding: list[float],
        retrieval_fn: RetrievalFn,
        intent: QueryIntent,
    ) -> None:
        items = await self._run_retrieval(retrieval_fn, normalized, embedding, mode="background")
        await self.update_results(query_key, items, intent)

    async def _background_refresh(
        self,
        query_key: str,
        normalized: str,
        embedding: list[float],
        retrieval_fn: RetrievalFn,
        intent: QueryIntent,
    ) -> None:
        """Fire-and-forget refresh. Nobody awaits this, so nothing is re-raised."""
        try:
            await asyncio.wait_for(
                self._refresh_entry(query_key, normalized, embedding, retrieval_fn, intent),
                timeout=self.config.refresh_timeout_seconds,
            )
        except asyncio.CancelledError:
            cache_metrics.record_refresh("background", "cancelled")
            logger.info("Background refresh cancelled for %s", query_key)
            raise
        except Exception as e:
            cache_metrics.record_refresh("background", "error")
            logger.exception("Background refresh failed for %s", query_key)
            telemetry.log_refresh_failed(query_key, e)
        else:
            cache_metrics.record_refresh("background", "ok")

    @property
    def pending_refreshes(self) -> int:
        return len(self._refresh_tasks)

    async def wait_for_refreshes(self) -> None:
        """Wait until every scheduled background refresh has finished."""
        while self._refresh_tasks:
            await asyncio.gather(*list(self._refresh_tasks), return_exceptions=True)

    async def aclose(self) -> None:
        """Cancel outstanding background refreshes."""
        tasks = list(self._refresh_tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # -- statistics & housekeeping ------------------------------------------

    async def get_stats(self, tenant_id: str | None = None) -> CacheStats:
        total_queries, total_hits = await self.similarity_store.aggregate_hits(tenant_id)
        return CacheStats(total_queries=total_queries, total_hits=total_hits)

    async def get_store_stats(self) -> StoreStats:
        query_count, total_hits = await self.similarity_store.aggregate_hits()
        result_count = await self.similarity_store.count_results()
        return StoreStats(query_count=query_count, result_count=result_count, total_hits=total_hits)

    async def invalidate_by_model_revision(self, model_revision: str) -> int:
        """Delete results of a model revision; their queries stay but never match."""
        removed = await self.similarity_store.delete_results_by_revision(model_revision)
        cache_metrics.record_removed("model_revision", removed)
        logger.info("Invalidated %d results for revision %s", removed, model_revision)
        return removed

    async def evict_older_than(self, max_age_ms: int | None = None) -> int:
        """Delete entries not hit within ``max_age_ms`` (default from config)."""
        if max_age_ms is None:
            max_age_ms = self.config.eviction_max_age_ms
        removed = await self.similarity_store.delete_queries_idle_since(now_ms() - max_age_ms)
        cache_metrics.record_removed("idle", removed)
        logger.info("Evicted %d entries idle for more than %dms", removed, max_age_ms)
        return removed

    async def sweep_orphans(self) -> int:
        removed = await self.similarity_store.delete_orphaned_queries()
        cache_metrics.record_removed("orphaned", removed)
        if removed:
            logger.info("Swept %d orphaned queries", removed)
        return removed

    async def clear(self) -> None:
        await self.similarity_store.clear()
        logger.info("Cache cleared")
