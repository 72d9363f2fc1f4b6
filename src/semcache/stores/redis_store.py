"""Redis-backed similarity store.

Layout under a configurable prefix (default "sc"):

    {prefix}:q:{key}         hash   query document
    {prefix}:r:{key}         hash   result document owned by query {key}
    {prefix}:queries         set    every query key
    {prefix}:part:global     set    query keys without a tenant
    {prefix}:part:t:{tenant} set    query keys of one tenant
    {prefix}:rev:{revision}  set    owner keys of results with that revision

Lookup scores every vector of the partition client-side, so no Redis
search module is required.
"""

import json
import logging
from collections.abc import Iterator, Sequence
from contextlib import contextmanager

import redis.asyncio as redis

from semcache.domain.exceptions import (
    DimensionMismatchError,
    StoreConnectionError,
    StoreError,
    StoreSerializationError,
    StoreWriteError,
)
from semcache.domain.models import CacheItem, CachedQuery, CachedResult, CacheMatch, QueryIntent
from semcache.services.similarity import cosine_similarity
from semcache.stores.base import SimilarityStore

logger = logging.getLogger(__name__)

# KEYS: result hash, revision set prefix. ARGV: items, revision, ttl_at, freshened_at, owner key
_UPDATE_RESULT_LUA = """
if redis.call('EXISTS', KEYS[1]) == 0 then
    return 0
end
local old = redis.call('HGET', KEYS[1], 'model_rev')
if old then
    redis.call('SREM', KEYS[2] .. old, ARGV[5])
end
redis.call('HSET', KEYS[1], 'items', ARGV[1], 'model_rev', ARGV[2],
           'ttl_at', ARGV[3], 'freshened_at', ARGV[4])
redis.call('SADD', KEYS[2] .. ARGV[2], ARGV[5])
return 1
"""

# KEYS: query hash. ARGV: now
_TOUCH_LUA = """
if redis.call('EXISTS', KEYS[1]) == 0 then
    return 0
end
redis.call('HSET', KEYS[1], 'last_hit_at', ARGV[1])
return redis.call('HINCRBY', KEYS[1], 'hit_count', 1)
"""


@contextmanager
def _store_errors(operation: str, write: bool = False) -> Iterator[None]:
    """Translate redis exceptions into the StoreError family."""
    try:
        yield
    except (redis.ConnectionError, redis.TimeoutError) as e:
        logger.warning("Redis unreachable during %s: %s", operation, e)
        raise StoreConnectionError(f"Redis unreachable: {e}", operation=operation) from e
    except redis.RedisError as e:
        logger.warning("Redis error during %s: %s", operation, e)
        error_cls = StoreWriteError if write else StoreError
        raise error_cls(f"Redis error: {e}", operation=operation) from e


class RedisSimilarityStore(SimilarityStore):
    def __init__(self, client: redis.Redis, dimension: int, key_prefix: str = "sc"):
        self.client = client
        self._dimension = dimension
        self._prefix = key_prefix
        self._update_result = client.register_script(_UPDATE_RESULT_LUA)
        self._touch = client.register_script(_TOUCH_LUA)

    # -- key helpers --------------------------------------------------------

    def _query_key(self, key: str) -> str:
        return f"{self._prefix}:q:{key}"

    def _result_key(self, key: str) -> str:
        return f"{self._prefix}:r:{key}"

    def _partition_key(self, tenant_id: str | None) -> str:
        if tenant_id is None:
            return f"{self._prefix}:part:global"
        return f"{self._prefix}:part:t:{tenant_id}"

    @property
    def _all_queries_key(self) -> str:
        return f"{self._prefix}:queries"

    @property
    def _revision_prefix(self) -> str:
        return f"{self._prefix}:rev:"

    # -- (de)serialization --------------------------------------------------

    def _encode_query(self, query: CachedQuery) -> dict[str, str | int]:
        return {
            "text": query.normalized_text,
            "vec": json.dumps(list(query.embedding)),
            "intent": json.dumps(query.intent.to_dict()),
            "created_at": query.created_at,
            "last_hit_at": query.last_hit_at,
            "hit_count": query.hit_count,
            "tenant_id": query.tenant_id or "",
        }

    def _encode_items(self, items: list[CacheItem]) -> str:
        return json.dumps([item.to_dict() for item in items])

    def _encode_result(self, result: CachedResult) -> dict[str, str | int]:
        return {
            "items": self._encode_items(result.items),
            "model_rev": result.model_revision,
            "ttl_at": result.ttl_at,
            "freshened_at": result.freshened_at if result.freshened_at is not None else "",
        }

    def _decode_query(self, key: str, data: dict[str, str]) -> CachedQuery:
        try:
            return CachedQuery(
                key=key,
                normalized_text=data["text"],
                embedding=json.loads(data["vec"]),
                intent=QueryIntent.from_dict(json.loads(data["intent"])),
                created_at=int(data["created_at"]),
                last_hit_at=int(data["last_hit_at"]),
                hit_count=int(data["hit_count"]),
                tenant_id=data.get("tenant_id") or None,
            )
        except (KeyError, ValueError, TypeError) as e:
            raise StoreSerializationError(
                f"Corrupt query document {key}: {e}", operation="decode_query"
            ) from e

    def _decode_result(self, key: str, data: dict[str, str]) -> CachedResult:
        try:
            freshened_at = data.get("freshened_at")
            return CachedResult(
                owner_key=key,
                items=[CacheItem.from_dict(item) for item in json.loads(data["items"])],
                model_revision=data["model_rev"],
                ttl_at=int(data["ttl_at"]),
                freshened_at=int(freshened_at) if freshened_at else None,
            )
        except (KeyError, ValueError, TypeError) as e:
            raise StoreSerializationError(
                f"Corrupt result document {key}: {e}", operation="decode_result"
            ) from e

    # -- lookup -------------------------------------------------------------

    async def find_best_match(
        self,
        embedding: Sequence[float],
        threshold: float,
        tenant_id: str | None = None,
    ) -> CacheMatch | None:
        if len(embedding) != self._dimension:
            raise DimensionMismatchError(self._dimension, len(embedding))

        with _store_errors("find_best_match"):
            keys = sorted(await self.client.smembers(self._partition_key(tenant_id)))
            if not keys:
                return None

            pipe = self.client.pipeline(transaction=False)
            for key in keys:
                pipe.hget(self._query_key(key), "vec")
                pipe.exists(self._result_key(key))
            replies = await pipe.execute()

        scored: list[tuple[float, str]] = []
        for i, key in enumerate(keys):
            raw_vec, has_result = replies[2 * i], replies[2 * i + 1]
            # Orphaned or half-deleted entries are never hit sources
            if raw_vec is None or not has_result:
                continue
            try:
                vec = json.loads(raw_vec)
            except ValueError as e:
                raise StoreSerializationError(
                    f"Corrupt vector for query {key}: {e}", operation="find_best_match"
                ) from e
            similarity = cosine_similarity(vec, embedding)
            if similarity >= threshold:
                scored.append((similarity, key))

        scored.sort(reverse=True)
        for similarity, key in scored:
            with _store_errors("find_best_match"):
                pipe = self.client.pipeline(transaction=False)
                pipe.hgetall(self._query_key(key))
                pipe.hgetall(self._result_key(key))
                query_data, result_data = await pipe.execute()
            # Removed between scoring and fetch; fall through to the next best
            if not query_data or not result_data:
                continue
            return CacheMatch(
                query=self._decode_query(key, query_data),
                result=self._decode_result(key, result_data),
                similarity=similarity,
            )
        return None

    # -- writes -------------------------------------------------------------

    async def insert(self, query: CachedQuery, result: CachedResult) -> None:
        if len(query.embedding) != self._dimension:
            raise DimensionMismatchError(self._dimension, len(query.embedding))

        with _store_errors("insert", write=True):
            pipe = self.client.pipeline(transaction=True)
            pipe.hset(self._query_key(query.key), mapping=self._encode_query(query))
            pipe.hset(self._result_key(query.key), mapping=self._encode_result(result))
            pipe.sadd(self._all_queries_key, query.key)
            pipe.sadd(self._partition_key(query.tenant_id), query.key)
            pipe.sadd(f"{self._revision_prefix}{result.model_revision}", query.key)
            await pipe.execute()

    async def update_result_in_place(self, result: CachedResult) -> bool:
        with _store_errors("update_result_in_place", write=True):
            updated = await self._update_result(
                keys=[self._result_key(result.owner_key), self._revision_prefix],
                args=[
                    self._encode_items(result.items),
                    result.model_revision,
                    result.ttl_at,
                    result.freshened_at if result.freshened_at is not None else "",
                    result.owner_key,
                ],
            )
        return bool(updated)

    async def touch(self, owner_key: str, now: int) -> None:
        with _store_errors("touch", write=True):
            await self._touch(keys=[self._query_key(owner_key)], args=[now])

    # -- deletes ------------------------------------------------------------

    async def delete_results_by_revision(self, model_revision: str) -> int:
        revision_key = f"{self._revision_prefix}{model_revision}"
        with _store_errors("delete_results_by_revision", write=True):
            keys = await self.client.smembers(revision_key)
            if not keys:
                return 0
            pipe = self.client.pipeline(transaction=True)
            for key in keys:
                pipe.delete(self._result_key(key))
            pipe.delete(revision_key)
            replies = await pipe.execute()
        return sum(int(n) for n in replies[:-1])

    async def _delete_entries(self, keys: list[str], operation: str) -> int:
        """Remove queries, their results and every index membership."""
        if not keys:
            return 0
        with _store_errors(operation, write=True):
            pipe = self.client.pipeline(transaction=False)
            for key in keys:
                pipe.hget(self._query_key(key), "tenant_id")
                pipe.hget(self._result_key(key), "model_rev")
            replies = await pipe.execute()

            pipe = self.client.pipeline(transaction=True)
            for i, key in enumerate(keys):
                tenant_id, model_rev = replies[2 * i] or None, replies[2 * i + 1]
                pipe.delete(self._query_key(key), self._result_key(key))
                pipe.srem(self._all_queries_key, key)
                pipe.srem(self._partition_key(tenant_id), key)
                if model_rev:
                    pipe.srem(f"{self._revision_prefix}{model_rev}", key)
            await pipe.execute()
        return len(keys)

    async def delete_queries_idle_since(self, cutoff: int) -> int:
        with _store_errors("delete_queries_idle_since"):
            keys = sorted(await self.client.smembers(self._all_queries_key))
            pipe = self.client.pipeline(transaction=False)
            for key in keys:
                pipe.hget(self._query_key(key), "last_hit_at")
            last_hits = await pipe.execute() if keys else []

        idle = []
        for key, last_hit in zip(keys, last_hits):
            if last_hit is None:
                continue
            try:
                last_hit_at = int(last_hit)
            except ValueError as e:
                raise StoreSerializationError(
                    f"Corrupt last_hit_at for query {key}: {e}",
                    operation="delete_queries_idle_since",
                ) from e
            if last_hit_at < cutoff:
                idle.append(key)
        return await self._delete_entries(idle, "delete_queries_idle_since")

    async def delete_orphaned_queries(self) -> int:
        with _store_errors("delete_orphaned_queries"):
            keys = sorted(await self.client.smembers(self._all_queries_key))
            pipe = self.client.pipeline(transaction=False)
            for key in keys:
                pipe.exists(self._result_key(key))
            exists = await pipe.execute() if keys else []

        orphans = [key for key, has_result in zip(keys, exists) if not has_result]
        return await self._delete_entries(orphans, "delete_orphaned_queries")

    async def clear(self) -> None:
        with _store_errors("clear", write=True):
            batch: list[str] = []
            async for key in self.client.scan_iter(match=f"{self._prefix}:*"):
                batch.append(key)
                if len(batch) >= 500:
                    await self.client.delete(*batch)
                    batch = []
            if batch:
                await self.client.delete(*batch)

    # -- aggregates ---------------------------------------------------------

    async def _partition_members(self, tenant_id: str | None) -> list[str]:
        if tenant_id is None:
            return sorted(await self.client.smembers(self._all_queries_key))
        return sorted(await self.client.smembers(self._partition_key(tenant_id)))

    async def count_queries(self, tenant_id: str | None = None) -> int:
        with _store_errors("count_queries"):
            if tenant_id is None:
                return int(await self.client.scard(self._all_queries_key))
            return int(await self.client.scard(self._partition_key(tenant_id)))

    async def count_results(self) -> int:
        with _store_errors("count_results"):
            count = 0
            async for _ in self.client.scan_iter(match=f"{self._prefix}:r:*"):
                count += 1
            return count

    async def aggregate_hits(self, tenant_id: str | None = None) -> tuple[int, int]:
        with _store_errors("aggregate_hits"):
            keys = await self._partition_members(tenant_id)
            if not keys:
                return 0, 0
            pipe = self.client.pipeline(transaction=False)
            for key in keys:
                pipe.hget(self._query_key(key), "hit_count")
            hit_counts = await pipe.execute()
        try:
            present = [int(h) for h in hit_counts if h is not None]
        except ValueError as e:
            raise StoreSerializationError(
                f"Corrupt hit_count: {e}", operation="aggregate_hits"
            ) from e
        return len(present), sum(present)

    async def ping(self) -> bool:
        with _store_errors("ping"):
            return bool(await self.client.ping())

    async def aclose(self) -> None:
        await self.client.aclose()
