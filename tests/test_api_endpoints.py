"""Tests for FastAPI endpoints."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
import redis.asyncio as redis
from fastapi.testclient import TestClient

from semcache import main
from semcache.core.config import CacheSettings, Settings
from semcache.domain.exceptions import StoreConnectionError
from semcache.domain.models import CachedResult, QueryIntent, now_ms
from semcache.main import create_app
from semcache.services.semantic_cache import SemanticCacheService
from semcache.stores.redis_store import RedisSimilarityStore


@pytest.fixture
def service(memory_store, embedder):
    return SemanticCacheService(memory_store, embedder, config=CacheSettings())


@pytest.fixture
def populated(service, items):
    """Two entries, one hit twice and one stored under an old revision."""

    async def populate():
        first = await service.store("alpha", [0.0, 1.0, 0.0, 0.0], items, QueryIntent())
        await service.touch(first)
        await service.touch(first)
        second = await service.store("beta", [0.0, 0.0, 0.0, 1.0], items, QueryIntent(), tenant_id="acme")
        await service.similarity_store.update_result_in_place(
            CachedResult(owner_key=second, items=items, model_revision="embed:old", ttl_at=now_ms() + 60_000)
        )

    asyncio.run(populate())
    return service


@pytest.fixture
def client(service):
    app = create_app()
    app.state.cache = service
    return TestClient(app)


class TestHealthEndpoint:
    """Test suite for health endpoint."""

    def test_health_endpoint(self, client):
        """Health endpoint should report the store as reachable."""
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["version"] == "0.1.0"
        assert data["model_revision"] == "embed:fake-embed"
        assert data["checks"]["store"]["backend"] == "InMemorySimilarityStore"
        assert data["checks"]["store"]["status"] == "healthy"
        assert data["checks"]["pending_refreshes"] == 0

    def test_unhealthy_when_store_is_down(self, client, service):
        service.similarity_store.ping = AsyncMock(
            side_effect=StoreConnectionError("unreachable", operation="ping")
        )

        data = client.get("/health").json()

        assert data["status"] == "unhealthy"
        assert data["checks"]["store"]["status"] == "unhealthy"

    def test_unhealthy_without_cache(self):
        app = create_app()
        app.state.cache = None

        data = TestClient(app).get("/health").json()

        assert data["status"] == "unhealthy"
        assert data["checks"] is None


class TestTraceHeaders:
    def test_generates_request_id(self, client):
        response = client.get("/health")
        assert len(response.headers["X-Request-ID"]) == 32
        assert response.headers["X-Response-Time"].endswith("ms")

    def test_propagates_request_id(self, client):
        response = client.get("/health", headers={"X-Request-ID": "req-123"})
        assert response.headers["X-Request-ID"] == "req-123"


class TestStatsEndpoint:
    def test_stats(self, client, populated):
        response = client.get("/v1/cache/stats")
        assert response.status_code == 200
        data = response.json()
        assert data["tenant_id"] is None
        assert data["model_revision"] == "embed:fake-embed"
        assert data["stats"] == {"total_queries": 2, "total_hits": 4, "hit_rate": 0.5}
        assert data["store"]["query_count"] == 2
        assert data["store"]["result_count"] == 2
        assert data["store"]["avg_hit_count"] == 2.0

    def test_stats_for_tenant(self, client, populated):
        data = client.get("/v1/cache/stats", params={"tenant_id": "acme"}).json()
        assert data["tenant_id"] == "acme"
        assert data["stats"] == {"total_queries": 1, "total_hits": 1, "hit_rate": 0.0}

    def test_store_failure_is_503(self, client, service):
        service.similarity_store.aggregate_hits = AsyncMock(
            side_effect=StoreConnectionError("unreachable", operation="aggregate_hits")
        )

        response = client.get("/v1/cache/stats")

        assert response.status_code == 503
        detail = response.json()["detail"]
        assert detail["type"] == "StoreConnectionError"
        assert detail["operation"] == "aggregate_hits"

    def test_no_cache_configured_is_503(self):
        app = create_app()
        app.state.cache = None

        response = TestClient(app).get("/v1/cache/stats")

        assert response.status_code == 503


class TestHousekeepingEndpoints:
    def test_invalidate_then_sweep(self, client, populated):
        response = client.post("/v1/cache/invalidate", json={"model_revision": "embed:old"})
        assert response.status_code == 200
        assert response.json() == {"removed": 1}

        response = client.post("/v1/cache/sweep")
        assert response.json() == {"removed": 1}
        assert client.get("/v1/cache/stats").json()["store"]["query_count"] == 1

    def test_invalidate_requires_revision(self, client):
        response = client.post("/v1/cache/invalidate", json={"model_revision": ""})
        assert response.status_code == 422

    def test_evict_keeps_recent_entries(self, client, populated):
        response = client.post("/v1/cache/evict", json={"max_age_ms": 60_000})
        assert response.json() == {"removed": 0}

    def test_evict_rejects_non_positive_age(self, client):
        response = client.post("/v1/cache/evict", json={"max_age_ms": 0})
        assert response.status_code == 422

    def test_clear(self, client, populated):
        response = client.delete("/v1/cache")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"
        assert client.get("/v1/cache/stats").json()["stats"]["total_queries"] == 0


class TestPrometheusEndpoint:
    def test_metrics_exposed(self, client):
        client.get("/health")
        response = client.get("/prometheus/")
        assert response.status_code == 200
        assert "semcache_http_requests_total" in response.text


class TestBuildCache:
    @pytest.fixture
    def redis_client(self):
        client = MagicMock()
        client.register_script.return_value = AsyncMock()
        client.ping = AsyncMock(return_value=True)
        client.aclose = AsyncMock()
        return client

    @pytest.fixture
    def wired(self, monkeypatch, embedder, redis_client):
        monkeypatch.setattr(main, "get_settings", lambda: Settings(store_backend="redis"))
        monkeypatch.setattr(main, "create_embedding_provider", lambda settings: embedder)
        monkeypatch.setattr(main, "create_redis_client", lambda settings: redis_client)

    @pytest.mark.anyio
    async def test_redis_backend(self, wired, redis_client):
        cache = await main.build_cache()

        assert isinstance(cache.similarity_store, RedisSimilarityStore)
        assert cache.model_revision == "embed:fake-embed"
        redis_client.aclose.assert_not_awaited()

    @pytest.mark.anyio
    async def test_unreachable_redis_closes_client(self, wired, redis_client):
        redis_client.ping.side_effect = redis.ConnectionError("connection refused")

        with pytest.raises(StoreConnectionError):
            await main.build_cache()

        redis_client.aclose.assert_awaited_once()
