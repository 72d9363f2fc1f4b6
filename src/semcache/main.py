"""
semcache: semantic result cache for hybrid retrieval.

Operational entry point. The cache itself is used as a library
(SemanticCacheService); this app exposes health, statistics and
housekeeping for a configured instance, plus Prometheus metrics.
"""

import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI
from prometheus_client import make_asgi_app

from semcache.api.routes.cache import router as cache_router
from semcache.api.routes.health import VERSION
from semcache.api.routes.health import router as health_router
from semcache.core.config import get_settings
from semcache.core.logging_config import configure_logging
from semcache.core.redis import create_redis_client
from semcache.middleware.trace import TraceMiddleware
from semcache.services.embedding import create_embedding_provider
from semcache.services.semantic_cache import SemanticCacheService
from semcache.stores.base import SimilarityStore
from semcache.stores.memory import InMemorySimilarityStore
from semcache.stores.redis_store import RedisSimilarityStore

# Configure logging with trace ID injection before anything else
configure_logging()

logger = logging.getLogger(__name__)


async def build_cache() -> SemanticCacheService:
    """Wire store, embedding provider and engine from settings."""
    settings = get_settings()
    embedding_service = create_embedding_provider(settings)

    store: SimilarityStore
    if settings.store_backend == "redis":
        store = RedisSimilarityStore(
            create_redis_client(settings.redis),
            dimension=embedding_service.dimension,
            key_prefix=settings.redis.key_prefix,
        )
        try:
            await store.ping()
        except Exception:
            await store.aclose()
            raise
    else:
        store = InMemorySimilarityStore(embedding_service.dimension)

    return SemanticCacheService(
        store,
        embedding_service,
        config=settings.cache,
        reranker_model=settings.embedding.reranker_model,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup and shutdown."""
    app.state.start_time = time.time()

    if getattr(app.state, "cache", None) is None:
        try:
            app.state.cache = await build_cache()
            logger.info(
                "Semantic cache ready (store=%s, revision=%s)",
                type(app.state.cache.similarity_store).__name__,
                app.state.cache.model_revision,
            )
        except Exception as e:
            logger.warning("Failed to initialize semantic cache: %s", e)
            app.state.cache = None

    logger.info("semcache started (version %s)", VERSION)
    yield

    cache = getattr(app.state, "cache", None)
    if cache is not None:
        await cache.aclose()
        await cache.similarity_store.aclose()
    logger.info("semcache shutdown complete")


def create_app() -> FastAPI:
    app = FastAPI(
        title="semcache",
        description=(
            "Semantic result cache for hybrid vector and graph retrieval. "
            "Exposes health, hit statistics, model-revision invalidation "
            "and idle eviction for the configured cache."
        ),
        version=VERSION,
        openapi_tags=[
            {"name": "Cache", "description": "Statistics and housekeeping."},
            {"name": "Operations", "description": "Health checks and metrics."},
        ],
        lifespan=lifespan,
    )
    app.add_middleware(TraceMiddleware)

    app.include_router(cache_router)
    app.include_router(health_router)

    app.mount("/prometheus", make_asgi_app())
    return app


app = create_app()
