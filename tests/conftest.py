"""Pytest configuration for semcache tests."""

import pytest

from semcache.core.config import CacheSettings
from semcache.domain.exceptions import EmbeddingError
from semcache.domain.models import CacheItem, ItemKind
from semcache.services.embedding import EmbeddingProvider
from semcache.services.semantic_cache import SemanticCacheService
from semcache.stores.memory import InMemorySimilarityStore

DIMENSION = 4


class FakeEmbeddingProvider(EmbeddingProvider):
    """Deterministic embeddings looked up by normalized text."""

    def __init__(self, vectors: dict[str, list[float]] | None = None, model: str = "fake-embed"):
        self.vectors = dict(vectors or {})
        self.calls: list[str] = []
        self._model = model

    @property
    def model_id(self) -> str:
        return self._model

    @property
    def dimension(self) -> int:
        return DIMENSION

    async def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        if text not in self.vectors:
            raise EmbeddingError(f"No vector registered for {text!r}", model=self._model)
        return list(self.vectors[text])


@pytest.fixture
def anyio_backend():
    """Configure anyio to use asyncio backend."""
    return "asyncio"


@pytest.fixture
def dimension():
    return DIMENSION


@pytest.fixture
def make_embedder():
    """Factory for fake providers with a given text-to-vector table."""
    return FakeEmbeddingProvider


@pytest.fixture
def embedder(make_embedder):
    return make_embedder()


@pytest.fixture
def memory_store(dimension):
    return InMemorySimilarityStore(dimension)


@pytest.fixture
def cache_config():
    return CacheSettings(similarity_threshold=0.85, top_k_cached=5, top_k_returned=3)


@pytest.fixture
def cache(memory_store, embedder, cache_config):
    return SemanticCacheService(memory_store, embedder, config=cache_config)


@pytest.fixture
def items():
    return [
        CacheItem(id="products/apple-iphone-15", kind=ItemKind.NODE, score=0.95),
        CacheItem(id="relations/compatible-with", kind=ItemKind.EDGE, score=0.79),
    ]
