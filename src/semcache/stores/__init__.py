"""Similarity store backends."""

from semcache.stores.base import SimilarityStore
from semcache.stores.memory import InMemorySimilarityStore
from semcache.stores.redis_store import RedisSimilarityStore

__all__ = ["InMemorySimilarityStore", "RedisSimilarityStore", "SimilarityStore"]
