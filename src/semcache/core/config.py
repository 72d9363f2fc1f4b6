from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DAY_MS = 24 * 60 * 60 * 1000
HOUR_MS = 60 * 60 * 1000


class CacheSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="CACHE_", extra="ignore")
    similarity_threshold: float = Field(default=0.85, gt=0.0, le=1.0)
    default_ttl_ms: int = Field(default=7 * DAY_MS, gt=0)
    top_k_cached: int = Field(default=25, ge=1)
    top_k_returned: int = Field(default=10, ge=1)
    tenant_id: str | None = None
    # Remaining lifetime below which a background refresh is scheduled
    near_expiry_ms: int = 2 * HOUR_MS
    refresh_timeout_seconds: float = 30.0
    eviction_max_age_ms: int = 30 * DAY_MS


class EmbeddingSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="EMBEDDING_", extra="ignore")
    backend: Literal["sentence-transformers", "openai"] = "sentence-transformers"
    model: str = "all-MiniLM-L6-v2"
    reranker_model: str | None = None
    dimension: int | None = None


class RedisSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="REDIS_", extra="ignore")
    host: str = "localhost"
    port: int = 6379
    db: int = 0
    socket_timeout: float = 5.0
    key_prefix: str = "sc"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    semcache_env: str = "development"
    store_backend: Literal["memory", "redis"] = "memory"
    openai_api_key: str | None = None
    openai_base_url: str = "https://api.openai.com/v1"
    host: str = "0.0.0.0"
    port: int = 8000

    # Nested settings
    cache: CacheSettings = CacheSettings()
    embedding: EmbeddingSettings = EmbeddingSettings()
    redis: RedisSettings = RedisSettings()


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
