"""Text embedding providers.

Heavy imports (sentence_transformers, openai) are deferred to avoid crashing
the application at import time if the packages are unavailable.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

from semcache.core.config import Settings, get_settings
from semcache.domain.exceptions import EmbeddingError

if TYPE_CHECKING:
    from openai import AsyncOpenAI

logger = logging.getLogger(__name__)

# Known output dimensions, used when the configuration does not pin one
EMBEDDING_MODELS: dict[str, int] = {
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
    "text-embedding-ada-002": 1536,
    "all-MiniLM-L6-v2": 384,
}


def get_model_revision(embedding_model: str, reranker_model: str | None = None) -> str:
    """Fingerprint of the models that produce cached results."""
    parts = [f"embed:{embedding_model}"]
    if reranker_model:
        parts.append(f"rerank:{reranker_model}")
    return "|".join(parts)


class EmbeddingProvider(ABC):
    """Base class for all embedding providers."""

    @property
    @abstractmethod
    def model_id(self) -> str:
        """Identifier of the embedding model."""
        ...

    @property
    @abstractmethod
    def dimension(self) -> int:
        """Length of every vector this provider returns."""
        ...

    @abstractmethod
    async def embed(self, text: str) -> list[float]: ...

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        return [await self.embed(text) for text in texts]


class SentenceTransformerEmbeddingProvider(EmbeddingProvider):
    """Local sentence-transformers model; encoding runs in a worker thread."""

    def __init__(self, model_name: str = "all-MiniLM-L6-v2"):
        from sentence_transformers import SentenceTransformer

        self._model_name = model_name
        self._model = SentenceTransformer(model_name)

    @property
    def model_id(self) -> str:
        return self._model_name

    @property
    def dimension(self) -> int:
        return self._model.get_sentence_embedding_dimension()

    def _encode(self, texts: str | list[str]):
        return self._model.encode(texts, normalize_embeddings=True, convert_to_numpy=True)

    async def embed(self, text: str) -> list[float]:
        emb = await asyncio.to_thread(self._encode, text)
        return emb.tolist()

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        emb = await asyncio.to_thread(self._encode, texts)
        return emb.tolist()


class OpenAIEmbeddingProvider(EmbeddingProvider):
    """Remote embeddings through the OpenAI embeddings endpoint."""

    def __init__(
        self,
        client: AsyncOpenAI,
        model: str = "text-embedding-3-small",
        dimension: int | None = None,
    ) -> None:
        self._client = client
        self._model = model
        resolved = dimension or EMBEDDING_MODELS.get(model)
        if resolved is None:
            raise ValueError(f"Unknown dimension for embedding model {model!r}")
        self._dimension = resolved

    @property
    def model_id(self) -> str:
        return self._model

    @property
    def dimension(self) -> int:
        return self._dimension

    async def _create(self, texts: str | list[str]) -> list[list[float]]:
        try:
            response = await self._client.embeddings.create(
                model=self._model,
                input=texts,
                encoding_format="float",
            )
        except Exception as e:
            logger.warning("Embedding request failed for model %s: %s", self._model, e)
            raise EmbeddingError(
                f"Embedding request failed: {e}", model=self._model
            ) from e
        # Preserve input order
        return [d.embedding for d in sorted(response.data, key=lambda d: d.index)]

    async def embed(self, text: str) -> list[float]:
        return (await self._create(text))[0]

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        return await self._create(texts)


def create_embedding_provider(settings: Settings | None = None) -> EmbeddingProvider:
    """Build the provider selected by EMBEDDING_BACKEND."""
    settings = settings or get_settings()
    embedding = settings.embedding

    if embedding.backend == "openai":
        from openai import AsyncOpenAI

        if not settings.openai_api_key:
            raise ValueError("OPENAI_API_KEY is not set")
        client = AsyncOpenAI(api_key=settings.openai_api_key, base_url=settings.openai_base_url)
        return OpenAIEmbeddingProvider(client, model=embedding.model, dimension=embedding.dimension)

    return SentenceTransformerEmbeddingProvider(embedding.model)
