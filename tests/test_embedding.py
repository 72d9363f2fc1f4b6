"""Tests for embedding providers."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from semcache.core.config import EmbeddingSettings, Settings
from semcache.domain.exceptions import EmbeddingError
from semcache.services.embedding import (
    OpenAIEmbeddingProvider,
    create_embedding_provider,
    get_model_revision,
)


def _response(*vectors_by_index):
    return SimpleNamespace(
        data=[SimpleNamespace(index=i, embedding=v) for i, v in vectors_by_index]
    )


class TestModelRevision:
    def test_embedding_only(self):
        assert get_model_revision("all-MiniLM-L6-v2") == "embed:all-MiniLM-L6-v2"

    def test_with_reranker(self):
        assert get_model_revision("e5", "bge-reranker") == "embed:e5|rerank:bge-reranker"


class TestOpenAIEmbeddingProvider:
    @pytest.fixture
    def client(self):
        client = MagicMock()
        client.embeddings.create = AsyncMock()
        return client

    def test_dimension_from_known_model(self, client):
        provider = OpenAIEmbeddingProvider(client, model="text-embedding-3-large")
        assert provider.dimension == 3072
        assert provider.model_id == "text-embedding-3-large"

    def test_unknown_model_requires_dimension(self, client):
        with pytest.raises(ValueError):
            OpenAIEmbeddingProvider(client, model="custom-embedder")
        assert OpenAIEmbeddingProvider(client, model="custom-embedder", dimension=8).dimension == 8

    @pytest.mark.anyio
    async def test_embed(self, client):
        client.embeddings.create.return_value = _response((0, [0.1, 0.2]))
        provider = OpenAIEmbeddingProvider(client, model="custom", dimension=2)

        assert await provider.embed("hello") == [0.1, 0.2]
        client.embeddings.create.assert_awaited_once_with(
            model="custom", input="hello", encoding_format="float"
        )

    @pytest.mark.anyio
    async def test_embed_batch_preserves_input_order(self, client):
        client.embeddings.create.return_value = _response((1, [0.0, 1.0]), (0, [1.0, 0.0]))
        provider = OpenAIEmbeddingProvider(client, model="custom", dimension=2)

        assert await provider.embed_batch(["a", "b"]) == [[1.0, 0.0], [0.0, 1.0]]

    @pytest.mark.anyio
    async def test_empty_batch_skips_request(self, client):
        provider = OpenAIEmbeddingProvider(client, model="custom", dimension=2)

        assert await provider.embed_batch([]) == []
        client.embeddings.create.assert_not_awaited()

    @pytest.mark.anyio
    async def test_failure_wrapped(self, client):
        client.embeddings.create.side_effect = RuntimeError("rate limited")
        provider = OpenAIEmbeddingProvider(client, model="custom", dimension=2)

        with pytest.raises(EmbeddingError) as exc_info:
            await provider.embed("hello")

        assert exc_info.value.model == "custom"
        assert isinstance(exc_info.value.__cause__, RuntimeError)


class TestCreateEmbeddingProvider:
    def test_openai_requires_api_key(self):
        settings = Settings(
            openai_api_key=None,
            embedding=EmbeddingSettings(backend="openai", model="text-embedding-3-small"),
        )
        with pytest.raises(ValueError, match="OPENAI_API_KEY"):
            create_embedding_provider(settings)

    def test_openai_backend(self):
        settings = Settings(
            openai_api_key="test-key",
            embedding=EmbeddingSettings(backend="openai", model="text-embedding-3-small"),
        )
        provider = create_embedding_provider(settings)

        assert isinstance(provider, OpenAIEmbeddingProvider)
        assert provider.dimension == 1536
