"""
Tests for embedding generators and the concurrency limiter
"""

import asyncio

import numpy as np
import pytest

from kubetriage.concurrency import AsyncSemaphore
from kubetriage.config import KnowledgeBaseConfig
from kubetriage.errors import ConfigurationError
from kubetriage.embeddings import (
    HashEmbedder,
    OpenAIEmbedder,
    SentenceTransformerEmbedder,
    create_embedder,
)


class TestHashEmbedder:
    """Test the deterministic hashing embedder"""

    @pytest.mark.asyncio
    async def test_normalized(self, embedder):
        vector = await embedder.embed("KubePodCrashLooping critical OOMKilled")

        assert len(vector) == 64
        assert np.linalg.norm(vector) == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_deterministic(self):
        first = await HashEmbedder(32).embed("disk pressure on node-1")
        second = await HashEmbedder(32).embed("Disk pressure on NODE-1")

        assert first == second

    @pytest.mark.asyncio
    async def test_empty_text_is_zero_vector(self, embedder):
        assert await embedder.embed("") == [0.0] * 64


class TestCreateEmbedder:
    """Test embedder selection from configuration"""

    def test_hash(self):
        config = KnowledgeBaseConfig(embedding_provider="hash", embedding_dims=128)

        embedder = create_embedder(config)

        assert isinstance(embedder, HashEmbedder)
        assert embedder.dimension == 128

    def test_openai(self):
        config = KnowledgeBaseConfig(embedding_provider="openai", embedding_api_key="sk-test")

        assert isinstance(create_embedder(config), OpenAIEmbedder)

    def test_openai_without_key(self, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        config = KnowledgeBaseConfig(embedding_provider="openai", embedding_api_key=None)

        with pytest.raises(ConfigurationError, match="embedding_api_key"):
            create_embedder(config)

    def test_local(self):
        config = KnowledgeBaseConfig(
            embedding_provider="local",
            embedding_model="all-MiniLM-L6-v2",
            embedding_dims=384,
        )

        embedder = create_embedder(config)

        assert isinstance(embedder, SentenceTransformerEmbedder)
        assert embedder.dimension == 384


class TestAsyncSemaphore:
    """Test the concurrency limiter"""

    def test_negative_capacity_rejected(self):
        with pytest.raises(ValueError):
            AsyncSemaphore(-1)

    @pytest.mark.asyncio
    async def test_unbounded(self):
        semaphore = AsyncSemaphore(0, name="unbounded")

        async with semaphore.acquire():
            async with semaphore.acquire():
                assert semaphore.get_stats().in_use == 2
                assert not semaphore.locked()

    @pytest.mark.asyncio
    async def test_bounded_timeout(self):
        semaphore = AsyncSemaphore(1, name="single")

        async with semaphore.acquire():
            assert semaphore.locked()
            with pytest.raises(asyncio.TimeoutError):
                async with semaphore.acquire(timeout=0.01):
                    pass

        stats = semaphore.get_stats()
        assert stats.total_acquisitions == 1
        assert stats.total_timeouts == 1
        assert stats.in_use == 0
