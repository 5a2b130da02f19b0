"""
Embedding generators for the knowledge base

Three providers, chosen explicitly by configuration:
- ``openai``: OpenAI embeddings API (any OpenAI-compatible endpoint)
- ``local``: sentence-transformers model loaded in process
- ``hash``: deterministic token hashing, for development and tests
"""

import asyncio
import hashlib
import logging
import re
from typing import Optional, Protocol

import numpy as np
from openai import AsyncOpenAI, OpenAIError

from .config import KNOWN_EMBEDDING_DIMS, KnowledgeBaseConfig
from .errors import ConfigurationError, KnowledgeBaseError

logger = logging.getLogger(__name__)


class EmbeddingGenerator(Protocol):
    dimension: int

    async def initialize(self) -> None: ...

    async def embed(self, text: str) -> list[float]: ...


class OpenAIEmbedder:
    """Embeddings from the OpenAI API"""

    def __init__(
        self,
        model: str = "text-embedding-3-small",
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        dimension: int = 1536,
    ):
        self.model = model
        self.dimension = dimension
        try:
            self._client = AsyncOpenAI(api_key=api_key, base_url=base_url)
        except OpenAIError as e:
            raise ConfigurationError(
                "OpenAI embeddings need knowledge_base.embedding_api_key "
                "or OPENAI_API_KEY"
            ) from e

    async def initialize(self) -> None:
        return None

    async def embed(self, text: str) -> list[float]:
        params = {"model": self.model, "input": text}
        # Only the v3 models accept an output size
        if self.model.startswith("text-embedding-3"):
            params["dimensions"] = self.dimension

        response = await self._client.embeddings.create(**params)
        if not response.data:
            raise KnowledgeBaseError("Embedding API returned no data")

        embedding = list(response.data[0].embedding)
        if len(embedding) != self.dimension:
            raise KnowledgeBaseError(
                f"Embedding API returned {len(embedding)} dimensions, "
                f"expected {self.dimension}"
            )
        return embedding


class SentenceTransformerEmbedder:
    """
    Local embeddings using sentence-transformers

    Requires the ``local`` extra. The model is loaded on first use and
    encoding runs in a worker thread.
    """

    def __init__(self, model_name: str = "all-MiniLM-L6-v2", dimension: int = 384):
        self.model_name = model_name
        self.dimension = dimension
        self._model = None

    async def initialize(self) -> None:
        if self._model is not None:
            return

        try:
            from sentence_transformers import SentenceTransformer
        except ImportError as e:
            raise ConfigurationError(
                "The 'local' embedding provider needs sentence-transformers. "
                "Install with: pip install 'kubetriage[local]'"
            ) from e

        logger.info(f"Loading local embedding model: {self.model_name}")
        self._model = await asyncio.to_thread(SentenceTransformer, self.model_name)
        self.dimension = self._model.get_sentence_embedding_dimension()
        logger.info(f"Local embeddings initialized, dimension: {self.dimension}")

    async def embed(self, text: str) -> list[float]:
        await self.initialize()
        vector = await asyncio.to_thread(self._model.encode, [text])
        return vector[0].tolist()


class HashEmbedder:
    """
    Deterministic bag-of-words embedding

    Each lowercased token is hashed into one of ``dimension`` buckets with
    a hash-derived sign, then the vector is L2 normalized. Texts sharing
    tokens get a positive cosine similarity, identical texts get 1.0.
    """

    _TOKEN_RE = re.compile(r"[a-z0-9]+")

    def __init__(self, dimension: int = 1536):
        self.dimension = dimension

    async def initialize(self) -> None:
        return None

    def _embed_sync(self, text: str) -> list[float]:
        vector = np.zeros(self.dimension, dtype=np.float64)
        for token in self._TOKEN_RE.findall(text.lower()):
            digest = hashlib.sha256(token.encode()).digest()
            index = int.from_bytes(digest[:8], "big") % self.dimension
            sign = 1.0 if digest[8] & 1 else -1.0
            vector[index] += sign

        norm = np.linalg.norm(vector)
        if norm > 0:
            vector /= norm
        return vector.tolist()

    async def embed(self, text: str) -> list[float]:
        return self._embed_sync(text)


def create_embedder(config: KnowledgeBaseConfig) -> EmbeddingGenerator:
    """Build the embedding generator named by the knowledge base config"""
    if config.embedding_provider == "openai":
        return OpenAIEmbedder(
            model=config.embedding_model,
            api_key=config.embedding_api_key,
            base_url=config.embedding_base_url,
            dimension=config.embedding_dims,
        )
    if config.embedding_provider == "local":
        return SentenceTransformerEmbedder(
            model_name=config.embedding_model,
            dimension=KNOWN_EMBEDDING_DIMS.get(
                config.embedding_model, config.embedding_dims
            ),
        )
    return HashEmbedder(dimension=config.embedding_dims)
