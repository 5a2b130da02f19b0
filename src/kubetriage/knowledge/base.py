"""
Knowledge base facade

Embeds text, then delegates storage and similarity search to a case
store backend. Threshold and result cap are fixed at construction.
"""

import logging
import uuid
from typing import Any, Protocol

from ..embeddings import EmbeddingGenerator
from ..errors import ConfigurationError, KnowledgeBaseError
from ..models import KnowledgeCase, SimilarCase, utcnow
from ..observability import get_metrics, set_attribute, trace_async

logger = logging.getLogger(__name__)


class CaseStore(Protocol):
    """Storage backend for knowledge cases"""

    dimension: int

    async def upsert(self, case: KnowledgeCase) -> None: ...

    async def search(
        self, embedding: list[float], threshold: float, limit: int
    ) -> list[SimilarCase]: ...

    async def stats(self) -> dict[str, Any]: ...

    async def close(self) -> None: ...


class KnowledgeBase:
    """
    Vector similarity memory of validated analyses

    Args:
        store: Case storage backend
        embedder: Embedding generator whose dimension matches the store
        similarity_threshold: Minimum similarity of returned cases
        max_results: Maximum number of cases returned per search
    """

    def __init__(
        self,
        store: CaseStore,
        embedder: EmbeddingGenerator,
        similarity_threshold: float = 0.75,
        max_results: int = 5,
    ):
        self._store = store
        self._embedder = embedder
        self._similarity_threshold = similarity_threshold
        self._max_results = max_results

    @property
    def similarity_threshold(self) -> float:
        return self._similarity_threshold

    @property
    def max_results(self) -> int:
        return self._max_results

    @classmethod
    async def create(
        cls,
        store: CaseStore,
        embedder: EmbeddingGenerator,
        similarity_threshold: float = 0.75,
        max_results: int = 5,
    ) -> "KnowledgeBase":
        """
        Build a knowledge base after checking dimension compatibility

        Raises:
            ConfigurationError: Embedder and store dimensions differ
        """
        await embedder.initialize()
        if embedder.dimension != store.dimension:
            raise ConfigurationError(
                f"Embedding dimension {embedder.dimension} does not match "
                f"knowledge base column dimension {store.dimension}"
            )
        logger.info(
            f"Knowledge base ready (threshold={similarity_threshold}, "
            f"max_results={max_results}, dimension={store.dimension})"
        )
        return cls(store, embedder, similarity_threshold, max_results)

    async def _embed(self, text: str) -> list[float]:
        try:
            embedding = await self._embedder.embed(text)
        except KnowledgeBaseError:
            raise
        except Exception as e:
            raise KnowledgeBaseError(f"Failed to generate embedding: {e}") from e
        if len(embedding) != self._store.dimension:
            raise KnowledgeBaseError(
                f"Embedding has {len(embedding)} dimensions, "
                f"expected {self._store.dimension}"
            )
        return embedding

    @trace_async("knowledge.store")
    async def store(self, case: KnowledgeCase) -> KnowledgeCase:
        """
        Insert or update a case by id

        Returns:
            The stored case, with id and embedding populated
        """
        embedding = await self._embed(case.search_text())
        stored = case.model_copy(
            update={
                "id": case.id or str(uuid.uuid4()),
                "embedding": embedding,
                "updated_at": utcnow(),
            }
        )

        metrics = get_metrics()
        try:
            await self._store.upsert(stored)
        except Exception as e:
            if metrics:
                metrics.record_knowledge_operation("store", "error")
            if isinstance(e, KnowledgeBaseError):
                raise
            raise KnowledgeBaseError(f"Failed to store case: {e}") from e

        if metrics:
            metrics.record_knowledge_operation("store", "success")
        logger.info(f"Stored case {stored.id} for {stored.alert_name} in knowledge base")
        return stored

    @trace_async("knowledge.find_similar")
    async def find_similar(self, search_text: str) -> list[SimilarCase]:
        """Validated cases at or above the threshold, most similar first"""
        embedding = await self._embed(search_text)

        metrics = get_metrics()
        try:
            results = await self._store.search(
                embedding, self._similarity_threshold, self._max_results
            )
        except Exception as e:
            if metrics:
                metrics.record_knowledge_operation("search", "error")
            if isinstance(e, KnowledgeBaseError):
                raise
            raise KnowledgeBaseError(f"Similarity search failed: {e}") from e

        results = sorted(
            (r for r in results if r.similarity >= self._similarity_threshold),
            key=lambda r: r.similarity,
            reverse=True,
        )[: self._max_results]

        set_attribute("knowledge.results", len(results))
        if metrics:
            metrics.record_knowledge_operation("search", "success")
            metrics.record_similar_cases(len(results))
        logger.info(f"Found {len(results)} similar cases in knowledge base")
        return results

    async def get_stats(self) -> dict[str, Any]:
        return await self._store.stats()

    async def close(self) -> None:
        await self._store.close()


def similarity_block(cases: list[SimilarCase], top: int = 3) -> str:
    """Diagnostics section describing the closest past cases"""
    if not cases:
        return ""

    lines = ["\n\n=== SIMILAR PAST CASES (from Knowledge Base) ===\n"]
    for i, similar in enumerate(cases[:top], start=1):
        case = similar.case
        analysis = case.analysis
        if len(analysis) > 150:
            analysis = analysis[:150] + "..."
        lines.append(
            f"\n{i}. [{similar.similarity * 100:.0f}% similar] "
            f"{case.alert_name} - Category: {case.category}\n"
        )
        lines.append(f"   Previous Analysis: {analysis}\n")
    lines.append("\nUse these similar cases to inform your analysis if patterns match.\n")
    return "".join(lines)
