"""
File-backed case store for development and tests

Cases live in memory and are rewritten to one JSON file after each
upsert. Similarity is cosine, computed with numpy.
"""

import asyncio
import json
import logging
from collections import Counter
from pathlib import Path
from typing import Any, Optional, Union

import numpy as np

from ..errors import KnowledgeBaseError
from ..models import KnowledgeCase, SimilarCase

logger = logging.getLogger(__name__)


def cosine_similarity(a: list[float], b: list[float]) -> float:
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    norm = np.linalg.norm(va) * np.linalg.norm(vb)
    if norm == 0:
        return 0.0
    return float(np.dot(va, vb) / norm)


class LocalCaseStore:
    """
    Local knowledge case store

    Args:
        path: JSON file, or None to keep cases in memory only
        dimension: Embedding width accepted by this store
    """

    def __init__(self, path: Optional[Union[str, Path]] = None, dimension: int = 1536):
        self.path = Path(path) if path else None
        self.dimension = dimension
        self._cases: dict[str, KnowledgeCase] = {}
        self._lock = asyncio.Lock()
        self._load()

    def _load(self) -> None:
        if self.path is None or not self.path.exists():
            return
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise KnowledgeBaseError(f"Cannot read knowledge file {self.path}: {e}") from e

        for raw in data.get("cases", []):
            case = KnowledgeCase.model_validate(raw)
            self._cases[case.id] = case
        logger.info(f"Loaded {len(self._cases)} knowledge cases from {self.path}")

    def _save(self) -> None:
        if self.path is None:
            return
        data = {"cases": [c.model_dump(mode="json") for c in self._cases.values()]}
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False)
        tmp_path.replace(self.path)

    async def upsert(self, case: KnowledgeCase) -> None:
        if case.embedding is None or len(case.embedding) != self.dimension:
            raise KnowledgeBaseError(
                f"Case {case.id} embedding does not have {self.dimension} dimensions"
            )

        async with self._lock:
            existing = self._cases.get(case.id)
            if existing is not None:
                # Same columns the pgvector upsert updates
                case = existing.model_copy(
                    update={
                        "category": case.category,
                        "analysis": case.analysis,
                        "debug_info": case.debug_info,
                        "validated": case.validated,
                        "embedding": case.embedding,
                        "updated_at": case.updated_at,
                    }
                )
            self._cases[case.id] = case
            await asyncio.to_thread(self._save)

    async def search(
        self, embedding: list[float], threshold: float, limit: int
    ) -> list[SimilarCase]:
        async with self._lock:
            candidates = [c for c in self._cases.values() if c.validated and c.embedding]

        scored = []
        for case in candidates:
            similarity = cosine_similarity(embedding, case.embedding)
            if similarity >= threshold:
                scored.append(SimilarCase(case=case, similarity=similarity))

        scored.sort(key=lambda s: s.similarity, reverse=True)
        return scored[:limit]

    async def stats(self) -> dict[str, Any]:
        async with self._lock:
            validated = [c for c in self._cases.values() if c.validated]

        latest = max((c.created_at for c in validated), default=None)
        return {
            "total_cases": len(validated),
            "by_category": dict(Counter(c.category for c in validated)),
            "latest_case": latest.isoformat() if latest else None,
        }

    async def close(self) -> None:
        return None

    def __len__(self) -> int:
        return len(self._cases)
