"""
PostgreSQL + pgvector case store

psycopg2 is blocking, so every query runs in a worker thread with a
connection borrowed from a ThreadedConnectionPool.
"""

import asyncio
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Optional

import numpy as np
import psycopg2
from pgvector.psycopg2 import register_vector
from psycopg2 import pool
from psycopg2.extras import RealDictCursor

from ..errors import KnowledgeBaseError
from ..models import KnowledgeCase, SimilarCase

logger = logging.getLogger(__name__)

SCHEMA_PATH = Path(__file__).parent / "schema.sql"

UPSERT_SQL = """
    INSERT INTO alert_cases (
        id, alert_name, severity, category, summary, namespace,
        pod_name, container_name, analysis, debug_info, validated,
        embedding, created_at, updated_at
    ) VALUES (
        %(id)s, %(alert_name)s, %(severity)s, %(category)s, %(summary)s,
        %(namespace)s, %(pod_name)s, %(container_name)s, %(analysis)s,
        %(debug_info)s, %(validated)s, %(embedding)s, %(created_at)s,
        %(updated_at)s
    )
    ON CONFLICT (id) DO UPDATE SET
        category = EXCLUDED.category,
        analysis = EXCLUDED.analysis,
        debug_info = EXCLUDED.debug_info,
        validated = EXCLUDED.validated,
        embedding = EXCLUDED.embedding,
        updated_at = EXCLUDED.updated_at
"""

SEARCH_SQL = """
    SELECT id, alert_name, severity, category, summary, namespace,
           pod_name, container_name, analysis, debug_info, validated,
           created_at, updated_at,
           1 - (embedding <=> %(embedding)s) AS similarity
    FROM alert_cases
    WHERE validated = true
      AND 1 - (embedding <=> %(embedding)s) >= %(threshold)s
    ORDER BY embedding <=> %(embedding)s
    LIMIT %(limit)s
"""

COLUMN_DIMENSION_SQL = """
    SELECT atttypmod FROM pg_attribute
    WHERE attrelid = 'alert_cases'::regclass AND attname = 'embedding'
"""


class PgVectorCaseStore:
    """
    Knowledge case store on PostgreSQL with the pgvector extension

    Args:
        database_url: libpq connection string
        dimension: Expected width of the ``embedding`` column
        min_connections: Pool lower bound
        max_connections: Pool upper bound
    """

    def __init__(
        self,
        database_url: str,
        dimension: int = 1536,
        min_connections: int = 1,
        max_connections: int = 5,
    ):
        self.dimension = dimension
        try:
            self._pool = pool.ThreadedConnectionPool(
                minconn=min_connections, maxconn=max_connections, dsn=database_url
            )
        except psycopg2.Error as e:
            raise KnowledgeBaseError(f"Failed to connect to knowledge base: {e}") from e
        logger.info(
            f"Knowledge base pool initialized "
            f"(min={min_connections}, max={max_connections})"
        )

    @contextmanager
    def _connection(self, register: bool = True) -> Iterator[Any]:
        conn = self._pool.getconn()
        try:
            if register:
                register_vector(conn)
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            self._pool.putconn(conn)

    def _ensure_schema_sync(self) -> None:
        sql = SCHEMA_PATH.read_text(encoding="utf-8").replace(
            "{dimension}", str(self.dimension)
        )
        # The vector type must exist before register_vector can find it
        with self._connection(register=False) as conn:
            with conn.cursor() as cur:
                cur.execute(sql)

    async def ensure_schema(self) -> None:
        """Create the extension, table, indexes and trigger if missing"""
        try:
            await asyncio.to_thread(self._ensure_schema_sync)
        except psycopg2.Error as e:
            raise KnowledgeBaseError(f"Failed to apply knowledge base schema: {e}") from e

        column_dimension = await self.column_dimension()
        if column_dimension is not None and column_dimension != self.dimension:
            raise KnowledgeBaseError(
                f"alert_cases.embedding has {column_dimension} dimensions, "
                f"configured {self.dimension}"
            )

    def _column_dimension_sync(self) -> Optional[int]:
        with self._connection(register=False) as conn:
            with conn.cursor() as cur:
                cur.execute(COLUMN_DIMENSION_SQL)
                row = cur.fetchone()
        if row is None or row[0] is None or row[0] < 0:
            return None
        return int(row[0])

    async def column_dimension(self) -> Optional[int]:
        return await asyncio.to_thread(self._column_dimension_sync)

    def _upsert_sync(self, case: KnowledgeCase) -> None:
        params = case.model_dump()
        params["embedding"] = np.asarray(case.embedding, dtype=np.float32)
        with self._connection() as conn:
            with conn.cursor() as cur:
                cur.execute(UPSERT_SQL, params)

    async def upsert(self, case: KnowledgeCase) -> None:
        try:
            await asyncio.to_thread(self._upsert_sync, case)
        except psycopg2.Error as e:
            raise KnowledgeBaseError(f"Failed to store case {case.id}: {e}") from e

    def _search_sync(
        self, embedding: list[float], threshold: float, limit: int
    ) -> list[SimilarCase]:
        params = {
            "embedding": np.asarray(embedding, dtype=np.float32),
            "threshold": threshold,
            "limit": limit,
        }
        with self._connection() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(SEARCH_SQL, params)
                rows = cur.fetchall()

        results = []
        for row in rows:
            row = dict(row)
            similarity = float(row.pop("similarity"))
            results.append(
                SimilarCase(case=KnowledgeCase.model_validate(row), similarity=similarity)
            )
        return results

    async def search(
        self, embedding: list[float], threshold: float, limit: int
    ) -> list[SimilarCase]:
        try:
            return await asyncio.to_thread(self._search_sync, embedding, threshold, limit)
        except psycopg2.Error as e:
            raise KnowledgeBaseError(f"Similarity search failed: {e}") from e

    def _stats_sync(self) -> dict[str, Any]:
        with self._connection(register=False) as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT COUNT(*) FROM alert_cases WHERE validated = true")
                total = cur.fetchone()[0]
                cur.execute(
                    "SELECT category, COUNT(*) FROM alert_cases "
                    "WHERE validated = true GROUP BY category"
                )
                by_category = {category: count for category, count in cur.fetchall()}
                cur.execute("SELECT MAX(created_at) FROM alert_cases WHERE validated = true")
                latest = cur.fetchone()[0]

        return {
            "total_cases": total,
            "by_category": by_category,
            "latest_case": latest.isoformat() if latest else None,
        }

    async def stats(self) -> dict[str, Any]:
        try:
            return await asyncio.to_thread(self._stats_sync)
        except psycopg2.Error as e:
            raise KnowledgeBaseError(f"Failed to read knowledge base stats: {e}") from e

    async def close(self) -> None:
        self._pool.closeall()
        logger.info("Knowledge base pool closed")
