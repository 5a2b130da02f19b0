"""
Knowledge base of validated alert cases

``create_knowledge_base`` builds the configured backend, or returns None
when the knowledge base is disabled.
"""

import logging
from typing import Optional

from ..config import KnowledgeBaseConfig
from ..embeddings import EmbeddingGenerator, create_embedder
from .base import CaseStore, KnowledgeBase, similarity_block
from .local import LocalCaseStore, cosine_similarity

logger = logging.getLogger(__name__)


async def create_knowledge_base(
    config: KnowledgeBaseConfig,
    embedder: Optional[EmbeddingGenerator] = None,
) -> Optional[KnowledgeBase]:
    """
    Build the knowledge base described by ``config``

    Raises:
        ConfigurationError: Embedding and storage dimensions differ, or the
            embedding provider has no credentials
        KnowledgeBaseError: The backend cannot be reached or initialized
    """
    if not config.enabled:
        logger.info("Knowledge base disabled")
        return None

    if config.backend != "local" and not config.database_url:
        logger.warning("Knowledge base enabled but no database_url set, disabling")
        return None

    embedder = embedder or create_embedder(config)

    if config.backend == "local":
        store: CaseStore = LocalCaseStore(config.local_path, config.embedding_dims)
    else:
        from .pgvector import PgVectorCaseStore

        pg_store = PgVectorCaseStore(
            config.database_url,
            dimension=config.embedding_dims,
            min_connections=config.pool_min_connections,
            max_connections=config.pool_max_connections,
        )
        await pg_store.ensure_schema()
        store = pg_store

    return await KnowledgeBase.create(
        store,
        embedder,
        similarity_threshold=config.similarity_threshold,
        max_results=config.max_results,
    )


__all__ = [
    "CaseStore",
    "KnowledgeBase",
    "LocalCaseStore",
    "cosine_similarity",
    "create_knowledge_base",
    "similarity_block",
]
