"""Scoped full-text + semantic article search."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from langchain_core.embeddings import Embeddings

from feed_recall.config import HybridRetrievalConfig
from feed_recall.recall.spi import SubscriptionDirectory
from feed_recall.retrieval.document_store import InMemoryDocumentStore
from feed_recall.retrieval.handlers import (
    MAX_TOP_K,
    LexicalRetrievalHandler,
    RetrievalContext,
    VectorRetrievalHandler,
    clean_query,
)
from feed_recall.retrieval.pipeline import MultiChannelRetrievalPipeline
from feed_recall.types import DocScore

logger = logging.getLogger(__name__)


class HybridSearchService:
    """Search over the user's subscribed feeds (or globally).

    Blank queries and users without active subscriptions (when the search is
    not global) return no results without touching the index.
    """

    def __init__(
        self,
        pipeline: MultiChannelRetrievalPipeline,
        subscriptions: SubscriptionDirectory,
        config: HybridRetrievalConfig | None = None,
    ) -> None:
        self.pipeline = pipeline
        self.subscriptions = subscriptions
        self.config = config or pipeline.config

    @classmethod
    def in_memory(
        cls,
        store: InMemoryDocumentStore,
        subscriptions: SubscriptionDirectory,
        embedder: Embeddings | None = None,
        config: HybridRetrievalConfig | None = None,
    ) -> "HybridSearchService":
        """Lexical + vector channels over one in-memory document store."""
        config = config or HybridRetrievalConfig()
        pipeline = (
            MultiChannelRetrievalPipeline(config)
            .add_handler(LexicalRetrievalHandler(store), config.lexical_weight)
            .add_handler(VectorRetrievalHandler(store, embedder), config.vector_weight)
        )
        return cls(pipeline, subscriptions, config)

    def search(
        self,
        user_id: int | None,
        query: str,
        *,
        include_global: bool = False,
        size: int = 0,
        query_embedding: Sequence[float] | None = None,
    ) -> list[DocScore]:
        cleaned = clean_query(query)
        if not cleaned:
            return []

        feed_ids: frozenset[int] | None = None
        if not include_global:
            if user_id is None:
                raise ValueError("user_id is required when include_global is false")
            feed_ids = frozenset(self.subscriptions.active_feed_ids(user_id))
            if not feed_ids:
                logger.debug("User %s has no active subscriptions; skipping search", user_id)
                return []

        limit = size if size > 0 else self.config.fusion_top_k
        context = RetrievalContext(
            query=cleaned,
            query_embedding=tuple(query_embedding) if query_embedding else None,
            user_id=user_id,
            include_global=include_global,
            top_k=min(MAX_TOP_K, max(self.config.lexical_top_k, limit)),
            vector_top_k=min(MAX_TOP_K, max(self.config.vector_top_k, limit)),
            similarity_threshold=self.config.similarity_threshold,
            feed_ids=feed_ids,
        )
        logger.debug(
            "Hybrid search start: user_id=%s query=%r include_global=%s",
            user_id,
            cleaned,
            include_global,
        )
        results = self.pipeline.execute(context)[:limit]
        logger.debug("Hybrid search complete: %d results", len(results))
        return results

    def search_ids(
        self,
        user_id: int | None,
        query: str,
        *,
        include_global: bool = False,
        size: int = 0,
    ) -> list[int]:
        return [
            hit.doc_id
            for hit in self.search(user_id, query, include_global=include_global, size=size)
        ]

    def search_page(
        self,
        user_id: int | None,
        query: str,
        include_global: bool,
        page: int,
        size: int,
    ) -> list[int]:
        """Zero-based page of result ids."""
        if page < 0 or size <= 0:
            return []
        ids = self.search_ids(
            user_id, query, include_global=include_global, size=(page + 1) * size
        )
        return ids[page * size : (page + 1) * size]
