"""Retrieval channels feeding the multi-channel pipeline."""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass

from langchain_core.embeddings import Embeddings

from feed_recall.obs.tracing import Timer
from feed_recall.retrieval.document_store import InMemoryDocumentStore
from feed_recall.types import DocScore

logger = logging.getLogger(__name__)

MAX_TOP_K = 1000
MAX_QUERY_LENGTH = 500

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F]")


@dataclass(slots=True, frozen=True)
class RetrievalContext:
    """One retrieval request.

    `feed_ids` is the user's subscription scope; it is ignored when
    `include_global` is set and treated as empty when missing otherwise.
    `vector_top_k` sizes the semantic channel and falls back to `top_k`.
    """

    query: str | None = None
    query_embedding: tuple[float, ...] | None = None
    user_id: int | None = None
    include_global: bool = False
    top_k: int = 100
    similarity_threshold: float = 0.3
    feed_ids: frozenset[int] | None = None
    vector_top_k: int | None = None

    def scope(self) -> frozenset[int] | None:
        if self.include_global:
            return None
        return self.feed_ids or frozenset()


def clean_query(query: str | None) -> str:
    """Trim, drop control characters and cap the length of a search query."""
    if not query:
        return ""
    return _CONTROL_CHARS.sub("", query.strip())[:MAX_QUERY_LENGTH].strip()


def validate_context(context: RetrievalContext) -> None:
    if context.top_k <= 0 or context.top_k > MAX_TOP_K:
        raise ValueError(f"top_k must be between 1 and {MAX_TOP_K}")
    if context.vector_top_k is not None and not 0 < context.vector_top_k <= MAX_TOP_K:
        raise ValueError(f"vector_top_k must be between 1 and {MAX_TOP_K}")
    if not context.include_global and context.user_id is None:
        raise ValueError("user_id is required when include_global is false")


class RetrievalHandler(ABC):
    name: str = "handler"

    @abstractmethod
    def supports(self, context: RetrievalContext) -> bool:
        """Whether this channel can serve the request."""

    @abstractmethod
    def handle(self, context: RetrievalContext) -> list[DocScore]:
        """Return scored documents; raises ValueError on an invalid context."""


class LexicalRetrievalHandler(RetrievalHandler):
    """Full-text channel backed by the document store's BM25F ranking."""

    name = "lexical"

    def __init__(self, store: InMemoryDocumentStore) -> None:
        self.store = store

    def supports(self, context: RetrievalContext) -> bool:
        return bool(clean_query(context.query))

    def handle(self, context: RetrievalContext) -> list[DocScore]:
        validate_context(context)
        query = clean_query(context.query)
        logger.debug(
            "Executing lexical retrieval: query=%r user_id=%s top_k=%d",
            query,
            context.user_id,
            context.top_k,
        )
        with Timer() as timer:
            results = self.store.lexical_search(query, context.top_k, feed_ids=context.scope())
        logger.info(
            "Lexical retrieval completed: %d results in %.2fms", len(results), timer.elapsed_ms
        )
        return results


class VectorRetrievalHandler(RetrievalHandler):
    """Semantic channel; embeds the query text when no embedding is supplied."""

    name = "vector"

    def __init__(self, store: InMemoryDocumentStore, embedder: Embeddings | None = None) -> None:
        self.store = store
        self.embedder = embedder

    def supports(self, context: RetrievalContext) -> bool:
        if context.query_embedding:
            return True
        return self.embedder is not None and bool(clean_query(context.query))

    def handle(self, context: RetrievalContext) -> list[DocScore]:
        validate_context(context)
        embedding = self._embedding(context)
        if not embedding:
            return []
        top_k = context.vector_top_k or context.top_k
        logger.debug(
            "Executing vector retrieval: user_id=%s top_k=%d threshold=%.2f",
            context.user_id,
            top_k,
            context.similarity_threshold,
        )
        with Timer() as timer:
            results = self.store.semantic_search(
                embedding,
                top_k,
                threshold=context.similarity_threshold,
                feed_ids=context.scope(),
            )
        logger.info(
            "Vector retrieval completed: %d results in %.2fms", len(results), timer.elapsed_ms
        )
        return results

    def _embedding(self, context: RetrievalContext) -> list[float]:
        if context.query_embedding:
            return list(context.query_embedding)
        if self.embedder is None:
            return []
        return self.embedder.embed_query(clean_query(context.query))
