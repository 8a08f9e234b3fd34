"""Composition root for the recall engine and its in-memory collaborators."""

from __future__ import annotations

import logging
import random
from collections.abc import Iterable
from dataclasses import dataclass
from math import sqrt

from feed_recall.adapters.memory import (
    CosineAnnIndex,
    EmbeddingCoOccurIndex,
    EmbeddingUserNeighborFinder,
    HistoryPreferenceService,
    InMemoryEmbeddingStore,
    InMemoryItemCatalog,
    InMemorySequenceStore,
    InMemorySubscriptionDirectory,
    RetrievalInvertedIndex,
)
from feed_recall.config import (
    CacheConfig,
    EngineConfig,
    FreshnessConfig,
    HybridRetrievalConfig,
    InvertedIndexConfig,
    PlannerConfig,
    StrategyConfig,
)
from feed_recall.recall.cache import CachedRecallStrategy, InMemoryRecallCache, RecallCache
from feed_recall.recall.context import DefaultUserContextFactory
from feed_recall.recall.engine import RecallEngine
from feed_recall.recall.fusion import RecallFusion
from feed_recall.recall.planner import RecallPlanner
from feed_recall.recall.registry import RecallStrategy, StrategyRegistry
from feed_recall.recall.spi import ItemFreshnessProvider, SequenceStore
from feed_recall.recall.strategies import build_default_strategies
from feed_recall.retrieval.document_store import ArticleDocument, InMemoryDocumentStore
from feed_recall.retrieval.embedder import HashingEmbedder
from feed_recall.retrieval.search import HybridSearchService
from feed_recall.types import StrategyId, UserInteraction

logger = logging.getLogger(__name__)

_STRATEGY_ORDER = {strategy_id: index for index, strategy_id in enumerate(StrategyId)}


def build_recall_engine(
    strategies: Iterable[RecallStrategy],
    *,
    sequence_store: SequenceStore | None = None,
    freshness_provider: ItemFreshnessProvider | None = None,
    strategy_config: StrategyConfig | None = None,
    planner_config: PlannerConfig | None = None,
    freshness_config: FreshnessConfig | None = None,
    engine_config: EngineConfig | None = None,
    cache: RecallCache | None = None,
    cache_config: CacheConfig | None = None,
) -> RecallEngine:
    """Register `strategies` in `StrategyId` order and assemble the engine.

    When a cache is given, strategies listed in `CacheConfig.cached_strategies`
    are wrapped so their results are served from it.
    """
    strategy_config = strategy_config or StrategyConfig()
    cache_config = cache_config or CacheConfig()
    ordered = sorted(strategies, key=lambda strategy: _STRATEGY_ORDER[strategy.strategy_id])

    registry = StrategyRegistry()
    for strategy in ordered:
        if cache is not None and strategy.strategy_id in cache_config.cached_strategies:
            strategy = CachedRecallStrategy(strategy, cache)
        registry.register(strategy)
    logger.info(
        "Registered recall strategies: %s",
        ", ".join(strategy_id.value for strategy_id in registry.available()),
    )

    return RecallEngine(
        registry=registry,
        planner=RecallPlanner(planner_config),
        fusion=RecallFusion(freshness_provider, freshness_config),
        context_factory=DefaultUserContextFactory(
            sequence_store,
            interaction_limit=strategy_config.context_interaction_limit,
        ),
        config=engine_config,
    )


@dataclass(slots=True)
class InMemoryRecallStack:
    """Every in-memory collaborator plus the engine and search service on top."""

    sequences: InMemorySequenceStore
    embeddings: InMemoryEmbeddingStore
    catalog: InMemoryItemCatalog
    subscriptions: InMemorySubscriptionDirectory
    documents: InMemoryDocumentStore
    embedder: HashingEmbedder
    search: HybridSearchService
    cache: InMemoryRecallCache
    engine: RecallEngine
    profile_window: int = 50

    def index_document(self, document: ArticleDocument) -> None:
        text = " ".join(part for part in document.fields().values() if part)
        embedding = self.embedder.embed_documents([text])[0]
        self.documents.upsert(document, embedding)
        self.embeddings.set_item_vector(document.doc_id, embedding)
        self.catalog.add(
            document.doc_id,
            published_at=document.published_at,
            metadata=document.metadata(),
        )

    def record_interaction(self, user_id: int, interaction: UserInteraction) -> None:
        """Append to the user's sequence and rebuild their embedding.

        The rebuild invalidates the user's cached recall results.
        """
        self.sequences.record(user_id, interaction)
        self.rebuild_user_vector(user_id)
        dropped = self.cache.invalidate_user(user_id)
        logger.debug("Invalidated %d cached recall entries for user %s", dropped, user_id)

    def rebuild_user_vector(self, user_id: int) -> None:
        """Weighted mean of the embeddings of the user's recent items."""
        total: list[float] = []
        for interaction in self.sequences.recent_interactions(user_id, self.profile_window):
            vector = self.embeddings.get_item_vector(interaction.item_id)
            if not vector:
                continue
            weight = interaction.weight if interaction.weight > 0 else 1.0
            if not total:
                total = [0.0] * len(vector)
            for index, value in enumerate(vector):
                total[index] += value * weight
        norm = sqrt(sum(value * value for value in total))
        if norm > 0:
            self.embeddings.set_user_vector(user_id, [value / norm for value in total])

    def close(self) -> None:
        self.engine.close()


def build_in_memory_stack(
    *,
    strategy_config: StrategyConfig | None = None,
    planner_config: PlannerConfig | None = None,
    freshness_config: FreshnessConfig | None = None,
    engine_config: EngineConfig | None = None,
    cache_config: CacheConfig | None = None,
    retrieval_config: HybridRetrievalConfig | None = None,
    inverted_index_config: InvertedIndexConfig | None = None,
    rng: random.Random | None = None,
) -> InMemoryRecallStack:
    strategy_config = strategy_config or StrategyConfig()
    cache_config = cache_config or CacheConfig()
    retrieval_config = retrieval_config or HybridRetrievalConfig()
    rng = rng or random.Random()

    sequences = InMemorySequenceStore()
    embeddings = InMemoryEmbeddingStore()
    catalog = InMemoryItemCatalog(half_life_hours=retrieval_config.half_life_hours, rng=rng)
    subscriptions = InMemorySubscriptionDirectory()
    documents = InMemoryDocumentStore()
    embedder = HashingEmbedder()
    search = HybridSearchService.in_memory(documents, subscriptions, embedder, retrieval_config)

    ann_index = CosineAnnIndex(embeddings, catalog)
    strategies = build_default_strategies(
        embedding_store=embeddings,
        ann_index=ann_index,
        co_occur_index=EmbeddingCoOccurIndex(embeddings, ann_index),
        sequence_store=sequences,
        preference_service=HistoryPreferenceService(
            sequences, catalog, lookback=strategy_config.context_interaction_limit
        ),
        inverted_index=RetrievalInvertedIndex(search.pipeline, inverted_index_config),
        neighbor_finder=EmbeddingUserNeighborFinder(embeddings, sequences, catalog),
        item_provider=catalog,
        config=strategy_config,
        rng=rng,
    )
    cache = InMemoryRecallCache(
        ttl_seconds=cache_config.ttl_seconds,
        max_entries=cache_config.max_entries,
    )
    engine = build_recall_engine(
        strategies,
        sequence_store=sequences,
        freshness_provider=catalog,
        strategy_config=strategy_config,
        planner_config=planner_config,
        freshness_config=freshness_config,
        engine_config=engine_config,
        cache=cache,
        cache_config=cache_config,
    )
    return InMemoryRecallStack(
        sequences=sequences,
        embeddings=embeddings,
        catalog=catalog,
        subscriptions=subscriptions,
        documents=documents,
        embedder=embedder,
        search=search,
        cache=cache,
        engine=engine,
    )
