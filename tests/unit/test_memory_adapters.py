import random
from datetime import datetime, timedelta, timezone

import pytest

from feed_recall.adapters.memory import (
    CosineAnnIndex,
    EmbeddingCoOccurIndex,
    EmbeddingUserNeighborFinder,
    HistoryPreferenceService,
    InMemoryEmbeddingStore,
    InMemoryItemCatalog,
    InMemorySequenceStore,
    RetrievalInvertedIndex,
)
from feed_recall.config import HybridRetrievalConfig, InvertedIndexConfig
from feed_recall.retrieval.handlers import RetrievalContext, RetrievalHandler
from feed_recall.retrieval.pipeline import MultiChannelRetrievalPipeline
from feed_recall.types import (
    AttributePreference,
    DocScore,
    ItemListType,
    UserContext,
    UserInteraction,
)

NOW = datetime(2024, 6, 1, tzinfo=timezone.utc)


def _catalog() -> InMemoryItemCatalog:
    catalog = InMemoryItemCatalog(rng=random.Random(1))
    catalog.add(1, published_at=NOW - timedelta(hours=48), metadata={"feedId": 10, "feedTitle": "Tech", "category": "ai"})
    catalog.add(2, published_at=NOW, metadata={"feedId": 20, "feedTitle": "Food", "category": "ai"})
    catalog.add(3, published_at=NOW - timedelta(hours=1), metadata={"feedId": 10, "feedTitle": "Tech", "category": "web"})
    return catalog


def _embeddings() -> InMemoryEmbeddingStore:
    embeddings = InMemoryEmbeddingStore()
    embeddings.set_item_vector(1, [1.0, 0.0])
    embeddings.set_item_vector(2, [0.8, 0.6])
    embeddings.set_item_vector(3, [0.0, 1.0])
    return embeddings


def test_sequence_store_returns_newest_first() -> None:
    store = InMemorySequenceStore()
    for item_id in (1, 2, 3):
        store.record(5, UserInteraction(item_id=item_id))

    assert [i.item_id for i in store.recent_interactions(5, 2)] == [3, 2]
    assert store.recent_interactions(6, 2) == []
    assert store.user_ids() == [5]


def test_ann_index_applies_whitelisted_filters_only() -> None:
    ann = CosineAnnIndex(_embeddings(), _catalog())

    hits = ann.query([1.0, 0.0], 5)
    assert [h.id for h in hits] == [1, 2]
    assert hits[0].metadata["feedTitle"] == "Tech"

    assert [h.id for h in ann.query([1.0, 0.0], 5, {"feedId": 20, "diversityKey": "x"})] == [2]
    assert [h.id for h in ann.query([1.0, 1.0], 5, {"feedId": [10]})] == [1, 3]


def test_co_occurrence_excludes_seed() -> None:
    embeddings = _embeddings()
    index = EmbeddingCoOccurIndex(embeddings, CosineAnnIndex(embeddings, _catalog()))

    assert [h.id for h in index.top_related(1, 5)] == [2]
    assert index.top_related(99, 5) == []


def test_catalog_lists_latest_and_random() -> None:
    catalog = _catalog()
    context = UserContext(user_id=1, request_time=NOW)

    latest = catalog.ls(context, ItemListType.LATEST, 2)
    assert [s.id for s in latest] == [2, 3]
    assert latest[0].score == pytest.approx(1.0)

    picked = catalog.ls(context, ItemListType.RANDOM, 2)
    assert len(picked) == 2
    assert {s.id for s in picked} <= {1, 2, 3}
    assert catalog.published_at([1, 99]) == {1: NOW - timedelta(hours=48)}


def test_preferences_list_feeds_then_categories() -> None:
    sequences = InMemorySequenceStore()
    for item_id in (1, 3, 2):
        sequences.record(7, UserInteraction(item_id=item_id))

    preferences = HistoryPreferenceService(sequences, _catalog()).top_attributes(7, 3)

    assert [(p.attribute_key, p.attribute_value, p.weight) for p in preferences] == [
        ("feedTitle", "Tech", 2.0),
        ("feedTitle", "Food", 1.0),
        ("category", "ai", 2.0),
    ]


def test_neighbors_need_positive_similarity_and_history() -> None:
    embeddings = InMemoryEmbeddingStore()
    embeddings.set_user_vector(1, [1.0, 0.0])
    embeddings.set_user_vector(2, [1.0, 1.0])
    embeddings.set_user_vector(3, [-1.0, 0.0])
    embeddings.set_user_vector(4, [1.0, 0.0])
    sequences = InMemorySequenceStore()
    sequences.record(2, UserInteraction(item_id=50, weight=2.0))
    sequences.record(3, UserInteraction(item_id=51))

    neighbors = EmbeddingUserNeighborFinder(embeddings, sequences).top_neighbors(1, 5)

    assert [n.user_id for n in neighbors] == [2]
    similarity = neighbors[0].similarity
    assert similarity == pytest.approx(2 ** -0.5)
    assert neighbors[0].top_items[0].score == pytest.approx(similarity * 2.0)


class _TitleHandler(RetrievalHandler):
    name = "lexical"

    def __init__(self) -> None:
        self.contexts: list[RetrievalContext] = []

    def supports(self, context: RetrievalContext) -> bool:
        return True

    def handle(self, context: RetrievalContext) -> list[DocScore]:
        self.contexts.append(context)
        if context.query == "Tech":
            return [DocScore(1, 2.0, published_at=NOW), DocScore(2, 1.0, published_at=NOW)]
        return [DocScore(2, 1.0)]


def test_inverted_index_scores_each_attribute() -> None:
    handler = _TitleHandler()
    pipeline = MultiChannelRetrievalPipeline(
        HybridRetrievalConfig(freshness_weight=0.0), clock=lambda: NOW
    ).add_handler(handler, 1.0)
    index = RetrievalInvertedIndex(pipeline, InvertedIndexConfig(), clock=lambda: NOW)

    hits = index.query(
        [AttributePreference("feedTitle", "Tech", 1.0), AttributePreference("category", "ai", 0.0)],
        4,
    )

    assert [c.top_k for c in handler.contexts] == [3, 3]
    assert all(c.include_global for c in handler.contexts)
    assert [h.id for h in hits] == [1, 2]
    assert all(0.5 <= h.score <= 1.0 for h in hits)
    assert index.query([], 4) == []
