"""In-memory collaborators for the recall core.

These back the debug API and the tests. Each class satisfies one of the
protocols in `feed_recall.recall.spi`.
"""

from __future__ import annotations

import logging
import random
import threading
from collections import Counter, defaultdict
from collections.abc import Collection, Iterable, Mapping, Sequence
from datetime import datetime
from typing import Any, Callable

from feed_recall.config import InvertedIndexConfig
from feed_recall.freshness import freshness_score
from feed_recall.recall.score_mapper import AdaptiveScoreMapper, ScoreMappingMode
from feed_recall.retrieval.embedder import cosine_similarity
from feed_recall.retrieval.handlers import MAX_TOP_K, RetrievalContext
from feed_recall.retrieval.pipeline import MultiChannelRetrievalPipeline
from feed_recall.types import (
    AttributePreference,
    ItemListType,
    ScoredId,
    UserContext,
    UserInteraction,
    UserNeighbor,
    utcnow,
)

logger = logging.getLogger(__name__)

DEFAULT_FILTER_KEYS = ("feedId", "category")


class InMemorySequenceStore:
    """Per-user interaction log; newest entries are returned first."""

    def __init__(self) -> None:
        self._sequences: dict[int, list[UserInteraction]] = defaultdict(list)
        self._lock = threading.Lock()

    def record(self, user_id: int, interaction: UserInteraction) -> None:
        with self._lock:
            self._sequences[user_id].append(interaction)

    def recent_interactions(self, user_id: int, limit: int) -> list[UserInteraction]:
        if limit <= 0:
            return []
        with self._lock:
            sequence = list(self._sequences.get(user_id, ()))
        return list(reversed(sequence))[:limit]

    def user_ids(self) -> list[int]:
        with self._lock:
            return [user_id for user_id, items in self._sequences.items() if items]


class InMemoryEmbeddingStore:
    def __init__(self) -> None:
        self._users: dict[int, list[float]] = {}
        self._items: dict[int, list[float]] = {}

    def set_user_vector(self, user_id: int, vector: Sequence[float]) -> None:
        self._users[user_id] = list(vector)

    def set_item_vector(self, item_id: int, vector: Sequence[float]) -> None:
        self._items[item_id] = list(vector)

    def get_user_vector(self, user_id: int) -> list[float] | None:
        return self._users.get(user_id)

    def get_item_vector(self, item_id: int) -> list[float] | None:
        return self._items.get(item_id)

    def user_vectors(self) -> list[tuple[int, list[float]]]:
        return list(self._users.items())

    def item_vectors(self) -> list[tuple[int, list[float]]]:
        return list(self._items.items())


class InMemoryItemCatalog:
    """Item metadata and publish times; also lists latest/random items."""

    def __init__(self, *, half_life_hours: float = 48.0, rng: random.Random | None = None) -> None:
        self.half_life_hours = half_life_hours
        self._published: dict[int, datetime] = {}
        self._metadata: dict[int, dict[str, Any]] = {}
        self._rng = rng or random.Random()
        self._lock = threading.Lock()

    def add(
        self,
        item_id: int,
        *,
        published_at: datetime | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> None:
        with self._lock:
            if published_at is not None:
                self._published[item_id] = published_at
            self._metadata[item_id] = dict(metadata or {})

    def metadata(self, item_id: int) -> dict[str, Any]:
        with self._lock:
            return dict(self._metadata.get(item_id, {}))

    def published_at(self, item_ids: Collection[int]) -> dict[int, datetime]:
        with self._lock:
            return {
                item_id: self._published[item_id]
                for item_id in item_ids
                if item_id in self._published
            }

    def latest(self, k: int) -> list[int]:
        with self._lock:
            ordered = sorted(self._published.items(), key=lambda entry: entry[1], reverse=True)
        return [item_id for item_id, _ in ordered[: max(0, k)]]

    def ls(self, context: UserContext, list_type: ItemListType, k: int) -> list[ScoredId]:
        if k <= 0:
            return []
        if list_type is ItemListType.LATEST:
            with self._lock:
                published = dict(self._published)
            return [
                ScoredId(
                    id=item_id,
                    score=freshness_score(
                        published[item_id], context.request_time, self.half_life_hours
                    ),
                    metadata=self.metadata(item_id),
                )
                for item_id in self.latest(k)
            ]

        with self._lock:
            pool = sorted(self._metadata)
            picked = self._rng.sample(pool, min(k, len(pool)))
        return [ScoredId(id=item_id, score=1.0, metadata=self.metadata(item_id)) for item_id in picked]


class InMemorySubscriptionDirectory:
    def __init__(self) -> None:
        self._feeds: dict[int, dict[int, bool]] = defaultdict(dict)

    def subscribe(self, user_id: int, feed_id: int, *, active: bool = True) -> None:
        self._feeds[user_id][feed_id] = active

    def unsubscribe(self, user_id: int, feed_id: int) -> None:
        self._feeds[user_id].pop(feed_id, None)

    def active_feed_ids(self, user_id: int) -> list[int]:
        return [feed_id for feed_id, active in self._feeds.get(user_id, {}).items() if active]


class CosineAnnIndex:
    """Brute-force cosine "ANN" over item vectors.

    Only filter keys in `filter_keys` are applied; a filter value may be a
    scalar or a collection of accepted values.
    """

    def __init__(
        self,
        embeddings: InMemoryEmbeddingStore,
        catalog: InMemoryItemCatalog,
        *,
        filter_keys: Iterable[str] = DEFAULT_FILTER_KEYS,
    ) -> None:
        self.embeddings = embeddings
        self.catalog = catalog
        self.filter_keys = frozenset(filter_keys)

    def query(
        self, vector: Sequence[float], k: int, filters: Mapping[str, Any] | None = None
    ) -> list[ScoredId]:
        if k <= 0 or not vector:
            return []
        query = list(vector)
        active = {
            key: value
            for key, value in (filters or {}).items()
            if key in self.filter_keys and value is not None
        }
        hits: list[ScoredId] = []
        for item_id, item_vector in self.embeddings.item_vectors():
            metadata = self.catalog.metadata(item_id)
            if not _metadata_match(metadata, active):
                continue
            score = cosine_similarity(query, item_vector)
            if score > 0:
                hits.append(ScoredId(id=item_id, score=score, metadata=metadata))
        hits.sort(key=lambda hit: hit.score, reverse=True)
        return hits[:k]


class EmbeddingCoOccurIndex:
    """Item-to-item association through embedding similarity."""

    def __init__(
        self,
        embeddings: InMemoryEmbeddingStore,
        ann_index: CosineAnnIndex,
        *,
        threshold: float = 0.0,
    ) -> None:
        self.embeddings = embeddings
        self.ann_index = ann_index
        self.threshold = threshold

    def top_related(self, item_id: int, k: int) -> list[ScoredId]:
        if k <= 0:
            return []
        vector = self.embeddings.get_item_vector(item_id)
        if not vector:
            return []
        related = [
            hit
            for hit in self.ann_index.query(vector, k + 1)
            if hit.id != item_id and hit.score > self.threshold
        ]
        return related[:k]


class RetrievalInvertedIndex:
    """Attribute lookup through the hybrid retrieval pipeline.

    Each preferred attribute value is searched globally. A hit scores
    `freshness * wa + score * map(max(weight, 0.1)) * (1 - wa)`, where `wa` is
    the freshness weight for the attribute key. Scores are summed per item and
    the final scores pass through the ranking mapper.
    """

    def __init__(
        self,
        pipeline: MultiChannelRetrievalPipeline,
        config: InvertedIndexConfig | None = None,
        *,
        mapper: AdaptiveScoreMapper | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.pipeline = pipeline
        self.config = config or InvertedIndexConfig()
        self.mapper = mapper or AdaptiveScoreMapper(ScoreMappingMode.RANKING)
        self._clock = clock

    def query(self, attributes: Sequence[AttributePreference], k: int) -> list[ScoredId]:
        if k <= 0 or not attributes:
            return []
        per_attribute = max(1, int(k / len(attributes) * self.config.oversample))
        per_attribute = min(per_attribute, MAX_TOP_K)
        retrieval = self.pipeline.config
        now = self._clock()
        logger.debug(
            "Inverted index query: %d attributes, top_k=%d per attribute",
            len(attributes),
            per_attribute,
        )

        scores: dict[int, float] = {}
        metadata: dict[int, Mapping[str, Any]] = {}
        for attribute in attributes:
            context = RetrievalContext(
                query=attribute.attribute_value,
                include_global=True,
                top_k=per_attribute,
                similarity_threshold=retrieval.similarity_threshold,
            )
            freshness_weight = self.config.freshness_weight_for(attribute.attribute_key)
            preference = self.mapper.map(max(attribute.weight, 0.1))
            for hit in self.pipeline.execute(context):
                if hit.published_at is None:
                    freshness = retrieval.default_freshness
                else:
                    freshness = freshness_score(hit.published_at, now, retrieval.half_life_hours)
                score = freshness * freshness_weight + hit.score * preference * (
                    1.0 - freshness_weight
                )
                scores[hit.doc_id] = scores.get(hit.doc_id, 0.0) + score
                metadata.setdefault(hit.doc_id, hit.metadata)

        ranked = sorted(scores.items(), key=lambda entry: entry[1], reverse=True)[:k]
        return [
            ScoredId(id=item_id, score=self.mapper.map(score), metadata=metadata[item_id])
            for item_id, score in ranked
        ]


class HistoryPreferenceService:
    """Preferences from the feeds and categories of recently read items.

    Feed preferences (key `feedTitle`) come first, then categories, each by
    descending count.
    """

    def __init__(
        self,
        sequence_store: InMemorySequenceStore,
        catalog: InMemoryItemCatalog,
        *,
        lookback: int = 150,
    ) -> None:
        self.sequence_store = sequence_store
        self.catalog = catalog
        self.lookback = lookback

    def top_attributes(self, user_id: int, limit: int) -> list[AttributePreference]:
        if limit <= 0:
            return []
        feeds: Counter[str] = Counter()
        categories: Counter[str] = Counter()
        for interaction in self.sequence_store.recent_interactions(user_id, self.lookback):
            metadata = self.catalog.metadata(interaction.item_id)
            feed = metadata.get("feedTitle")
            if feed:
                feeds[str(feed)] += 1
            category = metadata.get("category")
            if category:
                categories[str(category)] += 1

        preferences = [
            AttributePreference("feedTitle", value, float(count))
            for value, count in feeds.most_common()
        ]
        preferences.extend(
            AttributePreference("category", value, float(count))
            for value, count in categories.most_common()
        )
        return preferences[:limit]


class EmbeddingUserNeighborFinder:
    """Neighbours by cosine similarity of user vectors.

    Only users with positive similarity and a non-empty history qualify.
    """

    def __init__(
        self,
        embeddings: InMemoryEmbeddingStore,
        sequence_store: InMemorySequenceStore,
        catalog: InMemoryItemCatalog | None = None,
        *,
        item_limit: int = 20,
    ) -> None:
        self.embeddings = embeddings
        self.sequence_store = sequence_store
        self.catalog = catalog
        self.item_limit = item_limit

    def top_neighbors(self, user_id: int, k: int) -> list[UserNeighbor]:
        if k <= 0:
            return []
        target = self.embeddings.get_user_vector(user_id)
        if not target:
            return []

        neighbors: list[UserNeighbor] = []
        for other_id, vector in self.embeddings.user_vectors():
            if other_id == user_id:
                continue
            similarity = cosine_similarity(target, vector)
            if similarity <= 0:
                continue
            recent = self.sequence_store.recent_interactions(other_id, self.item_limit)
            if not recent:
                continue
            items = tuple(
                ScoredId(
                    id=interaction.item_id,
                    score=similarity * (interaction.weight if interaction.weight > 0 else 1.0),
                    metadata=self.catalog.metadata(interaction.item_id) if self.catalog else {},
                )
                for interaction in recent
            )
            neighbors.append(UserNeighbor(user_id=other_id, similarity=similarity, top_items=items))

        neighbors.sort(key=lambda neighbor: neighbor.similarity, reverse=True)
        return neighbors[:k]


def _metadata_match(metadata: Mapping[str, Any], filters: Mapping[str, Any]) -> bool:
    for key, expected in filters.items():
        actual = metadata.get(key)
        if isinstance(expected, (list, tuple, set, frozenset)):
            if actual not in expected:
                return False
        elif actual != expected:
            return False
    return True
