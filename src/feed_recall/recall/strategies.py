"""Built-in recall strategies.

Every strategy is read-only with respect to its context and collaborators and
returns an empty list when there is no signal to work from (no vector, no
history, no neighbours, no preferences).
"""

from __future__ import annotations

import logging
import math
import random
from collections.abc import Iterable, Mapping
from datetime import datetime, timezone
from typing import Any

from feed_recall.config import StrategyConfig
from feed_recall.recall.registry import RecallStrategy
from feed_recall.recall.spi import (
    AnnIndex,
    CoOccurIndex,
    EmbeddingStore,
    InvertedIndex,
    ItemProvider,
    SequenceStore,
    UserNeighborFinder,
    UserPreferenceService,
)
from feed_recall.types import (
    ItemCandidate,
    ItemListType,
    ScoredId,
    StrategyId,
    UserContext,
    UserInteraction,
)

logger = logging.getLogger(__name__)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


class _ScoreBoard:
    """Accumulates per-item scores, remembering the first metadata seen."""

    def __init__(self) -> None:
        self._scores: dict[int, float] = {}
        self._metadata: dict[int, Mapping[str, Any]] = {}

    def add(self, scored: ScoredId, contribution: float) -> None:
        self._scores[scored.id] = self._scores.get(scored.id, 0.0) + contribution
        self._metadata.setdefault(scored.id, scored.metadata)

    def top(self, source: StrategyId, limit: int) -> list[ItemCandidate]:
        ranked = sorted(self._scores.items(), key=lambda entry: entry[1], reverse=True)
        return [
            ItemCandidate(
                item_id=item_id,
                score=score,
                source=source,
                attributes=self._metadata.get(item_id, {}),
            )
            for item_id, score in ranked[: max(0, limit)]
        ]


class U2IRecallStrategy(RecallStrategy):
    """User vector -> nearest items in the ANN index."""

    strategy_id = StrategyId.U2I

    def __init__(self, embedding_store: EmbeddingStore, ann_index: AnnIndex) -> None:
        self.embedding_store = embedding_store
        self.ann_index = ann_index

    def recall(self, context: UserContext, limit: int) -> list[ItemCandidate]:
        if limit <= 0:
            return []
        vector = self.embedding_store.get_user_vector(context.user_id)
        if not vector:
            return []
        hits = self.ann_index.query(vector, limit, context.filters)
        return [ItemCandidate.of(hit, self.strategy_id) for hit in hits[:limit]]


class U2I2IRecallStrategy(RecallStrategy):
    """User vector -> ANN seed items -> co-occurrence expansion.

    A candidate scores the sum over seeds of `neighbour score * seed score`.
    Seeds themselves and already-seen items are excluded.
    """

    strategy_id = StrategyId.U2I2I

    def __init__(
        self,
        embedding_store: EmbeddingStore,
        ann_index: AnnIndex,
        co_occur_index: CoOccurIndex,
        *,
        seed_limit: int = 3,
        per_seed_limit: int = 10,
    ) -> None:
        self.embedding_store = embedding_store
        self.ann_index = ann_index
        self.co_occur_index = co_occur_index
        self.seed_limit = seed_limit
        self.per_seed_limit = per_seed_limit

    def recall(self, context: UserContext, limit: int) -> list[ItemCandidate]:
        if limit <= 0:
            return []
        vector = self.embedding_store.get_user_vector(context.user_id)
        if not vector:
            return []
        seeds = self.ann_index.query(vector, self.seed_limit, context.filters)
        if not seeds:
            return []

        history = context.recent_item_ids()
        board = _ScoreBoard()
        for seed in seeds:
            for neighbor in self.co_occur_index.top_related(seed.id, self.per_seed_limit):
                if neighbor.id == seed.id or neighbor.id in history:
                    continue
                board.add(neighbor, neighbor.score * seed.score)
        return board.top(self.strategy_id, limit)


class I2IRecallStrategy(RecallStrategy):
    """Recent interactions as seeds, expanded through co-occurrence.

    Seed `i` (0 = most recent) weighs `max(weight, 1.0) * exp(-i / seed_limit)`.
    """

    strategy_id = StrategyId.I2I

    def __init__(
        self,
        co_occur_index: CoOccurIndex,
        sequence_store: SequenceStore | None = None,
        *,
        seed_limit: int = 3,
        per_seed_limit: int = 20,
    ) -> None:
        self.co_occur_index = co_occur_index
        self.sequence_store = sequence_store
        self.seed_limit = seed_limit
        self.per_seed_limit = per_seed_limit

    def recall(self, context: UserContext, limit: int) -> list[ItemCandidate]:
        if limit <= 0:
            return []
        interactions: Iterable[UserInteraction] = context.interactions
        if not context.interactions and self.sequence_store is not None:
            interactions = self.sequence_store.recent_interactions(
                context.user_id, self.seed_limit
            )
        interactions = list(interactions)
        if not interactions:
            return []

        history = set(context.recent_item_ids())
        history.update(interaction.item_id for interaction in interactions)
        seeds = sorted(
            interactions,
            key=_recency,
            reverse=True,
        )[: self.seed_limit]

        board = _ScoreBoard()
        decay_span = max(1, self.seed_limit)
        for index, seed in enumerate(seeds):
            seed_weight = max(seed.weight, 1.0) * math.exp(-index / decay_span)
            for neighbor in self.co_occur_index.top_related(seed.item_id, self.per_seed_limit):
                if neighbor.id in history:
                    continue
                board.add(neighbor, neighbor.score * seed_weight)
        return board.top(self.strategy_id, limit)


def _recency(interaction: UserInteraction) -> datetime:
    timestamp = interaction.timestamp
    if timestamp is None:
        return _EPOCH
    # Naive timestamps are treated as UTC.
    return timestamp if timestamp.tzinfo else timestamp.replace(tzinfo=timezone.utc)


class U2A2IRecallStrategy(RecallStrategy):
    """User -> preferred attribute values -> inverted index hits."""

    strategy_id = StrategyId.U2A2I

    def __init__(
        self,
        preference_service: UserPreferenceService,
        inverted_index: InvertedIndex,
        *,
        attribute_limit: int = 10,
    ) -> None:
        self.preference_service = preference_service
        self.inverted_index = inverted_index
        self.attribute_limit = max(1, attribute_limit)

    def recall(self, context: UserContext, limit: int) -> list[ItemCandidate]:
        if limit <= 0:
            return []
        attributes = self.preference_service.top_attributes(
            context.user_id, self.attribute_limit
        )
        logger.debug("U2A2I top attributes for user %s: %s", context.user_id, attributes)
        if not attributes:
            return []
        hits = self.inverted_index.query(attributes, limit)
        return [ItemCandidate.of(hit, self.strategy_id) for hit in hits[:limit]]


class U2URecallStrategy(RecallStrategy):
    """Similar users' items, each weighted by that user's similarity."""

    strategy_id = StrategyId.U2U

    def __init__(self, neighbor_finder: UserNeighborFinder, *, neighbor_limit: int = 50) -> None:
        self.neighbor_finder = neighbor_finder
        self.neighbor_limit = neighbor_limit

    def recall(self, context: UserContext, limit: int) -> list[ItemCandidate]:
        if limit <= 0:
            return []
        neighbors = self.neighbor_finder.top_neighbors(context.user_id, self.neighbor_limit)
        if not neighbors:
            return []

        history = context.recent_item_ids()
        board = _ScoreBoard()
        for neighbor in neighbors:
            for scored in neighbor.top_items:
                if scored.id in history:
                    continue
                board.add(scored, scored.score * neighbor.similarity)
        return board.top(self.strategy_id, limit)


class LatestRecallStrategy(RecallStrategy):
    strategy_id = StrategyId.LATEST

    def __init__(self, item_provider: ItemProvider) -> None:
        self.item_provider = item_provider

    def recall(self, context: UserContext, limit: int) -> list[ItemCandidate]:
        if limit <= 0:
            return []
        items = self.item_provider.ls(context, ItemListType.LATEST, limit)
        return [ItemCandidate.of(item, self.strategy_id) for item in items[:limit]]


class RandomI2IRecallStrategy(RecallStrategy):
    """Expands one randomly picked listed item through co-occurrence."""

    strategy_id = StrategyId.RANDOM_I2I

    def __init__(
        self,
        item_provider: ItemProvider,
        co_occur_index: CoOccurIndex,
        *,
        rng: random.Random | None = None,
    ) -> None:
        self.item_provider = item_provider
        self.co_occur_index = co_occur_index
        self.rng = rng or random.Random()

    def recall(self, context: UserContext, limit: int) -> list[ItemCandidate]:
        if limit <= 0:
            return []
        listed = self.item_provider.ls(context, ItemListType.RANDOM, limit)
        if not listed:
            return []
        seed = listed[self.rng.randrange(len(listed))]
        related = self.co_occur_index.top_related(seed.id, limit)
        return [
            ItemCandidate.of(item, self.strategy_id)
            for item in related[:limit]
            if item.id != seed.id
        ]


def build_default_strategies(
    *,
    embedding_store: EmbeddingStore,
    ann_index: AnnIndex,
    co_occur_index: CoOccurIndex,
    sequence_store: SequenceStore,
    preference_service: UserPreferenceService,
    inverted_index: InvertedIndex,
    neighbor_finder: UserNeighborFinder,
    item_provider: ItemProvider,
    config: StrategyConfig | None = None,
    rng: random.Random | None = None,
) -> list[RecallStrategy]:
    """All seven channels in `StrategyId` declaration order."""
    config = config or StrategyConfig()
    return [
        I2IRecallStrategy(
            co_occur_index,
            sequence_store,
            seed_limit=config.i2i_seed_limit,
            per_seed_limit=config.i2i_per_seed_limit,
        ),
        U2IRecallStrategy(embedding_store, ann_index),
        U2I2IRecallStrategy(
            embedding_store,
            ann_index,
            co_occur_index,
            seed_limit=config.u2i2i_seed_limit,
            per_seed_limit=config.u2i2i_per_seed_limit,
        ),
        U2A2IRecallStrategy(
            preference_service,
            inverted_index,
            attribute_limit=config.u2a2i_attribute_limit,
        ),
        U2URecallStrategy(neighbor_finder, neighbor_limit=config.u2u_neighbor_limit),
        LatestRecallStrategy(item_provider),
        RandomI2IRecallStrategy(item_provider, co_occur_index, rng=rng),
    ]
