"""Collaborator contracts consumed by the recall core.

Implementations live outside the core (see `feed_recall.adapters.memory` for
the in-memory versions used in tests and the debug API). All of them are
read-only from the core's point of view.
"""

from __future__ import annotations

from collections.abc import Collection, Mapping, Sequence
from datetime import datetime
from typing import Any, Protocol

from feed_recall.types import (
    AttributePreference,
    ItemListType,
    RecallRequest,
    ScoredId,
    UserContext,
    UserInteraction,
    UserNeighbor,
)


class UserContextFactory(Protocol):
    def create(self, request: RecallRequest) -> UserContext:
        """Build the per-request user context."""


class SequenceStore(Protocol):
    def recent_interactions(self, user_id: int, limit: int) -> list[UserInteraction]:
        """Return the user's most recent interactions, most recent first."""


class EmbeddingStore(Protocol):
    def get_user_vector(self, user_id: int) -> list[float] | None:
        """Return the user's embedding, or None when it has not been built."""

    def get_item_vector(self, item_id: int) -> list[float] | None:
        """Return the item's embedding, or None."""


class AnnIndex(Protocol):
    def query(
        self, vector: Sequence[float], k: int, filters: Mapping[str, Any] | None = None
    ) -> list[ScoredId]:
        """Return up to `k` items closest to `vector`."""


class CoOccurIndex(Protocol):
    def top_related(self, item_id: int, k: int) -> list[ScoredId]:
        """Return up to `k` items associated with `item_id`."""


class InvertedIndex(Protocol):
    def query(self, attributes: Sequence[AttributePreference], k: int) -> list[ScoredId]:
        """Return up to `k` items matching the weighted attribute values."""


class UserPreferenceService(Protocol):
    def top_attributes(self, user_id: int, limit: int) -> list[AttributePreference]:
        """Return the user's strongest attribute preferences."""


class UserNeighborFinder(Protocol):
    def top_neighbors(self, user_id: int, k: int) -> list[UserNeighbor]:
        """Return the `k` most similar users with their top items."""


class ItemFreshnessProvider(Protocol):
    def published_at(self, item_ids: Collection[int]) -> dict[int, datetime]:
        """Return publish instants for the ids that are known."""


class ItemProvider(Protocol):
    def ls(self, context: UserContext, list_type: ItemListType, k: int) -> list[ScoredId]:
        """List up to `k` items of the given kind for the user."""


class SubscriptionDirectory(Protocol):
    def active_feed_ids(self, user_id: int) -> list[int]:
        """Return the feeds the user is actively subscribed to."""
