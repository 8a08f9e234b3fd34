"""User context construction."""

from __future__ import annotations

from feed_recall.recall.spi import SequenceStore
from feed_recall.types import RecallRequest, UserContext


class DefaultUserContextFactory:
    """Builds a context from the request plus the user's recent interactions."""

    def __init__(
        self,
        sequence_store: SequenceStore | None = None,
        *,
        interaction_limit: int = 150,
    ) -> None:
        self.sequence_store = sequence_store
        self.interaction_limit = interaction_limit

    def create(self, request: RecallRequest) -> UserContext:
        interactions = []
        if self.sequence_store is not None and self.interaction_limit > 0:
            interactions = self.sequence_store.recent_interactions(
                request.user_id, self.interaction_limit
            )
        return UserContext(
            user_id=request.user_id,
            scene=request.scene,
            interactions=tuple(interactions),
            filters=request.filters,
            request_time=request.request_time,
        )
