"""Recall strategy contract and registry."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable

from feed_recall.types import ItemCandidate, StrategyId, UserContext


class StrategyNotRegisteredError(KeyError):
    """Raised when wiring asks for a strategy that was never registered."""


class RecallStrategy(ABC):
    """One recall channel turning a user context into scored candidates.

    Implementations must not mutate the context and must return an empty list
    when there is not enough signal to produce candidates.
    """

    strategy_id: StrategyId

    @abstractmethod
    def recall(self, context: UserContext, limit: int) -> list[ItemCandidate]:
        """Return up to `limit` candidates for the user."""


class StrategyRegistry:
    """Stores strategies keyed by id, preserving registration order."""

    def __init__(self, strategies: Iterable[RecallStrategy] | None = None) -> None:
        self._strategies: dict[StrategyId, RecallStrategy] = {}
        for strategy in strategies or []:
            self.register(strategy)

    def register(self, strategy: RecallStrategy) -> None:
        if strategy.strategy_id in self._strategies:
            raise ValueError(f"Strategy already registered: {strategy.strategy_id.value}")
        self._strategies[strategy.strategy_id] = strategy

    def get(self, strategy_id: StrategyId) -> RecallStrategy:
        strategy = self._strategies.get(strategy_id)
        if strategy is None:
            raise StrategyNotRegisteredError(
                f"No recall strategy registered for id {strategy_id.value}"
            )
        return strategy

    def available(self, scene: str | None = None) -> list[StrategyId]:
        """Strategies usable for `scene`, in registration order.

        Every registered strategy is available for every scene; subclasses may
        narrow this per scene.
        """
        del scene
        return list(self._strategies)

    def __contains__(self, strategy_id: object) -> bool:
        return strategy_id in self._strategies

    def __len__(self) -> int:
        return len(self._strategies)
