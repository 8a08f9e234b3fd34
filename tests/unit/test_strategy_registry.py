import pytest

from feed_recall.recall.registry import RecallStrategy, StrategyNotRegisteredError, StrategyRegistry
from feed_recall.types import ItemCandidate, StrategyId, UserContext


class _Static(RecallStrategy):
    def __init__(self, strategy_id: StrategyId) -> None:
        self.strategy_id = strategy_id

    def recall(self, context: UserContext, limit: int) -> list[ItemCandidate]:
        return []


def test_available_preserves_registration_order() -> None:
    registry = StrategyRegistry([_Static(StrategyId.U2U), _Static(StrategyId.I2I)])

    assert registry.available("home") == [StrategyId.U2U, StrategyId.I2I]
    assert StrategyId.U2U in registry
    assert len(registry) == 2


def test_duplicate_registration_rejected() -> None:
    registry = StrategyRegistry([_Static(StrategyId.U2I)])

    with pytest.raises(ValueError):
        registry.register(_Static(StrategyId.U2I))


def test_unknown_strategy_is_a_configuration_error() -> None:
    registry = StrategyRegistry()

    with pytest.raises(StrategyNotRegisteredError):
        registry.get(StrategyId.LATEST)
    with pytest.raises(KeyError):
        registry.get(StrategyId.LATEST)
