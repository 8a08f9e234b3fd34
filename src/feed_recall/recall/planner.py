"""Quota planning and fusion configuration for a recall request."""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any

from feed_recall.config import PlannerConfig
from feed_recall.types import (
    DiversityConfig,
    FusionConfig,
    RecallPlan,
    RecallRequest,
    StrategyId,
)

logger = logging.getLogger(__name__)

INTERLEAVE_KEY = "interleaveChannels"
DIVERSITY_KEY = "diversityKey"
DIVERSITY_LIMIT_KEY = "diversityLimit"
DIVERSITY_FILL_KEY = "diversityFillOverflow"
CHANNEL_WEIGHTS_KEY = "channelWeights"

_TRUE_STRINGS = frozenset({"true", "1", "yes", "y", "on"})


class RecallPlanner:
    """Splits top-K across available strategies and derives the fusion config.

    Quotas: every strategy gets `max(1, top_k // n)`; the remainder
    `top_k - per_strategy * n` is handed out one unit at a time in the order
    the strategies are given (registration order).
    """

    def __init__(self, config: PlannerConfig | None = None) -> None:
        self.config = config or PlannerConfig()

    def plan(self, request: RecallRequest, available: Sequence[StrategyId]) -> RecallPlan:
        strategies = list(dict.fromkeys(available))
        if not strategies:
            return RecallPlan(quotas={}, fusion_config=FusionConfig(top_k=request.top_k))

        quotas = allocate_quotas(strategies, request.top_k)
        logger.debug("Recall quotas for user %s: %s", request.user_id, _named(quotas))

        config = FusionConfig(
            top_k=request.top_k,
            deduplicate=True,
            weights=self._weights(strategies, request.filters),
            interleave_channels=parse_bool(request.filters.get(INTERLEAVE_KEY, True)),
            diversity=extract_diversity(request.filters),
        )
        return RecallPlan(quotas=quotas, fusion_config=config)

    def _weights(
        self, strategies: Sequence[StrategyId], filters: Mapping[str, Any]
    ) -> dict[StrategyId, float]:
        weights = {sid: float(self.config.channel_weights.get(sid, 1.0)) for sid in strategies}
        overrides = filters.get(CHANNEL_WEIGHTS_KEY)
        if not isinstance(overrides, Mapping):
            return weights
        for key, value in overrides.items():
            strategy_id = _strategy_id(key)
            weight = parse_float(value)
            if strategy_id is None or weight is None:
                logger.debug("Ignoring channel weight override %r=%r", key, value)
                continue
            if strategy_id in weights:
                weights[strategy_id] = weight
        return weights


def allocate_quotas(strategies: Sequence[StrategyId], top_k: int) -> dict[StrategyId, int]:
    per_strategy = max(1, top_k // len(strategies))
    quotas = {strategy_id: per_strategy for strategy_id in strategies}
    remaining = max(0, top_k - per_strategy * len(strategies))
    for strategy_id in strategies:
        if remaining <= 0:
            break
        quotas[strategy_id] += 1
        remaining -= 1
    return quotas


def extract_diversity(filters: Mapping[str, Any]) -> DiversityConfig:
    key = filters.get(DIVERSITY_KEY)
    if key is None or not str(key).strip():
        return DiversityConfig.disabled()
    return DiversityConfig(
        attribute_key=str(key).strip(),
        max_per_attribute=parse_int(filters.get(DIVERSITY_LIMIT_KEY, 0)),
        fill_overflow=parse_bool(filters.get(DIVERSITY_FILL_KEY, False)),
    )


def parse_bool(value: Any) -> bool:
    """Tolerant boolean parsing; anything unrecognised is False."""
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        return value.strip().lower() in _TRUE_STRINGS
    return False


def parse_int(value: Any) -> int:
    """Tolerant integer parsing; anything unparsable is 0."""
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value == value and abs(value) != float("inf") else 0
    if isinstance(value, str):
        text = value.strip()
        try:
            return int(text)
        except ValueError:
            pass
        try:
            return parse_int(float(text))
        except ValueError:
            logger.debug("Unparsable integer filter value %r, using 0", value)
            return 0
    return 0


def parse_float(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def _strategy_id(key: Any) -> StrategyId | None:
    if isinstance(key, StrategyId):
        return key
    try:
        return StrategyId(str(key).strip().upper())
    except ValueError:
        return None


def _named(quotas: Mapping[StrategyId, int]) -> dict[str, int]:
    return {strategy_id.value: quota for strategy_id, quota in quotas.items()}
