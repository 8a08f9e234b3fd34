"""Piecewise mapping of [0, 1] scores onto [0.5, 1]."""

from __future__ import annotations

from enum import Enum


class ScoreMappingMode(str, Enum):
    RANKING = "ranking"
    BALANCED = "balanced"
    EXPLORATION = "exploration"


class AdaptiveScoreMapper:
    """Maps a score clamped to [0, 1] into [0.5, 1].

    - ranking: compresses low scores and stretches the head
      ([0, .3) -> [.5, .6), [.3, .7) -> [.6, .8), [.7, 1] -> [.8, 1]).
    - balanced: linear, 0.5 + 0.5x.
    - exploration: gives the lower half as much output range as the upper half
      ([0, .5) -> [.5, .75), [.5, 1] -> [.75, 1]).
    """

    def __init__(self, mode: ScoreMappingMode | str = ScoreMappingMode.RANKING) -> None:
        self.mode = self._resolve(mode)

    def map(self, score: float) -> float:
        x = min(1.0, max(0.0, score))
        if self.mode is ScoreMappingMode.RANKING:
            if x < 0.3:
                return 0.5 + 0.1 * (x / 0.3)
            if x < 0.7:
                return 0.6 + 0.2 * ((x - 0.3) / 0.4)
            return 0.8 + 0.2 * ((x - 0.7) / 0.3)
        if self.mode is ScoreMappingMode.EXPLORATION:
            if x < 0.5:
                return 0.5 + 0.25 * (x / 0.5)
            return 0.75 + 0.25 * ((x - 0.5) / 0.5)
        return 0.5 + 0.5 * x

    @staticmethod
    def _resolve(mode: ScoreMappingMode | str) -> ScoreMappingMode:
        if isinstance(mode, ScoreMappingMode):
            return mode
        try:
            return ScoreMappingMode(str(mode).strip().lower())
        except ValueError as exc:
            raise ValueError(
                f"Unknown score mapping mode: {mode}. "
                "Valid options: ranking, balanced, exploration"
            ) from exc
