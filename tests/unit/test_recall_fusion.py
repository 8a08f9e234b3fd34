from datetime import datetime, timedelta, timezone

import pytest

from feed_recall.config import FreshnessConfig
from feed_recall.recall.fusion import RecallFusion, interleave_by_channel
from feed_recall.types import (
    DiversityConfig,
    FusionConfig,
    FusionContext,
    ItemCandidate,
    RecallRequest,
    StrategyId,
)

A, B = StrategyId.U2I, StrategyId.I2I
NOW = datetime(2024, 6, 1, 12, tzinfo=timezone.utc)


def _c(item_id: int, score: float, source: StrategyId, **attributes: object) -> ItemCandidate:
    return ItemCandidate(item_id=item_id, score=score, source=source, attributes=attributes)


def _context(config: FusionConfig) -> FusionContext:
    return FusionContext(
        request=RecallRequest(user_id=1, top_k=config.top_k, request_time=NOW),
        config=config,
    )


class _Published:
    def __init__(self, published: dict[int, datetime]) -> None:
        self.published = published
        self.calls = 0

    def published_at(self, item_ids: object) -> dict[int, datetime]:
        self.calls += 1
        return dict(self.published)


def test_weights_apply_before_dedup() -> None:
    config = FusionConfig(top_k=5, weights={A: 0.5}, interleave_channels=False)
    results = {A: [_c(1, 1.0, A)], B: [_c(1, 0.6, B)]}

    fused = RecallFusion().fuse(results, _context(config))

    assert [(c.item_id, c.source, c.score) for c in fused] == [(1, B, 0.6)]


def test_dedup_records_contributing_sources() -> None:
    context = _context(FusionConfig(top_k=5))
    results = {A: [_c(1, 0.4, A), _c(2, 0.3, A)], B: [_c(1, 0.6, B)]}

    fused = RecallFusion().fuse(results, context)

    assert sorted(c.item_id for c in fused) == [1, 2]
    assert context.diagnostics["contributing_sources"][1] == ["I2I", "U2I"]


def test_without_dedup_duplicates_survive() -> None:
    config = FusionConfig(top_k=5, deduplicate=False, interleave_channels=False)
    results = {A: [_c(1, 0.4, A)], B: [_c(1, 0.6, B)]}

    fused = RecallFusion().fuse(results, _context(config))

    assert [c.score for c in fused] == [0.6, 0.4]


def test_freshness_blend_and_unknown_default() -> None:
    provider = _Published({1: NOW - timedelta(hours=48)})
    fusion = RecallFusion(provider, FreshnessConfig(weight=0.3, default_score=0.2))
    config = FusionConfig(top_k=5, interleave_channels=False)

    fused = fusion.fuse({A: [_c(1, 0.8, A), _c(2, 0.8, A)]}, _context(config))

    scores = {c.item_id: c.score for c in fused}
    assert scores[1] == pytest.approx(0.71)
    assert scores[2] == pytest.approx(0.8 * 0.7 + 0.2 * 0.3)


def test_zero_freshness_weight_skips_provider() -> None:
    provider = _Published({})
    RecallFusion(provider, FreshnessConfig(weight=0.0)).fuse(
        {A: [_c(1, 0.8, A)]}, _context(FusionConfig(top_k=1))
    )

    assert provider.calls == 0


def test_diversity_caps_buckets_and_keeps_unlabelled() -> None:
    config = FusionConfig(
        top_k=5,
        interleave_channels=False,
        diversity=DiversityConfig(attribute_key="author", max_per_attribute=1),
    )
    results = {
        A: [
            _c(1, 0.9, A, author="x"),
            _c(2, 0.8, A, author="x"),
            _c(3, 0.7, A),
            _c(4, 0.6, A, author="y"),
        ]
    }

    fused = RecallFusion().fuse(results, _context(config))

    assert [c.item_id for c in fused] == [1, 3, 4]


def test_diversity_fill_overflow_backfills_in_order() -> None:
    config = FusionConfig(
        top_k=4,
        interleave_channels=False,
        diversity=DiversityConfig(attribute_key="author", max_per_attribute=1, fill_overflow=True),
    )
    results = {
        A: [
            _c(1, 0.9, A, author="x"),
            _c(2, 0.8, A, author="x"),
            _c(3, 0.7, A, author="x"),
            _c(4, 0.6, A, author="y"),
        ]
    }

    fused = RecallFusion().fuse(results, _context(config))

    assert [c.item_id for c in fused] == [1, 4, 2, 3]


def test_interleave_rounds_follow_strategy_declaration_order() -> None:
    # A is U2I, B is I2I; I2I is declared first so it leads every round.
    ranked = [_c(1, 0.9, A), _c(2, 0.8, A), _c(11, 0.7, B), _c(3, 0.6, A), _c(12, 0.5, B)]

    assert [c.item_id for c in interleave_by_channel(ranked, 5)] == [11, 1, 12, 2, 3]
    assert [c.item_id for c in interleave_by_channel(ranked, 3)] == [11, 1, 12]
    assert [c.item_id for c in interleave_by_channel(ranked[:3], 3)] == [11, 1, 2]
    assert interleave_by_channel([], 3) == []


def test_output_truncated_to_top_k() -> None:
    results = {A: [_c(i, 1.0 / i, A) for i in range(1, 8)], B: [_c(100, 0.95, B)]}

    fused = RecallFusion().fuse(results, _context(FusionConfig(top_k=3)))

    assert [c.item_id for c in fused] == [100, 1, 2]


def _zero_cap_results() -> dict[StrategyId, list[ItemCandidate]]:
    return {
        A: [
            _c(1, 0.9, A, author="x"),
            _c(2, 0.5, A),
            _c(3, 0.4, A, author="y"),
        ]
    }


def test_zero_diversity_cap_drops_every_labelled_candidate() -> None:
    config = FusionConfig(
        top_k=5,
        interleave_channels=False,
        diversity=DiversityConfig(attribute_key="author", max_per_attribute=0),
    )

    fused = RecallFusion().fuse(_zero_cap_results(), _context(config))

    assert [c.item_id for c in fused] == [2]


def test_zero_diversity_cap_with_fill_backfills_in_sorted_order() -> None:
    config = FusionConfig(
        top_k=5,
        interleave_channels=False,
        diversity=DiversityConfig(attribute_key="author", max_per_attribute=0, fill_overflow=True),
    )

    fused = RecallFusion().fuse(_zero_cap_results(), _context(config))

    assert [c.item_id for c in fused] == [2, 1, 3]
