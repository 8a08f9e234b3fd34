"""Fusion of per-channel recall results into one ranked list."""

from __future__ import annotations

from collections.abc import Mapping, Sequence

from feed_recall.config import FreshnessConfig
from feed_recall.freshness import blend, freshness_score
from feed_recall.recall.spi import ItemFreshnessProvider
from feed_recall.types import FusionContext, ItemCandidate, StrategyId


class RecallFusion:
    """Merges channel outputs: weight, dedup, freshness, sort, diversity,
    interleave, truncate, in that order.

    Freshness is only blended when a provider is configured and the freshness
    weight is positive. Items the provider does not know get
    `FreshnessConfig.default_score` as their freshness.
    """

    def __init__(
        self,
        freshness_provider: ItemFreshnessProvider | None = None,
        config: FreshnessConfig | None = None,
    ) -> None:
        self.freshness_provider = freshness_provider
        self.config = config or FreshnessConfig()

    def fuse(
        self,
        channel_results: Mapping[StrategyId, Sequence[ItemCandidate]],
        context: FusionContext,
    ) -> list[ItemCandidate]:
        config = context.config
        weighted = [
            candidate.with_score(candidate.score * config.weight_of(candidate.source))
            for items in channel_results.values()
            for candidate in items
        ]
        merged = self._deduplicate(weighted, context) if config.deduplicate else weighted
        adjusted = self._apply_freshness(merged, context)
        ranked = sorted(adjusted, key=lambda item: item.score, reverse=True)

        if config.diversity.enabled:
            ranked = self._apply_diversity(ranked, context)
        if config.interleave_channels:
            ranked = interleave_by_channel(ranked, config.top_k)

        return ranked[: min(config.top_k, len(ranked))]

    @staticmethod
    def _deduplicate(
        candidates: list[ItemCandidate], context: FusionContext
    ) -> list[ItemCandidate]:
        kept: dict[int, ItemCandidate] = {}
        sources: dict[int, set[str]] = {}
        for candidate in candidates:
            sources.setdefault(candidate.item_id, set()).add(candidate.source.value)
            current = kept.get(candidate.item_id)
            if current is None or candidate.score > current.score:
                kept[candidate.item_id] = candidate
        context.diagnostics["contributing_sources"] = {
            item_id: sorted(names) for item_id, names in sources.items()
        }
        return list(kept.values())

    def _apply_freshness(
        self, candidates: list[ItemCandidate], context: FusionContext
    ) -> list[ItemCandidate]:
        weight = self.config.weight
        if not candidates or weight <= 0.0 or self.freshness_provider is None:
            return candidates

        published = self.freshness_provider.published_at({c.item_id for c in candidates})
        reference = context.request.request_time
        adjusted: list[ItemCandidate] = []
        for candidate in candidates:
            published_at = published.get(candidate.item_id)
            if published_at is None:
                freshness = self.config.default_score
            else:
                freshness = freshness_score(published_at, reference, self.config.half_life_hours)
            adjusted.append(candidate.with_score(blend(candidate.score, freshness, weight)))
        return adjusted

    @staticmethod
    def _apply_diversity(
        candidates: list[ItemCandidate], context: FusionContext
    ) -> list[ItemCandidate]:
        diversity = context.config.diversity
        limit = context.config.top_k
        counts: dict[str, int] = {}
        accepted: list[ItemCandidate] = []
        overflow: list[ItemCandidate] = []

        for candidate in candidates:
            if len(accepted) >= limit:
                break
            value = candidate.attributes.get(diversity.attribute_key)
            if value is None:
                accepted.append(candidate)
                continue
            bucket = str(value)
            current = counts.get(bucket, 0)
            if current >= diversity.max_per_attribute:
                overflow.append(candidate)
                continue
            counts[bucket] = current + 1
            accepted.append(candidate)

        if diversity.fill_overflow:
            for candidate in overflow:
                if len(accepted) >= limit:
                    break
                accepted.append(candidate)
        return accepted


def interleave_by_channel(candidates: Sequence[ItemCandidate], limit: int) -> list[ItemCandidate]:
    """Round-robin across source buckets, preserving each bucket's rank.

    Each round visits buckets in `StrategyId` declaration order, regardless of
    which channel holds the best-scoring item.
    """
    grouped: dict[StrategyId, list[ItemCandidate]] = {}
    for candidate in candidates:
        grouped.setdefault(candidate.source, []).append(candidate)
    buckets = [grouped[strategy_id] for strategy_id in StrategyId if strategy_id in grouped]

    reordered: list[ItemCandidate] = []
    depth = 0
    while len(reordered) < limit:
        added = False
        for bucket in buckets:
            if depth >= len(bucket):
                continue
            reordered.append(bucket[depth])
            added = True
            if len(reordered) >= limit:
                return reordered
        if not added:
            break
        depth += 1
    return reordered
