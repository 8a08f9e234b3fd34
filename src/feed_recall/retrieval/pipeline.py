"""Weighted merge of several retrieval channels."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from feed_recall.config import HybridRetrievalConfig
from feed_recall.freshness import blend, freshness_score
from feed_recall.retrieval.handlers import RetrievalContext, RetrievalHandler
from feed_recall.types import DocScore, utcnow

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class WeightedHandler:
    handler: RetrievalHandler
    weight: float


class MultiChannelRetrievalPipeline:
    """Runs every applicable handler and merges their hits on document id.

    Each channel's scores are min-max normalised to [0, 1] (a channel where
    every hit scores the same maps to 1.0) and scaled by the channel weight.
    Documents found by several channels sum their contributions. The merged
    score is then blended with publish-time freshness.
    """

    def __init__(
        self,
        config: HybridRetrievalConfig | None = None,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.config = config or HybridRetrievalConfig()
        self._clock = clock
        self._handlers: list[WeightedHandler] = []

    def add_handler(self, handler: RetrievalHandler, weight: float) -> "MultiChannelRetrievalPipeline":
        if weight < 0:
            raise ValueError("handler weight must be non-negative")
        self._handlers.append(WeightedHandler(handler=handler, weight=weight))
        return self

    @property
    def handlers(self) -> list[WeightedHandler]:
        return list(self._handlers)

    def execute(self, context: RetrievalContext) -> list[DocScore]:
        merged: dict[int, DocScore] = {}
        for weighted in self._handlers:
            handler = weighted.handler
            if not handler.supports(context):
                continue
            logger.debug("Handler [%s] applicable, executing", handler.name)
            for hit in normalize_scores(handler.handle(context)):
                scaled = hit.scale(weighted.weight)
                current = merged.get(hit.doc_id)
                merged[hit.doc_id] = scaled if current is None else current.combine(scaled)

        adjusted = self._apply_freshness(list(merged.values()))
        ranked = sorted(adjusted, key=lambda hit: hit.score, reverse=True)
        if self.config.collapse_duplicate_titles:
            ranked = collapse_titles(ranked)
        return ranked[: context.top_k]

    def _apply_freshness(self, hits: list[DocScore]) -> list[DocScore]:
        weight = self.config.freshness_weight
        if weight <= 0.0 or not hits:
            return hits
        reference = self._clock()
        adjusted = []
        for hit in hits:
            if hit.published_at is None:
                freshness = self.config.default_freshness
            else:
                freshness = freshness_score(
                    hit.published_at, reference, self.config.half_life_hours
                )
            adjusted.append(hit.with_score(blend(hit.score, freshness, weight)))
        return adjusted


def normalize_scores(hits: list[DocScore]) -> list[DocScore]:
    if not hits:
        return []
    low = min(hit.score for hit in hits)
    high = max(hit.score for hit in hits)
    if high == low:
        return [hit.with_score(1.0) for hit in hits]
    span = high - low
    return [hit.with_score((hit.score - low) / span) for hit in hits]


def collapse_titles(ranked: list[DocScore]) -> list[DocScore]:
    """Keep the best-scoring hit per normalised title; untitled hits are kept."""
    seen: set[str] = set()
    kept = []
    for hit in ranked:
        title = " ".join(str(hit.metadata.get("title") or "").lower().split())
        if title:
            if title in seen:
                continue
            seen.add(title)
        kept.append(hit)
    return kept
