"""Configuration models for the recall and retrieval system."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

from feed_recall.types import StrategyId

ScoreMappingName = Literal["ranking", "balanced", "exploration"]


class StrategyConfig(BaseModel):
    """Per-channel expansion limits."""

    i2i_seed_limit: int = Field(default=3, ge=1)
    i2i_per_seed_limit: int = Field(default=20, ge=1)
    u2i2i_seed_limit: int = Field(default=3, ge=1)
    u2i2i_per_seed_limit: int = Field(default=10, ge=1)
    u2a2i_attribute_limit: int = Field(default=10, ge=1)
    u2u_neighbor_limit: int = Field(default=50, ge=1)
    context_interaction_limit: int = Field(default=150, ge=0)


class FreshnessConfig(BaseModel):
    """Configures freshness blending during fusion."""

    weight: float = Field(default=0.0, ge=0.0, le=1.0)
    half_life_hours: float = Field(default=48.0, gt=0.0)
    default_score: float = Field(default=0.0, ge=0.0, le=1.0)


class PlannerConfig(BaseModel):
    """Static channel weights; empty means every channel weighs 1.0."""

    channel_weights: dict[StrategyId, float] = Field(default_factory=dict)


class EngineConfig(BaseModel):
    """Configures the worker pool and per-strategy execution policy."""

    max_workers: int = Field(default=8, ge=1)
    strategy_timeout_seconds: float | None = Field(default=None, gt=0.0)
    score_mapping: ScoreMappingName | None = None


class CacheConfig(BaseModel):
    """Configures the injected per-user recall cache."""

    ttl_seconds: float = Field(default=300.0, gt=0.0)
    max_entries: int = Field(default=10_000, ge=1)
    cached_strategies: set[StrategyId] = Field(
        default_factory=lambda: {StrategyId.U2I, StrategyId.U2I2I}
    )


class HybridRetrievalConfig(BaseModel):
    """Configures lexical + vector retrieval fusion."""

    lexical_top_k: int = Field(default=100, ge=1, le=1000)
    vector_top_k: int = Field(default=100, ge=1, le=1000)
    fusion_top_k: int = Field(default=200, ge=1)
    lexical_weight: float = Field(default=0.6, ge=0.0)
    vector_weight: float = Field(default=0.4, ge=0.0)
    freshness_weight: float = Field(default=0.3, ge=0.0, le=1.0)
    half_life_hours: float = Field(default=48.0, gt=0.0)
    default_freshness: float = Field(default=0.0, ge=0.0, le=1.0)
    similarity_threshold: float = Field(default=0.3, ge=-1.0, le=1.0)
    collapse_duplicate_titles: bool = False


class InvertedIndexConfig(BaseModel):
    """Configures attribute-driven retrieval used by the U2A2I channel."""

    attribute_freshness_weights: dict[str, float] = Field(
        default_factory=lambda: {"feedTitle": 0.5}
    )
    default_attribute_freshness_weight: float = Field(default=0.1, ge=0.0, le=1.0)
    oversample: float = Field(default=1.5, gt=0.0)

    def freshness_weight_for(self, attribute_key: str) -> float:
        return self.attribute_freshness_weights.get(
            attribute_key, self.default_attribute_freshness_weight
        )
