"""Shared domain models for recall, fusion and retrieval."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping


class StrategyId(str, Enum):
    """Identity of a recall channel.

    Declaration order is the default registration order used by the wiring
    layer, which in turn fixes the planner's remainder distribution.
    """

    I2I = "I2I"
    U2I = "U2I"
    U2I2I = "U2I2I"
    U2A2I = "U2A2I"
    U2U = "U2U"
    LATEST = "LATEST"
    RANDOM_I2I = "RANDOM_I2I"


class ItemListType(str, Enum):
    """Listing modes offered by an item provider."""

    LATEST = "LATEST"
    RANDOM = "RANDOM"


def _frozen_mapping(value: Mapping[Any, Any] | None) -> Mapping[Any, Any]:
    return MappingProxyType(dict(value or {}))


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True, frozen=True)
class ScoredId:
    """Generic id + score returned by collaborator indexes."""

    id: int
    score: float
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "metadata", _frozen_mapping(self.metadata))


@dataclass(slots=True, frozen=True)
class ItemCandidate:
    """A scored item produced by one recall channel.

    Instances are immutable; re-scoring goes through `with_score`.
    """

    item_id: int
    score: float
    source: StrategyId
    attributes: Mapping[str, Any] = field(default_factory=dict)
    reason: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "attributes", _frozen_mapping(self.attributes))

    @classmethod
    def of(cls, scored: ScoredId, source: StrategyId) -> "ItemCandidate":
        return cls(
            item_id=scored.id,
            score=scored.score,
            source=source,
            attributes=scored.metadata,
        )

    def with_score(self, score: float) -> "ItemCandidate":
        return replace(self, score=score)


@dataclass(slots=True, frozen=True)
class UserInteraction:
    """One entry of a user's behaviour sequence."""

    item_id: int
    duration_seconds: float = 0.0
    weight: float = 1.0
    timestamp: datetime | None = None
    item_title: str | None = None


@dataclass(slots=True, frozen=True)
class AttributePreference:
    attribute_key: str
    attribute_value: str
    weight: float


@dataclass(slots=True, frozen=True)
class UserNeighbor:
    user_id: int
    similarity: float
    top_items: tuple[ScoredId, ...] = ()


@dataclass(slots=True, frozen=True)
class RecallRequest:
    """Immutable request envelope for one recall call."""

    user_id: int
    scene: str = "default"
    top_k: int = 50
    filters: Mapping[str, Any] = field(default_factory=dict)
    diagnostics_requested: bool = False
    request_time: datetime = field(default_factory=utcnow)

    def __post_init__(self) -> None:
        object.__setattr__(self, "scene", self.scene or "default")
        object.__setattr__(self, "top_k", max(int(self.top_k), 1))
        object.__setattr__(self, "filters", _frozen_mapping(self.filters))
        if self.request_time is None:
            object.__setattr__(self, "request_time", utcnow())


@dataclass(slots=True, frozen=True)
class UserContext:
    """Per-request user state shared read-only by every strategy."""

    user_id: int
    scene: str = "default"
    interactions: tuple[UserInteraction, ...] = ()
    filters: Mapping[str, Any] = field(default_factory=dict)
    request_time: datetime = field(default_factory=utcnow)

    def __post_init__(self) -> None:
        object.__setattr__(self, "interactions", tuple(self.interactions or ()))
        object.__setattr__(self, "filters", _frozen_mapping(self.filters))

    def recent_item_ids(self) -> frozenset[int]:
        return frozenset(interaction.item_id for interaction in self.interactions)


@dataclass(slots=True, frozen=True)
class DiversityConfig:
    """Caps how many accepted candidates may share one attribute value."""

    attribute_key: str | None = None
    max_per_attribute: int = 0
    fill_overflow: bool = False

    @classmethod
    def disabled(cls) -> "DiversityConfig":
        return cls()

    @property
    def enabled(self) -> bool:
        return bool(self.attribute_key)


@dataclass(slots=True, frozen=True)
class FusionConfig:
    top_k: int
    deduplicate: bool = True
    weights: Mapping[StrategyId, float] = field(default_factory=dict)
    interleave_channels: bool = True
    diversity: DiversityConfig = field(default_factory=DiversityConfig.disabled)

    def __post_init__(self) -> None:
        object.__setattr__(self, "weights", _frozen_mapping(self.weights))

    def weight_of(self, strategy_id: StrategyId) -> float:
        return float(self.weights.get(strategy_id, 1.0))


@dataclass(slots=True)
class FusionContext:
    """Request + fusion config handed to the fusion engine.

    `diagnostics` is request-local scratch space the fusion engine fills with
    observability data (e.g. contributing sources per item).
    """

    request: RecallRequest
    config: FusionConfig
    diagnostics: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True, frozen=True)
class RecallPlan:
    quotas: Mapping[StrategyId, int]
    fusion_config: FusionConfig

    def __post_init__(self) -> None:
        object.__setattr__(self, "quotas", _frozen_mapping(self.quotas))

    def quota(self, strategy_id: StrategyId) -> int:
        return int(self.quotas.get(strategy_id, 0))


@dataclass(slots=True)
class StrategyTrace:
    """Timing record for one dispatched strategy."""

    strategy: StrategyId
    quota: int
    size: int
    latency_ms: float
    status: str = "ok"
    error: str | None = None


@dataclass(slots=True)
class RecallResponse:
    fused: list[ItemCandidate]
    channel_results: dict[StrategyId, list[ItemCandidate]]
    latency_ms: float = 0.0
    diagnostics: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def empty(cls) -> "RecallResponse":
        return cls(fused=[], channel_results={})


@dataclass(slots=True, frozen=True)
class DocScore:
    """A retrieval hit from one lexical or vector channel."""

    doc_id: int
    score: float
    published_at: datetime | None = None
    source: str = ""
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def scale(self, weight: float) -> "DocScore":
        return replace(self, score=self.score * weight)

    def with_score(self, score: float) -> "DocScore":
        return replace(self, score=score)

    def combine(self, other: "DocScore") -> "DocScore":
        """Merge two hits for the same document found by different channels."""
        if other.doc_id != self.doc_id:
            raise ValueError(f"Cannot combine doc {self.doc_id} with doc {other.doc_id}")
        newer = self.published_at
        if other.published_at is not None and (newer is None or other.published_at > newer):
            newer = other.published_at
        return DocScore(
            doc_id=self.doc_id,
            score=self.score + other.score,
            published_at=newer,
            source=self.source if self.source == other.source else f"{self.source}+{other.source}",
            metadata=self.metadata or other.metadata,
        )
