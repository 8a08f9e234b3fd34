"""Multi-channel feed recall package."""

from .config import EngineConfig, FreshnessConfig, HybridRetrievalConfig, PlannerConfig, StrategyConfig

__all__ = [
    "EngineConfig",
    "FreshnessConfig",
    "HybridRetrievalConfig",
    "PlannerConfig",
    "StrategyConfig",
]
