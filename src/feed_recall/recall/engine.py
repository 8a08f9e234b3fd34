"""Recall orchestration: plan, fan out to strategies, fuse."""

from __future__ import annotations

import concurrent.futures
import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import asdict
from typing import Any

from feed_recall.config import EngineConfig
from feed_recall.obs.tracing import Timer
from feed_recall.recall.fusion import RecallFusion
from feed_recall.recall.planner import RecallPlanner
from feed_recall.recall.registry import RecallStrategy, StrategyRegistry
from feed_recall.recall.score_mapper import AdaptiveScoreMapper
from feed_recall.recall.spi import UserContextFactory
from feed_recall.types import (
    FusionContext,
    ItemCandidate,
    RecallPlan,
    RecallRequest,
    RecallResponse,
    StrategyId,
    StrategyTrace,
    UserContext,
)

logger = logging.getLogger(__name__)

_StrategyOutcome = tuple[list[ItemCandidate], StrategyTrace]


class RecallEngine:
    """Runs every planned strategy on a bounded worker pool and fuses the results.

    A strategy that raises (or misses its optional deadline) contributes an
    empty list; the request itself always completes with a `RecallResponse`.
    The engine owns its executor: call `close()` (or use it as a context
    manager) when done.
    """

    def __init__(
        self,
        registry: StrategyRegistry,
        planner: RecallPlanner,
        fusion: RecallFusion,
        context_factory: UserContextFactory,
        config: EngineConfig | None = None,
    ) -> None:
        self.registry = registry
        self.planner = planner
        self.fusion = fusion
        self.context_factory = context_factory
        self.config = config or EngineConfig()
        self._score_mapper = (
            AdaptiveScoreMapper(self.config.score_mapping)
            if self.config.score_mapping
            else None
        )
        self._executor = ThreadPoolExecutor(
            max_workers=self.config.max_workers,
            thread_name_prefix="recall",
        )

    def recall(self, request: RecallRequest) -> RecallResponse:
        with Timer() as timer:
            context = self.context_factory.create(request)
            plan = self.planner.plan(request, self.registry.available(request.scene))
            channel_results, traces = self._dispatch(plan, context)

            fusion_context = FusionContext(request=request, config=plan.fusion_config)
            fused = self.fusion.fuse(self._fusion_input(channel_results), fusion_context)

        logger.debug(
            "Recall for user %s finished in %.2fms (%d fused)",
            request.user_id,
            timer.elapsed_ms,
            len(fused),
        )
        diagnostics: dict[str, Any] = {}
        if request.diagnostics_requested:
            diagnostics = _diagnostics(plan, traces, fusion_context)
        return RecallResponse(
            fused=fused,
            channel_results=channel_results,
            latency_ms=timer.elapsed_ms,
            diagnostics=diagnostics,
        )

    def close(self) -> None:
        self._executor.shutdown(wait=True)

    def __enter__(self) -> "RecallEngine":
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.close()

    def _dispatch(
        self, plan: RecallPlan, context: UserContext
    ) -> tuple[dict[StrategyId, list[ItemCandidate]], list[StrategyTrace]]:
        submitted: dict[StrategyId, tuple[int, Future[_StrategyOutcome]]] = {}
        for strategy_id, quota in plan.quotas.items():
            if quota <= 0:
                continue
            strategy = self.registry.get(strategy_id)
            future = self._executor.submit(_run_strategy, strategy, context, quota)
            submitted[strategy_id] = (quota, future)

        timeout = self.config.strategy_timeout_seconds
        deadline = time.monotonic() + timeout if timeout is not None else None

        channel_results: dict[StrategyId, list[ItemCandidate]] = {}
        traces: list[StrategyTrace] = []
        for strategy_id, (quota, future) in submitted.items():
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            try:
                items, trace = future.result(timeout=remaining)
            except concurrent.futures.TimeoutError:
                future.cancel()
                logger.warning(
                    "Recall strategy %s timed out after %.2fs", strategy_id.value, timeout
                )
                items = []
                trace = StrategyTrace(
                    strategy=strategy_id,
                    quota=quota,
                    size=0,
                    latency_ms=(timeout or 0.0) * 1000.0,
                    status="timeout",
                    error=f"timed out after {timeout}s",
                )
            channel_results[strategy_id] = items
            traces.append(trace)
        return channel_results, traces

    def _fusion_input(
        self, channel_results: dict[StrategyId, list[ItemCandidate]]
    ) -> dict[StrategyId, list[ItemCandidate]]:
        if self._score_mapper is None:
            return channel_results
        mapper = self._score_mapper
        return {
            strategy_id: [item.with_score(mapper.map(item.score)) for item in items]
            for strategy_id, items in channel_results.items()
        }


def _run_strategy(strategy: RecallStrategy, context: UserContext, quota: int) -> _StrategyOutcome:
    strategy_id = strategy.strategy_id
    with Timer() as timer:
        try:
            items = list(strategy.recall(context, quota))
            error = None
        except Exception as exc:
            items = []
            error = str(exc) or type(exc).__name__

    if error is not None:
        logger.warning("Recall strategy %s failed: %s", strategy_id.value, error)
        status = "failed"
    else:
        logger.info(
            "strategy=%s elapsed=%.2fms quota=%d size=%d",
            strategy_id.value,
            timer.elapsed_ms,
            quota,
            len(items),
        )
        status = "ok"
    trace = StrategyTrace(
        strategy=strategy_id,
        quota=quota,
        size=len(items),
        latency_ms=timer.elapsed_ms,
        status=status,
        error=error,
    )
    return items, trace


def _diagnostics(
    plan: RecallPlan, traces: list[StrategyTrace], fusion_context: FusionContext
) -> dict[str, Any]:
    strategy_traces = []
    for trace in traces:
        payload = asdict(trace)
        payload["strategy"] = trace.strategy.value
        strategy_traces.append(payload)
    return {
        "quotas": {strategy_id.value: quota for strategy_id, quota in plan.quotas.items()},
        "strategy_traces": strategy_traces,
        "failed_strategies": [t.strategy.value for t in traces if t.status == "failed"],
        "timed_out_strategies": [t.strategy.value for t in traces if t.status == "timeout"],
        "contributing_sources": dict(fusion_context.diagnostics.get("contributing_sources", {})),
    }
