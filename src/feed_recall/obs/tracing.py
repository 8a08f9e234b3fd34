"""Request timing and in-memory recall traces."""

from __future__ import annotations

import threading
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone

from feed_recall.types import RecallRequest, RecallResponse


@dataclass(slots=True)
class RecallTraceRecord:
    trace_id: str
    timestamp_utc: str
    user_id: int
    scene: str
    top_k: int
    channel_sizes: dict[str, int]
    fused_count: int
    latency_ms: float
    failed_strategies: list[str] = field(default_factory=list)


class RecallTraceStore:
    """In-memory trace storage backing the debug API's observability views."""

    def __init__(self, *, max_records: int = 1000) -> None:
        self.max_records = max_records
        self._records: dict[str, RecallTraceRecord] = {}
        self._lock = threading.Lock()

    def create_record(self, request: RecallRequest, response: RecallResponse) -> RecallTraceRecord:
        record = RecallTraceRecord(
            trace_id=str(uuid.uuid4()),
            timestamp_utc=datetime.now(timezone.utc).isoformat(),
            user_id=request.user_id,
            scene=request.scene,
            top_k=request.top_k,
            channel_sizes={
                strategy_id.value: len(items)
                for strategy_id, items in response.channel_results.items()
            },
            fused_count=len(response.fused),
            latency_ms=response.latency_ms,
            failed_strategies=list(response.diagnostics.get("failed_strategies", [])),
        )
        with self._lock:
            self._records[record.trace_id] = record
            while len(self._records) > self.max_records:
                del self._records[next(iter(self._records))]
        return record

    def get(self, trace_id: str) -> RecallTraceRecord:
        with self._lock:
            record = self._records.get(trace_id)
        if record is None:
            raise KeyError(f"Trace not found: {trace_id}")
        return record

    def list_recent(self, limit: int = 20) -> list[RecallTraceRecord]:
        if limit <= 0:
            return []
        with self._lock:
            return list(self._records.values())[-limit:]

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def summary(self) -> dict[str, float | int]:
        """Aggregate recall metrics for dashboard display."""
        with self._lock:
            records = list(self._records.values())
        total = len(records)
        if total == 0:
            return {
                "total_requests": 0,
                "avg_latency_ms": 0.0,
                "p95_latency_ms": 0.0,
                "avg_fused_count": 0.0,
                "empty_response_rate": 0.0,
            }

        latencies = sorted(record.latency_ms for record in records)
        p95_index = max(0, int((len(latencies) * 0.95) - 1))
        empty = sum(1 for record in records if record.fused_count == 0)
        return {
            "total_requests": total,
            "avg_latency_ms": sum(latencies) / total,
            "p95_latency_ms": latencies[p95_index],
            "avg_fused_count": sum(record.fused_count for record in records) / total,
            "empty_response_rate": empty / total,
        }


class Timer:
    """Context timer used around strategy calls and whole requests."""

    def __init__(self) -> None:
        self._start = 0.0
        self.elapsed_ms = 0.0

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.elapsed_ms = (time.perf_counter() - self._start) * 1000.0
