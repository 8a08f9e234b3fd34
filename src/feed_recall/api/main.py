"""FastAPI debug surface for recall, search and trace inspection."""

from __future__ import annotations

import logging
import os
from dataclasses import asdict
from datetime import datetime
from typing import Any

from fastapi import FastAPI, HTTPException, Query
from pydantic import BaseModel, Field

from feed_recall.config import EngineConfig, FreshnessConfig
from feed_recall.obs.tracing import RecallTraceStore
from feed_recall.recall.planner import (
    DIVERSITY_FILL_KEY,
    DIVERSITY_KEY,
    DIVERSITY_LIMIT_KEY,
    INTERLEAVE_KEY,
)
from feed_recall.retrieval.document_store import ArticleDocument
from feed_recall.types import ItemCandidate, RecallRequest, RecallResponse, UserInteraction
from feed_recall.wiring import build_in_memory_stack

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def _engine_config() -> EngineConfig:
    timeout = os.getenv("RECALL_STRATEGY_TIMEOUT_SECONDS")
    return EngineConfig(
        max_workers=int(os.getenv("RECALL_MAX_WORKERS", "8")),
        strategy_timeout_seconds=float(timeout) if timeout else None,
    )


def _freshness_config() -> FreshnessConfig:
    return FreshnessConfig(weight=float(os.getenv("RECALL_FRESHNESS_WEIGHT", "0.0")))


class DocumentRequest(BaseModel):
    id: int
    title: str = Field(min_length=1)
    feed_id: int | None = None
    feed_title: str = ""
    category: str = ""
    tags: list[str] = Field(default_factory=list)
    summary: str = ""
    author: str = ""
    body: str = ""
    published_at: datetime | None = None


class InteractionRequest(BaseModel):
    user_id: int
    item_id: int
    duration_seconds: float = Field(default=0.0, ge=0.0)
    weight: float = 1.0
    timestamp: datetime | None = None


class SubscriptionRequest(BaseModel):
    user_id: int
    feed_id: int
    active: bool = True


app = FastAPI(title="Feed Recall", version="0.1.0")

_stack = build_in_memory_stack(
    engine_config=_engine_config(),
    freshness_config=_freshness_config(),
)
_trace_store = RecallTraceStore()


def _candidate(candidate: ItemCandidate) -> dict[str, Any]:
    return {
        "item_id": candidate.item_id,
        "score": candidate.score,
        "source": candidate.source.value,
        "attributes": dict(candidate.attributes),
        "reason": candidate.reason,
    }


def _response(response: RecallResponse, trace_id: str) -> dict[str, Any]:
    return {
        "trace_id": trace_id,
        "fused": [_candidate(candidate) for candidate in response.fused],
        "channel_results": {
            strategy_id.value: [_candidate(candidate) for candidate in items]
            for strategy_id, items in response.channel_results.items()
        },
        "latency_ms": response.latency_ms,
        "diagnostics": response.diagnostics,
    }


@app.get("/health")
def health() -> dict[str, Any]:
    return {
        "status": "ok",
        "strategies": [strategy_id.value for strategy_id in _stack.engine.registry.available()],
        "documents": len(_stack.documents),
        "trace_count": len(_trace_store),
    }


@app.get("/api/recall/candidates")
def recall_candidates(
    user_id: int = Query(alias="userId"),
    scene: str = "home",
    top_k: int = Query(default=50, alias="topK"),
    diversity_key: str | None = Query(default=None, alias="diversityKey"),
    diversity_limit: str | None = Query(default=None, alias="diversityLimit"),
    diversity_fill_overflow: str | None = Query(default=None, alias="diversityFillOverflow"),
    interleave_channels: str | None = Query(default=None, alias="interleaveChannels"),
    debug: bool = False,
) -> dict[str, Any]:
    raw_filters = {
        DIVERSITY_KEY: diversity_key,
        DIVERSITY_LIMIT_KEY: diversity_limit,
        DIVERSITY_FILL_KEY: diversity_fill_overflow,
        INTERLEAVE_KEY: interleave_channels,
    }
    request = RecallRequest(
        user_id=user_id,
        scene=scene,
        top_k=top_k,
        filters={key: value for key, value in raw_filters.items() if value is not None},
        diagnostics_requested=debug,
    )
    response = _stack.engine.recall(request)
    record = _trace_store.create_record(request, response)
    return _response(response, record.trace_id)


@app.get("/api/search")
def search(
    q: str,
    user_id: int | None = Query(default=None, alias="userId"),
    include_global: bool = Query(default=False, alias="includeGlobal"),
    top_k: int = Query(default=20, alias="topK"),
) -> dict[str, Any]:
    try:
        hits = _stack.search.search(user_id, q, include_global=include_global, size=top_k)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {
        "items": [
            {
                "doc_id": hit.doc_id,
                "score": hit.score,
                "source": hit.source,
                "metadata": dict(hit.metadata),
            }
            for hit in hits
        ]
    }


@app.post("/documents")
def index_document(request: DocumentRequest) -> dict[str, Any]:
    document = ArticleDocument(
        doc_id=request.id,
        title=request.title,
        feed_id=request.feed_id,
        feed_title=request.feed_title,
        category=request.category,
        tags=tuple(request.tags),
        summary=request.summary,
        author=request.author,
        body=request.body,
        published_at=request.published_at,
    )
    _stack.index_document(document)
    return {"doc_id": document.doc_id, "documents": len(_stack.documents)}


@app.post("/interactions")
def record_interaction(request: InteractionRequest) -> dict[str, Any]:
    if _stack.documents.get(request.item_id) is None:
        raise HTTPException(status_code=404, detail=f"Unknown item: {request.item_id}")
    interaction = UserInteraction(
        item_id=request.item_id,
        duration_seconds=request.duration_seconds,
        weight=request.weight,
        timestamp=request.timestamp,
    )
    _stack.record_interaction(request.user_id, interaction)
    return {"user_id": request.user_id, "item_id": request.item_id}


@app.post("/subscriptions")
def subscribe(request: SubscriptionRequest) -> dict[str, Any]:
    _stack.subscriptions.subscribe(request.user_id, request.feed_id, active=request.active)
    return {
        "user_id": request.user_id,
        "active_feed_ids": _stack.subscriptions.active_feed_ids(request.user_id),
    }


@app.get("/traces")
def traces(limit: int = 20) -> dict[str, Any]:
    return {"items": [asdict(record) for record in _trace_store.list_recent(limit=limit)]}


@app.get("/traces/{trace_id}")
def trace_detail(trace_id: str) -> dict[str, Any]:
    try:
        record = _trace_store.get(trace_id)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return asdict(record)


@app.get("/metrics")
def metrics() -> dict[str, Any]:
    return _trace_store.summary()
