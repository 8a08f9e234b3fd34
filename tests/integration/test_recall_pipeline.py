import random
from collections.abc import Iterator
from datetime import datetime, timedelta, timezone

import pytest

from feed_recall.config import EngineConfig, FreshnessConfig, StrategyConfig
from feed_recall.retrieval.document_store import ArticleDocument
from feed_recall.types import RecallRequest, StrategyId, UserInteraction
from feed_recall.wiring import InMemoryRecallStack, build_in_memory_stack

NOW = datetime.now(timezone.utc)

ARTICLES = [
    (1, "Tech Weekly", "ai", "Transformers explained for engineers"),
    (2, "Tech Weekly", "ai", "Fine tuning small language models"),
    (3, "Tech Weekly", "web", "Server side rendering with htmx"),
    (4, "Data Digest", "ai", "Evaluating language model retrieval"),
    (5, "Data Digest", "data", "Columnar storage formats compared"),
    (6, "Food Notes", "food", "Sourdough starter troubleshooting"),
    (7, "Food Notes", "food", "Weeknight noodle recipes"),
    (8, "Data Digest", "ai", "Language model agents in production"),
]
FEEDS = {"Tech Weekly": 10, "Data Digest": 20, "Food Notes": 30}


@pytest.fixture()
def stack() -> Iterator[InMemoryRecallStack]:
    stack = build_in_memory_stack(
        strategy_config=StrategyConfig(),
        engine_config=EngineConfig(max_workers=4),
        freshness_config=FreshnessConfig(weight=0.2),
        rng=random.Random(7),
    )
    for offset, (doc_id, feed_title, category, title) in enumerate(ARTICLES):
        stack.index_document(
            ArticleDocument(
                doc_id=doc_id,
                title=title,
                feed_id=FEEDS[feed_title],
                feed_title=feed_title,
                category=category,
                summary=title.lower(),
                published_at=NOW - timedelta(hours=6 * offset),
            )
        )
    for user_id, items in {1: [1, 2], 2: [2, 4, 8], 3: [6, 7]}.items():
        for item_id in items:
            stack.record_interaction(user_id, UserInteraction(item_id=item_id, weight=1.0))
    yield stack
    stack.close()


def test_every_channel_runs_and_fusion_is_consistent(stack: InMemoryRecallStack) -> None:
    response = stack.engine.recall(RecallRequest(user_id=1, top_k=14, diagnostics_requested=True))

    assert set(response.channel_results) == set(StrategyId)
    assert response.channel_results[StrategyId.LATEST]
    assert response.channel_results[StrategyId.U2I]
    assert response.diagnostics["failed_strategies"] == []

    ids = [c.item_id for c in response.fused]
    assert ids
    assert len(ids) == len(set(ids))
    assert len(ids) <= 14
    assert set(response.diagnostics["quotas"].values()) == {2}


def test_history_is_excluded_from_expansion_channels(stack: InMemoryRecallStack) -> None:
    response = stack.engine.recall(RecallRequest(user_id=1, top_k=20))

    for channel in (StrategyId.I2I, StrategyId.U2I2I, StrategyId.U2U):
        assert not {c.item_id for c in response.channel_results[channel]} & {1, 2}


def test_unknown_user_still_gets_latest_items(stack: InMemoryRecallStack) -> None:
    response = stack.engine.recall(RecallRequest(user_id=999, top_k=7))

    assert response.channel_results[StrategyId.U2I] == []
    assert response.channel_results[StrategyId.I2I] == []
    assert response.channel_results[StrategyId.LATEST]
    assert response.fused


def test_diversity_filter_caps_categories(stack: InMemoryRecallStack) -> None:
    request = RecallRequest(
        user_id=2,
        top_k=10,
        filters={"diversityKey": "category", "diversityLimit": "1", "interleaveChannels": "false"},
    )

    response = stack.engine.recall(request)

    categories = [c.attributes.get("category") for c in response.fused]
    assert len(categories) == len(set(categories))


def test_new_interaction_invalidates_cached_channels(stack: InMemoryRecallStack) -> None:
    stack.engine.recall(RecallRequest(user_id=3, top_k=7))
    key = (StrategyId.U2I, 3, 1, ())
    assert stack.cache.get(key) is not None

    stack.record_interaction(3, UserInteraction(item_id=5))

    assert stack.cache.get(key) is None
