from datetime import datetime, timedelta, timezone

import pytest

from feed_recall.freshness import MIN_DECAY_RATE, blend, decay_rate, freshness_score


def test_one_half_life_scores_one_half() -> None:
    now = datetime(2024, 5, 1, 12, tzinfo=timezone.utc)

    assert freshness_score(now - timedelta(hours=48), now, 48) == pytest.approx(0.5)
    assert freshness_score(now - timedelta(hours=96), now, 48) == pytest.approx(0.25)


def test_future_publish_time_is_fully_fresh() -> None:
    now = datetime(2024, 5, 1, tzinfo=timezone.utc)

    assert freshness_score(now + timedelta(hours=5), now, 48) == 1.0


def test_naive_datetimes_are_utc() -> None:
    now = datetime(2024, 5, 1, 12, tzinfo=timezone.utc)

    assert freshness_score(datetime(2024, 4, 29, 12), now, 48) == pytest.approx(0.5)


def test_decay_rate_is_floored() -> None:
    assert decay_rate(0) == MIN_DECAY_RATE
    assert decay_rate(1e12) == MIN_DECAY_RATE


def test_blend() -> None:
    assert blend(0.8, 0.5, 0.3) == pytest.approx(0.71)
    assert blend(0.8, 0.5, 0.0) == pytest.approx(0.8)
