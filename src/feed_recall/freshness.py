"""Exponential freshness decay shared by fusion and hybrid retrieval.

freshness = exp(-lambda * age_hours), lambda = ln(2) / half_life_hours, so an
item exactly one half-life old scores 0.5. Items published after the reference
time score 1.0.
"""

from __future__ import annotations

import math
from datetime import datetime, timezone

MIN_DECAY_RATE = 1e-6


def decay_rate(half_life_hours: float) -> float:
    if half_life_hours <= 0 or math.isnan(half_life_hours):
        return MIN_DECAY_RATE
    return max(math.log(2) / half_life_hours, MIN_DECAY_RATE)


def hours_between(published_at: datetime, reference: datetime) -> float:
    return max(0.0, (_aware(reference) - _aware(published_at)).total_seconds() / 3600.0)


def freshness_score(
    published_at: datetime,
    reference: datetime,
    half_life_hours: float,
) -> float:
    score = math.exp(-decay_rate(half_life_hours) * hours_between(published_at, reference))
    if math.isnan(score) or math.isinf(score):
        return 0.0
    return min(1.0, max(0.0, score))


def blend(raw_score: float, freshness: float, weight: float) -> float:
    return raw_score * (1.0 - weight) + freshness * weight


def _aware(value: datetime) -> datetime:
    # Naive datetimes are treated as UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
