from feed_recall.config import PlannerConfig
from feed_recall.recall.planner import (
    RecallPlanner,
    allocate_quotas,
    extract_diversity,
    parse_bool,
    parse_int,
)
from feed_recall.types import RecallRequest, StrategyId

A, B, C = StrategyId.I2I, StrategyId.U2I, StrategyId.U2I2I


def test_remainder_goes_to_earliest_strategies() -> None:
    plan = RecallPlanner().plan(RecallRequest(user_id=1, top_k=10), [A, B, C])

    assert dict(plan.quotas) == {A: 4, B: 3, C: 3}
    assert plan.fusion_config.top_k == 10
    assert plan.fusion_config.deduplicate
    assert plan.fusion_config.interleave_channels


def test_every_strategy_gets_at_least_one_slot() -> None:
    quotas = allocate_quotas([A, B, C], 2)

    assert quotas == {A: 1, B: 1, C: 1}


def test_empty_strategy_set_yields_empty_plan() -> None:
    plan = RecallPlanner().plan(RecallRequest(user_id=1, top_k=7), [])

    assert dict(plan.quotas) == {}
    assert plan.fusion_config.top_k == 7
    assert plan.fusion_config.deduplicate
    assert not plan.fusion_config.diversity.enabled


def test_filters_drive_interleave_and_diversity() -> None:
    request = RecallRequest(
        user_id=1,
        top_k=5,
        filters={
            "interleaveChannels": "false",
            "diversityKey": "author",
            "diversityLimit": "2",
            "diversityFillOverflow": "yes",
        },
    )

    config = RecallPlanner().plan(request, [A]).fusion_config

    assert not config.interleave_channels
    assert config.diversity.enabled
    assert config.diversity.attribute_key == "author"
    assert config.diversity.max_per_attribute == 2
    assert config.diversity.fill_overflow


def test_malformed_filters_fall_back_to_defaults() -> None:
    diversity = extract_diversity(
        {"diversityKey": "author", "diversityLimit": "lots", "diversityFillOverflow": object()}
    )

    assert diversity.enabled
    assert diversity.max_per_attribute == 0
    assert not diversity.fill_overflow
    assert not extract_diversity({"diversityKey": "   "}).enabled


def test_tolerant_parsers() -> None:
    assert parse_bool(True)
    assert parse_bool(1)
    assert parse_bool(" TRUE ")
    assert not parse_bool("nope")
    assert not parse_bool(None)
    assert parse_int("3") == 3
    assert parse_int("3.9") == 3
    assert parse_int(4.2) == 4
    assert parse_int("") == 0
    assert parse_int(None) == 0


def test_channel_weights_from_config_and_request() -> None:
    planner = RecallPlanner(PlannerConfig(channel_weights={A: 0.5}))
    request = RecallRequest(
        user_id=1,
        top_k=4,
        filters={"channelWeights": {"u2i": "2.0", "bogus": 3, "U2I2I": "heavy"}},
    )

    config = planner.plan(request, [A, B, C]).fusion_config

    assert config.weight_of(A) == 0.5
    assert config.weight_of(B) == 2.0
    assert config.weight_of(C) == 1.0
