import pytest

from qloop.core.constants import MAX_CONFIDENCE, MIN_CONFIDENCE
from qloop.core.events import JUDGMENT, EventBus
from qloop.core.types import Opportunity, Verdict
from qloop.de.judgment import (
    JudgmentEngine,
    aggregate_q_score,
    confidence_from_scores,
    verdict_from_q_score,
)
from qloop.vel.scorer import DimensionScorer


def _opportunity(magnitude: float = 0.08, direction: str = "LONG") -> Opportunity:
    return Opportunity.from_payload(
        {"id": "opp-7", "direction": direction, "magnitude": magnitude, "token": "SOL"}
    )


@pytest.mark.parametrize(
    ("q_score", "verdict"),
    [
        (100, Verdict.STRONG_BUY),
        (75, Verdict.STRONG_BUY),
        (74, Verdict.BUY),
        (60, Verdict.BUY),
        (59, Verdict.HOLD),
        (40, Verdict.HOLD),
        (39, Verdict.SELL),
        (25, Verdict.SELL),
        (24, Verdict.STRONG_SELL),
        (0, Verdict.STRONG_SELL),
    ],
)
def test_verdict_bands_are_contiguous(q_score: int, verdict: Verdict) -> None:
    assert verdict_from_q_score(q_score) is verdict


def test_aggregate_q_score_is_weighted_mean() -> None:
    assert aggregate_q_score({"a": 1.0, "b": 0.0}, {"a": 3.0, "b": 1.0}) == 75
    assert aggregate_q_score({}, {}) == 50
    assert aggregate_q_score({"a": 4.0}, {"a": 1.0}) == 100


def test_confidence_stays_within_bounds() -> None:
    assert confidence_from_scores({"a": 0.5, "b": 0.5}) == MAX_CONFIDENCE
    assert confidence_from_scores({"a": 0.0, "b": 1.0}) == pytest.approx(0.5)
    assert confidence_from_scores({"a": 0.7}) == MAX_CONFIDENCE
    assert MIN_CONFIDENCE <= confidence_from_scores({"a": 0.0, "b": 1.0, "c": 0.0}) <= MAX_CONFIDENCE


def test_calm_long_move_is_neutral() -> None:
    engine = JudgmentEngine(DimensionScorer())
    judgment = engine.judge(_opportunity())

    assert judgment.q_score == 52
    assert judgment.verdict is Verdict.HOLD
    assert judgment.override is None
    assert judgment.confidence == pytest.approx(MAX_CONFIDENCE)
    assert judgment.opportunity_id == "opp-7"
    assert len(judgment.scores) == 25


def test_safety_floor_forces_strong_sell() -> None:
    engine = JudgmentEngine(DimensionScorer({"contract": -0.25}))
    judgment = engine.judge(_opportunity())

    assert judgment.verdict is Verdict.STRONG_SELL
    assert judgment.override == "safety_floor"
    assert engine.metrics == {"judgments": 1, "overrides": 1}


def test_exit_liquidity_floor_forces_hold() -> None:
    engine = JudgmentEngine(DimensionScorer({"liquidity": -0.45}))
    judgment = engine.judge(_opportunity())

    assert judgment.verdict is Verdict.HOLD
    assert judgment.override == "exit_liquidity_floor"


def test_safety_floor_takes_priority_over_liquidity() -> None:
    engine = JudgmentEngine(DimensionScorer({"contract": -0.3, "liquidity": -0.5}))
    judgment = engine.judge(_opportunity())

    assert judgment.verdict is Verdict.STRONG_SELL
    assert judgment.override == "safety_floor"


def test_q_score_bounded_under_extreme_adjustments() -> None:
    engine = JudgmentEngine(DimensionScorer({"contract": 5.0, "liquidity": 5.0, "trend": -5.0}))
    judgment = engine.judge(_opportunity())

    assert 0 <= judgment.q_score <= 100
    assert all(0.0 <= score <= 1.0 for score in judgment.scores.values())


def test_history_is_bounded_and_emits_events() -> None:
    bus = EventBus()
    received: list[object] = []
    bus.subscribe(JUDGMENT, received.append)
    engine = JudgmentEngine(DimensionScorer(), bus=bus, history_size=3)

    for _ in range(5):
        engine.judge(_opportunity())

    assert len(engine.history) == 3
    assert len(engine.recent(2)) == 2
    assert len(received) == 5
    assert engine.recent(1)[0]["verdict"] == "HOLD"
