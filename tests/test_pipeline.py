from pathlib import Path

import pytest

from qloop.ao.orchestrator import PaperExecutor
from qloop.core.config import Settings
from qloop.core.constants import MAX_CONFIDENCE, PHI_INV_2
from qloop.core.pipeline import JudgmentLoop
from qloop.core.types import Action, Decision, Dimension, OutcomeType, Verdict
from qloop.sm.manager import StateManager

STEP = PHI_INV_2 * 0.1

CALM_LONG = {
    "id": "opp-e2e",
    "signal": {"type": "price_move", "data": {}},
    "direction": "LONG",
    "magnitude": 0.08,
    "token": "SOL",
    "venue_id": "paper",
}


def test_judge_decide_learn_round_trip() -> None:
    loop = JudgmentLoop()

    judgment = loop.judge(CALM_LONG)
    assert judgment.q_score == 52
    assert judgment.verdict is Verdict.HOLD
    assert judgment.confidence <= MAX_CONFIDENCE

    decision = loop.decide(judgment)
    assert decision.action is Action.HOLD
    assert decision.token == "SOL"

    loop.record_action(result_id="res-e2e", decision=decision, judgment=judgment)
    outcome = loop.evaluate_outcome({"id": "res-e2e", "success": False, "pnl": -0.05})

    assert outcome.outcome_type is OutcomeType.LOSS
    lesson = loop.lessons()[-1]
    assert {item.dimension for item in lesson.contributing_dimensions} == {
        "authenticity",
        "volatility",
    }
    # lesson subscriber pushed the new adjustments into the scorer
    assert loop.scorer.adjustments()["authenticity"] == pytest.approx(-STEP)
    assert loop.evaluator.action_reliability()["HOLD"] == {"successes": 1, "failures": 2}

    rejudged = loop.judge(CALM_LONG)
    assert rejudged.scores["authenticity"] == pytest.approx(0.7 - STEP)


def test_process_runs_one_paper_turn() -> None:
    loop = JudgmentLoop()
    seen: list[str] = []
    for event_name in ("judgment", "decision", "outcome"):
        loop.bus.subscribe(event_name, lambda payload, name=event_name: seen.append(name))

    judgment, decision, outcome = loop.process(CALM_LONG, PaperExecutor(seed=1))

    assert decision.judgment_id == judgment.judgment_id
    assert decision.action is Action.HOLD
    assert outcome.outcome_type is OutcomeType.BREAKEVEN
    assert seen == ["judgment", "decision", "outcome"]
    assert loop.evaluator.pending_count() == 0


def test_paper_executor_is_seeded() -> None:
    loop = JudgmentLoop()
    decision = loop.decide(loop.judge(CALM_LONG), min_confidence=0.0)
    buy = Decision(
        decision_id=decision.decision_id,
        judgment_id=decision.judgment_id,
        timestamp=decision.timestamp,
        action=Action.BUY,
        confidence=decision.confidence,
        verdict=Verdict.BUY,
        q_score=65,
        size=0.05,
        reason="paper",
    )

    first = PaperExecutor(seed=3).execute(buy)
    second = PaperExecutor(seed=3).execute(buy)

    assert first.pnl == second.pnl
    assert -0.04 <= first.pnl <= 0.06
    assert first.simulated is True
    assert first.result_id != second.result_id
    assert PaperExecutor().execute(decision).pnl == 0.0


def test_decide_uses_adaptive_threshold() -> None:
    loop = JudgmentLoop()
    status = loop.status()

    assert status["learner"]["adaptive_threshold"] == PHI_INV_2
    assert status["judgments"] == {"judgments": 0, "overrides": 0}


def test_learning_survives_restart_with_sqlite(tmp_path: Path) -> None:
    settings = Settings(db_url=f"sqlite:///{tmp_path / 'loop.db'}")
    loop = JudgmentLoop.from_settings(settings)
    judgment = loop.judge(CALM_LONG)
    decision = loop.decide(judgment)
    loop.record_action(result_id="res-1", decision=decision, judgment=judgment)
    loop.evaluate_outcome({"id": "res-1", "pnl": -0.05})

    restarted = JudgmentLoop.from_settings(settings)

    assert restarted.scorer.adjustments()["authenticity"] == pytest.approx(-STEP)
    assert restarted.evaluator.metrics["losses"] == 1
    signals = StateManager(settings.db_url).get_recent_signals(10)
    assert len(signals) == 1
    assert signals[0]["outcome"]["reason"] == "loss"


def test_learning_survives_restart_with_file_backend(tmp_path: Path) -> None:
    settings = Settings(
        db_url=f"sqlite:///{tmp_path / 'loop.db'}",
        state_backend="file",
        state_file=tmp_path / "learner" / "state.json",
    )
    loop = JudgmentLoop.from_settings(settings)
    judgment = loop.judge(CALM_LONG)
    loop.record_action(result_id="res-1", decision=loop.decide(judgment), judgment=judgment)
    loop.evaluate_outcome({"id": "res-1", "pnl": -0.05})

    assert settings.state_file.exists()
    restarted = JudgmentLoop.from_settings(settings)
    assert str(Dimension.VOLATILITY) in restarted.scorer.adjustments()


def test_small_paper_losses_teach_nothing() -> None:
    loop = JudgmentLoop()
    judgment = loop.judge(CALM_LONG)
    buy = Decision(
        decision_id="dec-paper",
        judgment_id=judgment.judgment_id,
        timestamp=judgment.timestamp,
        action=Action.BUY,
        confidence=0.5,
        verdict=Verdict.BUY,
        q_score=65,
        size=0.05,
        reason="paper",
    )
    executor = PaperExecutor(seed=11)
    significant = 0

    for _ in range(200):
        result = executor.execute(buy)
        assert result.success is True
        significant += abs(result.pnl) > 0.02
        loop.record_action(result_id=result.result_id, decision=buy, judgment=judgment)
        loop.evaluate_outcome(result)

    assert loop.evaluator.metrics["lessons_learned"] == significant
    assert len(loop.lessons(200)) == significant


def test_judge_survives_out_of_range_timestamp() -> None:
    judgment = JudgmentLoop().judge({"id": "opp-far", "magnitude": 0.1, "timestamp": 1e20})

    assert judgment.opportunity is not None
    assert judgment.opportunity.timestamp is None
    assert judgment.scores["timing"] == 0.5


def test_adaptive_threshold_is_exposed_on_the_loop() -> None:
    loop = JudgmentLoop()

    assert loop.adaptive_threshold() == PHI_INV_2
    assert loop.adaptive_threshold() == loop.status()["learner"]["adaptive_threshold"]
