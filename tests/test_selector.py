from datetime import UTC, datetime

import pytest

from qloop.core.config import SizingBounds
from qloop.core.constants import MAX_CONFIDENCE
from qloop.core.events import DECISION, EventBus
from qloop.core.types import Action, Judgment, Verdict
from qloop.de.selector import (
    GATE_CONFIDENCE,
    GATE_RELIABILITY,
    GATE_VERDICT,
    ActionSelector,
    action_for_verdict,
)


def _judgment(verdict: Verdict, confidence: float = 0.5, q_score: int = 70) -> Judgment:
    return Judgment(
        judgment_id="jdg-1",
        opportunity_id="opp-1",
        timestamp=datetime.now(UTC),
        scores={"contract": 0.8, "liquidity": 0.7, "trend": 0.65, "the_unnameable": 0.9},
        q_score=q_score,
        verdict=verdict,
        confidence=confidence,
    )


def test_verdicts_map_to_actions() -> None:
    assert action_for_verdict(Verdict.STRONG_BUY) is Action.BUY
    assert action_for_verdict(Verdict.BUY) is Action.BUY
    assert action_for_verdict(Verdict.HOLD) is Action.HOLD
    assert action_for_verdict(Verdict.SELL) is Action.SELL
    assert action_for_verdict(Verdict.STRONG_SELL) is Action.SELL


def test_low_confidence_holds_before_anything_else() -> None:
    decision = ActionSelector().decide(_judgment(Verdict.STRONG_BUY, confidence=0.2))

    assert decision.action is Action.HOLD
    assert decision.gate == GATE_CONFIDENCE
    assert decision.size == 0.0
    assert decision.reason.startswith("Confidence too low")


def test_neutral_verdict_holds() -> None:
    decision = ActionSelector().decide(_judgment(Verdict.HOLD, q_score=50))

    assert decision.action is Action.HOLD
    assert decision.gate == GATE_VERDICT


def test_unreliable_action_is_demoted() -> None:
    selector = ActionSelector()
    selector.set_action_reliability({"BUY": {"successes": 2, "failures": 8}})

    decision = selector.decide(_judgment(Verdict.BUY))

    assert decision.action is Action.HOLD
    assert decision.gate == GATE_RELIABILITY
    assert "demoted" in decision.reason


def test_reliable_action_passes_and_is_sized() -> None:
    selector = ActionSelector()
    selector.set_action_reliability({"BUY": {"successes": 11, "failures": 9}})

    decision = selector.decide(_judgment(Verdict.BUY))

    assert decision.action is Action.BUY
    assert decision.gate is None
    assert decision.size == 0.061
    assert decision.reason.startswith("BUY signal")
    assert "the_unnameable" not in decision.reason


def test_reliability_gate_disabled_without_snapshot() -> None:
    selector = ActionSelector()
    selector.set_action_reliability(None)

    decision = selector.decide(_judgment(Verdict.STRONG_SELL))

    assert decision.action is Action.SELL
    assert selector.action_scores() is None


def test_confidence_is_capped() -> None:
    selector = ActionSelector()

    capped = selector.decide(_judgment(Verdict.BUY, confidence=0.95))
    assert capped.confidence == MAX_CONFIDENCE

    lowered = selector.decide(_judgment(Verdict.BUY, confidence=0.5), max_confidence=0.3)
    assert lowered.confidence == 0.3
    assert lowered.action is Action.HOLD
    assert lowered.gate == GATE_CONFIDENCE


def test_min_confidence_override() -> None:
    selector = ActionSelector()

    assert selector.decide(_judgment(Verdict.BUY, confidence=0.3)).action is Action.HOLD
    assert selector.decide(_judgment(Verdict.BUY, confidence=0.3), min_confidence=0.25).action is Action.BUY


@pytest.mark.parametrize(("confidence", "q_score"), [(MAX_CONFIDENCE, 100), (0.4, 60), (0.39, 0)])
def test_position_size_within_bounds(confidence: float, q_score: int) -> None:
    bounds = SizingBounds()
    decision = ActionSelector(sizing=bounds).decide(
        _judgment(Verdict.SELL, confidence=confidence, q_score=q_score)
    )

    assert decision.action is Action.SELL
    assert bounds.min_size <= decision.size <= bounds.max_size
    assert decision.size == round(decision.size, 3)


def test_metrics_history_and_events() -> None:
    bus = EventBus()
    received: list[object] = []
    bus.subscribe(DECISION, received.append)
    selector = ActionSelector(bus=bus, history_size=2)

    selector.decide(_judgment(Verdict.BUY))
    selector.decide(_judgment(Verdict.SELL))
    selector.decide(_judgment(Verdict.HOLD))

    assert selector.metrics == {"decisions": 3, "buys": 1, "sells": 1, "holds": 1}
    assert len(selector.history) == 2
    assert len(received) == 3
