"""Learning signal records handed to an optional external signal store."""

from __future__ import annotations

from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any, Protocol

from qloop.core.types import ActionRecord, Outcome, OutcomeType, new_id

SIGNAL_SOURCE = "agent_execution"


class SignalStore(Protocol):
    def record_signal(self, signal: Mapping[str, Any]) -> None: ...


def _feedback_type(outcome_type: OutcomeType) -> str:
    if outcome_type is OutcomeType.PROFITABLE:
        return "POSITIVE"
    if outcome_type is OutcomeType.LOSS:
        return "NEGATIVE"
    return "NEUTRAL"


def build_learning_signal(record: ActionRecord, outcome: Outcome) -> dict[str, Any]:
    """Describe one evaluated outcome as a reward-labelled learning sample."""
    judgment = record.judgment
    opportunity = record.opportunity or (judgment.opportunity if judgment else None)
    actual_score = 75 if outcome.pnl > 0 else 25 if outcome.pnl < 0 else 50
    score_delta = ((75 if outcome.pnl > 0 else 25) - judgment.q_score) if judgment else 0

    return {
        "signal_id": new_id("sig"),
        "timestamp": datetime.now(UTC).isoformat(),
        "source": SIGNAL_SOURCE,
        "session_id": record.record_id,
        "input": {
            "item_type": "opportunity",
            "item_id": opportunity.opportunity_id if opportunity else None,
            "token": opportunity.token if opportunity else None,
            "task_type": "trade_evaluation",
        },
        "judgment": (
            {
                "judgment_id": judgment.judgment_id,
                "q_score": judgment.q_score,
                "confidence": judgment.confidence,
                "verdict": str(judgment.verdict),
            }
            if judgment
            else None
        ),
        "outcome": {
            "status": "CORRECT" if outcome.success else "INCORRECT",
            "actual_score": actual_score,
            "reason": str(outcome.outcome_type),
        },
        "learning": {
            "reward": outcome.pnl,
            "score_delta": score_delta,
            "feedback_type": _feedback_type(outcome.outcome_type),
            "can_pair": outcome.outcome_type is not OutcomeType.BREAKEVEN,
            "is_chosen": outcome.outcome_type is OutcomeType.PROFITABLE,
        },
    }
