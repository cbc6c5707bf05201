"""Decision Engine, action half: deterministic gate ordering and sizing."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

from qloop.afs.reliability import RELIABILITY_THRESHOLD, beta_mean
from qloop.core.config import SizingBounds
from qloop.core.constants import MAX_CONFIDENCE, PHI_INV_2
from qloop.core.events import DECISION, EventBus
from qloop.core.ring_buffer import RingBuffer
from qloop.core.types import Action, Decision, Judgment, Verdict, new_id
from qloop.vel.scorer import RESIDUAL_DIMENSION

logger = logging.getLogger(__name__)

DEFAULT_MIN_CONFIDENCE = PHI_INV_2

GATE_CONFIDENCE = "confidence"
GATE_VERDICT = "verdict"
GATE_RELIABILITY = "reliability"


def action_for_verdict(verdict: Verdict) -> Action:
    match verdict:
        case Verdict.STRONG_BUY | Verdict.BUY:
            return Action.BUY
        case Verdict.STRONG_SELL | Verdict.SELL:
            return Action.SELL
        case Verdict.HOLD:
            return Action.HOLD


class ActionSelector:
    """Applies confidence, verdict and reliability gates in fixed order."""

    def __init__(
        self,
        *,
        bus: EventBus | None = None,
        sizing: SizingBounds | None = None,
        history_size: int = 100,
        reliability_threshold: float = RELIABILITY_THRESHOLD,
    ) -> None:
        self._bus = bus
        self._sizing = sizing or SizingBounds()
        self._reliability_threshold = reliability_threshold
        self._reliability: dict[str, dict[str, int]] | None = None
        self.history: RingBuffer[dict[str, object]] = RingBuffer(history_size)
        self.metrics = {"decisions": 0, "buys": 0, "sells": 0, "holds": 0}

    def set_action_reliability(self, reliability: Mapping[str, Mapping[str, Any]] | None) -> None:
        """Install a reliability snapshot pushed by the learner; ``None`` disables gate 2."""
        if reliability is None:
            self._reliability = None
            return
        self._reliability = {
            str(action): {
                "successes": int(counts.get("successes", 1)),
                "failures": int(counts.get("failures", 1)),
            }
            for action, counts in reliability.items()
            if isinstance(counts, Mapping)
        }

    def action_scores(self) -> dict[str, float] | None:
        if self._reliability is None:
            return None
        return {action: beta_mean(counts) for action, counts in self._reliability.items()}

    def decide(
        self,
        judgment: Judgment,
        *,
        min_confidence: float | None = None,
        max_confidence: float | None = None,
    ) -> Decision:
        """Map one judgment to exactly one decision."""
        floor = DEFAULT_MIN_CONFIDENCE if min_confidence is None else float(min_confidence)
        confidence = min(judgment.confidence, MAX_CONFIDENCE)
        if max_confidence is not None:
            confidence = min(confidence, float(max_confidence))

        action = Action.HOLD
        gate: str | None = None
        reliability_score: float | None = None

        if confidence < floor:
            gate = GATE_CONFIDENCE
        else:
            action = action_for_verdict(judgment.verdict)
            if action is Action.HOLD:
                gate = GATE_VERDICT
            else:
                reliability_score = self._reliability_score(action)
                if reliability_score is not None and reliability_score < self._reliability_threshold:
                    action = Action.HOLD
                    gate = GATE_RELIABILITY

        size = 0.0 if action is Action.HOLD else self._position_size(confidence, judgment.q_score)
        opportunity = judgment.opportunity
        decision = Decision(
            decision_id=new_id("dec"),
            judgment_id=judgment.judgment_id,
            timestamp=datetime.now(UTC),
            action=action,
            confidence=confidence,
            verdict=judgment.verdict,
            q_score=judgment.q_score,
            size=size,
            reason=self._reason(judgment, action, confidence, floor, gate, reliability_score),
            token=opportunity.token if opportunity is not None else "",
            venue_id=opportunity.venue_id if opportunity is not None else "",
            gate=gate,
        )

        self._count(action)
        self.history.append(
            {
                "decision_id": decision.decision_id,
                "judgment_id": decision.judgment_id,
                "action": str(action),
                "confidence": confidence,
                "size": size,
                "gate": gate,
            }
        )
        logger.info(
            "decision_made decision_id=%s action=%s confidence=%.3f size=%s gate=%s",
            decision.decision_id,
            action,
            confidence,
            size,
            gate,
        )
        if self._bus is not None:
            self._bus.emit(DECISION, decision)
        return decision

    def _reliability_score(self, action: Action) -> float | None:
        if self._reliability is None:
            return None
        counts = self._reliability.get(str(action))
        if counts is None:
            return None
        return beta_mean(counts)

    def _position_size(self, confidence: float, q_score: int) -> float:
        bounds = self._sizing
        scale = (confidence / MAX_CONFIDENCE) * (q_score / 100)
        size = bounds.min_size + (bounds.max_size - bounds.min_size) * scale
        return round(size, bounds.precision)

    def _reason(
        self,
        judgment: Judgment,
        action: Action,
        confidence: float,
        floor: float,
        gate: str | None,
        reliability_score: float | None,
    ) -> str:
        if gate == GATE_CONFIDENCE:
            return f"Confidence too low ({confidence * 100:.1f}% < {floor * 100:.1f}%)"
        if gate == GATE_VERDICT:
            return f"Q-Score neutral ({judgment.q_score}/100, verdict {judgment.verdict})"
        if gate == GATE_RELIABILITY:
            demoted = action_for_verdict(judgment.verdict)
            return (
                f"{demoted} demoted: action reliability {reliability_score or 0.0:.3f} "
                f"below {self._reliability_threshold:.3f}"
            )

        ranked = sorted(
            (
                (dimension, score)
                for dimension, score in judgment.scores.items()
                if dimension != str(RESIDUAL_DIMENSION)
            ),
            key=lambda pair: pair[1],
            reverse=True,
        )
        top3 = ", ".join(dimension for dimension, _ in ranked[:3])
        return (
            f"{action} signal: Q={judgment.q_score}, conf={confidence * 100:.1f}%. "
            f"Top factors: {top3}"
        )

    def _count(self, action: Action) -> None:
        self.metrics["decisions"] += 1
        match action:
            case Action.BUY:
                self.metrics["buys"] += 1
            case Action.SELL:
                self.metrics["sells"] += 1
            case Action.HOLD:
                self.metrics["holds"] += 1
