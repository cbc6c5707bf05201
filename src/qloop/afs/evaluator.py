"""Adaptive Feedback System: outcome classification, lessons and relearning."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

from qloop.afs.reliability import action_scores, update_reliability
from qloop.afs.signals import SignalStore, build_learning_signal
from qloop.core.config import LearnerConfig
from qloop.core.constants import PHI_INV_2, PHI_INV_3
from qloop.core.events import LESSON, OUTCOME, EventBus
from qloop.core.ring_buffer import BoundedOrderedMap, RingBuffer
from qloop.core.types import (
    Action,
    ActionRecord,
    ContributingDimension,
    Contribution,
    Decision,
    ExecutionResult,
    Judgment,
    Lesson,
    Opportunity,
    Outcome,
    OutcomeType,
    ReliabilityCounts,
    new_id,
)
from qloop.sm.learner_store import LearnerState, LearnerStateStore

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD = PHI_INV_2
CAUTIOUS_THRESHOLD = PHI_INV_2
AGGRESSIVE_THRESHOLD = PHI_INV_3


def classify_pnl(pnl: float, epsilon: float, *, counterfactual: bool = False) -> OutcomeType:
    """Symmetric classification; counterfactual results describe a skipped action."""
    if pnl > epsilon:
        return OutcomeType.MISSED_OPPORTUNITY if counterfactual else OutcomeType.PROFITABLE
    if pnl < -epsilon:
        return OutcomeType.AVOIDED_LOSS if counterfactual else OutcomeType.LOSS
    return OutcomeType.BREAKEVEN


def interpolate_threshold(win_rate: float) -> float:
    """Cautious at 0% wins, sliding toward aggressive as the win rate rises."""
    threshold = CAUTIOUS_THRESHOLD - win_rate * (CAUTIOUS_THRESHOLD - AGGRESSIVE_THRESHOLD)
    return max(AGGRESSIVE_THRESHOLD, min(CAUTIOUS_THRESHOLD, threshold))


class OutcomeEvaluator:
    """Closes the loop: classify results, extract lessons, update self-adjustment state."""

    def __init__(
        self,
        store: LearnerStateStore | None = None,
        *,
        config: LearnerConfig | None = None,
        bus: EventBus | None = None,
        signal_store: SignalStore | None = None,
    ) -> None:
        self.config = config or LearnerConfig()
        self._store = store
        self._bus = bus
        self._signal_store = signal_store
        self._pending: BoundedOrderedMap[ActionRecord] = BoundedOrderedMap(
            self.config.pending_action_capacity
        )
        self._lessons: RingBuffer[Lesson] = RingBuffer(self.config.lesson_history_size)

        restored = store.load() if store is not None else LearnerState()
        self._adjustments: dict[str, float] = dict(restored.dimension_adjustments)
        self._reliability: dict[str, ReliabilityCounts] = {
            action: {"successes": counts["successes"], "failures": counts["failures"]}
            for action, counts in restored.action_reliability.items()
        }
        self.metrics: dict[str, Any] = {
            "actions_recorded": 0,
            "outcomes_evaluated": 0,
            "lessons_learned": restored.metrics["lessons_learned"],
            "wins": restored.metrics["wins"],
            "losses": restored.metrics["losses"],
            "win_rate": restored.metrics["win_rate"],
            "total_pnl": restored.metrics["total_pnl"],
            "missed": 0,
            "avoided": 0,
            "persist_failures": 0,
        }

    def record_action(
        self,
        *,
        result_id: str,
        decision: Decision,
        judgment: Judgment | None = None,
        opportunity: Opportunity | None = None,
    ) -> ActionRecord:
        """Park a decision until the execution result with ``result_id`` comes back."""
        record = ActionRecord(
            record_id=new_id("rec"),
            result_id=result_id,
            opportunity=opportunity or (judgment.opportunity if judgment else None),
            judgment=judgment,
            decision=decision,
        )
        evicted = self._pending.put(result_id, record)
        if evicted is not None:
            logger.info("pending_action_evicted result_id=%s", evicted)
        self.metrics["actions_recorded"] += 1
        logger.debug(
            "action_recorded record_id=%s result_id=%s action=%s",
            record.record_id,
            result_id,
            decision.action,
        )
        return record

    def evaluate_outcome(self, result: ExecutionResult | Mapping[str, Any]) -> Outcome:
        """Classify a realised result and relearn from it; always returns an outcome."""
        if not isinstance(result, ExecutionResult):
            result = ExecutionResult.from_payload(result)
        self.metrics["outcomes_evaluated"] += 1

        record = self._pending.pop(result.result_id)
        if record is None:
            record = ActionRecord(record_id=new_id("eval"), result_id=result.result_id)

        outcome_type = classify_pnl(
            result.pnl,
            self.config.outcome_epsilon,
            counterfactual=result.counterfactual,
        )
        self._update_metrics(outcome_type, result)

        outcome = Outcome(
            outcome_id=new_id("out"),
            record_id=record.record_id,
            timestamp=datetime.now(UTC),
            outcome_type=outcome_type,
            pnl=result.pnl,
            pnl_percent=result.pnl * 100,
            success=result.success,
        )
        record.outcome = outcome

        action = self._settled_action(record, result)
        if action is not None:
            update_reliability(self._reliability, action, outcome_type)

        lesson = self._extract_lesson(record, outcome, result)
        if lesson is not None:
            self._record_lesson(lesson)
            if self._bus is not None:
                self._bus.emit(LESSON, lesson)

        if self.config.persist_signals and self._signal_store is not None:
            self._persist_signal(build_learning_signal(record, outcome))

        logger.info(
            "outcome_evaluated outcome_type=%s pnl=%.2f%% win_rate=%.1f%%",
            outcome_type,
            outcome.pnl_percent,
            self.metrics["win_rate"] * 100,
        )
        if self._bus is not None:
            self._bus.emit(OUTCOME, outcome)
        return outcome

    def _update_metrics(self, outcome_type: OutcomeType, result: ExecutionResult) -> None:
        match outcome_type:
            case OutcomeType.PROFITABLE:
                self.metrics["wins"] += 1
            case OutcomeType.LOSS:
                self.metrics["losses"] += 1
            case OutcomeType.MISSED_OPPORTUNITY:
                self.metrics["missed"] += 1
            case OutcomeType.AVOIDED_LOSS:
                self.metrics["avoided"] += 1
            case OutcomeType.BREAKEVEN:
                pass

        if not result.counterfactual:
            self.metrics["total_pnl"] += result.pnl
        decided = self.metrics["wins"] + self.metrics["losses"]
        self.metrics["win_rate"] = self.metrics["wins"] / decided if decided else 0.0

    @staticmethod
    def _settled_action(record: ActionRecord, result: ExecutionResult) -> Action | None:
        # A counterfactual result always grades the decision to stand aside.
        if result.counterfactual:
            return Action.HOLD
        if record.decision is None:
            return None
        return record.decision.action

    def _extract_lesson(
        self,
        record: ActionRecord,
        outcome: Outcome,
        result: ExecutionResult,
    ) -> Lesson | None:
        judgment = record.judgment
        if judgment is None:
            return None

        significant = abs(outcome.pnl) > self.config.significance_threshold or not result.success
        if not significant:
            return None

        contributors = self.find_contributing_dimensions(judgment.scores, outcome.outcome_type)
        action = record.decision.action if record.decision is not None else Action.HOLD
        return Lesson(
            lesson_id=new_id("les"),
            timestamp=datetime.now(UTC),
            outcome_type=outcome.outcome_type,
            pnl=outcome.pnl,
            q_score=judgment.q_score,
            confidence=judgment.confidence,
            verdict=judgment.verdict,
            action=action,
            contributing_dimensions=contributors,
            recommendation=self._recommendation(contributors),
        )

    def find_contributing_dimensions(
        self,
        scores: Mapping[str, float],
        outcome_type: OutcomeType,
    ) -> tuple[ContributingDimension, ...]:
        """Dimensions that looked good before a loss or bad before a profit."""
        flagged: list[ContributingDimension] = []
        for dimension, score in scores.items():
            if outcome_type is OutcomeType.LOSS and score > self.config.confident_score:
                flagged.append(
                    ContributingDimension(dimension, score, Contribution.FALSE_POSITIVE)
                )
            elif outcome_type is OutcomeType.PROFITABLE and score < self.config.cautious_score:
                flagged.append(
                    ContributingDimension(dimension, score, Contribution.FALSE_NEGATIVE)
                )

        # sorted() is stable, so ties keep dimension order
        flagged = sorted(flagged, key=lambda item: abs(item.score - 0.5), reverse=True)
        return tuple(flagged[: self.config.max_contributors])

    @staticmethod
    def _recommendation(contributors: tuple[ContributingDimension, ...]) -> str:
        if not contributors:
            return "No clear pattern detected"
        first = contributors[0]
        if first.contribution is Contribution.FALSE_POSITIVE:
            return (
                f'Reduce weight on "{first.dimension}" - scored '
                f"{first.score * 100:.0f}% but led to loss"
            )
        return (
            f'Increase weight on "{first.dimension}" - scored '
            f"{first.score * 100:.0f}% but outcome was positive"
        )

    def _record_lesson(self, lesson: Lesson) -> None:
        self._lessons.append(lesson)
        self.metrics["lessons_learned"] += 1

        step = self.config.learning_rate * self.config.adjustment_step
        for contributor in lesson.contributing_dimensions:
            current = self._adjustments.get(contributor.dimension, 0.0)
            if contributor.contribution is Contribution.FALSE_POSITIVE:
                self._adjustments[contributor.dimension] = current - step
            else:
                self._adjustments[contributor.dimension] = current + step

        logger.info(
            "lesson_learned lesson_id=%s outcome_type=%s contributors=%s recommendation=%s",
            lesson.lesson_id,
            lesson.outcome_type,
            len(lesson.contributing_dimensions),
            lesson.recommendation,
        )
        self._persist_state()

    def _persist_state(self) -> None:
        if self._store is None:
            return
        if not self._store.save(self.snapshot()):
            self.metrics["persist_failures"] += 1

    def _persist_signal(self, signal: dict[str, Any]) -> None:
        try:
            self._signal_store.record_signal(signal)
        except Exception as exc:
            logger.warning("signal_persist_failed signal_id=%s error=%s", signal["signal_id"], exc)

    def snapshot(self) -> LearnerState:
        """Current self-adjustment state as a persistable snapshot."""
        return LearnerState(
            dimension_adjustments=self.dimension_adjustments(),
            action_reliability=self.action_reliability(),
            metrics={
                "wins": int(self.metrics["wins"]),
                "losses": int(self.metrics["losses"]),
                "win_rate": float(self.metrics["win_rate"]),
                "total_pnl": float(self.metrics["total_pnl"]),
                "lessons_learned": int(self.metrics["lessons_learned"]),
            },
        )

    def dimension_adjustments(self) -> dict[str, float]:
        return dict(self._adjustments)

    def action_reliability(self) -> dict[str, ReliabilityCounts]:
        return {
            action: {"successes": counts["successes"], "failures": counts["failures"]}
            for action, counts in self._reliability.items()
        }

    def action_scores(self) -> dict[str, float]:
        return action_scores(self._reliability)

    def lessons(self, limit: int = 20) -> list[Lesson]:
        return self._lessons.last(limit)

    def pending_count(self) -> int:
        return len(self._pending)

    def adaptive_threshold(self) -> float:
        """Minimum confidence to act, derived from the running win rate."""
        decided = self.metrics["wins"] + self.metrics["losses"]
        if decided < self.config.min_samples:
            return DEFAULT_THRESHOLD
        return interpolate_threshold(float(self.metrics["win_rate"]))

    def status(self) -> dict[str, Any]:
        return {
            "metrics": dict(self.metrics),
            "pending_actions": len(self._pending),
            "lessons": len(self._lessons),
            "dimension_adjustments": len(self._adjustments),
            "action_reliability": self.action_reliability(),
            "action_scores": self.action_scores(),
            "adaptive_threshold": self.adaptive_threshold(),
        }
