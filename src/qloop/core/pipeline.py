"""Composition root wiring judgment, decision, outcome and relearning."""

from __future__ import annotations

import logging
import threading
from collections.abc import Mapping
from datetime import timedelta
from typing import Any

from qloop.afs.evaluator import OutcomeEvaluator
from qloop.ao.orchestrator import Executor
from qloop.core.config import Settings
from qloop.core.events import LESSON, EventBus
from qloop.core.types import (
    ActionRecord,
    Decision,
    ExecutionResult,
    Judgment,
    Lesson,
    Opportunity,
    Outcome,
)
from qloop.de.judgment import JudgmentEngine
from qloop.de.selector import ActionSelector
from qloop.sm.learner_store import (
    JsonFileGateway,
    KeyValueGateway,
    LearnerStateStore,
    PersistenceGateway,
)
from qloop.sm.manager import StateManager
from qloop.vel.scorer import DimensionScorer

logger = logging.getLogger(__name__)


class JudgmentLoop:
    """Single-writer facade over the closed judgment loop."""

    def __init__(
        self,
        *,
        scorer: DimensionScorer | None = None,
        engine: JudgmentEngine | None = None,
        selector: ActionSelector | None = None,
        evaluator: OutcomeEvaluator | None = None,
        bus: EventBus | None = None,
    ) -> None:
        self.bus = bus or EventBus()
        self.scorer = scorer or DimensionScorer()
        self.engine = engine or JudgmentEngine(self.scorer, bus=self.bus)
        self.selector = selector or ActionSelector(bus=self.bus)
        self.evaluator = evaluator or OutcomeEvaluator(bus=self.bus)
        self._lock = threading.RLock()

        self.bus.subscribe(LESSON, self._on_lesson)
        self._push_learned_state()

    @classmethod
    def from_settings(cls, settings: Settings) -> JudgmentLoop:
        """Build the full graph with the configured persistence backend."""
        state_manager = StateManager(settings.db_url)
        gateway: PersistenceGateway
        if settings.state_backend == "file":
            gateway = JsonFileGateway(settings.state_file)
        else:
            gateway = KeyValueGateway(state_manager)
        store = LearnerStateStore(gateway, staleness=timedelta(days=settings.staleness_days))

        bus = EventBus()
        scorer = DimensionScorer()
        loop = cls(
            scorer=scorer,
            engine=JudgmentEngine(scorer, bus=bus, history_size=settings.judgment_history_size),
            selector=ActionSelector(
                bus=bus,
                sizing=settings.sizing_bounds(),
                history_size=settings.judgment_history_size,
            ),
            evaluator=OutcomeEvaluator(
                store,
                config=settings.learner_config(),
                bus=bus,
                signal_store=state_manager,
            ),
            bus=bus,
        )
        logger.info(
            "judgment_loop_ready backend=%s environment=%s",
            settings.state_backend,
            settings.environment,
        )
        return loop

    def _on_lesson(self, lesson: Lesson) -> None:
        self._push_learned_state()
        logger.debug("learned_state_pushed lesson_id=%s", lesson.lesson_id)

    def _push_learned_state(self) -> None:
        with self._lock:
            self.scorer.apply_adjustments(self.evaluator.dimension_adjustments())
            self.selector.set_action_reliability(self.evaluator.action_reliability())

    def judge(self, opportunity: Opportunity | Mapping[str, Any]) -> Judgment:
        if not isinstance(opportunity, Opportunity):
            opportunity = Opportunity.from_payload(opportunity)
        with self._lock:
            return self.engine.judge(opportunity)

    def decide(
        self,
        judgment: Judgment,
        *,
        min_confidence: float | None = None,
        max_confidence: float | None = None,
    ) -> Decision:
        """Decide with the learner's adaptive threshold unless a floor is given."""
        with self._lock:
            # Reliability is also refreshed here: non-lesson outcomes update it too.
            self.selector.set_action_reliability(self.evaluator.action_reliability())
            floor = self.evaluator.adaptive_threshold() if min_confidence is None else min_confidence
            return self.selector.decide(
                judgment,
                min_confidence=floor,
                max_confidence=max_confidence,
            )

    def record_action(
        self,
        *,
        result_id: str,
        decision: Decision,
        judgment: Judgment | None = None,
        opportunity: Opportunity | None = None,
    ) -> ActionRecord:
        with self._lock:
            return self.evaluator.record_action(
                result_id=result_id,
                decision=decision,
                judgment=judgment,
                opportunity=opportunity,
            )

    def evaluate_outcome(self, result: ExecutionResult | Mapping[str, Any]) -> Outcome:
        with self._lock:
            return self.evaluator.evaluate_outcome(result)

    def process(
        self,
        opportunity: Opportunity | Mapping[str, Any],
        executor: Executor,
    ) -> tuple[Judgment, Decision, Outcome]:
        """Run one full turn of the loop against ``executor``."""
        with self._lock:
            judgment = self.judge(opportunity)
            decision = self.decide(judgment)
            result = executor.execute(decision)
            self.record_action(
                result_id=result.result_id,
                decision=decision,
                judgment=judgment,
            )
            outcome = self.evaluate_outcome(result)
        return judgment, decision, outcome

    def adaptive_threshold(self) -> float:
        with self._lock:
            return self.evaluator.adaptive_threshold()

    def lessons(self, limit: int = 20) -> list[Lesson]:
        with self._lock:
            return self.evaluator.lessons(limit)

    def recent_judgments(self, limit: int = 20) -> list[dict[str, object]]:
        with self._lock:
            return self.engine.recent(limit)

    def status(self) -> dict[str, Any]:
        with self._lock:
            return {
                "judgments": dict(self.engine.metrics),
                "decisions": dict(self.selector.metrics),
                "learner": self.evaluator.status(),
                "dimension_adjustments": self.scorer.adjustments(),
            }
