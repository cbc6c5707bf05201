"""Decision Engine, judgment half: weighted aggregation and verdict rules."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import UTC, datetime
from statistics import pstdev

from qloop.core.constants import MAX_CONFIDENCE, MIN_CONFIDENCE
from qloop.core.events import JUDGMENT, EventBus
from qloop.core.ring_buffer import RingBuffer
from qloop.core.types import Dimension, Judgment, Opportunity, Verdict, new_id
from qloop.vel.scorer import DimensionScorer

logger = logging.getLogger(__name__)

SAFETY_DIMENSION = Dimension.CONTRACT
EXIT_LIQUIDITY_DIMENSION = Dimension.LIQUIDITY

# Descending lower bounds of the five contiguous Q-Score bands.
VERDICT_BANDS: tuple[tuple[int, Verdict], ...] = (
    (75, Verdict.STRONG_BUY),
    (60, Verdict.BUY),
    (40, Verdict.HOLD),
    (25, Verdict.SELL),
    (0, Verdict.STRONG_SELL),
)


def aggregate_q_score(scores: Mapping[str, float], weights: Mapping[str, float]) -> int:
    """Weighted mean of dimension scores on a 0..100 scale."""
    total_weight = 0.0
    weighted_sum = 0.0
    for dimension, score in scores.items():
        weight = float(weights.get(dimension, 0.0))
        weighted_sum += max(0.0, min(1.0, score)) * weight
        total_weight += weight
    if total_weight <= 0.0:
        return 50
    return max(0, min(100, round(100 * weighted_sum / total_weight)))


def verdict_from_q_score(q_score: int) -> Verdict:
    for lower_bound, verdict in VERDICT_BANDS:
        if q_score >= lower_bound:
            return verdict
    return Verdict.STRONG_SELL


def confidence_from_scores(scores: Mapping[str, float]) -> float:
    """Low score dispersion means high confidence, always inside the ceiling."""
    values = list(scores.values())
    spread = pstdev(values) if len(values) > 1 else 0.0
    return max(MIN_CONFIDENCE, min(MAX_CONFIDENCE, 1.0 - spread))


class JudgmentEngine:
    """Turns per-dimension scores into one bounded judgment."""

    def __init__(
        self,
        scorer: DimensionScorer,
        *,
        bus: EventBus | None = None,
        history_size: int = 100,
        safety_floor: float = 0.3,
        liquidity_floor: float = 0.2,
    ) -> None:
        self._scorer = scorer
        self._bus = bus
        self._safety_floor = safety_floor
        self._liquidity_floor = liquidity_floor
        self.history: RingBuffer[dict[str, object]] = RingBuffer(history_size)
        self.metrics = {"judgments": 0, "overrides": 0}

    def judge(self, opportunity: Opportunity) -> Judgment:
        """Score, aggregate and classify one opportunity."""
        scores = self._scorer.score_all(opportunity)
        q_score = aggregate_q_score(scores, self._scorer.weights)
        override, verdict = self._apply_overrides(scores)
        if verdict is None:
            verdict = verdict_from_q_score(q_score)

        judgment = Judgment(
            judgment_id=new_id("jdg"),
            opportunity_id=opportunity.opportunity_id,
            timestamp=datetime.now(UTC),
            scores=scores,
            q_score=q_score,
            verdict=verdict,
            confidence=confidence_from_scores(scores),
            override=override,
            opportunity=opportunity,
        )

        self.metrics["judgments"] += 1
        if override is not None:
            self.metrics["overrides"] += 1
        self.history.append(judgment.summary())
        logger.info(
            "judgment_complete judgment_id=%s q_score=%s verdict=%s confidence=%.3f override=%s",
            judgment.judgment_id,
            q_score,
            verdict,
            judgment.confidence,
            override,
        )
        if self._bus is not None:
            self._bus.emit(JUDGMENT, judgment)
        return judgment

    def _apply_overrides(self, scores: Mapping[str, float]) -> tuple[str | None, Verdict | None]:
        # Red flags bypass the Q-Score bands entirely, evaluated in priority order.
        if scores.get(str(SAFETY_DIMENSION), 1.0) < self._safety_floor:
            return "safety_floor", Verdict.STRONG_SELL
        if scores.get(str(EXIT_LIQUIDITY_DIMENSION), 1.0) < self._liquidity_floor:
            return "exit_liquidity_floor", Verdict.HOLD
        return None, None

    def recent(self, limit: int = 20) -> list[dict[str, object]]:
        return self.history.last(limit)
