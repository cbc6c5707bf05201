"""Canonical domain types shared across the judgment loop layers."""

from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, TypedDict
from uuid import uuid4


def new_id(prefix: str) -> str:
    """Build a sortable, collision-resistant identifier."""
    now = datetime.now(UTC)
    return f"{prefix}-{now.strftime('%Y%m%d%H%M%S')}-{uuid4().hex[:8]}"


class Direction(StrEnum):
    LONG = "LONG"
    SHORT = "SHORT"


class Action(StrEnum):
    BUY = "BUY"
    SELL = "SELL"
    HOLD = "HOLD"


class Verdict(StrEnum):
    """Judgment verdicts, declared from strongest long to strongest short."""

    STRONG_BUY = "STRONG_BUY"
    BUY = "BUY"
    HOLD = "HOLD"
    SELL = "SELL"
    STRONG_SELL = "STRONG_SELL"


class Dimension(StrEnum):
    """Fixed set of dimensions every opportunity is judged on."""

    # reality perception
    AUTHENTICITY = "authenticity"
    TIMING = "timing"
    LIQUIDITY = "liquidity"
    VOLATILITY = "volatility"
    # token quality
    TOKEN_QUALITY = "token_quality"
    TEAM = "team"
    CONTRACT = "contract"
    COMMUNITY = "community"
    # market context
    TREND = "trend"
    SENTIMENT = "sentiment"
    MOMENTUM = "momentum"
    VOLUME = "volume"
    # risk
    RISK_REWARD = "risk_reward"
    POSITION_SIZE = "position_size"
    CORRELATION = "correlation"
    DRAWDOWN = "drawdown"
    # technical
    SUPPORT_RESISTANCE = "support_resistance"
    BREAKOUT = "breakout"
    DIVERGENCE = "divergence"
    PATTERN = "pattern"
    # meta
    CONFIDENCE = "confidence"
    NOVELTY = "novelty"
    HISTORY = "history"
    ALIGNMENT = "alignment"
    # residual: unknown unknowns
    THE_UNNAMEABLE = "the_unnameable"


class OutcomeType(StrEnum):
    PROFITABLE = "profitable"
    BREAKEVEN = "breakeven"
    LOSS = "loss"
    MISSED_OPPORTUNITY = "missed"
    AVOIDED_LOSS = "avoided_loss"


class Contribution(StrEnum):
    FALSE_POSITIVE = "false_positive"
    FALSE_NEGATIVE = "false_negative"


class ReliabilityCounts(TypedDict):
    """Beta-style success/failure counters tracked per action."""

    successes: int
    failures: int


class LearnerMetrics(TypedDict):
    """Aggregate outcome metrics persisted with the learner state."""

    wins: int
    losses: int
    win_rate: float
    total_pnl: float
    lessons_learned: int


def _clamp_unit(value: float) -> float:
    return max(0.0, min(1.0, value))


def _as_float(raw: Any, default: float = 0.0) -> float:
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return default
    return value if math.isfinite(value) else default


@dataclass(slots=True, frozen=True)
class Opportunity:
    """Scored unit produced by the perception collaborator."""

    opportunity_id: str
    signal: dict[str, Any] = field(default_factory=dict)
    direction: Direction = Direction.LONG
    magnitude: float = 0.0
    token: str = ""
    venue_id: str = ""
    timestamp: datetime | None = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> Opportunity:
        """Build an opportunity from a loose boundary payload without raising."""
        signal = payload.get("signal")
        raw_direction = str(payload.get("direction", Direction.LONG)).upper()
        direction = Direction.SHORT if raw_direction == Direction.SHORT else Direction.LONG
        raw_ts = payload.get("timestamp")
        timestamp: datetime | None = None
        if isinstance(raw_ts, datetime):
            timestamp = raw_ts
        elif isinstance(raw_ts, (int, float)):
            try:
                timestamp = datetime.fromtimestamp(float(raw_ts) / 1000.0, tz=UTC)
            except (OverflowError, OSError, ValueError):
                timestamp = None
        elif isinstance(raw_ts, str) and raw_ts:
            try:
                timestamp = datetime.fromisoformat(raw_ts)
            except ValueError:
                timestamp = None
        return cls(
            opportunity_id=str(payload.get("id") or payload.get("opportunity_id") or new_id("opp")),
            signal=dict(signal) if isinstance(signal, Mapping) else {},
            direction=direction,
            magnitude=_clamp_unit(_as_float(payload.get("magnitude"))),
            token=str(payload.get("token") or ""),
            venue_id=str(payload.get("venue_id") or payload.get("venueId") or ""),
            timestamp=timestamp,
        )


@dataclass(slots=True, frozen=True)
class Judgment:
    """Aggregated multi-dimension assessment of one opportunity."""

    judgment_id: str
    opportunity_id: str
    timestamp: datetime
    scores: dict[str, float]
    q_score: int
    verdict: Verdict
    confidence: float
    override: str | None = None
    opportunity: Opportunity | None = None

    def summary(self) -> dict[str, Any]:
        """Compact view kept in the rolling history."""
        return {
            "judgment_id": self.judgment_id,
            "timestamp": self.timestamp.isoformat(),
            "q_score": self.q_score,
            "verdict": str(self.verdict),
            "confidence": self.confidence,
            "override": self.override,
        }


@dataclass(slots=True, frozen=True)
class Decision:
    """Actionable output of the action selector for one judgment."""

    decision_id: str
    judgment_id: str
    timestamp: datetime
    action: Action
    confidence: float
    verdict: Verdict
    q_score: int
    size: float
    reason: str
    token: str = ""
    venue_id: str = ""
    gate: str | None = None


@dataclass(slots=True, frozen=True)
class ExecutionResult:
    """Realised result returned by the execution collaborator."""

    result_id: str
    success: bool = True
    pnl: float = 0.0
    simulated: bool = False
    counterfactual: bool = False
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> ExecutionResult:
        raw_pnl = payload.get("pnl")
        if raw_pnl is None:
            raw_pnl = payload.get("simulated_pnl", payload.get("simulatedPnL"))
        metadata = payload.get("metadata")
        return cls(
            result_id=str(payload.get("id") or payload.get("result_id") or new_id("res")),
            success=bool(payload.get("success", True)),
            pnl=_as_float(raw_pnl),
            simulated=bool(payload.get("simulated", False)),
            counterfactual=bool(payload.get("counterfactual", False)),
            metadata=dict(metadata) if isinstance(metadata, Mapping) else {},
        )


@dataclass(slots=True, frozen=True)
class Outcome:
    """Classification of one realised result."""

    outcome_id: str
    record_id: str
    timestamp: datetime
    outcome_type: OutcomeType
    pnl: float
    pnl_percent: float
    success: bool


@dataclass(slots=True, frozen=True)
class ContributingDimension:
    dimension: str
    score: float
    contribution: Contribution


@dataclass(slots=True, frozen=True)
class Lesson:
    """What a significant outcome taught about the dimensions behind it."""

    lesson_id: str
    timestamp: datetime
    outcome_type: OutcomeType
    pnl: float
    q_score: int
    confidence: float
    verdict: Verdict
    action: Action
    contributing_dimensions: tuple[ContributingDimension, ...]
    recommendation: str

    @property
    def is_positive(self) -> bool:
        return self.outcome_type is OutcomeType.PROFITABLE

    @property
    def is_negative(self) -> bool:
        return self.outcome_type is OutcomeType.LOSS


@dataclass(slots=True)
class ActionRecord:
    """Pending link between a decision and the result that will settle it."""

    record_id: str
    result_id: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    opportunity: Opportunity | None = None
    judgment: Judgment | None = None
    decision: Decision | None = None
    outcome: Outcome | None = None
