"""Value Evaluation Layer: per-dimension opportunity scoring."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from qloop.core.constants import PHI_INV, PHI_INV_2, PHI_INV_3
from qloop.core.types import Dimension, Direction, Opportunity

CRITICAL_DIMENSIONS = frozenset({Dimension.CONTRACT, Dimension.LIQUIDITY, Dimension.RISK_REWARD})
IMPORTANT_DIMENSIONS = frozenset(
    {Dimension.AUTHENTICITY, Dimension.TOKEN_QUALITY, Dimension.TREND, Dimension.VOLUME}
)

TIER_WEIGHTS: dict[str, float] = {
    "critical": PHI_INV,
    "important": PHI_INV_2,
    "other": PHI_INV_3,
}

RESIDUAL_DIMENSION = Dimension.THE_UNNAMEABLE
NEUTRAL_SCORE = 0.5


def dimension_tier(dimension: Dimension) -> str:
    """Return the static weight bucket a dimension belongs to."""
    if dimension in CRITICAL_DIMENSIONS:
        return "critical"
    if dimension in IMPORTANT_DIMENSIONS:
        return "important"
    return "other"


def base_weights() -> dict[str, float]:
    """Tiered base weight for every dimension, keyed by dimension name."""
    return {str(dim): TIER_WEIGHTS[dimension_tier(dim)] for dim in Dimension}


class DimensionScorer:
    """Scores opportunities on every dimension, honoring pushed adjustments."""

    def __init__(self, adjustments: Mapping[str, float] | None = None) -> None:
        self.weights = base_weights()
        self._adjustments: dict[str, float] = {}
        if adjustments:
            self.apply_adjustments(adjustments)

    def apply_adjustments(self, adjustments: Mapping[str, float]) -> None:
        """Replace the installed dimension -> delta map with a private copy."""
        self._adjustments = {str(key): float(value) for key, value in adjustments.items()}

    def adjustments(self) -> dict[str, float]:
        return dict(self._adjustments)

    def score(self, dimension: Dimension, opportunity: Opportunity) -> float:
        """Effective score: base rule plus adjustment, clamped to [0, 1]."""
        raw = self._base_score(dimension, opportunity) + self._adjustments.get(str(dimension), 0.0)
        return max(0.0, min(1.0, raw))

    def score_all(self, opportunity: Opportunity) -> dict[str, float]:
        return {str(dim): self.score(dim, opportunity) for dim in Dimension}

    def _base_score(self, dimension: Dimension, opportunity: Opportunity) -> float:
        magnitude = float(opportunity.magnitude or 0.0)

        match dimension:
            case Dimension.AUTHENTICITY:
                # outsized moves are more likely manipulated
                return 0.4 if magnitude > 0.3 else 0.7
            case Dimension.TIMING:
                return self._timing_score(opportunity)
            case Dimension.LIQUIDITY:
                return 0.6
            case Dimension.VOLATILITY:
                return 0.4 if magnitude > 0.2 else 0.7
            case Dimension.TREND:
                return 0.6 if opportunity.direction is Direction.LONG else 0.4
            case Dimension.VOLUME:
                return self._volume_score(opportunity.signal)
            case Dimension.RISK_REWARD:
                return 0.6 if magnitude > 0.1 else 0.4
            case Dimension.THE_UNNAMEABLE:
                return NEUTRAL_SCORE
            case _:
                return NEUTRAL_SCORE

    @staticmethod
    def _timing_score(opportunity: Opportunity) -> float:
        if opportunity.timestamp is None:
            return NEUTRAL_SCORE
        hour = opportunity.timestamp.hour
        if opportunity.timestamp.tzinfo is not None:
            hour = opportunity.timestamp.utctimetuple().tm_hour
        # US session overlap
        return 0.7 if 13 <= hour <= 21 else NEUTRAL_SCORE

    @staticmethod
    def _volume_score(signal: Mapping[str, Any]) -> float:
        data = signal.get("data") if isinstance(signal, Mapping) else None
        if not isinstance(data, Mapping):
            return 0.4
        current = data.get("current_volume", data.get("currentVolume"))
        previous = data.get("previous_volume", data.get("previousVolume"))
        try:
            rising = float(current) > float(previous)
        except (TypeError, ValueError):
            return 0.4
        return 0.7 if rising else 0.4
