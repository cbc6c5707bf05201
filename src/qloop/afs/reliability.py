"""Beta-style per-action reliability counters."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from qloop.core.constants import PHI_INV_2
from qloop.core.types import Action, OutcomeType, ReliabilityCounts

RELIABILITY_THRESHOLD = PHI_INV_2


def default_reliability() -> dict[str, ReliabilityCounts]:
    """Uniform Beta(1, 1) prior for every action."""
    return {str(action): {"successes": 1, "failures": 1} for action in Action}


def beta_mean(counts: Mapping[str, Any]) -> float:
    """Deterministic Beta mean; no stochastic draw."""
    successes = max(1.0, float(counts.get("successes", 1)))
    failures = max(1.0, float(counts.get("failures", 1)))
    return successes / (successes + failures)


def action_scores(reliability: Mapping[str, Mapping[str, Any]]) -> dict[str, float]:
    return {str(action): beta_mean(counts) for action, counts in reliability.items()}


def sanitize_reliability(raw: Any) -> dict[str, ReliabilityCounts]:
    """Merge persisted counters over the prior, keeping every counter >= 1."""
    merged = default_reliability()
    if not isinstance(raw, Mapping):
        return merged
    for action in Action:
        counts = raw.get(str(action))
        if not isinstance(counts, Mapping):
            continue
        try:
            successes = int(counts.get("successes", 1))
            failures = int(counts.get("failures", 1))
        except (TypeError, ValueError):
            continue
        merged[str(action)] = {"successes": max(1, successes), "failures": max(1, failures)}
    return merged


def update_reliability(
    reliability: dict[str, ReliabilityCounts],
    action: Action,
    outcome_type: OutcomeType,
) -> bool:
    """Increment the matching counter in place; return whether anything changed."""
    counts = reliability.setdefault(str(action), {"successes": 1, "failures": 1})
    match outcome_type:
        case OutcomeType.PROFITABLE | OutcomeType.AVOIDED_LOSS:
            counts["successes"] += 1
        case OutcomeType.LOSS | OutcomeType.MISSED_OPPORTUNITY:
            counts["failures"] += 1
        case OutcomeType.BREAKEVEN:
            return False
    return True
