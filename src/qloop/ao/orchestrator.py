"""Action Orchestrator: execution collaborators for decisions."""

from __future__ import annotations

import random
from datetime import UTC, datetime
from typing import Protocol

from qloop.core.types import Action, Decision, ExecutionResult, new_id

PAPER_PNL_RANGE = (-0.04, 0.06)


class Executor(Protocol):
    """Anything that turns a decision into a realised result."""

    def execute(self, decision: Decision) -> ExecutionResult: ...


class PaperExecutor:
    """Simulated execution with seeded, reproducible P&L and no side effects."""

    def __init__(self, seed: int | None = 0) -> None:
        self._rng = random.Random(seed)

    def execute(self, decision: Decision) -> ExecutionResult:
        metadata = {
            "executed_at": datetime.now(UTC).isoformat(),
            "decision_id": decision.decision_id,
            "action": str(decision.action),
            "size": decision.size,
            "execution_mode": "paper",
        }
        if decision.action is Action.HOLD:
            return ExecutionResult(
                result_id=new_id("res"),
                success=True,
                pnl=0.0,
                simulated=True,
                metadata=metadata,
            )

        low, high = PAPER_PNL_RANGE
        pnl = round(self._rng.uniform(low, high), 4)
        return ExecutionResult(
            result_id=new_id("res"),
            success=True,
            pnl=pnl,
            simulated=True,
            metadata=metadata,
        )
