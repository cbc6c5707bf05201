"""Example continuous processing loop for background workers."""

from __future__ import annotations

import logging
import time
from datetime import UTC, datetime

from qloop.ao.orchestrator import PaperExecutor
from qloop.core.config import Settings
from qloop.core.pipeline import JudgmentLoop


def sample_opportunities() -> list[dict[str, object]]:
    """Deterministic opportunities alternating calm and outsized moves."""
    now = datetime.now(UTC).isoformat()
    return [
        {
            "id": "opp-calm-long",
            "signal": {
                "type": "price_move",
                "data": {"current_volume": 1_200_000, "previous_volume": 900_000},
            },
            "direction": "LONG",
            "magnitude": 0.15,
            "token": "SOL",
            "venue_id": "paper",
            "timestamp": now,
        },
        {
            "id": "opp-spike-short",
            "signal": {
                "type": "price_move",
                "data": {"current_volume": 400_000, "previous_volume": 800_000},
            },
            "direction": "SHORT",
            "magnitude": 0.35,
            "token": "BONK",
            "venue_id": "paper",
            "timestamp": now,
        },
    ]


def run_loop(iterations: int = 10, sleep_s: float = 0.05, seed: int = 7) -> None:
    """Run the paper-traded loop and print how the learner state evolves."""
    settings = Settings()
    loop = JudgmentLoop.from_settings(settings)
    executor = PaperExecutor(seed=seed)

    opportunities = sample_opportunities()
    for index in range(iterations):
        judgment, decision, outcome = loop.process(
            opportunities[index % len(opportunities)], executor
        )
        print(
            f"[{index:02d}] q={judgment.q_score} verdict={judgment.verdict} "
            f"action={decision.action} outcome={outcome.outcome_type} "
            f"pnl={outcome.pnl_percent:+.2f}% threshold={loop.evaluator.adaptive_threshold():.3f}"
        )
        time.sleep(sleep_s)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    run_loop()
