"""Minimal FastAPI interface for the qloop judgment loop."""

from __future__ import annotations

from typing import Any

from fastapi import FastAPI, Query
from pydantic import BaseModel, Field

from qloop.core.config import Settings
from qloop.core.pipeline import JudgmentLoop
from qloop.core.types import Decision, Judgment, Lesson, Outcome


settings = Settings()
app = FastAPI(title="qloop API", version="0.1.0")

# Composition root: one loop instance owns all learner state for this process.
loop = JudgmentLoop.from_settings(settings)


class OpportunityIn(BaseModel):
    """Opportunity API input model."""

    id: str | None = None
    signal: dict[str, Any] = Field(default_factory=dict)
    direction: str = "LONG"
    magnitude: float = 0.0
    token: str = ""
    venue_id: str = ""
    timestamp: str | float | None = None
    result_id: str | None = None
    min_confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    max_confidence: float | None = Field(default=None, ge=0.0, le=1.0)


class ResultIn(BaseModel):
    """Execution result API input model."""

    result_id: str
    success: bool = True
    pnl: float | None = None
    simulated_pnl: float | None = None
    simulated: bool = False
    counterfactual: bool = False
    metadata: dict[str, Any] = Field(default_factory=dict)


def _judgment_payload(judgment: Judgment) -> dict[str, object]:
    return {
        "judgment_id": judgment.judgment_id,
        "opportunity_id": judgment.opportunity_id,
        "timestamp": judgment.timestamp.isoformat(),
        "q_score": judgment.q_score,
        "verdict": str(judgment.verdict),
        "confidence": judgment.confidence,
        "override": judgment.override,
        "scores": dict(judgment.scores),
    }


def _decision_payload(decision: Decision) -> dict[str, object]:
    return {
        "decision_id": decision.decision_id,
        "judgment_id": decision.judgment_id,
        "timestamp": decision.timestamp.isoformat(),
        "action": str(decision.action),
        "confidence": decision.confidence,
        "verdict": str(decision.verdict),
        "q_score": decision.q_score,
        "size": decision.size,
        "reason": decision.reason,
        "token": decision.token,
        "venue_id": decision.venue_id,
        "gate": decision.gate,
    }


def _outcome_payload(outcome: Outcome) -> dict[str, object]:
    return {
        "outcome_id": outcome.outcome_id,
        "record_id": outcome.record_id,
        "timestamp": outcome.timestamp.isoformat(),
        "outcome_type": str(outcome.outcome_type),
        "pnl": outcome.pnl,
        "pnl_percent": outcome.pnl_percent,
        "success": outcome.success,
    }


def _lesson_payload(lesson: Lesson) -> dict[str, object]:
    return {
        "lesson_id": lesson.lesson_id,
        "timestamp": lesson.timestamp.isoformat(),
        "outcome_type": str(lesson.outcome_type),
        "pnl": lesson.pnl,
        "q_score": lesson.q_score,
        "confidence": lesson.confidence,
        "verdict": str(lesson.verdict),
        "action": str(lesson.action),
        "contributing_dimensions": [
            {
                "dimension": item.dimension,
                "score": item.score,
                "contribution": str(item.contribution),
            }
            for item in lesson.contributing_dimensions
        ],
        "recommendation": lesson.recommendation,
    }


@app.post("/judgments")
def create_judgment(opportunity_in: OpportunityIn) -> dict[str, object]:
    """Judge one opportunity, decide on it and park the decision for its result."""
    payload = opportunity_in.model_dump(exclude={"result_id", "min_confidence", "max_confidence"})
    judgment = loop.judge(payload)
    decision = loop.decide(
        judgment,
        min_confidence=opportunity_in.min_confidence,
        max_confidence=opportunity_in.max_confidence,
    )
    result_id = opportunity_in.result_id or decision.decision_id
    loop.record_action(result_id=result_id, decision=decision, judgment=judgment)
    return {
        "result_id": result_id,
        "judgment": _judgment_payload(judgment),
        "decision": _decision_payload(decision),
    }


@app.post("/outcomes")
def create_outcome(result_in: ResultIn) -> dict[str, object]:
    """Settle a previously parked decision with its realised result."""
    outcome = loop.evaluate_outcome(result_in.model_dump())
    return {
        "outcome": _outcome_payload(outcome),
        "adaptive_threshold": loop.adaptive_threshold(),
    }


@app.get("/status")
def get_status() -> dict[str, object]:
    """Expose loop metrics and learner self-adjustment state."""
    return {"environment": settings.environment, **loop.status()}


@app.get("/lessons")
def get_lessons(limit: int = Query(default=20, ge=1, le=200)) -> dict[str, object]:
    """Expose the most recent lessons, oldest first."""
    return {"lessons": [_lesson_payload(lesson) for lesson in loop.lessons(limit)]}


@app.get("/judgments/history")
def get_judgment_history(limit: int = Query(default=20, ge=1, le=100)) -> dict[str, object]:
    """Expose the rolling judgment history."""
    return {"history": loop.recent_judgments(limit)}
