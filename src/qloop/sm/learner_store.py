"""Durable snapshot/restore of learner self-adjustment state."""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any, Protocol

from sqlalchemy.exc import SQLAlchemyError

from qloop.afs.reliability import default_reliability, sanitize_reliability
from qloop.core.constants import STATE_STALENESS_DAYS, STATE_VERSION
from qloop.core.types import LearnerMetrics, ReliabilityCounts
from qloop.sm.manager import StateManager

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def default_metrics() -> LearnerMetrics:
    return {"wins": 0, "losses": 0, "win_rate": 0.0, "total_pnl": 0.0, "lessons_learned": 0}


@dataclass(slots=True)
class LearnerState:
    """Versioned snapshot of everything the learner adjusts about itself."""

    dimension_adjustments: dict[str, float] = field(default_factory=dict)
    action_reliability: dict[str, ReliabilityCounts] = field(default_factory=default_reliability)
    metrics: LearnerMetrics = field(default_factory=default_metrics)
    updated_at: int = 0
    version: int = STATE_VERSION

    def to_payload(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "updated_at": self.updated_at,
            "dimension_adjustments": dict(self.dimension_adjustments),
            "action_reliability": {
                action: dict(counts) for action, counts in self.action_reliability.items()
            },
            "metrics": dict(self.metrics),
        }

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> LearnerState:
        """Coerce a persisted payload, dropping malformed entries."""
        raw_adjustments = payload.get("dimension_adjustments")
        adjustments: dict[str, float] = {}
        if isinstance(raw_adjustments, Mapping):
            for dimension, value in raw_adjustments.items():
                try:
                    adjustments[str(dimension)] = float(value)
                except (TypeError, ValueError):
                    continue

        metrics = default_metrics()
        raw_metrics = payload.get("metrics")
        if isinstance(raw_metrics, Mapping):
            metrics = {
                "wins": int(raw_metrics.get("wins", 0) or 0),
                "losses": int(raw_metrics.get("losses", 0) or 0),
                "win_rate": float(raw_metrics.get("win_rate", 0.0) or 0.0),
                "total_pnl": float(raw_metrics.get("total_pnl", 0.0) or 0.0),
                "lessons_learned": int(raw_metrics.get("lessons_learned", 0) or 0),
            }

        return cls(
            dimension_adjustments=adjustments,
            action_reliability=sanitize_reliability(payload.get("action_reliability")),
            metrics=metrics,
            updated_at=int(payload.get("updated_at", 0) or 0),
            version=int(payload.get("version", STATE_VERSION)),
        )


class PersistenceGateway(Protocol):
    """Read/write one JSON document holding the learner snapshot."""

    def read(self) -> dict[str, Any] | None: ...

    def write(self, payload: dict[str, Any]) -> None: ...


class KeyValueGateway:
    """Stores the snapshot as a namespaced document in the SQLite state store."""

    def __init__(self, state_manager: StateManager, namespace: str = "learner", key: str = "state") -> None:
        self._state_manager = state_manager
        self._namespace = namespace
        self._key = key

    def read(self) -> dict[str, Any] | None:
        stored = self._state_manager.get_json(self._namespace, self._key)
        return stored if isinstance(stored, dict) else None

    def write(self, payload: dict[str, Any]) -> None:
        self._state_manager.set_json(self._namespace, self._key, payload)


class JsonFileGateway:
    """Stores the snapshot as a JSON file, creating parent directories on write."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path).expanduser()

    def read(self) -> dict[str, Any] | None:
        if not self.path.exists():
            return None
        with self.path.open("r", encoding="utf-8") as file_handle:
            payload = json.load(file_handle)
        if not isinstance(payload, dict):
            raise ValueError(f"Learner state file must contain a JSON object: {self.path}")
        return payload

    def write(self, payload: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")


def _epoch_ms(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)


class LearnerStateStore:
    """Loads and saves learner snapshots; failures fall back to defaults."""

    def __init__(
        self,
        gateway: PersistenceGateway,
        *,
        staleness: timedelta = timedelta(days=STATE_STALENESS_DAYS),
        clock: Clock | None = None,
    ) -> None:
        self._gateway = gateway
        self._staleness = staleness
        self._clock = clock or (lambda: datetime.now(UTC))

    def load(self) -> LearnerState:
        """Return the persisted snapshot, or defaults when missing, invalid or stale."""
        try:
            payload = self._gateway.read()
        except (OSError, ValueError, SQLAlchemyError) as exc:
            logger.warning("learner_state_unreadable error=%s", exc)
            return LearnerState()

        if payload is None:
            return LearnerState()
        if payload.get("version") != STATE_VERSION:
            logger.info("learner_state_version_mismatch version=%s", payload.get("version"))
            return LearnerState()

        try:
            state = LearnerState.from_payload(payload)
        except (TypeError, ValueError) as exc:
            logger.warning("learner_state_corrupt error=%s", exc)
            return LearnerState()

        age_ms = _epoch_ms(self._clock()) - state.updated_at
        if state.updated_at and age_ms > self._staleness.total_seconds() * 1000:
            logger.info("learner_state_stale age_days=%.1f", age_ms / 86_400_000)
            return LearnerState()

        logger.info(
            "learner_state_restored adjustments=%s win_rate=%.3f lessons=%s",
            len(state.dimension_adjustments),
            state.metrics["win_rate"],
            state.metrics["lessons_learned"],
        )
        return state

    def save(self, state: LearnerState) -> bool:
        """Stamp and persist ``state``; never raises."""
        state.updated_at = _epoch_ms(self._clock())
        state.version = STATE_VERSION
        try:
            self._gateway.write(state.to_payload())
        except (OSError, TypeError, ValueError, SQLAlchemyError) as exc:
            logger.warning("learner_state_persist_failed error=%s", exc)
            return False
        logger.debug("learner_state_persisted updated_at=%s", state.updated_at)
        return True
