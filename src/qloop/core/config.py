"""Runtime configuration for the judgment loop."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from qloop.core.constants import PHI_INV_2, STATE_STALENESS_DAYS


@dataclass(slots=True)
class SizingBounds:
    """Position size bounds as fractions of one notional unit."""

    min_size: float = 0.01
    max_size: float = 0.10
    precision: int = 3


@dataclass(slots=True)
class LearnerConfig:
    """Knobs consumed by the outcome evaluator."""

    learning_rate: float = PHI_INV_2
    adjustment_step: float = 0.1
    min_samples: int = 5
    outcome_epsilon: float = 0.01
    significance_threshold: float = 0.02
    confident_score: float = 0.6
    cautious_score: float = 0.4
    max_contributors: int = 5
    lesson_history_size: int = 200
    pending_action_capacity: int = 500
    persist_signals: bool = True


class Settings(BaseSettings):
    """Application settings loaded from env and .env files."""

    app_name: str = "qloop-python-engine"
    environment: str = Field(default="dev", pattern="^(dev|test|prod)$")
    db_url: str = "sqlite:///./qloop_state.db"
    state_backend: str = Field(default="sqlite", pattern="^(sqlite|file)$")
    state_file: Path = Path.home() / ".qloop" / "learner-state.json"
    persist_signals: bool = True

    learning_rate: float = Field(default=PHI_INV_2, gt=0.0, le=1.0)
    min_samples: int = Field(default=5, ge=0)
    staleness_days: int = Field(default=STATE_STALENESS_DAYS, ge=1)
    judgment_history_size: int = Field(default=100, ge=1)
    lesson_history_size: int = Field(default=200, ge=1)
    pending_action_capacity: int = Field(default=500, ge=1)
    min_position_size: float = Field(default=0.01, ge=0.0, le=1.0)
    max_position_size: float = Field(default=0.10, ge=0.0, le=1.0)

    model_config = SettingsConfigDict(env_file=".env", env_prefix="QLOOP_")

    @model_validator(mode="after")
    def _check_sizing(self) -> "Settings":
        if self.min_position_size >= self.max_position_size:
            raise ValueError("min_position_size must be lower than max_position_size")
        return self

    def learner_config(self) -> LearnerConfig:
        return LearnerConfig(
            learning_rate=self.learning_rate,
            min_samples=self.min_samples,
            lesson_history_size=self.lesson_history_size,
            pending_action_capacity=self.pending_action_capacity,
            persist_signals=self.persist_signals,
        )

    def sizing_bounds(self) -> SizingBounds:
        return SizingBounds(min_size=self.min_position_size, max_size=self.max_position_size)
