"""State Manager backed by SQLite via SQLAlchemy."""

from __future__ import annotations

import json
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import DateTime, Engine, String, Text, create_engine, desc, select
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column


class Base(DeclarativeBase):
    """Declarative base for SQLite models."""


class KeyValueRecord(Base):
    """Namespaced JSON documents (learner snapshot and similar slices)."""

    __tablename__ = "kv_store"

    namespace: Mapped[str] = mapped_column(String(64), primary_key=True)
    key: Mapped[str] = mapped_column(String(256), primary_key=True)
    value_json: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC)
    )


class LearningSignalRecord(Base):
    """Append-only learning signals emitted for every evaluated outcome."""

    __tablename__ = "learning_signal"

    signal_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    source: Mapped[str] = mapped_column(String(100), nullable=False)
    feedback_type: Mapped[str] = mapped_column(String(16), nullable=False)
    reward: Mapped[float] = mapped_column(nullable=False, default=0.0)
    payload_json: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC)
    )


class StateManager:
    """CRUD gateway for namespaced state and learning signal storage."""

    def __init__(self, db_url: str) -> None:
        self._engine: Engine = create_engine(db_url, future=True)
        Base.metadata.create_all(self._engine)

    def get_json(self, namespace: str, key: str) -> Any | None:
        """Load one namespaced JSON value."""
        with Session(self._engine) as session:
            row = session.get(KeyValueRecord, {"namespace": namespace, "key": key})
            if row is None:
                return None
            return json.loads(row.value_json)

    def set_json(self, namespace: str, key: str, value: Any) -> None:
        """Persist one namespaced JSON value."""
        with Session(self._engine) as session:
            row = session.get(KeyValueRecord, {"namespace": namespace, "key": key})
            serialized = json.dumps(value, ensure_ascii=False)
            if row is None:
                session.add(KeyValueRecord(namespace=namespace, key=key, value_json=serialized))
            else:
                row.value_json = serialized
                row.updated_at = datetime.now(UTC)
            session.commit()

    def record_signal(self, signal: Mapping[str, Any]) -> None:
        """Append one learning signal."""
        learning = signal.get("learning", {})
        learning = learning if isinstance(learning, Mapping) else {}
        with Session(self._engine) as session:
            session.add(
                LearningSignalRecord(
                    signal_id=str(signal["signal_id"]),
                    source=str(signal.get("source", "unknown")),
                    feedback_type=str(learning.get("feedback_type", "NEUTRAL")),
                    reward=float(learning.get("reward", 0.0)),
                    payload_json=json.dumps(dict(signal), ensure_ascii=False, default=str),
                )
            )
            session.commit()

    def get_recent_signals(self, n: int) -> list[dict[str, Any]]:
        """Return most recent learning signals ordered from oldest to newest."""
        with Session(self._engine) as session:
            rows = session.execute(
                select(LearningSignalRecord)
                .order_by(desc(LearningSignalRecord.created_at))
                .limit(max(0, n))
            ).scalars()
            recent = list(rows)

        recent.reverse()
        return [
            {
                **json.loads(row.payload_json),
                "created_at": row.created_at.isoformat(),
            }
            for row in recent
        ]

    def signal_feedback_counts(self) -> dict[str, int]:
        """Count stored signals by feedback type."""
        counts: dict[str, int] = {}
        with Session(self._engine) as session:
            rows = session.execute(select(LearningSignalRecord.feedback_type)).scalars()
            for feedback_type in rows:
                counts[feedback_type] = counts.get(feedback_type, 0) + 1
        return counts
