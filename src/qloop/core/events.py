"""Explicit callback registry for judgment loop observability events."""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)

JUDGMENT = "judgment"
DECISION = "decision"
OUTCOME = "outcome"
LESSON = "lesson"

EVENT_NAMES = (JUDGMENT, DECISION, OUTCOME, LESSON)

Subscriber = Callable[[Any], None]


class EventBus:
    """Dispatches immutable payloads to subscribers in registration order."""

    def __init__(self) -> None:
        self._subscribers: dict[str, list[Subscriber]] = defaultdict(list)

    def subscribe(self, event_name: str, callback: Subscriber) -> None:
        if event_name not in EVENT_NAMES:
            raise ValueError(f"Unknown event '{event_name}'")
        self._subscribers[event_name].append(callback)

    def unsubscribe(self, event_name: str, callback: Subscriber) -> bool:
        callbacks = self._subscribers.get(event_name, [])
        if callback in callbacks:
            callbacks.remove(callback)
            return True
        return False

    def emit(self, event_name: str, payload: Any) -> int:
        """Deliver ``payload`` and return how many subscribers accepted it."""
        delivered = 0
        for callback in list(self._subscribers.get(event_name, [])):
            try:
                callback(payload)
            except Exception as exc:
                logger.warning(
                    "subscriber_failed event=%s callback=%s error=%s",
                    event_name,
                    getattr(callback, "__qualname__", repr(callback)),
                    exc,
                )
                continue
            delivered += 1
        return delivered

    def subscriber_count(self, event_name: str) -> int:
        return len(self._subscribers.get(event_name, []))
