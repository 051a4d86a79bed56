"""Completion notifications emitted by the sequencer, one per completed step."""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class StepCompleted:
    """A step reached completed status."""
    index: int
    label: str
    completed_at: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "label": self.label,
            "completed_at": self.completed_at.isoformat(),
        }


# Any callable taking a StepCompleted works as a sink
NotificationSink = Callable[[StepCompleted], None]


class LoggingSink:
    """Logs "[MIGRATION] [<index>] <label>: #done" for each completed step."""

    def __init__(self, log: logging.Logger = logger):
        self._log = log

    def __call__(self, event: StepCompleted) -> None:
        self._log.info(
            f"[MIGRATION] [{event.index}] {event.label}: #done",
            extra={"event": "step_completed", "metadata": event.to_dict()},
        )


class CollectingSink:
    """Keeps every event in memory (tests, CLI summaries)."""

    def __init__(self):
        self.events: list[StepCompleted] = []

    def __call__(self, event: StepCompleted) -> None:
        self.events.append(event)

    def __len__(self) -> int:
        return len(self.events)
