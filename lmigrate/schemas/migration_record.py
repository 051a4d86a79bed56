"""
MigrationRecord schema - persisted proof of a step's progress.

A MigrationRecord is created the first time a step is attempted against a
target. It moves through pending -> running -> completed|failed, and a
failed (or interrupted running) record may move back to running on retry.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


def _utcnow() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


class MigrationStatus(str, Enum):
    """Status of a migration step against one target."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (MigrationStatus.COMPLETED, MigrationStatus.FAILED)


# Allowed transitions; running -> running covers a run that died mid-step
_TRANSITIONS: dict[MigrationStatus, frozenset[MigrationStatus]] = {
    MigrationStatus.PENDING: frozenset({MigrationStatus.RUNNING}),
    MigrationStatus.RUNNING: frozenset({
        MigrationStatus.RUNNING,
        MigrationStatus.COMPLETED,
        MigrationStatus.FAILED,
    }),
    MigrationStatus.FAILED: frozenset({MigrationStatus.RUNNING}),
    MigrationStatus.COMPLETED: frozenset(),
}


@dataclass
class MigrationRecord:
    """
    A record of one migration step applied to a target.

    Attributes:
        index: Step index (unique per target)
        label: Human-readable step label
        status: pending, running, completed, failed
        applied_at: When the step completed (None until completed)
        started_at: When the latest attempt started
        attempts: Number of times the step has entered running
        error: Type and message of the latest failure, if any
    """
    index: int
    label: str
    status: MigrationStatus = MigrationStatus.PENDING
    applied_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    attempts: int = 0
    error: Optional[dict[str, Any]] = None

    def __post_init__(self):
        if self.index < 0:
            raise ValueError("index must be >= 0")

    def _transition(self, status: MigrationStatus) -> None:
        if status not in _TRANSITIONS[self.status]:
            raise ValueError(
                f"Invalid transition for step {self.index}: "
                f"{self.status.value} -> {status.value}"
            )
        self.status = status

    def mark_running(self) -> None:
        """Start (or restart) an attempt."""
        self._transition(MigrationStatus.RUNNING)
        self.started_at = _utcnow()
        self.attempts += 1
        self.error = None

    def mark_completed(self) -> None:
        self._transition(MigrationStatus.COMPLETED)
        self.applied_at = _utcnow()

    def mark_failed(self, error: BaseException) -> None:
        self._transition(MigrationStatus.FAILED)
        self.error = {
            "type": type(error).__name__,
            "message": str(error),
        }

    @property
    def is_completed(self) -> bool:
        return self.status == MigrationStatus.COMPLETED

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON output."""
        result: dict[str, Any] = {
            "index": self.index,
            "label": self.label,
            "status": self.status.value,
            "attempts": self.attempts,
        }
        if self.applied_at is not None:
            result["applied_at"] = self.applied_at.isoformat()
        if self.started_at is not None:
            result["started_at"] = self.started_at.isoformat()
        if self.error is not None:
            result["error"] = self.error
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MigrationRecord":
        """Deserialize from dictionary."""
        return cls(
            index=data["index"],
            label=data["label"],
            status=MigrationStatus(data.get("status", "pending")),
            applied_at=datetime.fromisoformat(data["applied_at"]) if data.get("applied_at") else None,
            started_at=datetime.fromisoformat(data["started_at"]) if data.get("started_at") else None,
            attempts=data.get("attempts", 0),
            error=data.get("error"),
        )
