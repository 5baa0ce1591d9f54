"""Run and worker state - the records the coordinator owns.

ARCHITECTURE
────────────
::

    RunState (str Enum)
      awaiting_ready ──► running ──► succeeded
                            │
                            └──────► failed

    WorkerRecord (one per target)
      ├── target        ─ identifier, unique within the run
      ├── handle        ─ WorkerHandle | None (spawn failed)
      ├── ready         ─ set on first Ready, never resets
      ├── active        ─ dispatched and not yet completed
      ├── finished      ─ reported a terminal result this run
      ├── last_outcome  ─ BuildOutcome of the most recent completion
      └── builds        ─ completions received (watch rebuilds included)

Only the coordinator mutates these records, and only from its single
message-handling entry point.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from parbuild.handle import WorkerHandle


def _utcnow() -> datetime:
    return datetime.now(UTC)


class RunState(str, Enum):
    """Lifecycle of a coordinator run."""

    AWAITING_READY = "awaiting_ready"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (RunState.SUCCEEDED, RunState.FAILED)


@dataclass(frozen=True)
class BuildOutcome:
    """Result payload or error payload from one completed build."""

    success: bool
    payload: str
    received_at: datetime = field(default_factory=_utcnow)

    @classmethod
    def succeeded(cls, result: str) -> BuildOutcome:
        return cls(success=True, payload=result)

    @classmethod
    def failed(cls, error: str) -> BuildOutcome:
        return cls(success=False, payload=error)


@dataclass
class WorkerRecord:
    """Lifecycle state of one target's worker."""

    target: str
    handle: WorkerHandle | None = None
    ready: bool = False
    active: bool = False
    finished: bool = False
    last_outcome: BuildOutcome | None = None
    builds: int = 0

    @property
    def eligible(self) -> bool:
        """Idle and not yet finished: may receive an assignment."""
        return self.ready and not self.active and not self.finished

    def complete(self, outcome: BuildOutcome) -> None:
        """Record a terminal build result."""
        self.active = False
        self.finished = True
        self.last_outcome = outcome
        self.builds += 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "target": self.target,
            "pid": self.handle.pid if self.handle else None,
            "ready": self.ready,
            "active": self.active,
            "finished": self.finished,
            "builds": self.builds,
            "success": self.last_outcome.success if self.last_outcome else None,
        }


@dataclass
class RunSummary:
    """What a successful one-shot run resolves with."""

    run_id: str
    targets: list[str]
    outcomes: dict[str, BuildOutcome]
    started_at: datetime
    completed_at: datetime

    @property
    def duration_seconds(self) -> float:
        """Wall-clock duration of the run."""
        return (self.completed_at - self.started_at).total_seconds()

    @property
    def total(self) -> int:
        return len(self.targets)

    def to_dict(self) -> dict[str, Any]:
        """Serialise for logging / CLI output."""
        return {
            "run_id": self.run_id,
            "total": self.total,
            "duration_seconds": round(self.duration_seconds, 3),
            "targets": [
                {
                    "target": target,
                    "success": self.outcomes[target].success if target in self.outcomes else None,
                }
                for target in self.targets
            ],
        }


__all__ = [
    "BuildOutcome",
    "RunState",
    "RunSummary",
    "WorkerRecord",
]
