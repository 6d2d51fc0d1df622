"""Data models for a single agent invocation."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any


def now_iso() -> str:
    return datetime.now(UTC).isoformat()


class AgentState(Enum):
    """Where the agent is within one invocation."""

    IDLE = "idle"
    LOCK_ACQUIRED = "lock_acquired"
    SYNCING = "syncing"
    DECIDING = "deciding"
    DEPLOYING = "deploying"
    REPORTING = "reporting"


class OutcomeKind(Enum):
    """Terminal outcome of one invocation."""

    SKIPPED_LOCKED = "skipped-locked"
    SKIPPED_NO_CHANGE = "skipped-no-change"
    DEPLOYED_SUCCESS = "deployed-success"
    DEPLOYED_FAILURE = "deployed-failure"
    SYNC_FAILURE = "sync-failure"
    PRECONDITION_FAILURE = "precondition-failure"

    @property
    def exit_code(self) -> int:
        if self is OutcomeKind.PRECONDITION_FAILURE:
            return 2
        if self in (OutcomeKind.DEPLOYED_FAILURE, OutcomeKind.SYNC_FAILURE):
            return 1
        return 0


@dataclass
class RepositoryState:
    """The on-disk checkout. ``current_revision`` is None until cloned."""

    path: Path
    remote_branch: str
    current_revision: str | None = None

    @property
    def cloned(self) -> bool:
        return self.current_revision is not None


@dataclass(frozen=True)
class ChangeRecord:
    """Result of one sync: the revision before and after."""

    previous_revision: str | None
    new_revision: str
    changed: bool
    cloned: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "previous_revision": self.previous_revision,
            "new_revision": self.new_revision,
            "changed": self.changed,
            "cloned": self.cloned,
        }


@dataclass(frozen=True)
class DeployDecision:
    """Whether to deploy, and every signal that asked for it."""

    deploy: bool
    reasons: tuple[str, ...] = ()


@dataclass(frozen=True)
class LockHolder:
    """Identity written into the lock file by the holding process."""

    pid: int
    acquired_at: str

    def to_dict(self) -> dict[str, Any]:
        return {"pid": self.pid, "acquired_at": self.acquired_at}


@dataclass(frozen=True)
class DeploymentOutcome:
    """What one invocation did. Appended to the outcome log, never mutated."""

    kind: OutcomeKind
    reason: str = ""
    previous_revision: str | None = None
    new_revision: str | None = None
    logs: str = ""
    steps_completed: tuple[str, ...] = ()
    timestamp: str = field(default_factory=now_iso)

    @property
    def attempted(self) -> bool:
        return self.kind in (OutcomeKind.DEPLOYED_SUCCESS, OutcomeKind.DEPLOYED_FAILURE)

    @property
    def succeeded(self) -> bool:
        return self.kind is OutcomeKind.DEPLOYED_SUCCESS

    @property
    def exit_code(self) -> int:
        return self.kind.exit_code

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "attempted": self.attempted,
            "succeeded": self.succeeded,
            "reason": self.reason,
            "previous_revision": self.previous_revision,
            "new_revision": self.new_revision,
            "steps_completed": list(self.steps_completed),
            "timestamp": self.timestamp,
        }
