"""State types for tasks and workflows."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum


def utc_now() -> datetime:
    """Current UTC timestamp."""

    return datetime.now(tz=UTC)


class TaskStatus(str, Enum):
    """Per-task lifecycle states."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class WorkflowStateKind(str, Enum):
    """Workflow lifecycle states."""

    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    STOPPED = "stopped"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class WorkflowState:
    """Workflow state with the timestamp and retry count carried by terminal states."""

    kind: WorkflowStateKind
    at: datetime | None = None
    retry_count: int | None = None

    @classmethod
    def not_started(cls) -> WorkflowState:
        return cls(WorkflowStateKind.NOT_STARTED)

    @classmethod
    def in_progress(cls) -> WorkflowState:
        return cls(WorkflowStateKind.IN_PROGRESS)

    @classmethod
    def stopped(cls, at: datetime | None = None) -> WorkflowState:
        return cls(WorkflowStateKind.STOPPED, at=at or utc_now())

    @classmethod
    def completed(cls, at: datetime | None = None) -> WorkflowState:
        return cls(WorkflowStateKind.COMPLETED, at=at or utc_now())

    @classmethod
    def failed(cls, retry_count: int, at: datetime | None = None) -> WorkflowState:
        return cls(WorkflowStateKind.FAILED, at=at or utc_now(), retry_count=retry_count)

    @property
    def is_not_started(self) -> bool:
        return self.kind is WorkflowStateKind.NOT_STARTED

    @property
    def is_in_progress(self) -> bool:
        return self.kind is WorkflowStateKind.IN_PROGRESS

    @property
    def is_stopped(self) -> bool:
        return self.kind is WorkflowStateKind.STOPPED

    @property
    def is_completed(self) -> bool:
        return self.kind is WorkflowStateKind.COMPLETED

    @property
    def is_failed(self) -> bool:
        return self.kind is WorkflowStateKind.FAILED

    @property
    def is_terminal(self) -> bool:
        return self.kind in {
            WorkflowStateKind.STOPPED,
            WorkflowStateKind.COMPLETED,
            WorkflowStateKind.FAILED,
        }

    def __str__(self) -> str:
        if self.kind is WorkflowStateKind.STOPPED:
            return f"Stopped on {self.at.isoformat()}"
        if self.kind is WorkflowStateKind.COMPLETED:
            return f"Completed on {self.at.isoformat()}"
        if self.kind is WorkflowStateKind.FAILED:
            return f"Failed on {self.at.isoformat()} after {self.retry_count} retries"
        if self.kind is WorkflowStateKind.IN_PROGRESS:
            return "In Progress"
        return "Not Started"
