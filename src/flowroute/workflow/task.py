"""Task state machine: one named unit of work inside a workflow."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from flowroute.workflow.models import TaskStatus, utc_now

OPTIONAL_INPUT_MARKER = "?"

ExecuteBlock = Callable[[dict[str, Any]], Awaitable[dict[str, Any]]]


class WorkflowTask:
    """Task with dynamic input/output bags, status and retry bookkeeping.

    Work is supplied either as an inline ``execute_block`` coroutine function or
    by overriding :meth:`execute` in a subclass. Input keys ending with ``?`` are
    optional and may stay ``None`` without failing validation.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        name: str | None = None,
        description: str = "",
        inputs: dict[str, Any] | None = None,
        max_retries: int = 0,
        status: TaskStatus = TaskStatus.PENDING,
        execute_block: ExecuteBlock | None = None,
    ) -> None:
        if max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {max_retries}")
        self.id: UUID = uuid4()
        self.name = name or type(self).__name__
        self.description = description
        self.inputs: dict[str, Any] = dict(inputs or {})
        self.outputs: dict[str, Any] = {}
        self.status = status
        self.creation_date: datetime = utc_now()
        self.completion_date: datetime | None = None
        self.started_at: datetime | None = None
        self.retry_count = 0
        self.max_retries = max_retries
        self.attempts = 0
        self.last_error: str | None = None
        self._execute_block = execute_block

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(name={self.name!r}, status={self.status.value}, "
            f"retry_count={self.retry_count}/{self.max_retries})"
        )

    async def execute(self, inputs: dict[str, Any]) -> dict[str, Any]:
        """Run the task and return its outputs."""

        if self._execute_block is None:
            raise NotImplementedError(
                f"Task {self.name!r} has no execute_block; subclasses must override execute().",
            )
        return await self._execute_block(inputs)

    def present_inputs(self) -> dict[str, Any]:
        """Inputs holding a value, as passed to :meth:`execute`."""

        return {key: value for key, value in self.inputs.items() if value is not None}

    def mark_in_progress(self) -> None:
        self.status = TaskStatus.IN_PROGRESS
        self.started_at = utc_now()
        self.attempts += 1

    def mark_completed(self, outputs: dict[str, Any] | None = None) -> None:
        self.status = TaskStatus.COMPLETED
        self.completion_date = utc_now()
        if outputs:
            self.update_outputs(outputs)

    def mark_failed(self) -> None:
        self.status = TaskStatus.FAILED
        self.completion_date = utc_now()
        self.outputs = {}

    def reset_task(self, *, preserve_retry_count: bool = False) -> None:
        """Return to ``pending`` with outputs and completion date cleared.

        The retry counter is zeroed unless ``preserve_retry_count`` is set,
        which is how the manager re-enqueues a task for another attempt.
        """

        self.status = TaskStatus.PENDING
        self.completion_date = None
        self.outputs = {}
        if not preserve_retry_count:
            self.retry_count = 0
            self.attempts = 0
            self.last_error = None
            self.started_at = None

    def increment_retry_count(self) -> None:
        self.retry_count += 1

    def can_retry(self) -> bool:
        return self.retry_count < self.max_retries

    def has_required_inputs(self) -> bool:
        return all(
            value is not None
            for key, value in self.inputs.items()
            if not key.endswith(OPTIONAL_INPUT_MARKER)
        )

    def update_outputs(self, new_outputs: dict[str, Any]) -> None:
        self.outputs.update(new_outputs)

    @property
    def execution_seconds(self) -> float | None:
        if self.started_at is None or self.completion_date is None:
            return None
        return (self.completion_date - self.started_at).total_seconds()
