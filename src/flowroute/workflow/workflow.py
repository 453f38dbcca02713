"""Workflow: an ordered task sequence with a cursor and an overall state."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from uuid import UUID, uuid4

from flowroute.workflow.models import TaskStatus, WorkflowState
from flowroute.workflow.task import WorkflowTask

logger = logging.getLogger(__name__)


class Workflow:
    """Ordered sequence of tasks, fixed once execution begins."""

    def __init__(
        self,
        *,
        name: str,
        description: str = "",
        tasks: Iterable[WorkflowTask] = (),
    ) -> None:
        self.id: UUID = uuid4()
        self.name = name
        self.description = description
        self._tasks: list[WorkflowTask] = list(tasks)
        self.state = WorkflowState.not_started()
        self.current_task_index = 0

    def __repr__(self) -> str:
        return f"Workflow(name={self.name!r}, tasks={len(self._tasks)}, state={self.state})"

    @property
    def tasks(self) -> tuple[WorkflowTask, ...]:
        return tuple(self._tasks)

    def add_task(self, task: WorkflowTask) -> None:
        """Append a task; the sequence is frozen once the workflow has started."""

        if not self.state.is_not_started:
            raise RuntimeError(
                f"Workflow {self.name!r} cannot accept new tasks in state {self.state}.",
            )
        self._tasks.append(task)

    def update_task(self, task: WorkflowTask, index: int) -> None:
        """Replace the task at ``index``; only allowed before the workflow starts."""

        if not self.state.is_not_started:
            raise RuntimeError(
                f"Workflow {self.name!r} cannot replace tasks in state {self.state}.",
            )
        if 0 <= index < len(self._tasks):
            self._tasks[index] = task

    def task_named(self, name: str) -> WorkflowTask | None:
        """First task with the given name, if any."""

        return next((task for task in self._tasks if task.name == name), None)

    def try_mark_completed(self) -> bool:
        """Mark completed unless a task is still pending or in progress."""

        if any(
            task.status in {TaskStatus.PENDING, TaskStatus.IN_PROGRESS} for task in self._tasks
        ):
            logger.debug(
                "Workflow %s: cannot mark completed, there are still active tasks.",
                self.name,
            )
            return False
        self.state = WorkflowState.completed()
        return True

    def mark_in_progress(self) -> None:
        if not self.state.is_not_started:
            logger.debug(
                "Workflow %s: not marking in progress from state %s.",
                self.name,
                self.state,
            )
            return
        self.state = WorkflowState.in_progress()
        logger.debug("Workflow %s: marked in progress.", self.name)

    def mark_stopped(self) -> None:
        self.state = WorkflowState.stopped()

    def mark_failed(self, retry_count: int) -> None:
        self.state = WorkflowState.failed(retry_count)

    def is_completed(self) -> bool:
        return self.state.is_completed

    def reset(self) -> None:
        """Return to ``not_started`` with the cursor and every task reset."""

        for task in self._tasks:
            task.reset_task()
        self.current_task_index = 0
        self.state = WorkflowState.not_started()

    def evaluate_state(self) -> None:
        """Recompute state from task statuses; a no-op once stopped."""

        if self.state.is_stopped or not self._tasks:
            return

        if all(task.status is TaskStatus.PENDING for task in self._tasks):
            self.state = WorkflowState.not_started()
            return
        if all(task.status is TaskStatus.COMPLETED for task in self._tasks):
            if not self.state.is_completed:
                self.state = WorkflowState.completed()
            return
        exhausted = next(
            (
                task
                for task in self._tasks
                if task.status is TaskStatus.FAILED and not task.can_retry()
            ),
            None,
        )
        if exhausted is not None:
            if not self.state.is_failed:
                self.state = WorkflowState.failed(exhausted.retry_count)
            return
        if not self.state.is_in_progress:
            self.state = WorkflowState.in_progress()

    def active_tasks(self) -> list[WorkflowTask]:
        return [
            task
            for task in self._tasks
            if task.status in {TaskStatus.PENDING, TaskStatus.IN_PROGRESS}
        ]

    def completed_tasks(self) -> list[WorkflowTask]:
        return [task for task in self._tasks if task.status is TaskStatus.COMPLETED]


class WorkflowBuilder:
    """Explicit ordered builder for workflows.

    Name and description are singletons: the first value set wins and later
    ones are ignored. Tasks concatenate in the order they are added.
    """

    def __init__(self, name: str | None = None, description: str | None = None) -> None:
        self._name = name
        self._description = description
        self._tasks: list[WorkflowTask] = []

    def named(self, name: str) -> WorkflowBuilder:
        if self._name is None:
            self._name = name
        else:
            logger.debug("Ignoring workflow name %r, already set to %r.", name, self._name)
        return self

    def described(self, description: str) -> WorkflowBuilder:
        if self._description is None:
            self._description = description
        return self

    def task(self, task: WorkflowTask) -> WorkflowBuilder:
        self._tasks.append(task)
        return self

    def tasks(self, tasks: Iterable[WorkflowTask]) -> WorkflowBuilder:
        self._tasks.extend(tasks)
        return self

    def build(self) -> Workflow:
        if not self._name:
            raise ValueError("Workflow name is required.")
        return Workflow(
            name=self._name,
            description=self._description or "",
            tasks=self._tasks,
        )
