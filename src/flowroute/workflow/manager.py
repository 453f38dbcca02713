"""Sequential workflow executor with input mapping and retry policy."""

from __future__ import annotations

import logging
from typing import Any

from flowroute.workflow.mapping import WorkflowMappings, populate_inputs
from flowroute.workflow.models import WorkflowState
from flowroute.workflow.task import OPTIONAL_INPUT_MARKER, WorkflowTask
from flowroute.workflow.workflow import Workflow

logger = logging.getLogger(__name__)


class WorkflowManager:
    """Drives a workflow forward one task at a time.

    Exactly one task is in flight per run. Failures (missing required inputs or
    an exception from ``execute``) are retried immediately on the same task while
    ``can_retry()`` holds; once retries are exhausted the task and the workflow
    are marked failed and nothing after it runs. Task errors never escape
    :meth:`start`; callers observe ``workflow.state``.
    """

    def __init__(self, workflow: Workflow, mappings: WorkflowMappings | None = None) -> None:
        self.workflow = workflow
        self.mappings: WorkflowMappings = dict(mappings or {})
        self.final_outputs: dict[str, Any] = {}
        self._running = False

    @property
    def state(self) -> WorkflowState:
        return self.workflow.state

    @property
    def current_task_index(self) -> int:
        return self.workflow.current_task_index

    async def start(self) -> None:
        """Start (or resume) execution from the current cursor."""

        if self._running:
            logger.info("Workflow %s is already running; ignoring start.", self.workflow.name)
            return
        if not (self.workflow.state.is_not_started or self.workflow.state.is_in_progress):
            logger.info(
                "Cannot start workflow %s. Current state: %s",
                self.workflow.name,
                self.workflow.state,
            )
            return

        self.workflow.mark_in_progress()
        logger.info(
            "Workflow %s started at task index %d.",
            self.workflow.name,
            self.current_task_index,
        )
        await self.execute_current_task()

    def stop_workflow(self) -> None:
        """Stop further progression; a task already running is not interrupted."""

        if not (self.workflow.state.is_not_started or self.workflow.state.is_in_progress):
            logger.info(
                "Workflow %s already stopped or finished. Current state: %s",
                self.workflow.name,
                self.workflow.state,
            )
            return
        self.workflow.mark_stopped()
        logger.info("Workflow %s has been stopped.", self.workflow.name)

    def evaluate_state(self) -> None:
        self.workflow.evaluate_state()

    async def execute_current_task(self) -> None:
        """Run tasks from the cursor until the workflow completes, fails or stops.

        Only one run per manager is active at a time; a nested or concurrent call
        returns immediately.
        """

        if self._running:
            logger.info("Workflow %s is already running a task.", self.workflow.name)
            return
        self._running = True
        try:
            await self._run_tasks()
        finally:
            self._running = False

    async def _run_tasks(self) -> None:
        while True:
            if not (self.workflow.state.is_not_started or self.workflow.state.is_in_progress):
                logger.info(
                    "Workflow %s is unable to continue. Current state: %s",
                    self.workflow.name,
                    self.workflow.state,
                )
                return

            tasks = self.workflow.tasks
            index = self.workflow.current_task_index
            if index >= len(tasks):
                if self.workflow.try_mark_completed():
                    logger.info("Workflow %s completed.", self.workflow.name)
                return

            task = tasks[index]
            populate_inputs(task, tasks=tasks, mappings=self.mappings)

            if not task.has_required_inputs():
                missing = sorted(
                    key
                    for key, value in task.inputs.items()
                    if value is None and not key.endswith(OPTIONAL_INPUT_MARKER)
                )
                task.last_error = f"Missing required inputs: {', '.join(missing)}"
                logger.warning("Required inputs not present for task %s: %s", task.name, missing)
                if not self._handle_task_failure(task):
                    return
                continue

            self.workflow.mark_in_progress()
            task.mark_in_progress()
            try:
                outputs = await task.execute(task.present_inputs())
            except Exception as error:  # noqa: BLE001
                task.last_error = f"{type(error).__name__}: {error}"
                if not self.workflow.state.is_in_progress:
                    logger.info(
                        "Ignoring failure of task %s: workflow %s is no longer in progress.",
                        task.name,
                        self.workflow.name,
                    )
                    return
                logger.warning("Task %s failed with error: %s", task.name, error, exc_info=True)
                if not self._handle_task_failure(task):
                    return
                continue

            if not self.workflow.state.is_in_progress:
                logger.info(
                    "Discarding outputs of task %s: workflow %s left in-progress during execution.",
                    task.name,
                    self.workflow.name,
                )
                return

            self._complete_task(task, outputs or {})

    def _complete_task(self, task: WorkflowTask, outputs: dict[str, Any]) -> None:
        task.mark_completed(outputs)
        logger.info("Task %s completed with output keys: %s", task.name, sorted(outputs))

        self.workflow.current_task_index += 1
        if self.workflow.current_task_index < len(self.workflow.tasks):
            return

        # Only the last task's outputs become the workflow result.
        self.final_outputs = dict(task.outputs)
        if self.workflow.try_mark_completed():
            logger.info("Workflow %s completed.", self.workflow.name)

    def _handle_task_failure(self, task: WorkflowTask) -> bool:
        """Apply retry policy; return True if the same task should run again."""

        if task.can_retry():
            task.increment_retry_count()
            task.reset_task(preserve_retry_count=True)
            logger.warning(
                "Retrying task %s. Retry %d of %d.",
                task.name,
                task.retry_count,
                task.max_retries,
            )
            return True

        task.mark_failed()
        self.workflow.mark_failed(retry_count=task.retry_count)
        logger.error(
            "Task %s failed after %d retries. Stopping workflow %s.",
            task.name,
            task.retry_count,
            self.workflow.name,
        )
        return False
