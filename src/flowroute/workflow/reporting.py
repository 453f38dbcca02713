"""Run reports for workflows and their tasks."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Any
from uuid import UUID

from flowroute.workflow.models import WorkflowState
from flowroute.workflow.workflow import Workflow


@dataclass(slots=True)
class TaskReport:
    """Outcome of one task after (or during) a run."""

    id: UUID
    name: str
    description: str
    status: str
    attempts: int
    retry_count: int
    max_retries: int
    execution_seconds: float | None
    outputs: dict[str, Any]
    error: str | None


@dataclass(slots=True)
class WorkflowReport:
    """Workflow-level summary with per-task reports."""

    id: UUID
    name: str
    description: str
    state: WorkflowState
    current_task_index: int
    tasks: list[TaskReport] = field(default_factory=list)

    @property
    def status_counts(self) -> dict[str, int]:
        return dict(Counter(task.status for task in self.tasks))

    @property
    def total_execution_seconds(self) -> float:
        return sum(task.execution_seconds or 0.0 for task in self.tasks)


def generate_report(workflow: Workflow) -> WorkflowReport:
    """Snapshot a workflow into a report."""

    return WorkflowReport(
        id=workflow.id,
        name=workflow.name,
        description=workflow.description,
        state=workflow.state,
        current_task_index=workflow.current_task_index,
        tasks=[
            TaskReport(
                id=task.id,
                name=task.name,
                description=task.description,
                status=task.status.value,
                attempts=task.attempts,
                retry_count=task.retry_count,
                max_retries=task.max_retries,
                execution_seconds=task.execution_seconds,
                outputs=dict(task.outputs),
                error=task.last_error,
            )
            for task in workflow.tasks
        ],
    )


def render_report_lines(report: WorkflowReport) -> list[str]:
    """Render operator-facing report lines."""

    lines = [
        f"Workflow {report.name}: {report.state}",
        f"Cursor: {report.current_task_index}/{len(report.tasks)}",
        "Task status: " + (_fmt_key_value(report.status_counts) or "none"),
        f"Total execution: {report.total_execution_seconds:.3f}s",
    ]
    for index, task in enumerate(report.tasks):
        elapsed = "-" if task.execution_seconds is None else f"{task.execution_seconds:.3f}s"
        line = (
            f"  [{index}] {task.name} status={task.status} "
            f"retries={task.retry_count}/{task.max_retries} elapsed={elapsed}"
        )
        if task.outputs:
            line += f" outputs={','.join(sorted(task.outputs))}"
        if task.error:
            line += f" error={task.error}"
        lines.append(line)
    return lines


def _fmt_key_value(values: dict[str, int]) -> str:
    return " ".join(f"{key}={values[key]}" for key in sorted(values))
