from __future__ import annotations

import allure
import pytest

from flowroute.workflow.manager import WorkflowManager
from flowroute.workflow.models import TaskStatus, WorkflowStateKind
from flowroute.workflow.task import WorkflowTask
from flowroute.workflow.workflow import Workflow, WorkflowBuilder

pytestmark = [
    allure.epic("Workflow Engine"),
    allure.feature("Workflow State"),
]


def _workflow(*statuses: TaskStatus, max_retries: int = 0) -> Workflow:
    tasks = [
        WorkflowTask(name=f"t{index}", status=status, max_retries=max_retries)
        for index, status in enumerate(statuses)
    ]
    return Workflow(name="wf", tasks=tasks)


def test_evaluate_state_all_pending_is_not_started() -> None:
    workflow = _workflow(TaskStatus.PENDING, TaskStatus.PENDING)
    workflow.evaluate_state()
    assert workflow.state.kind is WorkflowStateKind.NOT_STARTED


def test_evaluate_state_all_completed_is_idempotent() -> None:
    workflow = _workflow(TaskStatus.COMPLETED, TaskStatus.COMPLETED)

    workflow.evaluate_state()
    first = workflow.state
    workflow.evaluate_state()

    assert workflow.state.kind is WorkflowStateKind.COMPLETED
    assert workflow.state == first


def test_evaluate_state_exhausted_failure_is_failed() -> None:
    workflow = _workflow(TaskStatus.COMPLETED, TaskStatus.FAILED)
    workflow.evaluate_state()
    workflow.evaluate_state()

    assert workflow.state.kind is WorkflowStateKind.FAILED
    assert workflow.state.retry_count == 0


def test_evaluate_state_mixed_is_in_progress() -> None:
    workflow = _workflow(TaskStatus.COMPLETED, TaskStatus.PENDING)
    workflow.evaluate_state()
    assert workflow.state.kind is WorkflowStateKind.IN_PROGRESS


def test_evaluate_state_retryable_failure_is_still_in_progress() -> None:
    workflow = _workflow(TaskStatus.FAILED, TaskStatus.PENDING, max_retries=1)
    workflow.evaluate_state()
    assert workflow.state.kind is WorkflowStateKind.IN_PROGRESS


def test_evaluate_state_keeps_stopped() -> None:
    workflow = _workflow(TaskStatus.COMPLETED, TaskStatus.COMPLETED)
    workflow.mark_stopped()

    workflow.evaluate_state()

    assert workflow.state.kind is WorkflowStateKind.STOPPED


def test_evaluate_state_without_tasks_is_noop() -> None:
    workflow = Workflow(name="empty")
    workflow.evaluate_state()
    assert workflow.state.kind is WorkflowStateKind.NOT_STARTED


def test_add_task_only_before_start() -> None:
    workflow = Workflow(name="wf")
    workflow.add_task(WorkflowTask(name="a"))
    workflow.mark_in_progress()

    with pytest.raises(RuntimeError, match="cannot accept new tasks"):
        workflow.add_task(WorkflowTask(name="b"))
    assert [task.name for task in workflow.tasks] == ["a"]


def test_try_mark_completed_requires_no_active_tasks() -> None:
    workflow = _workflow(TaskStatus.COMPLETED, TaskStatus.IN_PROGRESS)
    assert not workflow.try_mark_completed()

    workflow.tasks[1].mark_completed()
    assert workflow.try_mark_completed()
    assert workflow.is_completed()


def test_reset_returns_everything_to_start() -> None:
    workflow = _workflow(TaskStatus.COMPLETED, TaskStatus.FAILED)
    workflow.current_task_index = 2
    workflow.mark_failed(retry_count=0)

    workflow.reset()

    assert workflow.state.kind is WorkflowStateKind.NOT_STARTED
    assert workflow.current_task_index == 0
    assert all(task.status is TaskStatus.PENDING for task in workflow.tasks)


def test_task_helpers() -> None:
    workflow = _workflow(TaskStatus.COMPLETED, TaskStatus.PENDING, TaskStatus.IN_PROGRESS)
    replacement = WorkflowTask(name="swapped")

    workflow.update_task(replacement, 1)
    workflow.update_task(WorkflowTask(name="ignored"), 10)

    assert workflow.task_named("swapped") is replacement
    assert workflow.task_named("missing") is None
    assert [task.name for task in workflow.completed_tasks()] == ["t0"]
    assert [task.name for task in workflow.active_tasks()] == ["swapped", "t2"]


def test_state_strings() -> None:
    workflow = Workflow(name="wf")
    assert str(workflow.state) == "Not Started"
    workflow.mark_failed(retry_count=3)
    assert str(workflow.state).endswith("after 3 retries")


def test_builder_first_name_wins_and_tasks_concatenate() -> None:
    workflow = (
        WorkflowBuilder()
        .named("first")
        .described("about")
        .task(WorkflowTask(name="a"))
        .named("second")
        .described("ignored")
        .tasks([WorkflowTask(name="b"), WorkflowTask(name="c")])
        .build()
    )

    assert workflow.name == "first"
    assert workflow.description == "about"
    assert [task.name for task in workflow.tasks] == ["a", "b", "c"]


def test_builder_requires_name() -> None:
    with pytest.raises(ValueError, match="name is required"):
        WorkflowBuilder().task(WorkflowTask(name="a")).build()


def test_update_task_only_before_start() -> None:
    workflow = _workflow(TaskStatus.PENDING, TaskStatus.PENDING)
    workflow.mark_in_progress()

    with pytest.raises(RuntimeError, match="cannot replace tasks"):
        workflow.update_task(WorkflowTask(name="X"), 1)
    assert [task.name for task in workflow.tasks] == ["t0", "t1"]


@pytest.mark.asyncio
async def test_task_cannot_rewrite_sequence_mid_run() -> None:
    workflow: Workflow
    errors: list[str] = []

    async def rewrite(inputs):
        try:
            workflow.update_task(WorkflowTask(name="X"), 1)
        except RuntimeError as error:
            errors.append(str(error))
        return {}

    async def noop(inputs):
        return {}

    workflow = Workflow(
        name="wf",
        tasks=[
            WorkflowTask(name="A", execute_block=rewrite),
            WorkflowTask(name="B", execute_block=noop),
        ],
    )

    await WorkflowManager(workflow).start()

    assert [task.name for task in workflow.tasks] == ["A", "B"]
    assert len(errors) == 1
    assert workflow.state.kind is WorkflowStateKind.COMPLETED
