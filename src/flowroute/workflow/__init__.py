"""Sequential task workflows with input mapping and bounded retries."""

from flowroute.workflow.manager import WorkflowManager
from flowroute.workflow.mapping import WorkflowMappings, populate_inputs
from flowroute.workflow.models import TaskStatus, WorkflowState, WorkflowStateKind
from flowroute.workflow.reporting import (
    TaskReport,
    WorkflowReport,
    generate_report,
    render_report_lines,
)
from flowroute.workflow.task import WorkflowTask
from flowroute.workflow.workflow import Workflow, WorkflowBuilder

__all__ = [
    "TaskReport",
    "TaskStatus",
    "Workflow",
    "WorkflowBuilder",
    "WorkflowManager",
    "WorkflowMappings",
    "WorkflowReport",
    "WorkflowState",
    "WorkflowStateKind",
    "WorkflowTask",
    "generate_report",
    "populate_inputs",
    "render_report_lines",
]
