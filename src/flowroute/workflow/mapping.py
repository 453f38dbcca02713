"""Resolve task inputs from earlier tasks' recorded outputs."""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass

from flowroute.workflow.task import WorkflowTask

logger = logging.getLogger(__name__)

WorkflowMappings = Mapping[str, Mapping[str, str]]
"""task name -> {input key -> "sourceTaskName.sourceOutputKey"}"""


@dataclass(frozen=True, slots=True)
class SourceRef:
    """Parsed ``"task.output"`` reference."""

    task_name: str
    output_key: str

    @classmethod
    def parse(cls, value: str) -> SourceRef | None:
        parts = value.split(".")
        if len(parts) != 2 or not all(parts):  # noqa: PLR2004
            return None
        return cls(task_name=parts[0], output_key=parts[1])


def populate_inputs(
    task: WorkflowTask,
    *,
    tasks: Sequence[WorkflowTask],
    mappings: WorkflowMappings,
) -> list[str]:
    """Copy mapped source outputs into ``task.inputs``.

    Inputs whose source task or output key is missing are left untouched, so
    required ones later fail ``has_required_inputs()``. Returns the input keys
    that could not be resolved.
    """

    task_mappings = mappings.get(task.name)
    if not task_mappings:
        return []

    unresolved: list[str] = []
    for input_key, source in task_mappings.items():
        ref = SourceRef.parse(source)
        if ref is None:
            logger.warning(
                "Ignoring malformed mapping %r for input %r of task %r.",
                source,
                input_key,
                task.name,
            )
            unresolved.append(input_key)
            continue

        source_task = next((item for item in tasks if item.name == ref.task_name), None)
        if source_task is None or ref.output_key not in source_task.outputs:
            logger.info(
                "Could not populate input %r for task %r: source %s.%s not found.",
                input_key,
                task.name,
                ref.task_name,
                ref.output_key,
            )
            unresolved.append(input_key)
            continue

        task.inputs[input_key] = source_task.outputs[ref.output_key]
        logger.debug(
            "Populated input %r for task %r from %s.%s.",
            input_key,
            task.name,
            ref.task_name,
            ref.output_key,
        )
    return unresolved
