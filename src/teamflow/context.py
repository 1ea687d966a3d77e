from __future__ import annotations

import json
import logging
import re
from collections.abc import Mapping, Sequence
from typing import Any

from teamflow.events import LogEntry, TaskStatusLog
from teamflow.models import Task
from teamflow.status import TaskStatus

logger = logging.getLogger(__name__)

PLACEHOLDER_PATTERN = re.compile(r"\{([A-Za-z_][A-Za-z0-9_\-.]*)\}")


def format_result(result: Any) -> str:
    if isinstance(result, str):
        return result
    try:
        return json.dumps(result, ensure_ascii=False)
    except (TypeError, ValueError):
        return str(result)


def derive_context(
    tasks: Sequence[Task],
    logs: Sequence[LogEntry],
    current_task_id: str,
) -> str:
    """Summarize completed tasks that come before ``current_task_id`` in plan order.

    Later DONE entries for the same task replace earlier ones, so a revised task contributes
    its latest result only.
    """

    plan_index = {task.id: index for index, task in enumerate(tasks)}
    current_index = plan_index.get(current_task_id)
    if current_index is None:
        logger.warning("Cannot derive context: task %s is not part of the plan", current_task_id)
        return ""

    completed: dict[str, tuple[int, str, Any]] = {}
    for entry in logs:
        if not isinstance(entry, TaskStatusLog) or entry.task_status is not TaskStatus.DONE:
            continue
        index = plan_index.get(entry.task.id)
        if index is None or index >= current_index:
            continue
        result = entry.metadata.result if entry.metadata.result is not None else entry.task.result
        completed[entry.task.id] = (index, entry.task.description, result)

    blocks = [
        f"Task: {description}\nResult: {format_result(result)}\n"
        for _, description, result in sorted(completed.values(), key=lambda item: item[0])
    ]
    return "\n".join(blocks)


def get_task_results(tasks: Sequence[Task]) -> dict[str, Any]:
    return {f"task{index}": task.result for index, task in enumerate(tasks, start=1)}


def interpolate_description(description: str, inputs: Mapping[str, Any]) -> str:
    """Replace ``{name}`` placeholders with run inputs; unknown names stay as written."""

    def _replace(match: re.Match[str]) -> str:
        key = match.group(1)
        if key not in inputs:
            return match.group(0)
        value = inputs[key]
        return value if isinstance(value, str) else format_result(value)

    return PLACEHOLDER_PATTERN.sub(_replace, description)
