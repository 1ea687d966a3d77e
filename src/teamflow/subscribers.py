"""Read-only store listeners that render progress through logging."""

from __future__ import annotations

import logging

from teamflow.events import TaskStatusLog, WorkflowStatusLog
from teamflow.status import TaskStatus
from teamflow.store import TeamStore, WorkflowState

logger = logging.getLogger("teamflow.progress")


def _task_position(state: WorkflowState, task_id: str) -> str:
    for index, task in enumerate(state.tasks, start=1):
        if task.id == task_id:
            return f"{index}/{len(state.tasks)}"
    return f"?/{len(state.tasks)}"


def _new_entries(state: WorkflowState, previous: WorkflowState) -> tuple:
    old = previous.logs
    if len(state.logs) >= len(old) and (not old or state.logs[len(old) - 1] is old[-1]):
        return state.logs[len(old) :]
    # reset or restart replaced the log
    return state.logs


def log_status_changes(state: WorkflowState, previous: WorkflowState) -> None:
    for entry in _new_entries(state, previous):
        if isinstance(entry, TaskStatusLog):
            position = _task_position(state, entry.task.id)
            if entry.task_status is TaskStatus.DONE and entry.metadata.stats is not None:
                cost = entry.metadata.cost_details
                logger.info(
                    "Task (%s) %s is DONE in %.2fs, cost %s",
                    position,
                    entry.task.title or entry.task.id,
                    entry.metadata.stats.duration,
                    f"${cost.total_cost:.6f}" if cost is not None and cost.is_known else "unknown",
                )
            else:
                logger.info(
                    "Task (%s) %s: %s",
                    position,
                    entry.task.title or entry.task.id,
                    entry.task_status.value,
                )
        elif isinstance(entry, WorkflowStatusLog):
            logger.info("Workflow %s: %s", entry.workflow_status.value, entry.description)


def attach_progress_logging(store: TeamStore):
    return store.subscribe(log_status_changes)
