"""Task transitions.

The module-level functions are pure reducers: they validate the transition, append exactly
one task log entry and return the new state, raising ``IllegalTransitionError`` or
``StructuralError`` instead of mutating anything. ``TaskLifecycleManager`` applies them to a
``TeamStore`` and turns those errors into logged no-ops.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import replace
from typing import Any

from teamflow.errors import Diagnostic, IllegalTransitionError, StructuralError
from teamflow.events import AgentSnapshot, TaskLogMetadata, TaskSnapshot, TaskStatusLog
from teamflow.models import CostDetails, Feedback, Task, TaskStats
from teamflow.pricing import DEFAULT_PRICING, PricingTable, calculate_task_cost
from teamflow.stats import compute_task_stats
from teamflow.status import (
    RESET_TASK_STATUS,
    WORKFLOW_TRANSITIONS,
    TaskStatus,
    WorkflowStatus,
    can_transition,
    ensure_task_transition,
)
from teamflow.store import TeamStore, WorkflowState
from teamflow.workflow import block_workflow, finish_workflow, transition_workflow

logger = logging.getLogger(__name__)

DEBUG_ACTION = "Try to debug the application to find the root cause of the error."
BLOCKED_ACTION = "Provide feedback on the task or fix its inputs, then let the workflow continue."
STOPPED_ACTION = "Task manually stopped by user."


def _checked_task(state: WorkflowState, task_id: str) -> Task:
    if not isinstance(task_id, str) or not task_id:
        raise StructuralError("Task id must be a non-empty string.", task_id=None)
    task = state.get_task(task_id)
    if not isinstance(task.feedback_history, tuple) or not all(
        isinstance(item, Feedback) for item in task.feedback_history
    ):
        raise StructuralError(
            f"Task '{task_id}' has a malformed feedback history.", task_id=task_id
        )
    return task


def _stats_and_cost(
    state: WorkflowState, task: Task, *, now: int, pricing: PricingTable
) -> tuple[TaskStats, CostDetails | None]:
    stats = compute_task_stats(task, state.logs, now=now)
    if task.agent is None:
        return stats, None
    return stats, calculate_task_cost(task.agent.llm_config.model, stats.llm_usage, pricing)


def _append_task_log(
    state: WorkflowState,
    task: Task,
    description: str,
    *,
    now: int,
    metadata: TaskLogMetadata | None = None,
) -> WorkflowState:
    entry = TaskStatusLog(
        timestamp=now,
        task=TaskSnapshot.from_task(task),
        task_status=task.status,
        description=description,
        agent=AgentSnapshot.from_agent(task.agent) if task.agent is not None else None,
        metadata=metadata or TaskLogMetadata(),
    )
    return state.replace_task(task).append_logs(entry)


def set_task_status(state: WorkflowState, task_id: str, target: TaskStatus) -> WorkflowState:
    """Move a task without logging; used for TODO/REVISE/RESUMED -> DOING."""

    task = _checked_task(state, task_id)
    ensure_task_transition(task.status, target, task_id=task_id)
    return state.replace_task(replace(task, status=target))


def reset_task(state: WorkflowState, task_id: str) -> WorkflowState:
    task = _checked_task(state, task_id)
    if task.status is RESET_TASK_STATUS:
        return state
    return state.replace_task(replace(task, status=RESET_TASK_STATUS, error=None))


def start_task(
    state: WorkflowState, task_id: str, *, now: int, description: str | None = None
) -> WorkflowState:
    """Append the 'started' DOING entry that anchors the task's stats window."""

    task = _checked_task(state, task_id)
    if task.status is not TaskStatus.DOING:
        raise IllegalTransitionError(
            f"Task '{task_id}' cannot start while {task.status.value}.",
            entity="task",
            current=task.status.value,
            target=TaskStatus.DOING.value,
        )
    if description is not None:
        task = replace(task, interpolated_description=description)
    return _append_task_log(state, task, f"Task {task.label} started.", now=now)


def complete(
    state: WorkflowState,
    task_id: str,
    result: Any,
    *,
    now: int,
    pricing: PricingTable = DEFAULT_PRICING,
) -> WorkflowState:
    task = _checked_task(state, task_id)
    needs_validation = (
        task.external_validation_required and task.status is not TaskStatus.VALIDATED
    )
    target = TaskStatus.AWAITING_VALIDATION if needs_validation else TaskStatus.DONE
    ensure_task_transition(task.status, target, task_id=task_id)

    stats, cost = _stats_and_cost(state, task, now=now, pricing=pricing)
    updated = replace(task.with_feedback_processed(), status=target, result=result, error=None)
    metadata = TaskLogMetadata(stats=stats, cost_details=cost, result=result)

    if needs_validation:
        state = _append_task_log(
            state, updated, f"Task {task.label} awaits validation.", now=now, metadata=metadata
        )
        return block_workflow(state, now=now, task=updated, pricing=pricing)

    state = _append_task_log(
        state, updated, f"Task {task.label} completed.", now=now, metadata=metadata
    )
    if all(item.status is TaskStatus.DONE for item in state.tasks) and can_transition(
        WORKFLOW_TRANSITIONS, state.status, WorkflowStatus.FINISHED
    ):
        state = finish_workflow(state, now=now, pricing=pricing)
    return state


def _block_task(
    state: WorkflowState,
    task_id: str,
    error: BaseException,
    *,
    now: int,
    pricing: PricingTable,
    name: str,
    recommended_action: str,
    escalate: bool,
) -> WorkflowState:
    task = _checked_task(state, task_id)
    ensure_task_transition(task.status, TaskStatus.BLOCKED, task_id=task_id)
    stats, cost = _stats_and_cost(state, task, now=now, pricing=pricing)
    message = str(error) or type(error).__name__
    diagnostic = Diagnostic.from_exception(
        error,
        name=name,
        message=f"Task '{task.label}' is blocked: {message}",
        recommended_action=recommended_action,
        context={"task_id": task.id, "agent": task.agent.name if task.agent else None},
    )
    updated = replace(task.with_feedback_processed(), status=TaskStatus.BLOCKED, error=message)
    state = _append_task_log(
        state,
        updated,
        f"Task {task.label} blocked: {message}",
        now=now,
        metadata=TaskLogMetadata(
            stats=stats, cost_details=cost, error=message, diagnostic=diagnostic
        ),
    )
    if escalate:
        state = block_workflow(
            state, now=now, task=updated, error=message, diagnostic=diagnostic, pricing=pricing
        )
    return state


def error(
    state: WorkflowState,
    task_id: str,
    exc: BaseException,
    *,
    now: int,
    pricing: PricingTable = DEFAULT_PRICING,
) -> WorkflowState:
    """Agent raised: BLOCKED, escalated unless the task opted out with escalate_errors."""

    task = _checked_task(state, task_id)
    return _block_task(
        state,
        task_id,
        exc,
        now=now,
        pricing=pricing,
        name="Task Error Encountered",
        recommended_action=DEBUG_ACTION,
        escalate=task.escalate_errors,
    )


def blocked(
    state: WorkflowState,
    task_id: str,
    exc: BaseException,
    *,
    now: int,
    pricing: PricingTable = DEFAULT_PRICING,
) -> WorkflowState:
    return _block_task(
        state,
        task_id,
        exc,
        now=now,
        pricing=pricing,
        name="TASK BLOCKED",
        recommended_action=BLOCKED_ACTION,
        escalate=True,
    )


def abort(
    state: WorkflowState,
    task_id: str,
    exc: BaseException | None = None,
    *,
    now: int,
    pricing: PricingTable = DEFAULT_PRICING,
) -> WorkflowState:
    task = _checked_task(state, task_id)
    ensure_task_transition(task.status, TaskStatus.ABORTED, task_id=task_id)
    stats, cost = _stats_and_cost(state, task, now=now, pricing=pricing)
    diagnostic = Diagnostic.from_exception(
        exc,
        name="TASK STOPPED",
        message=f"Task '{task.label}' was aborted.",
        recommended_action=STOPPED_ACTION,
        context={"task_id": task.id},
    )
    return _append_task_log(
        state,
        replace(task, status=TaskStatus.ABORTED),
        f"Task {task.label} aborted.",
        now=now,
        metadata=TaskLogMetadata(
            stats=stats,
            cost_details=cost,
            error=str(exc) if exc is not None else None,
            diagnostic=diagnostic,
        ),
    )


def pause(
    state: WorkflowState, task_id: str, *, now: int, pricing: PricingTable = DEFAULT_PRICING
) -> WorkflowState:
    task = _checked_task(state, task_id)
    ensure_task_transition(task.status, TaskStatus.PAUSED, task_id=task_id)
    stats, cost = _stats_and_cost(state, task, now=now, pricing=pricing)
    return _append_task_log(
        state,
        replace(task, status=TaskStatus.PAUSED),
        f"Task {task.label} paused.",
        now=now,
        metadata=TaskLogMetadata(stats=stats, cost_details=cost),
    )


def resume(
    state: WorkflowState, task_id: str, *, now: int, pricing: PricingTable = DEFAULT_PRICING
) -> WorkflowState:
    task = _checked_task(state, task_id)
    ensure_task_transition(task.status, TaskStatus.RESUMED, task_id=task_id)
    stats, cost = _stats_and_cost(state, task, now=now, pricing=pricing)
    return _append_task_log(
        state,
        replace(task, status=TaskStatus.RESUMED),
        f"Task {task.label} resumed.",
        now=now,
        metadata=TaskLogMetadata(stats=stats, cost_details=cost),
    )


def provide_feedback(
    state: WorkflowState,
    task_id: str,
    content: str,
    *,
    now: int,
    user_id: str = "user",
) -> WorkflowState:
    task = _checked_task(state, task_id)
    if not isinstance(content, str) or not content.strip():
        raise StructuralError("Feedback content must be a non-empty string.", task_id=task_id)
    ensure_task_transition(task.status, TaskStatus.REVISE, task_id=task_id)

    feedback = Feedback(content=content, timestamp=now, user_id=user_id)
    updated = replace(
        task,
        status=TaskStatus.REVISE,
        feedback_history=task.feedback_history + (feedback,),
    )
    state = transition_workflow(
        state,
        WorkflowStatus.RUNNING,
        f"Feedback received for task {task.label}; workflow running again.",
        now=now,
        task=updated,
    )
    return _append_task_log(
        state,
        updated,
        f"Task {task.label} needs revision.",
        now=now,
        metadata=TaskLogMetadata(feedback=feedback),
    )


def validate(
    state: WorkflowState,
    task_id: str,
    *,
    now: int,
    pricing: PricingTable = DEFAULT_PRICING,
) -> WorkflowState:
    task = _checked_task(state, task_id)
    if task.status is not TaskStatus.AWAITING_VALIDATION:
        raise IllegalTransitionError(
            f"Task '{task_id}' is not awaiting validation ({task.status.value}).",
            entity="task",
            current=task.status.value,
            target=TaskStatus.VALIDATED.value,
        )
    updated = replace(task, status=TaskStatus.VALIDATED)
    state = transition_workflow(
        state,
        WorkflowStatus.RUNNING,
        f"Task {task.label} validated; workflow running again.",
        now=now,
        task=updated,
    )
    state = _append_task_log(state, updated, f"Task {task.label} validated.", now=now)
    return complete(state, task_id, updated.result, now=now, pricing=pricing)


Reducer = Callable[[WorkflowState], WorkflowState]


class TaskLifecycleManager:
    """Applies task reducers to a store. Rejected transitions are logged and ignored."""

    def __init__(self, store: TeamStore, *, pricing: PricingTable = DEFAULT_PRICING) -> None:
        self.store = store
        self.pricing = pricing

    def _now(self) -> int:
        return self.store.clock()

    def _apply(self, operation: str, task_id: str, reducer: Reducer) -> bool:
        try:
            self.store.update(reducer)
        except (IllegalTransitionError, StructuralError) as exc:
            logger.error("Ignored %s for task %s: %s", operation, task_id, exc)
            return False
        return True

    def _report_block(self, task_id: str) -> None:
        for entry in reversed(self.store.get().logs):
            if isinstance(entry, TaskStatusLog) and entry.task.id == task_id:
                if entry.metadata.diagnostic is not None:
                    logger.error(entry.metadata.diagnostic.pretty_message)
                return

    def set_status(self, task_id: str, target: TaskStatus) -> bool:
        return self._apply(
            f"status change to {target.value}",
            task_id,
            lambda state: set_task_status(state, task_id, target),
        )

    def reset(self, task_id: str) -> bool:
        return self._apply("reset", task_id, lambda state: reset_task(state, task_id))

    def start(self, task_id: str, *, description: str | None = None) -> bool:
        now = self._now()
        return self._apply(
            "start",
            task_id,
            lambda state: start_task(state, task_id, now=now, description=description),
        )

    def complete(self, task_id: str, result: Any) -> bool:
        now = self._now()
        return self._apply(
            "complete",
            task_id,
            lambda state: complete(state, task_id, result, now=now, pricing=self.pricing),
        )

    def error(self, task_id: str, exc: BaseException) -> bool:
        now = self._now()
        applied = self._apply(
            "error",
            task_id,
            lambda state: error(state, task_id, exc, now=now, pricing=self.pricing),
        )
        if applied:
            self._report_block(task_id)
        return applied

    def blocked(self, task_id: str, exc: BaseException) -> bool:
        now = self._now()
        applied = self._apply(
            "blocked",
            task_id,
            lambda state: blocked(state, task_id, exc, now=now, pricing=self.pricing),
        )
        if applied:
            self._report_block(task_id)
        return applied

    def abort(self, task_id: str, exc: BaseException | None = None) -> bool:
        now = self._now()
        applied = self._apply(
            "abort",
            task_id,
            lambda state: abort(state, task_id, exc, now=now, pricing=self.pricing),
        )
        if applied:
            logger.warning("Task %s stopped: %s", task_id, STOPPED_ACTION)
        return applied

    def pause(self, task_id: str) -> bool:
        now = self._now()
        return self._apply(
            "pause", task_id, lambda state: pause(state, task_id, now=now, pricing=self.pricing)
        )

    def resume(self, task_id: str) -> bool:
        now = self._now()
        return self._apply(
            "resume",
            task_id,
            lambda state: resume(state, task_id, now=now, pricing=self.pricing),
        )

    def provide_feedback(self, task_id: str, content: str, *, user_id: str = "user") -> bool:
        now = self._now()
        return self._apply(
            "feedback",
            task_id,
            lambda state: provide_feedback(state, task_id, content, now=now, user_id=user_id),
        )

    def validate(self, task_id: str) -> bool:
        now = self._now()
        return self._apply(
            "validation",
            task_id,
            lambda state: validate(state, task_id, now=now, pricing=self.pricing),
        )
