"""Workflow-level reducers. Each takes a WorkflowState and returns a new one."""

from __future__ import annotations

from dataclasses import replace
from typing import Any

from teamflow.errors import Diagnostic
from teamflow.events import TaskSnapshot, WorkflowLogMetadata, WorkflowStatusLog
from teamflow.models import Task, WorkflowStats
from teamflow.pricing import DEFAULT_PRICING, PricingTable
from teamflow.stats import compute_workflow_stats
from teamflow.status import (
    RESET_TASK_STATUS,
    RESET_WORKFLOW_STATUS,
    TaskStatus,
    WorkflowStatus,
    ensure_workflow_transition,
)
from teamflow.store import WorkflowState


def workflow_stats_for(
    state: WorkflowState, *, now: int, pricing: PricingTable = DEFAULT_PRICING
) -> WorkflowStats:
    return compute_workflow_stats(
        state.logs,
        now=now,
        pricing=pricing,
        team_name=state.team_name,
        task_count=len(state.tasks),
        agent_count=len(state.agents),
    )


def _workflow_log(
    status: WorkflowStatus,
    description: str,
    *,
    now: int,
    task: Task | None = None,
    metadata: WorkflowLogMetadata | None = None,
) -> WorkflowStatusLog:
    return WorkflowStatusLog(
        timestamp=now,
        workflow_status=status,
        description=description,
        task=TaskSnapshot.from_task(task) if task is not None else None,
        metadata=metadata or WorkflowLogMetadata(),
    )


def reset_workflow(state: WorkflowState) -> WorkflowState:
    tasks = tuple(
        replace(
            task,
            status=RESET_TASK_STATUS,
            result=None,
            error=None,
            feedback_history=(),
            interpolated_description=None,
        )
        for task in state.tasks
    )
    return replace(
        state,
        tasks=tasks,
        logs=(),
        result=None,
        inputs={},
        status=RESET_WORKFLOW_STATUS,
    )


def clear_all(state: WorkflowState) -> WorkflowState:
    return WorkflowState(team_name=state.team_name)


def start_workflow(
    state: WorkflowState, inputs: dict[str, Any] | None, *, now: int
) -> WorkflowState:
    fresh = reset_workflow(state)
    merged_inputs = {**state.inputs, **(inputs or {})}
    ensure_workflow_transition(fresh.status, WorkflowStatus.RUNNING)
    fresh = replace(fresh, inputs=merged_inputs, status=WorkflowStatus.RUNNING)
    fresh = fresh.append_logs(
        _workflow_log(
            WorkflowStatus.RUNNING,
            f"Workflow for team {state.team_name or '(unnamed)'} started.",
            now=now,
            metadata=WorkflowLogMetadata(inputs=dict(merged_inputs)),
        )
    )
    for task in fresh.tasks:
        if task.status is TaskStatus.TODO:
            return fresh.replace_task(replace(task, status=TaskStatus.DOING))
    return fresh


def resolve_workflow_result(tasks: tuple[Task, ...]) -> Any:
    for task in reversed(tasks):
        if task.is_deliverable:
            return task.result
    return tasks[-1].result if tasks else None


def finish_workflow(
    state: WorkflowState, *, now: int, pricing: PricingTable = DEFAULT_PRICING
) -> WorkflowState:
    if state.status is WorkflowStatus.FINISHED:
        return state
    ensure_workflow_transition(state.status, WorkflowStatus.FINISHED)
    result = resolve_workflow_result(state.tasks)
    stats = workflow_stats_for(state, now=now, pricing=pricing)
    entry = _workflow_log(
        WorkflowStatus.FINISHED,
        "Workflow finished.",
        now=now,
        metadata=WorkflowLogMetadata(result=result, stats=stats),
    )
    return replace(state.append_logs(entry), status=WorkflowStatus.FINISHED, result=result)


def block_workflow(
    state: WorkflowState,
    *,
    now: int,
    task: Task | None = None,
    error: str | None = None,
    diagnostic: Diagnostic | None = None,
    pricing: PricingTable = DEFAULT_PRICING,
) -> WorkflowState:
    if state.status is WorkflowStatus.BLOCKED:
        return state
    ensure_workflow_transition(state.status, WorkflowStatus.BLOCKED)
    stats = workflow_stats_for(state, now=now, pricing=pricing)
    description = "Workflow blocked"
    if task is not None:
        description += f" by task '{task.label}'"
    entry = _workflow_log(
        WorkflowStatus.BLOCKED,
        description + ".",
        now=now,
        task=task,
        metadata=WorkflowLogMetadata(stats=stats, error=error, diagnostic=diagnostic),
    )
    return replace(state.append_logs(entry), status=WorkflowStatus.BLOCKED)


def error_workflow(
    state: WorkflowState,
    *,
    now: int,
    error: str,
    diagnostic: Diagnostic | None = None,
    pricing: PricingTable = DEFAULT_PRICING,
) -> WorkflowState:
    ensure_workflow_transition(state.status, WorkflowStatus.ERRORED)
    stats = workflow_stats_for(state, now=now, pricing=pricing)
    entry = _workflow_log(
        WorkflowStatus.ERRORED,
        f"Workflow errored: {error}",
        now=now,
        metadata=WorkflowLogMetadata(stats=stats, error=error, diagnostic=diagnostic),
    )
    return replace(
        state.append_logs(entry),
        status=WorkflowStatus.ERRORED,
        result={"error": error},
    )


def transition_workflow(
    state: WorkflowState,
    target: WorkflowStatus,
    description: str,
    *,
    now: int,
    task: Task | None = None,
    metadata: WorkflowLogMetadata | None = None,
) -> WorkflowState:
    """Log a workflow status change. Staying in RUNNING is logged without a status change."""

    if not (target is WorkflowStatus.RUNNING and state.status is WorkflowStatus.RUNNING):
        ensure_workflow_transition(state.status, target)
    entry = _workflow_log(target, description, now=now, task=task, metadata=metadata)
    return replace(state.append_logs(entry), status=target)
