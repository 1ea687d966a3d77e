from __future__ import annotations

from collections.abc import Mapping
from enum import Enum

from teamflow.errors import IllegalTransitionError


class TaskStatus(str, Enum):
    TODO = "TODO"
    DOING = "DOING"
    BLOCKED = "BLOCKED"
    PAUSED = "PAUSED"
    RESUMED = "RESUMED"
    REVISE = "REVISE"
    DONE = "DONE"
    AWAITING_VALIDATION = "AWAITING_VALIDATION"
    VALIDATED = "VALIDATED"
    ABORTED = "ABORTED"


class AgentStatus(str, Enum):
    INITIAL = "INITIAL"
    THINKING = "THINKING"
    THINKING_END = "THINKING_END"
    THINKING_ERROR = "THINKING_ERROR"
    THOUGHT = "THOUGHT"
    EXECUTING_ACTION = "EXECUTING_ACTION"
    USING_TOOL = "USING_TOOL"
    USING_TOOL_END = "USING_TOOL_END"
    USING_TOOL_ERROR = "USING_TOOL_ERROR"
    OBSERVATION = "OBSERVATION"
    FINAL_ANSWER = "FINAL_ANSWER"
    TASK_COMPLETED = "TASK_COMPLETED"
    MAX_ITERATIONS_ERROR = "MAX_ITERATIONS_ERROR"
    ISSUES_PARSING_LLM_OUTPUT = "ISSUES_PARSING_LLM_OUTPUT"
    ITERATION_START = "ITERATION_START"
    ITERATION_END = "ITERATION_END"
    DECIDED_TO_BLOCK_TASK = "DECIDED_TO_BLOCK_TASK"
    TASK_ABORTED = "TASK_ABORTED"
    PAUSED = "PAUSED"
    RESUMED = "RESUMED"


class WorkflowStatus(str, Enum):
    INITIAL = "INITIAL"
    RUNNING = "RUNNING"
    PAUSED = "PAUSED"
    STOPPING = "STOPPING"
    STOPPED = "STOPPED"
    ERRORED = "ERRORED"
    FINISHED = "FINISHED"
    BLOCKED = "BLOCKED"


class FeedbackStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSED = "PROCESSED"


# DONE -> REVISE and BLOCKED -> REVISE are only taken through provide_feedback.
TASK_TRANSITIONS: Mapping[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.TODO: frozenset({TaskStatus.DOING}),
    TaskStatus.DOING: frozenset(
        {
            TaskStatus.DONE,
            TaskStatus.AWAITING_VALIDATION,
            TaskStatus.BLOCKED,
            TaskStatus.REVISE,
            TaskStatus.PAUSED,
            TaskStatus.ABORTED,
        }
    ),
    TaskStatus.AWAITING_VALIDATION: frozenset({TaskStatus.VALIDATED, TaskStatus.REVISE}),
    TaskStatus.VALIDATED: frozenset({TaskStatus.DONE}),
    TaskStatus.REVISE: frozenset({TaskStatus.DOING}),
    TaskStatus.PAUSED: frozenset({TaskStatus.RESUMED, TaskStatus.ABORTED}),
    TaskStatus.RESUMED: frozenset({TaskStatus.DOING}),
    TaskStatus.BLOCKED: frozenset({TaskStatus.REVISE}),
    TaskStatus.DONE: frozenset({TaskStatus.REVISE}),
    TaskStatus.ABORTED: frozenset(),
}

WORKFLOW_TRANSITIONS: Mapping[WorkflowStatus, frozenset[WorkflowStatus]] = {
    WorkflowStatus.INITIAL: frozenset({WorkflowStatus.RUNNING}),
    WorkflowStatus.RUNNING: frozenset(
        {
            WorkflowStatus.FINISHED,
            WorkflowStatus.ERRORED,
            WorkflowStatus.BLOCKED,
            WorkflowStatus.PAUSED,
            WorkflowStatus.STOPPING,
            WorkflowStatus.STOPPED,
        }
    ),
    WorkflowStatus.BLOCKED: frozenset(
        {WorkflowStatus.RUNNING, WorkflowStatus.STOPPING, WorkflowStatus.STOPPED}
    ),
    WorkflowStatus.PAUSED: frozenset(
        {WorkflowStatus.RUNNING, WorkflowStatus.STOPPING, WorkflowStatus.STOPPED}
    ),
    WorkflowStatus.STOPPING: frozenset({WorkflowStatus.STOPPED}),
    WorkflowStatus.FINISHED: frozenset({WorkflowStatus.RUNNING}),
    WorkflowStatus.ERRORED: frozenset({WorkflowStatus.RUNNING}),
    WorkflowStatus.STOPPED: frozenset(),
}

FEEDBACK_TRANSITIONS: Mapping[FeedbackStatus, frozenset[FeedbackStatus]] = {
    FeedbackStatus.PENDING: frozenset({FeedbackStatus.PROCESSED}),
    FeedbackStatus.PROCESSED: frozenset(),
}

# Agents drive their own loop; INITIAL is only reachable through a reset. A paused agent may
# still report the model call that was in flight when it was paused.
AGENT_TRANSITIONS: Mapping[AgentStatus, frozenset[AgentStatus]] = {
    status: frozenset(AgentStatus) - {AgentStatus.INITIAL} for status in AgentStatus
}

RESET_TASK_STATUS = TaskStatus.TODO
RESET_WORKFLOW_STATUS = WorkflowStatus.INITIAL
RESET_AGENT_STATUS = AgentStatus.INITIAL

# Statuses in which a task still occupies the single lane or waits for input.
ACTIVE_TASK_STATUSES = frozenset(
    {
        TaskStatus.DOING,
        TaskStatus.PAUSED,
        TaskStatus.RESUMED,
        TaskStatus.REVISE,
        TaskStatus.AWAITING_VALIDATION,
        TaskStatus.VALIDATED,
    }
)
SETTLED_WORKFLOW_STATUSES = frozenset(
    {
        WorkflowStatus.FINISHED,
        WorkflowStatus.ERRORED,
        WorkflowStatus.BLOCKED,
        WorkflowStatus.STOPPED,
        WorkflowStatus.PAUSED,
    }
)


def can_transition(table: Mapping[Enum, frozenset], current: Enum, target: Enum) -> bool:
    return target in table.get(current, frozenset())


def ensure_task_transition(current: TaskStatus, target: TaskStatus, *, task_id: str) -> None:
    if not can_transition(TASK_TRANSITIONS, current, target):
        raise IllegalTransitionError(
            f"Task '{task_id}' cannot move from {current.value} to {target.value}.",
            entity="task",
            current=current.value,
            target=target.value,
        )


def ensure_workflow_transition(current: WorkflowStatus, target: WorkflowStatus) -> None:
    if not can_transition(WORKFLOW_TRANSITIONS, current, target):
        raise IllegalTransitionError(
            f"Workflow cannot move from {current.value} to {target.value}.",
            entity="workflow",
            current=current.value,
            target=target.value,
        )


def ensure_feedback_transition(current: FeedbackStatus, target: FeedbackStatus) -> None:
    if not can_transition(FEEDBACK_TRANSITIONS, current, target):
        raise IllegalTransitionError(
            f"Feedback cannot move from {current.value} to {target.value}.",
            entity="feedback",
            current=current.value,
            target=target.value,
        )
