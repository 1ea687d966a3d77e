"""Event log entries.

The log is an append-only tuple of frozen entries. Each entry snapshots the task and agent it
refers to, so replaying the log never depends on live objects.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from teamflow.errors import Diagnostic, StructuralError
from teamflow.models import (
    CostDetails,
    Feedback,
    LLMUsageStats,
    ModelUsage,
    Task,
    TaskStats,
    TokenUsage,
    WorkflowStats,
)
from teamflow.status import AgentStatus, FeedbackStatus, TaskStatus, WorkflowStatus

if TYPE_CHECKING:
    from teamflow.agents.base import BaseAgent


class LogType(str, Enum):
    TASK_STATUS_UPDATE = "TaskStatusUpdate"
    AGENT_STATUS_UPDATE = "AgentStatusUpdate"
    WORKFLOW_STATUS_UPDATE = "WorkflowStatusUpdate"


@dataclass(frozen=True, slots=True)
class TaskSnapshot:
    id: str
    title: str
    description: str
    status: TaskStatus
    result: Any = None

    @classmethod
    def from_task(cls, task: Task) -> TaskSnapshot:
        return cls(
            id=task.id,
            title=task.title,
            description=task.interpolated_description or task.description,
            status=task.status,
            result=task.result,
        )


@dataclass(frozen=True, slots=True)
class AgentSnapshot:
    id: str
    name: str
    model: str
    status: AgentStatus

    @classmethod
    def from_agent(cls, agent: BaseAgent) -> AgentSnapshot:
        return cls(
            id=agent.id,
            name=agent.name,
            model=agent.llm_config.model,
            status=agent.status,
        )


@dataclass(frozen=True, slots=True)
class TaskLogMetadata:
    stats: TaskStats | None = None
    cost_details: CostDetails | None = None
    result: Any = None
    error: str | None = None
    diagnostic: Diagnostic | None = None
    feedback: Feedback | None = None


@dataclass(frozen=True, slots=True)
class AgentLogMetadata:
    usage: TokenUsage | None = None
    output: str | None = None
    error: str | None = None
    iteration: int | None = None


@dataclass(frozen=True, slots=True)
class WorkflowLogMetadata:
    result: Any = None
    stats: WorkflowStats | None = None
    error: str | None = None
    diagnostic: Diagnostic | None = None
    inputs: dict[str, Any] | None = None
    feedback: Feedback | None = None


@dataclass(frozen=True, slots=True)
class TaskStatusLog:
    timestamp: int
    task: TaskSnapshot
    task_status: TaskStatus
    description: str
    agent: AgentSnapshot | None = None
    metadata: TaskLogMetadata = field(default_factory=TaskLogMetadata)
    log_type: LogType = field(default=LogType.TASK_STATUS_UPDATE, init=False)


@dataclass(frozen=True, slots=True)
class AgentStatusLog:
    timestamp: int
    agent: AgentSnapshot
    agent_status: AgentStatus
    description: str
    task: TaskSnapshot | None = None
    metadata: AgentLogMetadata = field(default_factory=AgentLogMetadata)
    log_type: LogType = field(default=LogType.AGENT_STATUS_UPDATE, init=False)


@dataclass(frozen=True, slots=True)
class WorkflowStatusLog:
    timestamp: int
    workflow_status: WorkflowStatus
    description: str
    task: TaskSnapshot | None = None
    agent: AgentSnapshot | None = None
    metadata: WorkflowLogMetadata = field(default_factory=WorkflowLogMetadata)
    log_type: LogType = field(default=LogType.WORKFLOW_STATUS_UPDATE, init=False)


LogEntry = TaskStatusLog | AgentStatusLog | WorkflowStatusLog


def task_log_for(logs: tuple[LogEntry, ...] | list[LogEntry], task_id: str) -> list[TaskStatusLog]:
    return [
        entry for entry in logs if isinstance(entry, TaskStatusLog) and entry.task.id == task_id
    ]


# Serialization, used by the CLI to export a run and replay it later.


def _plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {str(key): _plain(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(item) for item in value]
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    return str(value)


def _usage_dict(usage: LLMUsageStats) -> dict[str, int]:
    return {
        "input_tokens": usage.input_tokens,
        "output_tokens": usage.output_tokens,
        "calls_count": usage.calls_count,
        "calls_error_count": usage.calls_error_count,
        "parsing_errors": usage.parsing_errors,
    }


def _cost_dict(cost: CostDetails | None) -> dict[str, float] | None:
    if cost is None:
        return None
    return {
        "input_cost": cost.input_cost,
        "output_cost": cost.output_cost,
        "total_cost": cost.total_cost,
    }


def _feedback_dict(feedback: Feedback | None) -> dict[str, Any] | None:
    if feedback is None:
        return None
    return {
        "id": feedback.id,
        "content": feedback.content,
        "status": feedback.status.value,
        "timestamp": feedback.timestamp,
        "user_id": feedback.user_id,
    }


def _task_snapshot_dict(snapshot: TaskSnapshot | None) -> dict[str, Any] | None:
    if snapshot is None:
        return None
    return {
        "id": snapshot.id,
        "title": snapshot.title,
        "description": snapshot.description,
        "status": snapshot.status.value,
        "result": _plain(snapshot.result),
    }


def _agent_snapshot_dict(snapshot: AgentSnapshot | None) -> dict[str, Any] | None:
    if snapshot is None:
        return None
    return {
        "id": snapshot.id,
        "name": snapshot.name,
        "model": snapshot.model,
        "status": snapshot.status.value,
    }


def _task_stats_dict(stats: TaskStats | None) -> dict[str, Any] | None:
    if stats is None:
        return None
    return {
        "start_time": stats.start_time,
        "end_time": stats.end_time,
        "duration": stats.duration,
        "llm_usage": _usage_dict(stats.llm_usage),
        "iteration_count": stats.iteration_count,
    }


def _workflow_stats_dict(stats: WorkflowStats | None) -> dict[str, Any] | None:
    if stats is None:
        return None
    return {
        "start_time": stats.start_time,
        "end_time": stats.end_time,
        "duration": stats.duration,
        "llm_usage": _usage_dict(stats.llm_usage),
        "iteration_count": stats.iteration_count,
        "model_usage": {
            model: {
                "input_tokens": usage.input_tokens,
                "output_tokens": usage.output_tokens,
                "calls_count": usage.calls_count,
            }
            for model, usage in stats.model_usage.items()
        },
        "cost_details": _cost_dict(stats.cost_details),
        "task_count": stats.task_count,
        "agent_count": stats.agent_count,
        "team_name": stats.team_name,
    }


def entry_to_dict(entry: LogEntry) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "log_type": entry.log_type.value,
        "timestamp": entry.timestamp,
        "description": entry.description,
        "task": _task_snapshot_dict(entry.task),
        "agent": _agent_snapshot_dict(entry.agent),
    }
    if isinstance(entry, TaskStatusLog):
        meta = entry.metadata
        payload["task_status"] = entry.task_status.value
        payload["metadata"] = {
            "stats": _task_stats_dict(meta.stats),
            "cost_details": _cost_dict(meta.cost_details),
            "result": _plain(meta.result),
            "error": meta.error,
            "diagnostic": meta.diagnostic.to_dict() if meta.diagnostic else None,
            "feedback": _feedback_dict(meta.feedback),
        }
    elif isinstance(entry, AgentStatusLog):
        meta = entry.metadata
        payload["agent_status"] = entry.agent_status.value
        payload["metadata"] = {
            "usage": (
                {
                    "input_tokens": meta.usage.input_tokens,
                    "output_tokens": meta.usage.output_tokens,
                }
                if meta.usage
                else None
            ),
            "output": meta.output,
            "error": meta.error,
            "iteration": meta.iteration,
        }
    else:
        meta = entry.metadata
        payload["workflow_status"] = entry.workflow_status.value
        payload["metadata"] = {
            "result": _plain(meta.result),
            "stats": _workflow_stats_dict(meta.stats),
            "error": meta.error,
            "diagnostic": meta.diagnostic.to_dict() if meta.diagnostic else None,
            "inputs": _plain(meta.inputs) if meta.inputs is not None else None,
            "feedback": _feedback_dict(meta.feedback),
        }
    return payload


def _usage_from(payload: dict[str, Any] | None) -> LLMUsageStats:
    payload = payload or {}
    return LLMUsageStats(
        input_tokens=int(payload.get("input_tokens", 0)),
        output_tokens=int(payload.get("output_tokens", 0)),
        calls_count=int(payload.get("calls_count", 0)),
        calls_error_count=int(payload.get("calls_error_count", 0)),
        parsing_errors=int(payload.get("parsing_errors", 0)),
    )


def _cost_from(payload: dict[str, Any] | None) -> CostDetails | None:
    if not payload:
        return None
    return CostDetails(
        input_cost=float(payload.get("input_cost", 0.0)),
        output_cost=float(payload.get("output_cost", 0.0)),
        total_cost=float(payload.get("total_cost", 0.0)),
    )


def _feedback_from(payload: dict[str, Any] | None) -> Feedback | None:
    if not payload:
        return None
    return Feedback(
        id=str(payload["id"]),
        content=str(payload.get("content", "")),
        status=FeedbackStatus(payload.get("status", FeedbackStatus.PENDING.value)),
        timestamp=int(payload.get("timestamp", 0)),
        user_id=str(payload.get("user_id", "user")),
    )


def _task_snapshot_from(payload: dict[str, Any] | None) -> TaskSnapshot | None:
    if not payload:
        return None
    return TaskSnapshot(
        id=str(payload["id"]),
        title=str(payload.get("title", "")),
        description=str(payload.get("description", "")),
        status=TaskStatus(payload["status"]),
        result=payload.get("result"),
    )


def _agent_snapshot_from(payload: dict[str, Any] | None) -> AgentSnapshot | None:
    if not payload:
        return None
    return AgentSnapshot(
        id=str(payload["id"]),
        name=str(payload.get("name", "")),
        model=str(payload.get("model", "")),
        status=AgentStatus(payload["status"]),
    )


def _task_stats_from(payload: dict[str, Any] | None) -> TaskStats | None:
    if not payload:
        return None
    return TaskStats(
        start_time=int(payload["start_time"]),
        end_time=int(payload["end_time"]),
        duration=float(payload["duration"]),
        llm_usage=_usage_from(payload.get("llm_usage")),
        iteration_count=int(payload.get("iteration_count", 0)),
    )


def _workflow_stats_from(payload: dict[str, Any] | None) -> WorkflowStats | None:
    if not payload:
        return None
    return WorkflowStats(
        start_time=int(payload["start_time"]),
        end_time=int(payload["end_time"]),
        duration=float(payload["duration"]),
        llm_usage=_usage_from(payload.get("llm_usage")),
        iteration_count=int(payload.get("iteration_count", 0)),
        model_usage={
            str(model): ModelUsage(
                input_tokens=int(usage.get("input_tokens", 0)),
                output_tokens=int(usage.get("output_tokens", 0)),
                calls_count=int(usage.get("calls_count", 0)),
            )
            for model, usage in (payload.get("model_usage") or {}).items()
        },
        cost_details=_cost_from(payload.get("cost_details")) or CostDetails(),
        task_count=int(payload.get("task_count", 0)),
        agent_count=int(payload.get("agent_count", 0)),
        team_name=str(payload.get("team_name", "")),
    )


def _diagnostic_from(payload: dict[str, Any] | None) -> Diagnostic | None:
    return Diagnostic.from_dict(payload) if payload else None


def entry_from_dict(payload: dict[str, Any]) -> LogEntry:
    try:
        log_type = LogType(payload["log_type"])
        meta = payload.get("metadata") or {}
        timestamp = int(payload["timestamp"])
        description = str(payload.get("description", ""))
        if log_type is LogType.TASK_STATUS_UPDATE:
            task = _task_snapshot_from(payload.get("task"))
            if task is None:
                raise StructuralError("Task status entry has no task snapshot.")
            return TaskStatusLog(
                timestamp=timestamp,
                task=task,
                task_status=TaskStatus(payload["task_status"]),
                description=description,
                agent=_agent_snapshot_from(payload.get("agent")),
                metadata=TaskLogMetadata(
                    stats=_task_stats_from(meta.get("stats")),
                    cost_details=_cost_from(meta.get("cost_details")),
                    result=meta.get("result"),
                    error=meta.get("error"),
                    diagnostic=_diagnostic_from(meta.get("diagnostic")),
                    feedback=_feedback_from(meta.get("feedback")),
                ),
            )
        if log_type is LogType.AGENT_STATUS_UPDATE:
            agent = _agent_snapshot_from(payload.get("agent"))
            if agent is None:
                raise StructuralError("Agent status entry has no agent snapshot.")
            usage = meta.get("usage")
            return AgentStatusLog(
                timestamp=timestamp,
                agent=agent,
                agent_status=AgentStatus(payload["agent_status"]),
                description=description,
                task=_task_snapshot_from(payload.get("task")),
                metadata=AgentLogMetadata(
                    usage=(
                        TokenUsage(
                            input_tokens=int(usage.get("input_tokens", 0)),
                            output_tokens=int(usage.get("output_tokens", 0)),
                        )
                        if usage
                        else None
                    ),
                    output=meta.get("output"),
                    error=meta.get("error"),
                    iteration=meta.get("iteration"),
                ),
            )
        return WorkflowStatusLog(
            timestamp=timestamp,
            workflow_status=WorkflowStatus(payload["workflow_status"]),
            description=description,
            task=_task_snapshot_from(payload.get("task")),
            agent=_agent_snapshot_from(payload.get("agent")),
            metadata=WorkflowLogMetadata(
                result=meta.get("result"),
                stats=_workflow_stats_from(meta.get("stats")),
                error=meta.get("error"),
                diagnostic=_diagnostic_from(meta.get("diagnostic")),
                inputs=meta.get("inputs"),
                feedback=_feedback_from(meta.get("feedback")),
            ),
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise StructuralError(f"Malformed log entry: {exc}") from exc
