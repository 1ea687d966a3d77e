"""Usage, duration and cost aggregates folded from the event log.

Both entry points are pure: the result depends only on the log prefix and ``now``. Callers
that need repeatable output pass ``now`` explicitly.

The task anchor is the most recent DOING entry *for that task*, and the workflow anchor is the
most recent RUNNING workflow entry. With more than one lane an agent event of task A can fall
inside task B's window, but it is still attributed by task id, so per-task totals stay
correct; only the workflow window assumes the run was not restarted mid-flight.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field

from teamflow.events import AgentStatusLog, LogEntry, TaskStatusLog, WorkflowStatusLog
from teamflow.models import LLMUsageStats, ModelUsage, Task, TaskStats, WorkflowStats, now_ms
from teamflow.pricing import DEFAULT_PRICING, PricingTable, calculate_workflow_cost
from teamflow.status import AgentStatus, TaskStatus, WorkflowStatus


@dataclass(slots=True)
class _UsageFold:
    input_tokens: int = 0
    output_tokens: int = 0
    calls_count: int = 0
    calls_error_count: int = 0
    parsing_errors: int = 0
    iteration_count: int = 0
    per_model: dict[str, list[int]] = field(default_factory=dict)

    def add(self, entry: AgentStatusLog) -> None:
        status = entry.agent_status
        if status is AgentStatus.THINKING_END:
            usage = entry.metadata.usage
            tokens_in = usage.input_tokens if usage else 0
            tokens_out = usage.output_tokens if usage else 0
            self.input_tokens += tokens_in
            self.output_tokens += tokens_out
            self.calls_count += 1
            bucket = self.per_model.setdefault(entry.agent.model, [0, 0, 0])
            bucket[0] += tokens_in
            bucket[1] += tokens_out
            bucket[2] += 1
        elif status is AgentStatus.THINKING_ERROR:
            self.calls_error_count += 1
        elif status is AgentStatus.ISSUES_PARSING_LLM_OUTPUT:
            self.parsing_errors += 1
        elif status is AgentStatus.ITERATION_END:
            self.iteration_count += 1

    def usage(self) -> LLMUsageStats:
        return LLMUsageStats(
            input_tokens=self.input_tokens,
            output_tokens=self.output_tokens,
            calls_count=self.calls_count,
            calls_error_count=self.calls_error_count,
            parsing_errors=self.parsing_errors,
        )

    def model_usage(self) -> dict[str, ModelUsage]:
        return {
            model: ModelUsage(input_tokens=values[0], output_tokens=values[1], calls_count=values[2])
            for model, values in sorted(self.per_model.items())
        }


def _task_id(task: Task | str) -> str:
    return task if isinstance(task, str) else task.id


def _duration_seconds(start: int, end: int) -> float:
    return max(0, end - start) / 1000


def find_task_anchor(task_id: str, logs: Sequence[LogEntry]) -> int | None:
    for entry in reversed(logs):
        if (
            isinstance(entry, TaskStatusLog)
            and entry.task.id == task_id
            and entry.task_status is TaskStatus.DOING
        ):
            return entry.timestamp
    return None


def find_workflow_anchor(logs: Sequence[LogEntry]) -> int | None:
    for entry in reversed(logs):
        if isinstance(entry, WorkflowStatusLog) and entry.workflow_status is WorkflowStatus.RUNNING:
            return entry.timestamp
    return None


def compute_task_stats(
    task: Task | str,
    logs: Sequence[LogEntry],
    *,
    now: int | None = None,
) -> TaskStats:
    task_id = _task_id(task)
    end_time = now if now is not None else now_ms()
    anchor = find_task_anchor(task_id, logs)
    start_time = end_time if anchor is None else anchor

    fold = _UsageFold()
    for entry in logs:
        if (
            isinstance(entry, AgentStatusLog)
            and entry.task is not None
            and entry.task.id == task_id
            and entry.timestamp >= start_time
        ):
            fold.add(entry)

    return TaskStats(
        start_time=start_time,
        end_time=end_time,
        duration=_duration_seconds(start_time, end_time),
        llm_usage=fold.usage(),
        iteration_count=fold.iteration_count,
    )


def compute_workflow_stats(
    logs: Sequence[LogEntry],
    *,
    now: int | None = None,
    pricing: PricingTable = DEFAULT_PRICING,
    team_name: str = "",
    task_count: int = 0,
    agent_count: int = 0,
) -> WorkflowStats:
    end_time = now if now is not None else now_ms()
    anchor = find_workflow_anchor(logs)
    start_time = end_time if anchor is None else anchor

    fold = _UsageFold()
    for entry in logs:
        if isinstance(entry, AgentStatusLog) and entry.timestamp >= start_time:
            fold.add(entry)

    model_usage = fold.model_usage()
    return WorkflowStats(
        start_time=start_time,
        end_time=end_time,
        duration=_duration_seconds(start_time, end_time),
        llm_usage=fold.usage(),
        iteration_count=fold.iteration_count,
        model_usage=model_usage,
        cost_details=calculate_workflow_cost(model_usage, pricing),
        task_count=task_count,
        agent_count=agent_count,
        team_name=team_name,
    )
