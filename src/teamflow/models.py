from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any
from uuid import uuid4

from teamflow.status import FeedbackStatus, TaskStatus

if TYPE_CHECKING:
    from teamflow.agents.base import BaseAgent

Clock = Callable[[], int]


def now_ms() -> int:
    return int(time.time() * 1000)


def new_id() -> str:
    return uuid4().hex


@dataclass(frozen=True, slots=True)
class LLMConfig:
    model: str = "gpt-4o-mini"
    provider: str = "openai"
    temperature: float | None = None
    max_tokens: int | None = None


@dataclass(frozen=True, slots=True)
class Feedback:
    content: str
    id: str = field(default_factory=new_id)
    status: FeedbackStatus = FeedbackStatus.PENDING
    timestamp: int = field(default_factory=now_ms)
    user_id: str = "user"

    @property
    def is_pending(self) -> bool:
        return self.status is FeedbackStatus.PENDING


@dataclass(frozen=True, slots=True)
class Task:
    """One step of the plan. Records are replaced, never mutated."""

    description: str
    agent: BaseAgent | None = None
    id: str = field(default_factory=new_id)
    title: str = ""
    expected_output: str = ""
    status: TaskStatus = TaskStatus.TODO
    result: Any = None
    feedback_history: tuple[Feedback, ...] = ()
    is_deliverable: bool = False
    external_validation_required: bool = False
    escalate_errors: bool = True
    error: str | None = None
    interpolated_description: str | None = None

    @property
    def label(self) -> str:
        return self.title or self.description[:60]

    def pending_feedback(self) -> tuple[Feedback, ...]:
        return tuple(item for item in self.feedback_history if item.is_pending)

    def with_feedback_processed(self) -> Task:
        if not self.pending_feedback():
            return self
        history = tuple(
            replace(item, status=FeedbackStatus.PROCESSED) if item.is_pending else item
            for item in self.feedback_history
        )
        return replace(self, feedback_history=history)


@dataclass(frozen=True, slots=True)
class TokenUsage:
    input_tokens: int = 0
    output_tokens: int = 0


@dataclass(frozen=True, slots=True)
class LLMUsageStats:
    input_tokens: int = 0
    output_tokens: int = 0
    calls_count: int = 0
    calls_error_count: int = 0
    parsing_errors: int = 0


@dataclass(frozen=True, slots=True)
class ModelUsage:
    input_tokens: int = 0
    output_tokens: int = 0
    calls_count: int = 0


@dataclass(frozen=True, slots=True)
class CostDetails:
    input_cost: float = 0.0
    output_cost: float = 0.0
    total_cost: float = 0.0

    @property
    def is_known(self) -> bool:
        return self.total_cost >= 0


@dataclass(frozen=True, slots=True)
class TaskStats:
    start_time: int
    end_time: int
    duration: float
    llm_usage: LLMUsageStats = field(default_factory=LLMUsageStats)
    iteration_count: int = 0


@dataclass(frozen=True, slots=True)
class WorkflowStats:
    start_time: int
    end_time: int
    duration: float
    llm_usage: LLMUsageStats = field(default_factory=LLMUsageStats)
    iteration_count: int = 0
    model_usage: dict[str, ModelUsage] = field(default_factory=dict)
    cost_details: CostDetails = field(default_factory=CostDetails)
    task_count: int = 0
    agent_count: int = 0
    team_name: str = ""
