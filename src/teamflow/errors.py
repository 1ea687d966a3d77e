from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


class TeamflowError(RuntimeError):
    """Base error for workflow state and execution failures."""


class IllegalTransitionError(TeamflowError):
    """Raised when a status change is not an edge of its transition table."""

    def __init__(
        self,
        message: str,
        *,
        entity: str,
        current: str | None = None,
        target: str | None = None,
    ) -> None:
        super().__init__(message)
        self.entity = entity
        self.current = current
        self.target = target


class StructuralError(TeamflowError):
    """Raised when a task or feedback record is malformed or missing."""

    def __init__(self, message: str, *, task_id: str | None = None) -> None:
        super().__init__(message)
        self.task_id = task_id


class ConfigError(TeamflowError):
    """Raised when a team file cannot be turned into a runnable team."""


class AgentExecutionError(TeamflowError):
    """Raised by agents when their model call fails."""

    def __init__(
        self,
        message: str,
        *,
        agent: str | None = None,
        model: str | None = None,
        retriable: bool = True,
    ) -> None:
        super().__init__(message)
        self.agent = agent
        self.model = model
        self.retriable = retriable


class TaskBlockedError(TeamflowError):
    """Raised by an agent that decided the task cannot proceed without input."""

    def __init__(self, message: str, *, reason: str | None = None) -> None:
        super().__init__(message)
        self.reason = reason or message


class TaskAbortedError(TeamflowError):
    """Raised by an agent when its task was stopped by the user."""


@dataclass(frozen=True, slots=True)
class Diagnostic:
    """Human-readable error report stored in log metadata."""

    name: str
    message: str
    recommended_action: str
    root_error: str = ""
    error_type: str = ""
    context: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_exception(
        cls,
        exc: BaseException | None,
        *,
        name: str,
        message: str,
        recommended_action: str,
        context: dict[str, Any] | None = None,
    ) -> Diagnostic:
        return cls(
            name=name,
            message=message,
            recommended_action=recommended_action,
            root_error=str(exc) if exc is not None else "",
            error_type=type(exc).__name__ if exc is not None else "",
            context=dict(context or {}),
        )

    @property
    def pretty_message(self) -> str:
        lines = [f"{self.name}: {self.message}"]
        if self.root_error:
            lines.append(f"Error: {self.root_error}")
        lines.append(f"Recommended action: {self.recommended_action}")
        return "\n".join(lines)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "message": self.message,
            "recommended_action": self.recommended_action,
            "root_error": self.root_error,
            "error_type": self.error_type,
            "context": dict(self.context),
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> Diagnostic:
        return cls(
            name=str(payload.get("name", "")),
            message=str(payload.get("message", "")),
            recommended_action=str(payload.get("recommended_action", "")),
            root_error=str(payload.get("root_error", "")),
            error_type=str(payload.get("error_type", "")),
            context=dict(payload.get("context") or {}),
        )
