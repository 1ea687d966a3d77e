from __future__ import annotations

import json
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal

from teamflow.errors import ConfigError
from teamflow.pricing import DEFAULT_PRICING, ModelPricing, PricingTable

AgentBackendName = Literal["echo", "openai"]
LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR"]
LOG_LEVELS: tuple[str, ...] = ("DEBUG", "INFO", "WARNING", "ERROR")


@dataclass(slots=True)
class TeamSection:
    name: str = "my-team"
    description: str = ""


@dataclass(slots=True)
class WorkflowConfig:
    max_concurrency: int = 1
    watchdog_timeout_seconds: float = 300.0
    watchdog_interval_seconds: float = 30.0
    memory: bool = True


@dataclass(slots=True)
class LoggingConfig:
    level: LogLevel = "INFO"
    json_output: bool = False


@dataclass(slots=True)
class AgentConfig:
    name: str
    role: str = ""
    goal: str = ""
    background: str = ""
    model: str = "gpt-4o-mini"
    backend: AgentBackendName = "echo"
    temperature: float | None = None
    max_iterations: int = 3


@dataclass(slots=True)
class TaskConfig:
    description: str
    agent: str
    title: str = ""
    expected_output: str = ""
    is_deliverable: bool = False
    external_validation_required: bool = False
    escalate_errors: bool = True


@dataclass(slots=True)
class TeamflowConfig:
    team: TeamSection = field(default_factory=TeamSection)
    workflow: WorkflowConfig = field(default_factory=WorkflowConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    pricing: dict[str, ModelPricing] = field(default_factory=dict)
    inputs: dict[str, str] = field(default_factory=dict)
    agents: list[AgentConfig] = field(default_factory=list)
    tasks: list[TaskConfig] = field(default_factory=list)

    @classmethod
    def default(cls) -> TeamflowConfig:
        return cls()

    @classmethod
    def example(cls) -> TeamflowConfig:
        return cls(
            team=TeamSection(name="research-team", description="Collect facts, then summarize."),
            inputs={"topic": "event sourcing"},
            agents=[
                AgentConfig(name="Researcher", role="Collect facts", backend="echo"),
                AgentConfig(name="Writer", role="Summarize findings", backend="echo"),
            ],
            tasks=[
                TaskConfig(
                    title="research",
                    description="List three key facts about {topic}.",
                    agent="Researcher",
                ),
                TaskConfig(
                    title="summary",
                    description="Write a short summary about {topic} from the research.",
                    agent="Writer",
                    is_deliverable=True,
                ),
            ],
        )

    @classmethod
    def from_dict(cls, data: dict) -> TeamflowConfig:
        try:
            return cls(
                team=TeamSection(**data.get("team", {})),
                workflow=WorkflowConfig(**data.get("workflow", {})),
                logging=LoggingConfig(**data.get("logging", {})),
                pricing={
                    str(model): ModelPricing(model=str(model), **values)
                    for model, values in data.get("pricing", {}).items()
                },
                inputs={str(key): str(value) for key, value in data.get("inputs", {}).items()},
                agents=[AgentConfig(**item) for item in data.get("agents", [])],
                tasks=[TaskConfig(**item) for item in data.get("tasks", [])],
            )
        except TypeError as exc:
            raise ConfigError(f"Invalid team configuration: {exc}") from exc

    def to_dict(self) -> dict:
        return {
            "team": {
                "name": self.team.name,
                "description": self.team.description,
            },
            "workflow": {
                "max_concurrency": self.workflow.max_concurrency,
                "watchdog_timeout_seconds": self.workflow.watchdog_timeout_seconds,
                "watchdog_interval_seconds": self.workflow.watchdog_interval_seconds,
                "memory": self.workflow.memory,
            },
            "logging": {
                "level": self.logging.level,
                "json_output": self.logging.json_output,
            },
            "inputs": dict(self.inputs),
            "pricing": {
                model: {
                    "input_per_1m": pricing.input_per_1m,
                    "output_per_1m": pricing.output_per_1m,
                    "provider": pricing.provider,
                }
                for model, pricing in self.pricing.items()
            },
            "agents": [
                {
                    key: value
                    for key, value in {
                        "name": agent.name,
                        "role": agent.role,
                        "goal": agent.goal,
                        "background": agent.background,
                        "model": agent.model,
                        "backend": agent.backend,
                        "temperature": agent.temperature,
                        "max_iterations": agent.max_iterations,
                    }.items()
                    if value is not None
                }
                for agent in self.agents
            ],
            "tasks": [
                {
                    "title": task.title,
                    "description": task.description,
                    "agent": task.agent,
                    "expected_output": task.expected_output,
                    "is_deliverable": task.is_deliverable,
                    "external_validation_required": task.external_validation_required,
                    "escalate_errors": task.escalate_errors,
                }
                for task in self.tasks
            ],
        }

    def pricing_table(self) -> PricingTable:
        return DEFAULT_PRICING.with_overrides(self.pricing)

    def validate(self) -> None:
        names = [agent.name for agent in self.agents]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ConfigError("Duplicate agent names: " + ", ".join(duplicates))
        unknown = sorted({task.agent for task in self.tasks if task.agent not in names})
        if unknown:
            raise ConfigError("Tasks reference unknown agents: " + ", ".join(unknown))
        if self.workflow.max_concurrency < 1:
            raise ConfigError("workflow.max_concurrency must be at least 1")
        if str(self.logging.level).upper() not in LOG_LEVELS:
            allowed = ", ".join(LOG_LEVELS)
            raise ConfigError(f"logging.level must be one of {allowed}, got {self.logging.level!r}")


def _toml_value(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        rendered = f"{value:.6f}".rstrip("0").rstrip(".")
        if not rendered:
            return "0.0"
        return rendered if "." in rendered else rendered + ".0"
    if isinstance(value, list):
        return "[" + ", ".join(_toml_value(item) for item in value) + "]"
    return json.dumps(str(value), ensure_ascii=False)


def _toml_key(key: str) -> str:
    if key.replace("_", "").replace("-", "").isalnum():
        return key
    return json.dumps(key)


def _table_lines(header: str, values: dict[str, Any]) -> list[str]:
    lines = [header]
    for key, value in values.items():
        lines.append(f"{_toml_key(key)} = {_toml_value(value)}")
    lines.append("")
    return lines


def dumps_toml(config: TeamflowConfig) -> str:
    data = config.to_dict()
    lines: list[str] = []
    for section in ["team", "workflow", "logging", "inputs"]:
        lines.extend(_table_lines(f"[{section}]", data[section]))
    for model, values in data["pricing"].items():
        lines.extend(_table_lines(f"[pricing.{_toml_key(model)}]", values))
    for agent in data["agents"]:
        lines.extend(_table_lines("[[agents]]", agent))
    for task in data["tasks"]:
        lines.extend(_table_lines("[[tasks]]", task))
    return "\n".join(lines).strip() + "\n"


def load_config(path: Path) -> TeamflowConfig:
    if not path.exists():
        return TeamflowConfig.default()
    try:
        data = tomllib.loads(path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Cannot parse {path}: {exc}") from exc
    return TeamflowConfig.from_dict(data)


def save_config(path: Path, config: TeamflowConfig) -> None:
    path.write_text(dumps_toml(config), encoding="utf-8")
