from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import click

from teamflow import __version__
from teamflow.agents import BaseAgent, EchoAgent, OpenAIChatAgent
from teamflow.config import (
    LOG_LEVELS,
    AgentBackendName,
    AgentConfig,
    TeamflowConfig,
    load_config,
    save_config,
)
from teamflow.errors import ConfigError, StructuralError, TeamflowError
from teamflow.events import entry_from_dict, entry_to_dict
from teamflow.models import LLMConfig, Task, TaskStats, WorkflowStats
from teamflow.observability import configure_logging
from teamflow.pricing import PricingTable
from teamflow.stats import compute_task_stats, compute_workflow_stats
from teamflow.status import TaskStatus, WorkflowStatus
from teamflow.team import Team, WorkflowRunResult

MAX_AUTO_VALIDATIONS = 100


@dataclass(slots=True)
class Runtime:
    config_path: Path
    config: TeamflowConfig
    team: Team


def _resolve_config_path(config_value: str) -> Path:
    config_path = Path(config_value)
    if not config_path.is_absolute():
        config_path = Path.cwd() / config_path
    return config_path.resolve()


def _parse_inputs(values: tuple[str, ...]) -> dict[str, str]:
    inputs: dict[str, str] = {}
    for value in values:
        key, separator, item = value.partition("=")
        if not separator or not key.strip():
            raise click.BadParameter(f"Expected key=value, got {value!r}", param_hint="--input")
        inputs[key.strip()] = item
    return inputs


def _build_agent(agent_config: AgentConfig, backend: AgentBackendName | None) -> BaseAgent:
    backend_name = backend or agent_config.backend
    llm_config = LLMConfig(model=agent_config.model, temperature=agent_config.temperature)
    options: dict[str, Any] = {
        "role": agent_config.role,
        "goal": agent_config.goal,
        "background": agent_config.background,
        "max_iterations": agent_config.max_iterations,
    }
    if backend_name == "openai":
        return OpenAIChatAgent(agent_config.name, llm_config=llm_config, **options)
    return EchoAgent(agent_config.name, **options)


def _build_team(config: TeamflowConfig, backend: AgentBackendName | None = None) -> Team:
    config.validate()
    agents = {item.name: _build_agent(item, backend) for item in config.agents}
    tasks = [
        Task(
            description=item.description,
            agent=agents[item.agent],
            title=item.title,
            expected_output=item.expected_output,
            is_deliverable=item.is_deliverable,
            external_validation_required=item.external_validation_required,
            escalate_errors=item.escalate_errors,
        )
        for item in config.tasks
    ]
    return Team(
        config.team.name,
        list(agents.values()),
        tasks,
        inputs=dict(config.inputs),
        workflow=config.workflow,
        pricing=config.pricing_table(),
    )


def _load_runtime(config_path: Path, backend: AgentBackendName | None = None) -> Runtime:
    if not config_path.exists():
        raise click.ClickException(f"Team file not found: {config_path}")
    try:
        config = load_config(config_path)
        team = _build_team(config, backend)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc
    return Runtime(config_path=config_path, config=config, team=team)


def _load_pricing(config_value: str) -> PricingTable:
    try:
        return load_config(_resolve_config_path(config_value)).pricing_table()
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc


def _stats_payload(stats: WorkflowStats | TaskStats) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "duration_seconds": stats.duration,
        "input_tokens": stats.llm_usage.input_tokens,
        "output_tokens": stats.llm_usage.output_tokens,
        "calls": stats.llm_usage.calls_count,
        "call_errors": stats.llm_usage.calls_error_count,
        "parsing_errors": stats.llm_usage.parsing_errors,
        "iterations": stats.iteration_count,
    }
    if isinstance(stats, WorkflowStats):
        payload["total_cost"] = stats.cost_details.total_cost
        payload["models"] = {
            model: {
                "input_tokens": usage.input_tokens,
                "output_tokens": usage.output_tokens,
                "calls": usage.calls_count,
            }
            for model, usage in stats.model_usage.items()
        }
    return payload


async def _run_team(team: Team, inputs: dict[str, str], auto_validate: bool) -> WorkflowRunResult:
    outcome = await team.start(inputs)
    validations = 0
    while auto_validate and outcome.status is WorkflowStatus.BLOCKED:
        awaiting = [
            task for task in team.tasks if task.status is TaskStatus.AWAITING_VALIDATION
        ]
        if not awaiting or validations >= MAX_AUTO_VALIDATIONS:
            break
        validations += 1
        validated = await team.validate_task(awaiting[0].id)
        if validated is None:
            break
        outcome = validated
    return outcome


@click.group()
@click.version_option(__version__, prog_name="teamflow")
def cli() -> None:
    """Teamflow CLI."""


@cli.command("init")
@click.option("--config", "config_value", default="teamflow.toml", show_default=True)
@click.option("--force", is_flag=True, default=False)
def init_command(config_value: str, force: bool) -> None:
    config_path = _resolve_config_path(config_value)
    if config_path.exists() and not force:
        raise click.ClickException(f"{config_path} already exists (use --force to overwrite)")
    config = TeamflowConfig.example()
    save_config(config_path, config)
    click.echo(f"Wrote starter team to {config_path}")
    click.echo(f"Agents: {', '.join(agent.name for agent in config.agents)}")
    click.echo(f"Tasks: {len(config.tasks)}")


@cli.command("run")
@click.option("--config", "config_value", default="teamflow.toml", show_default=True)
@click.option("--input", "input_values", multiple=True, help="Run input as key=value.")
@click.option("--backend", type=click.Choice(["echo", "openai"]), default=None)
@click.option("--auto-validate", is_flag=True, default=False)
@click.option("--logs-out", type=click.Path(dir_okay=False, path_type=Path), default=None)
@click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    default=None,
    help="Overrides [logging].level.",
)
@click.option("--json-logs", is_flag=True, default=False)
def run_command(
    config_value: str,
    input_values: tuple[str, ...],
    backend: AgentBackendName | None,
    auto_validate: bool,
    logs_out: Path | None,
    log_level: str | None,
    json_logs: bool,
) -> None:
    runtime = _load_runtime(_resolve_config_path(config_value), backend)
    logging_config = runtime.config.logging
    configure_logging(
        log_level or logging_config.level,
        json_output=json_logs or logging_config.json_output,
    )
    inputs = _parse_inputs(input_values)
    try:
        outcome = asyncio.run(_run_team(runtime.team, inputs, auto_validate))
    except TeamflowError as exc:
        raise click.ClickException(str(exc)) from exc

    if logs_out is not None:
        entries = [entry_to_dict(entry) for entry in runtime.team.logs]
        logs_out.write_text(
            json.dumps(entries, ensure_ascii=False, indent=2, default=str), encoding="utf-8"
        )

    click.echo(f"Workflow: {outcome.status.value}")
    for index, task in enumerate(runtime.team.tasks, start=1):
        click.echo(f"  {index}. {task.label} [{task.status.value}]")
    if outcome.result is not None:
        result = outcome.result
        click.echo(
            "Result: "
            + (result if isinstance(result, str) else json.dumps(result, ensure_ascii=False))
        )
    click.echo(json.dumps(_stats_payload(outcome.stats), ensure_ascii=False, indent=2))
    if outcome.status in (WorkflowStatus.ERRORED, WorkflowStatus.STOPPED):
        raise SystemExit(1)


@cli.command("stats")
@click.argument("logs_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--task", "task_id", default=None, help="Show stats for one task id.")
@click.option("--config", "config_value", default="teamflow.toml", show_default=True)
def stats_command(logs_file: Path, task_id: str | None, config_value: str) -> None:
    pricing = _load_pricing(config_value)
    try:
        raw = json.loads(logs_file.read_text(encoding="utf-8"))
        entries = [entry_from_dict(item) for item in raw]
    except (json.JSONDecodeError, StructuralError) as exc:
        raise click.ClickException(f"Cannot read {logs_file}: {exc}") from exc
    if not entries:
        raise click.ClickException(f"{logs_file} contains no log entries")

    # Replays stop at the last recorded event rather than the current time.
    now = entries[-1].timestamp
    if task_id:
        stats: TaskStats | WorkflowStats = compute_task_stats(task_id, entries, now=now)
    else:
        stats = compute_workflow_stats(entries, now=now, pricing=pricing)
    click.echo(json.dumps(_stats_payload(stats), ensure_ascii=False, indent=2))


@cli.command("pricing")
@click.argument("model", required=False)
@click.option("--config", "config_value", default="teamflow.toml", show_default=True)
def pricing_command(model: str | None, config_value: str) -> None:
    table = _load_pricing(config_value)
    if model:
        pricing = table.get(model)
        if pricing is None:
            raise click.ClickException(f"No pricing for model {model}")
        entries = [pricing]
    else:
        entries = sorted(table, key=lambda item: (item.provider, item.model))
    for entry in entries:
        click.echo(
            f"{entry.model} ({entry.provider}): "
            f"input ${entry.input_per_1m:g}/1M, output ${entry.output_per_1m:g}/1M"
        )
