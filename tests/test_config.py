import tomllib
from pathlib import Path

import pytest

from teamflow import __version__
from teamflow.config import (
    AgentConfig,
    TaskConfig,
    TeamflowConfig,
    dumps_toml,
    load_config,
    save_config,
)
from teamflow.errors import ConfigError
from teamflow.pricing import ModelPricing


def test_config_roundtrip(tmp_path: Path) -> None:
    config_path = tmp_path / "teamflow.toml"
    config = TeamflowConfig.example()
    config.team.name = "docs-team"
    config.workflow.max_concurrency = 2
    config.workflow.watchdog_timeout_seconds = 120.0
    config.workflow.memory = False
    config.logging.level = "DEBUG"
    config.logging.json_output = True
    config.inputs["audience"] = "new hires"
    config.agents[0].backend = "openai"
    config.agents[0].temperature = 0.2
    config.tasks[1].external_validation_required = True
    config.tasks[0].escalate_errors = False
    config.pricing["house-model"] = ModelPricing("house-model", 1.5, 3.0, "local")

    save_config(config_path, config)
    loaded = load_config(config_path)

    assert loaded.team.name == "docs-team"
    assert loaded.workflow.max_concurrency == 2
    assert loaded.workflow.watchdog_timeout_seconds == 120.0
    assert loaded.workflow.memory is False
    assert loaded.logging.level == "DEBUG"
    assert loaded.logging.json_output is True
    assert loaded.inputs == {"topic": "event sourcing", "audience": "new hires"}
    assert loaded.agents[0].backend == "openai"
    assert loaded.agents[0].temperature == 0.2
    assert loaded.agents[1].temperature is None
    assert loaded.tasks[1].external_validation_required is True
    assert loaded.tasks[0].escalate_errors is False
    assert loaded.pricing["house-model"] == ModelPricing("house-model", 1.5, 3.0, "local")
    assert loaded.pricing_table().get("house-model").output_per_1m == 3.0


def test_toml_dump_contains_every_section() -> None:
    config = TeamflowConfig.example()
    config.pricing["gpt-4o-mini"] = ModelPricing("gpt-4o-mini", 0.15, 0.6)
    rendered = dumps_toml(config)

    assert "[team]" in rendered
    assert "[workflow]" in rendered
    assert "watchdog_timeout_seconds = 300.0" in rendered
    assert "[logging]" in rendered
    assert "[inputs]" in rendered
    assert '[pricing."gpt-4o-mini"]' in rendered or "[pricing.gpt-4o-mini]" in rendered
    assert rendered.count("[[agents]]") == 2
    assert rendered.count("[[tasks]]") == 2
    assert tomllib.loads(rendered)["tasks"][1]["is_deliverable"] is True


def test_missing_file_gives_default_config(tmp_path: Path) -> None:
    config = load_config(tmp_path / "absent.toml")

    assert config.agents == []
    assert config.workflow.max_concurrency == 1


def test_invalid_files_raise_config_error(tmp_path: Path) -> None:
    broken = tmp_path / "broken.toml"
    broken.write_text("[team\nname = 1", encoding="utf-8")
    unknown_key = tmp_path / "unknown.toml"
    unknown_key.write_text("[workflow]\nparallel = true\n", encoding="utf-8")

    with pytest.raises(ConfigError):
        load_config(broken)
    with pytest.raises(ConfigError):
        load_config(unknown_key)


def test_validate_rejects_inconsistent_teams() -> None:
    config = TeamflowConfig(
        agents=[AgentConfig(name="A"), AgentConfig(name="A")],
        tasks=[TaskConfig(description="x", agent="A")],
    )
    with pytest.raises(ConfigError, match="Duplicate agent names"):
        config.validate()

    config.agents = [AgentConfig(name="A")]
    config.tasks.append(TaskConfig(description="y", agent="Ghost"))
    with pytest.raises(ConfigError, match="Ghost"):
        config.validate()

    config.tasks.pop()
    config.workflow.max_concurrency = 0
    with pytest.raises(ConfigError, match="max_concurrency"):
        config.validate()


def test_package_version_constant_matches_pyproject() -> None:
    project_root = Path(__file__).resolve().parents[1]
    pyproject = tomllib.loads((project_root / "pyproject.toml").read_text(encoding="utf-8"))

    assert __version__ == pyproject["project"]["version"]
