import logging

import pytest

from teamflow.models import ModelUsage, TokenUsage
from teamflow.pricing import (
    DEFAULT_PRICING,
    UNKNOWN_COST,
    ModelPricing,
    calculate_task_cost,
    calculate_workflow_cost,
)


def test_known_model_is_priced_per_million_tokens() -> None:
    cost = calculate_task_cost("gpt-4o-mini", TokenUsage(100, 50))

    assert cost.input_cost == pytest.approx(0.000015)
    assert cost.output_cost == pytest.approx(0.00003)
    assert cost.total_cost == pytest.approx(0.000045)
    assert cost.is_known


def test_unknown_model_reports_sentinel_and_warns(caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.WARNING, logger="teamflow.pricing"):
        cost = calculate_task_cost("house-model", TokenUsage(10, 10))

    assert cost == UNKNOWN_COST
    assert "house-model" in caplog.text


def test_overrides_replace_and_extend_the_table() -> None:
    table = DEFAULT_PRICING.with_overrides(
        {
            "gpt-4o-mini": ModelPricing("gpt-4o-mini", 1.0, 1.0),
            "house-model": ModelPricing("house-model", 2.0, 4.0, "local"),
        }
    )

    assert "house-model" in table
    assert "house-model" not in DEFAULT_PRICING
    assert len(table) == len(DEFAULT_PRICING) + 1
    assert calculate_task_cost("gpt-4o-mini", TokenUsage(1_000_000, 0), table).total_cost == 1.0
    assert calculate_task_cost("house-model", TokenUsage(0, 500_000), table).total_cost == 2.0


def test_workflow_cost_sums_models() -> None:
    usage = {
        "gpt-4o-mini": ModelUsage(input_tokens=100, output_tokens=50, calls_count=1),
        "echo": ModelUsage(input_tokens=999, output_tokens=999, calls_count=3),
    }

    cost = calculate_workflow_cost(usage)

    assert cost.total_cost == pytest.approx(0.000045)
    assert calculate_workflow_cost({}).total_cost == 0.0
