"""Token cost lookup for LLM usage recorded in the event log."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from teamflow.models import CostDetails, LLMUsageStats, ModelUsage, TokenUsage

logger = logging.getLogger(__name__)

UNKNOWN_COST = CostDetails(input_cost=-1.0, output_cost=-1.0, total_cost=-1.0)


@dataclass(frozen=True, slots=True)
class ModelPricing:
    """Per-model input/output pricing in USD per 1M tokens."""

    model: str
    input_per_1m: float
    output_per_1m: float
    provider: str = "openai"


class PricingTable:
    def __init__(self, entries: Iterable[ModelPricing]) -> None:
        self._entries = {entry.model: entry for entry in entries}

    def get(self, model: str) -> ModelPricing | None:
        return self._entries.get(model.strip())

    def __contains__(self, model: object) -> bool:
        return isinstance(model, str) and model.strip() in self._entries

    def __iter__(self):
        return iter(self._entries.values())

    def __len__(self) -> int:
        return len(self._entries)

    def with_overrides(self, overrides: Mapping[str, ModelPricing]) -> PricingTable:
        merged = dict(self._entries)
        merged.update(overrides)
        return PricingTable(merged.values())


DEFAULT_PRICING = PricingTable(
    [
        ModelPricing("echo", 0.0, 0.0, "local"),
        ModelPricing("gpt-4o-mini", 0.15, 0.6),
        ModelPricing("gpt-3.5-turbo", 0.5, 1.5),
        ModelPricing("gpt-3.5-turbo-0125", 0.5, 1.5),
        ModelPricing("gpt-4o", 5.0, 15.0),
        ModelPricing("gpt-4-turbo", 10.0, 30.0),
        ModelPricing("gpt-4", 30.0, 60.0),
        ModelPricing("claude-3-5-sonnet-20240620", 3.0, 15.0, "anthropic"),
        ModelPricing("claude-3-opus-20240229", 15.0, 75.0, "anthropic"),
        ModelPricing("claude-3-sonnet-20240229", 3.0, 15.0, "anthropic"),
        ModelPricing("claude-3-haiku-20240307", 0.25, 1.25, "anthropic"),
        ModelPricing("gemini-1.5-flash", 0.35, 1.05, "google"),
        ModelPricing("gemini-1.5-pro", 3.5, 10.5, "google"),
        ModelPricing("gemini-1.0-pro", 0.5, 1.5, "google"),
        ModelPricing("open-mistral-nemo-2407", 0.3, 0.3, "mistral"),
        ModelPricing("mistral-large-2407", 3.0, 9.0, "mistral"),
        ModelPricing("codestral-2405", 1.0, 3.0, "mistral"),
        ModelPricing("deepseek-chat", 0.27, 1.1, "deepseek"),
        ModelPricing("deepseek-coder", 0.15, 0.6, "deepseek"),
        ModelPricing("deepseek-reasoner", 0.55, 2.2, "deepseek"),
    ]
)


def _round_cost(value: float) -> float:
    return round(value, 10)


def calculate_task_cost(
    model: str,
    usage: TokenUsage | LLMUsageStats | ModelUsage,
    table: PricingTable = DEFAULT_PRICING,
) -> CostDetails:
    """Price one model's token usage. Unknown models give UNKNOWN_COST."""

    pricing = table.get(model)
    if pricing is None:
        logger.warning("No pricing data for model %r; cost is reported as unknown", model)
        return UNKNOWN_COST

    input_cost = (usage.input_tokens / 1_000_000) * pricing.input_per_1m
    output_cost = (usage.output_tokens / 1_000_000) * pricing.output_per_1m
    return CostDetails(
        input_cost=_round_cost(input_cost),
        output_cost=_round_cost(output_cost),
        total_cost=_round_cost(input_cost + output_cost),
    )


def calculate_workflow_cost(
    model_usage: Mapping[str, ModelUsage],
    table: PricingTable = DEFAULT_PRICING,
) -> CostDetails:
    input_cost = 0.0
    output_cost = 0.0
    for model, usage in model_usage.items():
        cost = calculate_task_cost(model, usage, table)
        if not cost.is_known:
            return UNKNOWN_COST
        input_cost += cost.input_cost
        output_cost += cost.output_cost
    return CostDetails(
        input_cost=_round_cost(input_cost),
        output_cost=_round_cost(output_cost),
        total_cost=_round_cost(input_cost + output_cost),
    )
