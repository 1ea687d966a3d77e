"""Deterministic local agent for demos and tests."""

from __future__ import annotations

from teamflow.agents.base import PromptAgent
from teamflow.models import LLMConfig, TokenUsage


def _count_tokens(text: str) -> int:
    return len(text.split())


class EchoAgent(PromptAgent):
    """Answers with the first line of the prompt; token usage is the word count."""

    def __init__(self, name: str, *, prefix: str = "", **kwargs) -> None:
        kwargs.setdefault("llm_config", LLMConfig(model="echo", provider="local"))
        super().__init__(name, **kwargs)
        self.prefix = prefix

    async def complete_prompt(self, system_prompt: str, user_prompt: str) -> tuple[str, TokenUsage]:
        first_line = next((line for line in user_prompt.splitlines() if line.strip()), "")
        text = f"{self.prefix}{first_line.strip()}"
        usage = TokenUsage(
            input_tokens=_count_tokens(system_prompt) + _count_tokens(user_prompt),
            output_tokens=_count_tokens(text),
        )
        return text, usage
