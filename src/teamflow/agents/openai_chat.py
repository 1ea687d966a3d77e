from __future__ import annotations

import asyncio
from typing import Any

from openai import OpenAI

from teamflow.agents.base import PromptAgent
from teamflow.models import LLMConfig, TokenUsage


class OpenAIChatAgent(PromptAgent):
    """Agent backed by the OpenAI Responses API."""

    def __init__(
        self,
        name: str,
        *,
        llm_config: LLMConfig | None = None,
        client: Any | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(name, llm_config=llm_config or LLMConfig(model="gpt-4o-mini"), **kwargs)
        self._client = client

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = OpenAI()
        return self._client

    @staticmethod
    def _extract_text(payload: Any) -> str:
        if payload is None:
            return ""
        output_text = getattr(payload, "output_text", None)
        if isinstance(output_text, str):
            return output_text
        if isinstance(payload, dict):
            value = payload.get("output_text")
            if isinstance(value, str):
                return value
        return str(output_text or "")

    @staticmethod
    def _extract_usage(payload: Any) -> TokenUsage:
        usage = getattr(payload, "usage", None)
        if usage is None and isinstance(payload, dict):
            usage = payload.get("usage")
        if usage is None:
            return TokenUsage()
        if isinstance(usage, dict):
            return TokenUsage(
                input_tokens=int(usage.get("input_tokens") or 0),
                output_tokens=int(usage.get("output_tokens") or 0),
            )
        return TokenUsage(
            input_tokens=int(getattr(usage, "input_tokens", 0) or 0),
            output_tokens=int(getattr(usage, "output_tokens", 0) or 0),
        )

    async def complete_prompt(self, system_prompt: str, user_prompt: str) -> tuple[str, TokenUsage]:
        request: dict[str, Any] = {
            "model": self.llm_config.model,
            "input": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
        }
        if self.llm_config.temperature is not None:
            request["temperature"] = self.llm_config.temperature
        if self.llm_config.max_tokens is not None:
            request["max_output_tokens"] = self.llm_config.max_tokens

        def _request() -> Any:
            return self.client.responses.create(**request)

        payload = await asyncio.to_thread(_request)
        return self._extract_text(payload), self._extract_usage(payload)
