import asyncio
from types import SimpleNamespace
from typing import Any

import pytest

from teamflow.agents import AgentReporter, EchoAgent, OpenAIChatAgent, PromptAgent
from teamflow.errors import AgentExecutionError, TaskBlockedError
from teamflow.events import AgentStatusLog
from teamflow.models import Feedback, LLMConfig, Task, TokenUsage
from teamflow.status import AgentStatus, FeedbackStatus, TaskStatus
from teamflow.store import TeamStore, WorkflowState


class ScriptedPromptAgent(PromptAgent):
    def __init__(self, outputs: list[Any], **kwargs: Any) -> None:
        super().__init__("Scripted", llm_config=LLMConfig(model="gpt-4o-mini"), **kwargs)
        self.outputs = list(outputs)
        self.prompts: list[str] = []

    async def complete_prompt(self, system_prompt: str, user_prompt: str) -> tuple[str, TokenUsage]:
        self.prompts.append(user_prompt)
        output = self.outputs.pop(0)
        if isinstance(output, BaseException):
            raise output
        return output, TokenUsage(input_tokens=10, output_tokens=2)


class FakeResponses:
    def __init__(self, payload: Any) -> None:
        self.payload = payload
        self.requests: list[dict[str, Any]] = []

    def create(self, **kwargs: Any) -> Any:
        self.requests.append(kwargs)
        return self.payload


def _bound(agent: PromptAgent, task: Task) -> TeamStore:
    store = TeamStore(WorkflowState(tasks=(task,), agents=(agent,)), clock=lambda: 1)
    agent.bind(AgentReporter(store))
    return store


def _agent_statuses(store: TeamStore) -> list[AgentStatus]:
    return [entry.agent_status for entry in store.get().logs if isinstance(entry, AgentStatusLog)]


def test_echo_agent_answers_with_first_prompt_line() -> None:
    agent = EchoAgent("Echo", prefix="> ")
    task = Task("Summarize the notes\nwith detail", agent, expected_output="Three bullets")

    result = asyncio.run(agent.work_on_task(task, {}, "Task: earlier\nResult: x\n"))

    assert result == "> Summarize the notes"
    assert agent.llm_config.model == "echo"


def test_prompt_agent_reports_each_step() -> None:
    agent = ScriptedPromptAgent(["  final answer  "])
    task = Task("Write", agent, id="t1", status=TaskStatus.DOING)
    store = _bound(agent, task)

    result = asyncio.run(agent.work_on_task(task, {}, ""))

    assert result == "final answer"
    assert _agent_statuses(store) == [
        AgentStatus.ITERATION_START,
        AgentStatus.THINKING,
        AgentStatus.THINKING_END,
        AgentStatus.FINAL_ANSWER,
        AgentStatus.ITERATION_END,
        AgentStatus.TASK_COMPLETED,
    ]
    thinking_end = [
        entry
        for entry in store.get().logs
        if isinstance(entry, AgentStatusLog) and entry.agent_status is AgentStatus.THINKING_END
    ]
    assert thinking_end[0].metadata.usage == TokenUsage(10, 2)
    assert thinking_end[0].task.id == "t1"
    assert agent.status is AgentStatus.TASK_COMPLETED


def test_empty_output_is_retried_then_gives_up() -> None:
    agent = ScriptedPromptAgent(["", "   "], max_iterations=2)
    task = Task("Write", agent, id="t1", status=TaskStatus.DOING)
    store = _bound(agent, task)

    with pytest.raises(AgentExecutionError, match="no usable answer"):
        asyncio.run(agent.work_on_task(task, {}, ""))

    statuses = _agent_statuses(store)
    assert statuses.count(AgentStatus.ISSUES_PARSING_LLM_OUTPUT) == 2
    assert statuses[-1] is AgentStatus.MAX_ITERATIONS_ERROR
    assert "last answer was empty" in agent.prompts[1]


def test_blocked_marker_raises_task_blocked() -> None:
    agent = ScriptedPromptAgent(["BLOCKED: the source file is missing"])
    task = Task("Write", agent, id="t1", status=TaskStatus.DOING)
    store = _bound(agent, task)

    with pytest.raises(TaskBlockedError) as excinfo:
        asyncio.run(agent.work_on_task(task, {}, ""))

    assert excinfo.value.reason == "the source file is missing"
    assert _agent_statuses(store)[-1] is AgentStatus.DECIDED_TO_BLOCK_TASK


def test_model_failure_is_reported_and_wrapped() -> None:
    agent = ScriptedPromptAgent([ConnectionError("timeout")])
    task = Task("Write", agent, id="t1", status=TaskStatus.DOING)
    store = _bound(agent, task)

    with pytest.raises(AgentExecutionError) as excinfo:
        asyncio.run(agent.work_on_task(task, {}, ""))

    assert excinfo.value.agent == "Scripted"
    assert isinstance(excinfo.value.__cause__, ConnectionError)
    assert _agent_statuses(store)[-1] is AgentStatus.THINKING_ERROR


def test_feedback_prompt_lists_only_pending_feedback() -> None:
    agent = ScriptedPromptAgent(["revised"])
    history = (
        Feedback("old note", status=FeedbackStatus.PROCESSED),
        Feedback("use metric units"),
    )
    task = Task("Write", agent, id="t1", result="first draft", feedback_history=history)

    asyncio.run(agent.work_on_feedback(task, history, ""))

    prompt = agent.prompts[0]
    assert "use metric units" in prompt
    assert "old note" not in prompt
    assert "Your previous answer:\nfirst draft" in prompt


def test_openai_agent_sends_responses_request() -> None:
    payload = SimpleNamespace(
        output_text="Paris",
        usage=SimpleNamespace(input_tokens=12, output_tokens=3),
    )
    responses = FakeResponses(payload)
    agent = OpenAIChatAgent(
        "Geo",
        llm_config=LLMConfig(model="gpt-4o", temperature=0.1, max_tokens=50),
        client=SimpleNamespace(responses=responses),
        role="Answer geography questions",
    )

    text, usage = asyncio.run(agent.complete_prompt(agent.system_prompt, "Capital of France?"))

    assert text == "Paris"
    assert usage == TokenUsage(input_tokens=12, output_tokens=3)
    request = responses.requests[0]
    assert request["model"] == "gpt-4o"
    assert request["temperature"] == 0.1
    assert request["max_output_tokens"] == 50
    assert request["input"][0]["content"].startswith("You are Geo.")
    assert request["input"][1] == {"role": "user", "content": "Capital of France?"}


def test_openai_agent_tolerates_dict_payloads() -> None:
    responses = FakeResponses({"output_text": "ok", "usage": {"input_tokens": 4}})
    agent = OpenAIChatAgent("Dict", client=SimpleNamespace(responses=responses))

    text, usage = asyncio.run(agent.complete_prompt("system", "user"))

    assert text == "ok"
    assert usage == TokenUsage(input_tokens=4, output_tokens=0)
    assert "temperature" not in responses.requests[0]
