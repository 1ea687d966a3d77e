from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from teamflow.errors import AgentExecutionError, TaskAbortedError, TaskBlockedError
from teamflow.events import AgentLogMetadata, AgentSnapshot, AgentStatusLog, TaskSnapshot
from teamflow.models import Feedback, LLMConfig, Task, TokenUsage, new_id
from teamflow.status import AGENT_TRANSITIONS, AgentStatus, can_transition

if TYPE_CHECKING:
    from teamflow.store import TeamStore

logger = logging.getLogger(__name__)


class AgentReporter:
    """Appends AgentStatusUpdate entries to the team log and keeps ``agent.status`` in step."""

    def __init__(self, store: TeamStore) -> None:
        self.store = store

    def report(
        self,
        agent: BaseAgent,
        status: AgentStatus,
        description: str,
        *,
        task: Task | None = None,
        metadata: AgentLogMetadata | None = None,
    ) -> None:
        if not can_transition(AGENT_TRANSITIONS, agent.status, status):
            logger.error(
                "Agent %s cannot report %s while %s", agent.name, status.value, agent.status.value
            )
            return
        agent.status = status
        now = self.store.clock()

        def _append(state):
            current = state.find_task(task.id) if task is not None else None
            snapshot = current or task
            return state.append_logs(
                AgentStatusLog(
                    timestamp=now,
                    agent=AgentSnapshot.from_agent(agent),
                    agent_status=status,
                    description=description,
                    task=TaskSnapshot.from_task(snapshot) if snapshot is not None else None,
                    metadata=metadata or AgentLogMetadata(),
                )
            )

        self.store.update(_append)

    def iteration_started(self, agent: BaseAgent, task: Task, iteration: int) -> None:
        self.report(
            agent,
            AgentStatus.ITERATION_START,
            f"Iteration {iteration} started.",
            task=task,
            metadata=AgentLogMetadata(iteration=iteration),
        )

    def iteration_finished(self, agent: BaseAgent, task: Task, iteration: int) -> None:
        self.report(
            agent,
            AgentStatus.ITERATION_END,
            f"Iteration {iteration} finished.",
            task=task,
            metadata=AgentLogMetadata(iteration=iteration),
        )

    def thinking_started(self, agent: BaseAgent, task: Task) -> None:
        self.report(agent, AgentStatus.THINKING, "Agent is thinking.", task=task)

    def thinking_finished(
        self, agent: BaseAgent, task: Task, usage: TokenUsage, output: str
    ) -> None:
        self.report(
            agent,
            AgentStatus.THINKING_END,
            "Agent finished thinking.",
            task=task,
            metadata=AgentLogMetadata(usage=usage, output=output),
        )

    def thinking_failed(self, agent: BaseAgent, task: Task, error: BaseException) -> None:
        self.report(
            agent,
            AgentStatus.THINKING_ERROR,
            f"Model call failed: {error}",
            task=task,
            metadata=AgentLogMetadata(error=str(error)),
        )

    def output_malformed(self, agent: BaseAgent, task: Task, output: str, reason: str) -> None:
        self.report(
            agent,
            AgentStatus.ISSUES_PARSING_LLM_OUTPUT,
            f"Could not use model output: {reason}",
            task=task,
            metadata=AgentLogMetadata(output=output, error=reason),
        )

    def final_answer(self, agent: BaseAgent, task: Task, output: str) -> None:
        self.report(
            agent,
            AgentStatus.FINAL_ANSWER,
            "Agent produced a final answer.",
            task=task,
            metadata=AgentLogMetadata(output=output),
        )

    def task_completed(self, agent: BaseAgent, task: Task) -> None:
        self.report(agent, AgentStatus.TASK_COMPLETED, "Agent completed the task.", task=task)

    def max_iterations_reached(self, agent: BaseAgent, task: Task, iterations: int) -> None:
        self.report(
            agent,
            AgentStatus.MAX_ITERATIONS_ERROR,
            f"Agent gave up after {iterations} iterations.",
            task=task,
            metadata=AgentLogMetadata(iteration=iterations),
        )

    def decided_to_block(self, agent: BaseAgent, task: Task, reason: str) -> None:
        self.report(
            agent,
            AgentStatus.DECIDED_TO_BLOCK_TASK,
            f"Agent blocked the task: {reason}",
            task=task,
            metadata=AgentLogMetadata(error=reason),
        )

    def task_aborted(self, agent: BaseAgent, task: Task) -> None:
        self.report(agent, AgentStatus.TASK_ABORTED, "Agent stopped working on the task.", task=task)


class BaseAgent(ABC):
    """Collaborator that turns a task into a result.

    Agents are shared by the tasks of a team. The team binds an ``AgentReporter`` before the
    first run; agents without one simply skip status reporting.
    """

    def __init__(
        self,
        name: str,
        *,
        role: str = "",
        goal: str = "",
        background: str = "",
        llm_config: LLMConfig | None = None,
        agent_id: str | None = None,
    ) -> None:
        self.id = agent_id or new_id()
        self.name = name
        self.role = role
        self.goal = goal
        self.background = background
        self.llm_config = llm_config or LLMConfig()
        self.status = AgentStatus.INITIAL
        self.reporter: AgentReporter | None = None

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, model={self.llm_config.model!r})"

    def bind(self, reporter: AgentReporter) -> None:
        self.reporter = reporter

    def reset(self) -> None:
        self.status = AgentStatus.INITIAL

    @abstractmethod
    async def work_on_task(self, task: Task, inputs: Mapping[str, Any], context: str) -> Any:
        """Execute the task and return its result."""

    @abstractmethod
    async def work_on_feedback(
        self, task: Task, feedback_history: tuple[Feedback, ...], context: str
    ) -> Any:
        """Rework the task using the pending feedback and return the new result."""

    async def resume_task(self, task: Task, inputs: Mapping[str, Any], context: str) -> Any:
        return await self.work_on_task(task, inputs, context)


class PromptAgent(BaseAgent):
    """Agent driven by one model call per iteration.

    Subclasses implement ``complete_prompt``. Output starting with ``BLOCKED:`` blocks the
    task; empty output counts as a parsing issue and triggers another iteration.
    """

    block_marker = "BLOCKED:"

    def __init__(self, name: str, *, max_iterations: int = 3, **kwargs: Any) -> None:
        super().__init__(name, **kwargs)
        self.max_iterations = max(1, max_iterations)

    @property
    def system_prompt(self) -> str:
        parts = [f"You are {self.name}."]
        if self.role:
            parts.append(f"Your role: {self.role}.")
        if self.goal:
            parts.append(f"Your goal: {self.goal}.")
        if self.background:
            parts.append(f"Background: {self.background}.")
        return " ".join(parts)

    @abstractmethod
    async def complete_prompt(self, system_prompt: str, user_prompt: str) -> tuple[str, TokenUsage]:
        """Return the model's text and the tokens it consumed."""

    def build_task_prompt(self, task: Task, context: str) -> str:
        parts = [task.interpolated_description or task.description]
        if task.expected_output:
            parts.append(f"Expected output: {task.expected_output}")
        if context:
            parts.append("Results of earlier tasks:\n" + context)
        return "\n\n".join(parts)

    def build_feedback_prompt(
        self, task: Task, feedback_history: tuple[Feedback, ...], context: str
    ) -> str:
        pending = [item.content for item in feedback_history if item.is_pending]
        parts = [self.build_task_prompt(task, context)]
        if task.result is not None:
            parts.append(f"Your previous answer:\n{task.result}")
        parts.append("Revise your answer using this feedback:\n" + "\n".join(pending))
        return "\n\n".join(parts)

    def _report(self, method: str, *args: Any) -> None:
        if self.reporter is not None:
            getattr(self.reporter, method)(self, *args)

    async def work_on_task(self, task: Task, inputs: Mapping[str, Any], context: str) -> Any:
        _ = inputs
        return await self._run(task, self.build_task_prompt(task, context))

    async def work_on_feedback(
        self, task: Task, feedback_history: tuple[Feedback, ...], context: str
    ) -> Any:
        return await self._run(task, self.build_feedback_prompt(task, feedback_history, context))

    async def _run(self, task: Task, prompt: str) -> str:
        for iteration in range(1, self.max_iterations + 1):
            self._report("iteration_started", task, iteration)
            self._report("thinking_started", task)
            try:
                text, usage = await self.complete_prompt(self.system_prompt, prompt)
            except (TaskBlockedError, TaskAbortedError):
                raise
            except Exception as exc:
                self._report("thinking_failed", task, exc)
                raise AgentExecutionError(
                    f"Agent {self.name} failed on task '{task.label}': {exc}",
                    agent=self.name,
                    model=self.llm_config.model,
                ) from exc
            self._report("thinking_finished", task, usage, text)

            answer = text.strip()
            if answer.startswith(self.block_marker):
                reason = answer[len(self.block_marker) :].strip() or "no reason given"
                self._report("decided_to_block", task, reason)
                raise TaskBlockedError(f"{self.name} blocked the task: {reason}", reason=reason)
            if not answer:
                self._report("output_malformed", task, text, "empty answer")
                self._report("iteration_finished", task, iteration)
                prompt += "\n\nYour last answer was empty. Answer the task directly."
                continue

            self._report("final_answer", task, answer)
            self._report("iteration_finished", task, iteration)
            self._report("task_completed", task)
            return answer

        self._report("max_iterations_reached", task, self.max_iterations)
        raise AgentExecutionError(
            f"Agent {self.name} produced no usable answer in {self.max_iterations} iterations.",
            agent=self.name,
            model=self.llm_config.model,
            retriable=False,
        )
