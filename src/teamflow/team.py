from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any

from teamflow.agents.base import AgentReporter, BaseAgent
from teamflow.config import WorkflowConfig
from teamflow.context import get_task_results
from teamflow.controller import WorkflowController
from teamflow.errors import ConfigError, IllegalTransitionError, TaskAbortedError
from teamflow.events import LogEntry
from teamflow.lifecycle import TaskLifecycleManager
from teamflow.models import Clock, Task, TaskStats, WorkflowStats, now_ms
from teamflow.pricing import DEFAULT_PRICING, PricingTable
from teamflow.stats import compute_task_stats
from teamflow.status import (
    SETTLED_WORKFLOW_STATUSES,
    AgentStatus,
    TaskStatus,
    WorkflowStatus,
)
from teamflow.store import StoreListener, TeamStore, WorkflowState
from teamflow.subscribers import attach_progress_logging
from teamflow.workflow import (
    clear_all,
    reset_workflow,
    start_workflow,
    transition_workflow,
    workflow_stats_for,
)

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class WorkflowRunResult:
    status: WorkflowStatus
    result: Any
    stats: WorkflowStats


class Team:
    """Public entry point: owns the store, the lifecycle manager and the controller."""

    def __init__(
        self,
        name: str,
        agents: Sequence[BaseAgent],
        tasks: Sequence[Task],
        *,
        inputs: dict[str, Any] | None = None,
        workflow: WorkflowConfig | None = None,
        pricing: PricingTable = DEFAULT_PRICING,
        clock: Clock = now_ms,
        progress_logging: bool = True,
    ) -> None:
        task_ids = [task.id for task in tasks]
        if len(set(task_ids)) != len(task_ids):
            raise ConfigError("Task ids must be unique within a team.")
        workflow = workflow or WorkflowConfig()

        self.name = name
        self.pricing = pricing
        self.store = TeamStore(
            WorkflowState(
                team_name=name,
                tasks=tuple(tasks),
                agents=tuple(agents),
                inputs=dict(inputs or {}),
            ),
            clock=clock,
        )
        self.reporter = AgentReporter(self.store)
        for agent in agents:
            agent.bind(self.reporter)
        self.lifecycle = TaskLifecycleManager(self.store, pricing=pricing)
        self.controller = WorkflowController(
            self.store,
            self.lifecycle,
            concurrency=workflow.max_concurrency,
            memory=workflow.memory,
            pricing=pricing,
            watchdog_timeout_seconds=workflow.watchdog_timeout_seconds,
            watchdog_interval_seconds=workflow.watchdog_interval_seconds,
        )
        self.controller.attach()
        if progress_logging:
            attach_progress_logging(self.store)

    @property
    def state(self) -> WorkflowState:
        return self.store.get()

    @property
    def status(self) -> WorkflowStatus:
        return self.store.get().status

    @property
    def tasks(self) -> tuple[Task, ...]:
        return self.store.get().tasks

    @property
    def logs(self) -> tuple[LogEntry, ...]:
        return self.store.get().logs

    def get_task(self, task_id: str) -> Task | None:
        return self.store.get().find_task(task_id)

    def subscribe(self, listener: StoreListener) -> Callable[[], None]:
        return self.store.subscribe(listener)

    def _now(self) -> int:
        return self.store.clock()

    def _reset_agents(self) -> None:
        for agent in self.store.get().agents:
            agent.reset()

    async def start(self, inputs: dict[str, Any] | None = None) -> WorkflowRunResult:
        """Run the plan from the first task and wait until the workflow settles."""

        self.controller.forget()
        self._reset_agents()
        now = self._now()
        self.store.update(lambda state: start_workflow(state, inputs, now=now))
        return await self.wait()

    async def wait(self) -> WorkflowRunResult:
        """Wait until nothing is queued and the workflow is FINISHED, BLOCKED, ERRORED,
        STOPPED or PAUSED."""

        self.controller.watchdog.start()
        try:
            while True:
                await self.controller.lane.join()
                state = self.store.get()
                if not self.controller.lane.idle:
                    continue
                if state.status not in SETTLED_WORKFLOW_STATUSES:
                    logger.warning(
                        "Workflow is %s but no task is queued; returning early",
                        state.status.value,
                    )
                break
        finally:
            await self.controller.shutdown()
        state = self.store.get()
        return WorkflowRunResult(
            status=state.status,
            result=state.result,
            stats=self.get_workflow_stats(),
        )

    async def provide_feedback(
        self,
        task_id: str,
        content: str,
        *,
        user_id: str = "user",
        wait: bool = True,
    ) -> WorkflowRunResult | None:
        if not self.lifecycle.provide_feedback(task_id, content, user_id=user_id):
            return None
        return await self.wait() if wait else None

    async def validate_task(self, task_id: str, *, wait: bool = True) -> WorkflowRunResult | None:
        if not self.lifecycle.validate(task_id):
            return None
        return await self.wait() if wait else None

    def get_task_stats(self, task_id: str) -> TaskStats:
        state = self.store.get()
        if state.find_task(task_id) is None:
            logger.warning("Task %s is not part of the plan; stats will be empty", task_id)
        return compute_task_stats(task_id, state.logs, now=self._now())

    def get_workflow_stats(self) -> WorkflowStats:
        return workflow_stats_for(self.store.get(), now=self._now(), pricing=self.pricing)

    def get_task_results(self) -> dict[str, Any]:
        return get_task_results(self.store.get().tasks)

    def reset_workflow_state(self) -> None:
        self.controller.forget()
        self._reset_agents()
        self.store.update(reset_workflow)

    def clear_all(self) -> None:
        self.controller.forget()
        self.store.update(clear_all)

    def _transition(self, target: WorkflowStatus, description: str) -> bool:
        now = self._now()
        try:
            self.store.update(
                lambda state: transition_workflow(state, target, description, now=now)
            )
        except IllegalTransitionError as exc:
            logger.error("Ignored workflow change to %s: %s", target.value, exc)
            return False
        return True

    async def pause(self) -> WorkflowRunResult | None:
        """Pause the workflow and every task in progress. In-flight agent calls finish on
        their own; their results are kept until resume."""

        if not self._transition(WorkflowStatus.PAUSED, "Workflow paused."):
            return None
        for task in self.store.get().tasks:
            if task.status is TaskStatus.DOING and self.lifecycle.pause(task.id):
                if task.agent is not None:
                    self.reporter.report(
                        task.agent, AgentStatus.PAUSED, "Agent paused.", task=task
                    )
        return await self.wait()

    async def resume(self) -> WorkflowRunResult | None:
        if self.status is not WorkflowStatus.PAUSED:
            logger.error("Cannot resume a workflow that is %s", self.status.value)
            return None
        for task in self.store.get().tasks:
            if task.status is TaskStatus.PAUSED and self.lifecycle.resume(task.id):
                if task.agent is not None:
                    self.reporter.report(
                        task.agent, AgentStatus.RESUMED, "Agent resumed.", task=task
                    )
        if not self._transition(WorkflowStatus.RUNNING, "Workflow resumed."):
            return None
        return await self.wait()

    async def stop(self) -> WorkflowRunResult | None:
        if not self._transition(WorkflowStatus.STOPPING, "Workflow stopping."):
            return None
        for task in self.store.get().tasks:
            if task.status in (TaskStatus.DOING, TaskStatus.PAUSED):
                self.lifecycle.abort(task.id, TaskAbortedError("Workflow stopped by user."))
                if task.agent is not None:
                    self.reporter.task_aborted(task.agent, task)
        self._transition(WorkflowStatus.STOPPED, "Workflow stopped.")
        return await self.wait()
