from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import Awaitable, Callable
from functools import partial
from typing import Any

from teamflow.context import derive_context, get_task_results, interpolate_description
from teamflow.errors import StructuralError, TaskAbortedError, TaskBlockedError
from teamflow.lifecycle import TaskLifecycleManager
from teamflow.observability import set_task_context
from teamflow.pricing import DEFAULT_PRICING, PricingTable
from teamflow.status import ACTIVE_TASK_STATUSES, TaskStatus, WorkflowStatus
from teamflow.store import TeamStore, WorkflowState
from teamflow.workflow import error_workflow, finish_workflow

logger = logging.getLogger(__name__)

Job = Callable[[], Awaitable[None]]

DEFAULT_WATCHDOG_TIMEOUT_SECONDS = 300.0
DEFAULT_WATCHDOG_INTERVAL_SECONDS = 30.0


class TaskLane:
    """FIFO job queue drained by ``concurrency`` workers on the running event loop."""

    def __init__(self, concurrency: int = 1) -> None:
        self.concurrency = max(1, int(concurrency))
        self._queue: asyncio.Queue[Job] | None = None
        self._workers: list[asyncio.Task[None]] = []
        self._loop: asyncio.AbstractEventLoop | None = None
        self.pending = 0
        self.running = 0

    @property
    def idle(self) -> bool:
        return self.pending == 0

    def _ensure_started(self) -> asyncio.Queue[Job]:
        loop = asyncio.get_running_loop()
        if self._queue is None or self._loop is not loop:
            queue: asyncio.Queue[Job] = asyncio.Queue()
            self._queue = queue
            self._loop = loop
            self.pending = 0
            self.running = 0
            self._workers = [
                loop.create_task(self._worker(queue), name=f"teamflow-lane-{index}")
                for index in range(self.concurrency)
            ]
        return self._queue

    def submit(self, job: Job) -> None:
        queue = self._ensure_started()
        self.pending += 1
        queue.put_nowait(job)

    async def _worker(self, queue: asyncio.Queue[Job]) -> None:
        while True:
            job = await queue.get()
            self.running += 1
            try:
                await job()
            except Exception:
                logger.exception("Lane job failed outside of task handling")
            finally:
                self.running -= 1
                self.pending -= 1
                queue.task_done()

    async def join(self) -> None:
        if self._queue is not None and self._loop is asyncio.get_running_loop():
            await self._queue.join()

    async def close(self) -> None:
        workers, self._workers = self._workers, []
        for worker in workers:
            worker.cancel()
        if workers and self._loop is asyncio.get_running_loop():
            await asyncio.gather(*workers, return_exceptions=True)
        self._queue = None
        self._loop = None
        self.pending = 0
        self.running = 0


class LivenessWatchdog:
    """Warns when the store has not changed for ``timeout_seconds`` while RUNNING.

    It never cancels or retries anything.
    """

    def __init__(
        self,
        store: TeamStore,
        *,
        timeout_seconds: float = DEFAULT_WATCHDOG_TIMEOUT_SECONDS,
        interval_seconds: float = DEFAULT_WATCHDOG_INTERVAL_SECONDS,
        time_source: Callable[[], float] = time.monotonic,
    ) -> None:
        self.store = store
        self.timeout_seconds = timeout_seconds
        self.interval_seconds = interval_seconds
        self.time_source = time_source
        self.last_mutation = time_source()
        self.warned = False
        self._task: asyncio.Task[None] | None = None

    def touch(self) -> None:
        self.last_mutation = self.time_source()
        self.warned = False

    def check(self) -> bool:
        if self.store.get().status is not WorkflowStatus.RUNNING or self.warned:
            return False
        idle = self.time_source() - self.last_mutation
        if idle < self.timeout_seconds:
            return False
        doing = [task.label for task in self.store.get().tasks if task.status is TaskStatus.DOING]
        logger.warning(
            "Workflow looks stuck: no state change for %.0fs (tasks in progress: %s)",
            idle,
            ", ".join(doing) or "none",
        )
        self.warned = True
        return True

    async def _watch(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            self.check()

    def start(self) -> None:
        if self._task is not None and not self._task.done():
            return
        self.touch()
        self._task = asyncio.get_running_loop().create_task(
            self._watch(), name="teamflow-watchdog"
        )

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task


class WorkflowController:
    """Moves tasks through the plan and runs DOING tasks through the lane.

    Reconciliation is level-triggered: every store notification re-reads the whole state and
    makes at most one change, whose own notification drives the next step.
    """

    def __init__(
        self,
        store: TeamStore,
        lifecycle: TaskLifecycleManager,
        *,
        concurrency: int = 1,
        memory: bool = True,
        pricing: PricingTable = DEFAULT_PRICING,
        watchdog_timeout_seconds: float = DEFAULT_WATCHDOG_TIMEOUT_SECONDS,
        watchdog_interval_seconds: float = DEFAULT_WATCHDOG_INTERVAL_SECONDS,
    ) -> None:
        self.store = store
        self.lifecycle = lifecycle
        self.memory = memory
        self.pricing = pricing
        self.lane = TaskLane(concurrency)
        self.watchdog = LivenessWatchdog(
            store,
            timeout_seconds=watchdog_timeout_seconds,
            interval_seconds=watchdog_interval_seconds,
        )
        self._enqueued: set[str] = set()
        self._parked: dict[str, Any] = {}
        self._parked_errors: dict[str, Exception] = {}
        self._resumed: set[str] = set()
        self._unsubscribe: Callable[[], None] | None = None

    def attach(self) -> None:
        if self._unsubscribe is None:
            self._unsubscribe = self.store.subscribe(self._on_change)

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def forget(self) -> None:
        """Drop bookkeeping about earlier runs; used on reset."""
        self._enqueued.clear()
        self._parked.clear()
        self._parked_errors.clear()
        self._resumed.clear()

    async def shutdown(self) -> None:
        await self.watchdog.stop()
        await self.lane.close()
        self._enqueued.clear()

    def _on_change(self, state: WorkflowState, previous: WorkflowState) -> None:
        _ = previous
        self.watchdog.touch()
        self.reconcile(self.store.get())

    def reconcile(self, state: WorkflowState) -> None:
        if state.status is not WorkflowStatus.RUNNING:
            return

        for index, task in enumerate(state.tasks):
            if task.status is TaskStatus.REVISE:
                for later in state.tasks[index + 1 :]:
                    if later.status is not TaskStatus.TODO:
                        self._parked.pop(later.id, None)
                        self._parked_errors.pop(later.id, None)
                        self.lifecycle.reset(later.id)
                        return
                self.lifecycle.set_status(task.id, TaskStatus.DOING)
                return

        for task in state.tasks:
            if task.status is TaskStatus.RESUMED:
                self._resumed.add(task.id)
                self.lifecycle.set_status(task.id, TaskStatus.DOING)
                return

        for task in state.tasks:
            if task.status is not TaskStatus.DOING or task.id in self._enqueued:
                continue
            if task.agent is None:
                self.lifecycle.error(
                    task.id,
                    StructuralError(f"Task '{task.label}' has no agent assigned.", task_id=task.id),
                )
                return
            self._enqueued.add(task.id)
            self.lane.submit(partial(self._execute, task.id))

        if any(task.status in ACTIVE_TASK_STATUSES for task in state.tasks):
            return

        for task in state.tasks:
            if task.status is TaskStatus.TODO:
                self.lifecycle.set_status(task.id, TaskStatus.DOING)
                return

        if all(task.status is TaskStatus.DONE for task in state.tasks):
            self.store.update(
                lambda current: finish_workflow(
                    current, now=self.store.clock(), pricing=self.pricing
                )
            )
            return

        unfinished = [task.label for task in state.tasks if task.status is not TaskStatus.DONE]
        message = f"{len(unfinished)} task(s) did not complete: {', '.join(unfinished)}"
        self.store.update(
            lambda current: error_workflow(
                current, now=self.store.clock(), error=message, pricing=self.pricing
            )
        )

    async def _execute(self, task_id: str) -> None:
        set_task_context(task_id)
        try:
            await self._run_task(task_id)
        finally:
            self._enqueued.discard(task_id)
            set_task_context(None)
            self.reconcile(self.store.get())

    async def _run_task(self, task_id: str) -> None:
        state = self.store.get()
        task = state.find_task(task_id)
        if task is None or task.status is not TaskStatus.DOING or task.agent is None:
            return

        if task_id in self._parked:
            self._resumed.discard(task_id)
            logger.info("Delivering result parked while task %s was paused", task.label)
            self.lifecycle.complete(task_id, self._parked.pop(task_id))
            return
        if task_id in self._parked_errors:
            self._resumed.discard(task_id)
            logger.info("Delivering failure parked while task %s was paused", task.label)
            self._fail(task_id, self._parked_errors.pop(task_id))
            return

        inputs = {**get_task_results(state.tasks), **state.inputs}
        description = interpolate_description(task.description, inputs)
        context = derive_context(state.tasks, state.logs, task_id) if self.memory else ""
        if not self.lifecycle.start(task_id, description=description):
            return

        task = self.store.get().get_task(task_id)
        pending = task.pending_feedback()
        seen = {item.id for item in pending}
        resumed = task_id in self._resumed
        self._resumed.discard(task_id)
        agent = task.agent
        try:
            if pending:
                result = await agent.work_on_feedback(task, task.feedback_history, context)
            elif resumed:
                result = await agent.resume_task(task, state.inputs, context)
            else:
                result = await agent.work_on_task(task, state.inputs, context)
        except TaskAbortedError as exc:
            self.lifecycle.abort(task_id, exc)
            return
        except Exception as exc:
            if not isinstance(exc, TaskBlockedError):
                logger.warning("Agent %s raised on task %s: %s", agent.name, task.label, exc)
            latest = self.store.get().find_task(task_id)
            if latest is not None and latest.status is TaskStatus.PAUSED:
                self._parked_errors[task_id] = exc
                logger.info("Task %s failed while paused; failure kept until resume", task.label)
                return
            self._fail(task_id, exc)
            return

        self._deliver(task_id, result, seen)

    def _fail(self, task_id: str, exc: Exception) -> None:
        if isinstance(exc, TaskBlockedError):
            self.lifecycle.blocked(task_id, exc)
        else:
            self.lifecycle.error(task_id, exc)

    def _deliver(self, task_id: str, result: Any, seen_feedback: set[str]) -> None:
        latest = self.store.get().find_task(task_id)
        if latest is None:
            return
        if latest.status is TaskStatus.PAUSED:
            self._parked[task_id] = result
            logger.info("Task %s finished while paused; result kept until resume", latest.label)
            return
        if latest.status is not TaskStatus.DOING:
            logger.info(
                "Discarding result for task %s: it is %s now", latest.label, latest.status.value
            )
            return
        if {item.id for item in latest.pending_feedback()} - seen_feedback:
            logger.info("Feedback arrived while task %s was running; running it again", latest.label)
            return
        self.lifecycle.complete(task_id, result)
