from __future__ import annotations

import logging
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any

from teamflow.errors import StructuralError
from teamflow.events import LogEntry
from teamflow.models import Clock, Task, now_ms
from teamflow.status import WorkflowStatus

if TYPE_CHECKING:
    from teamflow.agents.base import BaseAgent

logger = logging.getLogger(__name__)

StoreListener = Callable[["WorkflowState", "WorkflowState"], None]


@dataclass(frozen=True, slots=True)
class WorkflowState:
    team_name: str = ""
    status: WorkflowStatus = WorkflowStatus.INITIAL
    result: Any = None
    tasks: tuple[Task, ...] = ()
    agents: tuple[BaseAgent, ...] = ()
    logs: tuple[LogEntry, ...] = ()
    inputs: dict[str, Any] = field(default_factory=dict)

    def task_index(self, task_id: str) -> int:
        for index, task in enumerate(self.tasks):
            if task.id == task_id:
                return index
        raise StructuralError(f"Task '{task_id}' is not part of the plan.", task_id=task_id)

    def get_task(self, task_id: str) -> Task:
        return self.tasks[self.task_index(task_id)]

    def find_task(self, task_id: str) -> Task | None:
        for task in self.tasks:
            if task.id == task_id:
                return task
        return None

    def replace_task(self, task: Task) -> WorkflowState:
        index = self.task_index(task.id)
        tasks = self.tasks[:index] + (task,) + self.tasks[index + 1 :]
        return replace(self, tasks=tasks)

    def append_logs(self, *entries: LogEntry) -> WorkflowState:
        return replace(self, logs=self.logs + tuple(entries))


class TeamStore:
    """Holds the current WorkflowState and applies copy-on-write updates.

    Updates made from inside a listener are applied immediately, but their notifications are
    queued behind the one in progress, so every listener sees transitions in mutation order.
    """

    def __init__(self, initial: WorkflowState | None = None, *, clock: Clock = now_ms) -> None:
        self._state = initial or WorkflowState()
        self._listeners: list[StoreListener] = []
        self._pending: deque[tuple[WorkflowState, WorkflowState]] = deque()
        self._dispatching = False
        self.clock = clock

    def get(self) -> WorkflowState:
        return self._state

    def set(self, state: WorkflowState) -> None:
        self.update(lambda _: state)

    def update(self, updater: Callable[[WorkflowState], WorkflowState]) -> WorkflowState:
        previous = self._state
        current = updater(previous)
        if current is previous:
            return current
        self._state = current
        self._pending.append((current, previous))
        self._dispatch()
        return current

    def subscribe(self, listener: StoreListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _dispatch(self) -> None:
        if self._dispatching:
            return
        self._dispatching = True
        try:
            while self._pending:
                current, previous = self._pending.popleft()
                for listener in list(self._listeners):
                    try:
                        listener(current, previous)
                    except Exception:
                        logger.exception("Store listener %r failed", listener)
        finally:
            self._dispatching = False
