import logging
from dataclasses import replace
from typing import Any

import pytest

from teamflow.agents.base import BaseAgent
from teamflow.errors import IllegalTransitionError, StructuralError
from teamflow.events import TaskStatusLog, WorkflowStatusLog
from teamflow.lifecycle import (
    TaskLifecycleManager,
    abort,
    blocked,
    complete,
    error,
    pause,
    provide_feedback,
    resume,
    set_task_status,
    start_task,
    validate,
)
from teamflow.models import Feedback, LLMConfig, Task
from teamflow.status import FeedbackStatus, TaskStatus, WorkflowStatus
from teamflow.store import TeamStore, WorkflowState
from teamflow.workflow import finish_workflow


class StaticAgent(BaseAgent):
    def __init__(self) -> None:
        super().__init__("Static", llm_config=LLMConfig(model="gpt-4o-mini"))

    async def work_on_task(self, task: Task, inputs: Any, context: str) -> Any:
        return "static"

    async def work_on_feedback(self, task: Task, feedback_history: Any, context: str) -> Any:
        return "static revised"


AGENT = StaticAgent()


def _state(*tasks: Task, status: WorkflowStatus = WorkflowStatus.RUNNING) -> WorkflowState:
    return WorkflowState(team_name="crew", status=status, tasks=tasks, agents=(AGENT,))


def _task(task_id: str, status: TaskStatus = TaskStatus.DOING, **kwargs: Any) -> Task:
    return Task(f"Do {task_id}", AGENT, id=task_id, title=task_id, status=status, **kwargs)


def _task_logs(state: WorkflowState) -> list[TaskStatusLog]:
    return [entry for entry in state.logs if isinstance(entry, TaskStatusLog)]


def _workflow_logs(state: WorkflowState, status: WorkflowStatus) -> list[WorkflowStatusLog]:
    return [
        entry
        for entry in state.logs
        if isinstance(entry, WorkflowStatusLog) and entry.workflow_status is status
    ]


def test_complete_last_task_finishes_workflow() -> None:
    state = _state(_task("t1", TaskStatus.DONE, result="a"), _task("t2"))

    state = complete(state, "t2", "b", now=100)

    assert state.get_task("t2").status is TaskStatus.DONE
    assert state.get_task("t2").result == "b"
    assert len(_task_logs(state)) == 1
    assert _task_logs(state)[0].metadata.result == "b"
    assert _task_logs(state)[0].metadata.cost_details is not None
    assert state.status is WorkflowStatus.FINISHED
    assert state.result == "b"
    assert len(_workflow_logs(state, WorkflowStatus.FINISHED)) == 1


def test_complete_with_remaining_work_keeps_running() -> None:
    state = complete(_state(_task("t1"), _task("t2", TaskStatus.TODO)), "t1", "a", now=100)

    assert state.status is WorkflowStatus.RUNNING
    assert state.get_task("t2").status is TaskStatus.TODO


def test_finish_picks_deliverable_and_happens_once() -> None:
    state = _state(
        _task("t1", TaskStatus.DONE, result="report", is_deliverable=True),
        _task("t2", TaskStatus.DONE, result="notes"),
    )

    state = finish_workflow(state, now=10)
    state = finish_workflow(state, now=20)

    assert state.result == "report"
    assert len(_workflow_logs(state, WorkflowStatus.FINISHED)) == 1


def test_validation_gate_blocks_until_validated() -> None:
    state = _state(_task("t1", external_validation_required=True))

    state = complete(state, "t1", "draft", now=100)

    assert state.get_task("t1").status is TaskStatus.AWAITING_VALIDATION
    assert state.status is WorkflowStatus.BLOCKED

    state = validate(state, "t1", now=200)

    statuses = [entry.task_status for entry in _task_logs(state)]
    assert statuses == [TaskStatus.AWAITING_VALIDATION, TaskStatus.VALIDATED, TaskStatus.DONE]
    assert state.get_task("t1").result == "draft"
    assert state.status is WorkflowStatus.FINISHED

    with pytest.raises(IllegalTransitionError):
        validate(state, "t1", now=300)


def test_error_blocks_task_and_escalates() -> None:
    state = _state(_task("t1"), _task("t2", TaskStatus.TODO))

    state = error(state, "t1", ValueError("boom"), now=5)

    task = state.get_task("t1")
    entry = _task_logs(state)[-1]
    assert task.status is TaskStatus.BLOCKED
    assert task.error == "boom"
    assert entry.metadata.diagnostic is not None
    assert entry.metadata.diagnostic.name == "Task Error Encountered"
    assert entry.metadata.diagnostic.error_type == "ValueError"
    assert state.status is WorkflowStatus.BLOCKED


def test_error_without_escalation_leaves_workflow_running() -> None:
    state = _state(_task("t1", escalate_errors=False))

    state = error(state, "t1", RuntimeError("flaky"), now=5)

    assert state.get_task("t1").status is TaskStatus.BLOCKED
    assert state.status is WorkflowStatus.RUNNING


def test_agent_block_always_escalates() -> None:
    state = _state(_task("t1", escalate_errors=False))

    state = blocked(state, "t1", RuntimeError("need data"), now=5)

    assert state.status is WorkflowStatus.BLOCKED
    assert _task_logs(state)[-1].metadata.diagnostic.name == "TASK BLOCKED"


def test_abort_and_pause_leave_feedback_untouched() -> None:
    pending = Feedback("more", timestamp=1)
    state = _state(
        _task("t1", feedback_history=(pending,)),
        _task("t2", feedback_history=(pending,)),
    )

    state = abort(state, "t1", now=10)
    state = pause(state, "t2", now=11)
    state = resume(state, "t2", now=12)

    assert state.get_task("t1").status is TaskStatus.ABORTED
    assert state.get_task("t1").feedback_history == (pending,)
    assert state.get_task("t2").status is TaskStatus.RESUMED
    assert state.get_task("t2").feedback_history == (pending,)
    assert state.status is WorkflowStatus.RUNNING
    with pytest.raises(IllegalTransitionError):
        set_task_status(state, "t1", TaskStatus.DOING)


def test_feedback_round_trip_processes_only_new_entry() -> None:
    earlier = Feedback("first pass", status=FeedbackStatus.PROCESSED, timestamp=1)
    state = _state(
        _task("t1", TaskStatus.DONE, result="v1", feedback_history=(earlier,)),
        status=WorkflowStatus.FINISHED,
    )

    state = provide_feedback(state, "t1", "add sources", now=50)

    task = state.get_task("t1")
    assert task.status is TaskStatus.REVISE
    assert [item.status for item in task.feedback_history] == [
        FeedbackStatus.PROCESSED,
        FeedbackStatus.PENDING,
    ]
    assert state.status is WorkflowStatus.RUNNING
    assert _workflow_logs(state, WorkflowStatus.RUNNING)
    assert _task_logs(state)[-1].metadata.feedback.content == "add sources"

    state = set_task_status(state, "t1", TaskStatus.DOING)
    state = start_task(state, "t1", now=60)
    state = complete(state, "t1", "v2", now=70)

    history = state.get_task("t1").feedback_history
    assert history[0] == earlier
    assert history[1].status is FeedbackStatus.PROCESSED
    assert history[1].content == "add sources"


def test_feedback_content_must_not_be_blank() -> None:
    with pytest.raises(StructuralError):
        provide_feedback(_state(_task("t1", TaskStatus.DONE)), "t1", "   ", now=1)


def test_start_requires_doing_and_records_description() -> None:
    state = start_task(_state(_task("t1")), "t1", now=7, description="Do t1 now")

    assert state.get_task("t1").interpolated_description == "Do t1 now"
    assert _task_logs(state)[0].task.description == "Do t1 now"
    with pytest.raises(IllegalTransitionError):
        start_task(_state(_task("t2", TaskStatus.TODO)), "t2", now=7)


def test_manager_turns_illegal_transition_into_noop(caplog: pytest.LogCaptureFixture) -> None:
    store = TeamStore(_state(_task("t1", TaskStatus.TODO)), clock=lambda: 1)
    manager = TaskLifecycleManager(store)
    before = store.get()

    with caplog.at_level(logging.ERROR, logger="teamflow.lifecycle"):
        assert manager.complete("t1", "early") is False

    assert store.get() is before
    assert "Ignored complete for task t1" in caplog.text


def test_manager_ignores_unknown_and_malformed_tasks() -> None:
    malformed = replace(_task("t2"), feedback_history=["not feedback"])
    store = TeamStore(_state(_task("t1"), malformed), clock=lambda: 1)
    manager = TaskLifecycleManager(store)
    before = store.get()

    assert manager.complete("missing", "x") is False
    assert manager.complete("t2", "x") is False
    assert manager.provide_feedback("", "x") is False
    assert store.get() is before


def test_manager_logs_diagnostic_on_error(caplog: pytest.LogCaptureFixture) -> None:
    store = TeamStore(_state(_task("t1")), clock=lambda: 1)
    manager = TaskLifecycleManager(store)

    with caplog.at_level(logging.ERROR, logger="teamflow.lifecycle"):
        assert manager.error("t1", RuntimeError("model down")) is True

    assert "Task Error Encountered" in caplog.text
    assert "model down" in caplog.text
    assert store.get().status is WorkflowStatus.BLOCKED
