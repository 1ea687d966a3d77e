import logging

import pytest

from teamflow.context import (
    derive_context,
    get_task_results,
    interpolate_description,
)
from teamflow.events import TaskLogMetadata, TaskSnapshot, TaskStatusLog
from teamflow.models import Task
from teamflow.status import TaskStatus


def _done(task: Task, result: object, timestamp: int) -> TaskStatusLog:
    return TaskStatusLog(
        timestamp=timestamp,
        task=TaskSnapshot(
            id=task.id,
            title=task.title,
            description=task.description,
            status=TaskStatus.DONE,
            result=result,
        ),
        task_status=TaskStatus.DONE,
        description="done",
        metadata=TaskLogMetadata(result=result),
    )


def _plan() -> list[Task]:
    return [
        Task("Collect facts", id="t1"),
        Task("Write summary", id="t2"),
        Task("Review summary", id="t3"),
    ]


def test_context_follows_plan_order_not_log_order() -> None:
    tasks = _plan()
    logs = [_done(tasks[1], "draft", 20), _done(tasks[0], "facts", 10)]

    context = derive_context(tasks, logs, "t3")

    assert context == "Task: Collect facts\nResult: facts\n\nTask: Write summary\nResult: draft\n"


def test_context_excludes_current_and_later_tasks() -> None:
    tasks = _plan()
    logs = [_done(tasks[0], "facts", 10), _done(tasks[2], "late", 30)]

    assert derive_context(tasks, logs, "t1") == ""
    assert derive_context(tasks, logs, "t2") == "Task: Collect facts\nResult: facts\n"


def test_context_uses_latest_result_of_a_revised_task() -> None:
    tasks = _plan()
    logs = [_done(tasks[0], "first", 10), _done(tasks[0], "second", 20)]

    assert derive_context(tasks, logs, "t2") == "Task: Collect facts\nResult: second\n"


def test_structured_results_are_rendered_as_json() -> None:
    tasks = _plan()
    logs = [_done(tasks[0], {"answer": 42}, 10)]

    assert derive_context(tasks, logs, "t2") == 'Task: Collect facts\nResult: {"answer": 42}\n'


def test_unknown_task_gives_empty_context(caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.WARNING, logger="teamflow.context"):
        assert derive_context(_plan(), [], "nope") == ""
    assert "nope" in caplog.text


def test_interpolation_keeps_unknown_placeholders() -> None:
    text = interpolate_description("Write about {topic} for {audience}.", {"topic": "queues"})

    assert text == "Write about queues for {audience}."
    assert interpolate_description("{count} items", {"count": 3}) == "3 items"


def test_task_results_are_keyed_by_plan_position() -> None:
    tasks = _plan()

    assert get_task_results(tasks) == {"task1": None, "task2": None, "task3": None}
