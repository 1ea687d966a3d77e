import logging

import pytest

from teamflow.status import WorkflowStatus
from teamflow.store import TeamStore, WorkflowState


def test_listener_failure_keeps_later_listeners_and_queued_updates(
    caplog: pytest.LogCaptureFixture,
) -> None:
    store = TeamStore(WorkflowState(), clock=lambda: 1)
    seen: list[tuple[str, str]] = []

    def chain(state: WorkflowState, previous: WorkflowState) -> None:
        if state.team_name == "first":
            store.update(lambda current: WorkflowState(team_name="second"))

    def broken(state: WorkflowState, previous: WorkflowState) -> None:
        raise RuntimeError("boom")

    store.subscribe(chain)
    store.subscribe(broken)
    store.subscribe(lambda state, previous: seen.append((previous.team_name, state.team_name)))

    with caplog.at_level(logging.ERROR, logger="teamflow.store"):
        store.update(lambda current: WorkflowState(team_name="first"))

    assert seen == [("", "first"), ("first", "second")]
    assert store.get().team_name == "second"
    assert caplog.text.count("Store listener") == 2


def test_update_returning_same_state_notifies_nobody() -> None:
    store = TeamStore(WorkflowState(status=WorkflowStatus.RUNNING))
    calls: list[WorkflowState] = []
    store.subscribe(lambda state, previous: calls.append(state))

    store.update(lambda current: current)

    assert calls == []
