"""Unit tests for event dispatch, supervision and dead letters."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from typing import Any
from unittest.mock import Mock

import pytest

from recruit_workflows.core.engine import WorkflowEngine
from recruit_workflows.errors import PersistenceError
from recruit_workflows.services.webhook import WebhookResponse
from recruit_workflows.store import (
    CANDIDATES,
    DEAD_LETTERS,
    EXECUTIONS,
    WORKFLOWS,
    JsonRecordStore,
)
from recruit_workflows.workflow.events import EventContext
from recruit_workflows.workflow.triggers import matches

Seed = Callable[..., None]
Factory = Callable[..., dict[str, Any]]


def test_two_matching_workflows_run_independently(
    engine: WorkflowEngine,
    store: JsonRecordStore,
    seed: Seed,
    make_workflow: Factory,
    make_candidate: Factory,
) -> None:
    seed(
        workflows=[
            make_workflow(id="wf-tag", actions=[{"type": "add_tag", "tagName": "interviewing"}]),
            make_workflow(
                id="wf-note",
                priority=5,
                actions=[{"type": "add_note", "noteContent": "Interview booked"}],
            ),
        ],
        candidates=[make_candidate()],
    )

    launched = engine.dispatcher.on_status_changed("cand-1", "contacted", "interview_scheduled")
    assert engine.dispatcher.drain(timeout=10)

    assert len(launched) == 2
    executions = store.find(EXECUTIONS)
    assert {e["id"] for e in executions} == set(launched)
    assert {e["workflowId"] for e in executions} == {"wf-tag", "wf-note"}
    assert all(e["status"] == "completed" for e in executions)

    candidate = store.get(CANDIDATES, "cand-1")
    assert candidate["tags"] == ["interviewing"]
    assert candidate["notes"][0]["content"] == "Interview booked"
    assert engine.dispatcher.stats()["completed"] == 2
    assert engine.gate.in_flight == 0


def test_non_matching_and_inactive_workflows_are_not_launched(
    engine: WorkflowEngine, seed: Seed, make_workflow: Factory, make_candidate: Factory
) -> None:
    seed(
        workflows=[
            make_workflow(id="wf-off", isActive=False),
            make_workflow(id="wf-other", trigger={"type": "status_changed", "toStatus": "hired"}),
        ],
        candidates=[make_candidate()],
    )

    assert engine.dispatcher.on_status_changed("cand-1", None, "interview_scheduled") == []


def test_load_workflows_orders_by_priority_and_skips_invalid(
    engine: WorkflowEngine, store: JsonRecordStore, make_workflow: Factory
) -> None:
    store.insert(WORKFLOWS, make_workflow(id="low", priority=1))
    store.insert(WORKFLOWS, make_workflow(id="high", priority=9))
    store.insert(WORKFLOWS, make_workflow(id="broken", actions=[]))

    loaded = engine.dispatcher.load_workflows(EventContext.status_changed(None, "x"))

    assert [w.id for w in loaded] == ["high", "low"]


def test_daily_cap_suppresses_second_event(
    engine: WorkflowEngine,
    store: JsonRecordStore,
    seed: Seed,
    make_workflow: Factory,
    make_candidate: Factory,
) -> None:
    seed(
        workflows=[make_workflow(maxExecutionsPerDay=1)],
        candidates=[make_candidate(), make_candidate(id="cand-2")],
    )

    first = engine.dispatcher.on_status_changed("cand-1", None, "interview_scheduled")
    assert engine.dispatcher.drain(timeout=10)
    second = engine.dispatcher.on_status_changed("cand-2", None, "interview_scheduled")

    assert len(first) == 1
    assert second == []
    assert len(store.find(EXECUTIONS)) == 1
    assert engine.dispatcher.stats()["suppressed"] == 1


def test_unknown_candidate_launches_nothing(
    engine: WorkflowEngine, store: JsonRecordStore, seed: Seed, make_workflow: Factory
) -> None:
    seed(workflows=[make_workflow()])

    assert engine.dispatcher.on_status_changed("ghost", None, "interview_scheduled") == []
    assert store.find(EXECUTIONS) == []


def test_run_that_cannot_load_is_dead_lettered(
    engine: WorkflowEngine,
    store: JsonRecordStore,
    seed: Seed,
    make_workflow: Factory,
    make_candidate: Factory,
) -> None:
    seed(workflows=[make_workflow()], candidates=[make_candidate()])

    # The candidate disappears between dispatch and execution.
    def vanish_then_match(*args: Any) -> bool:
        store.update(CANDIDATES, "cand-1", set_fields={"id": "gone"})
        return matches(*args)

    engine.dispatcher._matcher = vanish_then_match

    launched = engine.dispatcher.on_status_changed("cand-1", None, "interview_scheduled")
    assert engine.dispatcher.drain(timeout=10)

    assert len(launched) == 1
    assert store.find(EXECUTIONS) == []
    letters = store.find(DEAD_LETTERS)
    assert len(letters) == 1
    assert letters[0]["executionId"] == launched[0]
    assert letters[0]["errorType"] == "LoadError"
    assert letters[0]["event"] == {"type": "status_changed", "new_status": "interview_scheduled"}
    assert engine.dispatcher.stats()["errored"] == 1
    assert engine.gate.in_flight == 0


def test_unexpected_orchestrator_error_never_reaches_the_caller(
    engine: WorkflowEngine,
    store: JsonRecordStore,
    seed: Seed,
    make_workflow: Factory,
    make_candidate: Factory,
) -> None:
    seed(workflows=[make_workflow()], candidates=[make_candidate()])
    engine.dispatcher._orchestrator = Mock(run=Mock(side_effect=RuntimeError("boom")))

    launched = engine.dispatcher.on_status_changed("cand-1", None, "interview_scheduled")
    assert engine.dispatcher.drain(timeout=10)

    assert len(launched) == 1
    assert store.find(DEAD_LETTERS)[0]["error"] == "boom"


def test_invalid_candidate_record_never_reaches_the_caller(
    engine: WorkflowEngine,
    store: JsonRecordStore,
    seed: Seed,
    make_workflow: Factory,
    make_candidate: Factory,
) -> None:
    seed(workflows=[make_workflow()], candidates=[make_candidate(tags=None)])

    assert engine.dispatcher.on_status_changed("cand-1", "contacted", "interview_scheduled") == []
    assert store.find(EXECUTIONS) == []
    assert engine.gate.in_flight == 0


def test_store_read_failure_never_reaches_the_caller(
    engine: WorkflowEngine,
    store: JsonRecordStore,
    seed: Seed,
    make_workflow: Factory,
    make_candidate: Factory,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    seed(workflows=[make_workflow()], candidates=[make_candidate()])

    def broken_get(collection: str, record_id: str) -> dict[str, Any] | None:
        raise PersistenceError("Failed to read collection 'candidates'")

    monkeypatch.setattr(store, "get", broken_get)

    assert engine.dispatcher.on_status_changed("cand-1", None, "interview_scheduled") == []


def test_event_after_shutdown_is_rejected_not_raised(
    engine: WorkflowEngine, seed: Seed, make_workflow: Factory, make_candidate: Factory
) -> None:
    seed(workflows=[make_workflow()], candidates=[make_candidate()])
    engine.dispatcher.shutdown()

    assert engine.dispatcher.on_status_changed("cand-1", None, "interview_scheduled") == []
    assert engine.dispatcher.stats()["rejected"] == 1
    assert engine.gate.in_flight == 0


def test_slow_candidate_does_not_starve_other_candidates(
    engine: WorkflowEngine,
    store: JsonRecordStore,
    webhooks: Mock,
    seed: Seed,
    make_workflow: Factory,
    make_candidate: Factory,
) -> None:
    release = threading.Event()

    def slow_send(**_kwargs: Any) -> WebhookResponse:
        release.wait(timeout=10)
        return WebhookResponse(status_code=200, body="ok")

    webhooks.send.side_effect = slow_send
    slow_trigger = {"type": "tag_added", "tag": "slow"}
    slow_actions = [{"type": "webhook", "webhookUrl": "https://hooks.example/slow"}]
    seed(
        workflows=[
            make_workflow(id="wf-slow-1", trigger=slow_trigger, actions=slow_actions),
            make_workflow(id="wf-slow-2", trigger=slow_trigger, actions=slow_actions),
            make_workflow(id="wf-fast", trigger={"type": "tag_added", "tag": "fast"}),
        ],
        candidates=[make_candidate(id="cand-a"), make_candidate(id="cand-b")],
    )

    try:
        # Two workers: cand-a's second run waits in its queue, not on a worker.
        assert len(engine.dispatcher.on_tag_added("cand-a", "slow")) == 2
        assert engine.dispatcher.stats()["queued"] == 1
        fast = engine.dispatcher.on_tag_added("cand-b", "fast")
        assert len(fast) == 1

        deadline = time.monotonic() + 5
        while time.monotonic() < deadline:
            record = store.get(EXECUTIONS, fast[0])
            if record and record["status"] == "completed":
                break
            time.sleep(0.02)
        else:
            pytest.fail("cand-b run did not finish while cand-a was slow")
    finally:
        release.set()

    assert engine.dispatcher.drain(timeout=10)
    slow_runs = store.find(EXECUTIONS, {"candidateId": "cand-a"})
    assert sorted(e["workflowId"] for e in slow_runs) == ["wf-slow-1", "wf-slow-2"]
    assert all(e["status"] == "completed" for e in slow_runs)
