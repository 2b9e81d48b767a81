from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pytest
from fastapi.testclient import TestClient

from recruit_workflows.core.engine import WorkflowEngine
from recruit_workflows.server.app import create_app
from recruit_workflows.store import DEAD_LETTERS, EXECUTIONS, JsonRecordStore


@pytest.fixture
def client(
    engine: WorkflowEngine,
    seed: Callable[..., None],
    make_workflow: Callable[..., dict[str, Any]],
    make_candidate: Callable[..., dict[str, Any]],
) -> TestClient:
    seed(workflows=[make_workflow()], candidates=[make_candidate()])
    return TestClient(create_app(engine))


def test_health(client: TestClient) -> None:
    health = client.get("/api/v1/health").json()

    assert health["status"] == "ok"
    assert "version" in health
    assert health["dispatcher"]["active"] == 0


def test_status_changed_event_launches_runs(client: TestClient, engine: WorkflowEngine) -> None:
    resp = client.post(
        "/api/v1/events/status-changed",
        json={
            "candidateId": "cand-1",
            "oldStatus": "contacted",
            "newStatus": "interview_scheduled",
        },
    )
    assert engine.dispatcher.drain(timeout=10)

    assert resp.status_code == 202
    launched = resp.json()["launched"]
    assert len(launched) == 1

    listing = client.get("/api/v1/executions", params={"candidateId": "cand-1"}).json()
    assert [e["id"] for e in listing] == launched

    execution = client.get(f"/api/v1/executions/{launched[0]}").json()
    assert execution["status"] == "completed"
    assert execution["workflowId"] == "wf-1"


def test_event_payload_is_validated(client: TestClient) -> None:
    resp = client.post("/api/v1/events/tag-added", json={"candidateId": "cand-1"})

    assert resp.status_code == 422


def test_event_without_matching_workflow_launches_nothing(client: TestClient) -> None:
    resp = client.post(
        "/api/v1/events/score-threshold", json={"candidateId": "cand-1", "score": 88}
    )

    assert resp.status_code == 202
    assert resp.json() == {"launched": []}


def test_manual_run(client: TestClient, store: JsonRecordStore) -> None:
    resp = client.post(
        "/api/v1/workflows/wf-1/run", json={"candidateId": "cand-1", "executedBy": "user-9"}
    )

    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "completed"
    assert body["executedBy"] == "user-9"
    assert body["results"][0]["message"] == 'Tag "interviewing" added to candidate'
    assert store.get(EXECUTIONS, body["id"]) is not None


def test_manual_run_for_unknown_records_is_404(client: TestClient) -> None:
    missing_wf = client.post("/api/v1/workflows/nope/run", json={"candidateId": "cand-1"})
    missing_cand = client.post("/api/v1/workflows/wf-1/run", json={"candidateId": "ghost"})

    assert missing_wf.status_code == 404
    assert missing_wf.json()["detail"] == "Workflow not found: nope"
    assert missing_cand.status_code == 404


def test_unknown_execution_is_404(client: TestClient) -> None:
    assert client.get("/api/v1/executions/does-not-exist").status_code == 404


def test_dead_letters_listing(client: TestClient, store: JsonRecordStore) -> None:
    store.insert(DEAD_LETTERS, {"id": "dl-1", "workflowId": "wf-1", "error": "boom"})

    letters = client.get("/api/v1/dead-letters").json()

    assert [d["id"] for d in letters] == ["dl-1"]


def test_execution_listing_is_newest_first_and_limited(
    client: TestClient, store: JsonRecordStore
) -> None:
    for i in range(3):
        store.insert(
            EXECUTIONS,
            {"id": f"e{i}", "workflowId": "wf-1", "startedAt": f"2025-06-0{i + 1}T10:00:00+00:00"},
        )

    listing = client.get("/api/v1/executions", params={"workflowId": "wf-1", "limit": 2}).json()

    assert [e["id"] for e in listing] == ["e2", "e1"]
