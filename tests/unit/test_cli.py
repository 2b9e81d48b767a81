"""Unit tests for the command line entrypoint."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from pathlib import Path

import pytest

from recruit_workflows.cli import build_parser, main
from recruit_workflows.store import CANDIDATES, EXECUTIONS, WORKFLOWS, JsonRecordStore


@pytest.fixture
def state(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[JsonRecordStore]:
    state_dir = tmp_path / "state"
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("WORKFLOW_STATE_PATH", str(state_dir))
    monkeypatch.setenv("EMAIL_PROVIDER", "mock")
    monkeypatch.setenv("LOG_LEVEL", "WARNING")
    monkeypatch.delenv("WORKFLOW_TIMEZONE", raising=False)

    store = JsonRecordStore(state_dir)
    store.insert(
        WORKFLOWS,
        {
            "id": "wf-1",
            "name": "Tag VIPs",
            "trigger": {"type": "tag_added", "tag": "vip"},
            "actions": [{"type": "change_status", "newStatus": "screening"}],
        },
    )
    store.insert(CANDIDATES, {"id": "cand-1", "firstName": "Ada", "status": "new"})
    yield store
    # main() installs a stdout handler; drop it so later tests start clean.
    logging.getLogger().handlers.clear()


def test_parser_requires_a_command() -> None:
    with pytest.raises(SystemExit):
        build_parser().parse_args([])


def test_run_command_prints_execution(
    state: JsonRecordStore, capsys: pytest.CaptureFixture[str]
) -> None:
    code = main(["run", "--workflow", "wf-1", "--candidate", "cand-1", "--executed-by", "u1"])

    assert code == 0
    printed = json.loads(capsys.readouterr().out)
    assert printed["status"] == "completed"
    assert printed["executedBy"] == "u1"
    assert state.get(CANDIDATES, "cand-1")["status"] == "screening"


def test_run_command_reports_missing_records(
    state: JsonRecordStore, capsys: pytest.CaptureFixture[str]
) -> None:
    code = main(["run", "--workflow", "nope", "--candidate", "cand-1"])

    assert code == 3
    assert "Workflow not found: nope" in capsys.readouterr().err


def test_tag_added_command_waits_for_runs(
    state: JsonRecordStore, capsys: pytest.CaptureFixture[str]
) -> None:
    code = main(["tag-added", "--candidate", "cand-1", "--tag", "vip"])

    assert code == 0
    assert "Launched execution" in capsys.readouterr().out
    assert len(state.find(EXECUTIONS)) == 1
    assert state.get(CANDIDATES, "cand-1")["status"] == "screening"


def test_executions_command_lists_records(
    state: JsonRecordStore, capsys: pytest.CaptureFixture[str]
) -> None:
    main(["run", "--workflow", "wf-1", "--candidate", "cand-1"])
    capsys.readouterr()

    assert main(["executions", "--workflow", "wf-1"]) == 0
    listing = json.loads(capsys.readouterr().out)
    assert [e["workflowId"] for e in listing] == ["wf-1"]


def test_process_deferred_with_nothing_due(
    state: JsonRecordStore, capsys: pytest.CaptureFixture[str]
) -> None:
    assert main(["process-deferred"]) == 0
    assert "No deferred actions due" in capsys.readouterr().out


def test_configuration_error_exits_2(
    state: JsonRecordStore,
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
) -> None:
    monkeypatch.setenv("WORKFLOW_MAX_WORKERS", "not-a-number")

    assert main(["scan-stages"]) == 2
    assert "Configuration error" in capsys.readouterr().err


def test_sendgrid_without_api_key_exits_2(
    state: JsonRecordStore,
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
) -> None:
    monkeypatch.setenv("EMAIL_PROVIDER", "sendgrid")
    monkeypatch.delenv("SENDGRID_API_KEY", raising=False)

    assert main(["scan-stages"]) == 2
    assert "SENDGRID_API_KEY" in capsys.readouterr().err
