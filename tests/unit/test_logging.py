from __future__ import annotations

import json
import logging

from recruit_workflows.logging import JsonFormatter, RunContextFilter, run_context


def _record(msg: str) -> logging.LogRecord:
    return logging.LogRecord(
        name="recruit_workflows.test",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg=msg,
        args=(),
        exc_info=None,
    )


def test_correlation_ids_are_top_level_fields() -> None:
    record = _record("Workflow execution started")
    record.workflow_id = "wf-1"
    record.execution_id = "e-1"
    record.actions = 3

    payload = json.loads(JsonFormatter().format(record))

    assert payload["level"] == "INFO"
    assert payload["logger"] == "recruit_workflows.test"
    assert payload["message"] == "Workflow execution started"
    assert payload["workflow_id"] == "wf-1"
    assert payload["execution_id"] == "e-1"
    assert payload["extra"] == {"actions": 3}


def test_run_context_stamps_records_inside_the_block() -> None:
    context_filter = RunContextFilter()

    with run_context(execution_id="e-1", workflow_id="wf-1", candidate_id=None):
        with run_context(candidate_id="cand-1"):
            inner = _record("Email sent")
            context_filter.filter(inner)
        outer = _record("Webhook delivered")
        outer.execution_id = "explicit"
        context_filter.filter(outer)
    after = _record("Idle")
    context_filter.filter(after)

    assert (inner.execution_id, inner.workflow_id, inner.candidate_id) == ("e-1", "wf-1", "cand-1")
    assert outer.execution_id == "explicit"
    assert not hasattr(outer, "candidate_id")
    assert not hasattr(after, "execution_id")
