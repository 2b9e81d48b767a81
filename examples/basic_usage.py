#!/usr/bin/env python3
"""Programmatic workflow example.

This demonstrates using the engine components directly:

* load settings from `.env`
* store a workflow and a candidate in the JSON record store
* raise a status change and wait for the run
* print the execution record

Emails go to the mock provider unless `SENDGRID_API_KEY` is set.
"""

from __future__ import annotations

import argparse
import json
from typing import Sequence

from recruit_workflows.config import EngineSettings
from recruit_workflows.core.engine import WorkflowEngine
from recruit_workflows.logging import configure_logging
from recruit_workflows.store import CANDIDATES, EXECUTIONS, WORKFLOWS

INTERVIEW_WORKFLOW = {
    "id": "interview-follow-up",
    "name": "Interview follow-up",
    "trigger": {"type": "status_changed", "toStatus": "interview_scheduled"},
    "actions": [
        {
            "type": "send_email",
            "emailTo": "candidate",
            "emailSubject": "Your interview at {{companyName}}",
            "emailBody": "Hi {{firstName}},\n\nWe look forward to meeting you.",
        },
        {"type": "create_task", "taskTitle": "Prepare interview for {{fullName}}"},
        {"type": "add_tag", "tagName": "interviewing"},
    ],
}


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the interview follow-up workflow once.")
    parser.add_argument("--email", default="ada@example.com", help="Candidate email address")
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)

    settings = EngineSettings()
    configure_logging(settings.log_level)

    engine = WorkflowEngine(settings)
    try:
        if engine.store.get(WORKFLOWS, INTERVIEW_WORKFLOW["id"]) is None:
            engine.store.insert(WORKFLOWS, INTERVIEW_WORKFLOW)
        candidate = engine.store.insert(
            CANDIDATES,
            {
                "firstName": "Ada",
                "lastName": "Lovelace",
                "email": args.email,
                "status": "interview_scheduled",
            },
        )

        launched = engine.dispatcher.on_status_changed(
            candidate["id"], "contacted", "interview_scheduled"
        )
        engine.dispatcher.drain(timeout=30)
    finally:
        engine.close()

    for execution_id in launched:
        print(json.dumps(engine.store.get(EXECUTIONS, execution_id), indent=2))
    print(f"Persisted to: {settings.state_path}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
