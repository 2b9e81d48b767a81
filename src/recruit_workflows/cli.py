"""CLI entrypoint for operating the workflow engine against a state directory.

Event commands launch runs in the background pool and wait for them before
exiting, so a scheduler (cron, systemd timers) can call `scan-stages` and
`process-deferred` periodically.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys

from pydantic import ValidationError

from recruit_workflows import __version__
from recruit_workflows.config import EngineSettings
from recruit_workflows.core.engine import WorkflowEngine
from recruit_workflows.errors import ConfigurationError, LoadError
from recruit_workflows.logging import configure_logging
from recruit_workflows.store import EXECUTIONS

logger = logging.getLogger(__name__)


def _add_candidate(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--candidate", dest="candidate_id", required=True, help="Candidate id")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="recruit-workflows",
        description="Workflow automation engine for recruitment CRM candidates",
    )
    parser.add_argument(
        "--version", action="version", version=f"recruit-workflow-engine {__version__}"
    )
    parser.add_argument(
        "--drain-timeout",
        type=float,
        default=60.0,
        help="Seconds to wait for launched runs before exiting (0 means no limit)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    run = subparsers.add_parser("run", help="Run one workflow for one candidate now")
    run.add_argument("--workflow", dest="workflow_id", required=True, help="Workflow id")
    _add_candidate(run)
    run.add_argument("--executed-by", default="system", help="User id recorded on the run")

    status_changed = subparsers.add_parser(
        "status-changed", help="Raise a status change event for a candidate"
    )
    _add_candidate(status_changed)
    status_changed.add_argument("--from", dest="old_status", default=None, help="Previous status")
    status_changed.add_argument("--to", dest="new_status", required=True, help="New status")

    for name, help_text in (
        ("tag-added", "Raise a tag added event"),
        ("tag-removed", "Raise a tag removed event"),
    ):
        tag_cmd = subparsers.add_parser(name, help=help_text)
        _add_candidate(tag_cmd)
        tag_cmd.add_argument("--tag", required=True, help="Tag name")

    score = subparsers.add_parser("score", help="Raise a score event for a candidate")
    _add_candidate(score)
    score.add_argument("--score", type=float, required=True, help="New candidate score")

    subparsers.add_parser(
        "scan-stages", help="Raise days-in-stage events for every candidate"
    )
    subparsers.add_parser(
        "process-deferred", help="Execute queued delayed actions that are due"
    )

    executions = subparsers.add_parser("executions", help="List recorded executions as JSON")
    executions.add_argument("--workflow", dest="workflow_id", default=None)
    executions.add_argument("--candidate", dest="candidate_id", default=None)
    executions.add_argument("--limit", type=int, default=20)

    return parser


def _drain(engine: WorkflowEngine, timeout: float) -> bool:
    finished = engine.dispatcher.drain(timeout=timeout or None)
    if not finished:
        logger.warning("Some workflow runs are still in flight", extra={"timeout": timeout})
    return finished


def _print_launched(launched: list[str]) -> None:
    if not launched:
        print("No workflows launched")
        return
    for execution_id in launched:
        print(f"Launched execution {execution_id}")


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = EngineSettings()
    except ValidationError as e:
        print("Configuration error (check your .env):", file=sys.stderr)
        print(e, file=sys.stderr)
        return 2

    configure_logging(settings.log_level)

    try:
        engine = WorkflowEngine(settings)
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    try:
        if args.command == "run":
            execution = engine.orchestrator.run(
                args.workflow_id, args.candidate_id, executed_by=args.executed_by
            )
            print(json.dumps(execution.to_json(), indent=2))
            return 0 if execution.status.value == "completed" else 1

        if args.command in ("status-changed", "tag-added", "tag-removed", "score"):
            dispatcher = engine.dispatcher
            if args.command == "status-changed":
                launched = dispatcher.on_status_changed(
                    args.candidate_id, args.old_status, args.new_status
                )
            elif args.command == "tag-added":
                launched = dispatcher.on_tag_added(args.candidate_id, args.tag)
            elif args.command == "tag-removed":
                launched = dispatcher.on_tag_removed(args.candidate_id, args.tag)
            else:
                launched = dispatcher.on_score_threshold(args.candidate_id, args.score)
            _print_launched(launched)
            return 0 if _drain(engine, args.drain_timeout) else 1

        if args.command == "scan-stages":
            by_candidate = engine.scanner.scan()
            _print_launched([i for ids in by_candidate.values() for i in ids])
            return 0 if _drain(engine, args.drain_timeout) else 1

        if args.command == "process-deferred":
            processed = engine.deferred.run_due()
            for deferred in processed:
                print(f"{deferred.id}: {deferred.status}")
            if not processed:
                print("No deferred actions due")
            return 0

        if args.command == "executions":
            filters: dict[str, object] = {}
            if args.workflow_id:
                filters["workflowId"] = args.workflow_id
            if args.candidate_id:
                filters["candidateId"] = args.candidate_id
            records = engine.store.find(EXECUTIONS, filters)
            records.sort(key=lambda r: str(r.get("startedAt") or ""), reverse=True)
            print(json.dumps(records[: args.limit], indent=2))
            return 0

        logger.error("Unknown command", extra={"command": args.command})
        return 2

    except LoadError as e:
        logger.warning(str(e), extra={"kind": e.kind, "record_id": e.record_id})
        print(str(e), file=sys.stderr)
        return 3

    except Exception:
        logger.exception("Command failed")
        return 1

    finally:
        engine.close()


if __name__ == "__main__":
    raise SystemExit(main())
