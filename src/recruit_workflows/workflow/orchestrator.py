"""Runs one workflow against one candidate and records the audit trail.

State machine per run: running -> completed | failed. The `running` record is
written before the first action so a crash mid-run still leaves a trace; the
record is closed exactly once and never written again.
"""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import TypeVar

from pydantic import ValidationError

from recruit_workflows.errors import ActionExecutionError, LoadError, PersistenceError
from recruit_workflows.logging import run_context
from recruit_workflows.models import (
    Action,
    ActionResult,
    Candidate,
    DeferredAction,
    ExecutionStatus,
    Workflow,
    WorkflowExecution,
)
from recruit_workflows.store import (
    CANDIDATES,
    DEFERRED_ACTIONS,
    EXECUTIONS,
    WORKFLOWS,
    RecordStore,
)

from .actions import ActionExecutor
from .locks import CandidateLocks

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


def persist_with_retry(what: str, write: Callable[[], T], attempts: int, delay: float) -> T:
    """Run a store write with bounded retries and linear backoff.

    Only the write is repeated; actions that already ran are never re-run.
    """
    attempts = max(1, attempts)
    last: Exception | None = None
    for attempt in range(1, attempts + 1):
        try:
            return write()
        except (PersistenceError, OSError) as e:
            last = e
            logger.warning(
                "Persistence attempt failed",
                extra={"operation": what, "attempt": attempt, "error": str(e)},
            )
            if attempt < attempts and delay:
                time.sleep(delay * attempt)
    raise PersistenceError(f"Could not {what} after {attempts} attempts: {last}")


def load_workflow(store: RecordStore, workflow_id: str) -> Workflow:
    raw = store.get(WORKFLOWS, workflow_id)
    if raw is None:
        raise LoadError("workflow", workflow_id)
    try:
        return Workflow.model_validate(raw)
    except ValidationError as e:
        detail = f"is invalid ({e.error_count()} errors)"
        raise LoadError("workflow", workflow_id, detail=detail) from e


def load_candidate(store: RecordStore, candidate_id: str) -> Candidate:
    raw = store.get(CANDIDATES, candidate_id)
    if raw is None:
        raise LoadError("candidate", candidate_id)
    try:
        return Candidate.model_validate(raw)
    except ValidationError as e:
        detail = f"is invalid ({e.error_count()} errors)"
        raise LoadError("candidate", candidate_id, detail=detail) from e


class ExecutionOrchestrator:
    def __init__(
        self,
        *,
        store: RecordStore,
        executor: ActionExecutor,
        locks: CandidateLocks | None = None,
        retry_attempts: int = 3,
        retry_delay_seconds: float = 0.2,
        defer_delayed_actions: bool = False,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._store = store
        self._executor = executor
        self.locks = locks or CandidateLocks()
        self._retry_attempts = max(1, retry_attempts)
        self._retry_delay = retry_delay_seconds
        self._defer_delayed_actions = defer_delayed_actions
        self._clock = clock

    def run(
        self,
        workflow_id: str,
        candidate_id: str,
        executed_by: str = "system",
        execution_id: str | None = None,
    ) -> WorkflowExecution:
        """Execute every action of the workflow in declared order.

        Args:
            workflow_id: Workflow to run.
            candidate_id: Candidate the actions apply to.
            executed_by: "system" or the id of the user who started the run.
            execution_id: Pre-allocated id (the dispatcher reserves one when it
                admits a run); a new id is generated otherwise.

        Returns:
            The closed execution record.

        Raises:
            LoadError: The workflow or candidate does not exist. No execution
                record is written in that case.
            PersistenceError: The record could not be written after retries.
        """
        workflow = load_workflow(self._store, workflow_id)
        execution_id = execution_id or uuid.uuid4().hex

        with (
            self.locks.hold(candidate_id),
            run_context(
                execution_id=execution_id, workflow_id=workflow.id, candidate_id=candidate_id
            ),
        ):
            candidate = load_candidate(self._store, candidate_id)
            execution = WorkflowExecution(
                id=execution_id,
                workflow_id=workflow.id,
                workflow_name=workflow.name,
                candidate_id=candidate.id,
                candidate_name=candidate.full_name,
                trigger=workflow.trigger,
                actions=workflow.actions,
                status=ExecutionStatus.RUNNING,
                started_at=self._clock().isoformat(),
                executed_by=executed_by,
                test_mode=workflow.test_mode,
            )
            record = execution.to_json()
            self._persist("create execution record", lambda: self._store.insert(EXECUTIONS, record))

            log_ctx = {
                "execution_id": execution.id,
                "workflow_id": workflow.id,
                "candidate_id": candidate.id,
            }
            logger.info(
                "Workflow execution started",
                extra={**log_ctx, "workflow_name": workflow.name, "actions": len(workflow.actions)},
            )

            results: list[ActionResult] = []
            try:
                for index, action in enumerate(workflow.actions):
                    results.append(
                        self._run_action(index, action, workflow, execution.id, candidate.id)
                    )
            except Exception as e:
                # The record is still closed; the remaining actions are not run.
                index = len(results)
                logger.exception("Workflow run aborted", extra={**log_ctx, "action_index": index})
                results.append(
                    ActionResult(
                        action_index=index,
                        action_type=workflow.actions[index].type,
                        status="failed",
                        error=f"Run aborted: {e}",
                    )
                )
            return self._close(workflow, execution, results, log_ctx)

    def _run_action(
        self,
        index: int,
        action: Action,
        workflow: Workflow,
        execution_id: str,
        candidate_id: str,
    ) -> ActionResult:
        base = {"action_index": index, "action_type": action.type}

        if workflow.test_mode:
            return ActionResult(**base, status="skipped", message="Test mode: action not executed")

        if action.delay_minutes and action.delay_minutes > 0:
            return self._defer(index, action, workflow, execution_id, candidate_id)

        try:
            # Re-read so this action sees the mutations of the previous ones.
            raw = self._store.get(CANDIDATES, candidate_id)
            if raw is None:
                raise ActionExecutionError(f"Candidate not found: {candidate_id}")
            candidate = Candidate.model_validate(raw)
            outcome = self._executor.execute(action, candidate, workflow)
        except (ActionExecutionError, ValidationError, PersistenceError, OSError) as e:
            logger.warning(
                "Workflow action failed",
                extra={"execution_id": execution_id, "action_index": index, "error": str(e)},
            )
            return ActionResult(**base, status="failed", error=str(e))

        logger.info(
            "Workflow action succeeded",
            extra={"execution_id": execution_id, "action_index": index, "result": outcome.message},
        )
        return ActionResult(
            **base, status="success", message=outcome.message, metadata=outcome.metadata
        )

    def _defer(
        self,
        index: int,
        action: Action,
        workflow: Workflow,
        execution_id: str,
        candidate_id: str,
    ) -> ActionResult:
        base = {"action_index": index, "action_type": action.type}
        message = f"Action scheduled for {action.delay_minutes} minutes later"
        if not self._defer_delayed_actions:
            return ActionResult(**base, status="skipped", message=message)

        due_at = self._clock() + timedelta(minutes=action.delay_minutes or 0)
        deferred = DeferredAction(
            id=f"{execution_id}:{index}",
            execution_id=execution_id,
            workflow_id=workflow.id,
            candidate_id=candidate_id,
            action_index=index,
            action=action,
            due_at=due_at.isoformat(),
        )
        record = deferred.to_json()
        try:
            self._persist(
                "queue deferred action", lambda: self._store.insert(DEFERRED_ACTIONS, record)
            )
        except PersistenceError as e:
            return ActionResult(**base, status="failed", error=f"Failed to schedule action: {e}")
        return ActionResult(
            **base,
            status="skipped",
            message=message,
            metadata={"deferredActionId": deferred.id, "dueAt": deferred.due_at},
        )

    def _close(
        self,
        workflow: Workflow,
        execution: WorkflowExecution,
        results: list[ActionResult],
        log_ctx: dict[str, str],
    ) -> WorkflowExecution:
        failed = any(r.status == "failed" for r in results)
        status = ExecutionStatus.FAILED if failed else ExecutionStatus.COMPLETED
        completed_at = self._clock().isoformat()
        closed = execution.model_copy(
            update={"status": status, "completed_at": completed_at, "results": results}
        )

        payload = closed.to_json()
        self._persist(
            "close execution record",
            lambda: self._store.update(
                EXECUTIONS,
                closed.id,
                set_fields={
                    "status": payload["status"],
                    "completedAt": payload["completedAt"],
                    "results": payload["results"],
                },
            ),
        )
        self._persist(
            "update workflow counters",
            lambda: self._store.update(
                WORKFLOWS,
                workflow.id,
                increment={
                    "executionCount": 1,
                    "successCount": 0 if failed else 1,
                    "failureCount": 1 if failed else 0,
                },
                set_fields={"lastExecutedAt": completed_at},
            ),
        )

        logger.info(
            "Workflow execution finished",
            extra={
                **log_ctx,
                "status": status.value,
                "failed_actions": sum(1 for r in results if r.status == "failed"),
            },
        )
        return closed

    def _persist(self, what: str, write: Callable[[], T]) -> T:
        return persist_with_retry(what, write, self._retry_attempts, self._retry_delay)
