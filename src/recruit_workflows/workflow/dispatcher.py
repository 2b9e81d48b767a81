"""Entry points the CRM calls when something happens to a candidate.

The dispatcher never blocks the caller on workflow execution: admitted runs
are handed to a bounded worker pool and supervised there. A run that fails
outside its actions (missing records, persistence) is logged and written to
the dead-letter collection; it never propagates to the triggering request.

Runs for one candidate go through a per-candidate queue. The next run is
submitted only when the previous one has finished, so a slow candidate
occupies at most one worker while other candidates keep running.
"""

from __future__ import annotations

import logging
import threading
import uuid
from collections import Counter, deque
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import UTC, datetime

from pydantic import ValidationError

from recruit_workflows.errors import PersistenceError
from recruit_workflows.models import Candidate, DeadLetter, Workflow
from recruit_workflows.store import CANDIDATES, DEAD_LETTERS, WORKFLOWS, RecordStore

from .events import EventContext
from .gating import ExecutionGate
from .orchestrator import ExecutionOrchestrator
from .triggers import matches

logger = logging.getLogger(__name__)

Matcher = Callable[[Workflow, Candidate, EventContext], bool]


@dataclass(frozen=True, slots=True)
class _Run:
    workflow: Workflow
    candidate_id: str
    execution_id: str
    event: EventContext

    def log_extra(self) -> dict[str, str]:
        return {
            "workflow_id": self.workflow.id,
            "candidate_id": self.candidate_id,
            "execution_id": self.execution_id,
        }


class EventDispatcher:
    def __init__(
        self,
        *,
        store: RecordStore,
        orchestrator: ExecutionOrchestrator,
        gate: ExecutionGate,
        max_workers: int = 4,
        matcher: Matcher = matches,
    ) -> None:
        self._store = store
        self._orchestrator = orchestrator
        self._gate = gate
        self._matcher = matcher
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="workflow-run")
        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        # A candidate id is a key while one of its runs is submitted; the deque
        # holds the runs waiting behind it.
        self._queues: dict[str, deque[_Run]] = {}
        self._stats: Counter[str] = Counter()

    # --- host entry points ---------------------------------------------------

    def on_status_changed(
        self, candidate_id: str, old_status: str | None, new_status: str
    ) -> list[str]:
        return self.on_event(candidate_id, EventContext.status_changed(old_status, new_status))

    def on_tag_added(self, candidate_id: str, tag: str) -> list[str]:
        return self.on_event(candidate_id, EventContext.tag_added(tag))

    def on_tag_removed(self, candidate_id: str, tag: str) -> list[str]:
        return self.on_event(candidate_id, EventContext.tag_removed(tag))

    def on_days_in_stage(self, candidate_id: str, days_in_stage: int) -> list[str]:
        return self.on_event(candidate_id, EventContext.days_in_stage_reached(days_in_stage))

    def on_score_threshold(self, candidate_id: str, score: float) -> list[str]:
        return self.on_event(candidate_id, EventContext.score_recorded(score))

    def on_no_activity(self, candidate_id: str, days_inactive: int) -> list[str]:
        return self.on_event(candidate_id, EventContext.no_activity(days_inactive))

    def on_event(self, candidate_id: str, event: EventContext) -> list[str]:
        """Launch every matching, admitted workflow for the event.

        Never raises: load and admission problems are logged and the affected
        workflows are not launched.

        Returns:
            Execution ids of the launched runs. Runs continue in the background.
        """
        try:
            workflows = self.load_workflows(event)
        except (PersistenceError, OSError):
            logger.exception("Could not load workflows for event", extra={"event": event.to_json()})
            return []
        if not workflows:
            return []

        candidate = self._load_candidate(candidate_id, event)
        if candidate is None:
            return []

        logger.info(
            "Evaluating workflows for event",
            extra={"candidate_id": candidate_id, "event": event.to_json(), "count": len(workflows)},
        )

        launched: list[str] = []
        for workflow in workflows:
            execution_id = self._admit(workflow, candidate, event)
            if execution_id is None:
                continue
            run = _Run(workflow, candidate_id, execution_id, event)
            if self._launch(run):
                launched.append(execution_id)
        return launched

    def load_workflows(self, event: EventContext) -> list[Workflow]:
        """Active workflows for the event's trigger type, highest priority first."""

        workflows: list[Workflow] = []
        filters = {"isActive": True, "trigger.type": event.type.value}
        for raw in self._store.find(WORKFLOWS, filters):
            try:
                workflows.append(Workflow.model_validate(raw))
            except ValidationError as e:
                logger.warning(
                    "Skipping invalid workflow definition",
                    extra={"workflow_id": raw.get("id"), "errors": e.error_count()},
                )
        workflows.sort(key=lambda w: w.priority, reverse=True)
        return workflows

    def _load_candidate(self, candidate_id: str, event: EventContext) -> Candidate | None:
        extra = {"candidate_id": candidate_id, "event": event.to_json()}
        try:
            raw = self._store.get(CANDIDATES, candidate_id)
        except (PersistenceError, OSError) as e:
            logger.error(
                "Could not read candidate for workflow event", extra={**extra, "error": str(e)}
            )
            return None
        if raw is None:
            logger.error("Candidate not found for workflow event", extra=extra)
            return None
        try:
            return Candidate.model_validate(raw)
        except ValidationError as e:
            logger.error(
                "Candidate record is invalid; no workflows launched",
                extra={**extra, "errors": e.error_count()},
            )
            return None

    def _admit(self, workflow: Workflow, candidate: Candidate, event: EventContext) -> str | None:
        try:
            if not self._matcher(workflow, candidate, event):
                return None
            decision = self._gate.try_admit(workflow, candidate.id)
        except Exception:
            logger.exception(
                "Could not evaluate workflow for event",
                extra={"workflow_id": workflow.id, "candidate_id": candidate.id},
            )
            self._bump("errored")
            return None
        if not decision.admitted or decision.execution_id is None:
            self._bump("suppressed")
            return None
        return decision.execution_id

    # --- per-candidate queueing ----------------------------------------------

    def _launch(self, run: _Run) -> bool:
        """Submit the run, or queue it behind the candidate's current run."""

        logger.info(
            "Launching workflow",
            extra={**run.log_extra(), "workflow_name": run.workflow.name},
        )
        with self._lock:
            queue = self._queues.get(run.candidate_id)
            if queue is not None:
                queue.append(run)
                self._stats["launched"] += 1
                return True
            if not self._submit_locked(run):
                return False
            self._queues[run.candidate_id] = deque()
            self._stats["launched"] += 1
            return True

    def _submit_locked(self, run: _Run) -> bool:
        try:
            self._pool.submit(self._supervise, run)
        except RuntimeError:
            # The pool has been shut down.
            self._gate.release(run.execution_id)
            self._stats["rejected"] += 1
            logger.warning("Workflow run rejected: dispatcher is shut down", extra=run.log_extra())
            return False
        return True

    def _advance(self, candidate_id: str) -> None:
        """Submit the candidate's next queued run, if any."""

        with self._lock:
            queue = self._queues.get(candidate_id)
            while queue:
                if self._submit_locked(queue.popleft()):
                    return
            self._queues.pop(candidate_id, None)
            if not self._queues:
                self._idle.notify_all()

    # --- supervision ---------------------------------------------------------

    def _supervise(self, run: _Run) -> None:
        try:
            execution = self._orchestrator.run(
                run.workflow.id,
                run.candidate_id,
                executed_by="system",
                execution_id=run.execution_id,
            )
            self._bump(execution.status.value)
        except Exception as e:
            self._bump("errored")
            logger.exception("Workflow run failed", extra=run.log_extra())
            self._dead_letter(run, e)
        finally:
            self._gate.release(run.execution_id)
            self._advance(run.candidate_id)

    def _dead_letter(self, run: _Run, error: Exception) -> None:
        letter = DeadLetter(
            id=uuid.uuid4().hex,
            workflow_id=run.workflow.id,
            candidate_id=run.candidate_id,
            execution_id=run.execution_id,
            error=str(error),
            error_type=type(error).__name__,
            failed_at=datetime.now(tz=UTC).isoformat(),
            event=run.event.to_json(),
        )
        try:
            self._store.insert(DEAD_LETTERS, letter.to_json())
        except Exception:
            logger.exception("Could not write dead letter", extra=run.log_extra())

    def _bump(self, key: str) -> None:
        with self._lock:
            self._stats[key] += 1

    # --- lifecycle -----------------------------------------------------------

    def drain(self, timeout: float | None = None) -> bool:
        """Wait for running and queued runs. Returns False if some are left."""

        with self._idle:
            return self._idle.wait_for(lambda: not self._queues, timeout=timeout)

    def shutdown(self, wait: bool = True) -> None:
        self._pool.shutdown(wait=wait)

    def stats(self) -> dict[str, int]:
        with self._lock:
            stats = dict(self._stats)
            stats["active"] = len(self._queues)
            stats["queued"] = sum(len(q) for q in self._queues.values())
        return stats
