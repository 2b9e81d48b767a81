"""Runner for actions queued with `delayMinutes`.

The execution that queued an action is already closed and stays untouched;
the outcome of a deferred action is recorded on its `deferred_actions` entry.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from datetime import UTC, datetime

from pydantic import ValidationError

from recruit_workflows.errors import ActionExecutionError, LoadError, PersistenceError
from recruit_workflows.logging import run_context
from recruit_workflows.models import DeferredAction
from recruit_workflows.store import DEFERRED_ACTIONS, RecordStore

from .actions import ActionExecutor
from .locks import CandidateLocks
from .orchestrator import load_candidate, load_workflow, persist_with_retry

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


def _parse(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


class DeferredActionRunner:
    def __init__(
        self,
        *,
        store: RecordStore,
        executor: ActionExecutor,
        locks: CandidateLocks,
        retry_attempts: int = 3,
        retry_delay_seconds: float = 0.2,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._store = store
        self._executor = executor
        self._locks = locks
        self._retry_attempts = retry_attempts
        self._retry_delay = retry_delay_seconds
        self._clock = clock
        self._lock = threading.Lock()

    def pending(self) -> list[DeferredAction]:
        out: list[DeferredAction] = []
        for raw in self._store.find(DEFERRED_ACTIONS, {"status": "pending"}):
            try:
                out.append(DeferredAction.model_validate(raw))
            except ValidationError:
                logger.warning("Skipping invalid deferred action", extra={"id": raw.get("id")})
        return sorted(out, key=lambda d: d.due_at)

    def run_due(self, now: datetime | None = None) -> list[DeferredAction]:
        """Execute every pending action whose due time has passed.

        The outcome write is retried; an action whose outcome cannot be stored
        stays pending and is logged, and the rest of the batch still runs.
        """

        now = now or self._clock()
        processed: list[DeferredAction] = []
        with self._lock:
            for deferred in self.pending():
                if _parse(deferred.due_at) > now:
                    continue
                try:
                    with run_context(
                        execution_id=deferred.execution_id,
                        workflow_id=deferred.workflow_id,
                        candidate_id=deferred.candidate_id,
                    ):
                        processed.append(self._run_one(deferred))
                except (PersistenceError, OSError):
                    # Left pending; the rest of the batch still runs.
                    logger.exception(
                        "Deferred action could not be processed",
                        extra={"id": deferred.id, "execution_id": deferred.execution_id},
                    )
        return processed

    def _run_one(self, deferred: DeferredAction) -> DeferredAction:
        status, message, error = "success", None, None
        try:
            workflow = load_workflow(self._store, deferred.workflow_id)
            with self._locks.hold(deferred.candidate_id):
                candidate = load_candidate(self._store, deferred.candidate_id)
                message = self._executor.execute(deferred.action, candidate, workflow).message
        except (ActionExecutionError, LoadError) as e:
            status, error = "failed", str(e)

        updated = deferred.model_copy(
            update={
                "status": status,
                "message": message,
                "error": error,
                "processed_at": self._clock().isoformat(),
            }
        )
        payload = updated.to_json()
        fields = {k: payload[k] for k in ("status", "message", "error", "processedAt")}
        persist_with_retry(
            "record deferred action outcome",
            lambda: self._store.update(DEFERRED_ACTIONS, deferred.id, set_fields=fields),
            self._retry_attempts,
            self._retry_delay,
        )
        logger.info(
            "Deferred action processed",
            extra={"id": deferred.id, "execution_id": deferred.execution_id, "status": status},
        )
        return updated
