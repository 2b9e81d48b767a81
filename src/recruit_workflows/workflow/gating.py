"""Execution admission: schedule windows and rate caps.

Admission and launch are one atomic step. The gate hands out a pre-allocated
execution id under its lock and keeps it as a reservation until the run is
over. Caps are checked against the union, by id, of stored executions and
live reservations, so a run is never counted twice and two concurrent
triggers cannot both squeeze under the same cap.
"""

from __future__ import annotations

import logging
import threading
import uuid
from collections import Counter
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, date, datetime, tzinfo

from recruit_workflows.models import Schedule, Workflow
from recruit_workflows.store import EXECUTIONS, RecordStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class GateDecision:
    admitted: bool
    execution_id: str | None = None
    reason: str | None = None


@dataclass(frozen=True, slots=True)
class _Reservation:
    workflow_id: str
    candidate_id: str
    local_day: date


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


def day_of_week(moment: datetime) -> int:
    """0 = Sunday .. 6 = Saturday."""

    return (moment.weekday() + 1) % 7


def schedule_block_reason(schedule: Schedule | None, local_now: datetime) -> str | None:
    """Return why the schedule forbids firing at `local_now`, or None if allowed."""

    if schedule is None:
        return None
    if not schedule.enabled:
        return "schedule disabled"
    if schedule.days_of_week and day_of_week(local_now) not in schedule.days_of_week:
        return "outside scheduled days"
    if schedule.hours and local_now.hour not in schedule.hours:
        return "outside scheduled hours"
    return None


def _local_day(iso_timestamp: object, tz: tzinfo) -> date | None:
    if not isinstance(iso_timestamp, str):
        return None
    try:
        parsed = datetime.fromisoformat(iso_timestamp.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(tz).date()


class ExecutionGate:
    def __init__(
        self,
        *,
        store: RecordStore,
        timezone: tzinfo = UTC,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._store = store
        self._tz = timezone
        self._clock = clock
        self._lock = threading.Lock()
        self._reservations: dict[str, _Reservation] = {}
        self.suppressed: Counter[str] = Counter()

    def try_admit(self, workflow: Workflow, candidate_id: str) -> GateDecision:
        local_now = self._clock().astimezone(self._tz)

        reason = schedule_block_reason(workflow.schedule, local_now)
        if reason is None:
            with self._lock:
                reason = self._cap_block_reason(workflow, candidate_id, local_now.date())
                if reason is None:
                    execution_id = uuid.uuid4().hex
                    self._reservations[execution_id] = _Reservation(
                        workflow_id=workflow.id,
                        candidate_id=candidate_id,
                        local_day=local_now.date(),
                    )
                    return GateDecision(admitted=True, execution_id=execution_id)

        with self._lock:
            self.suppressed[reason] += 1
        logger.info(
            "Workflow run suppressed",
            extra={"workflow_id": workflow.id, "candidate_id": candidate_id, "reason": reason},
        )
        return GateDecision(admitted=False, reason=reason)

    def release(self, execution_id: str) -> None:
        """Drop a reservation once its run is over (its record, if any, is stored)."""

        with self._lock:
            self._reservations.pop(execution_id, None)

    @property
    def in_flight(self) -> int:
        with self._lock:
            return len(self._reservations)

    def _cap_block_reason(self, workflow: Workflow, candidate_id: str, today: date) -> str | None:
        per_day = workflow.max_executions_per_day
        per_candidate = workflow.max_executions_per_candidate
        if per_day is None and per_candidate is None:
            return None

        today_ids: set[str] = set()
        candidate_ids: set[str] = set()
        for record in self._store.find(EXECUTIONS, {"workflowId": workflow.id}):
            record_id = str(record.get("id"))
            if _local_day(record.get("startedAt"), self._tz) == today:
                today_ids.add(record_id)
            if record.get("candidateId") == candidate_id:
                candidate_ids.add(record_id)
        for record_id, reservation in self._reservations.items():
            if reservation.workflow_id != workflow.id:
                continue
            if reservation.local_day == today:
                today_ids.add(record_id)
            if reservation.candidate_id == candidate_id:
                candidate_ids.add(record_id)

        if per_day is not None and len(today_ids) >= per_day:
            return f"daily limit reached ({per_day})"
        if per_candidate is not None and len(candidate_ids) >= per_candidate:
            return f"per-candidate limit reached ({per_candidate})"
        return None
