"""Periodic sweep raising time-based events.

Status changes and tag edits arrive from the CRM as they happen; time spent in
a stage does not, so a scheduled job walks the candidates and raises
`days_in_stage` (and `no_activity`) events. Rate caps on the workflows keep
repeated sweeps from re-running them.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime

from recruit_workflows.models import TriggerType
from recruit_workflows.store import CANDIDATES, WORKFLOWS, RecordStore

from .dispatcher import EventDispatcher

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


def whole_days_since(value: object, now: datetime) -> int | None:
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        then = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if then.tzinfo is None:
        then = then.replace(tzinfo=UTC)
    days = (now - then).days
    return days if days >= 0 else None


class StageScanner:
    def __init__(
        self,
        *,
        store: RecordStore,
        dispatcher: EventDispatcher,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._store = store
        self._dispatcher = dispatcher
        self._clock = clock

    def _has_active(self, trigger_type: TriggerType) -> bool:
        return bool(
            self._store.find(WORKFLOWS, {"isActive": True, "trigger.type": trigger_type.value})
        )

    def scan(self, now: datetime | None = None) -> dict[str, list[str]]:
        """Raise time-based events for every candidate.

        Returns:
            Launched execution ids per candidate id (candidates with none omitted).
        """
        now = now or self._clock()
        stage_rules = self._has_active(TriggerType.DAYS_IN_STAGE)
        activity_rules = self._has_active(TriggerType.NO_ACTIVITY)
        if not stage_rules and not activity_rules:
            logger.info("No time-based workflows are active; nothing to scan")
            return {}

        launched: dict[str, list[str]] = {}
        candidates = self._store.find(CANDIDATES)
        for raw in candidates:
            candidate_id = raw.get("id")
            if not isinstance(candidate_id, str):
                continue
            ids: list[str] = []
            if stage_rules:
                days = whole_days_since(raw.get("stageEnteredAt"), now)
                if days is not None:
                    ids += self._dispatcher.on_days_in_stage(candidate_id, days)
            if activity_rules:
                idle = whole_days_since(raw.get("lastActivityAt"), now)
                if idle is not None:
                    ids += self._dispatcher.on_no_activity(candidate_id, idle)
            if ids:
                launched[candidate_id] = ids

        logger.info(
            "Stage scan finished",
            extra={"candidates": len(candidates), "launched": sum(map(len, launched.values()))},
        )
        return launched
