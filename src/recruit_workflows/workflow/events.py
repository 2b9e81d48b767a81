from __future__ import annotations

from dataclasses import asdict, dataclass

from recruit_workflows.models import TriggerType


@dataclass(frozen=True, slots=True)
class EventContext:
    """A domain event raised by the CRM for one candidate.

    Only the fields relevant to `type` are set. Events never perform work;
    they are matched against workflow triggers.
    """

    type: TriggerType
    old_status: str | None = None
    new_status: str | None = None
    tag: str | None = None
    days_in_stage: int | None = None
    score: float | None = None
    days_inactive: int | None = None

    def to_json(self) -> dict[str, object]:
        out: dict[str, object] = {"type": self.type.value}
        for key, value in asdict(self).items():
            if key != "type" and value is not None:
                out[key] = value
        return out

    @staticmethod
    def status_changed(old_status: str | None, new_status: str) -> EventContext:
        return EventContext(
            type=TriggerType.STATUS_CHANGED, old_status=old_status, new_status=new_status
        )

    @staticmethod
    def tag_added(tag: str) -> EventContext:
        return EventContext(type=TriggerType.TAG_ADDED, tag=tag)

    @staticmethod
    def tag_removed(tag: str) -> EventContext:
        return EventContext(type=TriggerType.TAG_REMOVED, tag=tag)

    @staticmethod
    def days_in_stage_reached(days_in_stage: int) -> EventContext:
        return EventContext(type=TriggerType.DAYS_IN_STAGE, days_in_stage=days_in_stage)

    @staticmethod
    def score_recorded(score: float) -> EventContext:
        return EventContext(type=TriggerType.SCORE_THRESHOLD, score=score)

    @staticmethod
    def no_activity(days_inactive: int) -> EventContext:
        return EventContext(type=TriggerType.NO_ACTIVITY, days_inactive=days_inactive)
