"""Trigger matching.

`matches` is a pure predicate over (workflow, candidate, event). Within a
trigger, every configured constraint must hold; an unconfigured constraint is
satisfied.
"""

from __future__ import annotations

import logging

from recruit_workflows.models import (
    Candidate,
    DaysInStageTrigger,
    NoActivityTrigger,
    ScoreThresholdTrigger,
    StatusChangedTrigger,
    StatusSpec,
    TagAddedTrigger,
    TagRemovedTrigger,
    Workflow,
)

from .events import EventContext

logger = logging.getLogger(__name__)


def _contains(allowed: StatusSpec, value: str) -> bool:
    if isinstance(allowed, list):
        return value in allowed
    return allowed == value


def _status_changed(trigger: StatusChangedTrigger, event: EventContext) -> bool:
    if not event.new_status:
        return False
    if trigger.to_status and not _contains(trigger.to_status, event.new_status):
        return False
    # An unknown previous status skips the fromStatus constraint.
    if trigger.from_status and event.old_status:
        if not _contains(trigger.from_status, event.old_status):
            return False
    return True


def _tag_changed(trigger: TagAddedTrigger | TagRemovedTrigger, event: EventContext) -> bool:
    if not event.tag:
        return False
    if trigger.tag and trigger.tag != event.tag:
        return False
    if trigger.tags and event.tag not in trigger.tags:
        return False
    return True


def _days_in_stage(trigger: DaysInStageTrigger, event: EventContext) -> bool:
    if event.days_in_stage is None:
        return False
    return event.days_in_stage >= trigger.days_in_stage


def _score_threshold(trigger: ScoreThresholdTrigger, event: EventContext) -> bool:
    if event.score is None:
        return False
    if trigger.min_score is not None and event.score < trigger.min_score:
        return False
    if trigger.max_score is not None and event.score > trigger.max_score:
        return False
    return True


def matches(workflow: Workflow, candidate: Candidate, event: EventContext) -> bool:
    """Return True if `workflow` should run for `candidate` on `event`."""

    _ = candidate
    if not workflow.is_active:
        return False

    trigger = workflow.trigger
    if trigger.type != event.type.value:
        return False

    if isinstance(trigger, StatusChangedTrigger):
        return _status_changed(trigger, event)
    if isinstance(trigger, TagAddedTrigger | TagRemovedTrigger):
        return _tag_changed(trigger, event)
    if isinstance(trigger, DaysInStageTrigger):
        return _days_in_stage(trigger, event)
    if isinstance(trigger, ScoreThresholdTrigger):
        return _score_threshold(trigger, event)
    if isinstance(trigger, NoActivityTrigger):
        logger.warning(
            "no_activity triggers are not evaluated yet; workflow will not run",
            extra={"workflow_id": workflow.id, "workflow_name": workflow.name},
        )
        return False

    raise TypeError(f"Unhandled trigger type: {type(trigger).__name__}")
