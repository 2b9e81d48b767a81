"""Persisted record models for the workflow automation engine.

Records are stored with the camelCase field names used by the CRM documents
(`isActive`, `toStatus`, `workflowId`, ...). Python code uses snake_case
attributes; every model accepts either spelling on input.

Triggers and actions are tagged unions keyed by `type`, so each variant only
carries the configuration that applies to it.
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class _Record(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class TriggerType(str, Enum):
    STATUS_CHANGED = "status_changed"
    TAG_ADDED = "tag_added"
    TAG_REMOVED = "tag_removed"
    DAYS_IN_STAGE = "days_in_stage"
    NO_ACTIVITY = "no_activity"
    SCORE_THRESHOLD = "score_threshold"


class ActionType(str, Enum):
    SEND_EMAIL = "send_email"
    ADD_TAG = "add_tag"
    REMOVE_TAG = "remove_tag"
    CHANGE_STATUS = "change_status"
    ADD_NOTE = "add_note"
    CREATE_TASK = "create_task"
    ASSIGN_USER = "assign_user"
    SEND_NOTIFICATION = "send_notification"
    WEBHOOK = "webhook"


class ExecutionStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


ResultStatus = Literal["success", "failed", "skipped"]

# A status constraint may be configured as a single status or a list of them.
StatusSpec = str | list[str]


# --- Triggers -----------------------------------------------------------------


class StatusChangedTrigger(_Record):
    type: Literal["status_changed"] = "status_changed"
    to_status: StatusSpec | None = None
    from_status: StatusSpec | None = None


class TagAddedTrigger(_Record):
    type: Literal["tag_added"] = "tag_added"
    tag: str | None = None
    tags: list[str] | None = None


class TagRemovedTrigger(_Record):
    type: Literal["tag_removed"] = "tag_removed"
    tag: str | None = None
    tags: list[str] | None = None


class DaysInStageTrigger(_Record):
    type: Literal["days_in_stage"] = "days_in_stage"
    days_in_stage: int = Field(ge=0)


class NoActivityTrigger(_Record):
    type: Literal["no_activity"] = "no_activity"
    days_elapsed: int | None = Field(default=None, ge=0)


class ScoreThresholdTrigger(_Record):
    type: Literal["score_threshold"] = "score_threshold"
    min_score: float | None = None
    max_score: float | None = None


TriggerCondition = Annotated[
    StatusChangedTrigger
    | TagAddedTrigger
    | TagRemovedTrigger
    | DaysInStageTrigger
    | NoActivityTrigger
    | ScoreThresholdTrigger,
    Field(discriminator="type"),
]


# --- Actions ------------------------------------------------------------------


class _ActionBase(_Record):
    delay_minutes: int | None = None


class SendEmailAction(_ActionBase):
    type: Literal["send_email"] = "send_email"
    email_to: Literal["candidate", "assigned_user", "custom"] = "candidate"
    email_custom_recipient: str | None = None
    email_subject: str | None = None
    email_body: str | None = None
    email_template_id: str | None = None


class AddTagAction(_ActionBase):
    type: Literal["add_tag"] = "add_tag"
    tag_name: str | None = None
    tag_names: list[str] | None = None


class RemoveTagAction(_ActionBase):
    type: Literal["remove_tag"] = "remove_tag"
    tag_name: str | None = None
    tag_names: list[str] | None = None


class ChangeStatusAction(_ActionBase):
    type: Literal["change_status"] = "change_status"
    new_status: str | None = None


class AddNoteAction(_ActionBase):
    type: Literal["add_note"] = "add_note"
    note_content: str | None = None
    note_is_private: bool = False


class CreateTaskAction(_ActionBase):
    type: Literal["create_task"] = "create_task"
    task_title: str | None = None
    task_description: str | None = None
    task_due_in_days: int | None = None
    task_assign_to: str | None = None
    task_priority: Literal["low", "medium", "high", "urgent"] = "medium"


class AssignUserAction(_ActionBase):
    type: Literal["assign_user"] = "assign_user"
    assign_to_user_id: str | None = None


class SendNotificationAction(_ActionBase):
    type: Literal["send_notification"] = "send_notification"
    notification_message: str | None = None
    notify_users: list[str] | None = None


class WebhookAction(_ActionBase):
    type: Literal["webhook"] = "webhook"
    webhook_url: str | None = None
    webhook_method: str = "POST"
    webhook_payload: dict[str, Any] | None = None
    webhook_headers: dict[str, str] | None = None


Action = Annotated[
    SendEmailAction
    | AddTagAction
    | RemoveTagAction
    | ChangeStatusAction
    | AddNoteAction
    | CreateTaskAction
    | AssignUserAction
    | SendNotificationAction
    | WebhookAction,
    Field(discriminator="type"),
]


# --- Workflows ----------------------------------------------------------------


class Schedule(_Record):
    """Firing window. Empty day/hour sets leave that dimension unrestricted."""

    enabled: bool = True
    days_of_week: set[int] = Field(default_factory=set)
    hours: set[int] = Field(default_factory=set)

    @field_validator("days_of_week")
    @classmethod
    def _check_days(cls, value: set[int]) -> set[int]:
        bad = sorted(d for d in value if not 0 <= d <= 6)
        if bad:
            raise ValueError(f"daysOfWeek entries must be within 0..6, got {bad}")
        return value

    @field_validator("hours")
    @classmethod
    def _check_hours(cls, value: set[int]) -> set[int]:
        bad = sorted(h for h in value if not 0 <= h <= 23)
        if bad:
            raise ValueError(f"hours entries must be within 0..23, got {bad}")
        return value


class Workflow(_Record):
    id: str
    name: str
    description: str = ""
    is_active: bool = True
    priority: int = 0
    test_mode: bool = False

    trigger: TriggerCondition
    actions: list[Action] = Field(min_length=1)

    schedule: Schedule | None = None
    max_executions_per_day: int | None = None
    max_executions_per_candidate: int | None = None

    execution_count: int = 0
    success_count: int = 0
    failure_count: int = 0
    last_executed_at: str | None = None

    @field_validator("max_executions_per_day", "max_executions_per_candidate")
    @classmethod
    def _zero_means_unlimited(cls, value: int | None) -> int | None:
        # The authoring form stores 0 for "no limit".
        if value is not None and value <= 0:
            return None
        return value


# --- Execution audit trail ----------------------------------------------------


class ActionResult(_Record):
    action_index: int
    action_type: str
    status: ResultStatus
    message: str | None = None
    error: str | None = None
    metadata: dict[str, Any] | None = None


class WorkflowExecution(_Record):
    id: str
    workflow_id: str
    workflow_name: str
    candidate_id: str
    candidate_name: str

    trigger: TriggerCondition
    actions: list[Action]

    status: ExecutionStatus = ExecutionStatus.RUNNING
    started_at: str
    completed_at: str | None = None
    executed_by: str = "system"
    test_mode: bool = False

    results: list[ActionResult] = Field(default_factory=list)
    error: str | None = None


# --- CRM records read and written by actions ----------------------------------


class Candidate(_Record):
    """The subset of the candidate document the engine reads.

    Unknown fields are kept so a candidate can be round-tripped untouched.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )

    id: str
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    status: str | None = None
    tags: list[str] = Field(default_factory=list)
    notes: list[dict[str, Any]] = Field(default_factory=list)
    activities: list[dict[str, Any]] = Field(default_factory=list)
    assigned_to: str | None = None
    applied_position: str | None = None
    current_position: str | None = None
    stage_entered_at: str | None = None
    last_activity_at: str | None = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class Task(_Record):
    id: str
    candidate_id: str
    candidate_name: str
    workflow_id: str | None = None
    title: str
    description: str = ""
    type: str = "custom"
    assigned_to: str
    assigned_to_name: str = ""
    status: str = "pending"
    priority: str = "medium"
    due_date: str
    created_by: str = "system"
    created_at: str
    updated_at: str


class DeferredAction(_Record):
    id: str
    execution_id: str
    workflow_id: str
    candidate_id: str
    action_index: int
    action: Action
    due_at: str
    status: Literal["pending", "success", "failed"] = "pending"
    processed_at: str | None = None
    message: str | None = None
    error: str | None = None


class DeadLetter(_Record):
    id: str
    workflow_id: str
    candidate_id: str
    execution_id: str | None = None
    error: str
    error_type: str
    failed_at: str
    event: dict[str, Any] = Field(default_factory=dict)


class Notification(_Record):
    id: str
    user_id: str
    message: str
    candidate_id: str
    workflow_id: str
    read: bool = False
    created_at: str
