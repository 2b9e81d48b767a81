"""Action handlers.

Each handler validates its configuration before touching anything, performs
one side effect against the record store or a collaborator, and returns an
`ActionOutcome`. Every problem surfaces as `ActionExecutionError`.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

from recruit_workflows.errors import ActionExecutionError
from recruit_workflows.models import (
    Action,
    ActionType,
    AddNoteAction,
    AddTagAction,
    AssignUserAction,
    Candidate,
    ChangeStatusAction,
    CreateTaskAction,
    RemoveTagAction,
    SendEmailAction,
    SendNotificationAction,
    Task,
    WebhookAction,
    Workflow,
)
from recruit_workflows.services.email import EmailMessage, EmailService
from recruit_workflows.services.notifications import NotificationSink
from recruit_workflows.services.webhook import (
    SUPPORTED_METHODS,
    WebhookClient,
    WebhookDeliveryError,
)
from recruit_workflows.store import CANDIDATES, EMAIL_TEMPLATES, TASKS, USERS, RecordStore

logger = logging.getLogger(__name__)

AUTOMATION_USER_ID = "system"
AUTOMATION_USER_NAME = "Workflow Automation"
DEFAULT_TASK_DUE_IN_DAYS = 7


@dataclass(frozen=True, slots=True)
class ActionOutcome:
    message: str
    metadata: dict[str, object] | None = None


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


class ActionExecutor:
    """Dispatches one action to its side effect."""

    def __init__(
        self,
        *,
        store: RecordStore,
        email: EmailService,
        notifications: NotificationSink,
        webhooks: WebhookClient,
        company_name: str = "Hi-Ring",
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._store = store
        self._email = email
        self._notifications = notifications
        self._webhooks = webhooks
        self._company_name = company_name
        self._clock = clock
        self._handlers: dict[ActionType, Callable[[Any, Candidate, Workflow], ActionOutcome]] = {
            ActionType.SEND_EMAIL: self._send_email,
            ActionType.ADD_TAG: self._add_tag,
            ActionType.REMOVE_TAG: self._remove_tag,
            ActionType.CHANGE_STATUS: self._change_status,
            ActionType.ADD_NOTE: self._add_note,
            ActionType.CREATE_TASK: self._create_task,
            ActionType.ASSIGN_USER: self._assign_user,
            ActionType.SEND_NOTIFICATION: self._send_notification,
            ActionType.WEBHOOK: self._webhook,
        }

    def execute(self, action: Action, candidate: Candidate, workflow: Workflow) -> ActionOutcome:
        handler = self._handlers[ActionType(action.type)]
        try:
            return handler(action, candidate, workflow)
        except ActionExecutionError:
            raise
        except Exception as e:
            raise ActionExecutionError(f"{action.type} failed: {e}") from e

    def template_variables(self, candidate: Candidate) -> dict[str, object]:
        today = self._clock()
        return {
            "firstName": candidate.first_name,
            "lastName": candidate.last_name,
            "fullName": candidate.full_name,
            "email": candidate.email,
            "position": candidate.applied_position or candidate.current_position or "",
            "status": candidate.status or "",
            "companyName": self._company_name,
            "currentDate": f"{today.day} {today.strftime('%B %Y')}",
        }

    # --- email ---------------------------------------------------------------

    def _resolve_user_email(self, user_id: str) -> str:
        user = self._store.get(USERS, user_id)
        if user and isinstance(user.get("email"), str):
            return user["email"]
        return user_id

    def _recipient(self, action: SendEmailAction, candidate: Candidate) -> str:
        if action.email_to == "candidate":
            return candidate.email
        if action.email_to == "assigned_user" and candidate.assigned_to:
            return self._resolve_user_email(candidate.assigned_to)
        if action.email_custom_recipient:
            return action.email_custom_recipient.strip()
        raise ActionExecutionError("No email recipient specified")

    def _content(self, action: SendEmailAction) -> tuple[str, str]:
        """Subject and body; the action's own text wins over its template."""

        subject, body = action.email_subject, action.email_body
        if action.email_template_id:
            template = self._store.get(EMAIL_TEMPLATES, action.email_template_id)
            if template is None:
                raise ActionExecutionError(
                    f"Email template not found: {action.email_template_id}"
                )
            if template.get("isActive") is False:
                raise ActionExecutionError(
                    f"Email template is inactive: {action.email_template_id}"
                )
            subject = subject or template.get("subject")
            body = body or template.get("body")
        return subject or "Notification", body or ""

    def _send_email(
        self, action: SendEmailAction, candidate: Candidate, workflow: Workflow
    ) -> ActionOutcome:
        to = self._recipient(action, candidate)
        if not EmailService.is_valid_email(to):
            raise ActionExecutionError(f"Invalid email address: {to}")

        variables = self.template_variables(candidate)
        raw_subject, raw_body = self._content(action)
        subject = EmailService.render_template(raw_subject, variables)
        body = EmailService.render_template(raw_body, variables)

        result = self._email.send_email(
            EmailMessage(to=to, subject=subject, text=body, html=EmailService.convert_to_html(body))
        )
        if not result.success:
            raise ActionExecutionError(f"Failed to send email: {result.error}")

        logger.info(
            "Workflow email sent",
            extra={"workflow_id": workflow.id, "to": to, "message_id": result.message_id},
        )
        return ActionOutcome(
            message=f"Email sent to {to}",
            metadata={
                "to": to,
                "subject": subject,
                "messageId": result.message_id,
                "provider": result.provider,
            },
        )

    # --- tags ----------------------------------------------------------------

    @staticmethod
    def _tag(action: AddTagAction | RemoveTagAction) -> str:
        tag = action.tag_name or (action.tag_names[0] if action.tag_names else None)
        if not tag or not tag.strip():
            raise ActionExecutionError("No tag specified")
        return tag.strip()

    def _add_tag(self, action: AddTagAction, candidate: Candidate, _wf: Workflow) -> ActionOutcome:
        tag = self._tag(action)
        if tag in candidate.tags:
            return ActionOutcome(message=f'Tag "{tag}" already exists on candidate')
        self._store.update(CANDIDATES, candidate.id, add_to_set={"tags": tag})
        return ActionOutcome(message=f'Tag "{tag}" added to candidate')

    def _remove_tag(
        self, action: RemoveTagAction, candidate: Candidate, _wf: Workflow
    ) -> ActionOutcome:
        tag = self._tag(action)
        if tag not in candidate.tags:
            return ActionOutcome(message=f'Tag "{tag}" not present on candidate')
        self._store.update(CANDIDATES, candidate.id, remove={"tags": tag})
        return ActionOutcome(message=f'Tag "{tag}" removed from candidate')

    # --- candidate state -----------------------------------------------------

    def _activity(self, kind: str, description: str, metadata: dict[str, object]) -> dict:
        return {
            "id": uuid.uuid4().hex,
            "type": kind,
            "description": description,
            "userId": AUTOMATION_USER_ID,
            "userName": AUTOMATION_USER_NAME,
            "timestamp": self._clock().isoformat(),
            "metadata": metadata,
        }

    def _change_status(
        self, action: ChangeStatusAction, candidate: Candidate, _wf: Workflow
    ) -> ActionOutcome:
        if not action.new_status:
            raise ActionExecutionError("No status specified")

        old_status = candidate.status
        metadata: dict[str, object] = {"oldStatus": old_status, "newStatus": action.new_status}
        if old_status == action.new_status:
            return ActionOutcome(message=f"Status already {action.new_status}", metadata=metadata)

        now = self._clock().isoformat()
        self._store.update(
            CANDIDATES,
            candidate.id,
            set_fields={"status": action.new_status, "updatedAt": now, "stageEnteredAt": now},
            append={
                "activities": self._activity(
                    "status_change",
                    f"Status changed to {action.new_status} by workflow",
                    metadata,
                )
            },
        )
        return ActionOutcome(message=f"Status changed to {action.new_status}", metadata=metadata)

    def _add_note(
        self, action: AddNoteAction, candidate: Candidate, _wf: Workflow
    ) -> ActionOutcome:
        if not action.note_content or not action.note_content.strip():
            raise ActionExecutionError("No note content specified")

        note = {
            "id": uuid.uuid4().hex,
            "authorId": AUTOMATION_USER_ID,
            "authorName": AUTOMATION_USER_NAME,
            "content": action.note_content,
            "createdAt": self._clock().isoformat(),
            "isPrivate": action.note_is_private,
        }
        self._store.update(CANDIDATES, candidate.id, append={"notes": note})
        return ActionOutcome(message="Note added to candidate", metadata={"noteId": note["id"]})

    def _assign_user(
        self, action: AssignUserAction, candidate: Candidate, _wf: Workflow
    ) -> ActionOutcome:
        if not action.assign_to_user_id:
            raise ActionExecutionError("No user specified for assignment")

        previous = candidate.assigned_to
        metadata: dict[str, object] = {
            "previousUser": previous,
            "assignedTo": action.assign_to_user_id,
        }
        if previous == action.assign_to_user_id:
            return ActionOutcome(
                message=f"Candidate already assigned to {previous}", metadata=metadata
            )

        self._store.update(
            CANDIDATES,
            candidate.id,
            set_fields={
                "assignedTo": action.assign_to_user_id,
                "updatedAt": self._clock().isoformat(),
            },
            append={
                "activities": self._activity(
                    "assignment", f"Assigned to {action.assign_to_user_id} by workflow", metadata
                )
            },
        )
        return ActionOutcome(
            message=f"Candidate assigned to {action.assign_to_user_id}", metadata=metadata
        )

    # --- tasks and notifications ---------------------------------------------

    def _create_task(
        self, action: CreateTaskAction, candidate: Candidate, workflow: Workflow
    ) -> ActionOutcome:
        if not action.task_title or not action.task_title.strip():
            raise ActionExecutionError("No task title specified")

        due_in_days = (
            action.task_due_in_days
            if action.task_due_in_days is not None
            else DEFAULT_TASK_DUE_IN_DAYS
        )
        now = self._clock()
        variables = self.template_variables(candidate)
        task = Task(
            id=uuid.uuid4().hex,
            candidate_id=candidate.id,
            candidate_name=candidate.full_name,
            workflow_id=workflow.id,
            title=EmailService.render_template(action.task_title, variables),
            description=EmailService.render_template(action.task_description or "", variables),
            assigned_to=action.task_assign_to or candidate.assigned_to or "unassigned",
            priority=action.task_priority,
            due_date=(now + timedelta(days=due_in_days)).isoformat(),
            created_at=now.isoformat(),
            updated_at=now.isoformat(),
        )
        self._store.insert(TASKS, task.to_json())
        return ActionOutcome(
            message=f"Task created: {task.title}",
            metadata={"taskId": task.id, "dueDate": task.due_date, "assignedTo": task.assigned_to},
        )

    def _send_notification(
        self, action: SendNotificationAction, candidate: Candidate, workflow: Workflow
    ) -> ActionOutcome:
        if not action.notification_message or not action.notification_message.strip():
            raise ActionExecutionError("No notification message specified")

        recipients = action.notify_users or (
            [candidate.assigned_to] if candidate.assigned_to else []
        )
        if not recipients:
            raise ActionExecutionError(
                "No notification recipients: notifyUsers is empty and the candidate is unassigned"
            )

        message = EmailService.render_template(
            action.notification_message, self.template_variables(candidate)
        )
        ids = [
            self._notifications.notify(
                user_id=user_id, message=message, candidate_id=candidate.id, workflow_id=workflow.id
            )
            for user_id in recipients
        ]
        return ActionOutcome(
            message="Notification sent",
            metadata={"message": message, "recipients": recipients, "notificationIds": ids},
        )

    # --- webhooks ------------------------------------------------------------

    def _webhook(
        self, action: WebhookAction, candidate: Candidate, workflow: Workflow
    ) -> ActionOutcome:
        if not action.webhook_url or not action.webhook_url.strip():
            raise ActionExecutionError("No webhook URL specified")
        method = action.webhook_method.upper()
        if method not in SUPPORTED_METHODS:
            raise ActionExecutionError(f"Unsupported webhook method: {action.webhook_method}")

        payload = action.webhook_payload or {
            "event": "workflow.action",
            "workflowId": workflow.id,
            "workflowName": workflow.name,
            "candidateId": candidate.id,
            "candidate": {
                "firstName": candidate.first_name,
                "lastName": candidate.last_name,
                "email": candidate.email,
                "status": candidate.status,
                "tags": candidate.tags,
            },
            "timestamp": self._clock().isoformat(),
        }
        url = action.webhook_url.strip()
        try:
            resp = self._webhooks.send(
                url=url, method=method, payload=payload, headers=action.webhook_headers
            )
        except WebhookDeliveryError as e:
            raise ActionExecutionError(str(e)) from e

        return ActionOutcome(
            message=f"Webhook {method} {url} answered {resp.status_code}",
            metadata={"url": url, "method": method, "statusCode": resp.status_code},
        )
