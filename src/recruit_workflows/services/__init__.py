"""External collaborators: email, webhooks, notifications."""

from recruit_workflows.services.email import (
    EmailMessage,
    EmailResult,
    EmailService,
    EmailServiceFactory,
    MockEmailService,
    SendGridEmailService,
)
from recruit_workflows.services.notifications import NotificationSink, StoreNotificationSink
from recruit_workflows.services.webhook import WebhookClient, WebhookDeliveryError

__all__ = [
    "EmailMessage",
    "EmailResult",
    "EmailService",
    "EmailServiceFactory",
    "MockEmailService",
    "NotificationSink",
    "SendGridEmailService",
    "StoreNotificationSink",
    "WebhookClient",
    "WebhookDeliveryError",
]
