"""In-app notifications raised by SEND_NOTIFICATION actions."""

from __future__ import annotations

import logging
import uuid
from abc import ABC, abstractmethod
from datetime import UTC, datetime

from recruit_workflows.models import Notification
from recruit_workflows.store import NOTIFICATIONS, RecordStore

logger = logging.getLogger(__name__)


class NotificationSink(ABC):
    @abstractmethod
    def notify(self, *, user_id: str, message: str, candidate_id: str, workflow_id: str) -> str:
        """Deliver a notification and return its id."""


class StoreNotificationSink(NotificationSink):
    """Writes unread notifications where the CRM's notification bell reads them."""

    def __init__(self, store: RecordStore) -> None:
        self._store = store

    def notify(self, *, user_id: str, message: str, candidate_id: str, workflow_id: str) -> str:
        notification = Notification(
            id=uuid.uuid4().hex,
            user_id=user_id,
            message=message,
            candidate_id=candidate_id,
            workflow_id=workflow_id,
            created_at=datetime.now(tz=UTC).isoformat(),
        )
        self._store.insert(NOTIFICATIONS, notification.to_json())
        logger.info(
            "Notification stored",
            extra={"user_id": user_id, "candidate_id": candidate_id, "workflow_id": workflow_id},
        )
        return notification.id
