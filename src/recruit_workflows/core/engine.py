"""Wiring of the engine components."""

from __future__ import annotations

import logging

from recruit_workflows.config import EngineSettings
from recruit_workflows.services.email import EmailService, EmailServiceFactory
from recruit_workflows.services.notifications import NotificationSink, StoreNotificationSink
from recruit_workflows.services.webhook import WebhookClient
from recruit_workflows.store import JsonRecordStore, RecordStore
from recruit_workflows.workflow.actions import ActionExecutor
from recruit_workflows.workflow.deferred import DeferredActionRunner
from recruit_workflows.workflow.dispatcher import EventDispatcher
from recruit_workflows.workflow.gating import ExecutionGate
from recruit_workflows.workflow.locks import CandidateLocks
from recruit_workflows.workflow.orchestrator import ExecutionOrchestrator
from recruit_workflows.workflow.scanner import StageScanner

logger = logging.getLogger(__name__)


class WorkflowEngine:
    """The workflow automation engine.

    Composes the record store, collaborators, orchestrator and dispatcher.
    The CRM holds one instance and calls the dispatcher's `on_*` methods at
    its event sites.
    """

    def __init__(
        self,
        settings: EngineSettings | None = None,
        *,
        store: RecordStore | None = None,
        email: EmailService | None = None,
        notifications: NotificationSink | None = None,
        webhooks: WebhookClient | None = None,
    ) -> None:
        """Initialize the engine.

        Args:
            settings: Configuration. If None, loads from environment.
            store: Record store; defaults to a JSON store under `state_path`.
            email: Email provider; defaults to the configured provider.
            notifications: Notification sink; defaults to the record store.
            webhooks: HTTP client for webhook actions.
        """
        self.settings = settings or EngineSettings()
        self.store: RecordStore = store or JsonRecordStore(self.settings.state_path)
        self.email = email or EmailServiceFactory.create(self.settings)
        self.webhooks = webhooks or WebhookClient(timeout=self.settings.http_timeout_seconds)
        notifications = notifications or StoreNotificationSink(self.store)

        self.executor = ActionExecutor(
            store=self.store,
            email=self.email,
            notifications=notifications,
            webhooks=self.webhooks,
            company_name=self.settings.company_name,
        )
        self.locks = CandidateLocks()
        self.orchestrator = ExecutionOrchestrator(
            store=self.store,
            executor=self.executor,
            locks=self.locks,
            retry_attempts=self.settings.persistence_retry_attempts,
            retry_delay_seconds=self.settings.persistence_retry_delay_seconds,
            defer_delayed_actions=self.settings.defer_delayed_actions,
        )
        self.gate = ExecutionGate(store=self.store, timezone=self.settings.tzinfo)
        self.dispatcher = EventDispatcher(
            store=self.store,
            orchestrator=self.orchestrator,
            gate=self.gate,
            max_workers=self.settings.max_workers,
        )
        self.deferred = DeferredActionRunner(
            store=self.store,
            executor=self.executor,
            locks=self.locks,
            retry_attempts=self.settings.persistence_retry_attempts,
            retry_delay_seconds=self.settings.persistence_retry_delay_seconds,
        )
        self.scanner = StageScanner(store=self.store, dispatcher=self.dispatcher)

        logger.info(
            "Workflow engine initialized",
            extra={
                "state_path": str(self.settings.state_path),
                "max_workers": self.settings.max_workers,
                "timezone": self.settings.timezone,
            },
        )

    def close(self, wait: bool = True) -> None:
        """Stop accepting runs and release HTTP sessions."""

        self.dispatcher.shutdown(wait=wait)
        self.webhooks.close()
        close_email = getattr(self.email, "close", None)
        if callable(close_email):
            close_email()
