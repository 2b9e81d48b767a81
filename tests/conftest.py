"""Test configuration and fixtures."""

from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any
from unittest.mock import Mock

import pytest

from recruit_workflows.config import EngineSettings
from recruit_workflows.core.engine import WorkflowEngine
from recruit_workflows.services.email import MockEmailService
from recruit_workflows.services.notifications import StoreNotificationSink
from recruit_workflows.services.webhook import WebhookClient, WebhookResponse
from recruit_workflows.store import CANDIDATES, WORKFLOWS, JsonRecordStore
from recruit_workflows.workflow.actions import ActionExecutor


@pytest.fixture
def state_dir(tmp_path: Path) -> Path:
    """Provide a temporary state directory."""
    path = tmp_path / "state"
    path.mkdir()
    return path


@pytest.fixture
def store(state_dir: Path) -> JsonRecordStore:
    return JsonRecordStore(state_dir)


@pytest.fixture
def settings(state_dir: Path) -> EngineSettings:
    """Provide test settings that never read the developer's .env."""
    return EngineSettings(
        _env_file=None,
        WORKFLOW_STATE_PATH=state_dir,
        WORKFLOW_MAX_WORKERS=2,
        WORKFLOW_PERSISTENCE_RETRY_DELAY_SECONDS=0,
        EMAIL_PROVIDER="mock",
    )


@pytest.fixture
def email() -> MockEmailService:
    return MockEmailService()


@pytest.fixture
def webhooks() -> Mock:
    client = Mock(spec=WebhookClient)
    client.send.return_value = WebhookResponse(status_code=200, body="ok")
    return client


@pytest.fixture
def executor(store: JsonRecordStore, email: MockEmailService, webhooks: Mock) -> ActionExecutor:
    return ActionExecutor(
        store=store,
        email=email,
        notifications=StoreNotificationSink(store),
        webhooks=webhooks,
    )


@pytest.fixture
def engine(
    settings: EngineSettings, store: JsonRecordStore, email: MockEmailService, webhooks: Mock
) -> Iterator[WorkflowEngine]:
    engine = WorkflowEngine(settings, store=store, email=email, webhooks=webhooks)
    yield engine
    engine.close()


def workflow_record(**overrides: Any) -> dict[str, Any]:
    """A stored workflow document as the CRM writes it."""
    record: dict[str, Any] = {
        "id": "wf-1",
        "name": "Interview follow-up",
        "isActive": True,
        "priority": 0,
        "trigger": {"type": "status_changed", "toStatus": "interview_scheduled"},
        "actions": [{"type": "add_tag", "tagName": "interviewing"}],
        "executionCount": 0,
        "successCount": 0,
        "failureCount": 0,
    }
    record.update(overrides)
    return record


def candidate_record(**overrides: Any) -> dict[str, Any]:
    record: dict[str, Any] = {
        "id": "cand-1",
        "firstName": "Ada",
        "lastName": "Lovelace",
        "email": "ada@example.com",
        "status": "contacted",
        "tags": [],
        "notes": [],
        "activities": [],
        "assignedTo": "user-1",
        "appliedPosition": "Data Engineer",
    }
    record.update(overrides)
    return record


@pytest.fixture
def seed(store: JsonRecordStore) -> Callable[..., None]:
    """Insert workflows and candidates into the store."""

    def _seed(
        workflows: list[dict[str, Any]] | None = None,
        candidates: list[dict[str, Any]] | None = None,
    ) -> None:
        for wf in workflows or []:
            store.insert(WORKFLOWS, wf)
        for cand in candidates or []:
            store.insert(CANDIDATES, cand)

    return _seed


@pytest.fixture
def make_workflow() -> Callable[..., dict[str, Any]]:
    return workflow_record


@pytest.fixture
def make_candidate() -> Callable[..., dict[str, Any]]:
    return candidate_record
