"""FastAPI app factory.

Endpoints are thin wrappers over the engine: event ingestion for CRM
processes that cannot embed the engine, manual runs, and read access to the
execution audit trail.

Run with: `uvicorn recruit_workflows.server.app:create_app --factory`.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, HTTPException, Query, status

from recruit_workflows import __version__
from recruit_workflows.core.engine import WorkflowEngine
from recruit_workflows.errors import LoadError, PersistenceError
from recruit_workflows.server.models import (
    DaysInStageEvent,
    EventAccepted,
    RunRequest,
    ScoreEvent,
    StatusChangedEvent,
    TagEvent,
)
from recruit_workflows.store import DEAD_LETTERS, EXECUTIONS

logger = logging.getLogger(__name__)


def create_app(engine: WorkflowEngine | None = None) -> FastAPI:
    engine = engine or WorkflowEngine()

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        yield
        engine.close(wait=False)

    app = FastAPI(
        lifespan=lifespan,
        title="Recruit Workflow Engine",
        version=__version__,
        description="Event ingestion and execution audit API for candidate workflow automation.",
        openapi_url="/api/openapi.json",
        docs_url="/api/docs",
        redoc_url="/api/redoc",
    )
    app.state.engine = engine
    dispatcher = engine.dispatcher
    store = engine.store

    @app.get("/api/v1/health")
    def health() -> dict[str, Any]:
        return {"status": "ok", "version": __version__, "dispatcher": dispatcher.stats()}

    @app.post(
        "/api/v1/events/status-changed",
        response_model=EventAccepted,
        status_code=status.HTTP_202_ACCEPTED,
    )
    def status_changed(event: StatusChangedEvent) -> EventAccepted:
        launched = dispatcher.on_status_changed(
            event.candidate_id, event.old_status, event.new_status
        )
        return EventAccepted(launched=launched)

    @app.post(
        "/api/v1/events/tag-added",
        response_model=EventAccepted,
        status_code=status.HTTP_202_ACCEPTED,
    )
    def tag_added(event: TagEvent) -> EventAccepted:
        return EventAccepted(launched=dispatcher.on_tag_added(event.candidate_id, event.tag))

    @app.post(
        "/api/v1/events/tag-removed",
        response_model=EventAccepted,
        status_code=status.HTTP_202_ACCEPTED,
    )
    def tag_removed(event: TagEvent) -> EventAccepted:
        return EventAccepted(launched=dispatcher.on_tag_removed(event.candidate_id, event.tag))

    @app.post(
        "/api/v1/events/days-in-stage",
        response_model=EventAccepted,
        status_code=status.HTTP_202_ACCEPTED,
    )
    def days_in_stage(event: DaysInStageEvent) -> EventAccepted:
        return EventAccepted(
            launched=dispatcher.on_days_in_stage(event.candidate_id, event.days_in_stage)
        )

    @app.post(
        "/api/v1/events/score-threshold",
        response_model=EventAccepted,
        status_code=status.HTTP_202_ACCEPTED,
    )
    def score_threshold(event: ScoreEvent) -> EventAccepted:
        launched = dispatcher.on_score_threshold(event.candidate_id, event.score)
        return EventAccepted(launched=launched)

    @app.post("/api/v1/workflows/{workflow_id}/run")
    def run_workflow(workflow_id: str, req: RunRequest) -> dict[str, Any]:
        # Manual runs are explicit user requests and bypass schedule and caps.
        try:
            execution = engine.orchestrator.run(
                workflow_id, req.candidate_id, executed_by=req.executed_by
            )
        except LoadError as e:
            raise HTTPException(status_code=404, detail=str(e)) from e
        except PersistenceError as e:
            logger.exception(
                "Manual run could not be persisted", extra={"workflow_id": workflow_id}
            )
            raise HTTPException(status_code=503, detail=str(e)) from e
        return execution.to_json()

    @app.get("/api/v1/executions")
    def list_executions(
        workflow_id: str | None = Query(default=None, alias="workflowId"),
        candidate_id: str | None = Query(default=None, alias="candidateId"),
        limit: int = Query(default=50, ge=1, le=500),
    ) -> list[dict[str, Any]]:
        filters: dict[str, object] = {}
        if workflow_id:
            filters["workflowId"] = workflow_id
        if candidate_id:
            filters["candidateId"] = candidate_id
        records = store.find(EXECUTIONS, filters)
        records.sort(key=lambda r: str(r.get("startedAt") or ""), reverse=True)
        return records[:limit]

    @app.get("/api/v1/executions/{execution_id}")
    def get_execution(execution_id: str) -> dict[str, Any]:
        record = store.get(EXECUTIONS, execution_id)
        if record is None:
            raise HTTPException(status_code=404, detail="Execution not found")
        return record

    @app.get("/api/v1/dead-letters")
    def list_dead_letters() -> list[dict[str, Any]]:
        return store.find(DEAD_LETTERS)

    return app
