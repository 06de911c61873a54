"""FastAPI app factory.

Endpoints are thin wrappers over `WorkflowEngine`; they never evaluate rules
themselves.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from workflow_rules_engine import __version__
from workflow_rules_engine.engine.backoffice import BackOfficeClient
from workflow_rules_engine.engine.config import EngineSettings
from workflow_rules_engine.engine.workflow.dry_run import RecordingGateway
from workflow_rules_engine.engine.workflow.engine import WorkflowEngine
from workflow_rules_engine.engine.workflow.events import WorkflowEvent
from workflow_rules_engine.engine.workflow.graph_store import JsonGraphStore
from workflow_rules_engine.engine.workflow.validation import validate_graph_payload
from workflow_rules_engine.server.config import ServerSettings
from workflow_rules_engine.server.models import (
    ContinuationOut,
    EventAccepted,
    EventRequest,
    GraphIssueOut,
    GraphValidationResult,
)

logger = logging.getLogger(__name__)


def build_engine(
    engine_settings: EngineSettings, server_settings: ServerSettings
) -> tuple[WorkflowEngine, list[Callable[[], None]]]:
    """Wire the engine from settings. Returns it with extra cleanup callbacks."""

    repository = JsonGraphStore(engine_settings.graph_store_path)
    if engine_settings.backoffice_configured:
        client = BackOfficeClient(
            base_url=engine_settings.backoffice_base_url,
            token=engine_settings.backoffice_api_token,
            timeout_seconds=engine_settings.backoffice_timeout_seconds,
        )
        engine = WorkflowEngine(
            settings=engine_settings,
            repository=repository,
            entities=client,
            notifications=client,
        )
        return engine, [client.close]

    if server_settings.require_backoffice:
        raise RuntimeError("BACKOFFICE_BASE_URL and BACKOFFICE_API_TOKEN are required")

    logger.warning("Back office not configured; side effects are recorded, not performed")
    gateway = RecordingGateway()
    engine = WorkflowEngine(
        settings=engine_settings,
        repository=repository,
        entities=gateway,
        notifications=gateway,
        http=gateway.http_session(),
    )
    return engine, []


def create_app(
    settings: ServerSettings | None = None,
    engine: WorkflowEngine | None = None,
) -> FastAPI:
    settings = settings or ServerSettings()
    cleanups: list[Callable[[], None]] = []
    if engine is None:
        engine, cleanups = build_engine(EngineSettings(), settings)
    workflow_engine = engine

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        workflow_engine.start()
        try:
            yield
        finally:
            workflow_engine.shutdown()
            for cleanup in cleanups:
                cleanup()

    app = FastAPI(
        title="Workflow Rules Engine",
        version=__version__,
        description="REST API for submitting domain events and inspecting workflow rules.",
        openapi_url="/api/openapi.json",
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.engine = workflow_engine

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.parsed_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/api/v1/health")
    def health() -> dict[str, object]:
        return {
            "status": "ok",
            "rules_enabled": workflow_engine.settings.workflow_rules_enabled,
        }

    @app.post("/api/v1/events", status_code=202, response_model=EventAccepted)
    def submit_event(req: EventRequest) -> EventAccepted:
        try:
            event = WorkflowEvent.capture(
                event_type=req.event_type,
                tenant_id=req.tenant_id,
                snapshot=req.snapshot,
                previous_values=req.previous_values,
            )
        except ValueError as e:
            raise HTTPException(status_code=422, detail=str(e)) from e
        workflow_engine.submit(event)
        return EventAccepted(
            event_id=event.event_id, tenant_id=event.tenant_id, event_type=event.type
        )

    @app.post("/api/v1/graphs/validate", response_model=GraphValidationResult)
    def validate(payload: dict[str, Any]) -> GraphValidationResult:
        graph, issues = validate_graph_payload(payload)
        return GraphValidationResult(
            graph_id=graph.id if graph is not None else None,
            valid=not issues,
            issues=[GraphIssueOut(message=i.message, node_id=i.node_id) for i in issues],
        )

    @app.get("/api/v1/continuations", response_model=list[ContinuationOut])
    def list_continuations(tenant_id: str | None = None) -> list[ContinuationOut]:
        pending = workflow_engine.pending_continuations()
        return [
            ContinuationOut.model_validate(c.to_json())
            for c in pending
            if tenant_id is None or c.event.tenant_id == tenant_id
        ]

    return app
