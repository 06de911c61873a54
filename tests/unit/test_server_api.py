from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest
from fastapi.testclient import TestClient

from workflow_rules_engine.engine.config import EngineSettings
from workflow_rules_engine.engine.workflow.dry_run import RecordingGateway
from workflow_rules_engine.engine.workflow.engine import WorkflowEngine
from workflow_rules_engine.engine.workflow.scheduler import InProcessDelayScheduler
from workflow_rules_engine.server.app import create_app
from workflow_rules_engine.server.config import ServerSettings


def _graphs(graph_builder: Any) -> list[Any]:
    tag_new = (
        graph_builder(graph_id="tag-new")
        .trigger("t", "return_created")
        .action("a1", "add_tag", tag="new")
        .chain("t", "a1")
        .build()
    )
    follow_up = (
        graph_builder(graph_id="follow-up")
        .trigger("t", "ticket_created")
        .delay("d1", 2, "days")
        .action("a1", "notify_internal", message="Ticket {{ticket.id}} still open?")
        .chain("t", "d1", "a1")
        .build()
    )
    return [tag_new, follow_up]


@pytest.fixture
def engine(
    settings: EngineSettings,
    gateway: RecordingGateway,
    graph_builder: Any,
    repository_factory: Any,
) -> WorkflowEngine:
    return WorkflowEngine(
        settings=settings,
        repository=repository_factory(_graphs(graph_builder)),
        entities=gateway,
        notifications=gateway,
        scheduler=InProcessDelayScheduler(),
        http=gateway.http_session(),
    )


@pytest.fixture
def app_settings(clean_env: None) -> ServerSettings:
    return ServerSettings(_env_file=None)


def test_health(engine: WorkflowEngine, app_settings: ServerSettings) -> None:
    with TestClient(create_app(app_settings, engine)) as client:
        body = client.get("/api/v1/health").json()

    assert body == {"status": "ok", "rules_enabled": True}


def test_submit_event_is_accepted_and_processed(
    engine: WorkflowEngine, app_settings: ServerSettings, gateway: RecordingGateway
) -> None:
    with TestClient(create_app(app_settings, engine)) as client:
        resp = client.post(
            "/api/v1/events",
            json={
                "tenant_id": "t1",
                "event_type": "return_created",
                "snapshot": {"return": {"id": "r-1", "status": "NEW"}},
            },
        )
        assert resp.status_code == 202
        body = resp.json()
        assert body["status"] == "accepted"
        assert body["event_type"] == "return_created"
        assert body["event_id"]

    # Leaving the client runs shutdown, which drains queued events.
    assert gateway.operations() == ["add_tag"]
    assert gateway.calls[0].arguments["entity_id"] == "r-1"


@pytest.mark.parametrize(
    "payload",
    [
        {"tenant_id": "t1", "event_type": "return_teleported", "snapshot": {}},
        {"tenant_id": "", "event_type": "return_created", "snapshot": {}},
        {"tenant_id": "t1", "event_type": "return_created"},
    ],
)
def test_submit_event_rejects_bad_input(
    engine: WorkflowEngine, app_settings: ServerSettings, payload: dict[str, Any]
) -> None:
    with TestClient(create_app(app_settings, engine)) as client:
        resp = client.post("/api/v1/events", json=payload)

    assert resp.status_code == 422


def test_validate_graph_endpoint(
    engine: WorkflowEngine, app_settings: ServerSettings, graph_builder: Any
) -> None:
    valid = graph_builder().trigger("t", "return_created").payload()
    invalid = graph_builder().action("a1", "add_tag", tag="x").payload()

    with TestClient(create_app(app_settings, engine)) as client:
        ok = client.post("/api/v1/graphs/validate", json=valid).json()
        bad = client.post("/api/v1/graphs/validate", json=invalid).json()

    assert ok["valid"] is True
    assert bad["valid"] is False
    assert bad["issues"][0]["message"] == "Workflow must have a trigger node"


def test_list_pending_continuations(engine: WorkflowEngine, app_settings: ServerSettings) -> None:
    with TestClient(create_app(app_settings, engine)) as client:
        report = engine.on_domain_event(
            "t1", "ticket_created", {"ticket": {"id": "tk-1", "status": "open"}}
        ).result(timeout=5)
        assert report.results[0].continuations

        items = client.get("/api/v1/continuations").json()
        other_tenant = client.get("/api/v1/continuations", params={"tenant_id": "t2"}).json()

    assert [i["graph_id"] for i in items] == ["follow-up"]
    assert items[0]["resume_node_id"] == "a1"
    assert items[0]["event_type"] == "ticket_created"
    assert other_tenant == []


def test_app_without_backoffice_uses_recording_gateway(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, app_settings: ServerSettings
) -> None:
    monkeypatch.setenv("WORKFLOW_GRAPH_STORE_PATH", str(tmp_path / "rules.json"))
    monkeypatch.chdir(tmp_path)

    with TestClient(create_app(app_settings)) as client:
        assert client.get("/api/v1/health").json()["status"] == "ok"


def test_app_can_require_backoffice(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, clean_env: None
) -> None:
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("WORKFLOW_REQUIRE_BACKOFFICE", "true")

    with pytest.raises(RuntimeError):
        create_app(ServerSettings(_env_file=None))
