"""Test configuration and fixtures."""

from __future__ import annotations

from collections.abc import Iterator
from typing import Any

import pytest

from workflow_rules_engine.engine.config import EngineSettings
from workflow_rules_engine.engine.workflow.actions import ActionDispatcher
from workflow_rules_engine.engine.workflow.dry_run import RecordingGateway
from workflow_rules_engine.engine.workflow.models import TriggerEventType, WorkflowGraph
from workflow_rules_engine.engine.workflow.scheduler import InProcessDelayScheduler
from workflow_rules_engine.engine.workflow.walker import GraphWalker

_ENV_VARS = (
    "LOG_LEVEL",
    "WORKFLOW_RULES_ENABLED",
    "WORKFLOW_MAX_CONCURRENT_GRAPHS",
    "WORKFLOW_GRAPH_STORE_PATH",
    "WORKFLOW_SYSTEM_ACTOR_ID",
    "WORKFLOW_DEFAULT_COMMENT",
    "WORKFLOW_WEBHOOK_TIMEOUT_SECONDS",
    "BACKOFFICE_BASE_URL",
    "BACKOFFICE_API_TOKEN",
    "BACKOFFICE_TIMEOUT_SECONDS",
    "WORKFLOW_CORS_ORIGINS",
    "WORKFLOW_REQUIRE_BACKOFFICE",
)


class GraphBuilder:
    """Builds rule graphs in the JSON shape the visual builder saves."""

    def __init__(self, graph_id: str = "g1", tenant_id: str = "t1") -> None:
        self.graph_id = graph_id
        self.tenant_id = tenant_id
        self.nodes: list[dict[str, Any]] = []
        self.edges: list[dict[str, Any]] = []

    def trigger(
        self, node_id: str, event_type: str, *filters: tuple[str, str, Any]
    ) -> GraphBuilder:
        self.nodes.append(
            {
                "id": node_id,
                "type": "trigger",
                "data": {
                    "eventType": event_type,
                    "filters": [
                        {"field": f, "operator": op, "value": v} for f, op, v in filters
                    ],
                },
            }
        )
        return self

    def condition(
        self, node_id: str, *conditions: tuple[str, str, Any], logic: str = "AND"
    ) -> GraphBuilder:
        self.nodes.append(
            {
                "id": node_id,
                "type": "condition",
                "data": {
                    "logicOperator": logic,
                    "conditions": [
                        {"field": f, "operator": op, "value": v} for f, op, v in conditions
                    ],
                },
            }
        )
        return self

    def action(self, node_id: str, action_type: str, **params: Any) -> GraphBuilder:
        self.nodes.append(
            {
                "id": node_id,
                "type": "action",
                "data": {"actionType": action_type, "params": params},
            }
        )
        return self

    def delay(self, node_id: str, amount: int, unit: str = "hours") -> GraphBuilder:
        self.nodes.append(
            {"id": node_id, "type": "delay", "data": {"amount": amount, "unit": unit}}
        )
        return self

    def edge(self, source: str, target: str, branch: str | None = None) -> GraphBuilder:
        item: dict[str, Any] = {"id": f"{source}-{target}", "source": source, "target": target}
        if branch is not None:
            item["sourceHandle"] = branch
        self.edges.append(item)
        return self

    def chain(self, *node_ids: str) -> GraphBuilder:
        for source, target in zip(node_ids, node_ids[1:]):
            self.edge(source, target)
        return self

    def payload(self) -> dict[str, Any]:
        return {"_graphVersion": 2, "nodes": list(self.nodes), "edges": list(self.edges)}

    def build(self, **overrides: Any) -> WorkflowGraph:
        return WorkflowGraph.model_validate(
            {"id": self.graph_id, "tenant_id": self.tenant_id, **self.payload(), **overrides}
        )


class StaticRepository:
    def __init__(self, graphs: list[WorkflowGraph]) -> None:
        self.graphs = graphs
        self.calls: list[tuple[str, TriggerEventType]] = []

    def load_enabled_graphs(
        self, *, tenant_id: str, event_type: TriggerEventType
    ) -> list[WorkflowGraph]:
        self.calls.append((tenant_id, event_type))
        return list(self.graphs)


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def settings(clean_env: None) -> EngineSettings:
    return EngineSettings(_env_file=None)


@pytest.fixture
def graph_builder() -> type[GraphBuilder]:
    return GraphBuilder


@pytest.fixture
def gateway() -> RecordingGateway:
    return RecordingGateway()


@pytest.fixture
def scheduler() -> Iterator[InProcessDelayScheduler]:
    # Never started: tests fire continuations explicitly.
    sched = InProcessDelayScheduler()
    yield sched
    sched.shutdown()


@pytest.fixture
def dispatcher(
    settings: EngineSettings, gateway: RecordingGateway
) -> Iterator[ActionDispatcher]:
    d = ActionDispatcher(
        entities=gateway,
        notifications=gateway,
        settings=settings,
        http=gateway.http_session(),
    )
    yield d
    d.close()


@pytest.fixture
def walker(dispatcher: ActionDispatcher, scheduler: InProcessDelayScheduler) -> GraphWalker:
    return GraphWalker(dispatcher=dispatcher, scheduler=scheduler)


@pytest.fixture
def repository_factory() -> type[StaticRepository]:
    return StaticRepository
