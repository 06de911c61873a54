#!/usr/bin/env python3
"""Programmatic rule evaluation example.

This demonstrates using the engine components directly:

* load settings from `.env`
* build a workflow graph from its editor JSON
* dispatch one domain event against it with side effects recorded, not sent

The returned entity status is passed as an argument so both branches of the
condition can be tried.
"""

from __future__ import annotations

import argparse
import json
from typing import Sequence

from workflow_rules_engine.engine.config import EngineSettings
from workflow_rules_engine.engine.logging import configure_logging
from workflow_rules_engine.engine.workflow.dry_run import RecordingGateway
from workflow_rules_engine.engine.workflow.engine import WorkflowEngine
from workflow_rules_engine.engine.workflow.events import WorkflowEvent
from workflow_rules_engine.engine.workflow.validation import validate_graph_payload

_GRAPH = {
    "_graphVersion": 2,
    "nodes": [
        {"id": "t", "type": "trigger", "data": {"eventType": "return_status_changed"}},
        {
            "id": "c1",
            "type": "condition",
            "data": {
                "conditions": [
                    {"field": "return.status", "operator": "equals", "value": "APPROVED"}
                ]
            },
        },
        {
            "id": "a1",
            "type": "action",
            "data": {"actionType": "send_notification", "params": {"template": "return_approved"}},
        },
        {
            "id": "a2",
            "type": "action",
            "data": {"actionType": "add_tag", "params": {"tag": "needs-review"}},
        },
    ],
    "edges": [
        {"id": "t-c1", "source": "t", "target": "c1"},
        {"id": "c1-a1", "source": "c1", "target": "a1", "sourceHandle": "true"},
        {"id": "c1-a2", "source": "c1", "target": "a2", "sourceHandle": "false"},
    ],
}


class _Rules:
    def __init__(self, graphs: list) -> None:
        self._graphs = graphs

    def load_enabled_graphs(self, *, tenant_id: str, event_type: object) -> list:
        return list(self._graphs)


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run one rule against a sample return.")
    parser.add_argument("--tenant", default="demo", help="Tenant id (default: demo)")
    parser.add_argument("--status", default="APPROVED", help="Return status in the snapshot")
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)

    settings = EngineSettings()
    configure_logging(settings.log_level)

    graph, issues = validate_graph_payload(_GRAPH, default_id="example", default_tenant=args.tenant)
    if graph is None or issues:
        for issue in issues:
            print(f"Invalid graph: {issue.message}")
        return 1

    gateway = RecordingGateway()
    engine = WorkflowEngine(
        settings=settings,
        repository=_Rules([graph]),
        entities=gateway,
        notifications=gateway,
        http=gateway.http_session(),
    )
    try:
        event = WorkflowEvent.capture(
            event_type="return_status_changed",
            tenant_id=args.tenant,
            snapshot={
                "return": {"id": "r-1", "status": args.status},
                "customer": {"id": "c-1", "email": "jane@example.com"},
            },
        )
        report = engine.dispatch_event(event)
    finally:
        engine.shutdown()

    print(json.dumps(report.to_json(), indent=2, default=str))
    for call in gateway.calls:
        print(f"Side effect: {call.operation} {call.arguments}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
