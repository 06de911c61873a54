"""CLI entrypoint for operating the workflow rules engine.

Commands print JSON to stdout; logs go to stderr.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from pydantic import ValidationError

from workflow_rules_engine import __version__
from workflow_rules_engine.engine.config import EngineSettings
from workflow_rules_engine.engine.logging import configure_logging
from workflow_rules_engine.engine.workflow.dry_run import RecordingGateway
from workflow_rules_engine.engine.workflow.engine import WorkflowEngine
from workflow_rules_engine.engine.workflow.errors import GraphStoreError
from workflow_rules_engine.engine.workflow.events import WorkflowEvent
from workflow_rules_engine.engine.workflow.graph_store import JsonGraphStore
from workflow_rules_engine.engine.workflow.models import TriggerEventType
from workflow_rules_engine.engine.workflow.scheduler import InProcessDelayScheduler
from workflow_rules_engine.engine.workflow.validation import validate_graph_payload

logger = logging.getLogger(__name__)


def _print_json(payload: object) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False, default=str))


def _read_json_object(path: Path) -> dict[str, object]:
    raw = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        raise ValueError(f"{path} must contain a JSON object")
    return raw


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="workflow-engine",
        description="Workflow rules engine for returns, tickets and customers",
    )
    parser.add_argument(
        "--version", action="version", version=f"workflow-rules-engine {__version__}"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    validate = subparsers.add_parser("validate", help="Check a rule graph for structural issues")
    validate.add_argument("--file", type=Path, required=True, help="Graph JSON file")

    event_types = [e.value for e in TriggerEventType]

    list_rules = subparsers.add_parser("list-rules", help="List stored rules for a tenant")
    list_rules.add_argument("--tenant", required=True, help="Tenant id")
    list_rules.add_argument(
        "--event-type", default=None, choices=event_types, help="Only rules for this trigger"
    )
    list_rules.add_argument(
        "--store",
        type=Path,
        default=None,
        help="Rule store file (defaults to WORKFLOW_GRAPH_STORE_PATH)",
    )

    simulate = subparsers.add_parser(
        "simulate",
        help="Dry-run the tenant's rules for one event without performing side effects",
    )
    simulate.add_argument("--tenant", required=True, help="Tenant id")
    simulate.add_argument("--event-type", required=True, choices=event_types)
    simulate.add_argument(
        "--snapshot", type=Path, required=True, help="JSON file with the entity snapshot"
    )
    simulate.add_argument(
        "--previous",
        type=Path,
        default=None,
        help="JSON file with previous field values (for changed* operators)",
    )
    simulate.add_argument(
        "--store",
        type=Path,
        default=None,
        help="Rule store file (defaults to WORKFLOW_GRAPH_STORE_PATH)",
    )

    return parser


def _cmd_validate(args: argparse.Namespace) -> int:
    raw = _read_json_object(args.file)
    graph, issues = validate_graph_payload(raw, default_id=args.file.stem)
    _print_json(
        {
            "graph_id": graph.id if graph is not None else None,
            "valid": not issues,
            "issues": [i.to_json() for i in issues],
        }
    )
    return 0 if not issues else 1


def _cmd_list_rules(args: argparse.Namespace, settings: EngineSettings) -> int:
    store = JsonGraphStore(args.store or settings.graph_store_path)
    records = store.list_rules(args.tenant, args.event_type)
    _print_json(
        [
            {
                "id": r.id,
                "name": r.name,
                "trigger_type": r.trigger_type,
                "active": r.active,
                "sort_order": r.sort_order,
                "graph_version": r.graph_version,
            }
            for r in records
        ]
    )
    return 0


def _cmd_simulate(args: argparse.Namespace, settings: EngineSettings) -> int:
    snapshot = _read_json_object(args.snapshot)
    previous = _read_json_object(args.previous) if args.previous is not None else None

    gateway = RecordingGateway()
    engine = WorkflowEngine(
        settings=settings,
        repository=JsonGraphStore(args.store or settings.graph_store_path),
        entities=gateway,
        notifications=gateway,
        scheduler=InProcessDelayScheduler(),
        http=gateway.http_session(),
    )
    try:
        event = WorkflowEvent.capture(
            event_type=args.event_type,
            tenant_id=args.tenant,
            snapshot=snapshot,
            previous_values=previous,
        )
        report = engine.dispatch_event(event)
        pending = [c.to_json() for c in engine.pending_continuations()]
    finally:
        engine.shutdown()

    _print_json(
        {
            "report": report.to_json(),
            "side_effects": [c.to_json() for c in gateway.calls],
            "pending_continuations": pending,
        }
    )
    return 0 if not report.failed else 1


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = EngineSettings()
    except ValidationError as e:
        # Logging isn't configured yet; keep it simple and actionable.
        print("Configuration error (check your .env):", file=sys.stderr)
        print(e, file=sys.stderr)
        return 2

    configure_logging(settings.log_level)

    try:
        if args.command == "validate":
            return _cmd_validate(args)
        if args.command == "list-rules":
            return _cmd_list_rules(args, settings)
        if args.command == "simulate":
            return _cmd_simulate(args, settings)

        logger.error("Unknown command", extra={"command": args.command})
        return 2

    except (OSError, ValueError, GraphStoreError) as e:
        logger.error("Command failed", extra={"command": args.command, "error": str(e)})
        print(str(e), file=sys.stderr)
        return 2

    except Exception:
        logger.exception("Command failed")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
