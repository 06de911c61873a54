"""JSON-file rule store.

Rules are persisted as a list of records, each holding one authored graph.
Only records carrying a `_graphVersion: 2` graph are executable; older rule
formats are listed but never loaded for execution.
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

from pydantic import BaseModel, ValidationError

from .errors import GraphStoreError
from .models import GRAPH_VERSION, TriggerEventType, WorkflowGraph

logger = logging.getLogger(__name__)


class RuleRecord(BaseModel):
    id: str
    tenant_id: str
    name: str = ""
    trigger_type: str
    active: bool = True
    sort_order: int = 0
    graph: dict[str, object] | None = None
    updated_at: str | None = None

    @property
    def graph_version(self) -> int | None:
        if self.graph is None:
            return None
        raw = self.graph.get("_graphVersion", self.graph.get("graph_version"))
        return raw if isinstance(raw, int) else None

    def to_graph(self) -> WorkflowGraph:
        """Build the executable graph. Raises ValueError for legacy or invalid records."""

        if self.graph is None or self.graph_version != GRAPH_VERSION:
            raise ValueError(f"Rule {self.id} has no version {GRAPH_VERSION} graph")
        return WorkflowGraph.model_validate(
            {
                **self.graph,
                "id": self.id,
                "tenant_id": self.tenant_id,
                "name": self.name,
                "enabled": self.active,
                "sort_order": self.sort_order,
            }
        )


def graph_payload(graph: WorkflowGraph) -> dict[str, object]:
    """Serialize a graph the way the builder stores it."""

    body = graph.model_dump(mode="json", include={"nodes", "edges"}, by_alias=True)
    return {"_graphVersion": GRAPH_VERSION, **body}


def _utc_iso_now() -> str:
    return datetime.now(tz=UTC).isoformat()


@dataclass
class JsonGraphStore:
    path: Path

    def __post_init__(self) -> None:
        self._lock = threading.Lock()

    def _load_unlocked(self) -> list[RuleRecord]:
        if not self.path.exists():
            return []
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise GraphStoreError(f"Cannot read rule store {self.path}: {e}") from e
        if not isinstance(raw, list):
            raise GraphStoreError(f"Rule store {self.path} must contain a JSON list")

        records: list[RuleRecord] = []
        for item in raw:
            try:
                records.append(RuleRecord.model_validate(item))
            except ValidationError as e:
                logger.warning(
                    "Skipping malformed rule record",
                    extra={"path": str(self.path), "error": str(e)},
                )
        return records

    def _save_unlocked(self, records: list[RuleRecord]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = [r.model_dump(mode="json") for r in records]
        self.path.write_text(
            json.dumps(payload, indent=2, ensure_ascii=False) + "\n", encoding="utf-8"
        )

    def list_rules(
        self, tenant_id: str, event_type: TriggerEventType | str | None = None
    ) -> list[RuleRecord]:
        wanted = TriggerEventType(event_type).value if event_type is not None else None
        with self._lock:
            records = self._load_unlocked()
        out = [
            r
            for r in records
            if r.tenant_id == tenant_id and (wanted is None or r.trigger_type == wanted)
        ]
        return sorted(out, key=lambda r: (r.sort_order, r.id))

    def get(self, rule_id: str) -> RuleRecord | None:
        with self._lock:
            for record in self._load_unlocked():
                if record.id == rule_id:
                    return record
            return None

    def load_enabled_graphs(
        self, *, tenant_id: str, event_type: TriggerEventType
    ) -> list[WorkflowGraph]:
        graphs: list[WorkflowGraph] = []
        for record in self.list_rules(tenant_id, event_type):
            if not record.active:
                continue
            if record.graph_version != GRAPH_VERSION:
                logger.debug(
                    "Skipping legacy rule",
                    extra={"rule_id": record.id, "tenant_id": tenant_id},
                )
                continue
            try:
                graphs.append(record.to_graph())
            except (ValueError, ValidationError) as e:
                logger.warning(
                    "Skipping rule with invalid graph",
                    extra={"rule_id": record.id, "tenant_id": tenant_id, "error": str(e)},
                )
        return graphs

    def save(self, graph: WorkflowGraph) -> RuleRecord:
        """Insert or replace the rule record for `graph`."""

        trigger = graph.trigger_event_type
        if trigger is None:
            raise ValueError(f"Graph {graph.id} must have exactly one trigger node")

        record = RuleRecord(
            id=graph.id,
            tenant_id=graph.tenant_id,
            name=graph.name,
            trigger_type=trigger.value,
            active=graph.enabled,
            sort_order=graph.sort_order,
            graph=graph_payload(graph),
            updated_at=_utc_iso_now(),
        )
        with self._lock:
            records = [r for r in self._load_unlocked() if r.id != graph.id]
            records.append(record)
            self._save_unlocked(records)
        return record
