"""Structural validation of rule graphs.

The authoring surface should refuse to save graphs with issues, but stored
graphs are not trusted: the walker re-checks the parts it depends on at walk
time, and the CLI / server expose this full check for operators.
"""

from __future__ import annotations

from collections import defaultdict, deque
from collections.abc import Mapping
from dataclasses import dataclass

from pydantic import ValidationError

from .models import ConditionNode, WorkflowGraph


@dataclass(frozen=True, slots=True)
class GraphIssue:
    message: str
    node_id: str | None = None

    def to_json(self) -> dict[str, object]:
        out: dict[str, object] = {"message": self.message}
        if self.node_id is not None:
            out["node_id"] = self.node_id
        return out


def _adjacency(graph: WorkflowGraph) -> dict[str, list[str]]:
    adjacency: dict[str, list[str]] = defaultdict(list)
    for edge in graph.edges:
        adjacency[edge.source].append(edge.target)
    return adjacency


def reachable_from(graph: WorkflowGraph, start: str) -> set[str]:
    adjacency = _adjacency(graph)
    seen: set[str] = set()
    queue: deque[str] = deque([start])
    while queue:
        current = queue.popleft()
        if current in seen:
            continue
        seen.add(current)
        queue.extend(n for n in adjacency.get(current, []) if n not in seen)
    return seen


def find_cycle(graph: WorkflowGraph) -> list[str] | None:
    """Return the node ids of one cycle (first id repeated at the end), or None."""

    adjacency = _adjacency(graph)
    visited: set[str] = set()
    on_stack: set[str] = set()
    path: list[str] = []

    def dfs(node_id: str) -> list[str] | None:
        visited.add(node_id)
        on_stack.add(node_id)
        path.append(node_id)
        for next_id in adjacency.get(node_id, []):
            if next_id in on_stack:
                return path[path.index(next_id) :] + [next_id]
            if next_id not in visited:
                found = dfs(next_id)
                if found is not None:
                    return found
        path.pop()
        on_stack.discard(node_id)
        return None

    for node in graph.nodes:
        if node.id not in visited:
            cycle = dfs(node.id)
            if cycle is not None:
                return cycle
    return None


def validate_graph(graph: WorkflowGraph) -> list[GraphIssue]:
    """Check the structural invariants of a rule graph. Empty list means valid."""

    issues: list[GraphIssue] = []
    node_ids = [n.id for n in graph.nodes]
    known = set(node_ids)

    seen: set[str] = set()
    for node_id in node_ids:
        if node_id in seen:
            issues.append(GraphIssue("Duplicate node id", node_id=node_id))
        seen.add(node_id)

    triggers = graph.trigger_nodes()
    if not triggers:
        issues.append(GraphIssue("Workflow must have a trigger node"))
    elif len(triggers) > 1:
        issues.append(GraphIssue("Workflow can only have one trigger node"))

    for edge in graph.edges:
        if edge.source not in known:
            issues.append(GraphIssue(f"Edge source {edge.source!r} does not exist"))
        if edge.target not in known:
            issues.append(
                GraphIssue(f"Edge target {edge.target!r} does not exist", node_id=edge.source)
            )

    for node in graph.nodes:
        outgoing = graph.outgoing(node.id)
        if isinstance(node, ConditionNode):
            labels = [e.branch for e in outgoing]
            if any(label is None for label in labels):
                issues.append(GraphIssue("Condition edges must be labeled true/false", node.id))
            for label in {lbl for lbl in labels if lbl is not None}:
                if labels.count(label) > 1:
                    issues.append(
                        GraphIssue(f"Condition has more than one {label.value!r} edge", node.id)
                    )
        elif len(outgoing) > 1:
            issues.append(GraphIssue("Node has more than one outgoing edge", node.id))

    if len(triggers) == 1:
        reachable = reachable_from(graph, triggers[0].id)
        for node in graph.nodes:
            if node.id not in reachable:
                label = node.label or node.id
                issues.append(
                    GraphIssue(f"Node {label!r} is not connected to the workflow", node.id)
                )

    cycle = find_cycle(graph)
    if cycle is not None:
        issues.append(GraphIssue(f"Workflow contains a cycle: {' -> '.join(cycle)}", cycle[0]))

    return issues


def validate_graph_payload(
    raw: Mapping[str, object], *, default_id: str = "graph", default_tenant: str = "-"
) -> tuple[WorkflowGraph | None, list[GraphIssue]]:
    """Parse a builder payload and validate it.

    Shape errors are reported as issues (with no graph) instead of raising.
    """

    try:
        graph = WorkflowGraph.model_validate(
            {"id": default_id, "tenant_id": default_tenant, **raw}
        )
    except ValidationError as e:
        return None, [
            GraphIssue(f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}")
            for err in e.errors()
        ]
    return graph, validate_graph(graph)
