"""Graph walker: executes one rule graph against one event.

Execution within a walk is strictly sequential. A walk ends at a dead branch,
at a node with no outgoing edge, at a delay node (the remainder is handed to
the delay scheduler) or on a structural problem. Structural problems only
end the walk of the graph they were found in.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

from .actions import ActionDispatcher
from .conditions import evaluate, evaluate_condition
from .errors import GraphStructureError
from .events import WorkflowEvent
from .models import (
    ActionNode,
    BranchLabel,
    ConditionNode,
    DelayNode,
    TriggerNode,
    WorkflowGraph,
)

logger = logging.getLogger(__name__)


class StepStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    BRANCHED = "branched"
    DEFERRED = "deferred"
    SKIPPED = "skipped"


class WalkTermination(str, Enum):
    COMPLETED = "completed"
    DEAD_BRANCH = "dead_branch"
    DEFERRED = "deferred"
    CYCLE_DETECTED = "cycle_detected"
    STRUCTURE_ERROR = "structure_error"
    TRIGGER_MISMATCH = "trigger_mismatch"
    FILTERED = "filtered"
    INTERNAL_ERROR = "internal_error"


@dataclass(frozen=True, slots=True)
class NodeStep:
    node_id: str
    node_type: str
    status: StepStatus
    message: str = ""
    branch: str | None = None
    continuation_id: str | None = None

    def to_json(self) -> dict[str, object]:
        out: dict[str, object] = {
            "node_id": self.node_id,
            "node_type": self.node_type,
            "status": self.status.value,
        }
        if self.message:
            out["message"] = self.message
        if self.branch is not None:
            out["branch"] = self.branch
        if self.continuation_id is not None:
            out["continuation_id"] = self.continuation_id
        return out


@dataclass(slots=True)
class WalkResult:
    """What happened during one synchronous walk of one graph."""

    graph_id: str
    event_id: str
    steps: list[NodeStep] = field(default_factory=list)
    termination: WalkTermination = WalkTermination.COMPLETED
    errors: list[str] = field(default_factory=list)
    continuations: list[str] = field(default_factory=list)

    @property
    def failed_nodes(self) -> list[str]:
        return [s.node_id for s in self.steps if s.status is StepStatus.FAILED]

    @property
    def visited_node_ids(self) -> list[str]:
        return [s.node_id for s in self.steps]

    @property
    def ok(self) -> bool:
        return not self.errors and not self.failed_nodes

    def to_json(self) -> dict[str, object]:
        return {
            "graph_id": self.graph_id,
            "event_id": self.event_id,
            "ok": self.ok,
            "termination": self.termination.value,
            "steps": [s.to_json() for s in self.steps],
            "errors": list(self.errors),
            "continuations": list(self.continuations),
        }


class ContinuationScheduler(Protocol):
    """The part of the delay scheduler the walker needs."""

    def schedule(
        self,
        *,
        graph: WorkflowGraph,
        resume_node_id: str,
        event: WorkflowEvent,
        delay: object,
    ) -> str: ...


class GraphWalker:
    """Walks rule graphs, dispatching actions and deferring delays."""

    def __init__(self, *, dispatcher: ActionDispatcher, scheduler: ContinuationScheduler) -> None:
        self._dispatcher = dispatcher
        self._scheduler = scheduler

    def run(self, graph: WorkflowGraph, event: WorkflowEvent) -> WalkResult:
        """Walk from the graph's trigger node."""

        result = WalkResult(graph_id=graph.id, event_id=event.event_id)
        try:
            trigger = self._single_trigger(graph)
        except GraphStructureError as e:
            return self._structure_failure(result, e, event)

        if trigger.data.event_type != event.type:
            result.termination = WalkTermination.TRIGGER_MISMATCH
            result.steps.append(
                NodeStep(
                    node_id=trigger.id,
                    node_type=trigger.type,
                    status=StepStatus.SKIPPED,
                    message=f"Trigger expects {trigger.data.event_type.value!r}",
                )
            )
            return result

        for condition in trigger.data.filters:
            if not evaluate_condition(condition, event):
                result.termination = WalkTermination.FILTERED
                result.steps.append(
                    NodeStep(
                        node_id=trigger.id,
                        node_type=trigger.type,
                        status=StepStatus.SKIPPED,
                        message=f"Trigger filter not met: {condition.field} "
                        f"{condition.operator.value} {condition.value!r}",
                    )
                )
                return result

        visited = {trigger.id}
        result.steps.append(
            NodeStep(node_id=trigger.id, node_type=trigger.type, status=StepStatus.SUCCEEDED)
        )
        try:
            next_id = self._single_successor(graph, trigger.id)
        except GraphStructureError as e:
            return self._structure_failure(result, e, event)
        if next_id is None:
            return result
        return self._walk(graph, next_id, event, result, visited)

    def resume(self, graph: WorkflowGraph, node_id: str, event: WorkflowEvent) -> WalkResult:
        """Continue a walk at `node_id` (used when a delay elapses).

        This is a fresh walk instance with its own visited set.
        """

        result = WalkResult(graph_id=graph.id, event_id=event.event_id)
        return self._walk(graph, node_id, event, result, set())

    def _walk(
        self,
        graph: WorkflowGraph,
        start_id: str,
        event: WorkflowEvent,
        result: WalkResult,
        visited: set[str],
    ) -> WalkResult:
        current: str | None = start_id
        try:
            while current is not None:
                if current in visited:
                    error = GraphStructureError(graph.id, "Cycle detected", node_id=current)
                    result.termination = WalkTermination.CYCLE_DETECTED
                    result.errors.append(str(error))
                    logger.warning(
                        "Workflow walk stopped on a cycle",
                        extra=self._extra(graph, current, event),
                    )
                    return result
                visited.add(current)

                node = graph.get_node(current)
                if node is None:
                    raise GraphStructureError(
                        graph.id, f"Edge points to missing node {current!r}"
                    )

                if isinstance(node, ConditionNode):
                    current = self._visit_condition(graph, node, event, result)
                elif isinstance(node, ActionNode):
                    current = self._visit_action(graph, node, event, result)
                elif isinstance(node, DelayNode):
                    self._visit_delay(graph, node, event, result)
                    return result
                elif isinstance(node, TriggerNode):
                    raise GraphStructureError(
                        graph.id, "Trigger node reached mid-walk", node_id=node.id
                    )
        except GraphStructureError as e:
            return self._structure_failure(result, e, event)
        return result

    def _visit_condition(
        self,
        graph: WorkflowGraph,
        node: ConditionNode,
        event: WorkflowEvent,
        result: WalkResult,
    ) -> str | None:
        outcome = evaluate(node.data.conditions, node.data.logic, event)
        label = BranchLabel.TRUE if outcome else BranchLabel.FALSE
        result.steps.append(
            NodeStep(
                node_id=node.id,
                node_type=node.type,
                status=StepStatus.BRANCHED,
                branch=label.value,
            )
        )

        edges = [e for e in graph.outgoing(node.id) if e.branch is label]
        if len(edges) > 1:
            raise GraphStructureError(
                graph.id, f"Condition has more than one {label.value!r} edge", node_id=node.id
            )
        if not edges:
            result.termination = WalkTermination.DEAD_BRANCH
            logger.debug(
                "Condition branch has no edge; walk ends",
                extra={**self._extra(graph, node.id, event), "branch": label.value},
            )
            return None
        return edges[0].target

    def _visit_action(
        self,
        graph: WorkflowGraph,
        node: ActionNode,
        event: WorkflowEvent,
        result: WalkResult,
    ) -> str | None:
        action_result = self._dispatcher.execute(
            node.data, event, graph_id=graph.id, node_id=node.id
        )
        if action_result.ok:
            status = StepStatus.SKIPPED if action_result.skipped else StepStatus.SUCCEEDED
        else:
            status = StepStatus.FAILED
        result.steps.append(
            NodeStep(
                node_id=node.id,
                node_type=node.type,
                status=status,
                message=action_result.message,
            )
        )
        return self._single_successor(graph, node.id)

    def _visit_delay(
        self,
        graph: WorkflowGraph,
        node: DelayNode,
        event: WorkflowEvent,
        result: WalkResult,
    ) -> None:
        target = self._single_successor(graph, node.id)
        if target is None:
            result.steps.append(
                NodeStep(
                    node_id=node.id,
                    node_type=node.type,
                    status=StepStatus.SUCCEEDED,
                    message="Delay has no successor",
                )
            )
            return
        if graph.get_node(target) is None:
            raise GraphStructureError(
                graph.id, f"Edge points to missing node {target!r}", node_id=node.id
            )

        continuation_id = self._scheduler.schedule(
            graph=graph, resume_node_id=target, event=event, delay=node.data.duration
        )
        result.steps.append(
            NodeStep(
                node_id=node.id,
                node_type=node.type,
                status=StepStatus.DEFERRED,
                message=f"Resumes at {target} after {node.data.amount} {node.data.unit.value}",
                continuation_id=continuation_id,
            )
        )
        result.continuations.append(continuation_id)
        result.termination = WalkTermination.DEFERRED

    @staticmethod
    def _single_trigger(graph: WorkflowGraph) -> TriggerNode:
        triggers = graph.trigger_nodes()
        if not triggers:
            raise GraphStructureError(graph.id, "Graph has no trigger node")
        if len(triggers) > 1:
            raise GraphStructureError(graph.id, "Graph has more than one trigger node")
        return triggers[0]

    @staticmethod
    def _single_successor(graph: WorkflowGraph, node_id: str) -> str | None:
        edges = graph.outgoing(node_id)
        if len(edges) > 1:
            raise GraphStructureError(
                graph.id, "Node has more than one outgoing edge", node_id=node_id
            )
        return edges[0].target if edges else None

    @staticmethod
    def _extra(
        graph: WorkflowGraph, node_id: str | None, event: WorkflowEvent
    ) -> dict[str, object]:
        return {
            "graph_id": graph.id,
            "node_id": node_id,
            "tenant_id": event.tenant_id,
            "event_id": event.event_id,
            "event_type": event.type.value,
        }

    def _structure_failure(
        self, result: WalkResult, error: GraphStructureError, event: WorkflowEvent
    ) -> WalkResult:
        result.termination = WalkTermination.STRUCTURE_ERROR
        result.errors.append(str(error))
        logger.error(
            "Malformed workflow graph; walk terminated",
            extra={
                "graph_id": error.graph_id,
                "node_id": error.node_id,
                "tenant_id": event.tenant_id,
                "event_id": event.event_id,
                "error": error.message,
            },
        )
        return result
