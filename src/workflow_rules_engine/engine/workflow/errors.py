"""Error taxonomy for the workflow engine.

None of these reach the code path that emitted the domain event. They are
recorded on walk results and logged with graph/node/event context.
"""

from __future__ import annotations

from dataclasses import dataclass


class WorkflowEngineError(Exception):
    """Base class for engine errors."""


class ConditionEvaluationError(WorkflowEngineError):
    """Reserved: condition ambiguity resolves to False instead of raising."""


@dataclass(frozen=True, slots=True)
class ActionExecutionError(WorkflowEngineError):
    """A single action node's side effect failed.

    Carried in `ActionResult.error`. Not retried automatically.
    """

    action_type: str
    message: str
    node_id: str | None = None
    cause: str | None = None

    def __str__(self) -> str:
        where = f" at node {self.node_id}" if self.node_id else ""
        return f"Action {self.action_type!r}{where} failed: {self.message}"


@dataclass(frozen=True, slots=True)
class GraphStructureError(WorkflowEngineError):
    """A malformed graph detected while walking it."""

    graph_id: str
    message: str
    node_id: str | None = None

    def __str__(self) -> str:
        where = f" (node {self.node_id})" if self.node_id else ""
        return f"Graph {self.graph_id}: {self.message}{where}"


class CollaboratorError(WorkflowEngineError):
    """An external collaborator rejected or failed an operation."""


class GraphStoreError(WorkflowEngineError):
    """The rule store could not be read or written."""
