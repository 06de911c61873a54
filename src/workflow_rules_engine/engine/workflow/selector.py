"""Rule selection and per-event dispatch.

Each matching graph is an independent rule instance: graphs for one event
run concurrently on a thread pool, share no mutable state, and one graph's
failure never affects another's walk. Events dispatched synchronously from
inside a walk run their graphs inline on the calling thread.
"""

from __future__ import annotations

import contextvars
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field

from workflow_rules_engine.engine.config import EngineSettings
from workflow_rules_engine.engine.logging import log_context

from .collaborators import GraphRepository
from .events import WorkflowEvent
from .models import TriggerEventType, WorkflowGraph
from .scheduler import PendingContinuation
from .walker import GraphWalker, WalkResult, WalkTermination

logger = logging.getLogger(__name__)

# Graph ids executing in the current logical call chain. An action that
# synchronously emits another event runs inside this context.
_ACTIVE_GRAPHS: contextvars.ContextVar[frozenset[str]] = contextvars.ContextVar(
    "workflow_active_graphs", default=frozenset()
)


@dataclass(slots=True)
class DispatchReport:
    tenant_id: str
    event_type: str
    event_id: str
    results: list[WalkResult] = field(default_factory=list)
    skipped_graph_ids: list[str] = field(default_factory=list)
    skipped_reason: str | None = None

    @property
    def succeeded(self) -> list[WalkResult]:
        return [r for r in self.results if r.ok]

    @property
    def failed(self) -> list[WalkResult]:
        return [r for r in self.results if not r.ok]

    def to_json(self) -> dict[str, object]:
        out: dict[str, object] = {
            "tenant_id": self.tenant_id,
            "event_type": self.event_type,
            "event_id": self.event_id,
            "succeeded": len(self.succeeded),
            "failed": len(self.failed),
            "results": [r.to_json() for r in self.results],
        }
        if self.skipped_graph_ids:
            out["skipped_graph_ids"] = list(self.skipped_graph_ids)
        if self.skipped_reason:
            out["skipped_reason"] = self.skipped_reason
        return out


class RuleSelector:
    """Loads the tenant's enabled graphs for an event and walks each one."""

    def __init__(
        self,
        *,
        repository: GraphRepository,
        walker: GraphWalker,
        settings: EngineSettings,
        executor: ThreadPoolExecutor | None = None,
    ) -> None:
        self._repository = repository
        self._walker = walker
        self._settings = settings
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=settings.max_concurrent_graphs, thread_name_prefix="workflow-graph"
        )

    def dispatch(
        self, tenant_id: str, event_type: TriggerEventType | str, event: WorkflowEvent
    ) -> DispatchReport:
        event_type = TriggerEventType(event_type)
        report = DispatchReport(
            tenant_id=tenant_id, event_type=event_type.value, event_id=event.event_id
        )
        extra = {"tenant_id": tenant_id, "event_type": event_type.value, "event_id": event.event_id}

        if not self._settings.workflow_rules_enabled:
            report.skipped_reason = "workflow rules disabled"
            logger.info("Workflow rules disabled; event ignored", extra=extra)
            return report

        if event.tenant_id != tenant_id:
            report.skipped_reason = "tenant mismatch"
            logger.error("Event tenant does not match dispatch tenant", extra=extra)
            return report

        try:
            loaded = self._repository.load_enabled_graphs(
                tenant_id=tenant_id, event_type=event_type
            )
        except Exception:
            report.skipped_reason = "graph load failed"
            logger.exception("Failed to load workflow graphs", extra=extra)
            return report

        graphs = [
            g
            for g in loaded
            if g.enabled and g.tenant_id == tenant_id and g.trigger_event_type == event_type
        ]
        if not graphs:
            logger.debug("No workflow graphs match event", extra=extra)
            return report

        active = _ACTIVE_GRAPHS.get()
        runnable: list[WorkflowGraph] = []
        for graph in graphs:
            if graph.id in active:
                report.skipped_graph_ids.append(graph.id)
                logger.warning(
                    "Skipping re-entrant workflow graph", extra={**extra, "graph_id": graph.id}
                )
            else:
                runnable.append(graph)

        logger.info(
            "Dispatching workflow graphs",
            extra={**extra, "graph_ids": [g.id for g in runnable], "nested": bool(active)},
        )

        if active:
            # Nested dispatch from inside a walk: a pool worker must never wait
            # on its own pool, so run the nested graphs on this thread.
            report.results = [
                contextvars.copy_context().run(self._run_graph, graph, event, active)
                for graph in runnable
            ]
        else:
            futures = []
            for graph in runnable:
                ctx = contextvars.copy_context()
                futures.append(
                    self._executor.submit(ctx.run, self._run_graph, graph, event, active)
                )
            report.results = [f.result() for f in futures]
        logger.info(
            "Workflow dispatch finished",
            extra={**extra, "succeeded": len(report.succeeded), "failed": len(report.failed)},
        )
        return report

    def _run_graph(
        self, graph: WorkflowGraph, event: WorkflowEvent, active: frozenset[str]
    ) -> WalkResult:
        _ACTIVE_GRAPHS.set(active | {graph.id})
        try:
            with log_context(
                graph_id=graph.id, tenant_id=event.tenant_id, event_id=event.event_id
            ):
                result = self._walker.run(graph, event)
        except Exception as e:
            logger.exception(
                "Workflow graph walk crashed",
                extra={
                    "graph_id": graph.id,
                    "tenant_id": event.tenant_id,
                    "event_id": event.event_id,
                },
            )
            result = WalkResult(
                graph_id=graph.id,
                event_id=event.event_id,
                termination=WalkTermination.INTERNAL_ERROR,
                errors=[f"{type(e).__name__}: {e}"],
            )
        self._log_result(result, event)
        return result

    def resume(self, continuation: PendingContinuation) -> WalkResult:
        """Run the remainder of a delayed walk with the originally captured event."""

        graph = continuation.graph
        event = continuation.event
        token = _ACTIVE_GRAPHS.set(_ACTIVE_GRAPHS.get() | {graph.id})
        try:
            with log_context(
                graph_id=graph.id,
                tenant_id=event.tenant_id,
                event_id=event.event_id,
                continuation_id=continuation.continuation_id,
            ):
                result = self._walker.resume(graph, continuation.resume_node_id, event)
        except Exception as e:
            logger.exception(
                "Resumed workflow walk crashed",
                extra={
                    "graph_id": graph.id,
                    "tenant_id": event.tenant_id,
                    "event_id": event.event_id,
                },
            )
            result = WalkResult(
                graph_id=graph.id,
                event_id=event.event_id,
                termination=WalkTermination.INTERNAL_ERROR,
                errors=[f"{type(e).__name__}: {e}"],
            )
        finally:
            _ACTIVE_GRAPHS.reset(token)
        self._log_result(result, event)
        return result

    @staticmethod
    def _log_result(result: WalkResult, event: WorkflowEvent) -> None:
        extra = {
            "graph_id": result.graph_id,
            "tenant_id": event.tenant_id,
            "event_id": event.event_id,
            "termination": result.termination.value,
            "visited": result.visited_node_ids,
        }
        if result.ok:
            logger.info("Workflow walk finished", extra=extra)
        else:
            logger.warning(
                "Workflow walk finished with failures",
                extra={**extra, "failed_nodes": result.failed_nodes, "errors": result.errors},
            )

    def close(self) -> None:
        if self._owns_executor:
            self._executor.shutdown(wait=True)
