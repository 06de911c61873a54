"""Workflow engine facade.

Entity mutation code calls `on_domain_event` after a change has been
persisted. The engine never reaches into storage; everything it does goes
through the collaborators it was built with.
"""

from __future__ import annotations

import contextvars
import logging
from collections.abc import Mapping
from concurrent.futures import Future, ThreadPoolExecutor

import requests

from workflow_rules_engine.engine.config import EngineSettings

from .actions import ActionDispatcher
from .collaborators import EntityGateway, GraphRepository, NotificationGateway
from .events import WorkflowEvent
from .models import TriggerEventType
from .scheduler import DelayScheduler, InProcessDelayScheduler, PendingContinuation
from .selector import DispatchReport, RuleSelector
from .walker import GraphWalker

logger = logging.getLogger(__name__)


class WorkflowEngine:
    def __init__(
        self,
        *,
        settings: EngineSettings,
        repository: GraphRepository,
        entities: EntityGateway,
        notifications: NotificationGateway,
        scheduler: DelayScheduler | None = None,
        http: requests.Session | None = None,
    ) -> None:
        self.settings = settings
        self.scheduler: DelayScheduler = scheduler or InProcessDelayScheduler()
        self.dispatcher = ActionDispatcher(
            entities=entities, notifications=notifications, settings=settings, http=http
        )
        self.walker = GraphWalker(dispatcher=self.dispatcher, scheduler=self.scheduler)
        self.selector = RuleSelector(repository=repository, walker=self.walker, settings=settings)
        self.scheduler.set_handler(self.selector.resume)
        self._events = ThreadPoolExecutor(max_workers=1, thread_name_prefix="workflow-events")

    def start(self) -> None:
        self.scheduler.start()
        logger.info(
            "Workflow engine started",
            extra={
                "rules_enabled": self.settings.workflow_rules_enabled,
                "max_concurrent_graphs": self.settings.max_concurrent_graphs,
            },
        )

    def shutdown(self) -> None:
        # Queued events may still schedule continuations; drain them first.
        self._events.shutdown(wait=True)
        self.selector.close()
        self.scheduler.shutdown()
        self.dispatcher.close()
        logger.info("Workflow engine stopped")

    def on_domain_event(
        self,
        tenant_id: str,
        event_type: TriggerEventType | str,
        snapshot: Mapping[str, object],
        previous_values: Mapping[str, object] | None = None,
    ) -> Future[DispatchReport]:
        """Capture the event now and run matching rules in the background.

        The snapshot is copied before this returns, so the caller may keep
        mutating its own objects. Rule failures never surface here; invalid
        input (unknown event type, empty tenant) raises ValueError.
        """

        event = WorkflowEvent.capture(
            event_type=event_type,
            tenant_id=tenant_id,
            snapshot=snapshot,
            previous_values=previous_values,
        )
        return self.submit(event)

    def submit(self, event: WorkflowEvent) -> Future[DispatchReport]:
        logger.debug(
            "Domain event received",
            extra={
                "tenant_id": event.tenant_id,
                "event_type": event.type.value,
                "event_id": event.event_id,
            },
        )
        ctx = contextvars.copy_context()
        return self._events.submit(ctx.run, self.dispatch_event, event)

    def dispatch_event(self, event: WorkflowEvent) -> DispatchReport:
        """Run every matching rule for an already captured event and wait for the walks."""

        return self.selector.dispatch(event.tenant_id, event.type, event)

    def pending_continuations(self) -> list[PendingContinuation]:
        return self.scheduler.pending()
