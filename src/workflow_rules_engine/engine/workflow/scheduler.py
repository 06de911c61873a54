"""Delay scheduling for paused walks.

`InProcessDelayScheduler` keeps continuations in memory and arms one-shot
APScheduler jobs for them. Continuations are lost if the process exits
before they fire; at-most-once, only while the process survives. A durable
backend can replace it by implementing `DelayScheduler`.
"""

from __future__ import annotations

import logging
import threading
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Protocol

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.date import DateTrigger

from .events import WorkflowEvent
from .models import WorkflowGraph

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class PendingContinuation:
    """Saved walk state: resume `graph` at `resume_node_id` with the original event."""

    continuation_id: str
    graph: WorkflowGraph
    resume_node_id: str
    event: WorkflowEvent
    resume_at: datetime

    @property
    def graph_id(self) -> str:
        return self.graph.id

    def to_json(self) -> dict[str, object]:
        return {
            "continuation_id": self.continuation_id,
            "graph_id": self.graph_id,
            "tenant_id": self.event.tenant_id,
            "resume_node_id": self.resume_node_id,
            "event_id": self.event.event_id,
            "event_type": self.event.type.value,
            "resume_at": self.resume_at.isoformat(),
        }


ContinuationHandler = Callable[[PendingContinuation], object]


class DelayScheduler(Protocol):
    def set_handler(self, handler: ContinuationHandler) -> None: ...

    def schedule(
        self,
        *,
        graph: WorkflowGraph,
        resume_node_id: str,
        event: WorkflowEvent,
        delay: timedelta,
    ) -> str: ...

    def pending(self) -> list[PendingContinuation]: ...

    def fire(self, continuation_id: str) -> bool: ...

    def cancel_all(self) -> int: ...

    def start(self) -> None: ...

    def shutdown(self) -> None: ...


class InProcessDelayScheduler:
    """One-shot timers on a background APScheduler thread.

    Waiting does not hold a thread per continuation; APScheduler runs due jobs
    on its executor pool.
    """

    def __init__(
        self,
        *,
        scheduler: BackgroundScheduler | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._scheduler = scheduler or BackgroundScheduler(timezone=UTC)
        self._clock = clock or (lambda: datetime.now(tz=UTC))
        self._handler: ContinuationHandler | None = None
        self._pending: dict[str, PendingContinuation] = {}
        self._lock = threading.Lock()

    def set_handler(self, handler: ContinuationHandler) -> None:
        self._handler = handler

    @property
    def running(self) -> bool:
        return bool(self._scheduler.running)

    def start(self) -> None:
        if not self._scheduler.running:
            self._scheduler.start()
            logger.info("Delay scheduler started")

    def shutdown(self) -> None:
        """Stop the timer thread. Pending continuations are dropped."""

        with self._lock:
            dropped = len(self._pending)
            self._pending.clear()
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        logger.info("Delay scheduler stopped", extra={"dropped_continuations": dropped})

    def schedule(
        self,
        *,
        graph: WorkflowGraph,
        resume_node_id: str,
        event: WorkflowEvent,
        delay: timedelta,
    ) -> str:
        continuation_id = uuid.uuid4().hex
        resume_at = self._clock() + delay
        continuation = PendingContinuation(
            continuation_id=continuation_id,
            graph=graph,
            resume_node_id=resume_node_id,
            event=event,
            resume_at=resume_at,
        )
        with self._lock:
            self._pending[continuation_id] = continuation

        self._scheduler.add_job(
            self._on_timer,
            trigger=DateTrigger(run_date=resume_at),
            id=continuation_id,
            args=[continuation_id],
            name=f"workflow-resume-{graph.id}-{resume_node_id}",
            misfire_grace_time=None,
            replace_existing=True,
        )
        logger.info(
            "Workflow continuation scheduled",
            extra={
                "continuation_id": continuation_id,
                "graph_id": graph.id,
                "node_id": resume_node_id,
                "tenant_id": event.tenant_id,
                "event_id": event.event_id,
                "resume_at": resume_at.isoformat(),
            },
        )
        return continuation_id

    def pending(self) -> list[PendingContinuation]:
        with self._lock:
            return sorted(self._pending.values(), key=lambda c: c.resume_at)

    def get(self, continuation_id: str) -> PendingContinuation | None:
        with self._lock:
            return self._pending.get(continuation_id)

    def fire(self, continuation_id: str) -> bool:
        """Fire a continuation now instead of waiting for its timer.

        Returns False when the id is unknown (already fired or never scheduled).
        """

        try:
            self._scheduler.remove_job(continuation_id)
        except JobLookupError:
            pass
        return self._run(continuation_id)

    def cancel_all(self) -> int:
        """Drop every pending continuation and its timer. Returns how many were dropped."""

        with self._lock:
            cancelled = list(self._pending)
            self._pending.clear()
            for continuation_id in cancelled:
                try:
                    self._scheduler.remove_job(continuation_id)
                except JobLookupError:
                    pass
        if cancelled:
            logger.info(
                "Workflow continuations cancelled",
                extra={"cancelled_continuations": len(cancelled)},
            )
        return len(cancelled)

    def _on_timer(self, continuation_id: str) -> None:
        self._run(continuation_id)

    def _run(self, continuation_id: str) -> bool:
        with self._lock:
            continuation = self._pending.pop(continuation_id, None)
        if continuation is None:
            return False

        extra = {
            "continuation_id": continuation_id,
            "graph_id": continuation.graph_id,
            "node_id": continuation.resume_node_id,
            "tenant_id": continuation.event.tenant_id,
            "event_id": continuation.event.event_id,
        }
        if self._handler is None:
            logger.error("Continuation fired with no handler bound; dropped", extra=extra)
            return True

        logger.info("Workflow continuation firing", extra=extra)
        try:
            self._handler(continuation)
        except Exception:
            logger.exception("Workflow continuation failed", extra=extra)
        return True
