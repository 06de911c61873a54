"""Interfaces the engine consumes from the rest of the back office.

Every operation takes an explicit `tenant_id`. Implementations signal failure
by raising (typically `CollaboratorError`); the action dispatcher converts
that into a recorded `ActionExecutionError`.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Protocol

from pydantic import BaseModel, Field

from .models import TriggerEventType, WorkflowGraph


class NotificationSettings(BaseModel):
    """Per-tenant notification switches used to short-circuit notification actions."""

    enabled: bool = True
    disabled_events: list[str] = Field(default_factory=list)

    def allows(self, template_event_type: str) -> bool:
        return self.enabled and template_event_type not in self.disabled_events


class EntityGateway(Protocol):
    def update_entity_field(
        self, *, tenant_id: str, entity_type: str, entity_id: str, field: str, value: object
    ) -> None: ...

    def transition_status(
        self,
        *,
        tenant_id: str,
        entity_type: str,
        entity_id: str,
        new_status: str,
        comment: str,
        actor_id: str,
    ) -> None: ...

    def add_tag(self, *, tenant_id: str, entity_type: str, entity_id: str, tag: str) -> None: ...

    def remove_tag(
        self, *, tenant_id: str, entity_type: str, entity_id: str, tag: str
    ) -> None: ...

    def create_ticket(self, *, tenant_id: str, fields: Mapping[str, object]) -> str:
        """Create a ticket and return its id."""
        ...

    def add_ticket_message(
        self, *, tenant_id: str, ticket_id: str, content: str, internal: bool, actor_id: str
    ) -> None: ...

    def add_timeline_entry(
        self,
        *,
        tenant_id: str,
        entity_type: str,
        entity_id: str,
        status: str,
        comment: str,
        actor_id: str,
    ) -> None:
        """Append a timeline entry without transitioning the entity."""
        ...


class NotificationGateway(Protocol):
    def send_notification(
        self, *, tenant_id: str, event_type: str, recipient_context: Mapping[str, object]
    ) -> None:
        """Render the tenant's template for `event_type` and enqueue delivery."""
        ...

    def send_custom_email(
        self,
        *,
        tenant_id: str,
        recipient_email: str,
        subject: str,
        body: str,
        context: Mapping[str, object],
    ) -> None: ...

    def load_tenant_notification_settings(self, *, tenant_id: str) -> NotificationSettings: ...


class GraphRepository(Protocol):
    def load_enabled_graphs(
        self, *, tenant_id: str, event_type: TriggerEventType
    ) -> list[WorkflowGraph]: ...
