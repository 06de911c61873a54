"""Collaborators that record intended side effects instead of performing them."""

from __future__ import annotations

import threading
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

import requests

from .collaborators import NotificationSettings
from .events import thaw


@dataclass(frozen=True, slots=True)
class RecordedCall:
    operation: str
    tenant_id: str
    arguments: dict[str, object]

    def to_json(self) -> dict[str, object]:
        return {"operation": self.operation, "tenant_id": self.tenant_id, **self.arguments}


@dataclass
class RecordingGateway:
    """Implements both `EntityGateway` and `NotificationGateway` in memory.

    `notification_settings` maps tenant ids to their settings; tenants not
    listed get notifications enabled.
    """

    notification_settings: dict[str, NotificationSettings] = field(default_factory=dict)
    calls: list[RecordedCall] = field(default_factory=list)

    def __post_init__(self) -> None:
        self._lock = threading.Lock()

    def record(self, operation: str, tenant_id: str, **arguments: object) -> None:
        with self._lock:
            self.calls.append(
                RecordedCall(operation=operation, tenant_id=tenant_id, arguments=arguments)
            )

    def operations(self) -> list[str]:
        with self._lock:
            return [c.operation for c in self.calls]

    def update_entity_field(
        self, *, tenant_id: str, entity_type: str, entity_id: str, field: str, value: object
    ) -> None:
        self.record(
            "update_entity_field",
            tenant_id,
            entity_type=entity_type,
            entity_id=entity_id,
            field=field,
            value=thaw(value),
        )

    def transition_status(
        self,
        *,
        tenant_id: str,
        entity_type: str,
        entity_id: str,
        new_status: str,
        comment: str,
        actor_id: str,
    ) -> None:
        self.record(
            "transition_status",
            tenant_id,
            entity_type=entity_type,
            entity_id=entity_id,
            new_status=new_status,
            comment=comment,
            actor_id=actor_id,
        )

    def add_tag(self, *, tenant_id: str, entity_type: str, entity_id: str, tag: str) -> None:
        self.record("add_tag", tenant_id, entity_type=entity_type, entity_id=entity_id, tag=tag)

    def remove_tag(self, *, tenant_id: str, entity_type: str, entity_id: str, tag: str) -> None:
        self.record(
            "remove_tag", tenant_id, entity_type=entity_type, entity_id=entity_id, tag=tag
        )

    def create_ticket(self, *, tenant_id: str, fields: Mapping[str, object]) -> str:
        ticket_id = f"dry-run-{uuid.uuid4().hex[:8]}"
        self.record("create_ticket", tenant_id, ticket_id=ticket_id, fields=dict(fields))
        return ticket_id

    def add_ticket_message(
        self, *, tenant_id: str, ticket_id: str, content: str, internal: bool, actor_id: str
    ) -> None:
        self.record(
            "add_ticket_message",
            tenant_id,
            ticket_id=ticket_id,
            content=content,
            internal=internal,
            actor_id=actor_id,
        )

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
        self.record(
            "add_timeline_entry",
            tenant_id,
            entity_type=entity_type,
            entity_id=entity_id,
            status=status,
            comment=comment,
            actor_id=actor_id,
        )

    def send_custom_email(
        self,
        *,
        tenant_id: str,
        recipient_email: str,
        subject: str,
        body: str,
        context: Mapping[str, object],
    ) -> None:
        self.record(
            "send_custom_email",
            tenant_id,
            recipient_email=recipient_email,
            subject=subject,
            body=body,
            context=dict(context),
        )

    def send_notification(
        self, *, tenant_id: str, event_type: str, recipient_context: Mapping[str, object]
    ) -> None:
        self.record(
            "send_notification",
            tenant_id,
            event_type=event_type,
            recipient_context=dict(recipient_context),
        )

    def load_tenant_notification_settings(self, *, tenant_id: str) -> NotificationSettings:
        return self.notification_settings.get(tenant_id, NotificationSettings())

    def http_session(self) -> requests.Session:
        """A session whose requests are recorded here and never sent."""

        return RecordingSession(self)


class RecordingSession(requests.Session):
    """Answers every request with an empty 202 and records it on the gateway."""

    def __init__(self, gateway: RecordingGateway) -> None:
        super().__init__()
        self._gateway = gateway

    def request(  # type: ignore[override]
        self, method: str | bytes, url: str | bytes, *args: Any, **kwargs: Any
    ) -> requests.Response:
        method_text = method.decode() if isinstance(method, bytes) else method
        url_text = url.decode() if isinstance(url, bytes) else url
        self._gateway.record(
            "http_request",
            "",
            method=method_text.upper(),
            url=url_text,
            headers=dict(kwargs.get("headers") or {}),
            data=kwargs.get("data"),
        )
        resp = requests.Response()
        resp.status_code = 202
        resp.url = url_text
        resp.reason = "Accepted"
        return resp
