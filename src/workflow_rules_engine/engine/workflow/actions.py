"""Side-effecting workflow actions.

Each action type is one small class built from the node's params. Adding an
action kind means adding a class and one `ACTION_REGISTRY` entry; nothing
else in the engine switches on action type strings.

Actions call exactly one collaborator operation (or one HTTP request for
webhooks). They may raise; `ActionDispatcher` turns every failure into an
`ActionResult` carrying an `ActionExecutionError`, so the walker can record
it and move on.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Protocol

import requests

from workflow_rules_engine.engine.config import EngineSettings

from .collaborators import EntityGateway, NotificationGateway
from .errors import ActionExecutionError
from .events import WorkflowEvent
from .models import ActionData, ActionType, EntityType
from .templating import render_template, render_text

logger = logging.getLogger(__name__)

INTERNAL_NOTIFICATION_EVENT = "workflow_internal"


@dataclass(frozen=True, slots=True)
class ActionResult:
    ok: bool
    message: str
    details: dict[str, object] | None = None
    error: ActionExecutionError | None = None
    skipped: bool = False


@dataclass(frozen=True, slots=True)
class ActionContext:
    """Everything an action may touch, passed explicitly."""

    entities: EntityGateway
    notifications: NotificationGateway
    settings: EngineSettings
    http: requests.Session


class Action(Protocol):
    """A single side effect performed on behalf of a rule."""

    def execute(self, event: WorkflowEvent, ctx: ActionContext) -> ActionResult: ...


class _ActionFailed(Exception):
    """Raised inside an action for a precondition it cannot satisfy."""


def _str_param(params: Mapping[str, object], *names: str, required: bool = False) -> str | None:
    for name in names:
        raw = params.get(name)
        if raw is None:
            continue
        text = str(raw).strip()
        if text:
            return text
    if required:
        raise ValueError(f"Missing required parameter: {names[0]!r}")
    return None


def _bool_param(params: Mapping[str, object], *names: str, default: bool) -> bool:
    for name in names:
        raw = params.get(name)
        if raw is None:
            continue
        if isinstance(raw, bool):
            return raw
        return str(raw).strip().lower() not in ("false", "0", "no", "off", "")
    return default


def _entity_param(params: Mapping[str, object]) -> EntityType | None:
    raw = _str_param(params, "entity", "entity_type")
    if raw is None:
        return None
    try:
        return EntityType(raw)
    except ValueError as e:
        raise ValueError(f"Unknown entity type: {raw!r}") from e


def _target(event: WorkflowEvent, entity: EntityType | None) -> tuple[EntityType, str]:
    entity_type = entity or event.entity_type
    if entity_type is None:
        raise _ActionFailed(f"Event {event.type.value!r} has no target entity")
    entity_id = event.entity_id(entity_type)
    if entity_id is None:
        raise _ActionFailed(f"Snapshot has no {entity_type.value} id")
    return entity_type, entity_id


@dataclass(frozen=True, slots=True)
class UpdateEntityField:
    """Write a literal or templated value to a field of an entity."""

    field: str
    value: object
    entity: EntityType | None = None

    @classmethod
    def from_params(cls, params: Mapping[str, object]) -> UpdateEntityField:
        field_name = _str_param(params, "field", required=True)
        assert field_name is not None
        return cls(field=field_name, value=params.get("value"), entity=_entity_param(params))

    @classmethod
    def priority(cls, params: Mapping[str, object]) -> UpdateEntityField:
        value = _str_param(params, "priority", required=True)
        return cls(field="priority", value=value, entity=_entity_param(params))

    @classmethod
    def assignee(cls, params: Mapping[str, object]) -> UpdateEntityField:
        value = _str_param(params, "assignee", "assign_to", "assignTo", required=True)
        return cls(field="assignedTo", value=value, entity=_entity_param(params))

    def execute(self, event: WorkflowEvent, ctx: ActionContext) -> ActionResult:
        entity_type, entity_id = _target(event, self.entity)
        value = render_template(self.value, event)
        ctx.entities.update_entity_field(
            tenant_id=event.tenant_id,
            entity_type=entity_type.value,
            entity_id=entity_id,
            field=self.field,
            value=value,
        )
        return ActionResult(
            ok=True,
            message="Field updated",
            details={"entity": entity_type.value, "id": entity_id, "field": self.field},
        )


@dataclass(frozen=True, slots=True)
class TransitionStatus:
    """Move an entity through its own status transition (not a raw field write).

    The collaborator's transition owns timeline entries and follow-up
    notifications, so those still fire.
    """

    status: str
    comment: str | None = None
    entity: EntityType | None = None

    @classmethod
    def from_params(cls, params: Mapping[str, object]) -> TransitionStatus:
        status = _str_param(params, "status", required=True)
        assert status is not None
        return cls(
            status=status, comment=_str_param(params, "comment"), entity=_entity_param(params)
        )

    @classmethod
    def approve(cls, params: Mapping[str, object]) -> TransitionStatus:
        return cls(
            status="APPROVED", comment=_str_param(params, "comment"), entity=_entity_param(params)
        )

    @classmethod
    def reject(cls, params: Mapping[str, object]) -> TransitionStatus:
        return cls(
            status="REJECTED",
            comment=_str_param(params, "reason", "comment") or "Rejected by workflow",
            entity=_entity_param(params),
        )

    def execute(self, event: WorkflowEvent, ctx: ActionContext) -> ActionResult:
        entity_type, entity_id = _target(event, self.entity)
        comment = render_text(self.comment, event, default=ctx.settings.default_comment)
        ctx.entities.transition_status(
            tenant_id=event.tenant_id,
            entity_type=entity_type.value,
            entity_id=entity_id,
            new_status=self.status,
            comment=comment,
            actor_id=ctx.settings.system_actor_id,
        )
        return ActionResult(
            ok=True,
            message="Status transitioned",
            details={"entity": entity_type.value, "id": entity_id, "status": self.status},
        )


def _recipient(explicit: str | None, event: WorkflowEvent) -> str:
    return render_text(explicit, event) or render_text("{{customer.email}}", event)


def _recipient_context(event: WorkflowEvent) -> dict[str, object]:
    customer = event.resolve("customer")
    name = ""
    if isinstance(customer, Mapping):
        name = " ".join(
            str(customer.get(k) or "").strip() for k in ("firstName", "lastName")
        ).strip()
    return {
        "customer_name": name,
        "return_id": event.entity_id(EntityType.RETURN),
        "ticket_id": event.entity_id(EntityType.TICKET),
        "customer_id": event.entity_id(EntityType.CUSTOMER),
        "trigger": event.type.value,
        "variables": event.snapshot_dict(),
        "source": "workflow",
    }


@dataclass(frozen=True, slots=True)
class SendNotification:
    """Render the tenant's notification template and enqueue delivery."""

    template: str
    recipient_email: str | None = None
    channel: str = "email"

    @classmethod
    def from_params(cls, params: Mapping[str, object]) -> SendNotification:
        template = _str_param(
            params, "template", "template_event_type", "templateEventType", required=True
        )
        assert template is not None
        return cls(
            template=template,
            recipient_email=_str_param(params, "recipient_email", "recipientEmail"),
            channel=_str_param(params, "channel") or "email",
        )

    def execute(self, event: WorkflowEvent, ctx: ActionContext) -> ActionResult:
        settings = ctx.notifications.load_tenant_notification_settings(tenant_id=event.tenant_id)
        if not settings.allows(self.template):
            return ActionResult(
                ok=True,
                skipped=True,
                message="Notifications disabled for tenant",
                details={"template": self.template},
            )

        recipient = _recipient(self.recipient_email, event)
        if not recipient:
            logger.warning(
                "Notification skipped: no recipient",
                extra={"template": self.template, "tenant_id": event.tenant_id},
            )
            return ActionResult(
                ok=True, skipped=True, message="No recipient", details={"template": self.template}
            )

        context = _recipient_context(event)
        context.update({"recipient_email": recipient, "channel": self.channel})
        ctx.notifications.send_notification(
            tenant_id=event.tenant_id, event_type=self.template, recipient_context=context
        )
        return ActionResult(
            ok=True,
            message="Notification sent",
            details={"template": self.template, "recipient": recipient},
        )


@dataclass(frozen=True, slots=True)
class NotifyInternal:
    """Post an internal (staff-facing) notification."""

    message: str

    @classmethod
    def from_params(cls, params: Mapping[str, object]) -> NotifyInternal:
        message = _str_param(params, "message", "content", required=True)
        assert message is not None
        return cls(message=message)

    def execute(self, event: WorkflowEvent, ctx: ActionContext) -> ActionResult:
        context = _recipient_context(event)
        context.update({"channel": "internal", "message": render_text(self.message, event)})
        ctx.notifications.send_notification(
            tenant_id=event.tenant_id,
            event_type=INTERNAL_NOTIFICATION_EVENT,
            recipient_context=context,
        )
        return ActionResult(ok=True, message="Internal notification sent")


@dataclass(frozen=True, slots=True)
class ChangeTag:
    """Add or remove one tag on an entity."""

    tag: str
    remove: bool = False
    entity: EntityType | None = None

    @classmethod
    def add(cls, params: Mapping[str, object]) -> ChangeTag:
        tag = _str_param(params, "tag", required=True)
        assert tag is not None
        return cls(tag=tag, entity=_entity_param(params))

    @classmethod
    def delete(cls, params: Mapping[str, object]) -> ChangeTag:
        tag = _str_param(params, "tag", required=True)
        assert tag is not None
        return cls(tag=tag, remove=True, entity=_entity_param(params))

    def execute(self, event: WorkflowEvent, ctx: ActionContext) -> ActionResult:
        entity_type, entity_id = _target(event, self.entity)
        tag = render_text(self.tag, event)
        op = ctx.entities.remove_tag if self.remove else ctx.entities.add_tag
        op(tenant_id=event.tenant_id, entity_type=entity_type.value, entity_id=entity_id, tag=tag)
        return ActionResult(
            ok=True,
            message="Tag removed" if self.remove else "Tag added",
            details={"entity": entity_type.value, "id": entity_id, "tag": tag},
        )


@dataclass(frozen=True, slots=True)
class CreateTicket:
    """Open a support ticket linked to the triggering return / customer."""

    subject: str = "Auto-created by workflow"
    priority: str = "normal"
    category: str | None = None
    message: str | None = None

    @classmethod
    def from_params(cls, params: Mapping[str, object]) -> CreateTicket:
        return cls(
            subject=_str_param(params, "subject") or "Auto-created by workflow",
            priority=_str_param(params, "priority") or "normal",
            category=_str_param(params, "category"),
            message=_str_param(params, "message"),
        )

    def execute(self, event: WorkflowEvent, ctx: ActionContext) -> ActionResult:
        fields: dict[str, object] = {
            "subject": render_text(self.subject, event),
            "priority": self.priority,
            "return_id": event.entity_id(EntityType.RETURN),
            "customer_id": event.entity_id(EntityType.CUSTOMER),
            "source": "workflow",
        }
        if self.category:
            fields["category"] = self.category
        if self.message:
            fields["message"] = render_text(self.message, event)
        ticket_id = ctx.entities.create_ticket(tenant_id=event.tenant_id, fields=fields)
        return ActionResult(ok=True, message="Ticket created", details={"ticket_id": ticket_id})


@dataclass(frozen=True, slots=True)
class AddTicketMessage:
    """Post a system message on the ticket; internal notes are hidden from the customer."""

    message: str
    internal: bool = True

    @classmethod
    def from_params(cls, params: Mapping[str, object]) -> AddTicketMessage:
        message = _str_param(params, "message", "content", required=True)
        assert message is not None
        return cls(
            message=message,
            internal=_bool_param(params, "internal", "isInternal", default=True),
        )

    def execute(self, event: WorkflowEvent, ctx: ActionContext) -> ActionResult:
        _, ticket_id = _target(event, EntityType.TICKET)
        ctx.entities.add_ticket_message(
            tenant_id=event.tenant_id,
            ticket_id=ticket_id,
            content=render_text(self.message, event),
            internal=self.internal,
            actor_id=ctx.settings.system_actor_id,
        )
        return ActionResult(
            ok=True,
            message="Ticket message added",
            details={"ticket_id": ticket_id, "internal": self.internal},
        )


@dataclass(frozen=True, slots=True)
class AddTimelineEntry:
    """Append a note to an entity's timeline, keeping its current status."""

    comment: str
    status: str | None = None
    entity: EntityType | None = None

    @classmethod
    def from_params(cls, params: Mapping[str, object]) -> AddTimelineEntry:
        return cls(
            comment=_str_param(params, "comment", "note", "message") or "",
            status=_str_param(params, "status"),
            entity=_entity_param(params),
        )

    def execute(self, event: WorkflowEvent, ctx: ActionContext) -> ActionResult:
        entity_type, entity_id = _target(event, self.entity)
        status = self.status
        if status is None:
            current = event.resolve(f"{entity_type.value}.status")
            status = current if isinstance(current, str) and current else "CREATED"
        ctx.entities.add_timeline_entry(
            tenant_id=event.tenant_id,
            entity_type=entity_type.value,
            entity_id=entity_id,
            status=status,
            comment=render_text(self.comment, event),
            actor_id=ctx.settings.system_actor_id,
        )
        return ActionResult(
            ok=True,
            message="Timeline entry added",
            details={"entity": entity_type.value, "id": entity_id, "status": status},
        )


@dataclass(frozen=True, slots=True)
class SendCustomEmail:
    """Send a free-form email, bypassing the tenant's templates."""

    subject: str = "Workflow Notification"
    body: str = ""
    recipient_email: str | None = None

    @classmethod
    def from_params(cls, params: Mapping[str, object]) -> SendCustomEmail:
        return cls(
            subject=_str_param(params, "subject") or "Workflow Notification",
            body=_str_param(params, "body", "content") or "",
            recipient_email=_str_param(params, "recipient_email", "recipientEmail"),
        )

    def execute(self, event: WorkflowEvent, ctx: ActionContext) -> ActionResult:
        settings = ctx.notifications.load_tenant_notification_settings(tenant_id=event.tenant_id)
        if not settings.enabled:
            return ActionResult(ok=True, skipped=True, message="Notifications disabled for tenant")

        recipient = _recipient(self.recipient_email, event)
        if not recipient:
            logger.warning(
                "Custom email skipped: no recipient", extra={"tenant_id": event.tenant_id}
            )
            return ActionResult(ok=True, skipped=True, message="No recipient")

        ctx.notifications.send_custom_email(
            tenant_id=event.tenant_id,
            recipient_email=recipient,
            subject=render_text(self.subject, event),
            body=render_text(self.body, event),
            context=_recipient_context(event),
        )
        return ActionResult(ok=True, message="Email sent", details={"recipient": recipient})


def _parse_headers(raw: object) -> dict[str, str]:
    # The builder stores headers either as a mapping or as "Key: Value" lines.
    if isinstance(raw, Mapping):
        return {str(k): str(v) for k, v in raw.items()}
    headers: dict[str, str] = {}
    if isinstance(raw, str):
        for line in raw.splitlines():
            key, sep, value = line.partition(":")
            if sep and key.strip():
                headers[key.strip()] = value.strip()
    return headers


@dataclass(frozen=True, slots=True)
class CallWebhook:
    """Send the event (or a templated body) to an external URL."""

    url: str
    method: str = "POST"
    headers: tuple[tuple[str, str], ...] = ()
    body: object = None

    @classmethod
    def from_params(cls, params: Mapping[str, object]) -> CallWebhook:
        url = _str_param(params, "url", required=True)
        assert url is not None
        if not url.startswith(("http://", "https://")):
            raise ValueError(f"Webhook url must be http(s): {url!r}")
        return cls(
            url=url,
            method=(_str_param(params, "method") or "POST").upper(),
            headers=tuple(_parse_headers(params.get("headers")).items()),
            body=params.get("body"),
        )

    def _payload(self, event: WorkflowEvent) -> str:
        if self.body is None:
            return json.dumps(
                {
                    "event": event.type.value,
                    "event_id": event.event_id,
                    "tenant_id": event.tenant_id,
                    "return_id": event.entity_id(EntityType.RETURN),
                    "ticket_id": event.entity_id(EntityType.TICKET),
                    "customer_id": event.entity_id(EntityType.CUSTOMER),
                    "timestamp": event.occurred_at.isoformat(),
                },
                ensure_ascii=False,
            )
        rendered = render_template(self.body, event)
        # A string body is sent as-is to avoid double encoding.
        if isinstance(rendered, str):
            return rendered
        return json.dumps(rendered, ensure_ascii=False, default=str)

    def execute(self, event: WorkflowEvent, ctx: ActionContext) -> ActionResult:
        headers = {"Content-Type": "application/json", **dict(self.headers)}
        data = None if self.method == "GET" else self._payload(event)
        resp = ctx.http.request(
            self.method,
            render_text(self.url, event),
            headers=headers,
            data=data,
            timeout=ctx.settings.webhook_timeout_seconds,
        )
        resp.raise_for_status()
        return ActionResult(
            ok=True, message="Webhook called", details={"status_code": resp.status_code}
        )


ActionFactory = Callable[[Mapping[str, object]], Action]

ACTION_REGISTRY: dict[ActionType, ActionFactory] = {
    ActionType.UPDATE_FIELD: UpdateEntityField.from_params,
    ActionType.SET_PRIORITY: UpdateEntityField.priority,
    ActionType.ASSIGN: UpdateEntityField.assignee,
    ActionType.TRANSITION_STATUS: TransitionStatus.from_params,
    ActionType.APPROVE: TransitionStatus.approve,
    ActionType.REJECT: TransitionStatus.reject,
    ActionType.SEND_NOTIFICATION: SendNotification.from_params,
    ActionType.NOTIFY_INTERNAL: NotifyInternal.from_params,
    ActionType.ADD_TAG: ChangeTag.add,
    ActionType.REMOVE_TAG: ChangeTag.delete,
    ActionType.CREATE_TICKET: CreateTicket.from_params,
    ActionType.ADD_TICKET_MESSAGE: AddTicketMessage.from_params,
    ActionType.ADD_TIMELINE_ENTRY: AddTimelineEntry.from_params,
    ActionType.SEND_CUSTOM_EMAIL: SendCustomEmail.from_params,
    ActionType.CALL_WEBHOOK: CallWebhook.from_params,
}


def build_action(data: ActionData) -> Action:
    """Instantiate the action for a node. Raises ValueError on bad params."""

    factory = ACTION_REGISTRY.get(data.action_type)
    if factory is None:
        raise ValueError(f"Unsupported action type: {data.action_type.value!r}")
    return factory(data.params)


class ActionDispatcher:
    """Executes action nodes, one independently failable side effect each."""

    def __init__(
        self,
        *,
        entities: EntityGateway,
        notifications: NotificationGateway,
        settings: EngineSettings,
        http: requests.Session | None = None,
    ) -> None:
        self._ctx = ActionContext(
            entities=entities,
            notifications=notifications,
            settings=settings,
            http=http or requests.Session(),
        )

    def execute(
        self,
        action: ActionData,
        event: WorkflowEvent,
        *,
        graph_id: str | None = None,
        node_id: str | None = None,
    ) -> ActionResult:
        log_extra = {
            "graph_id": graph_id,
            "node_id": node_id,
            "tenant_id": event.tenant_id,
            "event_id": event.event_id,
            "action_type": action.action_type.value,
        }

        try:
            built = build_action(action)
        except ValueError as e:
            return self._failed(action, node_id, f"Invalid parameters: {e}", None, log_extra)

        try:
            result = built.execute(event, self._ctx)
        except _ActionFailed as e:
            return self._failed(action, node_id, str(e), None, log_extra)
        except Exception as e:
            return self._failed(action, node_id, "Collaborator call failed", e, log_extra)

        logger.info(
            "Workflow action executed",
            extra={**log_extra, "skipped": result.skipped, "result": result.message},
        )
        return result

    @staticmethod
    def _failed(
        action: ActionData,
        node_id: str | None,
        message: str,
        cause: Exception | None,
        log_extra: dict[str, object],
    ) -> ActionResult:
        error = ActionExecutionError(
            action_type=action.action_type.value,
            message=message,
            node_id=node_id,
            cause=f"{type(cause).__name__}: {cause}" if cause is not None else None,
        )
        if cause is not None:
            logger.warning(
                "Workflow action failed", extra={**log_extra, "error": str(error)}, exc_info=cause
            )
        else:
            logger.warning("Workflow action failed", extra={**log_extra, "error": str(error)})
        return ActionResult(ok=False, message=str(error), error=error)

    def close(self) -> None:
        self._ctx.http.close()
