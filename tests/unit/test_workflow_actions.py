"""Unit tests for side-effecting workflow actions."""

from __future__ import annotations

import json
from typing import Any

import pytest
import requests

from workflow_rules_engine.engine.config import EngineSettings
from workflow_rules_engine.engine.workflow.actions import ActionDispatcher
from workflow_rules_engine.engine.workflow.collaborators import NotificationSettings
from workflow_rules_engine.engine.workflow.dry_run import RecordingGateway
from workflow_rules_engine.engine.workflow.errors import CollaboratorError
from workflow_rules_engine.engine.workflow.events import WorkflowEvent
from workflow_rules_engine.engine.workflow.models import ActionData, ActionType


def _return_event(**customer: Any) -> WorkflowEvent:
    return WorkflowEvent.capture(
        event_type="return_status_changed",
        tenant_id="t1",
        snapshot={
            "return": {"id": "r-1", "status": "APPROVED", "rmaNumber": "RMA-7"},
            "customer": {"id": "c-1", "firstName": "Jane", "lastName": "Doe", **customer},
        },
    )


def _action(action_type: str, **params: Any) -> ActionData:
    return ActionData.model_validate({"actionType": action_type, "params": params})


class _StubSession(requests.Session):
    def __init__(self, status_code: int = 200) -> None:
        super().__init__()
        self.status_code = status_code
        self.sent: list[dict[str, Any]] = []

    def request(self, method, url, *args, **kwargs):  # type: ignore[override]
        self.sent.append({"method": method, "url": url, **kwargs})
        resp = requests.Response()
        resp.status_code = self.status_code
        resp.url = url
        return resp


class _FailingGateway(RecordingGateway):
    def add_tag(self, *, tenant_id: str, entity_type: str, entity_id: str, tag: str) -> None:
        raise CollaboratorError("back office unavailable")


def test_add_tag_targets_triggering_entity(
    dispatcher: ActionDispatcher, gateway: RecordingGateway
) -> None:
    result = dispatcher.execute(_action("add_tag", tag="high-risk"), _return_event())

    assert result.ok
    assert len(gateway.calls) == 1
    call = gateway.calls[0]
    assert call.operation == "add_tag"
    assert call.tenant_id == "t1"
    assert call.arguments == {"entity_type": "return", "entity_id": "r-1", "tag": "high-risk"}


def test_update_field_renders_whole_placeholder_with_native_type(
    dispatcher: ActionDispatcher, gateway: RecordingGateway
) -> None:
    action = _action("update_field", field="riskSnapshot", value="{{customer.riskScore}}")
    result = dispatcher.execute(action, _return_event(riskScore=91))

    assert result.ok
    assert gateway.calls[0].arguments["value"] == 91


def test_update_field_on_explicit_entity(
    dispatcher: ActionDispatcher, gateway: RecordingGateway
) -> None:
    action = _action("update_field", field="segment", value="watch", entity="customer")
    dispatcher.execute(action, _return_event())

    assert gateway.calls[0].arguments["entity_type"] == "customer"
    assert gateway.calls[0].arguments["entity_id"] == "c-1"


def test_set_priority_and_assign_write_fields(
    dispatcher: ActionDispatcher, gateway: RecordingGateway
) -> None:
    dispatcher.execute(_action("set_priority", priority="high"), _return_event())
    dispatcher.execute(_action("assign", assignee="agent-7"), _return_event())

    fields = [(c.arguments["field"], c.arguments["value"]) for c in gateway.calls]
    assert fields == [("priority", "high"), ("assignedTo", "agent-7")]


def test_approve_uses_status_transition_with_defaults(
    dispatcher: ActionDispatcher, gateway: RecordingGateway, settings: EngineSettings
) -> None:
    result = dispatcher.execute(_action("approve"), _return_event())

    assert result.ok
    call = gateway.calls[0]
    assert call.operation == "transition_status"
    assert call.arguments["new_status"] == "APPROVED"
    assert call.arguments["comment"] == settings.default_comment
    assert call.arguments["actor_id"] == settings.system_actor_id


def test_reject_uses_reason_as_comment(
    dispatcher: ActionDispatcher, gateway: RecordingGateway
) -> None:
    dispatcher.execute(
        _action("reject", reason="Outside return window for {{return.rmaNumber}}"),
        _return_event(),
    )

    call = gateway.calls[0]
    assert call.arguments["new_status"] == "REJECTED"
    assert call.arguments["comment"] == "Outside return window for RMA-7"


def test_notification_falls_back_to_customer_email(
    dispatcher: ActionDispatcher, gateway: RecordingGateway
) -> None:
    result = dispatcher.execute(
        _action("send_notification", template="return_approved"),
        _return_event(email="jane@example.com"),
    )

    assert result.ok and not result.skipped
    call = gateway.calls[0]
    assert call.operation == "send_notification"
    assert call.arguments["event_type"] == "return_approved"
    context = call.arguments["recipient_context"]
    assert context["recipient_email"] == "jane@example.com"
    assert context["customer_name"] == "Jane Doe"
    assert context["return_id"] == "r-1"


def test_notification_short_circuits_when_tenant_disabled_it(
    dispatcher: ActionDispatcher, gateway: RecordingGateway
) -> None:
    gateway.notification_settings["t1"] = NotificationSettings(
        enabled=True, disabled_events=["return_approved"]
    )

    result = dispatcher.execute(
        _action("send_notification", template="return_approved"),
        _return_event(email="jane@example.com"),
    )

    assert result.ok
    assert result.skipped
    assert gateway.calls == []


def test_notification_without_recipient_is_skipped(
    dispatcher: ActionDispatcher, gateway: RecordingGateway
) -> None:
    result = dispatcher.execute(
        _action("send_notification", template="return_approved"), _return_event()
    )

    assert result.ok
    assert result.skipped
    assert gateway.operations() == []


def test_notify_internal_sends_internal_event(
    dispatcher: ActionDispatcher, gateway: RecordingGateway
) -> None:
    dispatcher.execute(
        _action("notify_internal", message="Check {{return.rmaNumber}}"), _return_event()
    )

    call = gateway.calls[0]
    assert call.arguments["event_type"] == "workflow_internal"
    assert call.arguments["recipient_context"]["message"] == "Check RMA-7"


def test_create_ticket_links_return_and_customer(
    dispatcher: ActionDispatcher, gateway: RecordingGateway
) -> None:
    result = dispatcher.execute(
        _action("create_ticket", subject="Review {{return.rmaNumber}}", priority="high"),
        _return_event(),
    )

    assert result.ok
    assert result.details is not None and str(result.details["ticket_id"]).startswith("dry-run-")
    fields = gateway.calls[0].arguments["fields"]
    assert fields["subject"] == "Review RMA-7"
    assert fields["priority"] == "high"
    assert fields["return_id"] == "r-1"
    assert fields["customer_id"] == "c-1"


def test_missing_required_param_is_a_failed_result(dispatcher: ActionDispatcher) -> None:
    result = dispatcher.execute(_action("add_tag"), _return_event())

    assert not result.ok
    assert result.error is not None
    assert result.error.action_type == "add_tag"
    assert "Invalid parameters" in result.error.message


def test_collaborator_failure_is_captured(settings: EngineSettings) -> None:
    gateway = _FailingGateway()
    dispatcher = ActionDispatcher(entities=gateway, notifications=gateway, settings=settings)
    try:
        result = dispatcher.execute(
            _action("add_tag", tag="x"), _return_event(), graph_id="g1", node_id="a1"
        )
    finally:
        dispatcher.close()

    assert not result.ok
    assert result.error is not None
    assert result.error.node_id == "a1"
    assert result.error.cause is not None and "back office unavailable" in result.error.cause


def test_entity_action_without_entity_id_fails(dispatcher: ActionDispatcher) -> None:
    event = WorkflowEvent.capture(
        event_type="return_created", tenant_id="t1", snapshot={"return": {"status": "NEW"}}
    )

    result = dispatcher.execute(_action("add_tag", tag="x"), event)

    assert not result.ok
    assert result.error is not None
    assert "no return id" in result.error.message


def test_webhook_posts_default_payload_with_parsed_headers(settings: EngineSettings) -> None:
    session = _StubSession()
    gateway = RecordingGateway()
    dispatcher = ActionDispatcher(
        entities=gateway, notifications=gateway, settings=settings, http=session
    )

    result = dispatcher.execute(
        _action(
            "call_webhook",
            url="https://hooks.example.com/returns",
            headers="X-Api-Key: secret\nX-Source: workflow",
        ),
        _return_event(),
    )

    assert result.ok
    sent = session.sent[0]
    assert sent["method"] == "POST"
    assert sent["url"] == "https://hooks.example.com/returns"
    assert sent["headers"]["X-Api-Key"] == "secret"
    assert sent["headers"]["X-Source"] == "workflow"
    assert sent["timeout"] == settings.webhook_timeout_seconds
    body = json.loads(sent["data"])
    assert body["event"] == "return_status_changed"
    assert body["return_id"] == "r-1"
    assert body["tenant_id"] == "t1"


def test_webhook_http_error_is_a_failed_result(settings: EngineSettings) -> None:
    gateway = RecordingGateway()
    dispatcher = ActionDispatcher(
        entities=gateway, notifications=gateway, settings=settings, http=_StubSession(500)
    )

    result = dispatcher.execute(
        _action("call_webhook", url="https://hooks.example.com/fail"), _return_event()
    )

    assert not result.ok
    assert result.error is not None
    assert result.error.cause is not None and "HTTPError" in result.error.cause


def test_webhook_rejects_non_http_url(dispatcher: ActionDispatcher) -> None:
    result = dispatcher.execute(_action("call_webhook", url="ftp://example.com"), _return_event())

    assert not result.ok


def _ticket_event() -> WorkflowEvent:
    return WorkflowEvent.capture(
        event_type="ticket_created",
        tenant_id="t1",
        snapshot={
            "ticket": {"id": "tk-1", "status": "open", "subject": "Broken zipper"},
            "customer": {"id": "c-1", "email": "jane@example.com"},
        },
    )


def test_remove_tag_targets_triggering_entity(
    dispatcher: ActionDispatcher, gateway: RecordingGateway
) -> None:
    result = dispatcher.execute(_action("remove_tag", tag="pending-review"), _return_event())

    assert result.ok
    assert result.message == "Tag removed"
    [call] = gateway.calls
    assert call.operation == "remove_tag"
    assert call.arguments == {"entity_type": "return", "entity_id": "r-1", "tag": "pending-review"}


def test_transition_status_with_templated_comment_on_explicit_entity(
    dispatcher: ActionDispatcher, gateway: RecordingGateway, settings: EngineSettings
) -> None:
    action = _action(
        "transition_status",
        status="ON_HOLD",
        comment="Held after {{return.rmaNumber}}",
        entity="customer",
    )

    result = dispatcher.execute(action, _return_event())

    assert result.ok
    [call] = gateway.calls
    assert call.operation == "transition_status"
    assert call.arguments == {
        "entity_type": "customer",
        "entity_id": "c-1",
        "new_status": "ON_HOLD",
        "comment": "Held after RMA-7",
        "actor_id": settings.system_actor_id,
    }


def test_transition_status_requires_status(
    dispatcher: ActionDispatcher, gateway: RecordingGateway
) -> None:
    result = dispatcher.execute(_action("transition_status"), _return_event())

    assert not result.ok
    assert gateway.calls == []


def test_add_ticket_message(
    dispatcher: ActionDispatcher, gateway: RecordingGateway, settings: EngineSettings
) -> None:
    action = _action(
        "add_ticket_message", message="Re: {{ticket.subject}}", isInternal="false"
    )

    result = dispatcher.execute(action, _ticket_event())

    assert result.ok
    [call] = gateway.calls
    assert call.operation == "add_ticket_message"
    assert call.arguments == {
        "ticket_id": "tk-1",
        "content": "Re: Broken zipper",
        "internal": False,
        "actor_id": settings.system_actor_id,
    }


def test_ticket_message_defaults_to_internal(
    dispatcher: ActionDispatcher, gateway: RecordingGateway
) -> None:
    dispatcher.execute(_action("add_ticket_message", message="Escalated"), _ticket_event())

    assert gateway.calls[0].arguments["internal"] is True


def test_ticket_message_without_ticket_fails(
    dispatcher: ActionDispatcher, gateway: RecordingGateway
) -> None:
    result = dispatcher.execute(_action("add_ticket_message", message="x"), _return_event())

    assert not result.ok
    assert result.error is not None
    assert "no ticket id" in result.error.message
    assert gateway.calls == []


def test_timeline_entry_keeps_current_status(
    dispatcher: ActionDispatcher, gateway: RecordingGateway
) -> None:
    result = dispatcher.execute(
        _action("add_timeline_entry", note="Auto-checked {{return.rmaNumber}}"), _return_event()
    )

    assert result.ok
    [call] = gateway.calls
    assert call.operation == "add_timeline_entry"
    assert call.arguments["entity_type"] == "return"
    assert call.arguments["entity_id"] == "r-1"
    assert call.arguments["status"] == "APPROVED"
    assert call.arguments["comment"] == "Auto-checked RMA-7"


def test_custom_email_uses_customer_email(
    dispatcher: ActionDispatcher, gateway: RecordingGateway
) -> None:
    action = _action(
        "send_custom_email", subject="About {{ticket.subject}}", content="We are on it."
    )

    result = dispatcher.execute(action, _ticket_event())

    assert result.ok and not result.skipped
    [call] = gateway.calls
    assert call.operation == "send_custom_email"
    assert call.arguments["recipient_email"] == "jane@example.com"
    assert call.arguments["subject"] == "About Broken zipper"
    assert call.arguments["body"] == "We are on it."
    assert call.arguments["context"]["ticket_id"] == "tk-1"


def test_custom_email_skipped_when_tenant_disabled_notifications(
    dispatcher: ActionDispatcher, gateway: RecordingGateway
) -> None:
    gateway.notification_settings["t1"] = NotificationSettings(enabled=False)

    result = dispatcher.execute(_action("send_custom_email", body="Hi"), _ticket_event())

    assert result.ok
    assert result.skipped
    assert gateway.calls == []


@pytest.mark.parametrize(
    ("builder_name", "action_type", "entity"),
    [
        ("set_status", ActionType.TRANSITION_STATUS, "return"),
        ("ticket_set_status", ActionType.TRANSITION_STATUS, "ticket"),
        ("ticket_set_priority", ActionType.SET_PRIORITY, "ticket"),
        ("ticket_assign", ActionType.ASSIGN, "ticket"),
        ("ticket_add_tag", ActionType.ADD_TAG, "ticket"),
        ("customer_add_tag", ActionType.ADD_TAG, "customer"),
        ("add_note", ActionType.ADD_TIMELINE_ENTRY, "return"),
        ("timeline_add_entry", ActionType.ADD_TIMELINE_ENTRY, "return"),
        ("ticket_create", ActionType.CREATE_TICKET, None),
        ("ticket_add_message", ActionType.ADD_TICKET_MESSAGE, None),
        ("email_send_template", ActionType.SEND_NOTIFICATION, None),
        ("email_send_custom", ActionType.SEND_CUSTOM_EMAIL, None),
        ("notification_internal", ActionType.NOTIFY_INTERNAL, None),
        ("webhook_call", ActionType.CALL_WEBHOOK, None),
    ],
)
def test_builder_action_names_map_to_action_types(
    builder_name: str, action_type: ActionType, entity: str | None
) -> None:
    data = _action(builder_name)

    assert data.action_type is action_type
    assert data.params.get("entity") == entity


def test_builder_risk_score_action_updates_customer(
    dispatcher: ActionDispatcher, gateway: RecordingGateway
) -> None:
    data = _action("customer_update_risk_score", riskScore=80)

    result = dispatcher.execute(data, _return_event())

    assert data.action_type is ActionType.UPDATE_FIELD
    assert result.ok
    assert gateway.calls[0].arguments == {
        "entity_type": "customer",
        "entity_id": "c-1",
        "field": "riskScore",
        "value": 80,
    }


def test_builder_ticket_tag_targets_ticket_from_return_event(
    dispatcher: ActionDispatcher, gateway: RecordingGateway
) -> None:
    event = WorkflowEvent.capture(
        event_type="return_created",
        tenant_id="t1",
        snapshot={"return": {"id": "r-1"}, "ticket": {"id": "tk-9"}},
    )

    dispatcher.execute(_action("ticket_add_tag", tag="return-linked"), event)

    assert gateway.calls[0].arguments["entity_type"] == "ticket"
    assert gateway.calls[0].arguments["entity_id"] == "tk-9"


def test_explicit_params_win_over_builder_defaults() -> None:
    data = _action("ticket_add_tag", tag="x", entity="customer")

    assert data.params["entity"] == "customer"
