"""Rule graph data model.

Graphs are authored in the visual builder and persisted as JSON. They are
loaded read-only by the engine at event time, so the models validate shape on
load and are otherwise passive.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import timedelta
from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

GRAPH_VERSION = 2


class NodeType(str, Enum):
    TRIGGER = "trigger"
    CONDITION = "condition"
    ACTION = "action"
    DELAY = "delay"


class EntityType(str, Enum):
    RETURN = "return"
    TICKET = "ticket"
    CUSTOMER = "customer"


class TriggerEventType(str, Enum):
    RETURN_CREATED = "return_created"
    RETURN_STATUS_CHANGED = "return_status_changed"
    RETURN_OVERDUE = "return_overdue"
    TICKET_CREATED = "ticket_created"
    TICKET_STATUS_CHANGED = "ticket_status_changed"
    TICKET_OVERDUE = "ticket_overdue"
    CUSTOMER_RISK_CHANGED = "customer_risk_changed"
    CUSTOMER_TAG_ADDED = "customer_tag_added"
    SCHEDULED_DAILY = "scheduled_daily"
    SCHEDULED_WEEKLY = "scheduled_weekly"
    SCHEDULED_MONTHLY = "scheduled_monthly"
    MANUAL = "manual"

    @property
    def entity_type(self) -> EntityType | None:
        """The entity whose mutation emits this event, if any."""

        prefix = self.value.split("_", 1)[0]
        try:
            return EntityType(prefix)
        except ValueError:
            return None


class ConditionOperator(str, Enum):
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    GREATER_OR_EQUAL = "greater_or_equal"
    LESS_OR_EQUAL = "less_or_equal"
    IN = "in"
    NOT_IN = "not_in"
    IS_EMPTY = "is_empty"
    IS_NOT_EMPTY = "is_not_empty"
    MATCHES_REGEX = "matches_regex"
    CHANGED = "changed"
    CHANGED_FROM = "changed_from"
    CHANGED_TO = "changed_to"


class LogicOperator(str, Enum):
    AND = "AND"
    OR = "OR"


class DelayUnit(str, Enum):
    MINUTES = "minutes"
    HOURS = "hours"
    DAYS = "days"


class ActionType(str, Enum):
    UPDATE_FIELD = "update_field"
    SET_PRIORITY = "set_priority"
    ASSIGN = "assign"
    TRANSITION_STATUS = "transition_status"
    APPROVE = "approve"
    REJECT = "reject"
    SEND_NOTIFICATION = "send_notification"
    NOTIFY_INTERNAL = "notify_internal"
    ADD_TAG = "add_tag"
    REMOVE_TAG = "remove_tag"
    CREATE_TICKET = "create_ticket"
    ADD_TICKET_MESSAGE = "add_ticket_message"
    ADD_TIMELINE_ENTRY = "add_timeline_entry"
    SEND_CUSTOM_EMAIL = "send_custom_email"
    CALL_WEBHOOK = "call_webhook"


class BranchLabel(str, Enum):
    TRUE = "true"
    FALSE = "false"


_MODEL_CONFIG = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)


class FieldCondition(BaseModel):
    """One comparison against a dotted path into the event snapshot."""

    model_config = _MODEL_CONFIG

    field: str
    operator: ConditionOperator
    value: Any = None


class TriggerData(BaseModel):
    model_config = _MODEL_CONFIG

    event_type: TriggerEventType = Field(alias="eventType")
    filters: list[FieldCondition] = Field(default_factory=list)


class ConditionData(BaseModel):
    model_config = _MODEL_CONFIG

    conditions: list[FieldCondition] = Field(default_factory=list)
    logic: LogicOperator = Field(default=LogicOperator.AND, alias="logicOperator")


# Per-entity action names saved by the builder, mapped onto the generic
# action types: (action type, default params, renamed params).
LEGACY_ACTION_NAMES: dict[str, tuple[ActionType, dict[str, Any], dict[str, str]]] = {
    "set_status": (ActionType.TRANSITION_STATUS, {"entity": "return"}, {}),
    "add_note": (ActionType.ADD_TIMELINE_ENTRY, {"entity": "return"}, {}),
    "timeline_add_entry": (ActionType.ADD_TIMELINE_ENTRY, {"entity": "return"}, {}),
    "ticket_create": (ActionType.CREATE_TICKET, {}, {}),
    "ticket_set_status": (ActionType.TRANSITION_STATUS, {"entity": "ticket"}, {}),
    "ticket_set_priority": (ActionType.SET_PRIORITY, {"entity": "ticket"}, {}),
    "ticket_assign": (ActionType.ASSIGN, {"entity": "ticket"}, {}),
    "ticket_add_message": (ActionType.ADD_TICKET_MESSAGE, {}, {}),
    "ticket_add_tag": (ActionType.ADD_TAG, {"entity": "ticket"}, {}),
    "customer_add_tag": (ActionType.ADD_TAG, {"entity": "customer"}, {}),
    "customer_update_risk_score": (
        ActionType.UPDATE_FIELD,
        {"entity": "customer", "field": "riskScore"},
        {"riskScore": "value"},
    ),
    "customer_update_notes": (
        ActionType.UPDATE_FIELD,
        {"entity": "customer", "field": "notes"},
        {"notes": "value"},
    ),
    "email_send_template": (ActionType.SEND_NOTIFICATION, {}, {}),
    "email_send_custom": (ActionType.SEND_CUSTOM_EMAIL, {}, {}),
    "notification_internal": (ActionType.NOTIFY_INTERNAL, {}, {}),
    "webhook_call": (ActionType.CALL_WEBHOOK, {}, {}),
}


class ActionData(BaseModel):
    model_config = _MODEL_CONFIG

    action_type: ActionType = Field(alias="actionType")
    params: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _map_legacy_name(cls, data: Any) -> Any:
        if not isinstance(data, Mapping):
            return data
        key = "actionType" if "actionType" in data else "action_type"
        legacy = LEGACY_ACTION_NAMES.get(str(data.get(key)))
        if legacy is None:
            return data

        action_type, defaults, renames = legacy
        params = dict(data.get("params") or {})
        for old, new in renames.items():
            if old in params and new not in params:
                params[new] = params.pop(old)
        return {**data, key: action_type.value, "params": {**defaults, **params}}


class DelayData(BaseModel):
    model_config = _MODEL_CONFIG

    amount: int = Field(ge=0)
    unit: DelayUnit = DelayUnit.HOURS

    @property
    def duration(self) -> timedelta:
        if self.unit is DelayUnit.MINUTES:
            return timedelta(minutes=self.amount)
        if self.unit is DelayUnit.DAYS:
            return timedelta(days=self.amount)
        return timedelta(hours=self.amount)


class TriggerNode(BaseModel):
    model_config = _MODEL_CONFIG

    id: str
    type: Literal["trigger"] = "trigger"
    label: str = ""
    data: TriggerData


class ConditionNode(BaseModel):
    model_config = _MODEL_CONFIG

    id: str
    type: Literal["condition"] = "condition"
    label: str = ""
    data: ConditionData = Field(default_factory=ConditionData)


class ActionNode(BaseModel):
    model_config = _MODEL_CONFIG

    id: str
    type: Literal["action"] = "action"
    label: str = ""
    data: ActionData


class DelayNode(BaseModel):
    model_config = _MODEL_CONFIG

    id: str
    type: Literal["delay"] = "delay"
    label: str = ""
    data: DelayData


WorkflowNode = Annotated[
    TriggerNode | ConditionNode | ActionNode | DelayNode,
    Field(discriminator="type"),
]


class WorkflowEdge(BaseModel):
    """A directed edge. Condition nodes label their edges `true` / `false`."""

    model_config = _MODEL_CONFIG

    id: str = ""
    source: str
    target: str
    branch: BranchLabel | None = Field(default=None, alias="sourceHandle")


class WorkflowGraph(BaseModel):
    """One authored rule: a trigger plus the nodes and edges reachable from it."""

    model_config = _MODEL_CONFIG

    id: str
    tenant_id: str
    name: str = ""
    enabled: bool = True
    sort_order: int = 0
    graph_version: int = Field(default=GRAPH_VERSION, validation_alias="_graphVersion")
    nodes: list[WorkflowNode] = Field(default_factory=list)
    edges: list[WorkflowEdge] = Field(default_factory=list)

    def get_node(self, node_id: str) -> TriggerNode | ConditionNode | ActionNode | DelayNode | None:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def outgoing(self, node_id: str) -> list[WorkflowEdge]:
        return [e for e in self.edges if e.source == node_id]

    def trigger_nodes(self) -> list[TriggerNode]:
        return [n for n in self.nodes if isinstance(n, TriggerNode)]

    @property
    def trigger_event_type(self) -> TriggerEventType | None:
        """Event type of the single trigger node, or None when there isn't exactly one."""

        triggers = self.trigger_nodes()
        if len(triggers) != 1:
            return None
        return triggers[0].data.event_type
