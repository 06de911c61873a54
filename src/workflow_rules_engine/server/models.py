"""Pydantic models for the REST server."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from workflow_rules_engine.engine.workflow.models import TriggerEventType


class EventRequest(BaseModel):
    tenant_id: str = Field(min_length=1)
    event_type: TriggerEventType
    snapshot: dict[str, Any]
    previous_values: dict[str, Any] | None = None


class EventAccepted(BaseModel):
    event_id: str
    tenant_id: str
    event_type: TriggerEventType
    status: str = "accepted"


class GraphIssueOut(BaseModel):
    message: str
    node_id: str | None = None


class GraphValidationResult(BaseModel):
    graph_id: str | None
    valid: bool
    issues: list[GraphIssueOut] = Field(default_factory=list)


class ContinuationOut(BaseModel):
    continuation_id: str
    graph_id: str
    tenant_id: str
    resume_node_id: str
    event_id: str
    event_type: str
    resume_at: str
