"""REST client for the back-office API.

Implements the entity and notification collaborators the workflow engine
needs, keeping HTTP details out of the action code. Every request failure is
raised as `CollaboratorError`.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any
from urllib.parse import quote

import requests

from workflow_rules_engine.engine.workflow.collaborators import NotificationSettings
from workflow_rules_engine.engine.workflow.errors import CollaboratorError
from workflow_rules_engine.engine.workflow.events import thaw

logger = logging.getLogger(__name__)

_ENTITY_COLLECTIONS = {"return": "returns", "ticket": "tickets", "customer": "customers"}


class BackOfficeClient:
    """Thin wrapper over `requests.Session` for tenant-scoped back-office calls."""

    def __init__(
        self,
        *,
        base_url: str,
        token: str,
        timeout_seconds: float = 30.0,
        session: requests.Session | None = None,
    ) -> None:
        if not base_url:
            raise ValueError("Back-office base URL is required")
        if not token:
            raise ValueError("Back-office API token is required")

        self._base_url = base_url.rstrip("/")
        self._timeout = timeout_seconds
        self._session = session or requests.Session()
        self._session.headers.update(
            {
                "Authorization": f"Bearer {token}",
                "Accept": "application/json",
                "User-Agent": "workflow-rules-engine",
            }
        )

    def _tenant_url(self, tenant_id: str, path: str) -> str:
        if not tenant_id:
            raise ValueError("tenant_id is required")
        path = path.lstrip("/")
        return f"{self._base_url}/tenants/{quote(tenant_id, safe='')}/{path}"

    def _entity_path(self, entity_type: str, entity_id: str, suffix: str = "") -> str:
        collection = _ENTITY_COLLECTIONS.get(entity_type)
        if collection is None:
            raise ValueError(f"Unknown entity type: {entity_type!r}")
        if suffix and not suffix.startswith("/"):
            suffix = "/" + suffix
        return f"{collection}/{quote(entity_id, safe='')}{suffix}"

    def _request(self, method: str, url: str, *, json: Any = None) -> requests.Response:
        try:
            resp = self._session.request(method, url, json=json, timeout=self._timeout)
            resp.raise_for_status()
        except requests.RequestException as e:
            logger.warning(
                "Back-office request failed",
                extra={"method": method, "url": url, "error": str(e)},
            )
            raise CollaboratorError(f"{method} {url} failed: {e}") from e
        return resp

    def update_entity_field(
        self, *, tenant_id: str, entity_type: str, entity_id: str, field: str, value: object
    ) -> None:
        url = self._tenant_url(tenant_id, self._entity_path(entity_type, entity_id))
        self._request("PATCH", url, json={field: thaw(value)})

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
        url = self._tenant_url(tenant_id, self._entity_path(entity_type, entity_id, "status"))
        self._request(
            "POST", url, json={"status": new_status, "comment": comment, "actor_id": actor_id}
        )

    def add_tag(self, *, tenant_id: str, entity_type: str, entity_id: str, tag: str) -> None:
        url = self._tenant_url(tenant_id, self._entity_path(entity_type, entity_id, "tags"))
        self._request("POST", url, json={"tag": tag})

    def remove_tag(self, *, tenant_id: str, entity_type: str, entity_id: str, tag: str) -> None:
        suffix = f"tags/{quote(tag, safe='')}"
        url = self._tenant_url(tenant_id, self._entity_path(entity_type, entity_id, suffix))
        self._request("DELETE", url)

    def create_ticket(self, *, tenant_id: str, fields: Mapping[str, object]) -> str:
        url = self._tenant_url(tenant_id, "tickets")
        resp = self._request("POST", url, json=dict(fields))
        data = resp.json()
        ticket_id = data.get("id") if isinstance(data, dict) else None
        if ticket_id is None or ticket_id == "":
            raise CollaboratorError("Unexpected create ticket response: missing id")
        return str(ticket_id)

    def add_ticket_message(
        self, *, tenant_id: str, ticket_id: str, content: str, internal: bool, actor_id: str
    ) -> None:
        url = self._tenant_url(tenant_id, self._entity_path("ticket", ticket_id, "messages"))
        self._request(
            "POST",
            url,
            json={
                "content": content,
                "is_internal": internal,
                "sender_type": "system",
                "actor_id": actor_id,
            },
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
        url = self._tenant_url(tenant_id, self._entity_path(entity_type, entity_id, "timeline"))
        self._request(
            "POST",
            url,
            json={"status": status, "comment": comment, "actor_id": actor_id, "source": "workflow"},
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
        url = self._tenant_url(tenant_id, "notifications")
        self._request(
            "POST",
            url,
            json={
                "channel": "email",
                "recipient_email": recipient_email,
                "subject": subject,
                "content": body,
                "context": dict(context),
            },
        )

    def send_notification(
        self, *, tenant_id: str, event_type: str, recipient_context: Mapping[str, object]
    ) -> None:
        url = self._tenant_url(tenant_id, "notifications")
        self._request(
            "POST", url, json={"event_type": event_type, "context": dict(recipient_context)}
        )

    def load_tenant_notification_settings(self, *, tenant_id: str) -> NotificationSettings:
        url = self._tenant_url(tenant_id, "notification-settings")
        resp = self._request("GET", url)
        try:
            return NotificationSettings.model_validate(resp.json())
        except ValueError as e:
            raise CollaboratorError(f"Invalid notification settings response: {e}") from e

    def close(self) -> None:
        self._session.close()
