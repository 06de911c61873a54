from __future__ import annotations

import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from types import MappingProxyType
from typing import Any

from .models import EntityType, TriggerEventType


class _Missing:
    """Sentinel for a field path that is absent from a snapshot."""

    _instance: _Missing | None = None

    def __new__(cls) -> _Missing:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING: Any = _Missing()

# A bare path ("status") resolves against these entities, in order.
_DEFAULT_ENTITIES: tuple[str, ...] = (EntityType.RETURN.value, EntityType.TICKET.value)
_ENTITY_NAMES: frozenset[str] = frozenset(e.value for e in EntityType)


def _freeze(value: object) -> object:
    if isinstance(value, Mapping):
        return MappingProxyType({str(k): _freeze(v) for k, v in value.items()})
    if isinstance(value, list | tuple):
        return tuple(_freeze(v) for v in value)
    return value


def thaw(value: object) -> object:
    if isinstance(value, Mapping):
        return {k: thaw(v) for k, v in value.items()}
    if isinstance(value, tuple):
        return [thaw(v) for v in value]
    return value


def resolve_path(root: Mapping[str, object] | None, path: str) -> object:
    """Resolve a dotted field path against an entity snapshot.

    The first segment names the entity ("return.status"). A bare path with no
    entity prefix resolves against the return, then the ticket.
    """

    if root is None or not path.strip():
        return MISSING

    parts = [p for p in path.strip().split(".") if p]
    head = parts[0]
    if head in _ENTITY_NAMES:
        if head not in root:
            return MISSING
        value: object = root[head]
        rest = parts[1:]
    else:
        for name in _DEFAULT_ENTITIES:
            if isinstance(root.get(name), Mapping):
                value = root[name]
                rest = parts
                break
        else:
            return MISSING

    for part in rest:
        if not isinstance(value, Mapping) or part not in value:
            return MISSING
        value = value[part]
    return value


@dataclass(frozen=True, slots=True)
class WorkflowEvent:
    """A domain event captured at trigger time.

    The snapshot is deep-copied and frozen on capture. Delayed continuations
    carry this object forward unchanged, so a rule always sees the entity as
    it was when the event fired.
    """

    type: TriggerEventType
    tenant_id: str
    snapshot: Mapping[str, object]
    previous_values: Mapping[str, object] | None = None
    event_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    occurred_at: datetime = field(default_factory=lambda: datetime.now(tz=UTC))

    @staticmethod
    def capture(
        *,
        event_type: TriggerEventType | str,
        tenant_id: str,
        snapshot: Mapping[str, object],
        previous_values: Mapping[str, object] | None = None,
    ) -> WorkflowEvent:
        if not tenant_id.strip():
            raise ValueError("tenant_id is required")
        frozen_snapshot = _freeze(dict(snapshot))
        frozen_previous = (
            _freeze(dict(previous_values)) if previous_values is not None else None
        )
        return WorkflowEvent(
            type=TriggerEventType(event_type),
            tenant_id=tenant_id,
            snapshot=frozen_snapshot,  # type: ignore[arg-type]
            previous_values=frozen_previous,  # type: ignore[arg-type]
        )

    @property
    def entity_type(self) -> EntityType | None:
        return self.type.entity_type

    def entity_id(self, entity_type: EntityType | str | None = None) -> str | None:
        """Id of an entity in the snapshot (defaults to the triggering entity)."""

        target = EntityType(entity_type) if entity_type is not None else self.entity_type
        if target is None:
            return None
        entity = self.snapshot.get(target.value)
        if not isinstance(entity, Mapping):
            return None
        raw = entity.get("id")
        if raw is None or raw == "":
            return None
        return str(raw)

    def resolve(self, path: str) -> object:
        return resolve_path(self.snapshot, path)

    def resolve_previous(self, path: str) -> object:
        return resolve_path(self.previous_values, path)

    def snapshot_dict(self) -> dict[str, object]:
        """A plain, mutable copy of the snapshot (for template variables and payloads)."""

        thawed = thaw(self.snapshot)
        assert isinstance(thawed, dict)
        return thawed

    def to_json(self) -> dict[str, object]:
        out: dict[str, object] = {
            "event_id": self.event_id,
            "type": self.type.value,
            "tenant_id": self.tenant_id,
            "occurred_at": self.occurred_at.isoformat(),
            "snapshot": self.snapshot_dict(),
        }
        if self.previous_values is not None:
            out["previous_values"] = thaw(self.previous_values)
        return out
