"""`{{ path }}` placeholder rendering for action parameters."""

from __future__ import annotations

import json
import re
from collections.abc import Mapping

from .events import MISSING, WorkflowEvent, thaw

_PLACEHOLDER = re.compile(r"\{\{\s*([A-Za-z0-9_.]+)\s*\}\}")


def _to_text(value: object) -> str:
    if value is MISSING or value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Mapping | tuple | list):
        return json.dumps(thaw(value), ensure_ascii=False, default=str)
    return str(value)


def render_template(value: object, event: WorkflowEvent) -> object:
    """Substitute snapshot values into strings, recursing into dicts and lists.

    A string that is exactly one placeholder keeps the resolved value's type,
    so `"{{customer.riskScore}}"` renders to a number.
    """

    if isinstance(value, str):
        whole = _PLACEHOLDER.fullmatch(value.strip())
        if whole is not None:
            resolved = event.resolve(whole.group(1))
            return None if resolved is MISSING else thaw(resolved)
        return _PLACEHOLDER.sub(lambda m: _to_text(event.resolve(m.group(1))), value)
    if isinstance(value, Mapping):
        return {k: render_template(v, event) for k, v in value.items()}
    if isinstance(value, list | tuple):
        return [render_template(v, event) for v in value]
    return value


def render_text(value: object, event: WorkflowEvent, *, default: str = "") -> str:
    """Render to a string (for subjects, messages and comments)."""

    if value is None:
        return default
    rendered = render_template(value, event)
    text = _to_text(rendered)
    return text if text else default
