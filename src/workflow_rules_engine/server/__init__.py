"""FastAPI server adapter for the workflow rules engine.

- Domain events arrive over HTTP and are handed to `WorkflowEngine`
- Rule evaluation and side effects stay in `workflow_rules_engine.engine.*`
"""

from __future__ import annotations

__all__ = ["create_app"]

from workflow_rules_engine.server.app import create_app
