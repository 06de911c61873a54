"""Rule graph execution.

This package holds first-class types for:
- Rule graphs (trigger, condition, action and delay nodes)
- Domain events with a frozen entity snapshot
- Side-effecting actions behind explicit collaborator interfaces
- Delayed continuations that resume a walk later

Entry point: `engine.WorkflowEngine`.
"""

__all__: list[str] = []
