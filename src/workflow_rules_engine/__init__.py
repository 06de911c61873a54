"""Workflow Rules Engine.

Reacts to back-office domain events (returns, tickets, customers) by walking
operator-authored rule graphs:
- configuration loaded from `.env`
- structured logging
- condition evaluation, side-effecting actions and delayed continuations
"""

__version__ = "0.1.0"

from workflow_rules_engine.engine.config import EngineSettings

__all__ = ["__version__", "EngineSettings"]
