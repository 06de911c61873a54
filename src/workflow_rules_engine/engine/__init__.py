"""Workflow execution engine components.

Provides:
- Settings loaded from .env
- Structured logging
- The rule graph walker and its collaborators
- A small CLI surface
"""
