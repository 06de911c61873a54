"""Adapters for the back-office REST API."""

from workflow_rules_engine.engine.backoffice.client import BackOfficeClient

__all__ = ["BackOfficeClient"]
