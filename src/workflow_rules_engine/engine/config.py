"""Configuration for the workflow engine.

Configuration is loaded from:
- environment variables
- and a local `.env` file (if present)

Back-office credentials are optional at load time: the CLI `validate` and
`simulate` commands run without them. Code paths that call the back-office API
check `backoffice_configured` first.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class EngineSettings(BaseSettings):
    """Settings for the workflow engine.

    Environment variables:
    - LOG_LEVEL                         (optional)
    - WORKFLOW_RULES_ENABLED            (optional)
    - WORKFLOW_MAX_CONCURRENT_GRAPHS    (optional)
    - WORKFLOW_GRAPH_STORE_PATH         (optional)
    - BACKOFFICE_BASE_URL               (optional)
    - BACKOFFICE_API_TOKEN              (optional)

    Notes:
        Pydantic-settings supports overriding the env file in tests via:
        `EngineSettings(_env_file=path_to_env)`.
    """

    log_level: str = Field(
        default="INFO",
        validation_alias="LOG_LEVEL",
        description="Root logging level",
    )

    workflow_rules_enabled: bool = Field(
        default=True,
        validation_alias="WORKFLOW_RULES_ENABLED",
        description="Global switch; when false, domain events are accepted but no rule runs",
    )
    max_concurrent_graphs: int = Field(
        default=8,
        gt=0,
        validation_alias="WORKFLOW_MAX_CONCURRENT_GRAPHS",
        description="Upper bound on graph walks running in parallel for one dispatch",
    )

    graph_store_path: Path = Field(
        default=Path("workflow_state/rules.json"),
        validation_alias="WORKFLOW_GRAPH_STORE_PATH",
        description="JSON file holding the authored workflow rules",
    )

    system_actor_id: str = Field(
        default="workflow-automation",
        validation_alias="WORKFLOW_SYSTEM_ACTOR_ID",
        description="Actor id recorded on status transitions performed by rules",
    )
    default_comment: str = Field(
        default="Workflow automation",
        validation_alias="WORKFLOW_DEFAULT_COMMENT",
        description="Comment used for status transitions when the action has none",
    )

    webhook_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        validation_alias="WORKFLOW_WEBHOOK_TIMEOUT_SECONDS",
        description="Timeout for outbound webhook actions",
    )

    backoffice_base_url: str = Field(
        default="",
        validation_alias="BACKOFFICE_BASE_URL",
        description="Base URL of the back-office REST API used for entity side effects",
    )
    backoffice_api_token: str = Field(
        default="",
        validation_alias="BACKOFFICE_API_TOKEN",
        description="Bearer token for the back-office REST API",
    )
    backoffice_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        validation_alias="BACKOFFICE_TIMEOUT_SECONDS",
        description="Timeout for back-office API calls",
    )

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        extra="ignore",
    )

    @field_validator("backoffice_base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.strip().rstrip("/")

    @property
    def backoffice_configured(self) -> bool:
        """True when both the back-office URL and token are set."""

        return bool(self.backoffice_base_url) and bool(self.backoffice_api_token.strip())
