"""Configuration for the REST server.

The server starts without back-office credentials. In that case rules run
against a recording gateway and no side effect leaves the process.
"""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ServerSettings(BaseSettings):
    cors_origins: str = Field(
        default="http://localhost:5173,http://127.0.0.1:5173",
        validation_alias="WORKFLOW_CORS_ORIGINS",
        description="Comma-separated list of allowed CORS origins.",
    )

    require_backoffice: bool = Field(
        default=False,
        validation_alias="WORKFLOW_REQUIRE_BACKOFFICE",
        description=(
            "If true, refuse to start unless BACKOFFICE_BASE_URL and BACKOFFICE_API_TOKEN "
            "are set, instead of falling back to dry-run side effects."
        ),
    )

    model_config = SettingsConfigDict(env_prefix="", env_file=".env", extra="ignore")

    def parsed_cors_origins(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]
