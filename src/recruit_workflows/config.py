"""Configuration for the workflow automation engine.

Configuration is loaded from:
- environment variables
- and a local `.env` file (if present)

Email credentials are optional: without `SENDGRID_API_KEY` the engine falls
back to a logging mock provider, matching the CRM's development setup.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class EngineSettings(BaseSettings):
    """Settings for the engine, its stores and collaborators.

    Notes:
        Pydantic-settings supports overriding the env file in tests via:
        `EngineSettings(_env_file=path_to_env)`.
    """

    log_level: str = Field(
        default="INFO",
        validation_alias="LOG_LEVEL",
        description="Root logging level",
    )

    state_path: Path = Field(
        default=Path("workflow_state"),
        validation_alias="WORKFLOW_STATE_PATH",
        description="Directory holding the JSON record store",
    )

    max_workers: int = Field(
        default=4,
        ge=1,
        le=64,
        validation_alias="WORKFLOW_MAX_WORKERS",
        description="Number of worker threads running workflow executions",
    )
    timezone: str = Field(
        default="UTC",
        validation_alias="WORKFLOW_TIMEZONE",
        description="IANA zone used for schedule windows and daily execution caps",
    )
    http_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        le=120,
        validation_alias="WORKFLOW_HTTP_TIMEOUT_SECONDS",
        description="Upper bound for a single email or webhook call",
    )
    persistence_retry_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        validation_alias="WORKFLOW_PERSISTENCE_RETRY_ATTEMPTS",
        description="Attempts for writing an execution record or workflow counters",
    )
    persistence_retry_delay_seconds: float = Field(
        default=0.2,
        ge=0,
        validation_alias="WORKFLOW_PERSISTENCE_RETRY_DELAY_SECONDS",
        description="Linear backoff step between persistence attempts",
    )
    defer_delayed_actions: bool = Field(
        default=False,
        validation_alias="WORKFLOW_DEFER_DELAYED_ACTIONS",
        description=(
            "If true, actions with delayMinutes are queued in deferred_actions and run by "
            "'recruit-workflows process-deferred'. Otherwise they are only recorded as skipped."
        ),
    )

    email_provider: Literal["auto", "sendgrid", "mock"] = Field(
        default="auto",
        validation_alias="EMAIL_PROVIDER",
        description="'auto' uses SendGrid when an API key is set, the mock provider otherwise",
    )
    sendgrid_api_key: str = Field(default="", validation_alias="SENDGRID_API_KEY")
    sendgrid_base_url: str = Field(
        default="https://api.sendgrid.com", validation_alias="SENDGRID_BASE_URL"
    )
    email_from: str = Field(default="noreply@hiring-app.com", validation_alias="EMAIL_FROM")
    email_from_name: str = Field(default="Hi-Ring Recruitment", validation_alias="EMAIL_FROM_NAME")
    email_reply_to: str | None = Field(default=None, validation_alias="EMAIL_REPLY_TO")
    company_name: str = Field(
        default="Hi-Ring",
        validation_alias="COMPANY_NAME",
        description="Value of the {{companyName}} template variable",
    )

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        extra="ignore",
    )

    @field_validator("timezone")
    @classmethod
    def _check_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {value!r}") from e
        return value

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)
