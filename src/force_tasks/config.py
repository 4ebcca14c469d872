"""Configuration management for force-tasks."""

from __future__ import annotations

import json
import os
from functools import lru_cache
from pathlib import Path
from typing import Annotated, Any

from pydantic import AliasChoices, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

_TASK_STATUSES = {"pending", "in_progress", "review", "completed", "released"}


def _split_csv(value: Any) -> Any:
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    return value


class ForceTasksSettings(BaseSettings):
    """Runtime configuration sourced from environment variables and optional .env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    project_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("GOOGLE_CLOUD_PROJECT", "NEXT_PUBLIC_FIREBASE_PROJECT_ID"),
    )
    credentials_json: SecretStr | None = Field(
        default=None, validation_alias="GOOGLE_APPLICATION_CREDENTIALS_JSON"
    )
    tasks_collection: str = Field(default="tasks", validation_alias="FORCE_TASKS_COLLECTION")
    stale_claim_hours: float = Field(default=2.0, validation_alias="FORCE_TASKS_STALE_CLAIM_HOURS")
    stale_statuses: Annotated[tuple[str, ...], NoDecode] = Field(
        default=("in_progress", "review"), validation_alias="FORCE_TASKS_STALE_STATUSES"
    )
    poll_interval_seconds: float = Field(default=15.0, validation_alias="FORCE_TASKS_POLL_INTERVAL")
    default_agent_id: str = Field(default="claude-ai-agent", validation_alias="FORCE_TASKS_AGENT_ID")
    admin_emails: Annotated[tuple[str, ...], NoDecode] = Field(
        default=(), validation_alias="FORCE_TASKS_ADMIN_EMAILS"
    )
    admin_email_domain: str | None = Field(default=None, validation_alias="FORCE_TASKS_ADMIN_DOMAIN")
    seed_paths: Annotated[tuple[Path, ...], NoDecode] = Field(
        default=(Path("seeds"),), validation_alias="FORCE_TASKS_SEED_PATHS"
    )
    log_level: str = Field(default="INFO", validation_alias="FORCE_TASKS_LOG_LEVEL")

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError(
                "FORCE_TASKS_LOG_LEVEL must be one of CRITICAL, ERROR, WARNING, INFO, DEBUG"
            )
        return normalized

    @field_validator("tasks_collection")
    @classmethod
    def _validate_collection(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("FORCE_TASKS_COLLECTION must not be empty")
        return normalized

    @field_validator("stale_claim_hours", "poll_interval_seconds")
    @classmethod
    def _validate_positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("stale claim threshold and poll interval must be > 0")
        return value

    @field_validator("stale_statuses", mode="before")
    @classmethod
    def _parse_stale_statuses(cls, value):
        if value is None or value == "":
            return ("in_progress", "review")
        statuses = _split_csv(value)
        if not isinstance(statuses, (list, tuple)):
            raise TypeError("FORCE_TASKS_STALE_STATUSES must be a comma-separated list")
        unknown = [status for status in statuses if status not in _TASK_STATUSES]
        if unknown:
            raise ValueError(f"Unknown task statuses in FORCE_TASKS_STALE_STATUSES: {unknown}")
        return tuple(statuses)

    @field_validator("admin_emails", mode="before")
    @classmethod
    def _parse_admin_emails(cls, value):
        if value is None:
            return ()
        emails = _split_csv(value)
        if not isinstance(emails, (list, tuple)):
            raise TypeError("FORCE_TASKS_ADMIN_EMAILS must be a comma-separated list")
        return tuple(str(email).strip().lower() for email in emails)

    @field_validator("admin_email_domain")
    @classmethod
    def _normalize_domain(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip().lower().lstrip("@")
        return normalized or None

    @field_validator("seed_paths", mode="before")
    @classmethod
    def _parse_seed_paths(cls, value):
        if value is None or value == "":
            return (Path("seeds"),)
        if isinstance(value, (list, tuple)):
            return tuple(Path(str(item)) for item in value)
        if isinstance(value, str):
            parts = [part.strip() for part in value.split(os.pathsep) if part.strip()]
            return tuple(Path(part) for part in parts) or (Path("seeds"),)
        raise TypeError("FORCE_TASKS_SEED_PATHS must be a list of paths or a path-separated string")

    @field_validator("credentials_json")
    @classmethod
    def _validate_credentials(cls, value: SecretStr | None) -> SecretStr | None:
        if value is None or not value.get_secret_value().strip():
            return None
        try:
            parsed = json.loads(value.get_secret_value())
        except json.JSONDecodeError as exc:
            raise ValueError("GOOGLE_APPLICATION_CREDENTIALS_JSON is not valid JSON") from exc
        if not isinstance(parsed, dict):
            raise ValueError("GOOGLE_APPLICATION_CREDENTIALS_JSON must be a JSON object")
        return value

    def credentials_info(self) -> dict[str, Any] | None:
        """Return the parsed service-account mapping, if one was configured."""

        if self.credentials_json is None:
            return None
        return json.loads(self.credentials_json.get_secret_value())


@lru_cache(maxsize=1)
def get_settings() -> ForceTasksSettings:
    """Return cached settings instance."""

    settings = ForceTasksSettings()
    settings.seed_paths = tuple(path.expanduser().resolve() for path in settings.seed_paths)
    return settings


__all__ = ["ForceTasksSettings", "get_settings"]
