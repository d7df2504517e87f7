"""Configuration management for the record filter engine."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_REPO_ROOT = Path(__file__).resolve().parents[1]
_DEFAULT_CONFIG_PATH = _REPO_ROOT / "config" / "record-filters.yml"
_USER_CONFIG_PATHS = [
    Path("~/.config/record-filters/config.yml").expanduser(),
    Path("/config/record-filters.yml"),
]

WEEKDAYS = (
    "monday",
    "tuesday",
    "wednesday",
    "thursday",
    "friday",
    "saturday",
    "sunday",
)


def _load_yaml(path: Path) -> dict[str, Any]:
    """Load a YAML mapping from disk, returning an empty mapping if missing."""
    if not path.exists():
        return {}
    data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Config file must contain a mapping: {path}")
    return data


def _yaml_settings_source(paths: list[Path]):
    """Create a Pydantic settings source for a list of YAML paths."""

    def source() -> dict[str, Any]:
        merged: dict[str, Any] = {}
        for path in paths:
            merged.update(_load_yaml(path))
        return merged

    return source


def _set_nested_value(target: dict[str, Any], path: str, value: Any) -> None:
    """Set a dotted-path value on a nested mapping, creating containers."""
    parts = path.split(".")
    cursor = target
    for key in parts[:-1]:
        node = cursor.get(key)
        if not isinstance(node, dict):
            node = {}
            cursor[key] = node
        cursor = node
    cursor[parts[-1]] = value


def _parse_env_value(raw: str, kind: str) -> Any:
    """Parse an environment value into the requested primitive type."""
    if kind == "int":
        return int(raw)
    if kind == "bool":
        return raw.strip().lower() in {"1", "true", "yes", "on"}
    if kind == "json":
        return json.loads(raw)
    return raw


def _env_settings_source():
    """Create a settings source that maps environment variables to config keys."""
    mapping = {
        "DATABASE_URL": ("database.url", "str"),
        "USER_TIMEZONE": ("user.timezone", "str"),
        "LOG_LEVEL": ("log_level", "str"),
        "LOG_JSON": ("log_json", "bool"),
        "FILTERS_ME_KEYWORD": ("filters.me_keyword", "str"),
        "FILTERS_WEEK_START": ("filters.week_start", "str"),
        "FILTERS_ASSIGNEE_FIELD": ("filters.assignee_field", "str"),
        "PARTICIPANTS_STALE_WARNING": ("participants.stale_warning", "bool"),
    }

    def source() -> dict[str, Any]:
        data: dict[str, Any] = {}
        for env_key, (path, kind) in mapping.items():
            raw = os.environ.get(env_key)
            if raw is None:
                continue
            _set_nested_value(data, path, _parse_env_value(raw, kind))
        return data

    return source


class DatabaseConfig(BaseModel):
    """Database connection configuration."""

    url: str = "sqlite:///record-filters.db"


class UserConfig(BaseModel):
    """Presentation settings for the people issuing queries."""

    timezone: str = "UTC"

    @model_validator(mode="after")
    def validate_timezone(self) -> "UserConfig":
        """Ensure the configured timezone is valid."""
        try:
            ZoneInfo(self.timezone)
        except ZoneInfoNotFoundError as exc:
            raise ValueError(f"Invalid timezone: {self.timezone}") from exc
        return self


class FilterConfig(BaseModel):
    """Filter engine defaults."""

    me_keyword: str = "me"
    week_start: str = "monday"
    assignee_field: str = "assigned_to_id"

    @field_validator("me_keyword")
    @classmethod
    def validate_me_keyword(cls, value: str) -> str:
        """Ensure the acting-user keyword is a non-numeric token."""
        normalized = value.strip()
        if not normalized or normalized.isdigit():
            raise ValueError("filters.me_keyword must be a non-numeric token.")
        return normalized

    @field_validator("week_start")
    @classmethod
    def validate_week_start(cls, value: str) -> str:
        """Ensure week_start is a supported weekday name."""
        normalized = value.strip().lower()
        if normalized not in WEEKDAYS:
            raise ValueError("filters.week_start must be a weekday name.")
        return normalized

    @property
    def week_start_index(self) -> int:
        """Return the configured week start as a ``date.weekday()`` index."""
        return WEEKDAYS.index(self.week_start)


class ParticipantConfig(BaseModel):
    """Participant aggregation settings."""

    stale_warning: bool = True


class Settings(BaseSettings):
    """Application settings loaded from environment variables and YAML."""

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_nested_delimiter="__",
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        """Layer settings sources in descending order of precedence."""
        return (
            init_settings,
            _env_settings_source(),
            _yaml_settings_source(_USER_CONFIG_PATHS),
            _yaml_settings_source([_DEFAULT_CONFIG_PATH]),
        )

    # Logging
    log_level: str = "INFO"
    log_json: bool = True

    # Database Configuration
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)

    # User Context
    user: UserConfig = Field(default_factory=UserConfig)

    # Filter Engine
    filters: FilterConfig = Field(default_factory=FilterConfig)

    # Participant Aggregation
    participants: ParticipantConfig = Field(default_factory=ParticipantConfig)


# Global settings instance
settings = Settings()
