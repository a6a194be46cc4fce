"""Application configuration models and loader utilities."""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, cast

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field

SYNC_ALL_SENTINEL = 999_999


class StorageSettings(BaseModel):
    """Settings for local persistence."""

    db_path: Path = Field(
        default=Path("./threadline.db"), description="SQLite database path"
    )
    attachments_dir: Path = Field(
        default=Path("./attachments"),
        description="Root directory for stored attachment files",
    )
    pool_size: int = Field(
        default=5, ge=1, le=16, description="Pooled SQLite connections"
    )


class SyncSettings(BaseModel):
    """Settings controlling how much mail a sync run pulls."""

    model_config = ConfigDict(frozen=True)

    max_sync_count: int = Field(
        default=100,
        ge=1,
        description=f"Messages fetched per run; {SYNC_ALL_SENTINEL} means all",
    )
    auto_sync_enabled: bool = Field(
        default=False, description="Re-sync accounts periodically in watch mode"
    )
    sync_interval_minutes: int = Field(
        default=15, ge=1, description="Minutes between automatic sync rounds"
    )
    sync_attachments: bool = Field(
        default=True, description="Store attachment files during sync"
    )
    mailbox: str = Field(default="INBOX", description="Mailbox to synchronise")

    @property
    def sync_all(self) -> bool:
        """Whether the cap is the sentinel meaning "sync everything"."""
        return self.max_sync_count >= SYNC_ALL_SENTINEL


class TimeoutSettings(BaseModel):
    """Per-step network bounds, in seconds."""

    greeting_seconds: float = Field(default=5.0, gt=0)
    oauth_seconds: float = Field(default=15.0, gt=0)
    capability_seconds: float = Field(default=5.0, gt=0)


class OAuthClientSettings(BaseModel):
    """Client credentials for one OAuth-capable provider."""

    client_id: str | None = Field(default=None)
    client_secret: str | None = Field(default=None)


class OAuthSettings(BaseModel):
    """OAuth client registrations keyed by provider name."""

    gmail: OAuthClientSettings = Field(default_factory=OAuthClientSettings)
    outlook: OAuthClientSettings = Field(default_factory=OAuthClientSettings)
    request_timeout_seconds: float = Field(default=15.0, gt=0)


class LoggingSettings(BaseModel):
    """Logging preferences."""

    level: str = Field(default="INFO", description="Root logging level")
    structured: bool = Field(
        default=False, description="Toggle brace-style structured logging"
    )


class AppSettings(BaseModel):
    """Aggregated application configuration."""

    storage: StorageSettings = Field(default_factory=StorageSettings)
    sync: SyncSettings = Field(default_factory=SyncSettings)
    timeouts: TimeoutSettings = Field(default_factory=TimeoutSettings)
    oauth: OAuthSettings = Field(default_factory=OAuthSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


ENV_PREFIX = "THREADLINE_"


def _normalize_key(raw_key: str) -> list[str]:
    """Convert an environment variable key into a nested attribute path."""
    trimmed = raw_key.removeprefix(ENV_PREFIX)
    return [segment.lower() for segment in trimmed.split("__") if segment]


def _merge_into_tree(tree: dict[str, Any], path: list[str], value: Any) -> None:
    """Assign a value to a nested dictionary given a path."""
    cursor = tree
    for segment in path[:-1]:
        next_node = cursor.setdefault(segment, {})
        cursor = cast(dict[str, Any], next_node)
    cursor[path[-1]] = value


def _collect_env_values(
    env_file: Path | str | None, *, include_environment: bool = True
) -> dict[str, Any]:
    """Load configuration values from environment variables and optional file."""
    collected: dict[str, Any] = {}

    file_values = {}
    if env_file:
        env_path = Path(env_file)
        if env_path.is_file():
            file_values = {
                key: value
                for key, value in dotenv_values(env_path).items()
                if key and key.startswith(ENV_PREFIX)
            }

    env_values = (
        {key: value for key, value in os.environ.items() if key.startswith(ENV_PREFIX)}
        if include_environment
        else {}
    )

    combined: dict[str, Any] = {**file_values, **env_values}

    for key, value in combined.items():
        path = _normalize_key(key)
        if not path:
            continue
        normalized_value: Any = value
        if isinstance(value, str) and value == "":
            normalized_value = None
        elif isinstance(value, str):
            lowercase_value = value.lower()
            if lowercase_value == "true":
                normalized_value = True
            elif lowercase_value == "false":
                normalized_value = False
        _merge_into_tree(collected, path, normalized_value)

    return collected


@lru_cache(maxsize=1)
def load_app_settings(
    env_file: Path | str | None = None,
    *,
    include_environment: bool = True,
    **overrides: Any,
) -> AppSettings:
    """Load application settings, applying env files and overrides."""
    collected = _collect_env_values(env_file, include_environment=include_environment)
    if overrides:
        collected.update(overrides)
    return AppSettings.model_validate(collected)


__all__ = [
    "AppSettings",
    "LoggingSettings",
    "OAuthClientSettings",
    "OAuthSettings",
    "SYNC_ALL_SENTINEL",
    "StorageSettings",
    "SyncSettings",
    "TimeoutSettings",
    "load_app_settings",
]
