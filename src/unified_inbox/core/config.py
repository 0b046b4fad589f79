"""Application configuration models and loader utilities."""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, cast

from dotenv import dotenv_values
from pydantic import BaseModel, Field

from .models import Credential, Endpoint, ProviderKind

IMAP_PRESETS: dict[ProviderKind, Endpoint] = {
    ProviderKind.GMAIL: Endpoint(host="imap.gmail.com", port=993),
    ProviderKind.YAHOO: Endpoint(host="imap.mail.yahoo.com", port=993),
    ProviderKind.OUTLOOK: Endpoint(host="outlook.office365.com", port=993),
    ProviderKind.REDIFF: Endpoint(host="imap.rediff.com", port=993),
}


class AccountSettings(BaseModel):
    """Settings describing the mailbox account to connect to."""

    email: str | None = Field(default=None, description="Account email address")
    provider: ProviderKind = Field(
        default=ProviderKind.GMAIL, description="Provider preset to use"
    )
    host: str | None = Field(
        default=None, description="IMAP hostname, defaults to the provider preset"
    )
    port: int = Field(default=993, description="IMAP port, typically 993 for TLS")
    use_tls: bool = Field(default=True, description="Whether to enforce TLS")
    username: str | None = Field(
        default=None, description="Login name when it differs from the email"
    )
    password: str | None = Field(
        default=None, description="Account or app-specific password", repr=False
    )

    def to_credential(self) -> Credential:
        """Build an immutable :class:`Credential` from these settings."""
        if not self.email or not self.password:
            raise ValueError("Account email and password are required")
        host = self.host
        port = self.port
        if host is None:
            preset = IMAP_PRESETS.get(self.provider)
            if preset is None:
                raise ValueError(
                    f"No IMAP host configured for provider '{self.provider.value}'"
                )
            host = preset.host
            port = preset.port
        return Credential(
            email=self.email,
            provider=self.provider,
            endpoint=Endpoint(host=host, port=port, use_tls=self.use_tls),
            secret=self.password,
            username=self.username,
        )


class EngineSettings(BaseModel):
    """Timeouts and bounds applied by the retrieval engine."""

    connect_timeout_seconds: float = Field(
        default=10.0, gt=0, description="Budget for the server greeting"
    )
    auth_timeout_seconds: float = Field(
        default=20.0, gt=0, description="Budget for login and mailbox selection"
    )
    fetch_timeout_seconds: float = Field(
        default=60.0, gt=0, description="Budget for search and bulk fetch"
    )
    default_limit: int = Field(
        default=20, ge=1, description="Messages returned when no limit is given"
    )
    max_fetch_limit: int = Field(
        default=200, ge=1, description="Upper bound applied to caller limits"
    )
    preview_length: int = Field(
        default=100, ge=1, description="Maximum preview length before ellipsis"
    )
    mailbox: str = Field(default="INBOX", description="Mailbox selected on login")
    parse_workers: int | None = Field(
        default=None, ge=1, description="Thread count for concurrent parsing"
    )


class LoggingSettings(BaseModel):
    """Logging preferences."""

    level: str = Field(default="INFO", description="Root logging level")
    structured: bool = Field(
        default=False, description="Toggle JSON structured logging"
    )
    redact_secrets: bool = Field(
        default=True, description="Mask credentials and tokens in log output"
    )


class AppSettings(BaseModel):
    """Aggregated application configuration."""

    account: AccountSettings = Field(default_factory=AccountSettings)
    engine: EngineSettings = Field(default_factory=EngineSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


ENV_PREFIX = "UNIFIED_INBOX_"


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
    env_file: Path | str | None, include_environment: bool
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

    env_values = {}
    if include_environment:
        env_values = {
            key: value
            for key, value in os.environ.items()
            if key.startswith(ENV_PREFIX)
        }

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
    include_environment: bool = True,
    **overrides: Any,
) -> AppSettings:
    """Load application settings, applying env files and overrides."""
    collected = _collect_env_values(env_file, include_environment)
    if overrides:
        collected.update(overrides)
    return AppSettings.model_validate(collected)


__all__ = [
    "AccountSettings",
    "AppSettings",
    "EngineSettings",
    "IMAP_PRESETS",
    "LoggingSettings",
    "load_app_settings",
]
