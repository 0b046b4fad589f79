"""Logging configuration helpers."""

from __future__ import annotations

import logging
import logging.config
import re
from collections.abc import Mapping
from typing import Any

from .config import LoggingSettings

REDACTED = "***REDACTED***"

_SENSITIVE_PATTERNS = (
    re.compile(r"Bearer\s+[\w\-.~+/]+=*", re.IGNORECASE),
    re.compile(
        r"\b(password|passwd|secret|client_secret|access_token|refresh_token"
        r"|api_key|token)(\s*[:=]\s*)[\"']?[^\"'\s,;]+[\"']?",
        re.IGNORECASE,
    ),
)

_SENSITIVE_KEYS = ("password", "secret", "token", "authorization", "api_key")


def redact(text: str) -> str:
    """Mask credentials, tokens and bearer headers in ``text``."""
    sanitized = _SENSITIVE_PATTERNS[0].sub(f"Bearer {REDACTED}", text)
    return _SENSITIVE_PATTERNS[1].sub(
        lambda match: f"{match.group(1)}{match.group(2)}{REDACTED}", sanitized
    )


def _redact_value(key: str, value: Any) -> Any:
    if any(marker in key.lower() for marker in _SENSITIVE_KEYS):
        return REDACTED
    if isinstance(value, str):
        return redact(value)
    if isinstance(value, Mapping):
        return {
            inner_key: _redact_value(str(inner_key), inner_value)
            for inner_key, inner_value in value.items()
        }
    return value


class RedactingFilter(logging.Filter):
    """Scrub secrets from log messages and their arguments."""

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = redact(record.msg)
        if isinstance(record.args, Mapping):
            record.args = {
                key: _redact_value(str(key), value)
                for key, value in record.args.items()
            }
        elif isinstance(record.args, tuple):
            record.args = tuple(_redact_value("", value) for value in record.args)
        return True


def _structured_formatter() -> dict[str, Any]:
    """Return a dictConfig fragment for structured JSON logs."""
    return {
        "format": "{asctime} {levelname} {name} {message}",
        "style": "{",
    }


def _plain_formatter() -> dict[str, Any]:
    """Return a dictConfig fragment for human readable logs."""
    return {
        "format": "%(asctime)s %(levelname)s %(name)s %(message)s",
    }


def configure_logging(settings: LoggingSettings) -> None:
    """Configure application logging according to provided settings."""
    formatter = _structured_formatter() if settings.structured else _plain_formatter()

    console_handler: dict[str, Any] = {
        "class": "logging.StreamHandler",
        "formatter": "default",
        "level": settings.level,
    }
    filters: dict[str, Any] = {}
    if settings.redact_secrets:
        filters["redact"] = {"()": RedactingFilter}
        console_handler["filters"] = ["redact"]

    dict_config = {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": filters,
        "formatters": {
            "default": formatter,
        },
        "handlers": {
            "console": console_handler,
        },
        "root": {
            "handlers": ["console"],
            "level": settings.level,
        },
    }

    logging.config.dictConfig(dict_config)


__all__ = ["RedactingFilter", "configure_logging", "redact"]
