"""Core utilities for configuration, logging, and domain models."""

from .config import (
    AccountSettings,
    AppSettings,
    EngineSettings,
    LoggingSettings,
    load_app_settings,
)
from .logging import configure_logging

__all__ = [
    "AccountSettings",
    "AppSettings",
    "EngineSettings",
    "LoggingSettings",
    "configure_logging",
    "load_app_settings",
]
