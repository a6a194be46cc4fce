"""Core utilities for configuration, logging, errors, and domain models."""

from .config import AppSettings, StorageSettings, SyncSettings, load_app_settings
from .errors import ErrorResponse, ThreadlineError
from .events import ProgressEmitter
from .logging import configure_logging

__all__ = [
    "AppSettings",
    "ErrorResponse",
    "ProgressEmitter",
    "StorageSettings",
    "SyncSettings",
    "ThreadlineError",
    "configure_logging",
    "load_app_settings",
]
