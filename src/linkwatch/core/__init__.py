"""Core module for linkwatch."""

from .config import settings, get_settings, Settings
from .logging import configure_logging, get_logger
from .exceptions import (
    LinkwatchError,
    TransientDeviceError,
    PersistenceError,
    DuplicateAlertRace,
    DeduplicationInvariantViolation,
    ConfigurationError,
)

__all__ = [
    "settings",
    "get_settings",
    "Settings",
    "configure_logging",
    "get_logger",
    "LinkwatchError",
    "TransientDeviceError",
    "PersistenceError",
    "DuplicateAlertRace",
    "DeduplicationInvariantViolation",
    "ConfigurationError",
]
