"""structlog setup for the poller and the API."""

import logging
import sys
from typing import Any

import structlog

from .config import settings

# Event keys that may carry router or SMTP credentials.
SECRET_KEYS = frozenset({"password", "encrypted_password", "smtp_password", "credential_key", "auth"})

# Libraries that log every request or PDU at INFO.
CHATTY_LOGGERS = ("httpx", "httpcore", "pysnmp", "aiosmtplib", "nats")


def redact_secrets(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    for key in SECRET_KEYS.intersection(event_dict):
        event_dict[key] = "***"
    return event_dict


def configure_logging(level: str | None = None, json_output: bool | None = None) -> None:
    """Configure structlog once per process.

    Console output in development, one JSON object per line otherwise. Every
    event carries the instance name so several pollers can share a sink.
    """
    level_name = (level or settings.log_level).upper()
    if json_output is None:
        json_output = not settings.is_development

    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        redact_secrets,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]
    if json_output:
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, level_name)),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=True,
    )

    for name in CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    structlog.contextvars.bind_contextvars(instance=settings.instance_name)


def get_logger(name: str) -> structlog.BoundLogger:
    return structlog.get_logger(name)
