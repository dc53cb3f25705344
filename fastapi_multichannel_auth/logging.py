"""Structured logging setup for the authentication core."""

import logging
import os
from typing import Any

import structlog

_SENSITIVE_KEYS = frozenset({"code", "otp", "token", "secret", "secret_key"})


def _is_sensitive(key: str) -> bool:
    lowered = key.lower()
    return (
        lowered in _SENSITIVE_KEYS
        or "password" in lowered
        or lowered.endswith("_token")
    )


def _redact_secrets(
    _logger: Any, _method_name: str, event_dict: dict[str, Any]  # noqa: ANN401
) -> dict[str, Any]:
    """Mask values whose key names suggest a credential or one-time code."""
    for key in list(event_dict.keys()):
        if key == "event":
            continue
        if _is_sensitive(key):
            value = event_dict[key]
            if isinstance(value, str) and value:
                event_dict[key] = "***"
    return event_dict


_PII_KEYS = ("recipient", "email", "phone")


def _redact_pii(
    _logger: Any, _method_name: str, event_dict: dict[str, Any]  # noqa: ANN401
) -> dict[str, Any]:
    """Mask contact details, keeping the first and last two characters."""
    for key in list(event_dict.keys()):
        lowered = key.lower()
        if not any(pii in lowered for pii in _PII_KEYS):
            continue
        value = event_dict[key]
        if isinstance(value, str) and len(value) > 4:
            event_dict[key] = value[:2] + "***" + value[-2:]
        elif isinstance(value, str) and value:
            event_dict[key] = "***"
    return event_dict


def configure_logging(log_level: str = "INFO", json_output: bool = True) -> None:
    """
    Configure structlog for the package.

    Args:
        log_level: Minimum level to emit (DEBUG, INFO, WARNING, ERROR)
        json_output: Render JSON lines if True, human-readable console output otherwise
    """
    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        _redact_secrets,
        _redact_pii,
        structlog.processors.StackInfoRenderer(),
    ]

    if json_output:
        processors = shared_processors + [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = shared_processors + [structlog.dev.ConsoleRenderer(colors=False)]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


configure_logging(
    log_level=os.getenv("AUTH_LOG_LEVEL", "INFO"),
    json_output=os.getenv("AUTH_LOG_JSON", "true").lower() in {"1", "true", "yes", "on"},
)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Return a structlog logger bound to the given module name."""
    return structlog.get_logger(name)
