"""Structured logging for the authorization chain and its collaborators.

Production emits one JSON object per line, other environments a colored
console rendering. Request-scoped values (``request_id``, ``tenant_id``,
``user_id``) are bound with ``structlog.contextvars`` by the request
middleware and appear on every event, audit events included.
"""

import logging
import sys
from collections.abc import Mapping
from typing import Any

import structlog

REDACTED = "***REDACTED***"

SENSITIVE_KEYS: frozenset[str] = frozenset(
    {
        "authorization",
        "cookie",
        "csrf_token",
        "password",
        "secret",
        "session",
        "session_secret",
        "set-cookie",
        "token",
        "x-csrf-token",
    }
)

NOISY_LOGGERS: tuple[str, ...] = ("uvicorn.access", "redis", "asyncio")


def _redact(value: Any) -> Any:
    # Header and payload dicts can carry cookies or tokens one level down.
    if isinstance(value, Mapping):
        return {
            k: REDACTED if str(k).lower() in SENSITIVE_KEYS else _redact(v)
            for k, v in value.items()
        }
    return value


def redact_sensitive_values(
    logger: logging.Logger,
    method_name: str,
    event_dict: structlog.types.EventDict,
) -> structlog.types.EventDict:
    """Mask session material, cookies and credentials in log events."""
    for key, value in event_dict.items():
        if key.lower() in SENSITIVE_KEYS:
            event_dict[key] = REDACTED
        else:
            event_dict[key] = _redact(value)
    return event_dict


def _renderer(environment: str) -> list[structlog.types.Processor]:
    if environment == "production":
        return [
            structlog.processors.dict_tracebacks,
            structlog.processors.JSONRenderer(),
        ]
    return [structlog.dev.ConsoleRenderer(colors=True)]


def configure_logging(
    environment: str = "development",
    log_level: str = "INFO",
) -> None:
    """Route structlog and stdlib logging through one stdout handler.

    Called from the application lifespan; safe to call again (the root
    handlers are replaced, not appended).

    Args:
        environment: ``production`` selects JSON lines with structured
            tracebacks, anything else the console renderer.
        log_level: Level name for the root logger (DEBUG, INFO, ...).
    """
    shared: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
        redact_sensitive_values,
    ]

    structlog.configure(
        processors=[*shared, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                *_renderer(environment),
            ],
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(log_level.upper())

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
