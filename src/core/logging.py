"""Structured logging configuration using structlog.

Every event carries the request, user and filing it belongs to, read from
context variables the HTTP layer sets. Client identifiers recorded on
submission receipts are masked before rendering.
"""

import logging
import sys
from contextvars import ContextVar
from typing import Any

import orjson
import structlog
from structlog.types import EventDict, Processor

from src.core.config import settings

# Correlation identifiers for the current request
request_id_ctx: ContextVar[str | None] = ContextVar("request_id", default=None)
user_id_ctx: ContextVar[str | None] = ContextVar("user_id", default=None)
filing_id_ctx: ContextVar[str | None] = ContextVar("filing_id", default=None)

REDACTED_KEYS = frozenset({"ip_address", "user_agent", "authorization", "x_user_id"})

NOISY_LOGGERS = ("sqlalchemy.engine", "aiosqlite", "asyncio", "uvicorn.access")


def _add_request_context(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Attach request, user and filing identifiers to the event.

    Explicit ``filing_id`` values passed to the logger win over the
    path-derived one.
    """
    if request_id := request_id_ctx.get():
        event_dict["request_id"] = request_id
    if user_id := user_id_ctx.get():
        event_dict.setdefault("user_id", user_id)
    if filing_id := filing_id_ctx.get():
        event_dict.setdefault("filing_id", filing_id)
    return event_dict


def _redact_client_identifiers(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    for key in REDACTED_KEYS.intersection(event_dict):
        if event_dict[key] is not None:
            event_dict[key] = "[redacted]"
    return event_dict


def _orjson_serializer(obj: Any, **kwargs: Any) -> str:
    # Decimal and UUID fall back to str so amounts keep their exact digits
    return orjson.dumps(obj, default=str).decode("utf-8")


def _use_json() -> bool:
    log_format = settings.log_format.lower() if settings.log_format else None
    if log_format is not None:
        return log_format == "json"
    return settings.environment != "development"


def configure_logging() -> None:
    """Configure structlog and route stdlib logging through it.

    Console rendering in development, orjson-backed JSON elsewhere.
    ``LOG_FORMAT`` overrides the environment default.
    """
    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        _add_request_context,
        _redact_client_identifiers,
    ]

    if _use_json():
        processors: list[Processor] = [
            *shared_processors,
            structlog.processors.EventRenamer("message"),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(serializer=_orjson_serializer),
        ]
    else:
        processors = [
            *shared_processors,
            structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    level = logging.DEBUG if settings.debug else logging.INFO
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a configured structlog logger."""
    return structlog.get_logger(name)
