"""Structured logging for the mirror service.

Every event carries the app name and version, any request context bound
through contextvars, and a level. Store values that JSON cannot carry
(dates, prices, enum members) are flattened before rendering.
"""

import logging
import os
import sys
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any

import structlog
from structlog.typing import EventDict, Processor

from storekit_mirror import __version__

APP_NAME = "storekit-mirror"

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def add_app_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    event_dict["app"] = APP_NAME
    event_dict["version"] = __version__
    return event_dict


def flatten_store_values(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Render datetimes as ISO 8601, prices as strings and enums by value."""
    for key, value in event_dict.items():
        if isinstance(value, datetime):
            event_dict[key] = value.isoformat()
        elif isinstance(value, Decimal):
            event_dict[key] = str(value)
        elif isinstance(value, Enum):
            event_dict[key] = value.value
    return event_dict


def drop_debug_in_production(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Drop DEBUG logs if not in debug mode."""
    if method_name == "debug" and not is_debug_mode():
        raise structlog.DropEvent
    return event_dict


def is_debug_mode() -> bool:
    return os.getenv("LOG_LEVEL", "INFO").upper() == "DEBUG"


def configure_logging(log_level: str = "INFO", json_format: bool = True) -> None:
    """Configure structlog and the stdlib root logger.

    Args:
        log_level: One of LOG_LEVELS; unknown names fall back to INFO
        json_format: JSON lines when True, colored console output otherwise
    """
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=numeric_level)

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        add_app_context,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        flatten_store_values,
    ]
    if numeric_level > logging.DEBUG:
        processors.append(drop_debug_in_production)

    if json_format:
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        processors.append(
            structlog.dev.ConsoleRenderer(colors=True, exception_formatter=structlog.dev.plain_traceback)
        )

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def configure_logging_from_env() -> None:
    """Configure logging from LOG_LEVEL and LOG_FORMAT (json or console)."""
    configure_logging(
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        json_format=os.getenv("LOG_FORMAT", "json").lower() == "json",
    )


def get_logger(name: str = __name__) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    """Bind context variables included in all subsequent logs of this task."""
    structlog.contextvars.bind_contextvars(**kwargs)


def unbind_context(*keys: str) -> None:
    structlog.contextvars.unbind_contextvars(*keys)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()
