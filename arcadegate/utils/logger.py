"""structlog setup for ArcadeGate.

Log lines go to stdout, one JSON object per event (or coloured console
output when JSON_LOGS=false). Every line carries ``service``, ``level``,
an ISO-8601 UTC ``timestamp`` and, inside a request, ``request_id``.

The request id lives in structlog's own contextvars store, so anything
bound with ``structlog.contextvars.bind_contextvars`` during a request is
merged into the same line.
"""

import logging
import sys

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

SERVICE_NAME = "arcadegate"

_REQUEST_ID_KEY = "request_id"


def _add_service(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


def build_processors(json_output: bool = True) -> list[Processor]:
    renderer: Processor = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())
    )
    return [
        structlog.contextvars.merge_contextvars,
        _add_service,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.format_exc_info,
        renderer,
    ]


def configure_logging(log_level: str = "INFO", json_output: bool = True) -> None:
    """Configure structlog for the process.

    An unknown ``log_level`` falls back to INFO rather than failing startup.
    """
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    structlog.configure(
        processors=build_processors(json_output),
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = SERVICE_NAME) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def set_request_id(request_id: str) -> None:
    structlog.contextvars.bind_contextvars(**{_REQUEST_ID_KEY: request_id})


def clear_request_id() -> None:
    structlog.contextvars.unbind_contextvars(_REQUEST_ID_KEY)


configure_logging()
