"""Structured logging for ContentBase.

structlog renders every event as JSON in production and as colored
key/value lines in development. Records emitted through the standard
library by SQLAlchemy and alembic go through the same renderer, so one
stream carries both.
"""

import logging
import sys
from typing import Any

import structlog
from structlog.types import Processor

from contentbase.core.config import Settings, get_settings

# Libraries that log through the standard library, with their minimum level
THIRD_PARTY_LEVELS = {
    "alembic": logging.WARNING,
    "sqlalchemy.engine": logging.WARNING,
}


def _shared_processors() -> list[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]


def _uses_console(settings: Settings) -> bool:
    return settings.is_development or settings.log_format == "console"


def _renderers(settings: Settings) -> list[Processor]:
    if _uses_console(settings):
        return [
            structlog.dev.ConsoleRenderer(
                colors=True,
                exception_formatter=structlog.dev.plain_traceback,
            )
        ]
    return [
        structlog.processors.EventRenamer("message"),
        structlog.processors.format_exc_info,
        structlog.processors.JSONRenderer(),
    ]


def _route_standard_logging(settings: Settings, level: int) -> None:
    """Send standard library records through the structlog renderers."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=[structlog.stdlib.add_logger_name, *_shared_processors()],
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                *_renderers(settings),
            ],
        )
    )
    logging.basicConfig(level=level, handlers=[handler])

    for name, minimum in THIRD_PARTY_LEVELS.items():
        if name == "sqlalchemy.engine" and settings.db_echo:
            continue
        logging.getLogger(name).setLevel(max(level, minimum))


def configure_logging(settings: Settings | None = None) -> None:
    """Configure structured logging for the application.

    Args:
        settings: Optional settings instance. Defaults to the cached settings.
    """
    if settings is None:
        settings = get_settings()

    level = getattr(logging, settings.log_level)
    structlog.configure(
        processors=_shared_processors() + _renderers(settings),
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        # Console output is reconfigured freely in development and tests
        cache_logger_on_first_use=not _uses_console(settings),
    )
    _route_standard_logging(settings, level)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structured logger that tags its events with ``name``.

    Args:
        name: Logger name, usually the module's ``__name__``.
    """
    return structlog.get_logger(name or "contentbase")


class LoggingContext:
    """Bind key/value pairs to every event logged inside the block.

    Example:
        with LoggingContext(collection_slug="posts"):
            logger.info("Record created")  # carries collection_slug
    """

    def __init__(self, **kwargs: Any) -> None:
        self.context = kwargs

    def __enter__(self) -> "LoggingContext":
        structlog.contextvars.bind_contextvars(**self.context)
        return self

    def __exit__(self, *args: Any) -> None:
        structlog.contextvars.unbind_contextvars(*self.context)
