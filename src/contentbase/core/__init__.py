"""Settings, logging and time helpers shared by every layer."""

from contentbase.core.clock import utcnow
from contentbase.core.config import Settings, get_settings
from contentbase.core.logging import LoggingContext, configure_logging, get_logger

__all__ = [
    "LoggingContext",
    "Settings",
    "configure_logging",
    "get_logger",
    "get_settings",
    "utcnow",
]
