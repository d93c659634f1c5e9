"""Translation of storage errors into the ContentBase error taxonomy."""

import functools
import re
from typing import Any, Awaitable, Callable, TypeVar

from sqlalchemy.exc import IntegrityError

from contentbase.core.logging import get_logger
from contentbase.domain.exceptions import (
    ContentBaseError,
    DuplicateFieldValueError,
    FieldValidationError,
    OperationFailedError,
)

logger = get_logger(__name__)

T = TypeVar("T")

# SQLite: "UNIQUE constraint failed: cm_posts.title"
_SQLITE_UNIQUE = re.compile(r"UNIQUE constraint failed: [\w\"]+\.\"?(\w+)", re.IGNORECASE)
# PostgreSQL: "DETAIL:  Key (title)=(Hello) already exists."
_POSTGRES_KEY = re.compile(r"Key \(\"?(\w+)\"?\)=", re.IGNORECASE)


def _unique_field_name(message: str) -> str:
    for pattern in (_SQLITE_UNIQUE, _POSTGRES_KEY):
        match = pattern.search(message)
        if match:
            return match.group(1)
    return "unknown"


def translate_integrity_error(error: IntegrityError, operation: str) -> ContentBaseError:
    """Map a constraint violation to a taxonomy error.

    Args:
        error: The integrity error raised by the driver.
        operation: Name of the attempted operation.

    Returns:
        DuplicateFieldValueError for unique violations, FieldValidationError
        for foreign key and NOT NULL violations, OperationFailedError
        otherwise.
    """
    message = str(error.orig) if error.orig is not None else str(error)
    lowered = message.lower()

    if "unique" in lowered or "duplicate" in lowered:
        return DuplicateFieldValueError(_unique_field_name(message))
    if "foreign key" in lowered:
        return FieldValidationError(
            "Referenced record does not exist",
            {"operation": operation, "original_error": message},
        )
    if "not null" in lowered or "null value" in lowered:
        return FieldValidationError(
            "A required value is missing",
            {"operation": operation, "original_error": message},
        )
    return OperationFailedError(operation, error)


def translate_errors(
    operation: str,
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """Decorate an async operation so unexpected errors become taxonomy errors.

    ContentBase errors pass through unchanged. Integrity errors are mapped
    with :func:`translate_integrity_error`; any other exception is wrapped in
    OperationFailedError.

    Example:
        @translate_errors("create record")
        async def create_record(self, ...): ...
    """

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            try:
                return await func(*args, **kwargs)
            except ContentBaseError:
                raise
            except IntegrityError as e:
                translated = translate_integrity_error(e, operation)
                logger.info(
                    "Constraint violation",
                    operation=operation,
                    error_code=translated.code,
                )
                raise translated from e
            except Exception as e:
                logger.error(
                    "Operation failed",
                    operation=operation,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                raise OperationFailedError(operation, e) from e

        return wrapper

    return decorator
