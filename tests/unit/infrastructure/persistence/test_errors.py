"""Unit tests for storage error translation."""
import pytest
from sqlalchemy.exc import IntegrityError

from contentbase.domain.exceptions import (
    DuplicateFieldValueError,
    FieldValidationError,
    OperationFailedError,
    RecordNotFoundError,
)
from contentbase.infrastructure.persistence.errors import (
    translate_errors,
    translate_integrity_error,
)


def integrity_error(message):
    return IntegrityError("INSERT INTO cm_posts ...", {}, Exception(message))


def test_sqlite_unique_violation():
    """Test that the field name is taken from the SQLite message."""
    error = translate_integrity_error(
        integrity_error("UNIQUE constraint failed: cm_posts.slug"), "create record"
    )
    assert isinstance(error, DuplicateFieldValueError)
    assert error.field_name == "slug"


def test_postgres_unique_violation():
    """Test that the field name is taken from the PostgreSQL detail."""
    error = translate_integrity_error(
        integrity_error(
            'duplicate key value violates unique constraint "uq_cm_posts_slug"\n'
            "DETAIL:  Key (slug)=(hello) already exists."
        ),
        "create record",
    )
    assert isinstance(error, DuplicateFieldValueError)
    assert error.field_name == "slug"


def test_unique_violation_without_field_name():
    error = translate_integrity_error(integrity_error("duplicate entry"), "create record")
    assert isinstance(error, DuplicateFieldValueError)
    assert error.field_name == "unknown"


def test_foreign_key_violation():
    """Test that a missing relation target is a validation error."""
    error = translate_integrity_error(
        integrity_error("FOREIGN KEY constraint failed"), "create record"
    )
    assert isinstance(error, FieldValidationError)
    assert error.details["operation"] == "create record"


def test_not_null_violation():
    error = translate_integrity_error(
        integrity_error("NOT NULL constraint failed: cm_posts.title"), "update record"
    )
    assert isinstance(error, FieldValidationError)
    assert error.message == "A required value is missing"


def test_other_integrity_error():
    error = translate_integrity_error(
        integrity_error("CHECK constraint failed"), "update record"
    )
    assert isinstance(error, OperationFailedError)
    assert error.operation == "update record"


@pytest.mark.asyncio
async def test_decorator_passes_result_through():
    @translate_errors("read")
    async def operation(value):
        return value * 2

    assert await operation(21) == 42


@pytest.mark.asyncio
async def test_decorator_keeps_domain_errors():
    @translate_errors("delete record")
    async def operation():
        raise RecordNotFoundError("abc", "posts")

    with pytest.raises(RecordNotFoundError):
        await operation()


@pytest.mark.asyncio
async def test_decorator_translates_integrity_errors():
    @translate_errors("create record")
    async def operation():
        raise integrity_error("UNIQUE constraint failed: cm_posts.slug")

    with pytest.raises(DuplicateFieldValueError) as exc_info:
        await operation()

    assert isinstance(exc_info.value.__cause__, IntegrityError)


@pytest.mark.asyncio
async def test_decorator_wraps_unexpected_errors():
    @translate_errors("create record")
    async def operation():
        raise RuntimeError("disk full")

    with pytest.raises(OperationFailedError) as exc_info:
        await operation()

    assert exc_info.value.operation == "create record"
    assert exc_info.value.details["original_error"] == "disk full"
