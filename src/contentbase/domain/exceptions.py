"""Exceptions raised by collection and record operations.

Every error the core raises on purpose derives from ContentBaseError and
carries a stable machine-readable ``code`` so callers (an HTTP layer, the
CLI) can map them without parsing messages.
"""

from typing import Any


class ContentBaseError(Exception):
    """Base class for all ContentBase errors."""

    code = "CONTENTBASE_ERROR"

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)


class CollectionNotFoundError(ContentBaseError):
    """Raised when a collection cannot be resolved by id, slug or documentId."""

    code = "COLLECTION_NOT_FOUND"

    def __init__(self, identifier: str | int) -> None:
        super().__init__(
            f'Collection "{identifier}" not found',
            {"identifier": str(identifier)},
        )


class CollectionAlreadyExistsError(ContentBaseError):
    """Raised when a slug is already taken by another collection."""

    code = "COLLECTION_EXISTS"

    def __init__(self, slug: str) -> None:
        self.slug = slug
        super().__init__(
            f'Collection with slug "{slug}" already exists',
            {"slug": slug},
        )


class FieldValidationError(ContentBaseError):
    """Raised for malformed field or relation definitions and invalid payloads."""

    code = "COLLECTION_FIELD_VALIDATION"


class HierarchyCycleError(FieldValidationError):
    """Raised when a hierarchy move would create a circular reference."""

    code = "COLLECTION_HIERARCHY_CYCLE"

    def __init__(self, collection_id: int, new_parent_id: int) -> None:
        super().__init__(
            "Moving this collection would create a circular reference",
            {"collection_id": collection_id, "new_parent_id": new_parent_id},
        )


class DuplicateFieldValueError(ContentBaseError):
    """Raised when a unique field value is already used by another record."""

    code = "DUPLICATE_FIELD_VALUE"

    def __init__(self, field_name: str, value: Any = None) -> None:
        self.field_name = field_name
        super().__init__(
            f'Value for field "{field_name}" already exists',
            {"field_name": field_name, "value": value},
        )


class RecordNotFoundError(ContentBaseError):
    """Raised when no record matches a documentId in a collection."""

    code = "COLLECTION_RECORD_NOT_FOUND"

    def __init__(self, document_id: str, collection_slug: str) -> None:
        super().__init__(
            f'Record "{document_id}" not found in collection "{collection_slug}"',
            {"document_id": document_id, "collection_slug": collection_slug},
        )


class OperationFailedError(ContentBaseError):
    """Wraps an unexpected lower-level failure.

    Attributes:
        operation: Name of the operation that was attempted.
        cause: The original exception.
    """

    code = "COLLECTION_OPERATION_ERROR"

    def __init__(self, operation: str, cause: BaseException) -> None:
        self.operation = operation
        self.cause = cause
        super().__init__(
            f"Collection operation failed: {operation}",
            {"operation": operation, "original_error": str(cause)},
        )
