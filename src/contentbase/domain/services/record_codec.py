"""Record encoding and decoding against collection definitions.

Records have no static row type: the collection's field list is the only
source of truth for which keys are writable and how values are typed.
Payloads are checked and coerced into column values before they reach the
database, and rows read back are decoded into ordered dicts.
"""

from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any

from contentbase.domain.entities import CollectionDefinition, FieldDefinition, FieldType
from contentbase.domain.exceptions import FieldValidationError

# Columns present on every collection table, in output order
BASE_COLUMNS = ("id", "documentId", "createdAt", "updatedAt")

STRING_MAX_LENGTH = 255


@dataclass
class RecordValidationError:
    """A single record validation error."""

    field: str
    message: str
    code: str

    def to_dict(self) -> dict[str, str]:
        return {"field": self.field, "message": self.message, "code": self.code}


def parse_datetime(value: str) -> datetime:
    """Parse an ISO 8601 string, accepting a trailing ``Z`` for UTC.

    Offset-aware values are converted to naive UTC to match the storage
    convention of the timestamp columns.
    """
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


class RecordCodec:
    """Converts between API payloads, column values and decoded records."""

    @classmethod
    def coerce_value(cls, field: FieldDefinition, value: Any) -> Any:
        """Coerce a single payload value to its column value.

        Args:
            field: The field definition.
            value: The raw value (None is passed through).

        Returns:
            The value to bind for the column.

        Raises:
            ValueError: If the value does not match the field type.
        """
        if value is None:
            return None

        field_type = field.type
        if field_type in (FieldType.STRING, FieldType.LONGTEXT):
            if not isinstance(value, str):
                raise ValueError(f"Expected text value, got {type(value).__name__}")
            if field_type == FieldType.STRING and len(value) > STRING_MAX_LENGTH:
                raise ValueError(f"Text must be at most {STRING_MAX_LENGTH} characters")
            return value

        if field_type == FieldType.BOOLEAN:
            if not isinstance(value, bool):
                raise ValueError(f"Expected boolean value, got {type(value).__name__}")
            return value

        if field_type == FieldType.NUMBER:
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValueError(f"Expected number value, got {type(value).__name__}")
            return float(value)

        if field_type == FieldType.INTEGER:
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValueError(f"Expected integer value, got {type(value).__name__}")
            return value

        if field_type == FieldType.DATE:
            if isinstance(value, datetime):
                return value
            if isinstance(value, date):
                return datetime(value.year, value.month, value.day)
            if isinstance(value, str):
                try:
                    return parse_datetime(value)
                except ValueError:
                    raise ValueError("Invalid date format, expected ISO 8601") from None
            raise ValueError(f"Expected date value, got {type(value).__name__}")

        raise ValueError(f"Field type '{field_type.value}' has no column value")

    @classmethod
    def encode(cls, definition: CollectionDefinition, data: dict[str, Any]) -> dict[str, Any]:
        """Validate a payload and convert it to column values.

        Args:
            definition: The collection definition.
            data: Payload keyed by field name.

        Returns:
            Column values keyed by column name, in payload order.

        Raises:
            FieldValidationError: If any key or value is invalid.
        """
        if not isinstance(data, dict):
            raise FieldValidationError(
                "Record data must be an object", {"data_type": type(data).__name__}
            )

        errors: list[RecordValidationError] = []
        values: dict[str, Any] = {}

        for key, value in data.items():
            if key in BASE_COLUMNS:
                errors.append(
                    RecordValidationError(
                        field=key,
                        message=f"'{key}' is managed by the system and cannot be written",
                        code="system_field",
                    )
                )
                continue

            field = definition.get_field(key)
            if field is None:
                errors.append(
                    RecordValidationError(
                        field=key,
                        message=f"Unknown field '{key}' for collection '{definition.slug}'",
                        code="unknown_field",
                    )
                )
                continue

            if field.is_relation:
                errors.append(
                    RecordValidationError(
                        field=key,
                        message="Relation values must be passed in the relations map",
                        code="relation_in_data",
                    )
                )
                continue

            try:
                values[key] = cls.coerce_value(field, value)
            except ValueError as e:
                errors.append(RecordValidationError(field=key, message=str(e), code="invalid_type"))

        if errors:
            raise FieldValidationError(
                "Record validation failed",
                {"errors": [e.to_dict() for e in errors]},
            )

        return values

    @classmethod
    def missing_required(
        cls, definition: CollectionDefinition, values: dict[str, Any], partial: bool = False
    ) -> list[str]:
        """Names of required scalar fields that have no value.

        On a partial update only keys present in ``values`` are considered, so
        a required field can be left out but not cleared.
        """
        missing = []
        for field in definition.scalar_fields:
            if not field.required:
                continue
            if partial and field.name not in values:
                continue
            if values.get(field.name) is None:
                missing.append(field.name)
        return missing

    @classmethod
    def coerce_filter_value(cls, field: FieldDefinition | None, value: Any) -> Any:
        """Coerce a filter operand so it compares correctly with the column."""
        if field is None or field.type != FieldType.DATE:
            return value
        if isinstance(value, (list, tuple)):
            return [cls.coerce_filter_value(field, v) for v in value]
        if isinstance(value, str):
            try:
                return parse_datetime(value)
            except ValueError:
                raise FieldValidationError(
                    f"Invalid date '{value}' in filter for field '{field.name}'",
                    {"field": field.name},
                ) from None
        return value

    @classmethod
    def decode(cls, definition: CollectionDefinition, row: Any) -> dict[str, Any]:
        """Decode a result row into an ordered record dict.

        Base columns come first, followed by scalar fields in definition
        order. Columns that are not part of the definition are dropped.
        """
        mapping = row._mapping if hasattr(row, "_mapping") else row
        record: dict[str, Any] = {column: mapping.get(column) for column in BASE_COLUMNS}

        for field in definition.scalar_fields:
            value = mapping.get(field.name)
            if value is not None:
                if field.type == FieldType.BOOLEAN:
                    value = bool(value)
                elif field.type == FieldType.NUMBER:
                    value = float(value)
                elif field.type == FieldType.DATE and isinstance(value, str):
                    value = parse_datetime(value)
            record[field.name] = value

        return record
