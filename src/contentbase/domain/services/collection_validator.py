"""Structural validation of collection definitions.

Checks names, slugs and field definitions without touching the database.
Checks that need stored state (slug uniqueness, relation targets) live in
SchemaStore and RelationManager.
"""

import re
from dataclasses import dataclass

from contentbase.domain.entities import FieldDefinition

# Base columns present on every collection table, compared lowercased
RESERVED_FIELD_NAMES = frozenset({"id", "documentid", "createdat", "updatedat"})

# Field names double as column names
NAME_PATTERN = re.compile(r"^[a-zA-Z][a-zA-Z0-9_]*$")

# A slug segment; "__" is reserved as the separator in physical table names
SLUG_SEGMENT_PATTERN = re.compile(r"^[a-z][a-z0-9]*(?:_[a-z0-9]+)*$")


@dataclass
class CollectionValidationError:
    """A single collection validation error."""

    field: str
    message: str
    code: str

    def to_dict(self) -> dict[str, str]:
        return {"field": self.field, "message": self.message, "code": self.code}


def _error(field: str, code: str, message: str) -> CollectionValidationError:
    return CollectionValidationError(field=field, message=message, code=code)


class CollectionValidator:
    """Validator for collection definitions.

    Every method returns the list of errors it found; an empty list means
    the input is valid.
    """

    MAX_NAME_LENGTH = 255
    MAX_SLUG_LENGTH = 64
    MAX_FIELD_NAME_LENGTH = 64

    @classmethod
    def validate_name(cls, name: str | None) -> list[CollectionValidationError]:
        if not name or not name.strip():
            return [_error("name", "name_required", "Collection name is required")]
        if len(name) > cls.MAX_NAME_LENGTH:
            return [
                _error(
                    "name",
                    "name_too_long",
                    f"Collection name must be at most {cls.MAX_NAME_LENGTH} characters",
                )
            ]
        return []

    @classmethod
    def validate_slug(
        cls, slug: str | None, path: str = "slug"
    ) -> list[CollectionValidationError]:
        """Validate a slug, which may be hierarchical (``parent/child``).

        Args:
            slug: The slug to validate.
            path: Location reported in the errors.
        """
        if not slug:
            return [_error(path, "slug_required", "Slug is required")]

        errors = []
        if len(slug) > cls.MAX_SLUG_LENGTH:
            errors.append(
                _error(
                    path,
                    "slug_too_long",
                    f"Slug must be at most {cls.MAX_SLUG_LENGTH} characters",
                )
            )
        if not all(SLUG_SEGMENT_PATTERN.match(segment) for segment in slug.split("/")):
            errors.append(
                _error(
                    path,
                    "slug_invalid_format",
                    "Slug segments must start with a lowercase letter and contain only "
                    "lowercase letters, digits and single underscores",
                )
            )
        return errors

    @classmethod
    def validate_field_name(cls, name: str, field_index: int) -> list[CollectionValidationError]:
        path = f"fields[{field_index}].name"
        if not name:
            return [_error(path, "field_name_required", "Field name is required")]

        errors = []
        if len(name) > cls.MAX_FIELD_NAME_LENGTH:
            errors.append(
                _error(
                    path,
                    "field_name_too_long",
                    f"Field name must be at most {cls.MAX_FIELD_NAME_LENGTH} characters",
                )
            )
        if not NAME_PATTERN.match(name):
            errors.append(
                _error(
                    path,
                    "field_name_invalid_format",
                    "Field name must start with a letter and contain only letters, "
                    "digits and underscores",
                )
            )
        if name.lower() in RESERVED_FIELD_NAMES:
            errors.append(
                _error(path, "field_name_reserved", f"Field name '{name}' is reserved")
            )
        return errors

    @classmethod
    def validate_relation_config(
        cls, field: FieldDefinition, field_index: int
    ) -> list[CollectionValidationError]:
        """Validate the shape of a field's relation configuration.

        Whether the target and the inverse fields exist is checked against
        the database by RelationManager.
        """
        path = f"fields[{field_index}].relation"
        relation = field.relation

        if field.is_relation and relation is None:
            return [
                _error(
                    path,
                    "relation_required",
                    "Relation configuration is required for relation fields",
                )
            ]
        if not field.is_relation:
            if relation is None:
                return []
            return [
                _error(
                    path,
                    "relation_not_allowed",
                    f"Fields of type '{field.type.value}' cannot have a relation configuration",
                )
            ]

        errors = cls.validate_slug(relation.target, path=f"{path}.target")
        if relation.bidirectional and relation.inverse_side is None:
            errors.append(
                _error(
                    f"{path}.inverseSide",
                    "inverse_side_required",
                    "Bidirectional relations require an inverse side",
                )
            )
        if field.unique:
            errors.append(
                _error(
                    f"fields[{field_index}].unique",
                    "relation_unique_not_allowed",
                    "Relation fields cannot be unique",
                )
            )
        return errors

    @classmethod
    def validate_field(cls, field: FieldDefinition, field_index: int) -> list[CollectionValidationError]:
        return cls.validate_field_name(field.name, field_index) + cls.validate_relation_config(
            field, field_index
        )

    @classmethod
    def validate_fields(cls, fields: list[FieldDefinition]) -> list[CollectionValidationError]:
        """Validate an ordered field list, including duplicate names."""
        errors = []
        seen: set[str] = set()
        for index, field in enumerate(fields):
            errors.extend(cls.validate_field(field, index))

            # Column names are case-insensitive on most engines
            key = field.name.lower()
            if key and key in seen:
                errors.append(
                    _error(
                        f"fields[{index}].name",
                        "field_name_duplicate",
                        f"Duplicate field name '{field.name}'",
                    )
                )
            seen.add(key)
        return errors

    @classmethod
    def validate(
        cls, name: str | None, slug: str | None, fields: list[FieldDefinition]
    ) -> list[CollectionValidationError]:
        """Validate a complete collection definition."""
        return cls.validate_name(name) + cls.validate_slug(slug) + cls.validate_fields(fields)
