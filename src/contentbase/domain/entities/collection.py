"""Collection entities for runtime-defined content types.

A collection is described by an ordered list of fields. Scalar fields map to
columns of the collection's physical table, relation fields map to join
tables. The field list is stored as JSON in the registry, so every entity
here knows how to convert itself to and from its JSON form.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class FieldType(str, Enum):
    """Supported field types for collection definitions."""

    STRING = "string"
    LONGTEXT = "longtext"
    BOOLEAN = "boolean"
    NUMBER = "number"
    INTEGER = "integer"
    DATE = "date"
    RELATION = "relation"


class RelationType(str, Enum):
    """Cardinality of a relation field."""

    ONE_TO_ONE = "oneToOne"
    ONE_TO_MANY = "oneToMany"
    MANY_TO_MANY = "manyToMany"


@dataclass(frozen=True)
class InverseSide:
    """Reverse-navigation descriptor of a bidirectional relation.

    Attributes:
        field: Field on the target collection receiving the reverse link.
        display_field: Field on the target collection used for display.
    """

    field: str
    display_field: str

    def to_dict(self) -> dict[str, Any]:
        return {"field": self.field, "displayField": self.display_field}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "InverseSide":
        return cls(field=data["field"], display_field=data["displayField"])


@dataclass(frozen=True)
class RelationConfig:
    """Configuration of a relation field."""

    type: RelationType
    target: str
    bidirectional: bool = False
    inverse_side: InverseSide | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "type": self.type.value,
            "target": self.target,
            "bidirectional": self.bidirectional,
        }
        if self.inverse_side is not None:
            data["inverseSide"] = self.inverse_side.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RelationConfig":
        inverse = data.get("inverseSide")
        return cls(
            type=RelationType(data["type"]),
            target=data["target"],
            bidirectional=bool(data.get("bidirectional", False)),
            inverse_side=InverseSide.from_dict(inverse) if inverse else None,
        )


@dataclass(frozen=True)
class FieldDefinition:
    """A single typed field of a collection.

    Attributes:
        name: Field name, also the physical column name for scalar fields.
        type: Field type.
        required: Whether a value must be provided on create.
        unique: Whether values must be unique across records.
        description: Optional human-readable description.
        relation: Relation configuration, only for relation fields.
    """

    name: str
    type: FieldType
    required: bool = False
    unique: bool = False
    description: str | None = None
    relation: RelationConfig | None = None

    @property
    def is_relation(self) -> bool:
        return self.type == FieldType.RELATION

    def column_signature(self) -> tuple[FieldType, bool, bool]:
        """Attributes whose change requires the physical column to be rebuilt."""
        return (self.type, self.required, self.unique)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "name": self.name,
            "type": self.type.value,
            "required": self.required,
            "unique": self.unique,
        }
        if self.description is not None:
            data["description"] = self.description
        if self.relation is not None:
            data["relation"] = self.relation.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FieldDefinition":
        relation = data.get("relation")
        return cls(
            name=data["name"],
            type=FieldType(data["type"]),
            required=bool(data.get("required", False)),
            unique=bool(data.get("unique", False)),
            description=data.get("description"),
            relation=RelationConfig.from_dict(relation) if relation else None,
        )


@dataclass
class CollectionDefinition:
    """A runtime-defined collection.

    The internal ``id`` is used for hierarchy links, ``document_id`` is the
    stable identifier exposed to clients. ``slug`` already includes the
    parent's slug (``parent/child``) for nested collections.
    """

    id: int
    document_id: str
    name: str
    slug: str
    fields: list[FieldDefinition] = field(default_factory=list)
    description: str | None = None
    parent_id: int | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def scalar_fields(self) -> list[FieldDefinition]:
        return [f for f in self.fields if not f.is_relation]

    @property
    def relation_fields(self) -> list[FieldDefinition]:
        return [f for f in self.fields if f.is_relation]

    def get_field(self, name: str) -> FieldDefinition | None:
        return next((f for f in self.fields if f.name == name), None)

    def fields_to_dicts(self) -> list[dict[str, Any]]:
        return [f.to_dict() for f in self.fields]


@dataclass
class CollectionNode:
    """A collection with its nested subcollections."""

    collection: CollectionDefinition
    children: list["CollectionNode"] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.collection.id,
            "documentId": self.collection.document_id,
            "name": self.collection.name,
            "slug": self.collection.slug,
            "parentId": self.collection.parent_id,
            "children": [child.to_dict() for child in self.children],
        }
