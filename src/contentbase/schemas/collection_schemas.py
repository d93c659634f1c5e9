"""Pydantic schemas for collection definitions.

These are the input shapes accepted by CollectionService. They use the
camelCase JSON names of the stored field list and convert into domain
entities.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from contentbase.domain.entities import (
    CollectionDefinition,
    FieldDefinition,
    FieldType,
    InverseSide,
    RelationConfig,
    RelationType,
)

SLUG_SEGMENT_REGEX = r"^[a-z][a-z0-9]*(?:_[a-z0-9]+)*$"


class InverseSideSchema(BaseModel):
    """Inverse side of a bidirectional relation."""

    model_config = ConfigDict(populate_by_name=True)

    field: str = Field(..., min_length=1, description="Field name on the inverse side")
    display_field: str = Field(
        ...,
        min_length=1,
        alias="displayField",
        description="Field to display when showing related items",
    )


class RelationConfigSchema(BaseModel):
    """Relation configuration of a relation field."""

    model_config = ConfigDict(populate_by_name=True)

    type: RelationType = Field(..., description="oneToOne, oneToMany or manyToMany")
    target: str = Field(..., min_length=1, description="Target collection slug")
    bidirectional: bool = False
    inverse_side: InverseSideSchema | None = Field(default=None, alias="inverseSide")

    @model_validator(mode="after")
    def require_inverse_side(self) -> "RelationConfigSchema":
        if self.bidirectional and self.inverse_side is None:
            raise ValueError("Inverse side configuration is required for bidirectional relations")
        return self


class FieldDefinitionSchema(BaseModel):
    """Definition of a single field in a collection."""

    name: str = Field(..., min_length=1, max_length=64, description="Field name")
    type: FieldType = Field(..., description="Field type")
    required: bool = False
    unique: bool = False
    description: str | None = None
    relation: RelationConfigSchema | None = None

    @field_validator("type", mode="before")
    @classmethod
    def normalize_type(cls, v: Any) -> Any:
        """Accept field types case-insensitively."""
        return v.lower() if isinstance(v, str) else v

    @model_validator(mode="after")
    def require_relation_config(self) -> "FieldDefinitionSchema":
        if self.type == FieldType.RELATION and self.relation is None:
            raise ValueError("Relation configuration is required for relation fields")
        return self

    def to_entity(self) -> FieldDefinition:
        relation = None
        if self.relation is not None:
            inverse = self.relation.inverse_side
            relation = RelationConfig(
                type=self.relation.type,
                target=self.relation.target,
                bidirectional=self.relation.bidirectional,
                inverse_side=(
                    InverseSide(field=inverse.field, display_field=inverse.display_field)
                    if inverse
                    else None
                ),
            )
        return FieldDefinition(
            name=self.name,
            type=self.type,
            required=self.required,
            unique=self.unique,
            description=self.description,
            relation=relation,
        )


class CollectionCreate(BaseModel):
    """Input for creating a collection.

    ``slug`` is a single segment; the parent's slug is prepended when
    ``parent_id`` is given.
    """

    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(..., min_length=1, max_length=255, description="Collection name")
    slug: str = Field(
        ...,
        min_length=1,
        max_length=64,
        pattern=SLUG_SEGMENT_REGEX,
        description="URL-friendly collection identifier",
    )
    description: str | None = None
    parent_id: int | None = Field(default=None, alias="parentId")
    fields: list[FieldDefinitionSchema] = Field(default_factory=list)

    def field_entities(self) -> list[FieldDefinition]:
        return [f.to_entity() for f in self.fields]


class CollectionUpdate(BaseModel):
    """Input for updating a collection. Omitted attributes stay unchanged."""

    model_config = ConfigDict(populate_by_name=True)

    name: str | None = Field(default=None, min_length=1, max_length=255)
    slug: str | None = Field(
        default=None, min_length=1, max_length=64, pattern=SLUG_SEGMENT_REGEX
    )
    description: str | None = None
    fields: list[FieldDefinitionSchema] | None = None

    def field_entities(self) -> list[FieldDefinition] | None:
        if self.fields is None:
            return None
        return [f.to_entity() for f in self.fields]


class CollectionResponse(BaseModel):
    """Serialized collection definition."""

    model_config = ConfigDict(populate_by_name=True, from_attributes=True)

    id: int
    document_id: str = Field(..., serialization_alias="documentId")
    name: str
    slug: str
    description: str | None = None
    parent_id: int | None = Field(default=None, serialization_alias="parentId")
    fields: list[dict[str, Any]]
    created_at: datetime | None = Field(default=None, serialization_alias="createdAt")
    updated_at: datetime | None = Field(default=None, serialization_alias="updatedAt")

    @classmethod
    def from_definition(cls, definition: CollectionDefinition) -> "CollectionResponse":
        return cls(
            id=definition.id,
            document_id=definition.document_id,
            name=definition.name,
            slug=definition.slug,
            description=definition.description,
            parent_id=definition.parent_id,
            fields=definition.fields_to_dicts(),
            created_at=definition.created_at,
            updated_at=definition.updated_at,
        )
