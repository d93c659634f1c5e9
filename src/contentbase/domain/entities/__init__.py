"""Domain entities for ContentBase."""

from contentbase.domain.entities.collection import (
    CollectionDefinition,
    CollectionNode,
    FieldDefinition,
    FieldType,
    InverseSide,
    RelationConfig,
    RelationType,
)

__all__ = [
    "CollectionDefinition",
    "CollectionNode",
    "FieldDefinition",
    "FieldType",
    "InverseSide",
    "RelationConfig",
    "RelationType",
]
