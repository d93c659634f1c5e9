"""Dynamic table builder for collection and relation tables.

Builds SQLAlchemy Core ``Table`` objects from collection definitions. The
same objects are used to emit DDL and to build queries, so column names and
types are never assembled from user input by string formatting.
"""

import hashlib
from typing import Callable

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKeyConstraint,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.types import TypeEngine

from contentbase.domain.entities import (
    CollectionDefinition,
    FieldDefinition,
    FieldType,
    RelationType,
)

# Column type for each scalar field type
FIELD_TYPE_TO_SQL: dict[FieldType, Callable[[], TypeEngine]] = {
    FieldType.STRING: lambda: String(255),
    FieldType.LONGTEXT: Text,
    FieldType.BOOLEAN: Boolean,
    FieldType.NUMBER: Float,
    FieldType.INTEGER: Integer,
    FieldType.DATE: DateTime,
}

DOCUMENT_ID_LENGTH = 36


def base_columns() -> list[Column]:
    """System columns added to every collection table."""
    return [
        Column("id", Integer, primary_key=True, autoincrement=True),
        Column("documentId", String(DOCUMENT_ID_LENGTH), nullable=False, unique=True),
        Column("createdAt", DateTime, nullable=False, server_default=func.now()),
        Column("updatedAt", DateTime, nullable=False, server_default=func.now()),
    ]


class TableBuilder:
    """Builds physical table objects for collections and relations.

    Table names are ``<prefix>_<slug>`` and
    ``<prefix>_rel_<sourceSlug>_<targetSlug>_<fieldName>``; the ``/`` of
    hierarchical slugs becomes ``__``.
    """

    def __init__(self, prefix: str = "cm") -> None:
        self.prefix = prefix

    @staticmethod
    def _slug_to_identifier(slug: str) -> str:
        return slug.replace("/", "__")

    def generate_table_name(self, slug: str) -> str:
        """Generate the physical table name for a collection slug.

        Args:
            slug: The collection slug.

        Returns:
            The generated table name.
        """
        return f"{self.prefix}_{self._slug_to_identifier(slug)}"

    def generate_relation_table_name(
        self, source_slug: str, target_slug: str, field_name: str
    ) -> str:
        """Generate the join table name for a relation field."""
        return (
            f"{self.prefix}_rel_{self._slug_to_identifier(source_slug)}"
            f"_{self._slug_to_identifier(target_slug)}_{field_name}"
        )

    @staticmethod
    def generate_unique_index_name(table_name: str, field_name: str) -> str:
        """Name the unique index of a field.

        Index names share one namespace per database. The digest of the pair
        keeps ``(cm_posts, x_y)`` and ``(cm_posts_x, y)`` distinct.
        """
        digest = hashlib.sha256(f"{table_name}.{field_name}".encode()).hexdigest()[:8]
        return f"uq_{table_name}_{field_name}_{digest}"

    def physical_table_names(
        self, slug: str, fields: list[FieldDefinition]
    ) -> list[tuple[str, str | None]]:
        """Tables owned by a collection as ``(table name, relation field)`` pairs.

        The collection table comes first with ``None`` as field name.
        """
        names: list[tuple[str, str | None]] = [(self.generate_table_name(slug), None)]
        for field in fields:
            if field.is_relation and field.relation is not None:
                names.append(
                    (
                        self.generate_relation_table_name(slug, field.relation.target, field.name),
                        field.name,
                    )
                )
        return names

    @staticmethod
    def build_field_column(field: FieldDefinition, nullable: bool | None = None) -> Column:
        """Build the column for a scalar field.

        Uniqueness is not set on the column; it is a separate named index so
        it can be dropped together with the column.

        Args:
            field: The field definition.
            nullable: Override for the column nullability. Defaults to
                ``not field.required``.

        Returns:
            The column object.
        """
        if field.is_relation:
            raise ValueError(f"Relation field '{field.name}' has no column")
        sql_type = FIELD_TYPE_TO_SQL[field.type]()
        return Column(
            field.name,
            sql_type,
            nullable=(not field.required) if nullable is None else nullable,
        )

    def build_collection_table(
        self, definition: CollectionDefinition, metadata: MetaData | None = None
    ) -> Table:
        """Build the table object for a collection.

        Args:
            definition: The collection definition.
            metadata: MetaData to attach to; a fresh one is used by default.

        Returns:
            Table with base columns, one column per scalar field and a unique
            index per unique field.
        """
        metadata = metadata if metadata is not None else MetaData()
        table_name = self.generate_table_name(definition.slug)

        columns = base_columns()
        indexes = []
        for field in definition.scalar_fields:
            columns.append(self.build_field_column(field))
            if field.unique:
                indexes.append(
                    Index(
                        self.generate_unique_index_name(table_name, field.name),
                        field.name,
                        unique=True,
                    )
                )

        return Table(table_name, metadata, *columns, *indexes)

    def reference_table(self, slug: str, metadata: MetaData) -> Table:
        """Get a table object carrying only the base columns.

        Used as the foreign key target of relation tables when the full
        definition is not needed.
        """
        table_name = self.generate_table_name(slug)
        if table_name in metadata.tables:
            return metadata.tables[table_name]
        return Table(table_name, metadata, *base_columns())

    def build_relation_table(
        self,
        source_slug: str,
        field: FieldDefinition,
        metadata: MetaData | None = None,
    ) -> Table:
        """Build the join table for a relation field.

        oneToOne tables use ``sourceId`` as primary key and a unique
        ``targetId``. oneToMany and manyToMany tables have a surrogate id and
        a unique ``(sourceId, targetId)`` pair. Both reference the
        ``documentId`` of the source and target tables with cascade delete.

        Args:
            source_slug: Slug of the collection owning the field.
            field: The relation field.
            metadata: MetaData to attach to; a fresh one is used by default.

        Returns:
            The join table object.
        """
        if field.relation is None:
            raise ValueError(f"Field '{field.name}' has no relation configuration")

        metadata = metadata if metadata is not None else MetaData()
        target_slug = field.relation.target
        table_name = self.generate_relation_table_name(source_slug, target_slug, field.name)
        if table_name in metadata.tables:
            return metadata.tables[table_name]

        source = self.reference_table(source_slug, metadata)
        target = self.reference_table(target_slug, metadata)

        if field.relation.type == RelationType.ONE_TO_ONE:
            key_columns = [
                Column("sourceId", String(DOCUMENT_ID_LENGTH), primary_key=True),
                Column("targetId", String(DOCUMENT_ID_LENGTH), nullable=False, unique=True),
            ]
            constraints = []
        else:
            key_columns = [
                Column("id", Integer, primary_key=True, autoincrement=True),
                Column("sourceId", String(DOCUMENT_ID_LENGTH), nullable=False),
                Column("targetId", String(DOCUMENT_ID_LENGTH), nullable=False, index=True),
            ]
            constraints = [
                UniqueConstraint("sourceId", "targetId", name=f"uq_{table_name}_pair"),
            ]

        return Table(
            table_name,
            metadata,
            *key_columns,
            Column("createdAt", DateTime, nullable=False, server_default=func.now()),
            Column("updatedAt", DateTime, nullable=False, server_default=func.now()),
            ForeignKeyConstraint(
                ["sourceId"], [source.c.documentId], ondelete="CASCADE"
            ),
            ForeignKeyConstraint(
                ["targetId"], [target.c.documentId], ondelete="CASCADE"
            ),
            *constraints,
        )
