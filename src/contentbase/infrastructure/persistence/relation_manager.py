"""Relation table management.

Each relation field owns one join table linking source and target record
documentIds. This module creates, drops and renames those tables, validates
relation configurations against the target collection and reads links back.
"""

from collections.abc import Iterable

from alembic.operations import Operations
from alembic.runtime.migration import MigrationContext
from sqlalchemy import MetaData, inspect, select
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import AsyncEngine

from contentbase.core.logging import get_logger
from contentbase.domain.entities import CollectionDefinition, FieldDefinition, RelationConfig
from contentbase.domain.exceptions import FieldValidationError
from contentbase.infrastructure.persistence.repositories import SchemaStore
from contentbase.infrastructure.persistence.table_builder import TableBuilder

logger = get_logger(__name__)

# slug -> outgoing (field name, relation config) pairs
RelationGraph = dict[str, list[tuple[str, RelationConfig]]]


class RelationManager:
    """Manages join tables for relation fields."""

    def __init__(
        self,
        engine: AsyncEngine,
        store: SchemaStore,
        table_builder: TableBuilder,
    ) -> None:
        self.engine = engine
        self.store = store
        self.table_builder = table_builder

    @staticmethod
    def validate_relation(field: FieldDefinition, target: CollectionDefinition | None) -> None:
        """Validate a relation field against its target collection.

        Args:
            field: The relation field.
            target: The target collection, None if it does not exist.

        Raises:
            FieldValidationError: If the relation config is absent, the
                target is missing, or the inverse side of a bidirectional
                relation does not name existing fields on the target.
        """
        relation = field.relation
        if relation is None:
            raise FieldValidationError(
                f"Relation configuration is required for field '{field.name}'",
                {"field": field.name},
            )

        if target is None:
            raise FieldValidationError(
                f"Target collection '{relation.target}' does not exist",
                {"field": field.name, "target": relation.target},
            )

        if not relation.bidirectional:
            return

        inverse = relation.inverse_side
        if inverse is None:
            raise FieldValidationError(
                f"Bidirectional relation '{field.name}' requires an inverse side",
                {"field": field.name},
            )

        inverse_fields = (
            ("inverse_field", inverse.field),
            ("inverse_display_field", inverse.display_field),
        )
        for key, name in inverse_fields:
            if target.get_field(name) is None:
                raise FieldValidationError(
                    f"Field '{name}' of the inverse side does not exist on collection '{target.slug}'",
                    {"field": field.name, "target": target.slug, key: name},
                )

    async def validate_relations(
        self,
        source_slug: str,
        fields: Iterable[FieldDefinition],
        source_fields: list[FieldDefinition] | None = None,
    ) -> None:
        """Validate every relation field of a field list against the database.

        Args:
            source_slug: Slug of the collection owning the fields.
            fields: Fields to validate; scalar fields are skipped.
            source_fields: Field list used when a relation targets its own
                collection. Defaults to the stored definition.
        """
        for field in fields:
            if not field.is_relation:
                continue
            target_slug = field.relation.target if field.relation else None
            if target_slug == source_slug and source_fields is not None:
                target: CollectionDefinition | None = CollectionDefinition(
                    id=0, document_id="", name=source_slug, slug=source_slug, fields=source_fields
                )
            elif target_slug is not None:
                target = await self.store.find_by_slug(target_slug)
            else:
                target = None
            self.validate_relation(field, target)

    async def create_relation_table(self, source_slug: str, field: FieldDefinition) -> str:
        """Create the join table of a relation field if it does not exist.

        Returns:
            The join table name.
        """
        metadata = MetaData()
        table = self.table_builder.build_relation_table(source_slug, field, metadata)

        async with self.engine.begin() as conn:
            await conn.run_sync(lambda sync_conn: table.create(sync_conn, checkfirst=True))

        logger.info(
            "Relation table created",
            table_name=table.name,
            collection_slug=source_slug,
            field=field.name,
            relation_type=field.relation.type.value if field.relation else None,
        )
        return table.name

    async def drop_relation_table(self, source_slug: str, field: FieldDefinition) -> None:
        """Drop the join table of a relation field. Missing tables are ignored."""
        metadata = MetaData()
        table = self.table_builder.build_relation_table(source_slug, field, metadata)

        async with self.engine.begin() as conn:
            await conn.run_sync(lambda sync_conn: table.drop(sync_conn, checkfirst=True))

        logger.info("Relation table dropped", table_name=table.name, field=field.name)

    async def rename_relation_tables(
        self,
        old_slug: str,
        new_slug: str,
        fields: Iterable[FieldDefinition],
    ) -> None:
        """Rename the outgoing join tables of a collection after a slug change.

        Relations that target the collection itself change both name parts.
        """
        renames = []
        for field in fields:
            if not field.is_relation or field.relation is None:
                continue
            target = field.relation.target
            new_target = new_slug if target == old_slug else target
            renames.append(
                (
                    self.table_builder.generate_relation_table_name(old_slug, target, field.name),
                    self.table_builder.generate_relation_table_name(new_slug, new_target, field.name),
                )
            )

        if not renames:
            return

        def _rename(sync_conn: Connection) -> None:
            existing = set(inspect(sync_conn).get_table_names())
            op = Operations(MigrationContext.configure(sync_conn))
            for old_name, new_name in renames:
                if old_name in existing:
                    op.rename_table(old_name, new_name)

        async with self.engine.begin() as conn:
            await conn.run_sync(_rename)

        for old_name, new_name in renames:
            logger.info("Relation table renamed", old_table_name=old_name, table_name=new_name)

    async def get_related_ids(
        self,
        source: CollectionDefinition,
        field_name: str,
        source_document_id: str,
    ) -> list[str]:
        """Get the target documentIds linked to a source record.

        Raises:
            FieldValidationError: If ``field_name`` is not a relation field.
        """
        field = source.get_field(field_name)
        if field is None or not field.is_relation:
            raise FieldValidationError(
                f"'{field_name}' is not a relation field of collection '{source.slug}'",
                {"field": field_name},
            )

        table = self.table_builder.build_relation_table(source.slug, field)
        query = (
            select(table.c.targetId)
            .where(table.c.sourceId == source_document_id)
            .order_by(table.c.createdAt, table.c.targetId)
        )
        async with self.engine.connect() as conn:
            result = await conn.execute(query)
            return [row.targetId for row in result]

    @staticmethod
    def build_relation_graph(definitions: Iterable[CollectionDefinition]) -> RelationGraph:
        """Build the adjacency map of outgoing relations per collection slug."""
        graph: RelationGraph = {}
        for definition in definitions:
            graph[definition.slug] = [
                (field.name, field.relation)
                for field in definition.relation_fields
                if field.relation is not None
            ]
        return graph

    @staticmethod
    def find_references(graph: RelationGraph, target_slug: str) -> list[tuple[str, str]]:
        """Relation fields of other collections that target ``target_slug``.

        Returns:
            ``(source slug, field name)`` pairs; self references are excluded.
        """
        return [
            (source_slug, field_name)
            for source_slug, edges in graph.items()
            if source_slug != target_slug
            for field_name, relation in edges
            if relation.target == target_slug
        ]
