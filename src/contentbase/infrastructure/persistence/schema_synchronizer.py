"""Physical schema synchronization for collection tables.

Keeps each collection's table in step with its field list. Column changes
are emitted through alembic's ``Operations`` on a live connection; join
tables of relation fields are delegated to RelationManager.
"""

from dataclasses import dataclass, field as dataclass_field

from alembic.operations import Operations
from alembic.runtime.migration import MigrationContext
from sqlalchemy import MetaData, func, inspect, select
from sqlalchemy import table as sql_table
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import AsyncEngine

from contentbase.core.logging import get_logger
from contentbase.domain.entities import CollectionDefinition, FieldDefinition
from contentbase.domain.exceptions import OperationFailedError
from contentbase.infrastructure.persistence.relation_manager import RelationManager
from contentbase.infrastructure.persistence.table_builder import TableBuilder, base_columns

logger = get_logger(__name__)


@dataclass
class FieldDiff:
    """Difference between two field lists of the same collection."""

    dropped_columns: list[FieldDefinition] = dataclass_field(default_factory=list)
    added_columns: list[FieldDefinition] = dataclass_field(default_factory=list)
    changed_columns: list[tuple[FieldDefinition, FieldDefinition]] = dataclass_field(
        default_factory=list
    )
    dropped_relations: list[FieldDefinition] = dataclass_field(default_factory=list)
    added_relations: list[FieldDefinition] = dataclass_field(default_factory=list)
    changed_relations: list[tuple[FieldDefinition, FieldDefinition]] = dataclass_field(
        default_factory=list
    )

    @property
    def is_empty(self) -> bool:
        return not (
            self.dropped_columns
            or self.added_columns
            or self.changed_columns
            or self.dropped_relations
            or self.added_relations
            or self.changed_relations
        )

    @classmethod
    def compute(
        cls, old_fields: list[FieldDefinition], new_fields: list[FieldDefinition]
    ) -> "FieldDiff":
        """Three-way diff of two field lists keyed by field name."""
        diff = cls()
        old_scalars = {f.name: f for f in old_fields if not f.is_relation}
        new_scalars = {f.name: f for f in new_fields if not f.is_relation}
        old_relations = {f.name: f for f in old_fields if f.is_relation}
        new_relations = {f.name: f for f in new_fields if f.is_relation}

        for name, old in old_scalars.items():
            new = new_scalars.get(name)
            if new is None:
                diff.dropped_columns.append(old)
            elif new.column_signature() != old.column_signature():
                diff.changed_columns.append((old, new))
        diff.added_columns = [f for name, f in new_scalars.items() if name not in old_scalars]

        for name, old in old_relations.items():
            new = new_relations.get(name)
            if new is None:
                diff.dropped_relations.append(old)
            elif _relation_key(new) != _relation_key(old):
                diff.changed_relations.append((old, new))
        diff.added_relations = [
            f for name, f in new_relations.items() if name not in old_relations
        ]

        return diff


def _relation_key(field: FieldDefinition) -> tuple[str, str] | None:
    if field.relation is None:
        return None
    return (field.relation.type.value, field.relation.target)


class SchemaSynchronizer:
    """Creates, alters and drops the physical tables of collections."""

    def __init__(
        self,
        engine: AsyncEngine,
        table_builder: TableBuilder,
        relation_manager: RelationManager,
    ) -> None:
        self.engine = engine
        self.table_builder = table_builder
        self.relation_manager = relation_manager

    @property
    def is_sqlite(self) -> bool:
        return self.engine.dialect.name == "sqlite"

    async def table_exists(self, slug: str) -> bool:
        """Check whether the physical table of a collection exists."""
        table_name = self.table_builder.generate_table_name(slug)
        async with self.engine.connect() as conn:
            return await conn.run_sync(lambda sync_conn: inspect(sync_conn).has_table(table_name))

    async def get_column_names(self, slug: str) -> list[str]:
        """Get the physical column names of a collection table in table order."""
        table_name = self.table_builder.generate_table_name(slug)
        async with self.engine.connect() as conn:
            columns = await conn.run_sync(
                lambda sync_conn: inspect(sync_conn).get_columns(table_name)
            )
        return [column["name"] for column in columns]

    async def create_collection_table(self, definition: CollectionDefinition) -> str:
        """Create the physical table of a collection.

        Returns:
            The table name.

        Raises:
            OperationFailedError: If the table already exists.
        """
        table = self.table_builder.build_collection_table(definition, MetaData())

        def _create(sync_conn: Connection) -> None:
            if inspect(sync_conn).has_table(table.name):
                raise OperationFailedError(
                    "create collection table",
                    RuntimeError(f"Table '{table.name}' already exists"),
                )
            table.create(sync_conn)

        async with self.engine.begin() as conn:
            await conn.run_sync(_create)

        logger.info(
            "Collection table created",
            table_name=table.name,
            collection_slug=definition.slug,
            column_count=len(table.columns),
        )
        return table.name

    async def update_collection_table(
        self,
        new_definition: CollectionDefinition,
        old_fields: list[FieldDefinition],
    ) -> FieldDiff:
        """Apply a field list change to the physical schema.

        Dropped fields lose their column, added fields gain one, and fields
        whose type, required or unique flag changed are dropped and re-added,
        which discards the values stored in that column. Join tables follow
        the relation fields.

        Args:
            new_definition: The collection with its new field list.
            old_fields: The field list before the change.

        Returns:
            The applied diff.
        """
        diff = FieldDiff.compute(old_fields, new_definition.fields)
        if diff.is_empty:
            return diff

        table_name = self.table_builder.generate_table_name(new_definition.slug)
        to_drop = diff.dropped_columns + [old for old, _ in diff.changed_columns]
        to_add = diff.added_columns + [new for _, new in diff.changed_columns]

        if to_drop or to_add:

            def _alter(sync_conn: Connection) -> None:
                for field in to_drop:
                    self._drop_column(sync_conn, table_name, field.name)
                for field in to_add:
                    self._add_column(sync_conn, table_name, field)

            async with self.engine.begin() as conn:
                await conn.run_sync(_alter)

        slug = new_definition.slug
        for field in diff.dropped_relations + [old for old, _ in diff.changed_relations]:
            await self.relation_manager.drop_relation_table(slug, field)
        for field in diff.added_relations + [new for _, new in diff.changed_relations]:
            await self.relation_manager.create_relation_table(slug, field)

        logger.info(
            "Collection table updated",
            table_name=table_name,
            dropped=[f.name for f in diff.dropped_columns],
            added=[f.name for f in diff.added_columns],
            rebuilt=[new.name for _, new in diff.changed_columns],
            relations_dropped=[f.name for f in diff.dropped_relations],
            relations_added=[f.name for f in diff.added_relations],
            relations_rebuilt=[new.name for _, new in diff.changed_relations],
        )
        return diff

    async def restore_collection_table(
        self,
        definition: CollectionDefinition,
        attempted_fields: list[FieldDefinition],
    ) -> None:
        """Bring the physical schema back to ``definition`` after a failed update.

        SQLite commits each ALTER on its own, so a failed update can leave
        part of the diff applied. Columns are compared by name with the
        live table: extra columns are dropped and missing ones re-added
        empty. Join tables created for ``attempted_fields`` are dropped and
        those of ``definition`` recreated when missing. A column whose type
        change went through keeps its new type.
        """
        table_name = self.table_builder.generate_table_name(definition.slug)
        expected = {f.name: f for f in definition.scalar_fields}
        base_names = {column.name for column in base_columns()}

        def _restore(sync_conn: Connection) -> None:
            present = {c["name"] for c in inspect(sync_conn).get_columns(table_name)}
            for name in sorted(present - expected.keys() - base_names):
                self._drop_column(sync_conn, table_name, name)
            for name, field in expected.items():
                if name not in present:
                    self._add_column(sync_conn, table_name, field)

        async with self.engine.begin() as conn:
            await conn.run_sync(_restore)

        slug = definition.slug
        kept = {
            name for name, _ in self.table_builder.physical_table_names(slug, definition.fields)
        }
        for field in attempted_fields:
            if not field.is_relation or field.relation is None:
                continue
            name = self.table_builder.generate_relation_table_name(
                slug, field.relation.target, field.name
            )
            if name not in kept:
                await self.relation_manager.drop_relation_table(slug, field)
        for field in definition.relation_fields:
            await self.relation_manager.create_relation_table(slug, field)

        logger.warning("Collection table restored", table_name=table_name, collection_slug=slug)

    def _drop_column(self, sync_conn: Connection, table_name: str, column_name: str) -> None:
        inspector = inspect(sync_conn)
        op = Operations(MigrationContext.configure(sync_conn))

        # SQLite refuses to drop an indexed column
        for index in inspector.get_indexes(table_name):
            if column_name in (index["column_names"] or []):
                op.drop_index(index["name"], table_name=table_name)

        op.drop_column(table_name, column_name)

    def _add_column(self, sync_conn: Connection, table_name: str, field: FieldDefinition) -> None:
        op = Operations(MigrationContext.configure(sync_conn))

        nullable = not field.required
        if field.required:
            if self.is_sqlite:
                nullable = True
            else:
                row_count = sync_conn.execute(
                    select(func.count()).select_from(sql_table(table_name))
                ).scalar_one()
                nullable = row_count > 0
            if nullable:
                logger.warning(
                    "Required field added as nullable column",
                    table_name=table_name,
                    field=field.name,
                )

        op.add_column(table_name, self.table_builder.build_field_column(field, nullable=nullable))

        if field.unique:
            op.create_index(
                self.table_builder.generate_unique_index_name(table_name, field.name),
                table_name,
                [field.name],
                unique=True,
            )

    async def drop_collection_table(self, slug: str) -> None:
        """Drop the physical table of a collection. Missing tables are ignored."""
        table = self.table_builder.reference_table(slug, MetaData())

        async with self.engine.begin() as conn:
            await conn.run_sync(lambda sync_conn: table.drop(sync_conn, checkfirst=True))

        logger.info("Collection table dropped", table_name=table.name, collection_slug=slug)

    async def rename_collection_table(self, old_slug: str, new_slug: str) -> str:
        """Rename the physical table of a collection after a slug change.

        Unique indexes are recreated under names derived from the new table
        name.

        Returns:
            The new table name.
        """
        old_name = self.table_builder.generate_table_name(old_slug)
        new_name = self.table_builder.generate_table_name(new_slug)
        generate_index_name = self.table_builder.generate_unique_index_name

        def _rename(sync_conn: Connection) -> None:
            op = Operations(MigrationContext.configure(sync_conn))
            op.rename_table(old_name, new_name)

            for index in inspect(sync_conn).get_indexes(new_name):
                column_names = index["column_names"] or []
                if len(column_names) != 1:
                    continue
                column_name = column_names[0]
                if index["name"] != generate_index_name(old_name, column_name):
                    continue
                op.drop_index(index["name"], table_name=new_name)
                op.create_index(
                    self.table_builder.generate_unique_index_name(new_name, column_name),
                    new_name,
                    [column_name],
                    unique=True,
                )

        async with self.engine.begin() as conn:
            await conn.run_sync(_rename)

        logger.info(
            "Collection table renamed",
            old_table_name=old_name,
            table_name=new_name,
            collection_slug=new_slug,
        )
        return new_name
