"""Collection service for business logic.

Single entry point for callers: coordinates the schema store, the physical
schema, relations, the hierarchy and record operations. Validation always
runs before the first side effect. The session never holds uncommitted
registry writes while DDL runs on the engine: creation commits the registry
row before building tables, updates apply the DDL before touching the
registry.
"""

from collections.abc import Mapping
from dataclasses import replace
from typing import Any

from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from contentbase.core.config import Settings, get_settings
from contentbase.core.logging import LoggingContext, get_logger
from contentbase.domain.entities import CollectionDefinition, CollectionNode, FieldDefinition
from contentbase.domain.exceptions import (
    CollectionAlreadyExistsError,
    CollectionNotFoundError,
    ContentBaseError,
    FieldValidationError,
    OperationFailedError,
)
from contentbase.domain.services.hierarchy_manager import HierarchyManager
from contentbase.infrastructure.persistence.errors import translate_errors
from contentbase.infrastructure.persistence.query_engine import QueryEngine
from contentbase.infrastructure.persistence.record_transaction_manager import (
    RecordTransactionManager,
    RelationsMap,
)
from contentbase.infrastructure.persistence.relation_manager import RelationGraph, RelationManager
from contentbase.infrastructure.persistence.repositories import SchemaStore
from contentbase.infrastructure.persistence.schema_synchronizer import SchemaSynchronizer
from contentbase.infrastructure.persistence.table_builder import TableBuilder
from contentbase.schemas import CollectionCreate, CollectionUpdate, QueryOptions, QueryResult

logger = get_logger(__name__)


def _parse(model: type, data: Any) -> Any:
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise FieldValidationError(
            f"Invalid {model.__name__} payload",
            {"errors": e.errors(include_url=False, include_context=False)},
        ) from e


def _retarget_self_relations(
    fields: list[FieldDefinition], old_slug: str, new_slug: str
) -> list[FieldDefinition]:
    """Point relations that target the collection itself at its new slug."""
    retargeted = []
    for field in fields:
        if field.relation is not None and field.relation.target == old_slug:
            field = replace(field, relation=replace(field.relation, target=new_slug))
        retargeted.append(field)
    return retargeted


class CollectionService:
    """Service for collection and record business logic."""

    def __init__(
        self,
        session: AsyncSession,
        engine: AsyncEngine,
        settings: Settings | None = None,
    ) -> None:
        """Initialize the service.

        Args:
            session: SQLAlchemy async session for the registry.
            engine: SQLAlchemy async engine for DDL and record operations.
            settings: Optional settings, defaults to the cached settings.
        """
        self.session = session
        self.engine = engine
        self.settings = settings or get_settings()

        self.table_builder = TableBuilder(self.settings.table_prefix)
        self.store = SchemaStore(session)
        self.relations = RelationManager(engine, self.store, self.table_builder)
        self.synchronizer = SchemaSynchronizer(engine, self.table_builder, self.relations)
        self.hierarchy = HierarchyManager(self.store)
        self.queries = QueryEngine(
            engine,
            self.table_builder,
            default_page_size=self.settings.default_page_size,
            max_page_size=self.settings.max_page_size,
        )
        self.records = RecordTransactionManager(engine, self.table_builder)

    # Collections

    async def list_collections(self) -> list[CollectionDefinition]:
        """Get all collections ordered by name."""
        return await self.store.find_all()

    async def get_collection(self, slug: str) -> CollectionDefinition:
        """Get a collection by slug.

        Raises:
            CollectionNotFoundError: If no collection has this slug.
        """
        definition = await self.store.find_by_slug(slug)
        if definition is None:
            raise CollectionNotFoundError(slug)
        return definition

    async def get_collection_by_id(self, collection_id: int) -> CollectionDefinition:
        definition = await self.store.find_by_id(collection_id)
        if definition is None:
            raise CollectionNotFoundError(collection_id)
        return definition

    async def get_collection_by_document_id(self, document_id: str) -> CollectionDefinition:
        definition = await self.store.find_by_document_id(document_id)
        if definition is None:
            raise CollectionNotFoundError(document_id)
        return definition

    async def get_relation_graph(self) -> RelationGraph:
        """Get the outgoing relations of every collection keyed by slug."""
        return RelationManager.build_relation_graph(await self.store.find_all())

    async def _raise_if_referenced(self, definition: CollectionDefinition, action: str) -> None:
        references = RelationManager.find_references(
            await self.get_relation_graph(), definition.slug
        )
        if references:
            raise FieldValidationError(
                f"Cannot {action} collection '{definition.slug}': "
                "it is the target of relations in other collections",
                {
                    "collection_slug": definition.slug,
                    "references": [
                        {"collection": source, "field": field} for source, field in references
                    ],
                },
            )

    async def _raise_if_table_names_taken(
        self,
        slug: str,
        fields: list[FieldDefinition],
        collection_id: int | None = None,
    ) -> None:
        """Reject a definition whose physical tables would reuse an existing name.

        Slugs and field names may contain underscores, so distinct
        ``(source, target, field)`` triples can map to the same join table
        name. Tables owned by ``collection_id`` itself are ignored.
        """
        owners: dict[str, tuple[str, str | None]] = {}
        for other in await self.store.find_all():
            if other.id == collection_id:
                continue
            for table_name, field_name in self.table_builder.physical_table_names(
                other.slug, other.fields
            ):
                owners[table_name] = (other.slug, field_name)

        for table_name, field_name in self.table_builder.physical_table_names(slug, fields):
            owner = owners.get(table_name)
            if owner is not None:
                owner_slug, owner_field = owner
                raise FieldValidationError(
                    f"Table '{table_name}' needed by collection '{slug}' is already "
                    f"used by collection '{owner_slug}'",
                    {
                        "table_name": table_name,
                        "field": field_name,
                        "collection_slug": owner_slug,
                        "conflicting_field": owner_field,
                    },
                )
            owners[table_name] = (slug, field_name)

    @translate_errors("create collection")
    async def create_collection(
        self, data: CollectionCreate | Mapping[str, Any]
    ) -> CollectionDefinition:
        """Create a collection with its physical and relation tables.

        Args:
            data: Collection name, slug, optional description, parent id and
                fields.

        Returns:
            The created collection.

        Raises:
            FieldValidationError: If the definition or a relation is invalid.
            CollectionAlreadyExistsError: If the slug is already taken.
            CollectionNotFoundError: If the parent does not exist.
            OperationFailedError: If the tables cannot be created.
        """
        data = _parse(CollectionCreate, data)
        fields = data.field_entities()

        slug = await self.hierarchy.validate_hierarchical_slug(data.parent_id, data.slug)
        SchemaStore.validate_definition(data.name, slug, fields)
        if await self.store.slug_exists(slug):
            raise CollectionAlreadyExistsError(slug)
        await self.relations.validate_relations(slug, fields, source_fields=fields)
        await self._raise_if_table_names_taken(slug, fields)

        definition = await self.store.create(
            name=data.name,
            slug=slug,
            fields=fields,
            description=data.description,
            parent_id=data.parent_id,
        )
        await self.session.commit()

        try:
            await self.synchronizer.create_collection_table(definition)
            for field in definition.relation_fields:
                await self.relations.create_relation_table(definition.slug, field)
        except Exception as e:
            logger.error(
                "Collection table creation failed, removing collection",
                collection_slug=slug,
                error=str(e),
            )
            await self._remove_created(definition)
            if isinstance(e, OperationFailedError):
                raise
            raise OperationFailedError("create collection", e) from e

        logger.info(
            "Collection created",
            collection_slug=slug,
            collection_id=definition.id,
            field_count=len(fields),
        )
        return definition

    async def _remove_created(self, definition: CollectionDefinition) -> None:
        """Undo a partially created collection."""
        try:
            for field in definition.relation_fields:
                await self.relations.drop_relation_table(definition.slug, field)
            await self.synchronizer.drop_collection_table(definition.slug)
            await self.store.delete(definition.id)
            await self.session.commit()
        except Exception as cleanup_error:
            logger.error(
                "Cleanup after failed collection creation failed",
                collection_slug=definition.slug,
                error=str(cleanup_error),
            )

    @translate_errors("update collection")
    async def update_collection(
        self, collection_id: int, data: CollectionUpdate | Mapping[str, Any]
    ) -> CollectionDefinition:
        """Update a collection definition and its physical schema.

        A new slug is composed with the current parent's slug and renames the
        physical and outgoing relation tables. A new field list is applied
        with SchemaSynchronizer.

        Raises:
            CollectionNotFoundError: If the collection does not exist.
            CollectionAlreadyExistsError: If the new slug is taken.
            FieldValidationError: If the update is invalid, or the slug of a
                collection targeted by other collections' relations changes.
            OperationFailedError: If the schema change fails; the physical
                schema is restored and the registry is left unchanged.
        """
        data = _parse(CollectionUpdate, data)
        current = await self.get_collection_by_id(collection_id)

        new_slug = current.slug
        if data.slug is not None:
            new_slug = await self.hierarchy.validate_hierarchical_slug(
                current.parent_id, data.slug
            )
        slug_changed = new_slug != current.slug

        old_fields = current.fields
        new_fields = data.field_entities()
        if slug_changed:
            old_fields = _retarget_self_relations(old_fields, current.slug, new_slug)
            if new_fields is not None:
                new_fields = _retarget_self_relations(new_fields, current.slug, new_slug)
        effective_fields = new_fields if new_fields is not None else old_fields

        name = data.name if data.name is not None else current.name
        SchemaStore.validate_definition(name, new_slug, effective_fields)

        if slug_changed:
            await self._raise_if_referenced(current, "rename")
            if await self.store.slug_exists(new_slug):
                raise CollectionAlreadyExistsError(new_slug)

        await self.relations.validate_relations(
            new_slug, effective_fields, source_fields=effective_fields
        )
        if slug_changed or new_fields is not None:
            await self._raise_if_table_names_taken(new_slug, effective_fields, collection_id)

        patch: dict[str, Any] = {}
        if data.name is not None:
            patch["name"] = data.name
        if "description" in data.model_fields_set:
            patch["description"] = data.description
        if slug_changed:
            patch["slug"] = new_slug
        if new_fields is not None or slug_changed:
            patch["fields"] = effective_fields

        target = replace(current, name=name, slug=new_slug, fields=effective_fields)
        steps: list[str] = []
        try:
            if slug_changed:
                await self.synchronizer.rename_collection_table(current.slug, new_slug)
                steps.append("table")
                steps.append("relations")
                await self.relations.rename_relation_tables(current.slug, new_slug, current.fields)
            if new_fields is not None:
                steps.append("fields")
                await self.synchronizer.update_collection_table(target, old_fields)
        except Exception as e:
            logger.error(
                "Collection schema update failed, restoring previous schema",
                collection_slug=current.slug,
                error=str(e),
            )
            await self._restore_updated(current, target, old_fields, steps)
            if isinstance(e, ContentBaseError):
                raise
            raise OperationFailedError("update collection", e) from e

        updated = await self.store.update(collection_id, patch)
        await self.session.commit()

        logger.info(
            "Collection updated",
            collection_slug=updated.slug,
            collection_id=collection_id,
            renamed_from=current.slug if slug_changed else None,
        )
        return updated

    async def _restore_updated(
        self,
        current: CollectionDefinition,
        target: CollectionDefinition,
        old_fields: list[FieldDefinition],
        steps: list[str],
    ) -> None:
        """Undo the physical changes of a failed update, newest first.

        ``steps`` names what was started: ``table`` and ``relations`` for the
        renames, ``fields`` for the column and join table diff. The registry
        has not been written yet.
        """
        try:
            if "fields" in steps:
                await self.synchronizer.restore_collection_table(
                    replace(target, fields=old_fields), target.fields
                )
            if "relations" in steps:
                await self.relations.rename_relation_tables(target.slug, current.slug, old_fields)
            if "table" in steps:
                await self.synchronizer.rename_collection_table(target.slug, current.slug)
        except Exception as restore_error:
            logger.error(
                "Restoring the schema after a failed update failed",
                collection_slug=current.slug,
                error=str(restore_error),
            )

    @translate_errors("delete collection")
    async def delete_collection(self, collection_id: int) -> None:
        """Delete a collection, its relation tables and its physical table.

        Subcollections become roots.

        Raises:
            CollectionNotFoundError: If the collection does not exist.
            FieldValidationError: If other collections have relations
                targeting it.
        """
        definition = await self.get_collection_by_id(collection_id)
        await self._raise_if_referenced(definition, "delete")

        for field in definition.relation_fields:
            await self.relations.drop_relation_table(definition.slug, field)
        await self.synchronizer.drop_collection_table(definition.slug)
        await self.store.delete(collection_id)
        await self.session.commit()

        logger.info(
            "Collection deleted", collection_slug=definition.slug, collection_id=collection_id
        )

    # Hierarchy

    async def get_hierarchy(self) -> list[CollectionNode]:
        return await self.hierarchy.get_collection_hierarchy()

    async def get_subcollections(self, parent_id: int) -> list[CollectionDefinition]:
        return await self.hierarchy.get_subcollections(parent_id)

    @translate_errors("move collection")
    async def move_collection(
        self, collection_id: int, new_parent_id: int | None
    ) -> CollectionDefinition:
        """Move a collection under another parent, or to the root with None."""
        moved = await self.hierarchy.move_collection(collection_id, new_parent_id)
        await self.session.commit()
        return moved

    # Records

    async def _relation_targets(
        self, definition: CollectionDefinition
    ) -> dict[str, CollectionDefinition]:
        targets: dict[str, CollectionDefinition] = {}
        for field in definition.relation_fields:
            target_slug = field.relation.target if field.relation else None
            if target_slug is None or target_slug in targets:
                continue
            if target_slug == definition.slug:
                targets[target_slug] = definition
                continue
            target = await self.store.find_by_slug(target_slug)
            if target is not None:
                targets[target_slug] = target
        return targets

    @translate_errors("list records")
    async def list_records(
        self, slug: str, options: QueryOptions | Mapping[str, Any] | None = None
    ) -> QueryResult:
        """List records of a collection with filtering, sorting and pagination."""
        definition = await self.get_collection(slug)
        options = QueryEngine.parse_options(options)
        targets = await self._relation_targets(definition) if options.include_relations else None
        return await self.queries.execute_query(definition, options, targets)

    @translate_errors("get record")
    async def get_record(
        self, slug: str, document_id: str, include_relations: bool = False
    ) -> dict[str, Any]:
        definition = await self.get_collection(slug)
        targets = await self._relation_targets(definition) if include_relations else None
        return await self.queries.get_record(definition, document_id, include_relations, targets)

    @translate_errors("create record")
    async def create_record(
        self,
        slug: str,
        data: dict[str, Any],
        relations: RelationsMap | None = None,
    ) -> dict[str, Any]:
        definition = await self.get_collection(slug)
        with LoggingContext(collection_slug=slug):
            return await self.records.create_record(definition, data, relations)

    @translate_errors("update record")
    async def update_record(
        self,
        slug: str,
        document_id: str,
        data: dict[str, Any] | None = None,
        relations: RelationsMap | None = None,
    ) -> dict[str, Any]:
        definition = await self.get_collection(slug)
        with LoggingContext(collection_slug=slug):
            return await self.records.update_record(definition, document_id, data, relations)

    @translate_errors("delete record")
    async def delete_record(self, slug: str, document_id: str) -> None:
        definition = await self.get_collection(slug)
        with LoggingContext(collection_slug=slug):
            await self.records.delete_record(definition, document_id)

    @translate_errors("get related records")
    async def get_related_ids(self, slug: str, document_id: str, field_name: str) -> list[str]:
        """Get the target documentIds linked to a record through a relation field."""
        definition = await self.get_collection(slug)
        return await self.relations.get_related_ids(definition, field_name, document_id)
