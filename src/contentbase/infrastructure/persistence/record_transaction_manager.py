"""Transactional record mutations.

Each create, update or delete runs every statement it needs (the base row
and its join rows) inside one ``AsyncEngine.begin()`` block, so a failure at
any step leaves nothing behind.
"""

import uuid
from collections.abc import Mapping
from typing import Any

from sqlalchemy import MetaData, Table, delete, insert, select, update
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from contentbase.core.clock import utcnow
from contentbase.core.logging import get_logger
from contentbase.domain.entities import CollectionDefinition, FieldDefinition, RelationType
from contentbase.domain.exceptions import (
    DuplicateFieldValueError,
    FieldValidationError,
    RecordNotFoundError,
)
from contentbase.domain.services.record_codec import RecordCodec
from contentbase.infrastructure.persistence.errors import translate_errors
from contentbase.infrastructure.persistence.table_builder import TableBuilder

logger = get_logger(__name__)

RelationsMap = Mapping[str, str | list[str] | None]


class RecordTransactionManager:
    """Creates, updates and deletes records together with their relations."""

    def __init__(self, engine: AsyncEngine, table_builder: TableBuilder) -> None:
        self.engine = engine
        self.table_builder = table_builder

    @staticmethod
    def validate_relations(
        definition: CollectionDefinition, relations: RelationsMap | None
    ) -> dict[FieldDefinition, list[str]]:
        """Resolve a relations map to relation fields and target documentIds.

        A single id is accepted in place of a list; duplicates are dropped.

        Raises:
            FieldValidationError: For unknown or non-relation field names,
                non-string ids, and more than one target on a oneToOne field.
        """
        resolved: dict[FieldDefinition, list[str]] = {}
        for name, value in (relations or {}).items():
            field = definition.get_field(name)
            if field is None or not field.is_relation or field.relation is None:
                raise FieldValidationError(
                    f"'{name}' is not a relation field of collection '{definition.slug}'",
                    {"field": name},
                )

            ids = [] if value is None else [value] if isinstance(value, str) else value
            if not isinstance(ids, list) or not all(isinstance(i, str) for i in ids):
                raise FieldValidationError(
                    f"Relation '{name}' expects a list of document ids", {"field": name}
                )
            ids = list(dict.fromkeys(ids))

            if field.relation.type == RelationType.ONE_TO_ONE and len(ids) > 1:
                raise FieldValidationError(
                    f"Relation '{name}' is oneToOne and accepts a single target",
                    {"field": name, "count": len(ids)},
                )
            resolved[field] = ids
        return resolved

    @staticmethod
    def _raise_if_missing_required(
        definition: CollectionDefinition, values: dict[str, Any], partial: bool
    ) -> None:
        missing = RecordCodec.missing_required(definition, values, partial=partial)
        if missing:
            raise FieldValidationError(
                "Required fields are missing", {"fields": missing}
            )

    @staticmethod
    async def _check_unique(
        conn: AsyncConnection,
        table: Table,
        definition: CollectionDefinition,
        values: dict[str, Any],
        exclude_document_id: str | None = None,
    ) -> None:
        for field in definition.scalar_fields:
            if not field.unique or values.get(field.name) is None:
                continue
            query = select(table.c.id).where(table.c[field.name] == values[field.name])
            if exclude_document_id is not None:
                query = query.where(table.c.documentId != exclude_document_id)
            if (await conn.execute(query.limit(1))).first() is not None:
                raise DuplicateFieldValueError(field.name, values[field.name])

    @staticmethod
    async def _fetch(conn: AsyncConnection, table: Table, document_id: str) -> Any:
        result = await conn.execute(select(table).where(table.c.documentId == document_id))
        return result.one_or_none()

    async def _replace_links(
        self,
        conn: AsyncConnection,
        definition: CollectionDefinition,
        document_id: str,
        links: dict[FieldDefinition, list[str]],
        clear: bool,
    ) -> None:
        now = utcnow()
        for field, target_ids in links.items():
            relation_table = self.table_builder.build_relation_table(definition.slug, field)
            if clear:
                await conn.execute(
                    delete(relation_table).where(relation_table.c.sourceId == document_id)
                )
            if target_ids:
                await conn.execute(
                    insert(relation_table),
                    [
                        {
                            "sourceId": document_id,
                            "targetId": target_id,
                            "createdAt": now,
                            "updatedAt": now,
                        }
                        for target_id in target_ids
                    ],
                )

    @translate_errors("create record")
    async def create_record(
        self,
        definition: CollectionDefinition,
        data: dict[str, Any],
        relations: RelationsMap | None = None,
    ) -> dict[str, Any]:
        """Create a record and its relation links.

        Args:
            definition: The collection definition.
            data: Scalar field values.
            relations: Relation field name -> target documentIds.

        Returns:
            The created record.

        Raises:
            FieldValidationError: For invalid payloads, missing required
                values and unknown relation targets.
            DuplicateFieldValueError: If a unique value is already taken.
        """
        values = RecordCodec.encode(definition, data or {})
        links = self.validate_relations(definition, relations)
        self._raise_if_missing_required(definition, values, partial=False)

        table = self.table_builder.build_collection_table(definition, MetaData())
        document_id = str(uuid.uuid4())
        now = utcnow()

        async with self.engine.begin() as conn:
            await self._check_unique(conn, table, definition, values)
            await conn.execute(
                insert(table).values(
                    documentId=document_id, createdAt=now, updatedAt=now, **values
                )
            )
            await self._replace_links(conn, definition, document_id, links, clear=False)
            row = await self._fetch(conn, table, document_id)

        logger.info(
            "Record created",
            collection_slug=definition.slug,
            document_id=document_id,
            relations=[f.name for f in links],
        )
        return RecordCodec.decode(definition, row)

    @translate_errors("update record")
    async def update_record(
        self,
        definition: CollectionDefinition,
        document_id: str,
        data: dict[str, Any] | None = None,
        relations: RelationsMap | None = None,
    ) -> dict[str, Any]:
        """Update a record; relation fields present in ``relations`` are replaced.

        Raises:
            RecordNotFoundError: If no record has this documentId.
            FieldValidationError: For invalid payloads or clearing a required
                value.
            DuplicateFieldValueError: If a unique value belongs to another record.
        """
        values = RecordCodec.encode(definition, data or {})
        links = self.validate_relations(definition, relations)
        self._raise_if_missing_required(definition, values, partial=True)

        table = self.table_builder.build_collection_table(definition, MetaData())

        async with self.engine.begin() as conn:
            if await self._fetch(conn, table, document_id) is None:
                raise RecordNotFoundError(document_id, definition.slug)

            await self._check_unique(
                conn, table, definition, values, exclude_document_id=document_id
            )
            await conn.execute(
                update(table)
                .where(table.c.documentId == document_id)
                .values(updatedAt=utcnow(), **values)
            )
            await self._replace_links(conn, definition, document_id, links, clear=True)
            row = await self._fetch(conn, table, document_id)

        logger.info(
            "Record updated",
            collection_slug=definition.slug,
            document_id=document_id,
            fields=list(values),
            relations=[f.name for f in links],
        )
        return RecordCodec.decode(definition, row)

    @translate_errors("delete record")
    async def delete_record(self, definition: CollectionDefinition, document_id: str) -> None:
        """Delete a record and the join rows where it is the source.

        Raises:
            RecordNotFoundError: If no record has this documentId.
        """
        table = self.table_builder.build_collection_table(definition, MetaData())

        async with self.engine.begin() as conn:
            if await self._fetch(conn, table, document_id) is None:
                raise RecordNotFoundError(document_id, definition.slug)

            for field in definition.relation_fields:
                relation_table = self.table_builder.build_relation_table(definition.slug, field)
                await conn.execute(
                    delete(relation_table).where(relation_table.c.sourceId == document_id)
                )
            await conn.execute(delete(table).where(table.c.documentId == document_id))

        logger.info("Record deleted", collection_slug=definition.slug, document_id=document_id)
