"""Query engine for collection records.

Translates QueryOptions into SQLAlchemy Core statements over a collection
table built from its definition. Column identifiers only ever come from the
definition and every operand is a bound parameter.
"""

import math
from collections.abc import Mapping
from typing import Any

from pydantic import ValidationError
from sqlalchemy import MetaData, Table, and_, func, or_, select
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine
from sqlalchemy.sql.elements import ColumnElement

from contentbase.core.logging import get_logger
from contentbase.domain.entities import CollectionDefinition, FieldDefinition
from contentbase.domain.exceptions import FieldValidationError, RecordNotFoundError
from contentbase.domain.services.record_codec import BASE_COLUMNS, RecordCodec
from contentbase.infrastructure.persistence.table_builder import TableBuilder
from contentbase.schemas.query_schemas import (
    CursorPagination,
    CursorPaginationMeta,
    PagePagination,
    PagePaginationMeta,
    QueryOptions,
    QueryResult,
    SortField,
)

logger = get_logger(__name__)

COMPARISON_OPERATORS = {
    "eq": lambda column, value: column == value,
    "neq": lambda column, value: column != value,
    "gt": lambda column, value: column > value,
    "gte": lambda column, value: column >= value,
    "lt": lambda column, value: column < value,
    "lte": lambda column, value: column <= value,
}
FILTER_OPERATORS = frozenset(COMPARISON_OPERATORS) | {"like", "in", "between", "null", "notNull"}
LOGICAL_OPERATORS = {"$or": or_, "$and": and_}

SOURCE_ID_LABEL = "_source_document_id"


class QueryEngine:
    """Filters, sorts, paginates and expands records of a collection."""

    def __init__(
        self,
        engine: AsyncEngine,
        table_builder: TableBuilder,
        default_page_size: int = 25,
        max_page_size: int = 100,
    ) -> None:
        self.engine = engine
        self.table_builder = table_builder
        self.default_page_size = default_page_size
        self.max_page_size = max_page_size

    @staticmethod
    def parse_options(options: QueryOptions | Mapping[str, Any] | None) -> QueryOptions:
        """Accept QueryOptions or their JSON form."""
        if options is None:
            return QueryOptions()
        if isinstance(options, QueryOptions):
            return options
        try:
            return QueryOptions.model_validate(options)
        except ValidationError as e:
            raise FieldValidationError(
                "Invalid query options",
                {"errors": e.errors(include_url=False, include_context=False)},
            ) from e

    # Filters

    @staticmethod
    def _filter_columns(definition: CollectionDefinition) -> dict[str, FieldDefinition | None]:
        columns: dict[str, FieldDefinition | None] = {name: None for name in BASE_COLUMNS}
        columns.update({f.name: f for f in definition.scalar_fields})
        return columns

    def compile_filter(
        self,
        table: Table,
        definition: CollectionDefinition,
        filter_tree: Mapping[str, Any] | None,
    ) -> ColumnElement[bool] | None:
        """Compile a filter tree into a WHERE clause.

        Args:
            table: The collection table.
            definition: The collection definition.
            filter_tree: Field name -> {operator: operand}, with optional
                ``$or`` / ``$and`` lists of nested trees.

        Returns:
            The clause, or None for an empty tree.

        Raises:
            FieldValidationError: For unknown columns or operators and
                malformed operands.
        """
        if not filter_tree:
            return None
        return self._compile_tree(table, self._filter_columns(definition), filter_tree)

    def _compile_tree(
        self,
        table: Table,
        columns: dict[str, FieldDefinition | None],
        tree: Any,
    ) -> ColumnElement[bool] | None:
        if not isinstance(tree, Mapping):
            raise FieldValidationError(
                "Filter must be an object", {"filter_type": type(tree).__name__}
            )

        clauses: list[ColumnElement[bool]] = []
        for key, condition in tree.items():
            if key in LOGICAL_OPERATORS:
                if not isinstance(condition, list) or not condition:
                    raise FieldValidationError(
                        f"'{key}' must be a non-empty list of filters", {"operator": key}
                    )
                nested = [self._compile_tree(table, columns, sub) for sub in condition]
                nested = [clause for clause in nested if clause is not None]
                if nested:
                    clauses.append(LOGICAL_OPERATORS[key](*nested).self_group())
                continue

            if key not in columns:
                raise FieldValidationError(
                    f"Cannot filter on unknown field '{key}'", {"field": key}
                )
            clauses.extend(
                self._compile_condition(table.c[key], key, columns[key], condition)
            )

        if not clauses:
            return None
        return and_(*clauses) if len(clauses) > 1 else clauses[0]

    @staticmethod
    def _compile_condition(
        column: Any,
        name: str,
        field: FieldDefinition | None,
        condition: Any,
    ) -> list[ColumnElement[bool]]:
        if not isinstance(condition, Mapping) or not condition:
            raise FieldValidationError(
                f"Filter for '{name}' must be an object of operators", {"field": name}
            )

        clauses = []
        for operator, operand in condition.items():
            if operator not in FILTER_OPERATORS:
                raise FieldValidationError(
                    f"Unknown filter operator '{operator}'",
                    {"field": name, "operator": operator},
                )

            if operator == "null":
                clauses.append(column.is_(None) if operand else column.is_not(None))
                continue
            if operator == "notNull":
                clauses.append(column.is_not(None) if operand else column.is_(None))
                continue

            if operator == "like":
                if not isinstance(operand, str):
                    raise FieldValidationError(
                        f"'like' on '{name}' expects a string", {"field": name}
                    )
                clauses.append(column.contains(operand, autoescape=True))
                continue

            if operator == "in":
                if not isinstance(operand, (list, tuple)):
                    raise FieldValidationError(
                        f"'in' on '{name}' expects a list", {"field": name}
                    )
                clauses.append(column.in_(RecordCodec.coerce_filter_value(field, list(operand))))
                continue

            if operator == "between":
                if not isinstance(operand, (list, tuple)) or len(operand) != 2:
                    raise FieldValidationError(
                        f"'between' on '{name}' expects a list of two values", {"field": name}
                    )
                low, high = RecordCodec.coerce_filter_value(field, list(operand))
                clauses.append(column.between(low, high))
                continue

            if isinstance(operand, (list, tuple, dict)) or operand is None:
                raise FieldValidationError(
                    f"'{operator}' on '{name}' expects a single value",
                    {"field": name, "operator": operator},
                )
            value = RecordCodec.coerce_filter_value(field, operand)
            clauses.append(COMPARISON_OPERATORS[operator](column, value))

        return clauses

    # Sorting

    def build_order_by(
        self,
        table: Table,
        definition: CollectionDefinition,
        sort: list[SortField],
    ) -> list[Any]:
        """Build ORDER BY terms with the internal id as final tiebreaker."""
        columns = self._filter_columns(definition)
        order_by = []
        for item in sort:
            if item.field not in columns:
                raise FieldValidationError(
                    f"Cannot sort on unknown field '{item.field}'", {"field": item.field}
                )
            column = table.c[item.field]
            order_by.append(column.desc() if item.direction == "desc" else column.asc())
        if not any(item.field == "id" for item in sort):
            order_by.append(table.c.id.asc())
        return order_by

    # Execution

    def _page_size(self, size: int | None, name: str) -> int:
        if size is None:
            return self.default_page_size
        if size > self.max_page_size:
            raise FieldValidationError(
                f"'{name}' must be at most {self.max_page_size}",
                {name: size, "max": self.max_page_size},
            )
        return size

    async def execute_query(
        self,
        definition: CollectionDefinition,
        options: QueryOptions | Mapping[str, Any] | None = None,
        targets: Mapping[str, CollectionDefinition] | None = None,
    ) -> QueryResult:
        """List records of a collection.

        Args:
            definition: The collection definition.
            options: Filter, sort, pagination and relation inclusion.
            targets: Definitions of relation targets by slug, needed when
                relations are included.

        Returns:
            The decoded records and pagination metadata.

        Raises:
            FieldValidationError: For invalid filters, sorts or page sizes,
                and for cursor pagination combined with a sort.
        """
        options = self.parse_options(options)
        table = self.table_builder.build_collection_table(definition, MetaData())
        predicate = self.compile_filter(table, definition, options.filter)
        pagination = options.pagination

        query = select(table)
        count_query = select(func.count()).select_from(table)
        if predicate is not None:
            query = query.where(predicate)
            count_query = count_query.where(predicate)

        if isinstance(pagination, CursorPagination):
            if options.sort:
                raise FieldValidationError(
                    "Cursor pagination cannot be combined with sorting",
                    {"pagination": "cursor"},
                )
            limit = self._page_size(pagination.limit, "limit")
            if pagination.cursor is not None:
                query = query.where(table.c.id > pagination.cursor)
            query = query.order_by(table.c.id.asc()).limit(limit)
        else:
            query = query.order_by(*self.build_order_by(table, definition, options.sort))
            if isinstance(pagination, PagePagination):
                per_page = self._page_size(pagination.per_page, "perPage")
                query = query.offset((pagination.page - 1) * per_page).limit(per_page)

        async with self.engine.connect() as conn:
            total = (await conn.execute(count_query)).scalar_one()
            rows = (await conn.execute(query)).all()
            records = [RecordCodec.decode(definition, row) for row in rows]
            if options.include_relations:
                await self._include_relations(conn, definition, table, records, targets or {})

        if isinstance(pagination, CursorPagination):
            has_more = len(records) == limit
            meta: PagePaginationMeta | CursorPaginationMeta = CursorPaginationMeta(
                has_more=has_more,
                next_cursor=records[-1]["id"] if has_more else None,
                prev_cursor=pagination.cursor,
                total=total,
            )
        elif isinstance(pagination, PagePagination):
            page_count = math.ceil(total / per_page)
            meta = PagePaginationMeta(
                current_page=pagination.page,
                per_page=per_page,
                total=total,
                page_count=page_count,
                has_next_page=pagination.page < page_count,
                has_prev_page=pagination.page > 1,
            )
        else:
            meta = PagePaginationMeta(
                current_page=1,
                per_page=total,
                total=total,
                page_count=1,
                has_next_page=False,
                has_prev_page=False,
            )

        logger.debug(
            "Records queried",
            collection_slug=definition.slug,
            total=total,
            returned=len(records),
        )
        return QueryResult(data=records, meta=meta)

    async def get_record(
        self,
        definition: CollectionDefinition,
        document_id: str,
        include_relations: bool = False,
        targets: Mapping[str, CollectionDefinition] | None = None,
    ) -> dict[str, Any]:
        """Get a single record by documentId.

        Raises:
            RecordNotFoundError: If no record has this documentId.
        """
        table = self.table_builder.build_collection_table(definition, MetaData())
        query = select(table).where(table.c.documentId == document_id)

        async with self.engine.connect() as conn:
            row = (await conn.execute(query)).one_or_none()
            if row is None:
                raise RecordNotFoundError(document_id, definition.slug)
            record = RecordCodec.decode(definition, row)
            if include_relations:
                await self._include_relations(conn, definition, table, [record], targets or {})

        return record

    async def _include_relations(
        self,
        conn: AsyncConnection,
        definition: CollectionDefinition,
        table: Table,
        records: list[dict[str, Any]],
        targets: Mapping[str, CollectionDefinition],
    ) -> None:
        """Attach ``[{"id", "data"}]`` lists for every relation field."""
        if not records:
            return

        document_ids = [record["documentId"] for record in records]
        for field in definition.relation_fields:
            grouped: dict[str, list[dict[str, Any]]] = {doc_id: [] for doc_id in document_ids}
            target_definition = targets.get(field.relation.target) if field.relation else None

            if target_definition is None:
                logger.warning(
                    "Relation target definition unavailable",
                    collection_slug=definition.slug,
                    field=field.name,
                )
            else:
                metadata = MetaData()
                relation_table = self.table_builder.build_relation_table(
                    definition.slug, field, metadata
                )
                target = self.table_builder.build_collection_table(
                    target_definition, MetaData()
                ).alias("related")

                query = (
                    select(table.c.documentId.label(SOURCE_ID_LABEL), *target.c)
                    .select_from(
                        table.outerjoin(
                            relation_table, relation_table.c.sourceId == table.c.documentId
                        ).outerjoin(target, target.c.documentId == relation_table.c.targetId)
                    )
                    .where(table.c.documentId.in_(document_ids))
                    .order_by(table.c.id, relation_table.c.createdAt, target.c.id)
                )
                for row in (await conn.execute(query)).all():
                    mapping = row._mapping
                    if mapping["documentId"] is None:
                        continue
                    grouped[mapping[SOURCE_ID_LABEL]].append(
                        {
                            "id": mapping["documentId"],
                            "data": RecordCodec.decode(target_definition, mapping),
                        }
                    )

            for record in records:
                record[field.name] = grouped[record["documentId"]]
