"""Unit tests for QueryEngine filter, sort and option handling."""
from datetime import datetime
from unittest.mock import MagicMock

import pytest
from sqlalchemy.dialects import sqlite
from sqlalchemy.ext.asyncio import AsyncEngine

from contentbase.domain.entities import (
    CollectionDefinition,
    FieldDefinition,
    FieldType,
    RelationConfig,
    RelationType,
)
from contentbase.domain.exceptions import FieldValidationError
from contentbase.infrastructure.persistence.query_engine import QueryEngine
from contentbase.infrastructure.persistence.table_builder import TableBuilder
from contentbase.schemas.query_schemas import CursorPagination, QueryOptions, SortField


@pytest.fixture
def definition():
    return CollectionDefinition(
        id=1,
        document_id="doc",
        name="Posts",
        slug="posts",
        fields=[
            FieldDefinition(name="title", type=FieldType.STRING),
            FieldDefinition(name="views", type=FieldType.INTEGER),
            FieldDefinition(name="publishedAt", type=FieldType.DATE),
            FieldDefinition(
                name="tags",
                type=FieldType.RELATION,
                relation=RelationConfig(type=RelationType.MANY_TO_MANY, target="tags"),
            ),
        ],
    )


@pytest.fixture
def query_engine():
    return QueryEngine(
        MagicMock(spec=AsyncEngine), TableBuilder(), default_page_size=10, max_page_size=50
    )


@pytest.fixture
def table(definition):
    return TableBuilder().build_collection_table(definition)


def render(clause):
    return str(clause.compile(dialect=sqlite.dialect(), compile_kwargs={"literal_binds": True}))


class TestCompileFilter:
    def test_empty_filter(self, query_engine, table, definition):
        assert query_engine.compile_filter(table, definition, None) is None
        assert query_engine.compile_filter(table, definition, {}) is None

    def test_comparison(self, query_engine, table, definition):
        clause = query_engine.compile_filter(table, definition, {"title": {"eq": "Hello"}})
        assert render(clause) == "cm_posts.title = 'Hello'"

    def test_several_operators_are_anded(self, query_engine, table, definition):
        clause = query_engine.compile_filter(
            table, definition, {"views": {"gte": 1, "lt": 10}}
        )
        assert render(clause) == "cm_posts.views >= 1 AND cm_posts.views < 10"

    def test_or_group(self, query_engine, table, definition):
        clause = query_engine.compile_filter(
            table,
            definition,
            {"$or": [{"title": {"eq": "a"}}, {"views": {"gt": 5}}], "id": {"neq": 3}},
        )
        sql = render(clause)
        assert "(cm_posts.title = 'a' OR cm_posts.views > 5)" in sql
        assert " AND cm_posts.id != 3" in sql

    def test_in_and_between(self, query_engine, table, definition):
        clause = query_engine.compile_filter(
            table, definition, {"views": {"in": [1, 2]}, "id": {"between": [1, 5]}}
        )
        sql = render(clause)
        assert "cm_posts.views IN (1, 2)" in sql
        assert "cm_posts.id BETWEEN 1 AND 5" in sql

    def test_null_operators_respect_operand(self, query_engine, table, definition):
        def sql_for(condition):
            return render(query_engine.compile_filter(table, definition, {"title": condition}))

        assert sql_for({"null": True}) == "cm_posts.title IS NULL"
        assert sql_for({"null": False}) == "cm_posts.title IS NOT NULL"
        assert sql_for({"notNull": True}) == "cm_posts.title IS NOT NULL"
        assert sql_for({"notNull": False}) == "cm_posts.title IS NULL"

    def test_like_escapes_wildcards(self, query_engine, table, definition):
        clause = query_engine.compile_filter(table, definition, {"title": {"like": "50%"}})
        sql = render(clause)
        assert "LIKE" in sql
        assert "ESCAPE '/'" in sql
        assert "50/%" in sql

    def test_date_operand_is_parsed(self, query_engine, table, definition):
        clause = query_engine.compile_filter(
            table, definition, {"publishedAt": {"gt": "2024-01-01T00:00:00Z"}}
        )
        params = clause.compile().params
        assert list(params.values()) == [datetime(2024, 1, 1)]

    def test_base_columns_are_filterable(self, query_engine, table, definition):
        clause = query_engine.compile_filter(table, definition, {"documentId": {"eq": "x"}})
        assert render(clause) == "cm_posts.\"documentId\" = 'x'"

    @pytest.mark.parametrize(
        "tree",
        [
            {"missing": {"eq": 1}},
            {"tags": {"eq": "x"}},
            {"title": {"matches": "x"}},
            {"title": "Hello"},
            {"title": {}},
            {"title": {"like": 5}},
            {"views": {"in": 1}},
            {"views": {"between": [1]}},
            {"views": {"eq": [1, 2]}},
            {"views": {"gt": None}},
            {"$or": []},
            {"$and": {"title": {"eq": "a"}}},
            {"$or": ["title"]},
            {"publishedAt": {"gt": "yesterday"}},
        ],
    )
    def test_invalid_filters(self, query_engine, table, definition, tree):
        with pytest.raises(FieldValidationError):
            query_engine.compile_filter(table, definition, tree)


class TestOrderBy:
    def test_id_tiebreaker_appended(self, query_engine, table, definition):
        order_by = query_engine.build_order_by(
            table, definition, [SortField(field="views", direction="desc")]
        )
        assert [render(term) for term in order_by] == [
            "cm_posts.views DESC",
            "cm_posts.id ASC",
        ]

    def test_explicit_id_sort_not_duplicated(self, query_engine, table, definition):
        order_by = query_engine.build_order_by(
            table, definition, [SortField(field="id", direction="desc")]
        )
        assert [render(term) for term in order_by] == ["cm_posts.id DESC"]

    def test_unknown_sort_field(self, query_engine, table, definition):
        with pytest.raises(FieldValidationError):
            query_engine.build_order_by(table, definition, [SortField(field="tags")])


class TestOptions:
    def test_parse_none(self):
        options = QueryEngine.parse_options(None)
        assert options.pagination is None
        assert options.sort == []
        assert options.include_relations is False

    def test_parse_json_form(self):
        options = QueryEngine.parse_options(
            {
                "pagination": {"type": "cursor", "limit": 5},
                "sort": [{"field": "title"}],
                "includeRelations": True,
            }
        )
        assert isinstance(options.pagination, CursorPagination)
        assert options.pagination.limit == 5
        assert options.sort[0].direction == "asc"
        assert options.include_relations is True

    def test_instance_passes_through(self):
        options = QueryOptions()
        assert QueryEngine.parse_options(options) is options

    @pytest.mark.parametrize(
        "raw",
        [
            {"pagination": {"type": "offset"}},
            {"pagination": {"type": "page", "page": 0}},
            {"sort": [{"field": "title", "direction": "up"}]},
        ],
    )
    def test_parse_invalid(self, raw):
        with pytest.raises(FieldValidationError):
            QueryEngine.parse_options(raw)

    def test_page_size(self, query_engine):
        assert query_engine._page_size(None, "perPage") == 10
        assert query_engine._page_size(50, "perPage") == 50
        with pytest.raises(FieldValidationError):
            query_engine._page_size(51, "perPage")
