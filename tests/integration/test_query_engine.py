"""Integration tests for listing records."""

from datetime import datetime

import pytest
import pytest_asyncio

from contentbase.domain.exceptions import (
    CollectionNotFoundError,
    FieldValidationError,
    RecordNotFoundError,
)
from contentbase.schemas.query_schemas import CursorPaginationMeta, PagePaginationMeta

RECORD_COUNT = 25


@pytest_asyncio.fixture
async def articles(service):
    await service.create_collection(
        {
            "name": "Articles",
            "slug": "articles",
            "fields": [
                {"name": "title", "type": "string"},
                {"name": "views", "type": "integer"},
                {"name": "publishedAt", "type": "date"},
            ],
        }
    )
    records = []
    for i in range(RECORD_COUNT):
        records.append(
            await service.create_record(
                "articles",
                {
                    "title": f"Article {i:02d}",
                    "views": i % 5,
                    "publishedAt": datetime(2024, 1, i + 1),
                },
            )
        )
    return records


@pytest.mark.asyncio
async def test_list_without_pagination(service, articles):
    result = await service.list_records("articles")

    assert [r["id"] for r in result.data] == [r["id"] for r in articles]
    assert isinstance(result.meta, PagePaginationMeta)
    assert result.meta.total == RECORD_COUNT
    assert result.meta.per_page == RECORD_COUNT
    assert result.meta.page_count == 1


@pytest.mark.asyncio
async def test_page_pagination(service, articles):
    first = await service.list_records("articles", {"pagination": {"type": "page"}})
    last = await service.list_records(
        "articles", {"pagination": {"type": "page", "page": 3, "perPage": 10}}
    )

    assert len(first.data) == 10
    assert first.meta.per_page == 10
    assert first.meta.page_count == 3
    assert first.meta.has_next_page is True
    assert first.meta.has_prev_page is False

    assert [r["title"] for r in last.data] == [f"Article {i}" for i in range(20, 25)]
    assert last.meta.has_next_page is False
    assert last.meta.has_prev_page is True


@pytest.mark.asyncio
async def test_page_past_the_end(service, articles):
    result = await service.list_records(
        "articles", {"pagination": {"type": "page", "page": 9, "perPage": 10}}
    )

    assert result.data == []
    assert result.meta.total == RECORD_COUNT
    assert result.meta.has_next_page is False


@pytest.mark.asyncio
async def test_page_size_above_maximum(service, articles):
    with pytest.raises(FieldValidationError):
        await service.list_records("articles", {"pagination": {"type": "page", "perPage": 51}})


@pytest.mark.asyncio
async def test_cursor_walk_visits_every_record_once(service, articles):
    seen = []
    cursor = None
    while True:
        result = await service.list_records(
            "articles", {"pagination": {"type": "cursor", "limit": 7, "cursor": cursor}}
        )
        assert isinstance(result.meta, CursorPaginationMeta)
        assert result.meta.prev_cursor == cursor
        seen.extend(r["id"] for r in result.data)
        if not result.meta.has_more:
            break
        cursor = result.meta.next_cursor

    assert seen == [r["id"] for r in articles]


@pytest.mark.asyncio
async def test_cursor_with_sort_rejected(service, articles):
    with pytest.raises(FieldValidationError):
        await service.list_records(
            "articles",
            {"pagination": {"type": "cursor"}, "sort": [{"field": "views"}]},
        )


@pytest.mark.asyncio
async def test_filter_and_sort(service, articles):
    result = await service.list_records(
        "articles",
        {
            "filter": {"views": {"gte": 3}, "title": {"like": "Article 1"}},
            "sort": [{"field": "views", "direction": "desc"}, {"field": "title"}],
        },
    )

    assert [(r["views"], r["title"]) for r in result.data] == [
        (4, "Article 14"),
        (4, "Article 19"),
        (3, "Article 13"),
        (3, "Article 18"),
    ]
    assert result.meta.total == 4


@pytest.mark.asyncio
async def test_or_filter(service, articles):
    result = await service.list_records(
        "articles",
        {"filter": {"$or": [{"title": {"eq": "Article 00"}}, {"title": {"eq": "Article 24"}}]}},
    )

    assert [r["title"] for r in result.data] == ["Article 00", "Article 24"]


@pytest.mark.asyncio
async def test_date_filter(service, articles):
    result = await service.list_records(
        "articles",
        {"filter": {"publishedAt": {"between": ["2024-01-03", "2024-01-05T00:00:00Z"]}}},
    )

    assert [r["publishedAt"] for r in result.data] == [
        datetime(2024, 1, 3),
        datetime(2024, 1, 4),
        datetime(2024, 1, 5),
    ]


@pytest.mark.asyncio
async def test_like_treats_wildcards_literally(service, articles):
    await service.create_record("articles", {"title": "100% done"})

    result = await service.list_records("articles", {"filter": {"title": {"like": "0%"}}})

    assert [r["title"] for r in result.data] == ["100% done"]


@pytest.mark.asyncio
async def test_null_filter(service, articles):
    await service.create_record("articles", {"title": "Draft"})

    result = await service.list_records("articles", {"filter": {"views": {"null": True}}})

    assert [r["title"] for r in result.data] == ["Draft"]


@pytest.mark.asyncio
async def test_get_record(service, articles):
    record = await service.get_record("articles", articles[3]["documentId"])

    assert record == articles[3]
    with pytest.raises(RecordNotFoundError):
        await service.get_record("articles", "missing")
    with pytest.raises(CollectionNotFoundError):
        await service.get_record("missing", articles[3]["documentId"])
