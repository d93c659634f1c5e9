"""Integration tests for SchemaStore."""

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from contentbase.domain.entities import (
    FieldDefinition,
    FieldType,
    RelationConfig,
    RelationType,
)
from contentbase.domain.exceptions import (
    CollectionAlreadyExistsError,
    CollectionNotFoundError,
    FieldValidationError,
)
from contentbase.infrastructure.persistence.repositories import SchemaStore

FIELDS = [
    FieldDefinition(name="title", type=FieldType.STRING, required=True, description="Title"),
    FieldDefinition(
        name="tags",
        type=FieldType.RELATION,
        relation=RelationConfig(type=RelationType.MANY_TO_MANY, target="tags"),
    ),
]


@pytest.fixture
def store(db_session: AsyncSession) -> SchemaStore:
    return SchemaStore(db_session)


@pytest.mark.asyncio
async def test_create_and_find(store):
    """Test that a stored definition reads back identically by every key."""
    created = await store.create(name="Posts", slug="posts", fields=FIELDS, description="Blog")

    assert created.id is not None
    assert len(created.document_id) == 36
    assert created.created_at is not None
    assert created.created_at == created.updated_at

    for found in (
        await store.find_by_slug("posts"),
        await store.find_by_id(created.id),
        await store.find_by_document_id(created.document_id),
    ):
        assert found.slug == "posts"
        assert found.description == "Blog"
        assert found.fields == FIELDS


@pytest.mark.asyncio
async def test_find_missing_returns_none(store):
    assert await store.find_by_slug("missing") is None
    assert await store.find_by_id(999) is None
    assert await store.find_by_document_id("missing") is None
    assert await store.slug_exists("missing") is False


@pytest.mark.asyncio
async def test_create_duplicate_slug(store):
    await store.create(name="Posts", slug="posts", fields=[])

    with pytest.raises(CollectionAlreadyExistsError) as exc_info:
        await store.create(name="Other posts", slug="posts", fields=[])

    assert exc_info.value.slug == "posts"


@pytest.mark.asyncio
async def test_create_rejects_invalid_definition(store):
    with pytest.raises(FieldValidationError):
        await store.create(name="Posts", slug="", fields=[])

    with pytest.raises(FieldValidationError) as exc_info:
        await store.create(
            name="Posts",
            slug="posts",
            fields=[FieldDefinition(name="createdAt", type=FieldType.DATE)],
        )

    codes = [error["code"] for error in exc_info.value.details["errors"]]
    assert codes == ["field_name_reserved"]
    assert await store.slug_exists("posts") is False


@pytest.mark.asyncio
async def test_update(store):
    created = await store.create(name="Posts", slug="posts", fields=FIELDS)
    new_fields = [FieldDefinition(name="body", type=FieldType.LONGTEXT)]

    updated = await store.update(
        created.id, {"name": "Articles", "slug": "articles", "fields": new_fields}
    )

    assert updated.name == "Articles"
    assert updated.slug == "articles"
    assert updated.fields == new_fields
    assert updated.updated_at >= created.updated_at
    assert await store.find_by_slug("posts") is None


@pytest.mark.asyncio
async def test_update_keeps_description_unless_given(store):
    created = await store.create(name="Posts", slug="posts", fields=[], description="Blog")

    assert (await store.update(created.id, {"name": "Renamed"})).description == "Blog"
    assert (await store.update(created.id, {"description": None})).description is None


@pytest.mark.asyncio
async def test_update_errors(store):
    first = await store.create(name="Posts", slug="posts", fields=[])
    await store.create(name="Pages", slug="pages", fields=[])

    with pytest.raises(CollectionNotFoundError):
        await store.update(999, {"name": "x"})
    with pytest.raises(CollectionAlreadyExistsError):
        await store.update(first.id, {"slug": "pages"})
    with pytest.raises(FieldValidationError):
        await store.update(first.id, {"parent_id": 3})
    with pytest.raises(FieldValidationError):
        await store.update(first.id, {"slug": "Bad Slug"})


@pytest.mark.asyncio
async def test_find_all_ordered_by_name(store):
    for name, slug in [("Zebra", "zebra"), ("Apple", "apple"), ("Mango", "mango")]:
        await store.create(name=name, slug=slug, fields=[])

    assert [d.name for d in await store.find_all()] == ["Apple", "Mango", "Zebra"]


@pytest.mark.asyncio
async def test_parent_links(store):
    parent = await store.create(name="Blog", slug="blog", fields=[])
    child = await store.create(name="Posts", slug="blog/posts", fields=[], parent_id=parent.id)
    other = await store.create(name="Pages", slug="pages", fields=[])

    assert await store.get_parent_id(child.id) == parent.id
    assert [d.id for d in await store.find_children(parent.id)] == [child.id]

    moved = await store.set_parent(child.id, other.id)
    assert moved.parent_id == other.id
    assert moved.slug == "blog/posts"
    assert await store.find_children(parent.id) == []

    with pytest.raises(CollectionNotFoundError):
        await store.get_parent_id(999)
    with pytest.raises(CollectionNotFoundError):
        await store.set_parent(999, None)


@pytest.mark.asyncio
async def test_delete_promotes_children_to_roots(store):
    parent = await store.create(name="Blog", slug="blog", fields=[])
    child = await store.create(name="Posts", slug="blog/posts", fields=[], parent_id=parent.id)

    assert await store.delete(parent.id) is True
    assert await store.find_by_id(parent.id) is None
    assert (await store.find_by_id(child.id)).parent_id is None
    assert await store.delete(parent.id) is False
