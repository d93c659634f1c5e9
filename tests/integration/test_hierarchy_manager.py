"""Integration tests for the collection hierarchy."""

import pytest

from contentbase.domain.exceptions import CollectionNotFoundError, HierarchyCycleError


async def create(service, name, slug, parent=None):
    data = {"name": name, "slug": slug}
    if parent is not None:
        data["parentId"] = parent.id
    return await service.create_collection(data)


def shape(nodes):
    return [(node.collection.slug, shape(node.children)) for node in nodes]


@pytest.mark.asyncio
async def test_child_slug_and_table(service):
    blog = await create(service, "Blog", "blog")
    posts = await create(service, "Posts", "posts", blog)

    assert posts.slug == "blog/posts"
    assert posts.parent_id == blog.id
    assert service.table_builder.generate_table_name(posts.slug) == "cm_blog__posts"
    assert await service.synchronizer.table_exists("blog/posts")

    record = await service.create_record("blog/posts", {})
    assert (await service.get_record("blog/posts", record["documentId"]))["id"] == record["id"]


@pytest.mark.asyncio
async def test_same_slug_under_different_parents(service):
    blog = await create(service, "Blog", "blog")
    docs = await create(service, "Docs", "docs")

    first = await create(service, "Pages", "pages", blog)
    second = await create(service, "Pages", "pages", docs)

    assert {first.slug, second.slug} == {"blog/pages", "docs/pages"}


@pytest.mark.asyncio
async def test_missing_parent(service):
    with pytest.raises(CollectionNotFoundError):
        await service.create_collection({"name": "Posts", "slug": "posts", "parentId": 999})


@pytest.mark.asyncio
async def test_hierarchy_is_sorted_forest(service):
    blog = await create(service, "Blog", "blog")
    await create(service, "Posts", "posts", blog)
    authors = await create(service, "Authors", "authors", blog)
    await create(service, "Avatars", "avatars", authors)
    await create(service, "Archive", "archive")

    assert shape(await service.get_hierarchy()) == [
        ("archive", []),
        (
            "blog",
            [
                ("blog/authors", [("blog/authors/avatars", [])]),
                ("blog/posts", []),
            ],
        ),
    ]
    assert [d.slug for d in await service.get_subcollections(blog.id)] == [
        "blog/authors",
        "blog/posts",
    ]


@pytest.mark.asyncio
async def test_get_subcollections_of_missing_parent(service):
    with pytest.raises(CollectionNotFoundError):
        await service.get_subcollections(999)


@pytest.mark.asyncio
async def test_move_keeps_slug(service):
    blog = await create(service, "Blog", "blog")
    docs = await create(service, "Docs", "docs")
    posts = await create(service, "Posts", "posts", blog)

    moved = await service.move_collection(posts.id, docs.id)

    assert moved.parent_id == docs.id
    assert moved.slug == "blog/posts"
    assert [d.id for d in await service.get_subcollections(docs.id)] == [posts.id]

    root = await service.move_collection(posts.id, None)
    assert root.parent_id is None


@pytest.mark.asyncio
async def test_move_into_descendant_rejected(service):
    """Test that a cycle is rejected and the hierarchy is left unchanged."""
    a = await create(service, "A", "a")
    b = await create(service, "B", "b", a)
    c = await create(service, "C", "c", b)
    before = shape(await service.get_hierarchy())

    with pytest.raises(HierarchyCycleError):
        await service.move_collection(a.id, c.id)
    with pytest.raises(HierarchyCycleError):
        await service.move_collection(a.id, a.id)

    assert shape(await service.get_hierarchy()) == before
    assert (await service.get_collection_by_id(a.id)).parent_id is None


@pytest.mark.asyncio
async def test_move_missing_collection(service):
    blog = await create(service, "Blog", "blog")

    with pytest.raises(CollectionNotFoundError):
        await service.move_collection(999, blog.id)
    with pytest.raises(CollectionNotFoundError):
        await service.move_collection(blog.id, 999)


@pytest.mark.asyncio
async def test_deleting_parent_promotes_children(service):
    blog = await create(service, "Blog", "blog")
    posts = await create(service, "Posts", "posts", blog)

    await service.delete_collection(blog.id)

    assert shape(await service.get_hierarchy()) == [("blog/posts", [])]
    assert (await service.get_collection_by_id(posts.id)).parent_id is None
