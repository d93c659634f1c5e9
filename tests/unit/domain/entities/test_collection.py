"""Unit tests for collection entities."""

import pytest

from contentbase.domain.entities import (
    CollectionDefinition,
    CollectionNode,
    FieldDefinition,
    FieldType,
    InverseSide,
    RelationConfig,
    RelationType,
)


def test_field_round_trips_through_wire_format():
    field = FieldDefinition(
        name="author",
        type=FieldType.RELATION,
        required=True,
        description="Post author",
        relation=RelationConfig(
            type=RelationType.MANY_TO_MANY,
            target="users",
            bidirectional=True,
            inverse_side=InverseSide(field="posts", display_field="name"),
        ),
    )

    data = field.to_dict()

    assert data == {
        "name": "author",
        "type": "relation",
        "required": True,
        "unique": False,
        "description": "Post author",
        "relation": {
            "type": "manyToMany",
            "target": "users",
            "bidirectional": True,
            "inverseSide": {"field": "posts", "displayField": "name"},
        },
    }
    assert FieldDefinition.from_dict(data) == field


def test_scalar_field_omits_optional_keys():
    data = FieldDefinition(name="title", type=FieldType.STRING).to_dict()

    assert data == {"name": "title", "type": "string", "required": False, "unique": False}


def test_from_dict_rejects_unknown_type():
    with pytest.raises(ValueError):
        FieldDefinition.from_dict({"name": "x", "type": "blob"})


def test_column_signature_ignores_description():
    a = FieldDefinition(name="title", type=FieldType.STRING, description="one")
    b = FieldDefinition(name="title", type=FieldType.STRING, description="two")
    c = FieldDefinition(name="title", type=FieldType.STRING, unique=True)

    assert a.column_signature() == b.column_signature()
    assert a.column_signature() != c.column_signature()


def test_definition_splits_scalar_and_relation_fields():
    title = FieldDefinition(name="title", type=FieldType.STRING)
    tags = FieldDefinition(
        name="tags",
        type=FieldType.RELATION,
        relation=RelationConfig(type=RelationType.MANY_TO_MANY, target="tags"),
    )
    definition = CollectionDefinition(
        id=1, document_id="doc", name="Posts", slug="posts", fields=[title, tags]
    )

    assert definition.scalar_fields == [title]
    assert definition.relation_fields == [tags]
    assert definition.get_field("tags") is tags
    assert definition.get_field("missing") is None


def test_node_to_dict_nests_children():
    parent = CollectionDefinition(id=1, document_id="p", name="Blog", slug="blog")
    child = CollectionDefinition(
        id=2, document_id="c", name="Posts", slug="blog/posts", parent_id=1
    )

    data = CollectionNode(collection=parent, children=[CollectionNode(collection=child)]).to_dict()

    assert data["slug"] == "blog"
    assert data["children"][0]["slug"] == "blog/posts"
    assert data["children"][0]["parentId"] == 1
    assert data["children"][0]["children"] == []
