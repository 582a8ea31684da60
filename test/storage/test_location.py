from pytest import raises

from entity_sync import (
    InvalidStateError,
    PropertyTypeCollection,
    Segment,
    format_location,
    parse_location,
)
from entity_sync.core.schema.property_type import NUMBER, STRING
from entity_sync.core.storage.location import (
    context_resolve,
    find_member,
    resolve,
    resolve_type,
)


def test_parse():
    assert parse_location("id#1.items.id#2.qty") == [
        Segment("id", "1"),
        Segment("items"),
        Segment("id", "2"),
        Segment("qty"),
    ]

    assert parse_location("") == []
    assert parse_location(None) == []
    assert parse_location(["id#1", Segment("title")]) == [
        Segment("id", "1"),
        Segment("title"),
    ]

    # shorthand for member followed by property
    assert parse_location("id#1#title") == parse_location("id#1.title")

    assert format_location(["id#1#title"]) == "id#1.title"
    assert format_location("~index~#0.items") == "~index~#0.items"


def test_parse_errors():
    with raises(InvalidStateError):
        parse_location("id#1..title")

    with raises(InvalidStateError):
        parse_location("a#b#c#d")


def test_segment():
    segment = Segment("~index~", "3")

    assert segment.is_member
    assert segment.is_index
    assert segment.index == 3
    assert not Segment("id", "3").is_index
    assert not Segment("title").is_member

    with raises(InvalidStateError):
        Segment("~index~", "x").index


def test_find_member():
    members = [{"id": 1}, {"id": "2"}, "junk", {"name": "x"}]

    assert find_member(members, "id", 1) == 0
    assert find_member(members, "id", "1") == 0
    assert find_member(members, "id", "2") == 1
    assert find_member(members, "id", 3) is None
    assert find_member(members, "name", "x") == 3


def test_context_resolve(order_collection: PropertyTypeCollection, original):
    order_collection.compile()

    assert (
        context_resolve(original, "id#1.customer.name", root_type=order_collection)
        == "Ann"
    )

    # untyped members match by text
    assert context_resolve(original, "id#2.title") == "Second order"

    assert context_resolve(original, "~index~#1.title") == "Second order"
    assert context_resolve(original, "~index~#5.title") is None
    assert context_resolve(original, "id#1.items.sku#B-2.qty") == 2
    assert context_resolve(original, "id#3") is None
    assert context_resolve(original, "id#1.nonexistent") is None

    assert context_resolve(original, "id#2", return_index=True) == 1

    prop_type, node = context_resolve(
        original, "id#1.items", root_type=order_collection, return_type=True
    )
    assert prop_type is order_collection.entity_type.properties["items"]
    assert len(node) == 2

    assert context_resolve(original, "") is original


def test_resolve(original):
    resolved = resolve(original, "id#1.items.id#101")

    assert resolved is not None
    assert resolved.node == {"id": 101, "sku": "B-2", "qty": 2}
    assert resolved.parent is original[0]["items"]
    assert resolved.key == 1


def test_resolve_type(order_collection: PropertyTypeCollection):
    order_collection.compile()

    assert resolve_type("id#1.items.id#100.qty", order_collection) is NUMBER
    assert resolve_type("id#1.customer.name", order_collection) is STRING
    assert resolve_type("id#1.nonexistent.name", order_collection) is None
    assert resolve_type("", order_collection) is order_collection
