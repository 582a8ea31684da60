import copy
import logging
from typing import Any, Callable

from pytest import Config, fixture

from entity_sync import (
    EntityStorage,
    ItemInListConstraint,
    NumericIdGenerator,
    PropertyTypeCollection,
    StorageRegistry,
    SyncedEntityStorage,
    SyncedPropertyTypeObject,
    Transport,
)

logging.basicConfig(level=logging.WARNING)

ORDERS = [
    {
        "id": 1,
        "title": "First order",
        "status": "open",
        "customer": {"id": 10, "name": "Ann"},
        "address": {"street": "Main St", "city": "Springfield"},
        "items": [
            {"id": 100, "sku": "A-1", "qty": 1},
            {"id": 101, "sku": "B-2", "qty": 2},
        ],
    },
    {
        "id": 2,
        "title": "Second order",
        "status": "closed",
        "customer": {"id": 11, "name": "Bob"},
        "address": {"street": "Elm St", "city": "Shelbyville"},
        "items": [],
    },
]


def pytest_configure(config: Config):
    config.addinivalue_line(
        "markers", "strategy(name): sync strategy of synced_storage fixture"
    )


class RecordingTransport(Transport):
    """
    Transport which records calls instead of talking to a remote end.
    """

    calls: list[tuple[str, str, dict]]
    """Tuples of (verb, type name, entity)"""

    fail: Callable[[str, str, dict], bool]
    """Returns `True` if the call should fail"""

    def __init__(self):
        self.calls = []
        self.fail = lambda verb, type_name, entity: False

    async def fetch_by_id(self, prop_type, entity_id) -> dict | None:
        return {prop_type.id_property: entity_id}

    async def insert(self, prop_type, entity) -> Any:
        return self._record("insert", prop_type, entity)

    async def update(self, prop_type, entity) -> Any:
        return self._record("update", prop_type, entity)

    async def delete(self, prop_type, entity) -> Any:
        return self._record("delete", prop_type, entity)

    def _record(self, verb: str, prop_type, entity: dict) -> Any:
        self.calls.append((verb, prop_type.type_name, copy.deepcopy(entity)))

        if self.fail(verb, prop_type.type_name, entity):
            raise RuntimeError(f"{verb} rejected")

        return True if verb == "delete" else entity


@fixture
def transport() -> RecordingTransport:
    return RecordingTransport()


@fixture
def registry() -> StorageRegistry:
    return StorageRegistry()


@fixture
def item_type(transport: RecordingTransport) -> SyncedPropertyTypeObject:
    return (
        SyncedPropertyTypeObject("Item", transport=transport)
        .define_property("id", "number", default=NumericIdGenerator())
        .define_property("sku", "string")
        .define_property("qty", "number", default=1)
    )


@fixture
def customer_type(transport: RecordingTransport) -> SyncedPropertyTypeObject:
    return (
        SyncedPropertyTypeObject("Customer", transport=transport)
        .define_property("id", "number")
        .define_property("name", "string")
    )


@fixture
def address_type(transport: RecordingTransport) -> SyncedPropertyTypeObject:
    return (
        SyncedPropertyTypeObject("Address", transport=transport)
        .define_property("street", "string")
        .define_property("city", "string")
    )


@fixture
def order_type(
    transport: RecordingTransport,
    item_type: SyncedPropertyTypeObject,
    customer_type: SyncedPropertyTypeObject,
    address_type: SyncedPropertyTypeObject,
) -> SyncedPropertyTypeObject:
    return (
        SyncedPropertyTypeObject("Order", transport=transport)
        .define_property("id", "number", default=NumericIdGenerator())
        .define_property("title", "string", default="")
        .define_property(
            "status",
            "string",
            default="open",
            constraints=[ItemInListConstraint(["open", "closed"])],
        )
        .define_property("customer", customer_type, nullable=True)
        .define_property("address", address_type)
        .define_property("items", PropertyTypeCollection(item_type))
    )


@fixture
def order_collection(
    order_type: SyncedPropertyTypeObject,
) -> PropertyTypeCollection:
    return PropertyTypeCollection(order_type)


@fixture
def original() -> list[dict]:
    return copy.deepcopy(ORDERS)


@fixture
def storage(
    order_collection: PropertyTypeCollection,
    original: list[dict],
    registry: StorageRegistry,
) -> EntityStorage:
    return EntityStorage(order_collection, original, registry=registry)


@fixture
def synced_storage(
    request,
    order_collection: PropertyTypeCollection,
    original: list[dict],
    registry: StorageRegistry,
) -> SyncedEntityStorage:
    marker = request.node.get_closest_marker("strategy")
    strategy = marker.args[0] if marker else "FULL_TREE"

    return SyncedEntityStorage(
        order_collection,
        original,
        registry=registry,
        sync_strategy=strategy,
    )
