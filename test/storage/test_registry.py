import logging

from pytest import raises

from entity_sync import (
    EntityStorage,
    InvalidStateError,
    InvalidTypeError,
    PropertyTypeCollection,
    PropertyTypeObject,
    StorageRegistry,
    SyncedEntityStorage,
    SyncedPropertyTypeObject,
)


def test_single_storage_per_type(
    storage: EntityStorage,
    registry: StorageRegistry,
    order_collection: PropertyTypeCollection,
):
    assert "OrderCollection" in registry
    assert len(registry) == 1
    assert registry.get("OrderCollection") is storage
    assert registry.get("ItemCollection") is None

    # existing storage returned, original collection not replaced
    other = EntityStorage(order_collection, [], registry=registry)
    assert other is storage
    assert len(storage.original_collection) == 2

    assert registry.get_or_create(order_collection) is storage

    with raises(InvalidStateError):
        registry.add_storage(storage)

    # registered under another class
    with raises(InvalidStateError):
        SyncedEntityStorage(order_collection, registry=registry)


def test_alias(storage: EntityStorage, registry: StorageRegistry):
    registry.add_storage(storage, "orders")

    assert registry.get("orders") is storage
    assert len(registry) == 2
    assert "orders" in str(registry)


def test_get_or_create(
    registry: StorageRegistry, order_collection: PropertyTypeCollection, original
):
    storage = registry.get_or_create(
        order_collection,
        original,
        storage_cls=SyncedEntityStorage,
        sync_strategy="SPLIT_TREE",
    )

    assert isinstance(storage, SyncedEntityStorage)
    assert storage.registry is registry
    assert storage.original_collection is original


def test_empty_registry_joined(order_collection: PropertyTypeCollection):
    registry = StorageRegistry()
    assert len(registry) == 0

    first = EntityStorage(order_collection, [], registry=registry)
    second = EntityStorage(order_collection, [], registry=registry)

    assert first.registry is registry
    assert second is first
    assert len(registry) == 1


def test_private_registry(order_collection: PropertyTypeCollection):
    first = EntityStorage(order_collection)
    second = EntityStorage(order_collection)

    assert first is not second
    assert first.registry is not second.registry
    assert first.original_collection == []


def test_logger(order_collection: PropertyTypeCollection, caplog):
    logger = logging.getLogger("entity-sync-test")
    caplog.set_level(logging.DEBUG, logger="entity-sync-test")

    registry = StorageRegistry(logger=logger)
    storage = EntityStorage(order_collection, registry=registry)

    assert registry.logger is logger
    assert "Registered storage <OrderCollection>" in caplog.text

    storage.edit("id#5.title", "x", verbose=True)
    assert "Edit <OrderCollection> at 'id#5.title'" in caplog.text


def test_invalid_arguments(
    order_type: SyncedPropertyTypeObject,
    order_collection: PropertyTypeCollection,
    registry: StorageRegistry,
):
    with raises(InvalidTypeError):
        EntityStorage(order_type)  # type: ignore

    with raises(InvalidTypeError):
        EntityStorage(order_type, registry=registry)  # type: ignore

    with raises(InvalidTypeError):
        EntityStorage(order_collection, {"id": 1})  # type: ignore

    plain = PropertyTypeObject("Plain").define_property("id", "number")
    with raises(InvalidTypeError):
        SyncedEntityStorage(PropertyTypeCollection(plain))
