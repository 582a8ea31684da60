from pathlib import Path

from pydantic import ValidationError
from pytest import fixture, raises

from entity_sync import (
    IllegalParallelEditError,
    NumericIdGenerator,
    PropertyTypeCollection,
    State,
    StorageRegistry,
    SyncStrategy,
)
from entity_sync.tools.config import ScenarioConfig

SCENARIO = """\
root: Order
types:
  Order:
    properties:
      id:
        type: number
        id_generator: numeric
      title: string
      status:
        type: string
        default: open
        choices: [open, closed]
      customer:
        type: Customer
        nullable: true
      items: "[Item]"
  Customer:
    properties:
      id: number
      name: string
  Item:
    properties:
      id:
        type: number
        id_generator: numeric
      sku: string
      qty:
        type: number
        default: 1
original:
  - id: 1
    title: First order
    status: open
    customer: {id: 10, name: Ann}
    items:
      - {id: 100, sku: A-1, qty: 1}
      - {id: 101, sku: B-2, qty: 2}
edits:
  - location: id#1.title
    value: Renamed
  - location: id#1.items.id#101.qty
    value: 9
  - location: id#1.items
    action: INSERT
    value: {sku: C-3}
storage:
  sync_strategy: SPLIT_TREE
"""


@fixture
def config() -> ScenarioConfig:
    return ScenarioConfig.from_yaml(SCENARIO)


def test_load(config: ScenarioConfig):
    assert config.root == "Order"
    assert list(config.types) == ["Order", "Customer", "Item"]
    assert config.types["Order"].properties["title"].type == "string"
    assert config.types["Order"].properties["items"].type == "[Item]"
    assert config.storage.sync_strategy is SyncStrategy.SPLIT_TREE
    assert config.storage.allow_parallel_edits


def test_build_types(config: ScenarioConfig):
    types = config.build_types()
    order_type = types["Order"]

    assert order_type.compiled
    assert isinstance(order_type.default_values["id"], NumericIdGenerator)
    assert order_type.default_values["status"] == "open"
    assert "title" not in order_type.default_values
    assert order_type.nullable == frozenset({"customer"})
    assert order_type.properties["customer"] is types["Customer"]

    items = order_type.properties["items"]
    assert isinstance(items, PropertyTypeCollection)
    assert items.entity_type is types["Item"]

    assert order_type.to_this({"id": 1, "status": "pending"}) is None


def test_replay(config: ScenarioConfig):
    storage = config.create_storage()
    config.apply_edits(storage)

    assert storage.get_property("id#1.title") == (True, "Renamed")
    assert storage.get_property("id#1.items.id#101.qty") == (True, 9)

    actions = storage.sync()
    assert [(a.action_type, a.prop_type.type_name) for a in actions] == [
        (State.UPDATED, "Order"),
        (State.UPDATED, "Item"),
        (State.INSERTED, "Item"),
    ]

    # scenario not modified by edits
    assert config.original[0]["title"] == "First order"


def test_create_storage_registry(config: ScenarioConfig):
    registry = StorageRegistry()
    storage = config.create_storage(registry=registry)

    assert storage.registry is registry
    assert registry.get("OrderCollection") is storage


def test_parallel_edits(config: ScenarioConfig):
    config.storage.allow_parallel_edits = False
    storage = config.create_storage()

    with raises(IllegalParallelEditError):
        config.apply_edits(storage)


def test_invalid():
    with raises(ValidationError, match="root type 'Product' not declared"):
        ScenarioConfig.from_yaml(SCENARIO.replace("root: Order", "root: Product"))

    with raises(ValidationError, match="unknown type 'decimal'"):
        ScenarioConfig.from_yaml(SCENARIO.replace("sku: string", "sku: decimal"))

    with raises(ValidationError, match="unknown type '\\[Product\\]'"):
        ScenarioConfig.from_yaml(SCENARIO.replace('"[Item]"', '"[Product]"'))

    with raises(ValidationError, match="identity property 'id' not declared"):
        ScenarioConfig.from_yaml(SCENARIO.replace("      id: number\n", ""))

    with raises(ValidationError):
        ScenarioConfig.from_yaml(SCENARIO.replace("nullable: true", "optional: true"))

    with raises(ValueError):
        ScenarioConfig.from_yaml("- Order")


def test_yaml_file(config: ScenarioConfig, tmp_path: Path):
    path = tmp_path / "scenario.yaml"
    config.dump_yaml(path)

    assert ScenarioConfig.load_yaml(path) == config

    with raises(ValueError):
        ScenarioConfig.load_yaml(tmp_path / "missing.yaml")
