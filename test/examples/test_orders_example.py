from pathlib import Path

from entity_sync import State, SyncStrategy
from entity_sync.tools.config import ScenarioConfig

EXAMPLE_PATH = (
    Path(__file__).parents[2] / "example" / "orders" / "entity-sync.yaml"
)


def test_orders_example():
    config = ScenarioConfig.load_yaml(EXAMPLE_PATH)

    storage = config.create_storage()
    config.apply_edits(storage)

    assert storage.get_edited_locations()[:4] == [
        "id#1.title",
        "id#1.address.city",
        "id#1.customer",
        "id#1.items.id#101.qty",
    ]

    merged = storage.get_merged()
    assert [o["id"] for o in merged] == [1, 3]
    assert merged[0]["customer"] == {"id": 11}
    assert [(i["sku"], i["qty"]) for i in merged[0]["items"]] == [
        ("MAT-2", 6),
        ("LAMP-3", 2),
    ]

    actions = storage.sync()
    assert [(a.action_type, a.location) for a in actions] == [
        (State.UPDATED, "id#1"),
        (State.DELETED, "id#2"),
        (State.INSERTED, "id#3"),
    ]
    assert actions[0].payload["customer"] == 11

    storage.sync_strategy = SyncStrategy.SPLIT_TREE
    types = [a.prop_type.type_name for a in storage.sync()]
    assert types == [
        "Order",
        "Address",
        "Item",
        "Item",
        "Item",
        "Order",
        "Order",
        "Address",
    ]

    # address of new order is created along with it
    assert storage.sync("id#3")[1].action_type is State.INSERTED
