from pytest import mark, raises

from entity_sync import (
    ContractNotImplementedError,
    InvalidTypeError,
    State,
    SyncAction,
    SyncActionError,
    SyncedEntityStorage,
    SyncedPropertyTypeObject,
    SyncStrategy,
)


def test_nothing_to_sync(synced_storage: SyncedEntityStorage):
    assert synced_storage.sync() == []
    assert synced_storage.sync("id#1") == []


def test_full_tree(synced_storage: SyncedEntityStorage):
    synced_storage.edit("id#1.title", "Renamed")
    synced_storage.edit("id#1.items.id#101.qty", 9)

    actions = synced_storage.sync()

    assert len(actions) == 1

    action = actions[0]
    assert action.action_type is State.UPDATED
    assert action.prop_type.type_name == "Order"
    assert action.location == "id#1"
    assert action.payload == {
        "id": 1,
        "title": "Renamed",
        "items": [{"sku": "A-1", "qty": 1}, {"sku": "B-2", "qty": 9}],
    }
    assert str(action) == "UPDATED <Order> at 'id#1'"

    # same result when syncing the entity only
    assert synced_storage.sync("id#1") == actions
    assert synced_storage.sync("~index~#0") == actions


@mark.strategy("SPLIT_TREE")
def test_split_tree(synced_storage: SyncedEntityStorage):
    assert synced_storage.sync_strategy is SyncStrategy.SPLIT_TREE

    synced_storage.edit("id#1.title", "Renamed")
    synced_storage.edit("id#1.items.id#101.qty", 9)
    synced_storage.edit("id#1.address.city", "Shelbyville")

    actions = synced_storage.sync()

    assert [(a.prop_type.type_name, a.location, a.payload) for a in actions] == [
        ("Order", "id#1", {"id": 1, "title": "Renamed"}),
        ("Address", "id#1.address", {"city": "Shelbyville"}),
        ("Item", "id#1.items.id#101", {"id": 101, "qty": 9}),
    ]

    # only the collection
    actions = synced_storage.sync("id#1.items")
    assert [a.location for a in actions] == ["id#1.items.id#101"]


@mark.strategy("SPLIT_TREE")
def test_split_tree_insert(synced_storage: SyncedEntityStorage):
    synced_storage.insert("", {"id": 3, "title": "Third"})
    synced_storage.insert("id#3.items", {"id": 300, "sku": "D-4"})

    actions = synced_storage.sync()

    # parent first
    assert [(a.action_type, a.prop_type.type_name) for a in actions] == [
        (State.INSERTED, "Order"),
        (State.INSERTED, "Item"),
    ]
    assert actions[0].payload == {"id": 3, "title": "Third", "status": "open"}
    assert actions[1].payload == {"id": 300, "sku": "D-4", "qty": 1}


@mark.strategy("SPLIT_TREE")
def test_split_tree_no_own_changes(synced_storage: SyncedEntityStorage):
    synced_storage.edit("id#1.items.id#100.qty", 5)

    actions = synced_storage.sync()

    assert [a.prop_type.type_name for a in actions] == ["Item"]


@mark.parametrize("strategy", ["FULL_TREE", "SPLIT_TREE"])
def test_delete(synced_storage: SyncedEntityStorage, strategy: str):
    synced_storage.sync_strategy = SyncStrategy(strategy)

    synced_storage.edit("id#1.items.id#101.qty", 9)
    synced_storage.delete("id#1")

    actions = synced_storage.sync()

    # children are left to the remote end
    assert len(actions) == 1
    assert actions[0].action_type is State.DELETED
    assert actions[0].payload["id"] == 1


def test_full_tree_insert(synced_storage: SyncedEntityStorage):
    synced_storage.insert("", {"id": 3, "title": "Third"})
    synced_storage.insert("id#3.items", {"id": 300, "sku": "D-4"})

    actions = synced_storage.sync()

    assert len(actions) == 1
    assert actions[0].action_type is State.INSERTED
    assert actions[0].payload == {
        "id": 3,
        "title": "Third",
        "status": "open",
        "items": [{"sku": "D-4", "qty": 1}],
    }


@mark.parametrize("strategy", ["FULL_TREE", "SPLIT_TREE"])
def test_insert_with_members(
    synced_storage: SyncedEntityStorage, strategy: str
):
    synced_storage.sync_strategy = SyncStrategy(strategy)
    synced_storage.insert(
        "",
        {"id": 7, "title": "New", "items": [{"id": 1, "sku": "X", "qty": 2}]},
    )

    actions = synced_storage.sync()

    assert all(a.action_type is State.INSERTED for a in actions)

    if strategy == "FULL_TREE":
        assert len(actions) == 1
        assert actions[0].payload == {
            "id": 7,
            "title": "New",
            "status": "open",
            "items": [{"sku": "X", "qty": 2}],
        }
    else:
        assert [a.prop_type.type_name for a in actions] == ["Order", "Item"]
        assert actions[0].payload == {"id": 7, "title": "New", "status": "open"}
        assert actions[1].payload == {"id": 1, "sku": "X", "qty": 2}


def test_sync_non_entity(synced_storage: SyncedEntityStorage):
    synced_storage.edit("id#1.title", "Renamed")

    with raises(InvalidTypeError):
        synced_storage.sync("id#1.title")


@mark.asyncio
async def test_execute(order_type: SyncedPropertyTypeObject, transport):
    action = SyncAction(order_type, "UPDATED", {"id": 1, "title": "x"})

    assert action.action_type is State.UPDATED
    assert await action.execute() == {"id": 1, "title": "x"}
    assert transport.calls == [("update", "Order", {"id": 1, "title": "x"})]

    assert await SyncAction(order_type, State.DELETED, {"id": 1}).execute()
    assert transport.calls[-1][0] == "delete"


@mark.asyncio
async def test_execute_falsy_result(order_type: SyncedPropertyTypeObject, transport):
    async def update(prop_type, entity):
        return None

    transport.update = update
    action = SyncAction(order_type, State.UPDATED, {"id": 1})

    with raises(SyncActionError) as e:
        await action.execute()

    assert e.value.action is action


@mark.asyncio
async def test_missing_transport():
    prop_type = SyncedPropertyTypeObject("Detached").define_property("id", "number")

    with raises(ContractNotImplementedError):
        await prop_type.update({"id": 1})

    with raises(ContractNotImplementedError):
        await prop_type.fetch_by_search("x")


@mark.asyncio
async def test_transport_contract(order_type: SyncedPropertyTypeObject, transport):
    assert await order_type.fetch_by_id(5) == {"id": 5}

    # not provided by recording transport
    with raises(ContractNotImplementedError):
        await order_type.fetch_by_search("First")
