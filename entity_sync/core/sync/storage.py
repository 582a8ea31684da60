"""
Storage which writes its edits to a remote end.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ..exceptions import InvalidTypeError
from ..schema.property_type import (
    PropertyKind,
    PropertyTypeCollection,
    PropertyTypeObject,
)
from ..storage.location import Location, find_member, format_location, resolve
from ..storage.registry import StorageRegistry
from ..storage.storage import EntityStorage
from ..storage.types import State, get_state
from ..utils import strip_markers
from .action import SyncAction
from .patch import extend_patch_object, extract_own_properties, get_altered_state
from .transport import SyncedPropertyTypeObject

__all__ = [
    "SyncStrategy",
    "SyncReport",
    "SyncListener",
    "SyncedEntityStorage",
]


class SyncStrategy(str, Enum):
    """
    How edits are split into {obj}`SyncAction` instances.
    """

    FULL_TREE = "FULL_TREE"
    """One action per edited entity, including all changes below it"""

    SPLIT_TREE = "SPLIT_TREE"
    """
    One action per entity having changes of its own, dispatched to the type
    of that entity
    """


@dataclass
class SyncReport:
    """
    Counters of a running or finished {obj}`SyncedEntityStorage.event_sync`.
    """

    total: int = 0
    successful: int = 0
    errored: int = 0
    errors: list[tuple[SyncAction, BaseException]] = field(default_factory=list)

    def __str__(self) -> str:
        return f"{self.successful}/{self.total} succeeded, {self.errored} failed"

    @property
    def complete(self) -> bool:
        return self.successful == self.total


class SyncListener:
    """
    Receives notifications from {obj}`SyncedEntityStorage.event_sync`.
    Override the hooks of interest.
    """

    def on_progress(self, report: SyncReport):
        """
        One more action succeeded, but not all have.
        """

    def on_success(self, report: SyncReport):
        """
        All actions succeeded; edits of the synced subtree have been cleared.
        """

    def on_error(
        self, report: SyncReport, action: SyncAction, error: BaseException
    ):
        """
        An action failed. State should be considered inconsistent and
        reloaded; other actions may still complete.
        """


class SyncedEntityStorage(EntityStorage):
    """
    {obj}`EntityStorage` of {obj}`SyncedPropertyTypeObject` entities, able to
    turn its edits into {obj}`SyncAction` instances and execute them.
    """

    sync_strategy: SyncStrategy

    def __init__(
        self,
        collection_type: PropertyTypeCollection,
        original_collection: list[dict] | None = None,
        *,
        registry: StorageRegistry | None = None,
        allow_parallel_edits: bool = True,
        sync_strategy: SyncStrategy | str = SyncStrategy.FULL_TREE,
    ):
        if self._init_done:
            return

        if isinstance(collection_type, PropertyTypeCollection) and not isinstance(
            collection_type.entity_type, SyncedPropertyTypeObject
        ):
            raise InvalidTypeError(
                f"{type(self).__name__} requires a collection of synced entities, got <{collection_type.entity_type.type_name}>"
            )

        super().__init__(
            collection_type,
            original_collection,
            registry=registry,
            allow_parallel_edits=allow_parallel_edits,
        )

        self.sync_strategy = SyncStrategy(sync_strategy)

    def sync(self, root_location: Location = "") -> list[SyncAction]:
        """
        Get actions required to write edits below location.

        :param root_location: Entity or collection to sync; whole storage by default
        """
        segments = self._by_identity(root_location)
        location = format_location(segments)

        diff = resolve(self._edits, segments, self.collection_type)
        if diff is None:
            return []

        source = resolve(self.original_collection, segments, self.collection_type)
        source_node = source.node if source is not None else None

        prop_type = diff.prop_type

        if prop_type is not None and prop_type.kind is PropertyKind.COLLECTION:
            assert isinstance(prop_type, PropertyTypeCollection)
            return self._collection_actions(
                prop_type, diff.node, source_node, location
            )

        if not isinstance(prop_type, SyncedPropertyTypeObject):
            raise InvalidTypeError(
                f"Entity at '{location}' is not synced: {prop_type!r}"
            )

        return self.create_sync_actions(prop_type, diff.node, source_node, location)

    def create_sync_actions(
        self,
        prop_type: PropertyTypeObject,
        diff_node: Mapping,
        source_node: Mapping | None = None,
        location: str = "",
    ) -> list[SyncAction]:
        """
        Get actions for edited entity according to {obj}`sync_strategy`.

        Deletion yields a single action, leaving children to the remote end.
        """
        self._check_synced(prop_type)

        # nested values of inserted entities carry no state
        state = get_state(diff_node) or (
            State.UPDATED if source_node is not None else State.INSERTED
        )

        if state is State.DELETED:
            payload = strip_markers(diff_node)
            if (
                prop_type.id_property not in payload
                and isinstance(source_node, Mapping)
                and prop_type.id_property in source_node
            ):
                payload[prop_type.id_property] = source_node[prop_type.id_property]
            return [SyncAction(prop_type, State.DELETED, payload, location)]

        altered = get_altered_state(prop_type, diff_node)

        match self.sync_strategy:
            case SyncStrategy.FULL_TREE:
                payload = extend_patch_object(
                    prop_type, diff_node, source_node, altered
                )
                return [SyncAction(prop_type, state, payload, location)]

            case SyncStrategy.SPLIT_TREE:
                actions: list[SyncAction] = []
                source = source_node if isinstance(source_node, Mapping) else {}

                # parents are created before their children
                if state is State.INSERTED or altered.own_properties:
                    payload = extract_own_properties(
                        prop_type, diff_node, source_node, altered
                    )
                    actions.append(SyncAction(prop_type, state, payload, location))

                for name, child_type in altered.sub_entities:
                    actions += self.create_sync_actions(
                        child_type,
                        diff_node[name],
                        source.get(name),
                        _join(location, name),
                    )

                for name, coll_type in altered.sub_collections:
                    actions += self._collection_actions(
                        coll_type,
                        diff_node[name],
                        source.get(name),
                        _join(location, name),
                    )

                return actions

    async def event_sync(
        self,
        root_location: Location = "",
        listener: SyncListener | None = None,
        progress_after_error: bool = True,
    ) -> SyncReport:
        """
        Execute actions for edits below location concurrently, notifying
        listener as they complete. Once every action succeeded, edits of the
        subtree are cleared.

        Failed actions are reported, not retried; other actions are not
        cancelled.

        :param root_location: Entity or collection to sync; whole storage by default
        :param listener: Receives notifications
        :param progress_after_error: Whether to notify progress after an error occurred
        """
        listener = listener or SyncListener()
        location = format_location(root_location)

        actions = self.sync(root_location)
        report = SyncReport(total=len(actions))

        if not actions:
            self._logger.info(
                f"Nothing to sync at '{location}' of <{self.collection_type.type_name}>"
            )
            return report

        self._logger.info(
            f"Syncing {report.total} action(s) at '{location}' of <{self.collection_type.type_name}>"
        )

        async def run(action: SyncAction):
            try:
                await action.execute()
            except Exception as e:
                report.errored += 1
                report.errors.append((action, e))
                self._logger.error(f"Sync failed: {action}: {e}")
                listener.on_error(report, action, e)
                return

            report.successful += 1
            self._logger.debug(f"Synced {action}")

            if report.complete:
                self.clear_edits(root_location)
                self._logger.info(
                    f"Sync of <{self.collection_type.type_name}> complete: {report}"
                )
                listener.on_success(report)
            elif not report.errored or progress_after_error:
                listener.on_progress(report)

        await asyncio.gather(*(run(action) for action in actions))

        return report

    def _collection_actions(
        self,
        coll_type: PropertyTypeCollection,
        members: list,
        source_members: Any,
        location: str,
    ) -> list[SyncAction]:
        entity_type = coll_type.entity_type
        self._check_synced(entity_type)

        id_property = entity_type.id_property
        originals = source_members if isinstance(source_members, list) else []
        actions: list[SyncAction] = []

        for member in members:
            identity = member.get(id_property)
            index = (
                find_member(originals, id_property, identity)
                if identity is not None
                else None
            )

            actions += self.create_sync_actions(
                entity_type,
                member,
                originals[index] if index is not None else None,
                _join(location, f"{id_property}#{identity}"),
            )

        return actions

    def _check_synced(self, prop_type: Any):
        if not isinstance(prop_type, SyncedPropertyTypeObject):
            raise InvalidTypeError(
                f"<{getattr(prop_type, 'type_name', prop_type)}> is not a synced entity type"
            )


def _join(*parts: str) -> str:
    return ".".join(p for p in parts if p)
