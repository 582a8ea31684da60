"""
Edit engine: records local changes to a collection of entities as a sparse
tree of edits, kept separate from the original (server-provided) data.
"""

from __future__ import annotations

import copy
from collections.abc import Mapping
from dataclasses import dataclass
from logging import Logger
from typing import Any, Callable, Self, TypeAlias

from ..exceptions import (
    IllegalParallelEditError,
    InvalidStateError,
    InvalidTypeError,
)
from ..schema.property_type import (
    PropertyKind,
    PropertyType,
    PropertyTypeCollection,
    PropertyTypeObject,
    ScalarType,
)
from ..utils import MARKER_KEYS, STATE_KEY, TEMPLATE_KEY, merge_deep, strip_markers
from . import location as _location
from .location import (
    ARRAY_INDEX_IDENTIFIER,
    Location,
    Segment,
    find_member,
    format_location,
    parse_location,
    resolve,
    resolve_type,
)
from .registry import StorageRegistry
from .types import ActionType, ComparisonStrategy, MergeStrategy, State, get_state

__all__ = [
    "EntityStorage",
    "merge_entity",
    "reconcile_collection",
]

Result: TypeAlias = tuple[bool | None, Any]
"""
Pair of `(edited, value)`; `edited` is `None` for entities pending deletion
in results of {obj}`EntityStorage.get_properties`.
"""


@dataclass
class _Frame:
    """
    One level of the edits tree visited while applying an edit.
    """

    container: list | dict | None
    """Edits node holding `node`, `None` for the root"""

    node: list | dict
    """Edits node at this level"""

    prop_type: PropertyType
    """Type of `node`"""

    original: Any
    """Original counterpart of `node`, if any"""


class EntityStorage:
    """
    Keeps a read-only original collection along with a sparse tree of edits.

    The edits tree mirrors the shape of the original collection, but only
    contains nodes on the path to something that changed. Entities in the tree
    carry their identity and a `_STATE` of `INSERTED`, `UPDATED` or `DELETED`.
    Reads merge edits over originals.

    At most one storage exists per collection type within a
    {obj}`StorageRegistry`; instantiating a storage for an already registered
    type returns the existing storage.
    """

    ARRAY_INDEX_IDENTIFIER = ARRAY_INDEX_IDENTIFIER

    collection_type: PropertyTypeCollection
    """Type of managed collection"""

    original_collection: list[dict]
    """Entities as last received"""

    registry: StorageRegistry
    """Registry this storage belongs to"""

    allow_parallel_edits: bool
    """Whether edits may interleave between different locations"""

    last_edited_location: str | None
    """Location of the most recent edit, reset upon reject/revert"""

    locking_location: str | None
    """Location set by {obj}`lock_at`, if any"""

    _edits: list[dict]

    _logger: Logger

    _init_done: bool = False

    def __new__(
        cls,
        collection_type: PropertyTypeCollection,
        original_collection: list[dict] | None = None,
        *,
        registry: StorageRegistry | None = None,
        **kwargs: Any,
    ) -> Self:
        if registry is not None and isinstance(
            collection_type, PropertyTypeCollection
        ):
            collection_type.compile()
            existing = registry.get(collection_type.type_name)

            if existing is not None:
                if not isinstance(existing, cls):
                    raise InvalidStateError(
                        f"Storage <{collection_type.type_name}> already registered as {type(existing).__name__}"
                    )
                return existing

        return super().__new__(cls)

    def __init__(
        self,
        collection_type: PropertyTypeCollection,
        original_collection: list[dict] | None = None,
        *,
        registry: StorageRegistry | None = None,
        allow_parallel_edits: bool = True,
    ):
        """
        :param collection_type: Type of managed collection
        :param original_collection: Entities as received, empty if not provided
        :param registry: Registry to join, or `None` to create a private one
        :param allow_parallel_edits: Whether edits may interleave between locations
        """

        # skip init if returned from registry
        if self._init_done:
            assert self.collection_type.type_name == collection_type.type_name
            return

        if not isinstance(collection_type, PropertyTypeCollection):
            raise InvalidTypeError(
                f"Storage requires a collection type, got {collection_type!r}"
            )

        if original_collection is None:
            original_collection = []
        elif not isinstance(original_collection, list):
            raise InvalidTypeError(
                f"Original collection of <{collection_type.type_name}> must be a list, got {type(original_collection).__name__}"
            )

        collection_type.compile()

        self._init_done = True

        self.collection_type = collection_type
        self.original_collection = original_collection
        self.registry = registry if registry is not None else StorageRegistry()
        self.allow_parallel_edits = allow_parallel_edits
        self.last_edited_location = None
        self.locking_location = None
        self._edits = []
        self._logger = self.registry.logger

        self.registry.add_storage(self)

    def __str__(self) -> str:
        return f"{type(self).__name__}(<{self.collection_type.type_name}>, edits={len(self._edits)})"

    @property
    def entity_type(self) -> PropertyTypeObject:
        return self.collection_type.entity_type

    @property
    def edits(self) -> list[dict]:
        """
        Live edits tree.
        """
        return self._edits

    # --------------------------------------------------------------------
    # reads
    # --------------------------------------------------------------------

    def get_property(
        self,
        location: Location,
        only_original: bool = False,
        only_edits: bool = False,
        merge_strategy: MergeStrategy = MergeStrategy.DEEP_SIMPLE,
    ) -> Result | None:
        """
        Get value at location, merging edits over the original value.

        :param location: Location relative to the collection
        :param only_original: Ignore edits
        :param only_edits: Ignore original values
        :param merge_strategy: How to merge edits into originals
        :returns: `(edited, value)`, or `None` if unresolved or pending deletion
        """
        MergeStrategy(merge_strategy)

        segments = self._by_identity(location)
        edit = (
            None
            if only_original
            else resolve(self._edits, segments, self.collection_type)
        )

        if only_edits:
            return (True, edit.node) if edit is not None else None

        if not only_original and self._is_pending_deletion(segments):
            return None

        orig = resolve(self.original_collection, location, self.collection_type)

        if only_original or edit is None:
            return (False, orig.node) if orig is not None else None

        if orig is None:
            return (True, edit.node)

        prop_type = edit.prop_type or orig.prop_type
        return (True, _merge_values(prop_type, orig.node, edit.node, True))

    def get_property_canonical(
        self, location: Location, **kwargs: Any
    ) -> tuple[Any, bool]:
        """
        Like {obj}`get_property`, but always returns `(value, edited)`.
        """
        result = self.get_property(location, **kwargs)
        if result is None:
            return (None, False)
        edited, value = result
        return (value, bool(edited))

    def get_properties(
        self,
        location: Location,
        only_original: bool = False,
        only_edits: bool = False,
        merge_results: bool = True,
    ) -> list[Result] | None:
        """
        Get members of collection at location as list of `(edited, entity)`.

        Original members come first in their original order, replaced by
        their edit if one exists; members pending deletion are flagged with
        `None`. Inserted members are appended.

        :returns: Results, or `None` if location doesn't address a collection
        """
        edits = resolve(self._edits, self._by_identity(location), self.collection_type)
        origs = resolve(self.original_collection, location, self.collection_type)

        edit_list = edits.node if edits is not None else None
        orig_list = origs.node if origs is not None else None

        if edit_list is not None and not isinstance(edit_list, list):
            raise InvalidTypeError(
                f"Edits at '{format_location(location)}' are not a collection"
            )
        if orig_list is not None and not isinstance(orig_list, list):
            return None
        if edit_list is None and orig_list is None:
            return None

        if only_edits:
            return [(True, m) for m in edit_list or []]

        if only_original or not edit_list:
            return [(False, m) for m in orig_list or []]

        if not merge_results:
            return [(False, m) for m in orig_list or []] + [
                (_result_flag(m), m) for m in edit_list
            ]

        coll_type = (edits.prop_type if edits else None) or (
            origs.prop_type if origs else None
        )
        id_property = (
            coll_type.entity_type.id_property
            if isinstance(coll_type, PropertyTypeCollection)
            else self.entity_type.id_property
        )

        results: list[Result] = []
        consumed: set[int] = set()

        for member in orig_list or []:
            index = (
                find_member(edit_list, id_property, member[id_property])
                if id_property in member
                else None
            )
            if index is None:
                results.append((False, member))
            else:
                consumed.add(index)
                results.append((_result_flag(edit_list[index]), edit_list[index]))

        for index, member in enumerate(edit_list):
            if index not in consumed:
                results.append((_result_flag(member), member))

        return results

    def get_merged_entity(self, original_entity: dict) -> dict | None:
        """
        Get a snapshot of the given original entity with its edits applied and
        markers removed. Returns `None` if it is pending deletion.
        """
        id_property = self.entity_type.id_property
        index = (
            find_member(self._edits, id_property, original_entity[id_property])
            if id_property in original_entity
            else None
        )

        if index is None:
            return original_entity

        edit = self._edits[index]
        if get_state(edit) is State.DELETED:
            return None

        return merge_entity(self.entity_type, original_entity, edit)

    def get_merged(self) -> list[dict]:
        """
        Get snapshot of the whole collection with edits applied: originals in
        order, pending deletions dropped, inserts appended.
        """
        merged: list[dict] = []
        id_property = self.entity_type.id_property
        original_ids = [
            m[id_property] for m in self.original_collection if id_property in m
        ]

        for member in self.original_collection:
            entity = self.get_merged_entity(member)
            if entity is not None:
                merged.append(entity)

        for edit in self._edits:
            if get_state(edit) is not State.INSERTED:
                continue
            if edit.get(id_property) in original_ids:
                continue
            merged.append(strip_markers(edit))

        return merged

    def get_edits(self) -> list[dict]:
        """
        Get copy of edits tree.
        """
        return copy.deepcopy(self._edits)

    def set_edits(self, edits: list[dict]) -> Self:
        """
        Replace edits tree, e.g. to restore a previously saved one.
        """
        if not isinstance(edits, list):
            raise InvalidTypeError(
                f"Edits must be a list, got {type(edits).__name__}"
            )
        self._edits = edits
        return self

    def set_collection(self, collection: list[dict]) -> Self:
        """
        Replace original collection, e.g. after reload.
        """
        if not isinstance(collection, list):
            raise InvalidTypeError(
                f"Collection must be a list, got {type(collection).__name__}"
            )
        self.original_collection = collection
        return self

    def clear_edits(self, location: Location = None) -> Self:
        """
        Discard edits at location, or all edits if no location given.
        """
        segments = parse_location(location)
        self.last_edited_location = None

        if not segments:
            self._edits = []
            return self

        if resolve(self._edits, self._by_identity(segments), self.collection_type) is not None:
            self._apply(segments, None, ActionType.REJECT, False)

        return self

    def has_edits(self) -> bool:
        return len(self._edits) > 0

    def get_child_ids(self, include_templates: bool = True) -> list[Any]:
        """
        Get identities of original members, preceded by those of templates.
        """
        id_property = self.entity_type.id_property
        ids = [
            m[id_property] for m in self.original_collection if id_property in m
        ]

        if include_templates:
            templates = [
                e[id_property]
                for e in self._edits
                if e.get(TEMPLATE_KEY) and id_property in e
            ]
            ids = templates + ids

        return ids

    def get_edited_locations(self) -> list[str]:
        """
        Get locations of all pending changes. Inserted and deleted entities are
        reported as a whole.
        """
        locations: list[str] = []
        _collect_locations(self._edits, self.collection_type, [], locations)
        return locations

    @staticmethod
    def one_property_changed(
        compounds: list[tuple[bool, Any]] | None,
    ) -> bool:
        """
        Check whether any of the given `(edited, value)` results is edited.
        """
        return any(c is not None and c[0] for c in compounds or [])

    # --------------------------------------------------------------------
    # writes
    # --------------------------------------------------------------------

    def edit(
        self,
        location: Location,
        value: Any = None,
        action: ActionType | str = ActionType.UPDATE,
        verbose: bool = False,
    ) -> Self:
        """
        Record a change at location. Changes are applied atomically; if an
        error is raised, the edits tree is left as it was.

        :param location: Location relative to the collection
        :param value: New value for `UPDATE`, new entity for `INSERT`
        :param action: Requested action
        :param verbose: Log each step at debug level
        :raises IllegalParallelEditError: If location is locked or parallel edits are disabled
        """
        action = ActionType(action)
        segments = parse_location(location)
        joined = format_location(segments)

        self._check_parallel(joined)
        previous = self.last_edited_location
        self.last_edited_location = joined

        if verbose:
            self._logger.debug(
                f"Edit <{self.collection_type.type_name}> at '{joined}': {action.value} {value!r}"
            )

        snapshot = copy.deepcopy(self._edits)
        try:
            released = self._apply(segments, value, action, verbose)
        except Exception:
            self._edits = snapshot
            self.last_edited_location = previous
            raise

        if released:
            self.last_edited_location = None

        return self

    def insert(self, location: Location, value: Mapping | None = None) -> Self:
        """
        Insert new entity into collection at location.
        """
        return self.edit(location, value, ActionType.INSERT)

    def delete(self, location: Location) -> Self:
        """
        Mark entity at location for deletion.
        """
        return self.edit(location, None, ActionType.DELETE)

    def reject(self, location: Location) -> Self:
        """
        Discard edit at location.
        """
        return self.edit(location, None, ActionType.REJECT)

    def add_template(
        self, id_value: Any, merge_object: Mapping | None = None
    ) -> dict:
        """
        Add a new entity with default values to the edits, flagged as template.

        :param id_value: Identity of new entity
        :param merge_object: Values deep-merged into the new entity
        :returns: New edit entry
        """
        id_property = self.entity_type.id_property

        if (
            find_member(self._edits, id_property, id_value) is not None
            or find_member(self.original_collection, id_property, id_value)
            is not None
        ):
            raise InvalidStateError(
                f"Entity with {id_property}={id_value!r} already present in <{self.collection_type.type_name}>"
            )

        template = self.entity_type.create_template(id_value)
        template = merge_deep(template, merge_object or {})
        template[STATE_KEY] = State.INSERTED
        template[TEMPLATE_KEY] = True

        self._edits.append(template)
        return template

    def lock_at(self, location: Location) -> Self:
        """
        Reject edits anywhere but at location until {obj}`unlock_at`.
        """
        if self.locking_location is not None:
            raise InvalidStateError(
                f"Storage <{self.collection_type.type_name}> already locked at '{self.locking_location}'"
            )
        self.locking_location = format_location(location)
        return self

    def unlock_at(self, location: Location) -> Self:
        joined = format_location(location)
        if self.locking_location is None or joined != self.locking_location:
            raise InvalidStateError(
                f"Attempt to unlock <{self.collection_type.type_name}> at '{joined}', locked at '{self.locking_location}'"
            )
        self.locking_location = None
        return self

    def parse_registered_property(self, path: Location, value: Any) -> Any:
        """
        Parse value of property at path relative to the entity type.
        """
        return self.parse_property(self.entity_type, path, value)

    # --------------------------------------------------------------------
    # static helpers
    # --------------------------------------------------------------------

    @staticmethod
    def context_resolve(
        root: Any,
        location: Location,
        return_index: bool = False,
        root_type: PropertyType | None = None,
        return_type: bool = False,
    ) -> Any:
        return _location.context_resolve(
            root,
            location,
            return_index=return_index,
            root_type=root_type,
            return_type=return_type,
        )

    @staticmethod
    def context_resolve_type_only(
        location: Location, root_type: PropertyType
    ) -> PropertyType | None:
        return resolve_type(location, root_type)

    @staticmethod
    def entity_equals(
        a: Any,
        b: Any,
        prop_type: PropertyType | None = None,
        strategy: ComparisonStrategy = ComparisonStrategy.DEEP_SIMPLE,
    ) -> bool:
        """
        Compare two values. With an object type, entities are equal if their
        identities are; otherwise values are compared structurally.
        """
        if prop_type is not None:
            if prop_type.kind is PropertyKind.OBJECT:
                assert isinstance(prop_type, PropertyTypeObject)
                return (
                    isinstance(a, Mapping)
                    and isinstance(b, Mapping)
                    and a.get(prop_type.id_property)
                    == b.get(prop_type.id_property)
                )

            if prop_type.kind is PropertyKind.COLLECTION:
                assert isinstance(prop_type, PropertyTypeCollection)
                if not isinstance(a, list) or not isinstance(b, list):
                    return False
                id_property = prop_type.entity_type.id_property
                return [m.get(id_property) for m in a] == [
                    m.get(id_property) for m in b
                ]

        ComparisonStrategy(strategy)
        return _deep_equals(a, b)

    @staticmethod
    def sort_context_by(
        root: Any,
        location: Location,
        key: str | Callable[[Any], Any],
        direction: str = "ASC",
    ) -> list | None:
        """
        Sort collection at location in place, by property name (compared as
        text) or key function.
        """
        if direction not in ("ASC", "DESC"):
            raise InvalidTypeError(f"Invalid sort direction '{direction}'")

        base = _location.context_resolve(root, location)
        if base is None:
            return None
        if not isinstance(base, list):
            raise InvalidTypeError(
                f"Location '{format_location(location)}' is not a collection"
            )

        if isinstance(key, str):
            name = key
            base.sort(
                key=lambda m: str(m.get(name, "")),
                reverse=direction == "DESC",
            )
        elif callable(key):
            base.sort(key=key, reverse=direction == "DESC")
        else:
            raise InvalidTypeError(f"Invalid sort key {key!r}")

        return base

    @staticmethod
    def parse_property(
        base_type: PropertyType, path: Location, value: Any
    ) -> Any:
        """
        Parse value of the scalar property at path relative to `base_type`.
        """
        prop_type: PropertyType = base_type
        segments = parse_location(path)

        if not segments:
            raise InvalidStateError("Empty property path")

        for segment in segments:
            if prop_type.kind is PropertyKind.COLLECTION:
                assert isinstance(prop_type, PropertyTypeCollection)
                prop_type = prop_type.entity_type
            if prop_type.kind is not PropertyKind.OBJECT:
                raise InvalidStateError(
                    f"Can't resolve '{segment}' below <{prop_type.type_name}>"
                )
            assert isinstance(prop_type, PropertyTypeObject)
            prop_type = prop_type.get_property_type(segment.name)

        if not isinstance(prop_type, ScalarType):
            raise InvalidStateError(
                f"No parser for <{prop_type.type_name}> at '{format_location(path)}'"
            )

        return prop_type.parse(value)

    @staticmethod
    def is_edit_empty(node: Mapping, object_type: PropertyTypeObject) -> bool:
        """
        Check whether an edit entry records no change: none of its declared
        properties except identity is present. Entries pending deletion and
        templates are never empty.
        """
        if node.get(TEMPLATE_KEY) or get_state(node) is State.DELETED:
            return False

        for name, prop_type in object_type.properties.items():
            if name == object_type.id_property or name not in node:
                continue

            value = node[name]

            if (
                prop_type.kind is PropertyKind.OBJECT
                and isinstance(value, Mapping)
                and not _is_reference(prop_type, value)
            ):
                assert isinstance(prop_type, PropertyTypeObject)
                if not EntityStorage.is_edit_empty(value, prop_type):
                    return False
            elif prop_type.kind is PropertyKind.COLLECTION and isinstance(
                value, list
            ):
                if value:
                    return False
            else:
                return False

        return True

    # --------------------------------------------------------------------
    # edit walk
    # --------------------------------------------------------------------

    def _by_identity(self, location: Location) -> list[Segment]:
        """
        Rewrite member segments which select original members by index or by
        a property other than identity into identity segments, so they match
        the corresponding edit entries.
        """
        segments: list[Segment] = []
        node: Any = self.original_collection
        prop_type: PropertyType | None = self.collection_type

        for segment in parse_location(location):
            if (
                segment.is_member
                and isinstance(prop_type, PropertyTypeCollection)
                and segment.name != prop_type.entity_type.id_property
            ):
                step = resolve(node, [segment], prop_type)
                id_property = prop_type.entity_type.id_property

                if step is not None and id_property in step.node:
                    segment = Segment(id_property, str(step.node[id_property]))

            segments.append(segment)

            step = resolve(node, [segment], prop_type)
            node, prop_type = (
                (step.node, step.prop_type) if step is not None else (None, None)
            )

        return segments

    def _is_pending_deletion(self, segments: list[Segment]) -> bool:
        """
        Whether location lies at or below an entity pending deletion.
        """
        for end in range(1, len(segments) + 1):
            found = resolve(self._edits, segments[:end], self.collection_type)
            if found is None:
                return False
            if get_state(found.node) is State.DELETED:
                return True
        return False

    def _check_parallel(self, location: str):
        if self.locking_location is not None and location != self.locking_location:
            raise IllegalParallelEditError(location, self.locking_location)

        if (
            not self.allow_parallel_edits
            and self.last_edited_location is not None
            and location != self.last_edited_location
        ):
            raise IllegalParallelEditError(location, self.last_edited_location)

    def _apply(
        self,
        segments: list[Segment],
        value: Any,
        action: ActionType,
        verbose: bool,
    ) -> bool:
        """
        Apply action at location given by segments.

        :returns: Whether an edit was removed
        """
        root = _Frame(None, self._edits, self.collection_type, self.original_collection)

        if not segments:
            if action is ActionType.INSERT:
                self._insert_member(root, value)
                return False
            if action is ActionType.REJECT:
                self._edits.clear()
                return True
            raise InvalidStateError(
                f"Empty location only supports {ActionType.INSERT.value} and {ActionType.REJECT.value}"
            )

        frames = [root]
        for segment in segments[:-1]:
            if verbose:
                self._logger.debug(
                    f"Descending into '{segment}' of <{frames[-1].prop_type.type_name}>"
                )
            frames.append(self._descend(frames[-1], segment))

        parent = frames[-1]
        terminal = segments[-1]

        if parent.prop_type.kind is PropertyKind.COLLECTION:
            return self._apply_member(frames, segments, value, action, verbose)

        if parent.prop_type.kind is PropertyKind.OBJECT:
            return self._apply_property(frames, segments, value, action, verbose)

        raise InvalidStateError(
            f"Can't resolve '{terminal}' below scalar <{parent.prop_type.type_name}>"
        )

    def _descend(self, frame: _Frame, segment: Segment) -> _Frame:
        """
        Get frame for child addressed by segment, creating stubs as needed.
        """
        if frame.prop_type.kind is PropertyKind.COLLECTION:
            assert isinstance(frame.prop_type, PropertyTypeCollection)
            assert isinstance(frame.node, list)

            entity_type = frame.prop_type.entity_type
            index, original = self._locate_member(frame, segment)

            if index is None:
                node = {
                    entity_type.id_property: self._member_identity(
                        frame, segment, original
                    ),
                    STATE_KEY: (
                        State.INSERTED if original is None else State.UPDATED
                    ),
                }
                frame.node.append(node)
            else:
                node = frame.node[index]
                if get_state(node) is State.DELETED:
                    raise InvalidStateError(
                        f"Can't edit below '{segment}' which is pending deletion"
                    )

            return _Frame(frame.node, node, entity_type, original)

        if frame.prop_type.kind is not PropertyKind.OBJECT:
            raise InvalidStateError(
                f"Can't resolve '{segment}' below scalar <{frame.prop_type.type_name}>"
            )

        assert isinstance(frame.prop_type, PropertyTypeObject)
        assert isinstance(frame.node, dict)

        if segment.is_member:
            raise InvalidStateError(
                f"Segment '{segment}' selects a member, but <{frame.prop_type.type_name}> is not a collection"
            )

        name = segment.name
        child_type = frame.prop_type.get_property_type(name)
        original = (
            frame.original.get(name)
            if isinstance(frame.original, Mapping)
            else None
        )

        if child_type.kind is PropertyKind.OBJECT:
            assert isinstance(child_type, PropertyTypeObject)

            if name not in frame.node:
                frame.node[name] = {
                    STATE_KEY: (
                        State.INSERTED if original is None else State.UPDATED
                    )
                }
            node = frame.node[name]

            if not isinstance(node, dict):
                raise InvalidStateError(
                    f"Can't edit below '{segment}' which is set to {node!r}"
                )
            if get_state(node) is State.DELETED:
                raise InvalidStateError(
                    f"Can't edit below '{segment}' which is pending deletion"
                )

            # edits below a swapped reference apply to the new entity
            if _is_reference(child_type, node) and not (
                isinstance(original, Mapping)
                and original.get(child_type.id_property)
                == node[child_type.id_property]
            ):
                original = None

            return _Frame(frame.node, node, child_type, original)

        if child_type.kind is PropertyKind.COLLECTION:
            node = frame.node.setdefault(name, [])
            if not isinstance(node, list):
                raise InvalidTypeError(
                    f"Edits of collection '{segment}' are not a list"
                )
            return _Frame(frame.node, node, child_type, original)

        raise InvalidStateError(
            f"Can't resolve below scalar property '{segment}' of <{frame.prop_type.type_name}>"
        )

    def _locate_member(
        self, frame: _Frame, segment: Segment
    ) -> tuple[int | None, dict | None]:
        """
        Find edit and original member addressed by segment.

        :returns: Index within edits (or `None`), original member (or `None`)
        """
        assert isinstance(frame.prop_type, PropertyTypeCollection)
        assert isinstance(frame.node, list)

        entity_type = frame.prop_type.entity_type
        id_property = entity_type.id_property
        originals = frame.original if isinstance(frame.original, list) else []

        if not segment.is_member:
            raise InvalidStateError(
                f"Segment '{segment}' must select a member of <{frame.prop_type.type_name}>"
            )

        original: dict | None
        if segment.is_index:
            index = segment.index
            if not 0 <= index < len(originals):
                raise InvalidStateError(
                    f"No member at '{segment}' of <{frame.prop_type.type_name}>"
                )
            original = originals[index]
            if id_property not in original:
                raise InvalidStateError(
                    f"Member at '{segment}' has no identity <{id_property}>"
                )
            name, value = id_property, original[id_property]
        else:
            name = segment.name
            value = entity_type.parse_value(name, segment.value)
            found = find_member(originals, name, value)
            original = originals[found] if found is not None else None

        edit_index = find_member(frame.node, name, value)

        if (
            edit_index is None
            and original is not None
            and name != id_property
            and id_property in original
        ):
            edit_index = find_member(frame.node, id_property, original[id_property])

        return edit_index, original

    def _member_identity(
        self, frame: _Frame, segment: Segment, original: dict | None
    ) -> Any:
        assert isinstance(frame.prop_type, PropertyTypeCollection)
        entity_type = frame.prop_type.entity_type

        if original is not None and entity_type.id_property in original:
            return original[entity_type.id_property]

        if segment.name == entity_type.id_property:
            return entity_type.parse_value(segment.name, segment.value)

        raise InvalidStateError(
            f"Can't determine identity of '{segment}' in <{frame.prop_type.type_name}>"
        )

    def _apply_member(
        self,
        frames: list[_Frame],
        segments: list[Segment],
        value: Any,
        action: ActionType,
        verbose: bool,
    ) -> bool:
        """
        Apply action to collection member addressed by the last segment.
        """
        frame = frames[-1]
        segment = segments[-1]
        assert isinstance(frame.prop_type, PropertyTypeCollection)
        assert isinstance(frame.node, list)

        entity_type = frame.prop_type.entity_type
        index, original = self._locate_member(frame, segment)
        node = frame.node[index] if index is not None else None

        if action is ActionType.INSERT:
            raise InvalidStateError(
                f"{action.value} must address a collection, not member '{segment}'"
            )

        if action is ActionType.DELETE and get_state(node) is State.INSERTED:
            action = ActionType.REJECT

        match action:
            case ActionType.REJECT:
                if index is not None:
                    del frame.node[index]
                    self._log(verbose, f"Rejected edit of '{segment}'")
                self._prune(frames, verbose)
                return index is not None

            case ActionType.DELETE:
                if node is not None:
                    node[STATE_KEY] = State.DELETED
                    return False

                if original is None:
                    raise InvalidStateError(
                        f"Can't delete '{segment}' which is not present in <{frame.prop_type.type_name}>"
                    )

                frame.node.append(
                    {
                        entity_type.id_property: self._member_identity(
                            frame, segment, original
                        ),
                        STATE_KEY: State.DELETED,
                    }
                )
                return False

            case _:
                if not isinstance(value, Mapping):
                    raise InvalidTypeError(
                        f"Update of member '{segment}' requires a mapping, got {type(value).__name__}"
                    )

                if node is None and not value:
                    self._prune(frames, verbose)
                    return False

                return self._apply_fields(
                    entity_type, segments, value, verbose
                )

    def _apply_property(
        self,
        frames: list[_Frame],
        segments: list[Segment],
        value: Any,
        action: ActionType,
        verbose: bool,
    ) -> bool:
        """
        Apply action to object property addressed by the last segment.
        """
        frame = frames[-1]
        segment = segments[-1]
        assert isinstance(frame.prop_type, PropertyTypeObject)
        assert isinstance(frame.node, dict)

        if segment.is_member:
            raise InvalidStateError(
                f"Segment '{segment}' selects a member, but <{frame.prop_type.type_name}> is not a collection"
            )

        name = segment.name
        prop_type = frame.prop_type.get_property_type(name)
        node = frame.node

        has_original = isinstance(frame.original, Mapping) and name in frame.original
        original = frame.original[name] if has_original else None
        exists = name in node
        current = node.get(name)

        if action is ActionType.DELETE and get_state(current) is State.INSERTED:
            action = ActionType.REJECT

        match action:
            case ActionType.REJECT:
                if exists:
                    del node[name]
                    self._log(verbose, f"Rejected edit of '{name}'")
                self._prune(frames, verbose)
                return exists

            case ActionType.UPDATE:
                if prop_type.kind is PropertyKind.COLLECTION:
                    raise InvalidTypeError(
                        f"Collection '{name}' can't be updated as a whole; edit its members instead"
                    )

                if prop_type.kind is PropertyKind.OBJECT:
                    assert isinstance(prop_type, PropertyTypeObject)

                    if isinstance(value, Mapping) and not _is_reference(
                        prop_type, value
                    ):
                        return self._apply_fields(
                            prop_type, segments, value, verbose
                        )

                    if value is not None and not isinstance(value, Mapping):
                        raise InvalidTypeError(
                            f"Property '{name}' of <{frame.prop_type.type_name}> requires a mapping, got {type(value).__name__}"
                        )

                    unchanged = has_original and self.entity_equals(
                        value, original, prop_type
                    )
                    if value is None and original is None:
                        unchanged = has_original
                    new_value = copy.deepcopy(dict(value)) if value is not None else None
                else:
                    unchanged = has_original and _deep_equals(value, original)
                    new_value = value

                if unchanged:
                    if exists:
                        del node[name]
                        self._log(verbose, f"Reverted '{name}' to original")
                    self._prune(frames, verbose)
                    return exists

                node[name] = new_value
                return False

            case ActionType.INSERT:
                if prop_type.kind is PropertyKind.COLLECTION:
                    members = node.setdefault(name, [])
                    if not isinstance(members, list):
                        raise InvalidTypeError(
                            f"Edits of collection '{name}' are not a list"
                        )
                    self._insert_member(
                        _Frame(node, members, prop_type, original), value
                    )
                    return False

                if prop_type.kind is PropertyKind.OBJECT:
                    assert isinstance(prop_type, PropertyTypeObject)
                    if value is not None and not isinstance(value, Mapping):
                        raise InvalidTypeError(
                            f"Insert of '{name}' requires a mapping, got {type(value).__name__}"
                        )
                    entity = prop_type.instantiate(
                        strip_markers(dict(value or {}))
                    )
                    entity[STATE_KEY] = State.INSERTED
                    node[name] = entity
                    return False

                raise InvalidStateError(
                    f"Can't {action.value} into scalar property '{name}'"
                )

            case ActionType.DELETE:
                if prop_type.kind is not PropertyKind.OBJECT:
                    raise InvalidStateError(
                        f"{action.value} of '{name}' not supported; only entities can be deleted"
                    )
                assert isinstance(prop_type, PropertyTypeObject)

                if not isinstance(original, Mapping):
                    raise InvalidStateError(
                        f"Can't delete '{name}' which has no original entity"
                    )

                stub = current if isinstance(current, dict) else {}
                stub[prop_type.id_property] = original.get(prop_type.id_property)
                stub[STATE_KEY] = State.DELETED
                node[name] = stub
                return False

        raise InvalidStateError(f"Unsupported action {action!r}")

    def _apply_fields(
        self,
        entity_type: PropertyTypeObject,
        segments: list[Segment],
        value: Mapping,
        verbose: bool,
    ) -> bool:
        """
        Apply mapping as one update per declared property.
        """
        released = False

        for name, field_value in value.items():
            if name in MARKER_KEYS or name == entity_type.id_property:
                continue
            if name not in entity_type.properties:
                raise InvalidStateError(
                    f"Property <{name}> not registered at <{entity_type.type_name}>"
                )
            released |= self._apply(
                segments + [Segment(name)],
                field_value,
                ActionType.UPDATE,
                verbose,
            )

        return released

    def _insert_member(self, frame: _Frame, value: Any):
        """
        Append new member to collection edits of frame.
        """
        coll_type = frame.prop_type
        assert isinstance(coll_type, PropertyTypeCollection)
        assert isinstance(frame.node, list)

        entity_type = coll_type.entity_type
        id_property = entity_type.id_property
        originals = frame.original if isinstance(frame.original, list) else []

        if value is None:
            value = {}
        elif not isinstance(value, Mapping):
            raise InvalidTypeError(
                f"Insert into <{coll_type.type_name}> requires a mapping, got {type(value).__name__}"
            )

        count = _count_members(originals, frame.node, id_property)
        if count >= coll_type.max_members:
            raise InvalidStateError(
                f"<{coll_type.type_name}> can't hold more than {coll_type.max_members} members"
            )

        values = {
            k: v
            for k, v in value.items()
            if k not in MARKER_KEYS and not (k == id_property and v is None)
        }
        member = entity_type.instantiate(values)

        if member.get(id_property) is None:
            self._logger.warning(
                f"Inserted member of <{coll_type.type_name}> has no identity <{id_property}>"
            )
        elif (
            find_member(frame.node, id_property, member[id_property]) is not None
            or find_member(originals, id_property, member[id_property])
            is not None
        ):
            raise InvalidStateError(
                f"Member with {id_property}={member[id_property]!r} already present in <{coll_type.type_name}>"
            )

        member[STATE_KEY] = State.INSERTED
        frame.node.append(member)

    def _prune(self, frames: list[_Frame], verbose: bool):
        """
        Remove edit nodes left without changes, from the deepest frame up to
        (excluding) the root.
        """
        for frame in reversed(frames[1:]):
            if isinstance(frame.node, list):
                empty = not frame.node
            else:
                assert isinstance(frame.prop_type, PropertyTypeObject)
                empty = self.is_edit_empty(frame.node, frame.prop_type)

            if not empty:
                break

            _detach(frame.container, frame.node)
            self._log(verbose, f"Pruned empty edit of <{frame.prop_type.type_name}>")

    def _log(self, verbose: bool, msg: str):
        if verbose:
            self._logger.debug(msg)


def merge_entity(
    object_type: PropertyTypeObject,
    original: Mapping,
    edit: Mapping,
    keep_markers: bool = False,
) -> dict:
    """
    Merge edit entry into original entity, returning a new dict. Nested
    collections are reconciled member-wise by identity.
    """
    result = copy.deepcopy(dict(original))

    for key, value in edit.items():
        if key in MARKER_KEYS:
            if keep_markers:
                result[key] = value
            continue

        prop_type = object_type.properties.get(key)
        result[key] = _merge_values(
            prop_type, original.get(key), value, keep_markers
        )

    return result


def reconcile_collection(
    collection_type: PropertyTypeCollection,
    originals: list,
    edits: list,
    keep_markers: bool = False,
) -> list:
    """
    Apply member edits to original members: deletions removed, updates merged
    by identity, inserts appended.
    """
    entity_type = collection_type.entity_type
    id_property = entity_type.id_property
    result = [copy.deepcopy(m) for m in originals]

    for member in edits:
        index = (
            find_member(result, id_property, member[id_property])
            if id_property in member
            else None
        )

        if get_state(member) is State.DELETED:
            if index is not None:
                del result[index]
            continue

        if index is None:
            result.append(merge_entity(entity_type, {}, member, keep_markers))
        else:
            result[index] = merge_entity(
                entity_type, result[index], member, keep_markers
            )

    return result


def _merge_values(
    prop_type: PropertyType | None, original: Any, edit: Any, keep_markers: bool
) -> Any:
    if prop_type is not None and prop_type.kind is PropertyKind.OBJECT:
        assert isinstance(prop_type, PropertyTypeObject)

        if isinstance(edit, Mapping):
            if get_state(edit) is State.DELETED:
                return None

            in_place = not _is_reference(prop_type, edit) or (
                isinstance(original, Mapping)
                and original.get(prop_type.id_property)
                == edit[prop_type.id_property]
            )
            if in_place and isinstance(original, Mapping):
                return merge_entity(prop_type, original, edit, keep_markers)

    if prop_type is not None and prop_type.kind is PropertyKind.COLLECTION:
        assert isinstance(prop_type, PropertyTypeCollection)

        if isinstance(edit, list):
            return reconcile_collection(
                prop_type,
                original if isinstance(original, list) else [],
                edit,
                keep_markers,
            )

    if keep_markers:
        return copy.deepcopy(edit)
    return strip_markers(edit)


def _is_reference(object_type: PropertyTypeObject, value: Mapping) -> bool:
    """
    Whether an object value carries identity, i.e. replaces the referenced
    entity rather than editing it in place.
    """
    return object_type.id_property in value


def _result_flag(member: Mapping) -> bool | None:
    return None if get_state(member) is State.DELETED else True


def _count_members(originals: list, edits: list, id_property: str) -> int:
    """
    Count members of collection after applying edits.
    """
    count = len(originals)
    original_ids = [m.get(id_property) for m in originals]

    for edit in edits:
        state = get_state(edit)
        known = edit.get(id_property) in original_ids

        if state is State.DELETED and known:
            count -= 1
        elif state is State.INSERTED and not known:
            count += 1

    return count


def _detach(container: list | dict | None, node: Any):
    """
    Remove node from its container by identity.
    """
    assert container is not None

    if isinstance(container, list):
        for index, item in enumerate(container):
            if item is node:
                del container[index]
                return
    else:
        for key, item in container.items():
            if item is node:
                del container[key]
                return


def _deep_equals(a: Any, b: Any) -> bool:
    if isinstance(a, bool) != isinstance(b, bool):
        return False

    if isinstance(a, Mapping) and isinstance(b, Mapping):
        return a.keys() == b.keys() and all(_deep_equals(a[k], b[k]) for k in a)

    if isinstance(a, list) and isinstance(b, list):
        return len(a) == len(b) and all(_deep_equals(x, y) for x, y in zip(a, b))

    return a == b


def _collect_locations(
    node: Any, prop_type: PropertyType, path: list[str], out: list[str]
):
    if prop_type.kind is PropertyKind.COLLECTION:
        assert isinstance(prop_type, PropertyTypeCollection)
        id_property = prop_type.entity_type.id_property

        for member in node:
            if id_property not in member:
                out.append(".".join(path))
                continue

            member_path = path + [f"{id_property}#{member[id_property]}"]
            if get_state(member) in (State.INSERTED, State.DELETED):
                out.append(".".join(member_path))
            else:
                _collect_locations(member, prop_type.entity_type, member_path, out)
        return

    assert isinstance(prop_type, PropertyTypeObject)

    for name, value in node.items():
        if name in MARKER_KEYS or name == prop_type.id_property:
            continue

        child_type = prop_type.properties.get(name)
        child_path = path + [name]

        if child_type is None:
            out.append(".".join(child_path))
        elif child_type.kind is PropertyKind.COLLECTION and isinstance(
            value, list
        ):
            _collect_locations(value, child_type, child_path, out)
        elif (
            child_type.kind is PropertyKind.OBJECT
            and isinstance(value, Mapping)
            and not _is_reference(child_type, value)
            and get_state(value) not in (State.INSERTED, State.DELETED)
        ):
            _collect_locations(value, child_type, child_path, out)
        else:
            out.append(".".join(child_path))
